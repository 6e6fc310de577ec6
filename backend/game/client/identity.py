"""Local identity kept outside the shared store so a restarted client can rejoin."""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import BaseModel, ValidationError

logger = structlog.get_logger()

_IDENTITY_DIR_MODE = 0o700
_IDENTITY_FILE_MODE = 0o600


class LocalIdentity(BaseModel, frozen=True):
    player_id: str
    display_name: str
    room_code: str


class IdentityStore(Protocol):
    def load(self) -> LocalIdentity | None: ...

    def save(self, identity: LocalIdentity) -> None: ...

    def clear(self) -> None: ...


class MemoryIdentityStore:
    """Holds the identity for the lifetime of the process only."""

    def __init__(self, identity: LocalIdentity | None = None) -> None:
        self.identity = identity

    def load(self) -> LocalIdentity | None:
        return self.identity

    def save(self, identity: LocalIdentity) -> None:
        self.identity = identity

    def clear(self) -> None:
        self.identity = None


class FileIdentityStore:
    """Stores the identity as JSON in a single owner-only file.

    A missing or unreadable file loads as "no identity"; a corrupt file is
    logged and ignored rather than blocking startup.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> LocalIdentity | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return LocalIdentity.model_validate_json(raw)
        except ValidationError:
            logger.warning("ignoring corrupt identity file", path=str(self._path))
            return None

    def save(self, identity: LocalIdentity) -> None:
        """Write atomically via temp-file-then-rename so a crash never leaves half a file."""
        directory = self._path.parent
        directory.mkdir(mode=_IDENTITY_DIR_MODE, parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp", prefix=".identity_")
        fd_owned = True
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                fd_owned = False
                f.write(identity.model_dump_json())
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, _IDENTITY_FILE_MODE)  # noqa: PTH101
            Path(tmp_path).replace(self._path)
        except BaseException:
            if fd_owned:
                with contextlib.suppress(OSError):
                    os.close(fd)
            with contextlib.suppress(OSError):
                Path(tmp_path).unlink()
            raise
        logger.debug("saved identity", path=str(self._path), room_code=identity.room_code)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
