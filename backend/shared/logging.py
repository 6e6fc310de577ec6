"""structlog setup shared by the lobby server, the solo CLI and client sessions.

Environment variables:
- LOG_FORMAT: "json" for machine-readable lines, "console" or unset for
  human-readable output.
- LOG_LEVEL: "DEBUG", "INFO" (default), "WARNING", "ERROR" or "CRITICAL".
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_LOG_FORMATS = {"json", "console", ""}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class LogOptions:
    json_mode: bool
    level: int

    @classmethod
    def from_env(cls, level: int | None = None) -> LogOptions:
        fmt = os.environ.get("LOG_FORMAT", "").lower()
        if fmt not in _LOG_FORMATS:
            raise ValueError(f"Invalid LOG_FORMAT={fmt!r}. Must be 'json', 'console', or unset.")
        if level is None:
            name = os.environ.get("LOG_LEVEL", "INFO").upper()
            if name not in _LOG_LEVELS:
                raise ValueError(f"Invalid LOG_LEVEL={name!r}. Must be one of {', '.join(sorted(_LOG_LEVELS))}.")
            level = getattr(logging, name)
        return cls(json_mode=fmt == "json", level=level)


def _render_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Log RoomStatus.PLAYING as "playing" rather than its repr."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def _formatter(options: LogOptions, *, colors: bool) -> logging.Formatter:
    renderer = structlog.processors.JSONRenderer() if options.json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def _running_under_pytest() -> bool:
    return "pytest" in sys.modules


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | None = None,
    file_prefix: str = "",
) -> Path | None:
    """Route structlog through the stdlib root logger.

    Always logs to stdout. With log_dir, also writes to a new timestamped
    file there (skipped under pytest) and returns its path.
    """
    options = LogOptions.from_env(level)

    # Exceptions are formatted by ProcessorFormatter, once per handler.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _render_enums,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.setLevel(options.level)
    root.handlers.clear()
    # httpx logs every TestClient request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(options, colors=sys.stdout.isatty()))
    root.addHandler(console)

    if log_dir is None or _running_under_pytest():
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)
    path = directory / f"{file_prefix}{stamp}.log"
    file_handler = logging.FileHandler(path)
    file_handler.setFormatter(_formatter(options, colors=False))
    root.addHandler(file_handler)
    return path


def bind_session(player_id: str, room_id: str) -> None:
    """Tag every later log line in this context with the client's player and room."""
    structlog.contextvars.bind_contextvars(player_id=player_id, room_id=room_id)


def unbind_session() -> None:
    structlog.contextvars.unbind_contextvars("player_id", "room_id")
