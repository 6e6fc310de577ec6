"""Room lifecycle failures surfaced to players.

Messages are written for display: the client session shows str(exc) as-is.
"""


class RoomError(Exception):
    """Base class for room create/join/leave failures."""


class RoomNotFoundError(RoomError):
    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__("Room not found. Check the code and try again.")


class RoomFullError(RoomError):
    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Room is full (max {capacity} players)")


class CreationExhaustedError(RoomError):
    """Every generated room code collided with an existing room."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Failed to create room after {attempts} attempts")


class InvalidDisplayNameError(RoomError):
    pass


class InvalidRoomCodeError(RoomError):
    pass
