from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    SESSION_NOT_FOUND = "session_not_found"
    PLAYER_NOT_FOUND = "player_not_found"
    STALE_SUBMISSION = "stale_submission"
    INVALID_ACTION = "invalid_action"
    NOT_HOST = "not_host"
    FORBIDDEN = "forbidden"
    NOT_ENOUGH_PLAYERS = "not_enough_players"
    GAME_IN_PROGRESS = "game_in_progress"
    MISSING_CAPABILITY = "missing_capability"
    ROOM_CODE_EXHAUSTED = "room_code_exhausted"
    STORE_UNAVAILABLE = "store_unavailable"


class GameError(Exception):
    """Base for every failure the facade turns into a typed result."""

    code: ErrorCode = ErrorCode.INVALID_ACTION

    def __init__(self, detail: str = "", code: Optional[ErrorCode] = None):
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code


class SessionNotFound(GameError):
    code = ErrorCode.SESSION_NOT_FOUND


class PlayerNotFound(GameError):
    code = ErrorCode.PLAYER_NOT_FOUND


class StaleSubmission(GameError):
    """Submission tagged for a phase that is no longer current."""

    code = ErrorCode.STALE_SUBMISSION


class InvalidAction(GameError):
    code = ErrorCode.INVALID_ACTION


class NotHost(GameError):
    code = ErrorCode.NOT_HOST


class Forbidden(GameError):
    """Reading a record that belongs to someone else."""

    code = ErrorCode.FORBIDDEN


class NotEnoughPlayers(GameError):
    code = ErrorCode.NOT_ENOUGH_PLAYERS


class GameInProgress(GameError):
    code = ErrorCode.GAME_IN_PROGRESS


class MissingCapability(GameError):
    """Camera or microphone unavailable (permission denied, no device)."""

    code = ErrorCode.MISSING_CAPABILITY


class RoomCodeExhausted(GameError):
    code = ErrorCode.ROOM_CODE_EXHAUSTED
