"""Error kinds raised by the puzzle session engine.

Every error is scoped to the single operation that raised it. ``code`` is a
stable machine-readable identifier, ``str(error)`` is the user-facing message.
"""

from __future__ import annotations

from typing import Optional


class GameError(Exception):
    """Base class for all rejections produced by the engine."""

    code = "game_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GameError):
    """Bad length, unknown word, duplicate guess or malformed input."""

    code = "validation"


class ConflictError(GameError):
    """The session is in a state that does not allow the operation."""

    code = "conflict"


class ExhaustedError(GameError):
    """No unit of the requested product is available."""

    code = "exhausted"

    def __init__(self, product_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Нет доступных единиц «{product_id}».")
        self.product_id = product_id


class HardModeViolation(GameError):
    """A guess ignores a letter revealed by an earlier guess."""

    code = "hard_mode"

    def __init__(self, letter: str, reason: str, position: Optional[int] = None) -> None:
        super().__init__(reason)
        self.letter = letter
        self.position = position
        self.reason = reason


class NotFoundError(GameError):
    """Unknown session, puzzle or profile."""

    code = "not_found"


class RaceLostError(GameError):
    """A concurrent writer changed the record first; safe to retry once."""

    code = "race_lost"

    def __init__(self, message: str = "Состояние игры изменилось, попробуйте ещё раз.") -> None:
        super().__init__(message)


class RateLimitedError(GameError):
    """The caller exceeded the admission window."""

    code = "rate_limited"

    def __init__(self, message: str = "Слишком много запросов. Попробуйте чуть позже.") -> None:
        super().__init__(message)


class LengthMismatchError(ValueError):
    """Guess and solution differ in length."""


__all__ = [
    "GameError",
    "ValidationError",
    "ConflictError",
    "ExhaustedError",
    "HardModeViolation",
    "NotFoundError",
    "RaceLostError",
    "RateLimitedError",
    "LengthMismatchError",
]
