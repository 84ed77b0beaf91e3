"""Puzzle session life-cycle.

A session moves through an explicit, enumerable set of transitions::

    PLAYING --guess--> PLAYING | WON | LOST
    LOST --extra try--> PLAYING   (last failing guess moved to hidden attempts)
    LOST --finish--> CLOSED
    WON --acknowledge--> CLOSED

The machine works on immutable snapshots and returns the new snapshot plus
what changed; persisting the change is the caller's job.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from slovo.config import Config

from .dictionary import DEFAULT_THEME, Dictionary, parse_arcade_theme
from .errors import ConflictError, ValidationError
from .feedback import FeedbackLine, evaluate_guess, feedback_from_mask, feedback_to_mask, is_solved, normalize_guess
from .hard_mode import validate_hard_mode
from .ledger import EntitlementLedger, Product

logger = logging.getLogger(__name__)


class GameMode(str, Enum):
    DAILY = "daily"
    ARCADE = "arcade"


class SessionStatus(str, Enum):
    PLAYING = "playing"
    WON = "won"
    LOST = "lost"
    CLOSED = "closed"


class SessionResult(str, Enum):
    WIN = "win"
    LOSE = "lose"


@dataclass(frozen=True)
class GuessLine:
    """One scored guess."""

    guess_index: int
    text_input: str
    text_norm: str
    feedback: FeedbackLine
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guess_index": self.guess_index,
            "text_input": self.text_input,
            "text_norm": self.text_norm,
            "feedback": feedback_to_mask(self.feedback),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "GuessLine":
        return cls(
            guess_index=int(raw["guess_index"]),
            text_input=raw.get("text_input", raw["text_norm"]),
            text_norm=raw["text_norm"],
            feedback=feedback_from_mask(raw["feedback"]),
            created_at=raw.get("created_at", ""),
        )


@dataclass(frozen=True)
class Hint:
    """A revealed solution letter."""

    letter: str
    position: int

    def to_dict(self) -> Dict[str, Any]:
        return {"letter": self.letter, "position": self.position}


@dataclass(frozen=True)
class PuzzleSnapshot:
    puzzle_id: int
    mode: GameMode
    letters: int
    solution: str
    seed: str = ""
    calendar_date: Optional[str] = None

    @property
    def max_attempts(self) -> int:
        if self.mode is GameMode.ARCADE:
            return self.letters + 1
        return Config.DAILY_MAX_ATTEMPTS

    @property
    def theme(self) -> str:
        if self.mode is GameMode.ARCADE:
            return parse_arcade_theme(self.seed)
        return DEFAULT_THEME


@dataclass(frozen=True)
class SessionState:
    session_id: int
    profile_id: int
    puzzle_id: int
    mode: GameMode
    started_at: str
    hard_mode: bool = False
    status: SessionStatus = SessionStatus.PLAYING
    result: Optional[SessionResult] = None
    attempts_used: int = 0
    lines: Tuple[GuessLine, ...] = ()
    hints: Tuple[Hint, ...] = ()
    hidden_attempts: Tuple[GuessLine, ...] = ()
    ended_at: Optional[str] = None
    version: int = 0

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.PLAYING


@dataclass(frozen=True)
class Transition:
    """Outcome of one state machine step.

    ``line`` is a guess line to append, ``removed_line`` one to delete.
    """

    state: SessionState
    line: Optional[GuessLine] = None
    removed_line: Optional[GuessLine] = None
    hint: Optional[Hint] = None
    consumed: Optional[str] = None
    entitlements_remaining: Optional[int] = None
    changed: bool = field(default=True)

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def attempts_used(self) -> int:
        return self.state.attempts_used


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStateMachine:
    """Applies guesses, hints and extra tries to a session snapshot."""

    def __init__(
        self,
        ledger: EntitlementLedger,
        dictionary: Dictionary,
        *,
        rng: Optional[random.Random] = None,
        treat_yo_as_ye: Optional[bool] = None,
        max_hints: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ledger = ledger
        self._dictionary = dictionary
        self._rng = rng or random.Random()
        self._treat_yo_as_ye = Config.TREAT_YO_AS_YE if treat_yo_as_ye is None else treat_yo_as_ye
        self._max_hints = Config.MAX_HINTS if max_hints is None else max_hints
        self._clock = clock

    def _now(self) -> str:
        return self._clock().isoformat()

    def _solution(self, puzzle: PuzzleSnapshot) -> str:
        if self._treat_yo_as_ye:
            return puzzle.solution.replace("Ё", "Е")
        return puzzle.solution

    async def submit_guess(self, state: SessionState, puzzle: PuzzleSnapshot, raw_guess: str) -> Transition:
        if state.puzzle_id != puzzle.puzzle_id:
            raise ValueError(f"Session {state.session_id} does not belong to puzzle {puzzle.puzzle_id}")

        if not state.is_active:
            raise ConflictError("Игра уже завершена.")

        max_attempts = puzzle.max_attempts
        if state.attempts_used >= max_attempts:
            raise ConflictError("Попытки закончились.")

        text_norm = normalize_guess(raw_guess, self._treat_yo_as_ye)
        if len(text_norm) != puzzle.letters:
            raise ValidationError(f"Неверная длина слова: нужно {puzzle.letters} букв.")

        if not self._dictionary.is_allowed_guess(text_norm, puzzle.theme):
            raise ValidationError("Слово не найдено в словаре.")

        if any(line.text_norm == text_norm for line in state.lines):
            raise ValidationError("Это слово уже было.")

        if state.hard_mode:
            violation = validate_hard_mode(state.lines, text_norm)
            if violation is not None:
                raise violation

        feedback = evaluate_guess(text_norm, self._solution(puzzle))
        now = self._now()
        line = GuessLine(
            guess_index=len(state.lines) + 1,
            text_input=raw_guess.strip(),
            text_norm=text_norm,
            feedback=feedback,
            created_at=now,
        )

        attempts_used = state.attempts_used + 1
        new_state = replace(state, attempts_used=attempts_used, lines=state.lines + (line,))

        if is_solved(feedback):
            new_state = replace(new_state, status=SessionStatus.WON, result=SessionResult.WIN, ended_at=now)
            logger.info(f"Session {state.session_id} won in {attempts_used} attempts")
        elif attempts_used >= max_attempts:
            new_state = replace(new_state, status=SessionStatus.LOST, result=SessionResult.LOSE, ended_at=now)
            logger.info(f"Session {state.session_id} lost after {attempts_used} attempts")

        return Transition(state=new_state, line=line)

    async def use_hint(self, state: SessionState, puzzle: PuzzleSnapshot) -> Transition:
        if state.mode is not GameMode.ARCADE:
            raise ConflictError("Подсказки доступны только в аркаде.")
        if not state.is_active:
            raise ConflictError("Подсказки нельзя использовать в завершённой игре.")

        if len(state.hints) >= self._max_hints:
            return Transition(state=state, changed=False)

        revealed = {hint.position for hint in state.hints}
        available = [position for position in range(puzzle.letters) if position not in revealed]
        if not available:
            return Transition(state=state, changed=False)

        remaining = await self._ledger.consume(state.profile_id, Product.ARCADE_HINT)

        position = self._rng.choice(available)
        hint = Hint(letter=puzzle.solution[position], position=position)
        logger.info(f"Session {state.session_id} revealed position {position}")

        return Transition(
            state=replace(state, hints=state.hints + (hint,)),
            hint=hint,
            consumed=Product.ARCADE_HINT.value,
            entitlements_remaining=remaining,
        )

    async def resume_with_extra_try(self, state: SessionState) -> Transition:
        """Reopen a lost arcade session by undoing its last failing guess."""
        if state.mode is not GameMode.ARCADE:
            raise ConflictError("Дополнительная попытка доступна только в аркаде.")
        if state.status is not SessionStatus.LOST:
            raise ConflictError("Дополнительная попытка доступна только после проигрыша.")
        if not state.lines:
            raise ConflictError("Нет попытки, которую можно отменить.")

        remaining = await self._ledger.consume(state.profile_id, Product.ARCADE_EXTRA_TRY)

        failed = state.lines[-1]
        new_state = replace(
            state,
            status=SessionStatus.PLAYING,
            result=None,
            ended_at=None,
            attempts_used=state.attempts_used - 1,
            lines=state.lines[:-1],
            hidden_attempts=state.hidden_attempts + (failed,),
        )
        logger.info(f"Session {state.session_id} resumed with an extra try")

        return Transition(
            state=new_state,
            removed_line=failed,
            consumed=Product.ARCADE_EXTRA_TRY.value,
            entitlements_remaining=remaining,
        )

    def finish(self, state: SessionState) -> Transition:
        """Accept a loss without spending an extra try."""
        if state.status is not SessionStatus.LOST:
            raise ConflictError("Завершить можно только проигранную игру.")

        return Transition(
            state=replace(state, status=SessionStatus.CLOSED, result=SessionResult.LOSE, ended_at=self._now()),
        )

    def acknowledge(self, state: SessionState) -> Transition:
        """Close a won session once the player has seen the result."""
        if state.status is not SessionStatus.WON:
            raise ConflictError("Закрыть можно только выигранную игру.")

        return Transition(state=replace(state, status=SessionStatus.CLOSED))


__all__ = [
    "GameMode",
    "GuessLine",
    "Hint",
    "PuzzleSnapshot",
    "SessionResult",
    "SessionState",
    "SessionStatus",
    "SessionStateMachine",
    "Transition",
]
