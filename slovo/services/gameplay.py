"""Request-level game operations: load state, run a transition, persist it.

Every operation runs in one database transaction. Session writes are guarded
by the row version, entitlement spending by a conditional UPDATE in the same
transaction, so a lost race rolls everything back and is retried once.
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slovo.config import Config
from slovo.core.dictionary import ARCADE_THEMES, DEFAULT_THEME, Dictionary
from slovo.core.errors import ExhaustedError, NotFoundError, RaceLostError, RateLimitedError, ValidationError
from slovo.core.feedback import TileState, build_keyboard_state, feedback_from_mask, feedback_to_mask
from slovo.core.ledger import EntitlementLedger, Product
from slovo.core.rate_limit import RateLimiter, build_rate_limiter
from slovo.core.session_machine import (
    GameMode,
    GuessLine,
    Hint,
    PuzzleSnapshot,
    SessionResult,
    SessionState,
    SessionStateMachine,
    SessionStatus,
    Transition,
)
from slovo.database import (
    AsyncSessionLocal,
    GameSession,
    Guess,
    Puzzle,
    apply_session_transition,
    create_arcade_puzzle,
    create_game_session,
    delete_guess,
    delete_other_arcade_puzzles,
    get_daily_puzzle,
    get_game_session,
    get_latest_arcade_session,
    get_profile_by_id,
    get_profile_puzzle_session,
    get_puzzle_by_id,
    insert_guess,
    list_profile_purchases,
    list_session_guesses,
    record_daily_result,
    set_arcade_credits,
    spend_arcade_credit,
)
from slovo.services.purchases import PurchaseRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

ARCADE_PRODUCTS = (Product.ARCADE_HINT.value, Product.ARCADE_EXTRA_TRY.value)
STATUS_PURCHASES_LIMIT = 5


def puzzle_snapshot(puzzle: Puzzle) -> PuzzleSnapshot:
    return PuzzleSnapshot(
        puzzle_id=puzzle.id,
        mode=GameMode(puzzle.mode),
        letters=puzzle.letters,
        solution=puzzle.solution,
        seed=puzzle.seed,
        calendar_date=puzzle.calendar_date,
    )


def session_state(row: GameSession, guesses: List[Guess]) -> SessionState:
    lines = tuple(
        GuessLine(
            guess_index=guess.guess_index,
            text_input=guess.text_input,
            text_norm=guess.text_norm,
            feedback=feedback_from_mask(json.loads(guess.feedback_mask)),
            created_at=guess.created_at,
        )
        for guess in guesses
    )
    hints = tuple(Hint(letter=raw["letter"], position=int(raw["position"])) for raw in json.loads(row.hints_used or "[]"))
    hidden = tuple(GuessLine.from_dict(raw) for raw in json.loads(row.hidden_attempts or "[]"))

    return SessionState(
        session_id=row.id,
        profile_id=row.profile_id,
        puzzle_id=row.puzzle_id,
        mode=GameMode(row.mode),
        started_at=row.started_at,
        hard_mode=row.hard_mode,
        status=SessionStatus(row.status),
        result=SessionResult(row.result) if row.result else None,
        attempts_used=row.attempts_used,
        lines=lines,
        hints=hints,
        hidden_attempts=hidden,
        ended_at=row.ended_at,
        version=row.version,
    )


def _session_values(state: SessionState) -> Dict[str, object]:
    return {
        "status": state.status.value,
        "result": state.result.value if state.result else None,
        "attempts_used": state.attempts_used,
        "hard_mode": state.hard_mode,
        "hints_used": json.dumps([hint.to_dict() for hint in state.hints], ensure_ascii=False),
        "hidden_attempts": json.dumps([line.to_dict() for line in state.hidden_attempts], ensure_ascii=False),
        "ended_at": state.ended_at,
    }


@dataclass
class GameResult:
    """What a caller gets back from any session operation."""

    state: SessionState
    puzzle: PuzzleSnapshot
    line: Optional[GuessLine] = None
    hint: Optional[Hint] = None
    entitlements: Dict[str, int] = field(default_factory=dict)
    arcade_credits: Optional[int] = None

    @property
    def session_id(self) -> int:
        return self.state.session_id

    @property
    def status(self) -> str:
        """``playing``, ``won`` or ``lost``; a closed session reports its result."""
        if self.state.status is SessionStatus.CLOSED:
            return "won" if self.state.result is SessionResult.WIN else "lost"
        return self.state.status.value

    @property
    def attempts_used(self) -> int:
        return self.state.attempts_used

    @property
    def max_attempts(self) -> int:
        return self.puzzle.max_attempts

    @property
    def solution(self) -> Optional[str]:
        if self.state.status is SessionStatus.PLAYING:
            return None
        if self.state.status is SessionStatus.LOST and self.state.mode is GameMode.ARCADE:
            # still resumable with an extra try
            return None
        return self.puzzle.solution

    @property
    def keyboard(self) -> Dict[str, TileState]:
        return build_keyboard_state((line.text_norm, line.feedback) for line in self.state.lines)

    def as_dict(self) -> Dict[str, object]:
        return {
            "sessionId": self.state.session_id,
            "puzzleId": self.puzzle.puzzle_id,
            "mode": self.state.mode.value,
            "status": self.status,
            "attemptsUsed": self.attempts_used,
            "maxAttempts": self.max_attempts,
            "letters": self.puzzle.letters,
            "hardMode": self.state.hard_mode,
            "line": self.line.to_dict() if self.line else None,
            "lines": [line.to_dict() for line in self.state.lines],
            "hints": [hint.to_dict() for hint in self.state.hints],
            "hiddenAttempts": len(self.state.hidden_attempts),
            "entitlements": dict(self.entitlements),
            "arcadeCredits": self.arcade_credits,
            "solution": self.solution,
        }


@dataclass
class ProfileStatus:
    profile_id: int
    arcade_credits: int
    streak_current: int
    streak_max: int
    entitlements: Dict[str, int]
    current: Optional[GameResult] = None
    purchases: List[PurchaseRecord] = field(default_factory=list)


class GameplayService:
    """Entry point for the bot and any other transport."""

    def __init__(
        self,
        dictionary: Dictionary,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        ledger: Optional[EntitlementLedger] = None,
        rate_limiter: Optional[RateLimiter] = None,
        rng: Optional[random.Random] = None,
        treat_yo_as_ye: Optional[bool] = None,
        arcade_unlimited: Optional[bool] = None,
    ) -> None:
        self._dictionary = dictionary
        self._session_factory = session_factory or AsyncSessionLocal
        self._ledger = ledger or EntitlementLedger(self._session_factory)
        self._rate_limiter = rate_limiter or build_rate_limiter()
        self._rng = rng or random.Random()
        self._treat_yo_as_ye = treat_yo_as_ye
        self._arcade_unlimited = Config.ARCADE_UNLIMITED if arcade_unlimited is None else arcade_unlimited

    @property
    def ledger(self) -> EntitlementLedger:
        return self._ledger

    def _machine(self, db: AsyncSession) -> SessionStateMachine:
        return SessionStateMachine(
            self._ledger.bind(db),
            self._dictionary,
            rng=self._rng,
            treat_yo_as_ye=self._treat_yo_as_ye,
        )

    async def _run(self, name: str, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        for attempt in range(2):
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        return await operation(db)
            except RaceLostError:
                if attempt:
                    logger.warning(f"{name} lost a storage race twice, giving up")
                    raise
                logger.info(f"{name} lost a storage race, retrying once")
        raise RaceLostError()

    async def _load(self, db: AsyncSession, profile_id: int, session_id: int) -> Tuple[SessionState, PuzzleSnapshot]:
        row = await get_game_session(db, session_id)
        if row is None or row.profile_id != profile_id:
            raise NotFoundError("Игра не найдена.")

        puzzle = await get_puzzle_by_id(db, row.puzzle_id)
        if puzzle is None:
            raise NotFoundError("Загадка не найдена.")

        guesses = await list_session_guesses(db, row.id)
        return session_state(row, guesses), puzzle_snapshot(puzzle)

    async def _persist(self, db: AsyncSession, before: SessionState, transition: Transition) -> SessionState:
        if transition.line is not None:
            line = transition.line
            await insert_guess(
                db,
                session_id=before.session_id,
                guess_index=line.guess_index,
                text_input=line.text_input,
                text_norm=line.text_norm,
                feedback_mask=feedback_to_mask(line.feedback),
                created_at=line.created_at,
            )
        if transition.removed_line is not None:
            await delete_guess(db, before.session_id, transition.removed_line.guess_index)

        version = await apply_session_transition(
            db,
            before.session_id,
            before.version,
            **_session_values(transition.state),
        )
        return replace(transition.state, version=version)

    async def _result(
        self,
        db: AsyncSession,
        state: SessionState,
        puzzle: PuzzleSnapshot,
        *,
        line: Optional[GuessLine] = None,
        hint: Optional[Hint] = None,
    ) -> GameResult:
        entitlements: Dict[str, int] = {}
        if state.mode is GameMode.ARCADE:
            ledger = self._ledger.bind(db)
            for product_id in ARCADE_PRODUCTS:
                entitlements[product_id] = await ledger.available(state.profile_id, product_id)
        return GameResult(state=state, puzzle=puzzle, line=line, hint=hint, entitlements=entitlements)

    async def _require_profile(self, db: AsyncSession, profile_id: int):
        profile = await get_profile_by_id(db, profile_id)
        if profile is None:
            raise NotFoundError("Профиль не найден.")
        return profile

    async def start_daily(self, profile_id: int, hard_mode: bool = False, today: Optional[date] = None) -> GameResult:
        """Open (or return) the caller's session on today's daily puzzle."""
        today_str = (today or datetime.now(timezone.utc).date()).isoformat()

        async def operation(db: AsyncSession) -> GameResult:
            await self._require_profile(db, profile_id)
            puzzle = await get_daily_puzzle(db, today_str)
            if puzzle is None:
                raise NotFoundError("Сегодняшняя загадка ещё не опубликована.")

            row = await get_profile_puzzle_session(db, profile_id, puzzle.id)
            if row is None:
                row = await create_game_session(db, profile_id, puzzle.id, GameMode.DAILY.value, hard_mode)
                logger.info(f"Profile {profile_id} started daily session {row.id}")
                return await self._result(db, session_state(row, []), puzzle_snapshot(puzzle))

            state = session_state(row, await list_session_guesses(db, row.id))
            if state.hard_mode != hard_mode and state.is_active and not state.lines:
                changed = replace(state, hard_mode=hard_mode)
                state = await self._persist(db, state, Transition(state=changed))
            return await self._result(db, state, puzzle_snapshot(puzzle))

        return await self._run("start_daily", operation)

    async def start_arcade(
        self,
        profile_id: int,
        length: int,
        theme: str = DEFAULT_THEME,
        hard_mode: bool = False,
    ) -> GameResult:
        """Spend an arcade credit and open a fresh arcade session."""
        if length not in Config.arcade_lengths():
            raise ValidationError(
                f"Неверная длина слова. Допустимо от {Config.ARCADE_MIN_LENGTH} до {Config.ARCADE_MAX_LENGTH}."
            )
        if theme not in ARCADE_THEMES:
            raise ValidationError(f"Неизвестная тема. Доступны: {', '.join(ARCADE_THEMES)}.")

        words = self._dictionary.solutions(length, theme)
        if not words:
            raise ValidationError("Нет слов такой длины.")

        async def operation(db: AsyncSession) -> GameResult:
            profile = await self._require_profile(db, profile_id)
            if not self._arcade_unlimited and not await spend_arcade_credit(db, profile_id):
                raise ExhaustedError("arcade_credit", "Нет доступных аркад. Купите новую игру.")

            solution = self._rng.choice(words)
            puzzle = await create_arcade_puzzle(db, profile_id, solution, theme)
            row = await create_game_session(db, profile_id, puzzle.id, GameMode.ARCADE.value, hard_mode)
            removed = await delete_other_arcade_puzzles(db, profile_id, puzzle.id)
            if removed:
                logger.debug(f"Removed {removed} old arcade puzzles of profile {profile_id}")

            await db.refresh(profile)
            result = await self._result(db, session_state(row, []), puzzle_snapshot(puzzle))
            result.arcade_credits = profile.arcade_credits
            logger.info(f"Profile {profile_id} started arcade session {row.id} ({length} letters, {theme})")
            return result

        return await self._run("start_arcade", operation)

    async def unlock_arcade(self, profile_id: int) -> int:
        """Trade one ``arcade_new_game`` unit for a full set of arcade credits."""

        async def operation(db: AsyncSession) -> int:
            await self._require_profile(db, profile_id)
            await self._ledger.bind(db).consume(profile_id, Product.ARCADE_NEW_GAME)
            await set_arcade_credits(db, profile_id, Config.ARCADE_CREDITS_MAX)
            return Config.ARCADE_CREDITS_MAX

        credits = await self._run("unlock_arcade", operation)
        logger.info(f"Profile {profile_id} unlocked arcade, credits restored to {credits}")
        return credits

    async def get_session(self, profile_id: int, session_id: int) -> GameResult:
        async def operation(db: AsyncSession) -> GameResult:
            state, puzzle = await self._load(db, profile_id, session_id)
            return await self._result(db, state, puzzle)

        return await self._run("get_session", operation)

    async def find_current_arcade(self, profile_id: int) -> Optional[GameResult]:
        """Latest arcade session that is not closed, including a lost one awaiting /extra or /finish."""

        async def operation(db: AsyncSession) -> Optional[GameResult]:
            row = await get_latest_arcade_session(db, profile_id)
            if row is None:
                return None
            state, snapshot = await self._load(db, profile_id, row.id)
            return await self._result(db, state, snapshot)

        return await self._run("find_current_arcade", operation)

    async def find_current_session(
        self,
        profile_id: int,
        today: Optional[date] = None,
        *,
        include_lost_arcade: bool = False,
    ) -> Optional[GameResult]:
        """Arcade session in play if any, otherwise today's daily session.

        Guesses go to the returned session, so a lost arcade session is skipped
        unless ``include_lost_arcade`` is set.
        """
        today_str = (today or datetime.now(timezone.utc).date()).isoformat()
        arcade_statuses = {SessionStatus.PLAYING.value}
        if include_lost_arcade:
            arcade_statuses.add(SessionStatus.LOST.value)

        async def operation(db: AsyncSession) -> Optional[GameResult]:
            row = await get_latest_arcade_session(db, profile_id)
            if row is None or row.status not in arcade_statuses:
                row = None
                puzzle = await get_daily_puzzle(db, today_str)
                if puzzle is not None:
                    row = await get_profile_puzzle_session(db, profile_id, puzzle.id)
            if row is None:
                return None
            state, snapshot = await self._load(db, profile_id, row.id)
            return await self._result(db, state, snapshot)

        return await self._run("find_current_session", operation)

    async def submit_guess(self, profile_id: int, session_id: int, raw_guess: str) -> GameResult:
        if not await self._rate_limiter.allow("guess", str(profile_id)):
            raise RateLimitedError()

        async def operation(db: AsyncSession) -> GameResult:
            state, puzzle = await self._load(db, profile_id, session_id)
            transition = await self._machine(db).submit_guess(state, puzzle, raw_guess)
            new_state = await self._persist(db, state, transition)

            if new_state.mode is GameMode.DAILY and new_state.status in (SessionStatus.WON, SessionStatus.LOST):
                played_on = puzzle.calendar_date or datetime.now(timezone.utc).date().isoformat()
                await record_daily_result(db, profile_id, new_state.status is SessionStatus.WON, played_on)

            return await self._result(db, new_state, puzzle, line=transition.line)

        return await self._run("submit_guess", operation)

    async def use_hint(self, profile_id: int, session_id: int) -> GameResult:
        async def operation(db: AsyncSession) -> GameResult:
            state, puzzle = await self._load(db, profile_id, session_id)
            transition = await self._machine(db).use_hint(state, puzzle)
            if transition.changed:
                state = await self._persist(db, state, transition)
            return await self._result(db, state, puzzle, hint=transition.hint)

        return await self._run("use_hint", operation)

    async def resume_with_extra_try(self, profile_id: int, session_id: int) -> GameResult:
        async def operation(db: AsyncSession) -> GameResult:
            state, puzzle = await self._load(db, profile_id, session_id)
            transition = await self._machine(db).resume_with_extra_try(state)
            new_state = await self._persist(db, state, transition)
            return await self._result(db, new_state, puzzle)

        return await self._run("resume_with_extra_try", operation)

    async def finish(self, profile_id: int, session_id: int) -> GameResult:
        async def operation(db: AsyncSession) -> GameResult:
            state, puzzle = await self._load(db, profile_id, session_id)
            transition = self._machine(db).finish(state)
            new_state = await self._persist(db, state, transition)
            return await self._result(db, new_state, puzzle)

        return await self._run("finish", operation)

    async def acknowledge(self, profile_id: int, session_id: int) -> GameResult:
        async def operation(db: AsyncSession) -> GameResult:
            state, puzzle = await self._load(db, profile_id, session_id)
            transition = self._machine(db).acknowledge(state)
            new_state = await self._persist(db, state, transition)
            return await self._result(db, new_state, puzzle)

        return await self._run("acknowledge", operation)

    async def get_status(self, profile_id: int, today: Optional[date] = None) -> ProfileStatus:
        """Credits, streaks, entitlement balances and the current session, if any."""

        async def operation(db: AsyncSession) -> ProfileStatus:
            profile = await self._require_profile(db, profile_id)
            return ProfileStatus(
                profile_id=profile.id,
                arcade_credits=profile.arcade_credits,
                streak_current=profile.streak_current,
                streak_max=profile.streak_max,
                entitlements=await self._ledger.bind(db).balances(profile_id),
                purchases=[
                    PurchaseRecord.from_row(row)
                    for row in await list_profile_purchases(db, profile_id, limit=STATUS_PURCHASES_LIMIT)
                ],
            )

        status = await self._run("get_status", operation)
        status.current = await self.find_current_session(profile_id, today, include_lost_arcade=True)
        return status


__all__ = ["GameResult", "GameplayService", "ProfileStatus", "puzzle_snapshot", "session_state"]
