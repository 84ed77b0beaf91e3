"""Nightly rollover: publish tomorrow's daily puzzle and reset daily state."""

from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slovo.config import Config
from slovo.database import (
    AsyncSessionLocal,
    add_used_solution,
    create_daily_puzzle,
    get_daily_puzzle,
    get_winner_profile_ids,
    list_used_solutions,
    purge_daily_puzzles_before,
    replenish_arcade_credits,
    reset_streaks_except,
    reset_used_solutions,
)

from .dictionary import Dictionary

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    name: str
    ok: bool
    detail: str = ""


@dataclass
class RolloverReport:
    """What one rollover run did, step by step."""

    run_date: str
    target_date: str
    steps: List[StepResult] = field(default_factory=list)
    puzzle_id: Optional[int] = None
    puzzle_created: bool = False
    cycle_reset: bool = False
    credits_replenished: int = 0
    streaks_reset: int = 0
    streak_reset_skipped: bool = False
    purged_puzzles: int = 0

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    def as_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["ok"] = self.ok
        return payload


class RotationScheduler:
    """Runs the rollover steps independently of each other.

    Each step is idempotent for a given date and runs in its own transaction;
    a failing step is reported and the remaining steps still run.
    """

    def __init__(
        self,
        dictionary: Dictionary,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        rng: Optional[random.Random] = None,
        word_length: Optional[int] = None,
        arcade_credits: Optional[int] = None,
        retention_days: Optional[int] = None,
    ) -> None:
        self._dictionary = dictionary
        self._session_factory = session_factory or AsyncSessionLocal
        self._rng = rng or random.Random()
        self._word_length = word_length or Config.DAILY_WORD_LENGTH
        self._arcade_credits = Config.ARCADE_CREDITS_MAX if arcade_credits is None else arcade_credits
        self._retention_days = Config.PUZZLE_RETENTION_DAYS if retention_days is None else retention_days

    async def run(self, today: Optional[date] = None) -> RolloverReport:
        today = today or datetime.now(timezone.utc).date()
        report = RolloverReport(
            run_date=today.isoformat(),
            target_date=(today + timedelta(days=1)).isoformat(),
        )
        logger.info(f"Nightly rollover started for {report.target_date}")

        steps: List[tuple[str, Callable[[date, RolloverReport], Awaitable[str]]]] = [
            ("publish_puzzle", self.publish_next_puzzle),
            ("replenish_credits", self.replenish_credits),
            ("reset_streaks", self.reset_streaks),
            ("purge_puzzles", self.purge_old_puzzles),
        ]
        for name, step in steps:
            try:
                detail = await step(today, report)
            except Exception as exc:
                logger.exception(f"Rollover step {name} failed: {exc}")
                report.steps.append(StepResult(name=name, ok=False, detail=str(exc)))
            else:
                report.steps.append(StepResult(name=name, ok=True, detail=detail))

        logger.info(f"Nightly rollover finished for {report.target_date}, ok={report.ok}")
        return report

    async def publish_next_puzzle(self, today: date, report: RolloverReport) -> str:
        target = (today + timedelta(days=1)).isoformat()

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    existing = await get_daily_puzzle(db, target, published_only=False)
                    if existing is not None:
                        report.puzzle_id = existing.id
                        if existing.status == "published":
                            return f"puzzle for {target} already published"
                        existing.status = "published"
                        return f"draft puzzle for {target} published"

                    candidates = self._dictionary.solutions(self._word_length)
                    if not candidates:
                        raise RuntimeError(f"No {self._word_length}-letter solution words available")

                    used = await list_used_solutions(db)
                    pool = [word for word in candidates if word not in used]
                    if not pool:
                        pool = list(candidates)
                        report.cycle_reset = True
                        logger.info(f"Solution pool exhausted, starting a new cycle of {len(pool)} words")

                    word = self._rng.choice(sorted(pool))
                    puzzle = await create_daily_puzzle(db, target, word)
                    if report.cycle_reset:
                        await reset_used_solutions(db, word, target)
                    else:
                        await add_used_solution(db, word, target)
                    report.puzzle_id = puzzle.id
        except IntegrityError:
            # another rollover published the same date first
            report.cycle_reset = False
            logger.info(f"Daily puzzle for {target} was published concurrently")
            return f"puzzle for {target} published concurrently"

        report.puzzle_created = True
        logger.info(f"Published daily puzzle {report.puzzle_id} for {target}")
        return f"published puzzle {report.puzzle_id} for {target}"

    async def replenish_credits(self, today: date, report: RolloverReport) -> str:
        async with self._session_factory() as db:
            async with db.begin():
                report.credits_replenished = await replenish_arcade_credits(db, self._arcade_credits)
        return f"{report.credits_replenished} profiles replenished"

    async def reset_streaks(self, today: date, report: RolloverReport) -> str:
        yesterday = (today - timedelta(days=1)).isoformat()
        async with self._session_factory() as db:
            async with db.begin():
                puzzle = await get_daily_puzzle(db, yesterday, published_only=False)
                if puzzle is None:
                    report.streak_reset_skipped = True
                    logger.warning(f"No daily puzzle found for {yesterday}, streak reset skipped")
                    return f"skipped: no daily puzzle for {yesterday}"

                winners = await get_winner_profile_ids(db, puzzle.id)
                report.streaks_reset = await reset_streaks_except(db, winners)

        logger.info(f"Reset {report.streaks_reset} streaks, {len(winners)} winners kept")
        return f"{report.streaks_reset} streaks reset"

    async def purge_old_puzzles(self, today: date, report: RolloverReport) -> str:
        cutoff = (today - timedelta(days=self._retention_days)).isoformat()
        async with self._session_factory() as db:
            async with db.begin():
                report.purged_puzzles = await purge_daily_puzzles_before(db, cutoff)
        return f"{report.purged_puzzles} puzzles older than {cutoff} purged"


__all__ = ["RotationScheduler", "RolloverReport", "StepResult"]
