"""Tests for the nightly rollover."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest
from sqlalchemy import func, select

from slovo.core.dictionary import WordList
from slovo.core.rotation import RotationScheduler
from slovo.database import (
    Puzzle,
    add_used_solution,
    apply_session_transition,
    create_daily_puzzle,
    create_game_session,
    get_daily_puzzle,
    get_game_session,
    get_profile_by_id,
    insert_guess,
    list_used_solutions,
    set_arcade_credits,
)

TODAY = date(2026, 3, 1)


def _scheduler(word_list, session_factory, rng, **kwargs) -> RotationScheduler:
    return RotationScheduler(word_list, session_factory, rng=rng, word_length=5, arcade_credits=3, retention_days=2, **kwargs)


@pytest.mark.asyncio
async def test_publishes_tomorrow_once(session_factory, word_list, rng) -> None:
    scheduler = _scheduler(word_list, session_factory, rng)

    first = await scheduler.run(TODAY)
    second = await scheduler.run(TODAY)

    assert first.ok
    assert first.target_date == "2026-03-02"
    assert first.puzzle_created
    assert not second.puzzle_created
    assert second.puzzle_id == first.puzzle_id

    async with session_factory() as db:
        puzzle = await get_daily_puzzle(db, "2026-03-02")
        assert puzzle is not None
        assert puzzle.seed == "daily-2026-03-02"
        assert puzzle.solution in word_list.solutions(5)
        assert await list_used_solutions(db) == {puzzle.solution}


@pytest.mark.asyncio
async def test_concurrent_rollovers_publish_once(session_factory, word_list, rng) -> None:
    first, second = await asyncio.gather(
        _scheduler(word_list, session_factory, rng).run(TODAY),
        _scheduler(word_list, session_factory, rng).run(TODAY),
    )

    assert first.ok and second.ok
    assert [first.puzzle_created, second.puzzle_created].count(True) == 1

    async with session_factory() as db:
        count = await db.scalar(
            select(func.count()).select_from(Puzzle).where(Puzzle.calendar_date == "2026-03-02")
        )
        puzzle = await get_daily_puzzle(db, "2026-03-02")
        assert count == 1
        assert await list_used_solutions(db) == {puzzle.solution}


@pytest.mark.asyncio
async def test_unused_word_is_preferred(session_factory, word_list, rng) -> None:
    candidates = word_list.solutions(5)
    async with session_factory() as db:
        async with db.begin():
            for word in candidates[:-1]:
                await add_used_solution(db, word, "2026-01-01")

    report = await _scheduler(word_list, session_factory, rng).run(TODAY)

    assert not report.cycle_reset
    async with session_factory() as db:
        puzzle = await get_daily_puzzle(db, "2026-03-02")
        assert puzzle.solution == candidates[-1]
        assert await list_used_solutions(db) == set(candidates)


@pytest.mark.asyncio
async def test_exhausted_pool_resets_cycle_to_singleton(session_factory, word_list, rng) -> None:
    async with session_factory() as db:
        async with db.begin():
            for word in word_list.solutions(5):
                await add_used_solution(db, word, "2026-01-01")

    report = await _scheduler(word_list, session_factory, rng).run(TODAY)

    assert report.cycle_reset
    async with session_factory() as db:
        puzzle = await get_daily_puzzle(db, "2026-03-02")
        assert await list_used_solutions(db) == {puzzle.solution}


@pytest.mark.asyncio
async def test_credits_replenished(session_factory, word_list, rng, profile_id) -> None:
    async with session_factory() as db:
        async with db.begin():
            await set_arcade_credits(db, profile_id, 0)

    report = await _scheduler(word_list, session_factory, rng).run(TODAY)

    assert report.credits_replenished == 1
    async with session_factory() as db:
        profile = await get_profile_by_id(db, profile_id)
        assert profile.arcade_credits == 3


async def _finished_session(db, profile_id: int, puzzle_id: int, result: str) -> None:
    row = await create_game_session(db, profile_id, puzzle_id, "daily")
    await apply_session_transition(
        db, row.id, row.version, status="won" if result == "win" else "lost", result=result
    )


@pytest.mark.asyncio
async def test_streaks_reset_for_non_winners_only(
    session_factory, word_list, rng, profile_id, other_profile_id
) -> None:
    async with session_factory() as db:
        async with db.begin():
            puzzle = await create_daily_puzzle(db, "2026-02-28", "КНИГА")
            await _finished_session(db, profile_id, puzzle.id, "win")
            await _finished_session(db, other_profile_id, puzzle.id, "lose")
            for pid in (profile_id, other_profile_id):
                (await get_profile_by_id(db, pid)).streak_current = 3

    report = await _scheduler(word_list, session_factory, rng).run(TODAY)

    assert not report.streak_reset_skipped
    assert report.streaks_reset == 1
    async with session_factory() as db:
        assert (await get_profile_by_id(db, profile_id)).streak_current == 3
        assert (await get_profile_by_id(db, other_profile_id)).streak_current == 0


@pytest.mark.asyncio
async def test_missing_yesterday_skips_streak_reset(session_factory, word_list, rng, profile_id) -> None:
    async with session_factory() as db:
        async with db.begin():
            (await get_profile_by_id(db, profile_id)).streak_current = 4

    report = await _scheduler(word_list, session_factory, rng).run(TODAY)

    assert report.streak_reset_skipped
    assert report.ok
    step = next(step for step in report.steps if step.name == "reset_streaks")
    assert step.detail.startswith("skipped")
    async with session_factory() as db:
        assert (await get_profile_by_id(db, profile_id)).streak_current == 4


@pytest.mark.asyncio
async def test_old_puzzles_purged_with_their_sessions(session_factory, word_list, rng, profile_id) -> None:
    async with session_factory() as db:
        async with db.begin():
            old = await create_daily_puzzle(db, "2026-02-26", "СЛОВО")
            for day in ("2026-02-27", "2026-02-28", "2026-03-01"):
                await create_daily_puzzle(db, day, "ЛАМПА")
            row = await create_game_session(db, profile_id, old.id, "daily")
            await insert_guess(db, row.id, 1, "город", "ГОРОД", ["absent"] * 5)
            old_session_id = row.id

    report = await _scheduler(word_list, session_factory, rng).run(TODAY)

    assert report.purged_puzzles == 1
    async with session_factory() as db:
        assert await get_daily_puzzle(db, "2026-02-26", published_only=False) is None
        assert await get_daily_puzzle(db, "2026-02-27") is not None
        assert await get_game_session(db, old_session_id) is None


@pytest.mark.asyncio
async def test_failing_step_does_not_stop_the_rest(session_factory, rng, profile_id) -> None:
    empty = WordList.from_words(allowed=[], answers={"common": ["луна"]})
    async with session_factory() as db:
        async with db.begin():
            await set_arcade_credits(db, profile_id, 1)

    report = await _scheduler(empty, session_factory, rng).run(TODAY)

    assert not report.ok
    assert [step.name for step in report.steps] == [
        "publish_puzzle",
        "replenish_credits",
        "reset_streaks",
        "purge_puzzles",
    ]
    assert report.steps[0].ok is False
    assert all(step.ok for step in report.steps[1:])
    assert report.credits_replenished == 1
    assert report.as_dict()["ok"] is False
