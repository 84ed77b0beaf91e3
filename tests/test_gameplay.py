"""End-to-end tests of the gameplay service against SQLite."""

from __future__ import annotations

import asyncio
import random
from datetime import date

import pytest

from slovo.core.dictionary import WordList
from slovo.core.errors import (
    ConflictError,
    ExhaustedError,
    NotFoundError,
    RaceLostError,
    RateLimitedError,
    ValidationError,
)
from slovo.core.ledger import EntitlementLedger, Product
from slovo.core.rate_limit import InMemoryRateLimiter
from slovo.database import (
    apply_session_transition,
    create_daily_puzzle,
    get_profile_by_id,
    list_session_guesses,
)
from slovo.services.gameplay import GameplayService
from slovo.services.purchases import PurchaseService

TODAY = date(2026, 3, 1)
MISSES = ["мечта", "лодка", "сосна", "пирог", "масло", "тесто", "весна"]
SHORT_MISSES = ["стол", "стул", "ключ", "утка", "гриб"]


@pytest.fixture
def words() -> WordList:
    # one solution per length keeps arcade picks deterministic
    return WordList.from_words(
        allowed=MISSES + SHORT_MISSES,
        answers={"common": ["луна", "книга", "дорога"], "music": ["опера"]},
    )


@pytest.fixture
def service(words, session_factory) -> GameplayService:
    return GameplayService(
        words,
        session_factory,
        rate_limiter=InMemoryRateLimiter(max_requests=100, window_ms=10_000),
        rng=random.Random(3),
        treat_yo_as_ye=False,
        arcade_unlimited=False,
    )


async def _publish_today(session_factory, solution: str = "КНИГА") -> int:
    async with session_factory() as db:
        async with db.begin():
            puzzle = await create_daily_puzzle(db, TODAY.isoformat(), solution)
            return puzzle.id


@pytest.mark.asyncio
async def test_daily_requires_published_puzzle(service, profile_id) -> None:
    with pytest.raises(NotFoundError):
        await service.start_daily(profile_id, today=TODAY)


@pytest.mark.asyncio
async def test_daily_session_is_reused_and_hard_mode_locks_after_first_guess(
    service, session_factory, profile_id
) -> None:
    await _publish_today(session_factory)

    first = await service.start_daily(profile_id, today=TODAY)
    toggled = await service.start_daily(profile_id, hard_mode=True, today=TODAY)
    assert toggled.session_id == first.session_id
    assert toggled.state.hard_mode is True
    assert toggled.max_attempts == 6
    assert toggled.entitlements == {}

    await service.submit_guess(profile_id, first.session_id, "пирог")
    locked = await service.start_daily(profile_id, hard_mode=False, today=TODAY)
    assert locked.state.hard_mode is True
    assert locked.attempts_used == 1


@pytest.mark.asyncio
async def test_daily_win_bumps_streak(service, session_factory, profile_id) -> None:
    await _publish_today(session_factory)
    session = await service.start_daily(profile_id, today=TODAY)

    miss = await service.submit_guess(profile_id, session.session_id, "масло")
    assert miss.status == "playing"
    assert miss.line.guess_index == 1
    assert miss.solution is None

    win = await service.submit_guess(profile_id, session.session_id, "Книга")
    assert win.status == "won"
    assert win.attempts_used == 2
    assert win.solution == "КНИГА"

    async with session_factory() as db:
        profile = await get_profile_by_id(db, profile_id)
        assert profile.streak_current == 1
        assert profile.streak_max == 1
        assert profile.last_daily_played_at == TODAY.isoformat()

    closed = await service.acknowledge(profile_id, session.session_id)
    assert closed.state.status.value == "closed"
    assert closed.status == "won"


@pytest.mark.asyncio
async def test_daily_loss_stamps_play_without_streak(service, session_factory, profile_id) -> None:
    await _publish_today(session_factory)
    session = await service.start_daily(profile_id, today=TODAY)

    for word in MISSES[:6]:
        result = await service.submit_guess(profile_id, session.session_id, word)

    assert result.status == "lost"
    assert result.solution == "КНИГА"
    with pytest.raises(ConflictError):
        await service.submit_guess(profile_id, session.session_id, "книга")

    async with session_factory() as db:
        profile = await get_profile_by_id(db, profile_id)
        assert profile.streak_current == 0
        assert profile.last_daily_played_at == TODAY.isoformat()


@pytest.mark.asyncio
async def test_rejected_guess_changes_nothing(service, session_factory, profile_id) -> None:
    await _publish_today(session_factory)
    session = await service.start_daily(profile_id, today=TODAY)

    with pytest.raises(ValidationError):
        await service.submit_guess(profile_id, session.session_id, "абвгд")

    current = await service.get_session(profile_id, session.session_id)
    assert current.attempts_used == 0
    assert current.state.version == session.state.version


@pytest.mark.asyncio
async def test_stale_version_loses_the_race(service, session_factory, profile_id) -> None:
    await _publish_today(session_factory)
    session = await service.start_daily(profile_id, today=TODAY)
    version = session.state.version

    async with session_factory() as db:
        async with db.begin():
            await apply_session_transition(db, session.session_id, version, attempts_used=0)

    with pytest.raises(RaceLostError):
        async with session_factory() as db:
            async with db.begin():
                await apply_session_transition(db, session.session_id, version, attempts_used=0)


@pytest.mark.asyncio
async def test_lost_race_is_retried_once(service) -> None:
    calls = []

    async def flaky(db):
        calls.append(db)
        if len(calls) == 1:
            raise RaceLostError()
        return "done"

    assert await service._run("flaky", flaky) == "done"
    assert len(calls) == 2

    async def always_loses(db):
        calls.append(db)
        raise RaceLostError()

    calls.clear()
    with pytest.raises(RaceLostError):
        await service._run("always_loses", always_loses)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_arcade_start_spends_credits(service, session_factory, profile_id) -> None:
    first = await service.start_arcade(profile_id, 4)
    assert first.arcade_credits == 2
    assert first.max_attempts == 5
    assert first.puzzle.theme == "common"
    assert first.entitlements == {"arcade_hint": 0, "arcade_extra_try": 0}

    await service.start_arcade(profile_id, 5)
    third = await service.start_arcade(profile_id, 5, theme="music")
    assert third.arcade_credits == 0
    assert third.puzzle.solution == "ОПЕРА"
    assert third.puzzle.theme == "music"

    with pytest.raises(ExhaustedError) as exc_info:
        await service.start_arcade(profile_id, 5)
    assert exc_info.value.product_id == "arcade_credit"

    # older arcade sessions are dropped with their puzzles
    with pytest.raises(NotFoundError):
        await service.get_session(profile_id, first.session_id)


@pytest.mark.asyncio
@pytest.mark.parametrize("length, theme", [(3, "common"), (8, "common"), (5, "sport")])
async def test_arcade_start_validates_input(service, profile_id, length, theme) -> None:
    with pytest.raises(ValidationError):
        await service.start_arcade(profile_id, length, theme=theme)


@pytest.mark.asyncio
async def test_unlock_restores_credits(service, session_factory, profile_id) -> None:
    for _ in range(3):
        await service.start_arcade(profile_id, 5)

    with pytest.raises(ExhaustedError):
        await service.unlock_arcade(profile_id)

    await EntitlementLedger(session_factory).grant(profile_id, Product.ARCADE_NEW_GAME, 1)
    assert await service.unlock_arcade(profile_id) == 3

    status = await service.get_status(profile_id, today=TODAY)
    assert status.arcade_credits == 3
    assert status.entitlements["arcade_new_game"] == 0


@pytest.mark.asyncio
async def test_extra_try_flow(service, session_factory, profile_id) -> None:
    game = await service.start_arcade(profile_id, 5)
    for word in MISSES[:6]:
        lost = await service.submit_guess(profile_id, game.session_id, word)
    assert lost.status == "lost"
    assert lost.solution is None

    with pytest.raises(ExhaustedError):
        await service.resume_with_extra_try(profile_id, game.session_id)

    await EntitlementLedger(session_factory).grant(profile_id, Product.ARCADE_EXTRA_TRY, 1)
    resumed = await service.resume_with_extra_try(profile_id, game.session_id)

    assert resumed.status == "playing"
    assert resumed.attempts_used == 5
    assert resumed.entitlements["arcade_extra_try"] == 0
    assert len(resumed.state.hidden_attempts) == 1
    assert resumed.state.hidden_attempts[0].text_norm == "ТЕСТО"
    async with session_factory() as db:
        assert len(await list_session_guesses(db, game.session_id)) == 5

    won = await service.submit_guess(profile_id, game.session_id, "книга")
    assert won.status == "won"
    assert won.attempts_used == 6


@pytest.mark.asyncio
async def test_finish_closes_lost_arcade(service, profile_id) -> None:
    game = await service.start_arcade(profile_id, 4)
    with pytest.raises(ConflictError):
        await service.finish(profile_id, game.session_id)

    for word in SHORT_MISSES:
        result = await service.submit_guess(profile_id, game.session_id, word)
    assert result.status == "lost"

    closed = await service.finish(profile_id, game.session_id)
    assert closed.state.status.value == "closed"
    assert closed.status == "lost"
    assert closed.solution == "ЛУНА"
    with pytest.raises(ConflictError):
        await service.submit_guess(profile_id, game.session_id, "луна")
    with pytest.raises(ConflictError):
        await service.finish(profile_id, game.session_id)


@pytest.mark.asyncio
async def test_hint_is_persisted(service, session_factory, profile_id) -> None:
    game = await service.start_arcade(profile_id, 5)
    await EntitlementLedger(session_factory).grant(profile_id, Product.ARCADE_HINT, 1)

    result = await service.use_hint(profile_id, game.session_id)

    assert result.hint is not None
    assert "КНИГА"[result.hint.position] == result.hint.letter
    assert result.entitlements["arcade_hint"] == 0

    reloaded = await service.get_session(profile_id, game.session_id)
    assert reloaded.state.hints == (result.hint,)


@pytest.mark.asyncio
async def test_guess_rate_limit(words, session_factory, profile_id) -> None:
    limited = GameplayService(
        words,
        session_factory,
        rate_limiter=InMemoryRateLimiter(max_requests=1, window_ms=60_000),
        rng=random.Random(1),
        arcade_unlimited=True,
    )
    game = await limited.start_arcade(profile_id, 5)

    await limited.submit_guess(profile_id, game.session_id, "масло")
    with pytest.raises(RateLimitedError):
        await limited.submit_guess(profile_id, game.session_id, "пирог")


@pytest.mark.asyncio
async def test_foreign_session_is_not_found(service, profile_id, other_profile_id) -> None:
    game = await service.start_arcade(profile_id, 5)

    with pytest.raises(NotFoundError):
        await service.submit_guess(other_profile_id, game.session_id, "масло")
    with pytest.raises(NotFoundError):
        await service.get_session(profile_id, 9999)


@pytest.mark.asyncio
async def test_current_session_prefers_open_arcade(service, session_factory, profile_id) -> None:
    await _publish_today(session_factory)
    daily = await service.start_daily(profile_id, today=TODAY)
    assert (await service.find_current_session(profile_id, TODAY)).session_id == daily.session_id

    arcade = await service.start_arcade(profile_id, 5)
    assert (await service.find_current_session(profile_id, TODAY)).session_id == arcade.session_id

    await service.submit_guess(profile_id, arcade.session_id, "книга")
    await service.acknowledge(profile_id, arcade.session_id)
    assert (await service.find_current_session(profile_id, TODAY)).session_id == daily.session_id


@pytest.mark.asyncio
async def test_lost_arcade_does_not_capture_guesses(service, session_factory, profile_id) -> None:
    await _publish_today(session_factory)
    arcade = await service.start_arcade(profile_id, 5)
    for word in MISSES[:6]:
        lost = await service.submit_guess(profile_id, arcade.session_id, word)
    assert lost.status == "lost"

    daily = await service.start_daily(profile_id, today=TODAY)
    current = await service.find_current_session(profile_id, TODAY)
    assert current.session_id == daily.session_id

    won = await service.submit_guess(profile_id, current.session_id, "книга")
    assert won.status == "won"

    # the lost arcade is still reachable for /extra and /finish
    pending = await service.find_current_arcade(profile_id)
    assert pending.session_id == arcade.session_id
    assert pending.state.status.value == "lost"
    status = await service.get_status(profile_id, today=TODAY)
    assert status.current.session_id == arcade.session_id


@pytest.mark.asyncio
async def test_concurrent_guesses_are_serialized(service, session_factory, profile_id) -> None:
    await _publish_today(session_factory)
    session = await service.start_daily(profile_id, today=TODAY)

    await asyncio.gather(
        service.submit_guess(profile_id, session.session_id, "мечта"),
        service.submit_guess(profile_id, session.session_id, "лодка"),
    )

    current = await service.get_session(profile_id, session.session_id)
    assert current.attempts_used == 2
    async with session_factory() as db:
        guesses = await list_session_guesses(db, session.session_id)
    assert [guess.guess_index for guess in guesses] == [1, 2]
    assert {guess.text_norm for guess in guesses} == {"МЕЧТА", "ЛОДКА"}


@pytest.mark.asyncio
async def test_status_lists_recent_purchases(service, session_factory, profile_id, other_profile_id) -> None:
    purchases = PurchaseService(session_factory)
    await purchases.complete_purchase("charge-1", profile_id, "arcade_hint", 2)
    await purchases.complete_purchase("charge-2", profile_id, "arcade_extra_try")
    await purchases.complete_purchase("charge-3", other_profile_id, "arcade_new_game")

    status = await service.get_status(profile_id, today=TODAY)

    assert [purchase.charge_id for purchase in status.purchases] == ["charge-2", "charge-1"]
    assert status.purchases[1].product_id == "arcade_hint"
    assert status.purchases[1].quantity == 2
    assert status.entitlements["arcade_hint"] == 2
