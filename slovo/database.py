import json
import logging
from datetime import datetime, timezone
from typing import AsyncGenerator, Iterable, Optional, Sequence

from sqlalchemy import CheckConstraint, ForeignKey, UniqueConstraint, and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import Config
from .core.errors import RaceLostError

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class Profile(Base):
    """Player profile keyed by Telegram user ID."""
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    telegram_id: Mapped[int] = mapped_column(unique=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    language_code: Mapped[Optional[str]] = mapped_column(nullable=True)
    streak_current: Mapped[int] = mapped_column(default=0)
    streak_max: Mapped[int] = mapped_column(default=0)
    arcade_credits: Mapped[int] = mapped_column(default=3)
    last_daily_played_at: Mapped[Optional[str]] = mapped_column(nullable=True)  # YYYY-MM-DD
    created_at: Mapped[str] = mapped_column(nullable=False)

    def __repr__(self):
        return f"<Profile(id={self.id}, telegram_id={self.telegram_id}, streak={self.streak_current})>"


class Puzzle(Base):
    """Daily or arcade puzzle. Immutable once published."""
    __tablename__ = "puzzles"
    __table_args__ = (
        UniqueConstraint('mode', 'calendar_date', name='uq_puzzle_mode_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    mode: Mapped[str] = mapped_column(nullable=False)  # 'daily', 'arcade'
    calendar_date: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)  # YYYY-MM-DD, daily only
    letters: Mapped[int] = mapped_column(nullable=False)
    solution: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(nullable=False, default="published")  # 'draft', 'published', 'retired'
    seed: Mapped[str] = mapped_column(nullable=False)
    profile_id: Mapped[Optional[int]] = mapped_column(ForeignKey("profiles.id"), nullable=True, index=True)  # arcade owner
    created_at: Mapped[str] = mapped_column(nullable=False)

    def __repr__(self):
        return f"<Puzzle(id={self.id}, mode={self.mode}, date={self.calendar_date})>"


class GameSession(Base):
    """One attempt of a profile at a puzzle."""
    __tablename__ = "game_sessions"
    __table_args__ = (
        UniqueConstraint('profile_id', 'puzzle_id', name='uq_profile_puzzle_session'),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)
    puzzle_id: Mapped[int] = mapped_column(ForeignKey("puzzles.id"), index=True)
    mode: Mapped[str] = mapped_column(nullable=False)
    hard_mode: Mapped[bool] = mapped_column(default=False)
    status: Mapped[str] = mapped_column(nullable=False, default="playing")  # playing, won, lost, closed
    result: Mapped[Optional[str]] = mapped_column(nullable=True)  # win, lose
    attempts_used: Mapped[int] = mapped_column(default=0)
    hints_used: Mapped[str] = mapped_column(nullable=False, default="[]")  # JSON list of {letter, position}
    hidden_attempts: Mapped[str] = mapped_column(nullable=False, default="[]")  # JSON list of removed guess lines
    version: Mapped[int] = mapped_column(nullable=False, default=0)
    started_at: Mapped[str] = mapped_column(nullable=False)
    ended_at: Mapped[Optional[str]] = mapped_column(nullable=True)

    def __repr__(self):
        return f"<GameSession(id={self.id}, mode={self.mode}, status={self.status}, attempts={self.attempts_used})>"


class Guess(Base):
    """Append-only guess line of a session."""
    __tablename__ = "guesses"
    __table_args__ = (
        UniqueConstraint('session_id', 'text_norm', name='uq_session_guess_text'),
        UniqueConstraint('session_id', 'guess_index', name='uq_session_guess_index'),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("game_sessions.id"), index=True)
    guess_index: Mapped[int] = mapped_column(nullable=False)
    text_input: Mapped[str] = mapped_column(nullable=False)
    text_norm: Mapped[str] = mapped_column(nullable=False)
    feedback_mask: Mapped[str] = mapped_column(nullable=False)  # JSON list of tile states
    created_at: Mapped[str] = mapped_column(nullable=False)

    def __repr__(self):
        return f"<Guess(session_id={self.session_id}, index={self.guess_index}, text={self.text_norm})>"


class Entitlement(Base):
    """Counter of consumable units of a product owned by a profile."""
    __tablename__ = "entitlements"
    __table_args__ = (
        UniqueConstraint('profile_id', 'product_id', name='uq_profile_product'),
        CheckConstraint('quantity >= 0', name='ck_entitlement_quantity_non_negative'),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)
    product_id: Mapped[str] = mapped_column(nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False, default=0)
    updated_at: Mapped[str] = mapped_column(nullable=False)

    def __repr__(self):
        return f"<Entitlement(profile_id={self.profile_id}, product={self.product_id}, quantity={self.quantity})>"


class UsedSolution(Base):
    """Daily solutions already used in the current rotation cycle."""
    __tablename__ = "used_solutions"

    id: Mapped[int] = mapped_column(primary_key=True)
    word: Mapped[str] = mapped_column(unique=True, index=True)
    used_on: Mapped[str] = mapped_column(nullable=False)

    def __repr__(self):
        return f"<UsedSolution(word={self.word}, used_on={self.used_on})>"


class Purchase(Base):
    """Completed purchase; the provider charge ID makes delivery idempotent."""
    __tablename__ = "purchases"

    id: Mapped[int] = mapped_column(primary_key=True)
    charge_id: Mapped[str] = mapped_column(unique=True, index=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)
    product_id: Mapped[str] = mapped_column(nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False, default=1)
    status: Mapped[str] = mapped_column(nullable=False, default="paid")
    created_at: Mapped[str] = mapped_column(nullable=False)

    def __repr__(self):
        return f"<Purchase(charge_id={self.charge_id}, product={self.product_id}, quantity={self.quantity})>"


class SavedWord(Base):
    """Word a player keeps in a personal dictionary."""
    __tablename__ = "saved_words"
    __table_args__ = (
        UniqueConstraint('profile_id', 'word_norm', name='uq_profile_saved_word'),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)
    word_text: Mapped[str] = mapped_column(nullable=False)
    word_norm: Mapped[str] = mapped_column(nullable=False)
    length: Mapped[int] = mapped_column(nullable=False)
    source: Mapped[str] = mapped_column(nullable=False, default="manual")  # 'daily', 'arcade', 'manual'
    puzzle_id: Mapped[Optional[int]] = mapped_column(ForeignKey("puzzles.id"), nullable=True)
    created_at: Mapped[str] = mapped_column(nullable=False)

    def __repr__(self):
        return f"<SavedWord(profile_id={self.profile_id}, word={self.word_norm}, source={self.source})>"


# Database setup
def _async_database_url(url: str) -> str:
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to ``engine``."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async_engine = create_async_engine(_async_database_url(Config.DATABASE_URL), echo=False)

# Create async session maker
AsyncSessionLocal = make_session_factory(async_engine)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(engine: Optional[AsyncEngine] = None):
    """Initialize database tables."""
    engine = engine or async_engine
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


# Profile-related database functions
async def create_profile(
    session: AsyncSession,
    telegram_id: int,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    language_code: Optional[str] = None,
    arcade_credits: Optional[int] = None,
) -> Profile:
    """Create a new profile in the database."""
    profile = Profile(
        telegram_id=telegram_id,
        username=username,
        first_name=first_name,
        last_name=last_name,
        language_code=language_code,
        streak_current=0,
        streak_max=0,
        arcade_credits=Config.ARCADE_CREDITS_MAX if arcade_credits is None else arcade_credits,
        created_at=_now_iso(),
    )

    session.add(profile)
    await session.commit()
    await session.refresh(profile)

    return profile


async def get_profile_by_id(session: AsyncSession, profile_id: int) -> Optional[Profile]:
    """Get profile by ID."""
    result = await session.execute(
        select(Profile).where(Profile.id == profile_id)
    )
    return result.scalar_one_or_none()


async def get_profile_by_telegram_id(session: AsyncSession, telegram_id: int) -> Optional[Profile]:
    """Get profile by Telegram user ID."""
    result = await session.execute(
        select(Profile).where(Profile.telegram_id == telegram_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_profile(
    session: AsyncSession,
    telegram_id: int,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    language_code: Optional[str] = None,
) -> Profile:
    """Return the profile for a Telegram user, creating it on first contact."""
    profile = await get_profile_by_telegram_id(session, telegram_id)
    if profile:
        if (profile.username, profile.first_name, profile.last_name) != (username, first_name, last_name):
            profile.username = username
            profile.first_name = first_name
            profile.last_name = last_name
            session.add(profile)
            await session.commit()
            await session.refresh(profile)
        return profile

    try:
        return await create_profile(
            session,
            telegram_id=telegram_id,
            username=username,
            first_name=first_name,
            last_name=last_name,
            language_code=language_code,
        )
    except IntegrityError:
        # concurrent first contact created it
        await session.rollback()
        profile = await get_profile_by_telegram_id(session, telegram_id)
        if profile is None:
            raise
        return profile


async def spend_arcade_credit(session: AsyncSession, profile_id: int) -> bool:
    """Atomically take one arcade credit. Caller commits."""
    result = await session.execute(
        update(Profile)
        .where(Profile.id == profile_id, Profile.arcade_credits > 0)
        .values(arcade_credits=Profile.arcade_credits - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def set_arcade_credits(session: AsyncSession, profile_id: int, credits: int) -> None:
    """Set arcade credits for a profile. Caller commits."""
    await session.execute(
        update(Profile)
        .where(Profile.id == profile_id)
        .values(arcade_credits=credits)
        .execution_options(synchronize_session=False)
    )


async def replenish_arcade_credits(session: AsyncSession, credits: int) -> int:
    """Set arcade credits of every profile to ``credits``; returns rows touched."""
    result = await session.execute(
        update(Profile)
        .where(Profile.arcade_credits != credits)
        .values(arcade_credits=credits)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def record_daily_result(session: AsyncSession, profile_id: int, won: bool, played_on: str) -> None:
    """Bump the daily streak on a win and stamp the play date. Caller commits."""
    values = {"last_daily_played_at": played_on}
    if won:
        values["streak_current"] = Profile.streak_current + 1
    await session.execute(
        update(Profile)
        .where(Profile.id == profile_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if won:
        await session.execute(
            update(Profile)
            .where(Profile.id == profile_id, Profile.streak_current > Profile.streak_max)
            .values(streak_max=Profile.streak_current)
            .execution_options(synchronize_session=False)
        )


async def reset_streaks_except(session: AsyncSession, keep_profile_ids: Iterable[int]) -> int:
    """Zero the current streak of every profile not listed; returns rows touched."""
    keep = list(keep_profile_ids)
    stmt = update(Profile).where(Profile.streak_current > 0)
    if keep:
        stmt = stmt.where(Profile.id.not_in(keep))
    result = await session.execute(
        stmt.values(streak_current=0).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


# Puzzle-related database functions
async def get_puzzle_by_id(session: AsyncSession, puzzle_id: int) -> Optional[Puzzle]:
    """Get puzzle by ID."""
    result = await session.execute(
        select(Puzzle).where(Puzzle.id == puzzle_id)
    )
    return result.scalar_one_or_none()


async def get_daily_puzzle(
    session: AsyncSession,
    calendar_date: str,
    published_only: bool = True
) -> Optional[Puzzle]:
    """Get the daily puzzle for a calendar date (YYYY-MM-DD)."""
    stmt = select(Puzzle).where(
        Puzzle.mode == "daily",
        Puzzle.calendar_date == calendar_date,
    )
    if published_only:
        stmt = stmt.where(Puzzle.status == "published")
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_daily_puzzle(
    session: AsyncSession,
    calendar_date: str,
    solution: str,
) -> Puzzle:
    """Insert a published daily puzzle. Raises IntegrityError if the date is taken."""
    puzzle = Puzzle(
        mode="daily",
        calendar_date=calendar_date,
        letters=len(solution),
        solution=solution,
        status="published",
        seed=f"daily-{calendar_date}",
        created_at=_now_iso(),
    )
    session.add(puzzle)
    await session.flush()
    return puzzle


async def create_arcade_puzzle(
    session: AsyncSession,
    profile_id: int,
    solution: str,
    theme: str,
) -> Puzzle:
    """Insert a published arcade puzzle owned by a profile. Caller commits."""
    now = datetime.now(timezone.utc)
    puzzle = Puzzle(
        mode="arcade",
        calendar_date=None,
        letters=len(solution),
        solution=solution,
        status="published",
        seed=f"arcade-{theme}-{int(now.timestamp() * 1000)}",
        profile_id=profile_id,
        created_at=now.isoformat(),
    )
    session.add(puzzle)
    await session.flush()
    return puzzle


async def delete_puzzles(session: AsyncSession, puzzle_ids: Sequence[int]) -> int:
    """Delete puzzles together with their sessions and guesses. Caller commits."""
    puzzle_ids = list(puzzle_ids)
    if not puzzle_ids:
        return 0

    session_ids = select(GameSession.id).where(GameSession.puzzle_id.in_(puzzle_ids))
    # saved words outlive the puzzle they came from
    await session.execute(
        update(SavedWord)
        .where(SavedWord.puzzle_id.in_(puzzle_ids))
        .values(puzzle_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        delete(Guess).where(Guess.session_id.in_(session_ids)).execution_options(synchronize_session=False)
    )
    await session.execute(
        delete(GameSession).where(GameSession.puzzle_id.in_(puzzle_ids)).execution_options(synchronize_session=False)
    )
    result = await session.execute(
        delete(Puzzle).where(Puzzle.id.in_(puzzle_ids)).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def purge_daily_puzzles_before(session: AsyncSession, cutoff_date: str) -> int:
    """Delete daily puzzles dated strictly before ``cutoff_date``."""
    result = await session.execute(
        select(Puzzle.id).where(Puzzle.mode == "daily", Puzzle.calendar_date < cutoff_date)
    )
    return await delete_puzzles(session, list(result.scalars().all()))


async def delete_other_arcade_puzzles(session: AsyncSession, profile_id: int, keep_puzzle_id: int) -> int:
    """Drop a profile's older arcade puzzles, keeping the current one."""
    result = await session.execute(
        select(Puzzle.id).where(
            Puzzle.mode == "arcade",
            Puzzle.profile_id == profile_id,
            Puzzle.id != keep_puzzle_id,
        )
    )
    return await delete_puzzles(session, list(result.scalars().all()))


# Session-related database functions
async def create_game_session(
    session: AsyncSession,
    profile_id: int,
    puzzle_id: int,
    mode: str,
    hard_mode: bool = False,
) -> GameSession:
    """Insert a fresh playing session. Caller commits."""
    game_session = GameSession(
        profile_id=profile_id,
        puzzle_id=puzzle_id,
        mode=mode,
        hard_mode=hard_mode,
        status="playing",
        result=None,
        attempts_used=0,
        hints_used="[]",
        hidden_attempts="[]",
        version=0,
        started_at=_now_iso(),
    )
    session.add(game_session)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise RaceLostError() from exc
    return game_session


async def get_game_session(session: AsyncSession, session_id: int) -> Optional[GameSession]:
    """Get game session by ID."""
    result = await session.execute(
        select(GameSession).where(GameSession.id == session_id)
    )
    return result.scalar_one_or_none()


async def get_profile_puzzle_session(
    session: AsyncSession,
    profile_id: int,
    puzzle_id: int
) -> Optional[GameSession]:
    """Get the session a profile has on a puzzle."""
    result = await session.execute(
        select(GameSession).where(
            GameSession.profile_id == profile_id,
            GameSession.puzzle_id == puzzle_id,
        )
    )
    return result.scalar_one_or_none()


async def get_latest_arcade_session(session: AsyncSession, profile_id: int) -> Optional[GameSession]:
    """Get the most recent arcade session that is not closed."""
    result = await session.execute(
        select(GameSession)
        .where(
            GameSession.profile_id == profile_id,
            GameSession.mode == "arcade",
            GameSession.status != "closed",
        )
        .order_by(GameSession.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_latest_finished_session(session: AsyncSession, profile_id: int) -> Optional[GameSession]:
    """Get the most recent session whose solution may be shown to the player.

    A lost arcade session is excluded while it can still be resumed.
    """
    result = await session.execute(
        select(GameSession)
        .where(
            GameSession.profile_id == profile_id,
            or_(
                GameSession.status.in_(("won", "closed")),
                and_(GameSession.mode == "daily", GameSession.status == "lost"),
            ),
        )
        .order_by(GameSession.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_winner_profile_ids(session: AsyncSession, puzzle_id: int) -> set[int]:
    """Return profiles whose session on the puzzle ended in a win."""
    result = await session.execute(
        select(GameSession.profile_id).where(
            GameSession.puzzle_id == puzzle_id,
            GameSession.result == "win",
        )
    )
    return set(result.scalars().all())


async def list_session_guesses(session: AsyncSession, session_id: int) -> list[Guess]:
    """Return guesses of a session ordered by guess index."""
    result = await session.execute(
        select(Guess)
        .where(Guess.session_id == session_id)
        .order_by(Guess.guess_index.asc())
    )
    return list(result.scalars().all())


async def insert_guess(
    session: AsyncSession,
    session_id: int,
    guess_index: int,
    text_input: str,
    text_norm: str,
    feedback_mask: Sequence[str],
    created_at: Optional[str] = None,
) -> Guess:
    """Append a guess line. A duplicate index or text means a concurrent writer won."""
    guess = Guess(
        session_id=session_id,
        guess_index=guess_index,
        text_input=text_input,
        text_norm=text_norm,
        feedback_mask=json.dumps(list(feedback_mask)),
        created_at=created_at or _now_iso(),
    )
    session.add(guess)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise RaceLostError() from exc
    return guess


async def delete_guess(session: AsyncSession, session_id: int, guess_index: int) -> int:
    """Remove one guess line from a session."""
    result = await session.execute(
        delete(Guess)
        .where(Guess.session_id == session_id, Guess.guess_index == guess_index)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def apply_session_transition(
    session: AsyncSession,
    session_id: int,
    expected_version: int,
    **values,
) -> int:
    """Write session fields only if nobody else did since ``expected_version``.

    Returns the new version; raises RaceLostError when the row moved on.
    """
    result = await session.execute(
        update(GameSession)
        .where(GameSession.id == session_id, GameSession.version == expected_version)
        .values(version=expected_version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(f"Session {session_id} moved past version {expected_version}")
        raise RaceLostError()
    return expected_version + 1


# Entitlement-related database functions
async def get_entitlement_quantity(session: AsyncSession, profile_id: int, product_id: str) -> int:
    """Return how many units of a product the profile holds."""
    result = await session.execute(
        select(Entitlement.quantity).where(
            Entitlement.profile_id == profile_id,
            Entitlement.product_id == product_id,
        )
    )
    return result.scalar_one_or_none() or 0


async def decrement_entitlement(session: AsyncSession, profile_id: int, product_id: str) -> bool:
    """Take one unit in a single guarded UPDATE. Caller commits."""
    result = await session.execute(
        update(Entitlement)
        .where(
            Entitlement.profile_id == profile_id,
            Entitlement.product_id == product_id,
            Entitlement.quantity > 0,
        )
        .values(quantity=Entitlement.quantity - 1, updated_at=_now_iso())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def increment_entitlement(session: AsyncSession, profile_id: int, product_id: str, quantity: int) -> None:
    """Add units, creating the counter row on first grant. Caller commits."""
    now = _now_iso()
    result = await session.execute(
        update(Entitlement)
        .where(Entitlement.profile_id == profile_id, Entitlement.product_id == product_id)
        .values(quantity=Entitlement.quantity + quantity, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    session.add(Entitlement(profile_id=profile_id, product_id=product_id, quantity=quantity, updated_at=now))
    try:
        await session.flush()
    except IntegrityError as exc:
        raise RaceLostError() from exc


# Rotation-related database functions
async def list_used_solutions(session: AsyncSession) -> set[str]:
    """Return words already used in the current cycle."""
    result = await session.execute(select(UsedSolution.word))
    return set(result.scalars().all())


async def add_used_solution(session: AsyncSession, word: str, used_on: str) -> None:
    """Append a word to the used set. Caller commits."""
    session.add(UsedSolution(word=word, used_on=used_on))
    await session.flush()


async def reset_used_solutions(session: AsyncSession, word: str, used_on: str) -> None:
    """Start a new cycle whose used set holds only ``word``. Caller commits."""
    await session.execute(delete(UsedSolution).execution_options(synchronize_session=False))
    await add_used_solution(session, word, used_on)


# Purchase-related database functions
async def get_purchase_by_charge_id(session: AsyncSession, charge_id: str) -> Optional[Purchase]:
    """Get purchase by provider charge ID."""
    result = await session.execute(
        select(Purchase).where(Purchase.charge_id == charge_id)
    )
    return result.scalar_one_or_none()


async def create_purchase(
    session: AsyncSession,
    charge_id: str,
    profile_id: int,
    product_id: str,
    quantity: int,
) -> Purchase:
    """Record a paid purchase. A duplicate charge ID raises RaceLostError."""
    purchase = Purchase(
        charge_id=charge_id,
        profile_id=profile_id,
        product_id=product_id,
        quantity=quantity,
        status="paid",
        created_at=_now_iso(),
    )
    session.add(purchase)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise RaceLostError() from exc
    return purchase


async def list_profile_purchases(session: AsyncSession, profile_id: int, limit: Optional[int] = None) -> list[Purchase]:
    """Return a profile's purchases, newest first."""
    query = (
        select(Purchase)
        .where(Purchase.profile_id == profile_id)
        .order_by(Purchase.created_at.desc(), Purchase.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


# Saved word database functions
async def get_saved_word(session: AsyncSession, profile_id: int, word_norm: str) -> Optional[SavedWord]:
    """Get a profile's saved word by its normalized text."""
    result = await session.execute(
        select(SavedWord).where(
            SavedWord.profile_id == profile_id,
            SavedWord.word_norm == word_norm,
        )
    )
    return result.scalar_one_or_none()


async def upsert_saved_word(
    session: AsyncSession,
    profile_id: int,
    word_text: str,
    word_norm: str,
    source: str,
    puzzle_id: Optional[int] = None,
) -> tuple[SavedWord, bool]:
    """Save a word unless the profile already has it.

    Returns the row and whether it already existed. A concurrent insert of the
    same word raises RaceLostError.
    """
    existing = await get_saved_word(session, profile_id, word_norm)
    if existing is not None:
        return existing, True

    saved = SavedWord(
        profile_id=profile_id,
        word_text=word_text,
        word_norm=word_norm,
        length=len(word_norm),
        source=source,
        puzzle_id=puzzle_id,
        created_at=_now_iso(),
    )
    session.add(saved)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise RaceLostError() from exc
    return saved, False


async def list_saved_words(session: AsyncSession, profile_id: int, limit: Optional[int] = None) -> list[SavedWord]:
    """Return a profile's saved words, newest first."""
    query = (
        select(SavedWord)
        .where(SavedWord.profile_id == profile_id)
        .order_by(SavedWord.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def delete_saved_word(session: AsyncSession, profile_id: int, saved_id: int) -> bool:
    """Delete one of the profile's saved words. Returns False if it was not found."""
    result = await session.execute(
        delete(SavedWord)
        .where(SavedWord.id == saved_id, SavedWord.profile_id == profile_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
