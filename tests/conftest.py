"""Shared fixtures: a throwaway SQLite database per test and a small word list."""

from __future__ import annotations

import os

# slovo.database builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

import random

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from slovo.core.dictionary import WordList
from slovo.database import create_profile, init_db, make_session_factory

ALLOWED = ["стол", "стул", "ключ", "мечта", "лодка", "сосна", "пирог", "масло", "тесто", "весна"]
COMMON_ANSWERS = ["луна", "река", "слово", "книга", "лампа", "ветер", "город", "дорога", "подарок"]
MUSIC_ANSWERS = ["нота", "песня", "опера", "гитара"]


@pytest.fixture
def word_list() -> WordList:
    return WordList.from_words(
        allowed=ALLOWED,
        answers={"common": COMMON_ANSWERS, "music": MUSIC_ANSWERS},
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'slovo.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def profile_id(session_factory) -> int:
    async with session_factory() as db:
        profile = await create_profile(db, telegram_id=1001, username="tester")
        return profile.id


@pytest_asyncio.fixture
async def other_profile_id(session_factory) -> int:
    async with session_factory() as db:
        profile = await create_profile(db, telegram_id=1002, username="rival")
        return profile.id
