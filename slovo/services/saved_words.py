"""Personal dictionary: words a player decided to keep."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slovo.config import Config
from slovo.core.errors import ConflictError, NotFoundError, RaceLostError, ValidationError
from slovo.core.feedback import normalize_guess
from slovo.database import (
    AsyncSessionLocal,
    SavedWord,
    delete_saved_word,
    get_latest_finished_session,
    get_profile_by_id,
    get_puzzle_by_id,
    list_saved_words,
    upsert_saved_word,
)

logger = logging.getLogger(__name__)

SAVED_WORD_SOURCES = ("daily", "arcade", "manual")


@dataclass
class SavedWordView:
    saved_id: int
    text: str
    norm: str
    length: int
    source: str
    puzzle_id: Optional[int]
    created_at: str

    @classmethod
    def from_row(cls, row: SavedWord) -> "SavedWordView":
        return cls(
            saved_id=row.id,
            text=row.word_text,
            norm=row.word_norm,
            length=row.length,
            source=row.source,
            puzzle_id=row.puzzle_id,
            created_at=row.created_at,
        )


@dataclass
class SaveResult:
    word: SavedWordView
    already_saved: bool


class SavedWordService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        treat_yo_as_ye: Optional[bool] = None,
    ) -> None:
        self._session_factory = session_factory or AsyncSessionLocal
        self._treat_yo_as_ye = Config.TREAT_YO_AS_YE if treat_yo_as_ye is None else treat_yo_as_ye

    async def _save(
        self,
        db: AsyncSession,
        profile_id: int,
        word_text: str,
        source: str,
        puzzle_id: Optional[int],
    ) -> SaveResult:
        if await get_profile_by_id(db, profile_id) is None:
            raise NotFoundError("Профиль не найден.")
        word_norm = normalize_guess(word_text, self._treat_yo_as_ye)
        row, existed = await upsert_saved_word(db, profile_id, word_text.strip(), word_norm, source, puzzle_id)
        return SaveResult(word=SavedWordView.from_row(row), already_saved=existed)

    async def save_word(
        self,
        profile_id: int,
        word_text: str,
        source: str = "manual",
        puzzle_id: Optional[int] = None,
    ) -> SaveResult:
        """Add a word to the profile's dictionary; saving it twice is a no-op."""
        if source not in SAVED_WORD_SOURCES:
            raise ValidationError(f"Неизвестный источник слова: {source}")

        for attempt in range(2):
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        result = await self._save(db, profile_id, word_text or "", source, puzzle_id)
            except RaceLostError:
                # the same word was saved concurrently; the second pass finds it
                if attempt:
                    raise
                continue
            if not result.already_saved:
                logger.info(f"Profile {profile_id} saved word {result.word.norm} ({source})")
            return result
        raise RaceLostError()

    async def save_last_solution(self, profile_id: int) -> SaveResult:
        """Save the answer of the profile's most recent finished game."""
        async with self._session_factory() as db:
            row = await get_latest_finished_session(db, profile_id)
            puzzle = await get_puzzle_by_id(db, row.puzzle_id) if row is not None else None
        if row is None or puzzle is None:
            raise ConflictError("Нет завершённой игры, слово которой можно сохранить.")
        return await self.save_word(profile_id, puzzle.solution, source=row.mode, puzzle_id=puzzle.id)

    async def list_words(self, profile_id: int, limit: Optional[int] = None) -> List[SavedWordView]:
        async with self._session_factory() as db:
            rows = await list_saved_words(db, profile_id, limit=limit)
        return [SavedWordView.from_row(row) for row in rows]

    async def delete_word(self, profile_id: int, saved_id: int) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                removed = await delete_saved_word(db, profile_id, saved_id)
        if not removed:
            raise NotFoundError("Слово не найдено в словаре.")
        logger.info(f"Profile {profile_id} removed saved word {saved_id}")


__all__ = ["SAVED_WORD_SOURCES", "SaveResult", "SavedWordService", "SavedWordView"]
