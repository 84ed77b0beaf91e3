"""Personal dictionary commands: /save, /words, /forget."""

import logging

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message
from aiogram.utils.markdown import hbold

from slovo.core.errors import GameError
from slovo.services.saved_words import SavedWordService

from .render import render_saved_words

logger = logging.getLogger(__name__)

words_router = Router()

WORDS_SAMPLE_LIMIT = 20


@words_router.message(Command("save"))
async def cmd_save(message: Message, command: CommandObject, saved_words: SavedWordService, profile_id: int):
    """/save <слово> keeps a word; plain /save keeps the answer of the last finished game."""
    try:
        if command.args and command.args.strip():
            result = await saved_words.save_word(profile_id, command.args)
        else:
            result = await saved_words.save_last_solution(profile_id)
    except GameError as e:
        await message.answer(e.message)
        return

    if result.already_saved:
        await message.answer(f"Слово {hbold(result.word.norm)} уже есть в словаре.")
    else:
        await message.answer(f"📚 Слово {hbold(result.word.norm)} сохранено.")


@words_router.message(Command("words"))
async def cmd_words(message: Message, saved_words: SavedWordService, profile_id: int):
    words = await saved_words.list_words(profile_id, limit=WORDS_SAMPLE_LIMIT)
    await message.answer(render_saved_words(words))


@words_router.message(Command("forget"))
async def cmd_forget(message: Message, command: CommandObject, saved_words: SavedWordService, profile_id: int):
    raw = (command.args or "").strip()
    if not raw.isdigit():
        await message.answer("Укажите номер слова из /words: /forget 3")
        return

    try:
        await saved_words.delete_word(profile_id, int(raw))
    except GameError as e:
        await message.answer(e.message)
        return
    await message.answer("🗑 Слово удалено из словаря.")
