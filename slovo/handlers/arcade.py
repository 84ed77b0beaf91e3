"""Arcade commands: start, hints, extra tries, unlock."""

import logging
from typing import Optional, Tuple

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from slovo.config import Config
from slovo.core.dictionary import ARCADE_THEMES, DEFAULT_THEME
from slovo.core.errors import GameError, ValidationError
from slovo.services.gameplay import GameplayService, GameResult

from .daily import HARD_FLAGS
from .render import render_result

logger = logging.getLogger(__name__)

arcade_router = Router()


def parse_arcade_args(raw: Optional[str]) -> Tuple[int, str, bool]:
    """``"<len> [theme] [hard]"`` -> (length, theme, hard_mode)."""
    args = (raw or "").lower().split()
    if not args:
        return Config.DAILY_WORD_LENGTH, DEFAULT_THEME, False

    try:
        length = int(args[0])
    except ValueError:
        raise ValidationError("Укажите длину слова: /arcade 5")

    theme = DEFAULT_THEME
    hard_mode = False
    for arg in args[1:]:
        if arg in HARD_FLAGS:
            hard_mode = True
        elif arg in ARCADE_THEMES:
            theme = arg
        else:
            raise ValidationError(f"Неизвестная тема. Доступны: {', '.join(ARCADE_THEMES)}.")
    return length, theme, hard_mode


async def _current_arcade(gameplay: GameplayService, profile_id: int) -> GameResult:
    current = await gameplay.find_current_arcade(profile_id)
    if current is None:
        raise ValidationError("Нет активной аркады. Начните: /arcade 5")
    return current


@arcade_router.message(Command("arcade"))
async def cmd_arcade(message: Message, command: CommandObject, gameplay: GameplayService, profile_id: int):
    try:
        length, theme, hard_mode = parse_arcade_args(command.args)
        result = await gameplay.start_arcade(profile_id, length, theme=theme, hard_mode=hard_mode)
    except GameError as e:
        await message.answer(e.message)
        return

    text = render_result(result)
    if result.arcade_credits is not None:
        text += f"\n\nОсталось аркад: {result.arcade_credits}"
    await message.answer(text)


@arcade_router.message(Command("hint"))
async def cmd_hint(message: Message, gameplay: GameplayService, profile_id: int):
    try:
        current = await _current_arcade(gameplay, profile_id)
        result = await gameplay.use_hint(profile_id, current.session_id)
    except GameError as e:
        await message.answer(e.message)
        return

    if result.hint is None:
        await message.answer("Больше подсказок для этой игры нет.")
        return
    await message.answer(render_result(result))


@arcade_router.message(Command("extra"))
async def cmd_extra(message: Message, gameplay: GameplayService, profile_id: int):
    try:
        current = await _current_arcade(gameplay, profile_id)
        result = await gameplay.resume_with_extra_try(profile_id, current.session_id)
    except GameError as e:
        await message.answer(e.message)
        return
    await message.answer(render_result(result))


@arcade_router.message(Command("finish"))
async def cmd_finish(message: Message, gameplay: GameplayService, profile_id: int):
    try:
        current = await _current_arcade(gameplay, profile_id)
        result = await gameplay.finish(profile_id, current.session_id)
    except GameError as e:
        await message.answer(e.message)
        return
    await message.answer(render_result(result))


@arcade_router.message(Command("unlock"))
async def cmd_unlock(message: Message, gameplay: GameplayService, profile_id: int):
    try:
        credits = await gameplay.unlock_arcade(profile_id)
    except GameError as e:
        await message.answer(e.message)
        return
    await message.answer(f"🔓 Аркады восстановлены: {credits}")
