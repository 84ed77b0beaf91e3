"""Handlers for the daily puzzle."""

import logging

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from slovo.core.errors import GameError
from slovo.services.gameplay import GameplayService

from .render import render_result

logger = logging.getLogger(__name__)

daily_router = Router()

HARD_FLAGS = {"hard", "сложно", "сложный"}


@daily_router.message(Command("daily"))
async def cmd_daily(message: Message, command: CommandObject, gameplay: GameplayService, profile_id: int):
    args = (command.args or "").lower().split()
    hard_mode = any(arg in HARD_FLAGS for arg in args)

    try:
        result = await gameplay.start_daily(profile_id, hard_mode=hard_mode)
    except GameError as e:
        await message.answer(e.message)
        return

    text = render_result(result)
    if result.state.hard_mode != hard_mode and result.state.lines:
        text += "\n\nРежим нельзя сменить после первой попытки."
    await message.answer(text)
