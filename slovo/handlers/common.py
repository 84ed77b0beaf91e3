import logging

from aiogram import F, Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message
from aiogram.utils.markdown import hbold, hitalic

from slovo.core.errors import GameError
from slovo.core.session_machine import SessionStatus
from slovo.services.gameplay import GameplayService

from .render import render_result, render_status

logger = logging.getLogger(__name__)

# Create router for handlers
router = Router()


@router.message(CommandStart())
async def cmd_start(message: Message, profile_id: int):
    """Handle /start command."""
    user = message.from_user
    logger.info(f"Start command from profile {profile_id}")

    welcome_text = (
        f"👋 {hbold('Привет!')}\n\n"
        f"{hitalic(user.first_name or user.username or 'Игрок')}, угадайте слово за несколько попыток.\n\n"
        f"🟩 буква на своём месте\n"
        f"🟨 буква есть в слове, но в другом месте\n"
        f"⬜ буквы нет в слове\n\n"
        f"/help - список команд"
    )
    await message.answer(welcome_text)


@router.message(Command("help"))
async def cmd_help(message: Message):
    """Handle /help command."""
    help_text = (
        f"{hbold('Команды:')}\n\n"
        f"/daily [hard] - слово дня\n"
        f"/arcade &lt;длина&gt; [тема] [hard] - аркада (4–7 букв)\n"
        f"/hint - подсказка в аркаде\n"
        f"/extra - дополнительная попытка после проигрыша\n"
        f"/finish - завершить проигранную аркаду\n"
        f"/unlock - восстановить аркады\n"
        f"/save [слово] - сохранить слово в словарь\n"
        f"/words - мой словарь\n"
        f"/balance - профиль и покупки\n\n"
        f"Просто отправьте слово, чтобы сделать ход."
    )
    await message.answer(help_text)


@router.message(Command("balance"))
async def cmd_balance(message: Message, gameplay: GameplayService, profile_id: int):
    try:
        status = await gameplay.get_status(profile_id)
    except GameError as e:
        await message.answer(e.message)
        return
    await message.answer(render_status(status))


@router.message(F.text, ~F.text.startswith("/"))
async def on_guess(message: Message, gameplay: GameplayService, profile_id: int):
    """Plain text is a guess for the current session."""
    try:
        current = await gameplay.find_current_session(profile_id)
        if current is None:
            await message.answer("Сейчас нет активной игры. Начните: /daily или /arcade 5")
            return

        result = await gameplay.submit_guess(profile_id, current.session_id, message.text)
        await message.answer(render_result(result))

        if result.state.status is SessionStatus.WON:
            await gameplay.acknowledge(profile_id, result.session_id)
    except GameError as e:
        logger.info(f"Guess from profile {profile_id} rejected: {e.code}")
        await message.answer(e.message)
