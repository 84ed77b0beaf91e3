"""Text rendering of game results for Telegram messages."""

from html import escape
from typing import Dict, List, Sequence

from aiogram.utils.markdown import hbold

from slovo.core.feedback import TileState
from slovo.core.ledger import Product
from slovo.core.session_machine import GameMode, GuessLine, SessionStatus
from slovo.services.gameplay import GameResult, ProfileStatus
from slovo.services.saved_words import SavedWordView

SQUARES = {
    TileState.CORRECT: "🟩",
    TileState.PRESENT: "🟨",
    TileState.ABSENT: "⬜",
}

PRODUCT_TITLES = {
    Product.ARCADE_HINT.value: "Подсказки",
    Product.ARCADE_EXTRA_TRY.value: "Доп. попытки",
    Product.ARCADE_NEW_GAME.value: "Новые игры",
}

SOURCE_TITLES = {
    "daily": "слово дня",
    "arcade": "аркада",
    "manual": "вручную",
}


def pluralize_ru(count: int, one: str, few: str, many: str) -> str:
    """``pluralize_ru(5, "слово", "слова", "слов")`` -> ``"5 слов"``."""
    mod10 = abs(count) % 10
    mod100 = abs(count) % 100
    if 11 <= mod100 <= 19:
        return f"{count} {many}"
    if mod10 == 1:
        return f"{count} {one}"
    if 2 <= mod10 <= 4:
        return f"{count} {few}"
    return f"{count} {many}"


def render_line(line: GuessLine) -> str:
    squares = "".join(SQUARES[state] for state in line.feedback)
    return f"{squares}  {escape(line.text_norm)}"


def _render_keyboard(keyboard: Dict[str, TileState]) -> str:
    groups: List[str] = []
    for state in (TileState.CORRECT, TileState.PRESENT, TileState.ABSENT):
        letters = sorted(letter for letter, value in keyboard.items() if value is state)
        if letters:
            groups.append(f"{SQUARES[state]} {' '.join(letters)}")
    return "\n".join(groups)


def render_result(result: GameResult) -> str:
    mode = "Аркада" if result.state.mode is GameMode.ARCADE else "Слово дня"
    hard = " · сложный режим" if result.state.hard_mode else ""
    parts = [hbold(f"{mode}: {result.puzzle.letters} букв{hard}")]

    if result.state.lines:
        parts.append("\n".join(render_line(line) for line in result.state.lines))

    if result.state.hints:
        hints = ", ".join(f"{hint.position + 1}-я «{hint.letter}»" for hint in result.state.hints)
        parts.append(f"💡 {hints}")

    status = result.status
    if status == "playing":
        parts.append(f"Попытка {result.attempts_used}/{result.max_attempts}")
    elif status == "won":
        attempts = pluralize_ru(result.attempts_used, "попытку", "попытки", "попыток")
        parts.append(f"🎉 Победа за {attempts}! Слово: {hbold(result.puzzle.solution)}")
    elif result.state.status is SessionStatus.LOST and result.state.mode is GameMode.ARCADE:
        parts.append("Попытки закончились. /extra - дополнительная попытка, /finish - сдаться.")
    else:
        parts.append(f"Попытки закончились. Слово: {hbold(result.puzzle.solution)}")

    keyboard = _render_keyboard(result.keyboard)
    if keyboard and status == "playing":
        parts.append(keyboard)

    if result.entitlements:
        balance = ", ".join(
            f"{PRODUCT_TITLES.get(product_id, product_id)}: {quantity}"
            for product_id, quantity in result.entitlements.items()
        )
        parts.append(balance)

    return "\n\n".join(parts)


def render_status(status: ProfileStatus) -> str:
    lines = [
        hbold("Ваш профиль"),
        f"🔥 Серия: {status.streak_current} (рекорд {status.streak_max})",
        f"🕹 Аркад доступно: {status.arcade_credits}",
    ]
    for product_id, quantity in status.entitlements.items():
        lines.append(f"• {PRODUCT_TITLES.get(product_id, product_id)}: {quantity}")
    if status.current is not None:
        current = status.current
        lines.append("")
        lines.append(f"Текущая игра: {current.status}, попытка {current.attempts_used}/{current.max_attempts}")
    if status.purchases:
        lines.append("")
        lines.append(hbold("Последние покупки"))
        for purchase in status.purchases:
            title = PRODUCT_TITLES.get(purchase.product_id, purchase.product_id)
            lines.append(f"• {purchase.created_at[:10]} {title} x{purchase.quantity}")
    return "\n".join(lines)


def render_saved_words(words: Sequence[SavedWordView]) -> str:
    if not words:
        return "Словарь пуст. Сохраните слово: /save &lt;слово&gt; или /save после игры."
    lines = [hbold(f"Ваш словарь (последние {pluralize_ru(len(words), 'слово', 'слова', 'слов')})")]
    for word in words:
        lines.append(f"{word.saved_id}. {escape(word.norm)} · {SOURCE_TITLES.get(word.source, word.source)}")
    lines.append("")
    lines.append("/forget &lt;номер&gt; - удалить слово")
    return "\n".join(lines)
