"""Guess scoring and input normalization."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from .errors import LengthMismatchError, ValidationError


class TileState(str, Enum):
    """Per-position verdict for a guessed letter."""

    CORRECT = "correct"
    PRESENT = "present"
    ABSENT = "absent"


FeedbackLine = Tuple[TileState, ...]

_STATE_PRIORITY = {
    TileState.CORRECT: 3,
    TileState.PRESENT: 2,
    TileState.ABSENT: 1,
}

_CYRILLIC_WORD = re.compile(r"^[А-ЯЁ]+$")


@dataclass(frozen=True)
class TileFeedback:
    """A single scored tile together with its letter."""

    index: int
    letter: str
    state: TileState


def evaluate_guess(guess: str, solution: str) -> FeedbackLine:
    """Score ``guess`` against ``solution``.

    Duplicate letters are credited at most as many times as they occur in the
    solution: exact matches are consumed first, the remaining occurrences are
    handed out left to right as ``present``.
    """
    if len(guess) != len(solution):
        raise LengthMismatchError(
            f"Guess length {len(guess)} does not match solution length {len(solution)}"
        )

    states: List[TileState] = [TileState.ABSENT] * len(solution)
    remaining = Counter(solution)

    for index, (letter, expected) in enumerate(zip(guess, solution)):
        if letter == expected:
            states[index] = TileState.CORRECT
            remaining[letter] -= 1

    for index, letter in enumerate(guess):
        if states[index] is TileState.CORRECT:
            continue
        if remaining[letter] > 0:
            states[index] = TileState.PRESENT
            remaining[letter] -= 1

    return tuple(states)


def is_solved(feedback: Iterable[TileState]) -> bool:
    return all(state is TileState.CORRECT for state in feedback)


def describe_feedback(guess: str, feedback: Sequence[TileState]) -> List[TileFeedback]:
    return [
        TileFeedback(index=index, letter=letter, state=state)
        for index, (letter, state) in enumerate(zip(guess, feedback))
    ]


def build_keyboard_state(lines: Iterable[Tuple[str, Sequence[TileState]]]) -> Dict[str, TileState]:
    """Collapse scored guesses into the best known state for each letter."""
    keyboard: Dict[str, TileState] = {}
    for guess, feedback in lines:
        for letter, state in zip(guess, feedback):
            existing = keyboard.get(letter)
            if existing is None or _STATE_PRIORITY[state] > _STATE_PRIORITY[existing]:
                keyboard[letter] = state
    return keyboard


def normalize_guess(raw: str, treat_yo_as_ye: bool = False) -> str:
    """Upper-case and trim raw input, optionally folding Ё into Е.

    Raises ValidationError when the input contains anything but Cyrillic letters.
    """
    if raw is None:
        raise ValidationError("Введите слово.")

    normalized = raw.strip().upper()
    if not normalized:
        raise ValidationError("Введите слово.")

    if not _CYRILLIC_WORD.match(normalized):
        raise ValidationError("Слово должно состоять только из русских букв.")

    if treat_yo_as_ye:
        normalized = normalized.replace("Ё", "Е")
    return normalized


def feedback_to_mask(feedback: Sequence[TileState]) -> List[str]:
    return [state.value for state in feedback]


def feedback_from_mask(mask: Iterable[str]) -> FeedbackLine:
    return tuple(TileState(value) for value in mask)


__all__ = [
    "TileState",
    "TileFeedback",
    "FeedbackLine",
    "evaluate_guess",
    "is_solved",
    "describe_feedback",
    "build_keyboard_state",
    "normalize_guess",
    "feedback_to_mask",
    "feedback_from_mask",
]
