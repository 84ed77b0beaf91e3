"""Hard-mode constraint: revealed letters must be reused in later guesses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from .errors import HardModeViolation
from .feedback import TileState

if TYPE_CHECKING:
    from .session_machine import GuessLine


def collect_constraints(previous_lines: Sequence["GuessLine"]) -> tuple[Dict[int, str], List[str]]:
    """Return pinned positions and letters that must appear somewhere."""
    required: Dict[int, str] = {}
    must_appear: List[str] = []

    for line in previous_lines:
        for index, (letter, state) in enumerate(zip(line.text_norm, line.feedback)):
            if state is TileState.CORRECT:
                required[index] = letter
            elif state is TileState.PRESENT and letter not in must_appear:
                must_appear.append(letter)

    return required, must_appear


def validate_hard_mode(
    previous_lines: Sequence["GuessLine"],
    next_guess: str,
) -> Optional[HardModeViolation]:
    """Check ``next_guess`` against everything revealed so far.

    Returns None when the guess is acceptable, otherwise the first violation
    found. Pinned positions are checked before floating letters.
    """
    if not previous_lines:
        return None

    required, must_appear = collect_constraints(previous_lines)

    for index in sorted(required):
        letter = required[index]
        if index >= len(next_guess) or next_guess[index] != letter:
            return HardModeViolation(
                letter=letter,
                position=index,
                reason=f"{index + 1}-я буква должна быть «{letter}».",
            )

    for letter in must_appear:
        # a slot pinned to another letter cannot host this one
        satisfied = any(
            candidate == letter and required.get(index, letter) == letter
            for index, candidate in enumerate(next_guess)
        )
        if not satisfied:
            return HardModeViolation(
                letter=letter,
                reason=f"Слово должно содержать букву «{letter}».",
            )

    return None


__all__ = ["collect_constraints", "validate_hard_mode"]
