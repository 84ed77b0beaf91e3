"""Word lists used for guess validation and solution selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Set

from .errors import ValidationError
from .feedback import normalize_guess

logger = logging.getLogger(__name__)

DEFAULT_THEME = "common"
ARCADE_THEMES = ("common", "music")


class Dictionary(Protocol):
    """Membership lookup and solution source."""

    def is_allowed_guess(self, word: str, theme: str = DEFAULT_THEME) -> bool:
        ...

    def solutions(self, length: int, theme: str = DEFAULT_THEME) -> List[str]:
        ...


def parse_arcade_theme(seed: Optional[str]) -> str:
    """Extract the theme from an ``arcade-<theme>-<millis>`` seed."""
    if not seed:
        return DEFAULT_THEME

    parts = seed.split("-")
    if len(parts) >= 2 and parts[1] in ARCADE_THEMES:
        return parts[1]
    return DEFAULT_THEME


def _normalize_words(words: Iterable[str], treat_yo_as_ye: bool) -> List[str]:
    result: List[str] = []
    for raw in words:
        if not raw or not raw.strip() or raw.lstrip().startswith("#"):
            continue
        try:
            result.append(normalize_guess(raw, treat_yo_as_ye))
        except ValidationError:
            logger.warning(f"Skipping malformed dictionary entry {raw!r}")
    return result


@dataclass
class WordList:
    """In-memory dictionary: shared allowed guesses plus per-theme answers."""

    allowed: Set[str] = field(default_factory=set)
    answers: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_words(
        cls,
        allowed: Iterable[str],
        answers: Dict[str, Iterable[str]] | Iterable[str],
        treat_yo_as_ye: bool = False,
    ) -> "WordList":
        if isinstance(answers, dict):
            themed = {theme: _normalize_words(words, treat_yo_as_ye) for theme, words in answers.items()}
        else:
            themed = {DEFAULT_THEME: _normalize_words(answers, treat_yo_as_ye)}

        allowed_set = set(_normalize_words(allowed, treat_yo_as_ye))
        for words in themed.values():
            allowed_set.update(words)

        return cls(allowed=allowed_set, answers={theme: sorted(set(words)) for theme, words in themed.items()})

    def is_allowed_guess(self, word: str, theme: str = DEFAULT_THEME) -> bool:
        return word in self.allowed or word in self.answers.get(theme, ())

    def solutions(self, length: int, theme: str = DEFAULT_THEME) -> List[str]:
        return [word for word in self.answers.get(theme, []) if len(word) == length]


def load_word_list(root: str | Path, treat_yo_as_ye: bool = False) -> WordList:
    """Load ``<root>/<theme>/allowed.txt`` and ``answers.txt`` files."""
    root_path = Path(root)
    if not root_path.exists():
        raise FileNotFoundError(f"Dictionary directory not found: {root_path}")

    allowed: List[str] = []
    answers: Dict[str, List[str]] = {}
    for theme_dir in sorted(path for path in root_path.iterdir() if path.is_dir()):
        allowed_file = theme_dir / "allowed.txt"
        answers_file = theme_dir / "answers.txt"
        if allowed_file.exists():
            allowed.extend(allowed_file.read_text(encoding="utf-8").splitlines())
        if answers_file.exists():
            answers[theme_dir.name] = answers_file.read_text(encoding="utf-8").splitlines()

    word_list = WordList.from_words(allowed, answers, treat_yo_as_ye=treat_yo_as_ye)
    logger.info(
        f"Dictionary loaded: {len(word_list.allowed)} allowed words, "
        f"themes: {', '.join(sorted(word_list.answers)) or 'none'}"
    )
    return word_list


__all__ = [
    "ARCADE_THEMES",
    "DEFAULT_THEME",
    "Dictionary",
    "WordList",
    "load_word_list",
    "parse_arcade_theme",
]
