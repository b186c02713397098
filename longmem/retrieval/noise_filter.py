"""
Noise filtering for retrieved memories

Drops entries that carry no durable information: agent denials ("I don't
recall..."), questions about the memory itself and session boilerplate.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Pattern, TypeVar

T = TypeVar("T")

MIN_TEXT_LENGTH = 5

DENIAL_PATTERNS: List[Pattern] = [
    re.compile(r"i don'?t have (any )?(information|data|memory|record)", re.IGNORECASE),
    re.compile(r"i'?m not sure about", re.IGNORECASE),
    re.compile(r"i don'?t recall", re.IGNORECASE),
    re.compile(r"i don'?t remember", re.IGNORECASE),
    re.compile(r"it looks like i don'?t", re.IGNORECASE),
    re.compile(r"i wasn'?t able to find", re.IGNORECASE),
    re.compile(r"no (relevant )?memories found", re.IGNORECASE),
    re.compile(r"i don'?t have access to", re.IGNORECASE),
]

META_QUESTION_PATTERNS: List[Pattern] = [
    re.compile(r"\bdo you (remember|recall|know about)\b", re.IGNORECASE),
    re.compile(r"\bcan you (remember|recall)\b", re.IGNORECASE),
    re.compile(r"\bdid i (tell|mention|say|share)\b", re.IGNORECASE),
    re.compile(r"\bhave i (told|mentioned|said)\b", re.IGNORECASE),
    re.compile(r"\bwhat did i (tell|say|mention)\b", re.IGNORECASE),
]

BOILERPLATE_PATTERNS: List[Pattern] = [
    re.compile(r"^(hi|hello|hey|good morning|good evening|greetings)\b", re.IGNORECASE),
    re.compile(r"^fresh session", re.IGNORECASE),
    re.compile(r"^new session", re.IGNORECASE),
    re.compile(r"^HEARTBEAT", re.IGNORECASE),
]


@dataclass(frozen=True)
class NoiseFilterOptions:
    """Toggles for each pattern family"""
    filter_denials: bool = True
    filter_meta_questions: bool = True
    filter_boilerplate: bool = True


DEFAULT_OPTIONS = NoiseFilterOptions()


def _matches_any(patterns: List[Pattern], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def is_noise(text: str, options: Optional[NoiseFilterOptions] = None) -> bool:
    """Return True when text is too short or matches an enabled noise family"""
    opts = options or DEFAULT_OPTIONS
    trimmed = (text or "").strip()

    if len(trimmed) < MIN_TEXT_LENGTH:
        return True

    if opts.filter_denials and _matches_any(DENIAL_PATTERNS, trimmed):
        return True
    if opts.filter_meta_questions and _matches_any(META_QUESTION_PATTERNS, trimmed):
        return True
    if opts.filter_boilerplate and _matches_any(BOILERPLATE_PATTERNS, trimmed):
        return True

    return False


def filter_noise(
    items: Iterable[T],
    get_text: Callable[[T], str],
    options: Optional[NoiseFilterOptions] = None
) -> List[T]:
    """Keep the non-noise items, in their original order"""
    return [item for item in items if not is_noise(get_text(item), options)]
