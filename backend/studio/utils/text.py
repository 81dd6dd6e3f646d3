"""
Prompt normalization and fuzzy matching helpers.
Used only as a fallback when a callback cannot be tied to a notification by id.
"""

import re
from typing import Iterable, Optional, TypeVar

from rapidfuzz import fuzz

T = TypeVar("T")


def normalize_prompt(text: Optional[str]) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    if not text:
        return ""
    text = text.lower().strip()
    text = re.sub(r"[^\w\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def prompt_similarity(left: Optional[str], right: Optional[str]) -> float:
    """Token-set similarity in [0, 1]; empty prompts never match."""
    a, b = normalize_prompt(left), normalize_prompt(right)
    if not a or not b:
        return 0.0
    return fuzz.token_set_ratio(a, b) / 100.0


def best_prompt_match(
    prompt: Optional[str],
    candidates: Iterable[T],
    *,
    prompt_of,
    threshold: float,
) -> Optional[tuple[T, float]]:
    """
    Return the candidate whose prompt is most similar to ``prompt``.
    Ties keep the earliest candidate; scores below ``threshold`` are discarded.
    """
    best: Optional[tuple[T, float]] = None
    for candidate in candidates:
        score = prompt_similarity(prompt, prompt_of(candidate))
        if score < threshold:
            continue
        if best is None or score > best[1]:
            best = (candidate, score)
    return best

