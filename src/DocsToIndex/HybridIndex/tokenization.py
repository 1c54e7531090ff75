"""Analyzer shared by the index writer and the lexical query parser."""
from __future__ import annotations

import re
from collections import Counter
from functools import lru_cache
from typing import Dict, List, Pattern, Tuple

__all__ = ("analyze_field", "tokenize", "wildcard_to_regex")

# Dots between word characters stay inside a token so "x.pdf" is one term.
_TOKEN_PATTERN = re.compile(r"[\w']+(?:\.[\w']+)*")


def tokenize(text: str) -> List[str]:
    """Tokenize ``text`` into lower-cased terms."""

    return [match.group(0).lower() for match in _TOKEN_PATTERN.finditer(text)]


def analyze_field(text: str) -> Tuple[Dict[str, int], int]:
    """Return the term frequencies of ``text`` and its length in terms."""

    tokens = tokenize(text)
    return dict(Counter(tokens)), len(tokens)


@lru_cache(maxsize=256)
def wildcard_to_regex(pattern: str) -> Pattern[str]:
    """Compile a ``*``/``?`` wildcard pattern into an anchored, case-insensitive regex.

    ``*`` matches any run of characters (including none) and ``?`` exactly one.
    Every other character matches literally.
    """

    parts: List[str] = []
    for char in pattern.lower():
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)
