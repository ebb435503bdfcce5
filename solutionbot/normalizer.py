"""
Problem Identifier Normalizer
=============================
Parses free-form "chapter-problem" input into a canonical ProblemToken.

Accepted:   "5-10", "5.10", "5–10", "  5 - 10  ", "5—10", "5−10"
Rejected:   "5", "5-", "5-10a", "Problem 5-10", "5--10", ""
"""

from __future__ import annotations

import logging
import re

from .errors import InvalidFormat
from .models import ProblemToken

logger = logging.getLogger(__name__)

# ─── Patterns ─────────────────────────────────────────────────────────────────

# Hyphen-minus, period, the U+2010..U+2015 dash block, minus sign,
# small/fullwidth hyphen-minus
SEPARATORS = "-.‐‑‒–—―−﹘﹣－"

PROBLEM_PATTERN = re.compile(
    r"^\s*([0-9]+)\s*[" + re.escape(SEPARATORS) + r"]\s*([0-9]+)\s*$"
)

INVALID_FORMAT_MESSAGE = "Invalid problem format. Use something like 5-10 or 5.10."


def normalize_problem(raw: str) -> ProblemToken:
    """
    Normalize a user-typed problem identifier.

    Args:
        raw: Arbitrary user input.

    Returns:
        ProblemToken whose ``key`` is "<chapter>-<problem>".

    Raises:
        InvalidFormat: If the input is not exactly two digit runs joined
            by one allowed separator.
    """
    if raw is None or not raw.strip():
        raise InvalidFormat(INVALID_FORMAT_MESSAGE)

    match = PROBLEM_PATTERN.match(raw.strip())
    if not match:
        logger.debug(f"Rejected problem input: {raw!r}")
        raise InvalidFormat(INVALID_FORMAT_MESSAGE)

    return ProblemToken(chapter=match.group(1), problem=match.group(2))


def search_variants(token: ProblemToken) -> list[str]:
    """
    Surface forms of a token as they may appear in page text.

    "5-10" → ["5-10", "5.10", "5–10",
              "Problem 5-10", "Problem 5.10", "Problem 5–10"]
    """
    bare = [
        token.key,
        f"{token.chapter}.{token.problem}",
        token.display,
    ]
    return bare + [f"Problem {v}" for v in bare]
