"""
PDF Text Search Engine
======================
Locates problems in a textbook PDF using PyMuPDF (fitz) text extraction.

Two entry points:
    - find_first_matching_page(): on-demand lookup, stops at the first hit
    - build_problem_index(): full scan used by the cache builder, records the
      first page of every distinct problem token in the document

Matching is plain case-insensitive substring containment over the whole
page text. It tolerates layout noise from extraction at the cost of the
occasional false positive when numbers happen to co-occur.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Iterator, Optional

import fitz  # PyMuPDF

from .errors import NotFound, ParseFailure
from .models import ProblemToken
from .normalizer import search_variants

logger = logging.getLogger(__name__)

# ─── Index Pattern ────────────────────────────────────────────────────────────

# Textbooks in use number problems with an en dash ("Problem 5–10", "5–10").
# Hyphens and periods are left out of the full index so page ranges, dates
# and section numbers do not end up in the cache.
INDEX_PATTERN = re.compile(
    r"""
    \b
    (?:Problem\s*)?
    (?P<ch>[0-9]+)
    \s*–\s*
    (?P<pr>[0-9]+)
    \b
    """,
    re.IGNORECASE | re.VERBOSE,
)


def open_document(pdf_path: str) -> fitz.Document:
    """Open a PDF, mapping fitz failures onto the error taxonomy."""
    if not os.path.exists(pdf_path):
        raise NotFound(f"PDF not found: {pdf_path}")
    try:
        return fitz.open(pdf_path)
    except (RuntimeError, ValueError) as e:
        raise ParseFailure(f"Cannot open PDF {pdf_path}: {e}") from e


def iter_page_texts(pdf_path: str) -> Iterator[tuple[int, str]]:
    """
    Yield (1-based page number, extracted text) for every page in order.

    Raises:
        NotFound: If the file does not exist.
        ParseFailure: If the file is not a readable PDF.
    """
    doc = open_document(pdf_path)
    with doc:
        for page_idx in range(doc.page_count):
            try:
                text = doc[page_idx].get_text("text")
            except (RuntimeError, ValueError) as e:
                raise ParseFailure(
                    f"Cannot read page {page_idx + 1} of {pdf_path}: {e}"
                ) from e
            yield page_idx + 1, text or ""


def find_first_matching_page(
    pdf_path: str,
    token: ProblemToken,
) -> Optional[int]:
    """
    Find the first page mentioning any surface variant of a problem.

    Args:
        pdf_path: Path to the PDF file.
        token: Normalized problem token.

    Returns:
        1-based page number, or None when no page matches.

    Raises:
        NotFound: If the file does not exist.
        ParseFailure: If the file is not a readable PDF.
    """
    variants = [v.lower() for v in search_variants(token)]

    for page_num, text in iter_page_texts(pdf_path):
        if not text.strip():
            continue
        haystack = text.lower()
        if any(v in haystack for v in variants):
            logger.info(f"Found {token.key} on page {page_num} of {pdf_path}")
            return page_num

    logger.info(f"No page of {pdf_path} mentions {token.key}")
    return None


def extract_problems(text: str) -> list[str]:
    """Distinct problem keys ("5-10") in order of first appearance."""
    seen: dict[str, None] = {}
    for match in INDEX_PATTERN.finditer(text or ""):
        seen.setdefault(f"{match.group('ch')}-{match.group('pr')}", None)
    return list(seen)


def build_problem_index(pdf_path: str) -> dict[str, int]:
    """
    Scan every page and map each problem key to the first page it occurs on.

    Unlike find_first_matching_page() this never stops early: later pages
    are still scanned to discover other problems.
    """
    index: dict[str, int] = {}

    for page_num, text in iter_page_texts(pdf_path):
        if not text:
            continue
        for key in extract_problems(text):
            index.setdefault(key, page_num)

    logger.info(f"Indexed {len(index)} problems in {pdf_path}")
    return index
