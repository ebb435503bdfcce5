"""
Shared fixtures: real PDFs built with PyMuPDF and an isolated app context.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import fitz
import pytest

from solutionbot.config import AppContext, reset_context
from solutionbot.rasterizer import RenderThrottle

LETTER = (612, 792)


def write_pdf(
    path: Path,
    pages: list[Optional[str]],
    size: tuple[float, float] = LETTER,
) -> Path:
    """Write a PDF with one page per entry; None/"" gives a blank page."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page(width=size[0], height=size[1])
        if text:
            page.insert_text((72, 72), text, fontsize=11)
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture(autouse=True)
def _fresh_context():
    reset_context()
    yield
    reset_context()


@pytest.fixture
def make_pdf(tmp_path):
    counter = {"n": 0}

    def _make(pages, size=LETTER, name=None) -> Path:
        counter["n"] += 1
        return write_pdf(tmp_path / (name or f"doc{counter['n']}.pdf"), pages, size)

    return _make


@pytest.fixture
def textbook(make_pdf) -> Path:
    """Five pages; 5-10 first appears on page 3 (period form)."""
    return make_pdf(
        [
            "Statics\nTable of Contents",
            None,
            "Problem 5.10\nThe beam is loaded as shown.",
            "Problem 5-11\nDetermine the reactions.",
            "Answers: 5-10 see page 3",
        ],
        name="statics.pdf",
    )


@pytest.fixture
def write_sources(tmp_path):
    def _write(data) -> Path:
        path = tmp_path / "sources.json"
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def context(tmp_path, textbook, write_sources) -> AppContext:
    write_sources({
        "defaultSource": "Statics Book",
        "sources": {
            "Statics Book": str(textbook),
            "Dynamics": str(tmp_path / "missing-dynamics.pdf"),
        },
    })
    return AppContext(base_dir=tmp_path)


@pytest.fixture
def throttle() -> RenderThrottle:
    return RenderThrottle(1)
