"""
Tests for the bulk cache builder.
"""

from __future__ import annotations

import pytest

from solutionbot import cache_builder
from solutionbot.cache_builder import CacheBuilder
from solutionbot.config import AppContext, RenderOptions
from solutionbot.errors import NotFound, ParseFailure
from solutionbot.models import DocumentStatus
from solutionbot.rasterizer import render_page

FAST = RenderOptions(dpi=18, jpeg_quality=60)


@pytest.fixture
def fake_index(monkeypatch):
    """Replace indexing with a fixed {pdf path: index} table."""
    table = {}

    def _index(pdf_path):
        value = table.get(str(pdf_path), {})
        if isinstance(value, Exception):
            raise value
        return dict(value)

    monkeypatch.setattr(cache_builder, "build_problem_index", _index)
    return table


@pytest.fixture
def render_calls(monkeypatch):
    """Record every render the builder performs."""
    calls = []

    def _spy(pdf_path, page_number, **kwargs):
        calls.append((pdf_path, page_number, kwargs["output_path"].name))
        return render_page(pdf_path, page_number, **kwargs)

    monkeypatch.setattr(cache_builder, "render_page", _spy)
    return calls


@pytest.fixture
def builder(context, throttle):
    return CacheBuilder(context, options=FAST, throttle=throttle)


# ═══════════════════════════════════════════════════════════════════════════════
# BUILD
# ═══════════════════════════════════════════════════════════════════════════════


class TestCacheBuild:
    """Test full and incremental cache builds."""

    def test_renders_every_problem(self, builder, context, textbook, fake_index, render_calls):
        fake_index[str(textbook)] = {"5-10": 3, "5-11": 4, "6-1": 5}

        reports = builder.build(only_source="Statics Book")

        assert len(reports) == 1
        report = reports[0]
        assert report.status == DocumentStatus.BUILT
        assert (report.rendered, report.skipped, report.total) == (3, 0, 3)
        assert report.failures == []

        out_dir = context.cache_dir / "Statics_Book"
        assert sorted(p.name for p in out_dir.iterdir()) == ["5-10.jpg", "5-11.jpg", "6-1.jpg"]

    def test_keys_rendered_in_order(self, builder, textbook, fake_index, render_calls):
        fake_index[str(textbook)] = {"6-1": 5, "5-11": 4, "5-10": 3}
        builder.build(only_source="statics book")
        assert [name for _, _, name in render_calls] == ["5-10.jpg", "5-11.jpg", "6-1.jpg"]

    def test_second_run_renders_nothing(self, builder, textbook, fake_index, render_calls):
        fake_index[str(textbook)] = {"5-10": 3, "5-11": 4}
        builder.build(only_source="Statics Book")
        render_calls.clear()

        report = builder.build(only_source="Statics Book")[0]

        assert render_calls == []
        assert (report.rendered, report.skipped) == (0, 2)

    def test_force_rerenders(self, builder, textbook, fake_index, render_calls):
        fake_index[str(textbook)] = {"5-10": 3, "5-11": 4}
        builder.build(only_source="Statics Book")
        render_calls.clear()

        report = builder.build(force=True, only_source="Statics Book")[0]

        assert len(render_calls) == 2
        assert (report.rendered, report.skipped) == (2, 0)

    def test_progress_callback(self, builder, textbook, fake_index, render_calls):
        fake_index[str(textbook)] = {"5-10": 3, "5-11": 4}
        seen = []
        builder.build(
            only_source="Statics Book",
            progress_callback=lambda name, done, total: seen.append((name, done, total)),
        )
        assert seen == [("Statics Book", 1, 2), ("Statics Book", 2, 2)]

    def test_uses_cache_render_options_by_default(self, context):
        assert CacheBuilder(context).options == context.cache_render_options
        assert context.cache_render_options.dpi == 110
        assert context.cache_render_options.jpeg_quality == 80


# ═══════════════════════════════════════════════════════════════════════════════
# FAILURE ISOLATION
# ═══════════════════════════════════════════════════════════════════════════════


class TestCacheBuildFailures:
    """One bad document or token must not stop the build."""

    def test_missing_pdf_is_skipped(self, builder, textbook, fake_index, render_calls):
        fake_index[str(textbook)] = {"5-10": 3}

        reports = {r.source: r for r in builder.build()}

        assert reports["Dynamics"].status == DocumentStatus.MISSING
        assert reports["Dynamics"].rendered == 0
        assert reports["Statics Book"].status == DocumentStatus.BUILT
        assert reports["Statics Book"].rendered == 1

    def test_no_problems_detected(self, builder, fake_index):
        report = builder.build(only_source="Statics Book")[0]
        assert report.status == DocumentStatus.EMPTY
        assert report.total == 0

    def test_index_failure_is_reported(self, builder, textbook, fake_index):
        fake_index[str(textbook)] = ParseFailure("broken xref")
        report = builder.build(only_source="Statics Book")[0]
        assert report.status == DocumentStatus.FAILED
        assert "broken xref" in report.error

    def test_token_failure_is_recorded(self, builder, context, textbook, fake_index, render_calls):
        fake_index[str(textbook)] = {"5-10": 3, "5-99": 99, "6-1": 5}

        report = builder.build(only_source="Statics Book")[0]

        assert report.status == DocumentStatus.BUILT
        assert report.rendered == 2
        assert len(report.failures) == 1
        assert report.failures[0].problem == "5-99"
        assert report.failures[0].page_number == 99
        assert not (context.cache_dir / "Statics_Book" / "5-99.jpg").exists()

    def test_unknown_only_source(self, builder):
        with pytest.raises(NotFound) as exc:
            builder.build(only_source="Nope")
        assert str(exc.value) == "Source 'Nope' not found in sources.json."

    def test_real_index_of_hyphenated_book_is_empty(self, context, throttle):
        # The fixture book numbers problems with hyphens/periods only
        report = CacheBuilder(context, options=FAST, throttle=throttle).build(
            only_source="Statics Book"
        )[0]
        assert report.status == DocumentStatus.EMPTY


class TestSlugDirectories:
    """Test per-source cache directories."""

    def test_source_names_are_slugged(self, tmp_path, make_pdf, write_sources, fake_index, throttle):
        pdf = make_pdf(["one page"])
        write_sources({
            "defaultSource": "Hibbeler 14th ed.",
            "sources": {"Hibbeler 14th ed.": str(pdf)},
        })
        fake_index[str(pdf)] = {"1-1": 1}
        context = AppContext(base_dir=tmp_path)

        CacheBuilder(context, options=FAST, throttle=throttle).build()

        assert (context.cache_dir / "Hibbeler_14th_ed" / "1-1.jpg").is_file()
