"""
Bulk Cache Builder
==================
Pre-renders every problem of every configured source.

For each source:
    1. Skip (with a warning) if the PDF is missing
    2. Build the full problem → first page index
    3. Skip (with a warning) if no problems were detected
    4. Render each problem, in key order, to cache/<slug>/<key>.jpg,
       leaving existing files alone unless ``force`` is set

A failing document or token is logged and reported, never fatal:
one bad PDF must not stop the rest from being cached.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, Optional

from . import storage
from .config import AppContext, RenderOptions, get_context
from .errors import NotFound
from .models import DocumentReport, DocumentStatus, RenderFailure
from .rasterizer import RenderThrottle, render_page
from .search import build_problem_index

logger = logging.getLogger(__name__)

# Callback(source_name, processed, total)
ProgressCallback = Callable[[str, int, int], None]


class CacheBuilder:
    """Builds the on-disk page cache for all (or one) configured sources."""

    def __init__(
        self,
        context: Optional[AppContext] = None,
        options: Optional[RenderOptions] = None,
        throttle: Optional[RenderThrottle] = None,
    ):
        self.context = context or get_context()
        self.options = options or self.context.cache_render_options
        self.throttle = throttle

    def build(
        self,
        force: bool = False,
        only_source: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> list[DocumentReport]:
        """
        Build the cache.

        Args:
            force: Re-render even when a cached image already exists.
            only_source: Restrict the run to one source (case-insensitive).
            progress_callback: Called after each problem of each source.

        Returns:
            One DocumentReport per processed source.

        Raises:
            ConfigError: If sources.json is unusable.
            NotFound: If ``only_source`` is not configured.
        """
        cfg = self.context.sources

        sources = list(cfg.sources.items())
        if only_source and only_source.strip():
            found = cfg.find(only_source)
            if found is None:
                raise NotFound(
                    f"Source '{only_source.strip()}' not found in sources.json."
                )
            sources = [found]

        self.context.cache_dir.mkdir(parents=True, exist_ok=True)

        start_time = time.time()
        reports = []
        for source_name, pdf_path in sources:
            reports.append(
                self.build_document(source_name, pdf_path, force, progress_callback)
            )

        elapsed = time.time() - start_time
        rendered = sum(r.rendered for r in reports)
        skipped = sum(r.skipped for r in reports)
        logger.info(
            f"Cache build finished in {elapsed:.2f}s: "
            f"{rendered} rendered, {skipped} skipped across {len(reports)} sources"
        )
        return reports

    def build_document(
        self,
        source_name: str,
        pdf_path: str,
        force: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> DocumentReport:
        """Index and render one source. Never raises for document problems."""
        if not os.path.exists(pdf_path):
            logger.warning(f"[skip] '{source_name}': PDF not found at {pdf_path}")
            return DocumentReport(
                source=source_name,
                pdf_path=pdf_path,
                status=DocumentStatus.MISSING,
                error=f"PDF not found at {pdf_path}",
            )

        logger.info(f"[scan] '{source_name}' -> {pdf_path}")
        try:
            index = build_problem_index(pdf_path)
        except Exception as e:
            logger.error(f"[error] '{source_name}': Failed to build index: {e}")
            return DocumentReport(
                source=source_name,
                pdf_path=pdf_path,
                status=DocumentStatus.FAILED,
                error=f"Failed to build index: {e}",
            )

        if not index:
            logger.warning(f"[warn] '{source_name}': No problems detected.")
            return DocumentReport(
                source=source_name,
                pdf_path=pdf_path,
                status=DocumentStatus.EMPTY,
            )

        out_dir = storage.get_source_cache_dir(self.context.cache_dir, source_name)
        out_dir.mkdir(parents=True, exist_ok=True)

        report = DocumentReport(
            source=source_name,
            pdf_path=pdf_path,
            status=DocumentStatus.BUILT,
            total=len(index),
        )

        ordered = sorted(index.items(), key=lambda kv: kv[0].lower())
        for processed, (problem, page_number) in enumerate(ordered, start=1):
            dest = out_dir / f"{problem}.jpg"

            if dest.exists() and not force:
                report.skipped += 1
            else:
                try:
                    render_page(
                        pdf_path,
                        page_number,
                        options=self.options,
                        output_path=dest,
                        throttle=self.throttle,
                    )
                    report.rendered += 1
                except Exception as e:
                    logger.error(
                        f"[error] '{source_name}' {problem} "
                        f"(page {page_number}): {e}"
                    )
                    report.failures.append(RenderFailure(
                        problem=problem,
                        page_number=page_number,
                        message=str(e),
                    ))

            if progress_callback:
                progress_callback(source_name, processed, report.total)

        logger.info(
            f"[done] '{source_name}': rendered {report.rendered}/{report.total} "
            f"problems (skipped {report.skipped})."
        )
        return report
