"""
Answer Engine
=============
Main orchestrator for a single "find this problem" request.

Usage:
    engine = AnswerEngine(get_context())
    result = engine.lookup("Hibbeler", "5-10")
    # result.artifact_path is a JPEG of the first page mentioning 5–10

Architecture:
    source/path → Normalizer → Search Engine → (cache hit | Rasterizer) →
    LookupResult
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Optional

from . import storage
from .config import AppContext, RenderOptions, get_context
from .errors import NotFound, OperationCancelled
from .models import LookupResult, LookupStatus
from .normalizer import normalize_problem
from .rasterizer import RenderThrottle, render_page
from .search import find_first_matching_page

logger = logging.getLogger(__name__)


class AnswerEngine:
    """
    Resolves a raw problem string to a rendered page image.

    Blocking: meant to run in a worker thread. Cancellation is cooperative
    through ``cancel_event`` and only checked between steps, never mid-render.
    """

    def __init__(
        self,
        context: Optional[AppContext] = None,
        throttle: Optional[RenderThrottle] = None,
    ):
        self.context = context or get_context()
        self.throttle = throttle

    def resolve_document(self, source_or_path: Optional[str]) -> tuple[str, str]:
        """
        Map a source name (or a direct PDF path) to (name, pdf path).
        Blank input means the configured default source.

        Raises:
            ConfigError: If sources.json is needed and unusable.
            NotFound: If the name is unknown.
        """
        value = (source_or_path or "").strip()

        if self._is_direct_path(value):
            return os.path.splitext(os.path.basename(value))[0], value

        return self.context.sources.resolve(value)

    @staticmethod
    def _is_direct_path(value: Optional[str]) -> bool:
        value = (value or "").strip()
        return value.lower().endswith(".pdf") and os.path.isfile(value)

    def lookup(
        self,
        source_or_path: Optional[str],
        raw_problem: str,
        options: Optional[RenderOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> LookupResult:
        """
        Find and render the page for a problem.

        Args:
            source_or_path: Source name, PDF path, or None for the default.
            raw_problem: User input such as "5-10" or "5.10".
            options: Render settings; defaults to the context's.
            cancel_event: Set by the caller to abandon the request.

        Returns:
            LookupResult with status FOUND (and an artifact) or NO_MATCH.

        Raises:
            ConfigError, NotFound, InvalidFormat, ParseFailure, OutOfRange,
            IOFailure, OperationCancelled
        """
        start_time = time.time()
        options = options or self.context.render_options

        # ── Step 1: Resolve the document ─────────────────────────────
        source_name, pdf_path = self.resolve_document(source_or_path)
        if not os.path.exists(pdf_path):
            raise NotFound(f"PDF not found for '{source_name}' at: {pdf_path}")

        # ── Step 2: Normalize the problem ────────────────────────────
        token = normalize_problem(raw_problem)
        self._check_cancelled(cancel_event)

        # ── Step 3: Search ───────────────────────────────────────────
        page_number = find_first_matching_page(pdf_path, token)
        if page_number is None:
            return LookupResult(
                status=LookupStatus.NO_MATCH,
                token=token,
                source_name=source_name,
                pdf_path=pdf_path,
            )
        self._check_cancelled(cancel_event)

        # ── Step 4: Serve from cache or render ───────────────────────
        cached = None
        if not self._is_direct_path(source_or_path):
            cached = self._cached_artifact(source_name, token.key)
        if cached:
            logger.info(f"Cache hit for {token.key} in '{source_name}': {cached}")
            artifact_path, from_cache = cached, True
        else:
            rendered = render_page(
                pdf_path,
                page_number,
                options=options,
                throttle=self.throttle,
            )
            artifact_path, from_cache = rendered.path, False

        elapsed = time.time() - start_time
        logger.info(
            f"Lookup {token.key} in '{source_name}' → page {page_number} "
            f"in {elapsed:.2f}s"
        )

        return LookupResult(
            status=LookupStatus.FOUND,
            token=token,
            source_name=source_name,
            pdf_path=pdf_path,
            page_number=page_number,
            artifact_path=artifact_path,
            from_cache=from_cache,
        )

    def _cached_artifact(self, source_name: str, problem_key: str) -> Optional[str]:
        if not self.context.use_cache:
            return None
        path = storage.get_cached_image_path(
            self.context.cache_dir, source_name, problem_key
        )
        return str(path) if path.is_file() else None

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Lookup cancelled.")
