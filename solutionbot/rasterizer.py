"""
Page Rasterizer
===============
Renders a single PDF page to a JPEG suitable for a chat attachment.

Pipeline:
    page size (pt) → target pixels at dpi → clamp to max size →
    fitz pixmap with alpha → flatten over white (Pillow) → JPEG bytes →
    atomic write

Full-resolution pixmaps are large, so renders go through a process-wide
RenderThrottle. With the default capacity of 1, concurrent callers queue
and render one after another.
"""

from __future__ import annotations

import io
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

import fitz  # PyMuPDF
from PIL import Image

from . import storage
from .config import RenderOptions
from .errors import IOFailure, OutOfRange, ParseFailure
from .models import RenderedPage
from .search import open_document

logger = logging.getLogger(__name__)

POINTS_PER_INCH = 72.0
WHITE = (255, 255, 255)


# ─── Render Throttle ──────────────────────────────────────────────────────────


class RenderThrottle:
    """
    Bounded pool of render slots.

    Usage:
        with throttle.slot():
            ...  # at most ``capacity`` threads are in here
    """

    def __init__(self, capacity: int = 1):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._semaphore = threading.BoundedSemaphore(capacity)
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        """Number of renders currently holding a slot."""
        with self._lock:
            return self._active

    @contextmanager
    def slot(self) -> Iterator[None]:
        self._semaphore.acquire()
        with self._lock:
            self._active += 1
        try:
            yield
        finally:
            with self._lock:
                self._active -= 1
            self._semaphore.release()


_throttle = RenderThrottle(1)


def get_render_throttle() -> RenderThrottle:
    return _throttle


def configure_render_throttle(capacity: int) -> RenderThrottle:
    """Replace the global throttle; renders already in flight keep the old one."""
    global _throttle
    if capacity != _throttle.capacity:
        _throttle = RenderThrottle(capacity)
        logger.info(f"Render throttle capacity set to {capacity}")
    return _throttle


# ─── Geometry / Pixels ────────────────────────────────────────────────────────


def compute_target_size(
    width_pt: float,
    height_pt: float,
    dpi: int,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
) -> tuple[int, int]:
    """
    Pixel size for a page rendered at ``dpi``, clamped to the max box.

    612x792 pt at 150 dpi → (1275, 1650); clamped to 1000x1000 → (773, 1000).
    """
    width = max(1, int(round(width_pt * dpi / POINTS_PER_INCH)))
    height = max(1, int(round(height_pt * dpi / POINTS_PER_INCH)))

    limit_w = max_width if max_width else width
    limit_h = max_height if max_height else height
    if width <= limit_w and height <= limit_h:
        return width, height

    scale = min(limit_w / width, limit_h / height)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def flatten_onto_white(image: Image.Image) -> Image.Image:
    """
    Composite an RGBA image over opaque white.

    Per channel: out = src * a + 255 * (1 - a). Fully opaque pixels are
    unchanged, fully transparent pixels become white.
    """
    if image.mode != "RGBA":
        return image.convert("RGB")

    alpha = image.getchannel("A")
    low, _ = alpha.getextrema()
    if low == 255:
        # Fully opaque
        return image.convert("RGB")

    background = Image.new("RGB", image.size, WHITE)
    background.paste(image.convert("RGB"), mask=alpha)
    return background


def _pixmap_to_image(pix: fitz.Pixmap) -> Image.Image:
    if pix.n - pix.alpha != 3:
        pix = fitz.Pixmap(fitz.csRGB, pix)
    if not pix.alpha:
        return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
    # MuPDF samples carry premultiplied alpha
    image = Image.frombytes("RGBa", (pix.width, pix.height), pix.samples)
    return image.convert("RGBA")


def encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    try:
        image.save(buf, format="JPEG", quality=quality, optimize=True)
    except (OSError, ValueError) as e:
        raise IOFailure(f"JPEG encoding failed: {e}") from e
    return buf.getvalue()


# ─── Rendering ────────────────────────────────────────────────────────────────


def render_page(
    pdf_path: str,
    page_number: int,
    options: Optional[RenderOptions] = None,
    output_path: Optional[Union[str, Path]] = None,
    throttle: Optional[RenderThrottle] = None,
) -> RenderedPage:
    """
    Render one page of a PDF to a JPEG file.

    Args:
        pdf_path: Path to the PDF file.
        page_number: 1-based page to render.
        options: Resolution, quality, size clamp and flattening settings.
        output_path: Destination file. Defaults to a fresh temp artifact.
        throttle: Concurrency limiter. Defaults to the global throttle.

    Returns:
        RenderedPage describing the written file.

    Raises:
        NotFound: If the PDF does not exist.
        ParseFailure: If the PDF cannot be read or rendered.
        OutOfRange: If the page number is outside the document.
        IOFailure: If encoding or writing the JPEG fails.
    """
    options = options or RenderOptions()
    throttle = throttle or get_render_throttle()

    if page_number < 1:
        raise OutOfRange(f"Page number must be at least 1, got {page_number}")

    with throttle.slot():
        with open_document(pdf_path) as doc:
            if page_number > doc.page_count:
                raise OutOfRange(
                    f"Page {page_number} exceeds document length "
                    f"({doc.page_count} pages)"
                )

            try:
                page = doc[page_number - 1]
                rect = page.rect
                if rect.width <= 0 or rect.height <= 0:
                    raise ParseFailure(
                        f"Page {page_number} of {pdf_path} has no size"
                    )

                width, height = compute_target_size(
                    rect.width,
                    rect.height,
                    options.dpi,
                    options.max_width,
                    options.max_height,
                )
                matrix = fitz.Matrix(width / rect.width, height / rect.height)
                pix = page.get_pixmap(matrix=matrix, alpha=True)
            except (RuntimeError, ValueError) as e:
                raise ParseFailure(
                    f"Cannot render page {page_number} of {pdf_path}: {e}"
                ) from e

        image = _pixmap_to_image(pix)
        del pix

        # Pixmap bounds are rounded by MuPDF; pin the exact target size
        if image.size != (width, height):
            image = image.resize((width, height), Image.Resampling.LANCZOS)

        if options.force_white_background:
            image = flatten_onto_white(image)
        else:
            image = image.convert("RGB")

        data = encode_jpeg(image, options.jpeg_quality)
        image.close()

    dest = Path(output_path) if output_path else storage.new_artifact_path(page_number)
    try:
        storage.write_bytes_atomic(dest, data)
    except OSError as e:
        raise IOFailure(f"Cannot write {dest}: {e}") from e

    logger.info(
        f"Rendered page {page_number} of {pdf_path} at {options.dpi} dpi "
        f"→ {width}x{height} ({len(data) // 1024} KB): {dest}"
    )

    return RenderedPage(
        path=str(dest),
        page_number=page_number,
        width=width,
        height=height,
    )
