"""
Tests for page rendering, pixel flattening and the render throttle.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import fitz
import pytest
from PIL import Image

from solutionbot import storage
from solutionbot.config import RenderOptions
from solutionbot.errors import NotFound, OutOfRange, ParseFailure
from solutionbot.rasterizer import (
    RenderThrottle,
    compute_target_size,
    configure_render_throttle,
    encode_jpeg,
    flatten_onto_white,
    get_render_throttle,
    render_page,
)


# ═══════════════════════════════════════════════════════════════════════════════
# GEOMETRY
# ═══════════════════════════════════════════════════════════════════════════════


class TestComputeTargetSize:
    """Test dpi scaling and the max-size clamp."""

    def test_letter_at_150_dpi(self):
        assert compute_target_size(612, 792, 150) == (1275, 1650)

    def test_clamped_keeps_aspect(self):
        assert compute_target_size(612, 792, 150, 1000, 1000) == (773, 1000)

    def test_under_limit_is_unchanged(self):
        assert compute_target_size(612, 792, 72, 2000, 2000) == (612, 792)

    def test_width_only_limit(self):
        assert compute_target_size(612, 792, 150, 500, None) == (500, 647)

    def test_never_below_one_pixel(self):
        assert compute_target_size(1, 1, 1) == (1, 1)
        assert compute_target_size(612, 792, 150, 1, 1) == (1, 1)


# ═══════════════════════════════════════════════════════════════════════════════
# PIXELS
# ═══════════════════════════════════════════════════════════════════════════════


class TestFlattenOntoWhite:
    """Test alpha compositing over white."""

    def test_transparent_becomes_white(self):
        img = Image.new("RGBA", (2, 2), (255, 0, 0, 0))
        out = flatten_onto_white(img)
        assert out.mode == "RGB"
        assert out.getpixel((0, 0)) == (255, 255, 255)

    def test_opaque_is_unchanged(self):
        img = Image.new("RGBA", (2, 2), (10, 20, 30, 255))
        assert flatten_onto_white(img).getpixel((1, 1)) == (10, 20, 30)

    def test_half_alpha_blends(self):
        img = Image.new("RGBA", (1, 1), (0, 0, 0, 128))
        r, g, b = flatten_onto_white(img).getpixel((0, 0))
        # 255 * (1 - 128/255) = 127
        for channel in (r, g, b):
            assert abs(channel - 127) <= 1

    def test_mixed_pixels(self):
        img = Image.new("RGBA", (2, 1))
        img.putpixel((0, 0), (0, 0, 255, 255))
        img.putpixel((1, 0), (0, 0, 255, 0))
        out = flatten_onto_white(img)
        assert out.getpixel((0, 0)) == (0, 0, 255)
        assert out.getpixel((1, 0)) == (255, 255, 255)

    def test_rgb_input_passes_through(self):
        img = Image.new("RGB", (1, 1), (1, 2, 3))
        assert flatten_onto_white(img).getpixel((0, 0)) == (1, 2, 3)

    def test_encode_jpeg(self):
        data = encode_jpeg(Image.new("RGB", (4, 4), (255, 255, 255)), 80)
        assert data[:2] == b"\xff\xd8"


# ═══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ═══════════════════════════════════════════════════════════════════════════════


class TestRenderPage:
    """Test rendering real PDF pages to JPEG."""

    def test_dimensions_match_dpi(self, textbook, tmp_path, throttle):
        out = tmp_path / "p3.jpg"
        result = render_page(
            str(textbook), 3,
            options=RenderOptions(dpi=72),
            output_path=out,
            throttle=throttle,
        )
        assert (result.width, result.height) == (612, 792)
        assert result.page_number == 3
        assert result.path == str(out)
        with Image.open(out) as img:
            assert img.format == "JPEG"
            assert img.size == (612, 792)

    def test_clamped_render(self, textbook, tmp_path, throttle):
        out = tmp_path / "small.jpg"
        result = render_page(
            str(textbook), 1,
            options=RenderOptions(dpi=150, max_width=300, max_height=300),
            output_path=out,
            throttle=throttle,
        )
        assert (result.width, result.height) == (232, 300)
        with Image.open(out) as img:
            assert img.size == (232, 300)

    def test_blank_page_is_white(self, textbook, tmp_path, throttle):
        out = tmp_path / "blank.jpg"
        render_page(
            str(textbook), 2,
            options=RenderOptions(dpi=36),
            output_path=out,
            throttle=throttle,
        )
        with Image.open(out) as img:
            r, g, b = img.convert("RGB").getpixel((img.width // 2, img.height // 2))
        assert min(r, g, b) >= 245

    def test_default_output_is_temp_artifact(self, textbook, throttle):
        result = render_page(
            str(textbook), 3, options=RenderOptions(dpi=36), throttle=throttle
        )
        path = Path(result.path)
        try:
            assert path.is_file()
            assert path.name.startswith("answer-page-3-")
            assert path.suffix == ".jpg"
        finally:
            assert storage.discard_artifact(path)
        assert not path.exists()

    def test_rerender_overwrites(self, textbook, tmp_path, throttle):
        out = tmp_path / "again.jpg"
        options = RenderOptions(dpi=36)
        first = render_page(str(textbook), 1, options=options, output_path=out, throttle=throttle)
        second = render_page(str(textbook), 1, options=options, output_path=out, throttle=throttle)
        assert (first.width, first.height) == (second.width, second.height)
        assert [p.name for p in tmp_path.iterdir() if p.suffix == ".tmp"] == []

    @pytest.mark.parametrize("page", [0, -1, 6, 100])
    def test_out_of_range(self, textbook, tmp_path, throttle, page):
        with pytest.raises(OutOfRange):
            render_page(str(textbook), page, output_path=tmp_path / "x.jpg", throttle=throttle)
        assert throttle.active == 0
        assert not (tmp_path / "x.jpg").exists()

    def test_missing_pdf(self, tmp_path, throttle):
        with pytest.raises(NotFound):
            render_page(str(tmp_path / "nope.pdf"), 1, throttle=throttle)

    def test_corrupt_pdf(self, tmp_path, throttle):
        bad = tmp_path / "bad.pdf"
        bad.write_bytes(b"this is not a pdf at all")
        with pytest.raises(ParseFailure):
            render_page(str(bad), 1, throttle=throttle)
        assert throttle.active == 0


class TestTranslucentContent:
    """Test compositing of semi-transparent page content over white."""

    @pytest.fixture
    def tinted_pdf(self, tmp_path):
        def _make(opacity: float) -> Path:
            path = tmp_path / f"tint-{opacity}.pdf"
            doc = fitz.open()
            page = doc.new_page(width=612, height=792)
            page.draw_rect(
                fitz.Rect(100, 100, 500, 500),
                color=None,
                fill=(1, 0, 0),
                fill_opacity=opacity,
            )
            doc.save(str(path))
            doc.close()
            return path

        return _make

    def _centre_pixel(self, pdf: Path, out: Path, throttle) -> tuple:
        render_page(
            str(pdf), 1,
            options=RenderOptions(dpi=72, jpeg_quality=100),
            output_path=out,
            throttle=throttle,
        )
        with Image.open(out) as img:
            return img.convert("RGB").getpixel((300, 300))

    def test_half_opacity_fill_blends_once(self, tinted_pdf, tmp_path, throttle):
        r, g, b = self._centre_pixel(tinted_pdf(0.5), tmp_path / "half.jpg", throttle)
        # 0.5 * (255, 0, 0) + 0.5 * white
        assert abs(r - 255) <= 5
        assert abs(g - 127) <= 5
        assert abs(b - 127) <= 5

    def test_opaque_fill_keeps_colour(self, tinted_pdf, tmp_path, throttle):
        r, g, b = self._centre_pixel(tinted_pdf(1.0), tmp_path / "solid.jpg", throttle)
        assert r >= 250
        assert g <= 5 and b <= 5


# ═══════════════════════════════════════════════════════════════════════════════
# THROTTLE
# ═══════════════════════════════════════════════════════════════════════════════


class TestRenderThrottle:
    """Test the bounded render slot pool."""

    def _peak_concurrency(self, throttle: RenderThrottle, workers: int) -> int:
        peak = {"value": 0}
        lock = threading.Lock()

        def work():
            with throttle.slot():
                with lock:
                    peak["value"] = max(peak["value"], throttle.active)
                time.sleep(0.02)

        threads = [threading.Thread(target=work) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return peak["value"]

    def test_capacity_one_serializes(self):
        assert self._peak_concurrency(RenderThrottle(1), 6) == 1

    def test_capacity_bounds_parallelism(self):
        assert self._peak_concurrency(RenderThrottle(2), 6) <= 2

    def test_slot_released_on_error(self):
        throttle = RenderThrottle(1)
        with pytest.raises(RuntimeError):
            with throttle.slot():
                raise RuntimeError("boom")
        assert throttle.active == 0
        with throttle.slot():
            assert throttle.active == 1

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RenderThrottle(0)

    def test_configure_global(self):
        original = get_render_throttle()
        try:
            replaced = configure_render_throttle(3)
            assert replaced.capacity == 3
            assert get_render_throttle() is replaced
            assert configure_render_throttle(3) is replaced
        finally:
            configure_render_throttle(original.capacity)
