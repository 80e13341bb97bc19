"""Shared fakes standing in for PyMuPDF and the OCR engines."""
from __future__ import annotations

import threading
from typing import Iterable

import pytest
from PIL import Image

from highlight_engine.errors import DecodeFailure
from highlight_engine.registry import PageRegistry
from highlight_engine.types import Page, RawWord, RenderedPage, TextRun


class FakeRasterizer:
    """Renders blank pages of the right size; can block or fail on demand."""

    def __init__(self, sizes: dict[int, tuple[float, float]], *, failing: Iterable[int] = ()):
        self.sizes = dict(sizes)
        self.failing = set(failing)
        self.gate: threading.Event | None = None
        self.calls: list[tuple[int, float, int]] = []
        self.text_runs: dict[int, list[TextRun]] = {}

    def page_count(self) -> int:
        return len(self.sizes)

    def page(self, page_number: int) -> Page:
        w, h = self.sizes[page_number]
        return Page(number=page_number, intrinsic_width=w, intrinsic_height=h)

    def render(self, page_number: int, scale: float, rotation: int) -> RenderedPage:
        self.calls.append((page_number, scale, rotation))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if page_number in self.failing:
            raise DecodeFailure(page_number, "corrupt page stream")
        w, h = self.sizes[page_number]
        size = (round(w * scale), round(h * scale))
        if rotation in (90, 270):
            size = (size[1], size[0])
        return RenderedPage(
            page_number=page_number,
            image=Image.new("RGB", size, color=(255, 255, 255)),
            text_runs=list(self.text_runs.get(page_number, [])),
        )


class FakeOcrEngine:
    """Returns fixed words given in Intrinsic units, scaled to the raster.

    Assumes rotation 0; the raster scale is derived from the image width.
    """

    def __init__(self, intrinsic_width: float, words: list[tuple[str, tuple[float, float, float, float]]]):
        self.intrinsic_width = intrinsic_width
        self.words = words
        self.gate: threading.Event | None = None
        self.error: Exception | None = None
        self.calls = 0

    def recognize(self, image: Image.Image) -> list[RawWord]:
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        k = image.size[0] / self.intrinsic_width
        return [
            RawWord(text=text, bbox_xyxy=(x0 * k, y0 * k, x1 * k, y1 * k), confidence=0.9)
            for text, (x0, y0, x1, y1) in self.words
        ]


@pytest.fixture
def page() -> Page:
    return Page(number=1, intrinsic_width=600.0, intrinsic_height=800.0)


@pytest.fixture
def registry() -> PageRegistry:
    return PageRegistry()


@pytest.fixture
def rasterizer() -> FakeRasterizer:
    return FakeRasterizer({n: (600.0, 800.0) for n in range(1, 8)})
