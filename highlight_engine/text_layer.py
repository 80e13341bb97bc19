from __future__ import annotations

import math
from typing import Any, Iterable, Sequence

from .geometry import to_viewport, to_viewport_point
from .types import OcrWord, Page, TextRun, TextSpan, ViewportTransform

MIN_OCR_FONT_SIZE = 10.0


def build_text_layer(runs: Iterable[TextRun], page: Page, transform: ViewportTransform) -> list[TextSpan]:
    """Position native text runs as invisible selectable spans.

    The span anchor is the run origin mapped into Viewport space; hosts rotate
    the span by `angle` around that anchor.
    """
    spans: list[TextSpan] = []
    for run in runs:
        if not run.text or not run.text.strip():
            continue
        left, top = to_viewport_point(run.origin_x, run.origin_y, page, transform)
        spans.append(
            TextSpan(
                text=run.text,
                left=left,
                top=top,
                font_size=run.glyph_height * transform.scale,
                angle=(run.glyph_angle + transform.rotation) % 360,
                font_id=run.font_id,
                width=None if run.advance is None else run.advance * transform.scale,
                height=run.glyph_height * transform.scale,
            )
        )
    return spans


def build_ocr_layer(words: Iterable[OcrWord], page: Page, transform: ViewportTransform) -> list[TextSpan]:
    """Selectable substrate for a scanned page, one span per OCR word."""
    spans: list[TextSpan] = []
    for word in words:
        box = to_viewport(word.box, page, transform)
        if box.width <= 0 or box.height <= 0:
            continue
        spans.append(
            TextSpan(
                # trailing space so a drag across words selects "a b" rather than "ab"
                text=word.text + " ",
                left=box.x,
                top=box.y,
                font_size=max(MIN_OCR_FONT_SIZE, box.height * 0.9),
                angle=float(transform.rotation),
                width=box.width,
                height=box.height,
            )
        )
    return spans


def has_selectable_text(runs: Sequence[TextRun]) -> bool:
    """False for scanned pages: the viewer has to offer OCR instead."""
    return any(r.text.strip() for r in runs)


def extract_text_runs(fitz_page: Any) -> list[TextRun]:
    """Read native text runs from a PyMuPDF page."""
    data = fitz_page.get_text("dict")
    runs: list[TextRun] = []
    for block in data.get("blocks", []):
        if block.get("type", 0) != 0:  # image block
            continue
        for line in block.get("lines", []):
            dx, dy = line.get("dir", (1.0, 0.0))
            angle = math.degrees(math.atan2(dy, dx)) % 360
            for span in line.get("spans", []):
                text = span.get("text") or ""
                if not text.strip():
                    continue
                ox, oy = span.get("origin", (0.0, 0.0))
                x0, _, x1, _ = span.get("bbox", (ox, oy, ox, oy))
                runs.append(
                    TextRun(
                        text=text,
                        origin_x=float(ox),
                        origin_y=float(oy),
                        glyph_height=float(span.get("size", 0.0)),
                        glyph_angle=angle,
                        font_id=str(span.get("font") or ""),
                        advance=float(abs(x1 - x0)),
                    )
                )
    return runs
