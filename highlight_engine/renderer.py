from __future__ import annotations

import logging
from typing import Iterable

from PIL import Image, ImageColor, ImageDraw

from .geometry import to_viewport
from .types import DEFAULT_COLOR, DrawableRect, Highlight, Page, ViewportTransform

logger = logging.getLogger(__name__)


def render(highlights: Iterable[Highlight], page: Page, transform: ViewportTransform) -> list[DrawableRect]:
    """Storage highlights -> drawable Viewport rects for one page.

    Order follows the input, so later-added highlights paint on top.
    """
    out: list[DrawableRect] = []
    for h in highlights:
        if h.page_number != page.number:
            continue
        for r in h.rects:
            out.append(DrawableRect(viewport_rect=to_viewport(r, page, transform), color=h.color, highlight_id=h.id))
    return out


def _rgb(color: str) -> tuple[int, int, int]:
    try:
        return ImageColor.getrgb(color)[:3]
    except ValueError:
        logger.debug("unknown color %r, using default", color)
        return ImageColor.getrgb(DEFAULT_COLOR)[:3]


def paint(image: Image.Image, drawables: Iterable[DrawableRect], *, opacity: float = 0.4) -> Image.Image:
    """Composite translucent highlight rects onto a copy of the page bitmap."""
    base = image.convert("RGBA")
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    alpha = int(round(255 * max(0.0, min(1.0, opacity))))
    for d in drawables:
        r = d.viewport_rect
        draw.rectangle([r.x, r.y, r.right, r.bottom], fill=_rgb(d.color) + (alpha,))
    return Image.alpha_composite(base, overlay).convert("RGB")
