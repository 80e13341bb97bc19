"""Coordinate mapping between the three frames a highlight lives in.

- Intrinsic space: the page at scale=1, rotation=0. Origin top-left.
- Viewport space: pixels currently on screen, after scale and a clockwise
  rotation. Origin is the top-left of the *rotated* page bounds.
- Storage space: what gets persisted. Identical to Intrinsic space.

Every function here is pure. Rotations are multiples of 90 degrees, so an
axis-aligned rect always maps to an axis-aligned rect and the conversions are
exact up to floating point.
"""
from __future__ import annotations

from .types import Page, Rect, ViewportTransform
from .utils import clamp

DEFAULT_EPSILON = 1e-6


def scaled_size(page: Page, transform: ViewportTransform) -> tuple[float, float]:
    return page.intrinsic_width * transform.scale, page.intrinsic_height * transform.scale


def rotated_size(page: Page, transform: ViewportTransform) -> tuple[float, float]:
    """Size of the page as displayed; 90/270 swap width and height."""
    w, h = scaled_size(page, transform)
    if transform.rotation in (90, 270):
        return h, w
    return w, h


def to_viewport_point(x: float, y: float, page: Page, transform: ViewportTransform) -> tuple[float, float]:
    w, h = scaled_size(page, transform)
    sx, sy = x * transform.scale, y * transform.scale
    r = transform.rotation
    if r == 0:
        return sx, sy
    if r == 90:
        return h - sy, sx
    if r == 180:
        return w - sx, h - sy
    return sy, w - sx  # 270


def to_storage_point(u: float, v: float, page: Page, transform: ViewportTransform) -> tuple[float, float]:
    w, h = scaled_size(page, transform)
    r = transform.rotation
    if r == 0:
        x, y = u, v
    elif r == 90:
        x, y = v, h - u
    elif r == 180:
        x, y = w - u, h - v
    else:  # 270
        x, y = w - v, u
    return x / transform.scale, y / transform.scale


def clamp_rect(rect: Rect, width: float, height: float) -> Rect:
    x0 = clamp(rect.x, 0.0, width)
    y0 = clamp(rect.y, 0.0, height)
    x1 = clamp(rect.right, 0.0, width)
    y1 = clamp(rect.bottom, 0.0, height)
    return Rect.from_xyxy(x0, y0, x1, y1)


def is_degenerate(rect: Rect, min_size: float = 0.0) -> bool:
    """True when the rect is too thin to be a real selection line."""
    if rect.width <= 0 or rect.height <= 0:
        return True
    return rect.width < min_size or rect.height < min_size


def to_storage(rect: Rect, page: Page, transform: ViewportTransform) -> Rect:
    """Viewport rect -> normalized Storage rect.

    The viewport rect is first clamped to the rotated page bounds, then the
    rotation is undone, the scale divided out, and the result clamped to the
    intrinsic page bounds.
    """
    vw, vh = rotated_size(page, transform)
    r = clamp_rect(rect, vw, vh)
    x0, y0 = to_storage_point(r.x, r.y, page, transform)
    x1, y1 = to_storage_point(r.right, r.bottom, page, transform)
    return clamp_rect(Rect.from_xyxy(x0, y0, x1, y1), page.intrinsic_width, page.intrinsic_height)


def to_viewport(rect: Rect, page: Page, transform: ViewportTransform) -> Rect:
    """Normalized Storage rect -> Viewport rect at the given transform."""
    x0, y0 = to_viewport_point(rect.x, rect.y, page, transform)
    x1, y1 = to_viewport_point(rect.right, rect.bottom, page, transform)
    return Rect.from_xyxy(x0, y0, x1, y1)


def approx_equal(a: float, b: float, epsilon: float = DEFAULT_EPSILON) -> bool:
    return abs(a - b) <= epsilon * max(1.0, abs(a), abs(b))


def rects_close(a: Rect, b: Rect, epsilon: float = DEFAULT_EPSILON) -> bool:
    return (
        approx_equal(a.x, b.x, epsilon)
        and approx_equal(a.y, b.y, epsilon)
        and approx_equal(a.width, b.width, epsilon)
        and approx_equal(a.height, b.height, epsilon)
    )
