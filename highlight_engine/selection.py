"""Selection capture against a page's interactive layer.

The host (browser, Qt view, test) describes a live selection as a
SelectionRange: the selected text, the client-space rectangles of the range
(one per visual line) and which interactive layer holds the range's start,
end and common ancestor. Nothing here touches a rendering tree.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import SelectionOutsideLayer
from .geometry import is_degenerate
from .types import CaptureResult, Rect

logger = logging.getLogger(__name__)

DEFAULT_MIN_RECT_SIZE = 2.0


@dataclass(frozen=True)
class LayerHandle:
    """Interactive layer of one rendered page, in client coordinates."""

    layer_id: str
    page_number: int
    origin_x: float
    origin_y: float
    width: float
    height: float

    @property
    def client_bounds(self) -> Rect:
        return Rect(self.origin_x, self.origin_y, self.width, self.height)


@dataclass(frozen=True)
class SelectionRange:
    text: str
    client_rects: tuple[Rect, ...]
    start_layer_id: str | None
    end_layer_id: str | None
    ancestor_layer_id: str | None  # None when the common ancestor is outside every layer
    collapsed: bool = False
    line_texts: tuple[str, ...] | None = None  # aligned with client_rects when the host knows them


def _is_empty(selection: SelectionRange) -> bool:
    return selection.collapsed or not selection.text.strip() or not selection.client_rects


def _to_layer_rects(rects: Iterable[Rect], layer: LayerHandle, min_size: float) -> list[Rect]:
    out: list[Rect] = []
    for r in rects:
        local = r.translate(-layer.origin_x, -layer.origin_y)
        if is_degenerate(local, min_size):
            continue
        out.append(local)
    return out


def capture(
    selection: SelectionRange,
    layer: LayerHandle,
    *,
    min_size: float = DEFAULT_MIN_RECT_SIZE,
) -> CaptureResult | None:
    """Turn a selection confined to one layer into layer-relative rects.

    Returns None for collapsed/empty selections and when every rect is below
    the minimum size. Raises SelectionOutsideLayer when the range's common
    ancestor is not inside `layer`.
    """
    if _is_empty(selection):
        return None
    if selection.ancestor_layer_id != layer.layer_id:
        raise SelectionOutsideLayer(
            f"selection ancestor {selection.ancestor_layer_id!r} is not layer {layer.layer_id!r}"
        )

    rects = _to_layer_rects(selection.client_rects, layer, min_size)
    if not rects:
        return None
    return CaptureResult(page_number=layer.page_number, text=selection.text.strip(), rects=tuple(rects))


def safe_capture(
    selection: SelectionRange,
    layer: LayerHandle,
    *,
    min_size: float = DEFAULT_MIN_RECT_SIZE,
) -> CaptureResult | None:
    try:
        return capture(selection, layer, min_size=min_size)
    except SelectionOutsideLayer as e:
        logger.debug("ignoring selection: %s", e)
        return None


def _clip(rect: Rect, bounds: Rect) -> Rect | None:
    x0 = max(rect.x, bounds.x)
    y0 = max(rect.y, bounds.y)
    x1 = min(rect.right, bounds.right)
    y1 = min(rect.bottom, bounds.bottom)
    if x1 <= x0 or y1 <= y0:
        return None
    return Rect(x0, y0, x1 - x0, y1 - y0)


def capture_across_pages(
    selection: SelectionRange,
    layers: Sequence[LayerHandle],
    *,
    min_size: float = DEFAULT_MIN_RECT_SIZE,
    join_lines_with: str = " ",
) -> list[CaptureResult]:
    """Capture a selection that may span several pages.

    A selection whose ancestor is a single layer is captured as-is. Otherwise
    both endpoints must sit in known layers; each client rect then goes to the
    layer containing its center and is clipped to that layer. One result per
    page that keeps at least one rect, ordered by page number.
    """
    if _is_empty(selection):
        return []

    by_id = {layer.layer_id: layer for layer in layers}
    if selection.ancestor_layer_id is not None and selection.ancestor_layer_id in by_id:
        result = capture(selection, by_id[selection.ancestor_layer_id], min_size=min_size)
        return [result] if result is not None else []

    if selection.start_layer_id not in by_id or selection.end_layer_id not in by_id:
        raise SelectionOutsideLayer("selection endpoints are not inside registered layers")

    assigned: dict[str, list[Rect]] = {}
    texts: dict[str, list[str]] = {}
    line_texts = selection.line_texts
    if line_texts is not None and len(line_texts) != len(selection.client_rects):
        line_texts = None

    for idx, rect in enumerate(selection.client_rects):
        cx, cy = rect.center
        owner = next((layer for layer in layers if layer.client_bounds.contains_point(cx, cy)), None)
        if owner is None:
            continue
        clipped = _clip(rect, owner.client_bounds)
        if clipped is None:
            continue
        assigned.setdefault(owner.layer_id, []).append(clipped)
        if line_texts is not None:
            texts.setdefault(owner.layer_id, []).append(line_texts[idx])

    results: list[CaptureResult] = []
    for layer_id, rects in assigned.items():
        layer = by_id[layer_id]
        local = _to_layer_rects(rects, layer, min_size)
        if not local:
            continue
        if line_texts is not None:
            text = join_lines_with.join(t.strip() for t in texts.get(layer_id, []) if t.strip())
        else:
            text = selection.text.strip()
        results.append(CaptureResult(page_number=layer.page_number, text=text, rects=tuple(local)))

    results.sort(key=lambda r: r.page_number)
    return results
