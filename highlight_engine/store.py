from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Iterable

from .errors import InvalidHighlight
from .geometry import is_degenerate
from .types import Highlight, Rect
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_MIN_STORAGE_SIZE = 0.5
MUTABLE_FIELDS = ("color", "note_text")

Listener = Callable[[str, Highlight], None]


class HighlightStore:
    """Highlights of one document, keyed by id and queried by page.

    Writers are serialized by a lock. The state itself is an immutable tuple
    that each mutation replaces in a single assignment, so readers never see
    a half-applied change and never take the lock.
    """

    def __init__(self, *, min_size: float = DEFAULT_MIN_STORAGE_SIZE):
        self.min_size = float(min_size)
        self._write_lock = threading.Lock()
        self._snapshot: tuple[Highlight, ...] = ()
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        """listener(action, highlight) runs after every committed mutation."""
        self._listeners.append(listener)

    def _notify(self, action: str, highlight: Highlight) -> None:
        for listener in list(self._listeners):
            listener(action, highlight)

    def _validated(self, h: Highlight) -> Highlight:
        if not h.id:
            raise InvalidHighlight("highlight id is empty")
        if h.page_number < 1:
            raise InvalidHighlight(f"highlight {h.id}: page number must be >= 1")
        rects = tuple(r for r in h.rects if not is_degenerate(r, self.min_size))
        if not rects:
            raise InvalidHighlight(f"highlight {h.id}: no usable rects")
        now = utc_now_iso()
        return replace(h, rects=rects, created_at=h.created_at or now, updated_at=h.updated_at or now)

    def add(self, h: Highlight) -> Highlight:
        stored = self._validated(h)
        with self._write_lock:
            if any(x.id == stored.id for x in self._snapshot):
                raise InvalidHighlight(f"duplicate highlight id: {stored.id}")
            self._snapshot = self._snapshot + (stored,)
        self._notify("add", stored)
        return stored

    def update(self, highlight_id: str, **changes: Any) -> Highlight:
        """Change color and/or note. Geometry is immutable once created."""
        rejected = sorted(k for k in changes if k not in MUTABLE_FIELDS)
        if rejected:
            raise InvalidHighlight(f"cannot update fields {rejected}; only {list(MUTABLE_FIELDS)}")
        if "color" in changes and not (isinstance(changes["color"], str) and changes["color"].strip()):
            raise InvalidHighlight(f"color must be a non-empty string, got {changes['color']!r}")
        if "note_text" in changes and not (changes["note_text"] is None or isinstance(changes["note_text"], str)):
            raise InvalidHighlight(f"note_text must be a string or None, got {type(changes['note_text']).__name__}")
        with self._write_lock:
            current = self._snapshot
            idx = self._index_of(current, highlight_id)
            updated = replace(current[idx], updated_at=utc_now_iso(), **changes)
            self._snapshot = current[:idx] + (updated,) + current[idx + 1 :]
        self._notify("update", updated)
        return updated

    def replace_geometry(self, highlight_id: str, rects: Iterable[Rect], source_text: str | None = None) -> Highlight:
        """Wholesale re-selection: same id, new rects, moved to the top."""
        with self._write_lock:
            current = self._snapshot
            idx = self._index_of(current, highlight_id)
            old = current[idx]
            fresh = self._validated(
                replace(
                    old,
                    rects=tuple(rects),
                    source_text=old.source_text if source_text is None else source_text,
                    updated_at=utc_now_iso(),
                )
            )
            self._snapshot = current[:idx] + current[idx + 1 :] + (fresh,)
        self._notify("replace", fresh)
        return fresh

    def remove(self, highlight_id: str) -> Highlight:
        with self._write_lock:
            current = self._snapshot
            idx = self._index_of(current, highlight_id)
            removed = current[idx]
            self._snapshot = current[:idx] + current[idx + 1 :]
        self._notify("remove", removed)
        return removed

    def load(self, highlights: Iterable[Highlight]) -> list[Highlight]:
        """Replace the whole set; invalid or duplicate entries are skipped."""
        kept: list[Highlight] = []
        seen: set[str] = set()
        for h in highlights:
            try:
                v = self._validated(h)
            except InvalidHighlight as e:
                logger.warning("skipping highlight on load: %s", e)
                continue
            if v.id in seen:
                logger.warning("skipping duplicate highlight id on load: %s", v.id)
                continue
            seen.add(v.id)
            kept.append(v)
        with self._write_lock:
            self._snapshot = tuple(kept)
        return kept

    @staticmethod
    def _index_of(snapshot: tuple[Highlight, ...], highlight_id: str) -> int:
        for i, h in enumerate(snapshot):
            if h.id == highlight_id:
                return i
        raise KeyError(highlight_id)

    def get(self, highlight_id: str) -> Highlight:
        snapshot = self._snapshot
        return snapshot[self._index_of(snapshot, highlight_id)]

    def by_page(self, page_number: int) -> list[Highlight]:
        return [h for h in self._snapshot if h.page_number == page_number]

    def all(self) -> list[Highlight]:
        return list(self._snapshot)

    def at_point(self, page_number: int, x: float, y: float) -> list[Highlight]:
        """Highlights whose Storage rects contain (x, y), topmost first."""
        hits = [h for h in self.by_page(page_number) if any(r.contains_point(x, y) for r in h.rects)]
        return list(reversed(hits))

    def search(self, query: str) -> list[Highlight]:
        q = query.strip().lower()
        if not q:
            return []
        return [
            h
            for h in self._snapshot
            if q in (h.source_text or "").lower() or q in (h.note_text or "").lower()
        ]

    def stats(self) -> dict[str, int]:
        snapshot = self._snapshot
        return {
            "highlights_count": len(snapshot),
            "notes_count": sum(1 for h in snapshot if h.note_text and h.note_text.strip()),
            "pages_count": len({h.page_number for h in snapshot}),
        }

    def __len__(self) -> int:
        return len(self._snapshot)
