from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from .geometry import DEFAULT_EPSILON, approx_equal
from .types import Epoch, Page, ViewportTransform

logger = logging.getLogger(__name__)


@dataclass
class _PageEntry:
    page: Page
    transform: ViewportTransform
    generation: int
    available: bool = True
    unavailable_reason: str | None = None


class PageRegistry:
    """Pages currently rendered by a viewer, with their live transforms.

    Every change of scale or rotation bumps the page's generation, so an
    Epoch captured before the change no longer compares as current. Async
    work (rasterization, OCR) checks `is_current` on arrival instead of
    trying to cancel the underlying decoder call. Scale changes within
    `epsilon` (relative) are not changes.
    """

    def __init__(self, *, epsilon: float = DEFAULT_EPSILON) -> None:
        self.epsilon = float(epsilon)
        self._lock = threading.Lock()
        self._entries: dict[int, _PageEntry] = {}
        self._generation = 0

    def _next_generation_locked(self) -> int:
        self._generation += 1
        return self._generation

    @staticmethod
    def _epoch(entry: _PageEntry) -> Epoch:
        return Epoch(
            page_number=entry.page.number,
            scale=entry.transform.scale,
            rotation=entry.transform.rotation,
            generation=entry.generation,
        )

    def register(self, page: Page, transform: ViewportTransform) -> Epoch:
        with self._lock:
            entry = self._entries.get(page.number)
            if entry is not None and entry.page == page and entry.transform == transform:
                return self._epoch(entry)
            entry = _PageEntry(page=page, transform=transform, generation=self._next_generation_locked())
            self._entries[page.number] = entry
            return self._epoch(entry)

    def update(self, page_number: int, *, scale: float | None = None, rotation: int | None = None) -> Epoch:
        with self._lock:
            entry = self._entries[page_number]
            if scale is not None and approx_equal(scale, entry.transform.scale, self.epsilon):
                scale = None
            new_transform = ViewportTransform(
                scale=entry.transform.scale if scale is None else scale,
                rotation=entry.transform.rotation if rotation is None else rotation,
            )
            if new_transform != entry.transform:
                entry.transform = new_transform
                entry.generation = self._next_generation_locked()
                # a new view gets a fresh decode attempt
                entry.available = True
                entry.unavailable_reason = None
            return self._epoch(entry)

    def unregister(self, page_number: int) -> None:
        """Forget a page (navigated away); anything in flight for it goes stale."""
        with self._lock:
            self._entries.pop(page_number, None)

    def page(self, page_number: int) -> Page:
        with self._lock:
            return self._entries[page_number].page

    def transform(self, page_number: int) -> ViewportTransform:
        with self._lock:
            return self._entries[page_number].transform

    def current_epoch(self, page_number: int) -> Epoch:
        with self._lock:
            return self._epoch(self._entries[page_number])

    def is_current(self, epoch: Epoch) -> bool:
        with self._lock:
            entry = self._entries.get(epoch.page_number)
            if entry is None:
                return False
            return self._epoch(entry) == epoch

    def mark_unavailable(self, page_number: int, reason: str) -> None:
        with self._lock:
            entry = self._entries.get(page_number)
            if entry is None:
                return
            entry.available = False
            entry.unavailable_reason = reason
        logger.warning("page %s marked unavailable: %s", page_number, reason)

    def mark_available(self, page_number: int) -> None:
        with self._lock:
            entry = self._entries.get(page_number)
            if entry is None or entry.available:
                return
            entry.available = True
            entry.unavailable_reason = None
        logger.info("page %s available again", page_number)

    def is_available(self, page_number: int) -> bool:
        with self._lock:
            entry = self._entries.get(page_number)
            return entry is not None and entry.available

    def page_numbers(self) -> list[int]:
        with self._lock:
            return sorted(self._entries)
