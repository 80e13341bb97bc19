from __future__ import annotations

import logging
import threading
import uuid
from typing import Sequence

from .config import EngineConfig
from .errors import InvalidHighlight, SelectionOutsideLayer
from .geometry import to_storage
from .library import BookPaths
from .persistence import JsonFileStore
from .registry import PageRegistry
from .renderer import render
from .selection import LayerHandle, SelectionRange, capture_across_pages
from .store import HighlightStore
from .types import CaptureResult, DrawableRect, Highlight, OcrWord

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class Annotator:
    """Selection -> Storage rects -> store -> backend, for one document."""

    def __init__(
        self,
        book_id: str,
        registry: PageRegistry,
        *,
        cfg: EngineConfig | None = None,
        store: HighlightStore | None = None,
        backend: JsonFileStore | None = None,
        pdf_name: str | None = None,
    ):
        self.book_id = book_id
        self.registry = registry
        self.cfg = cfg or EngineConfig()
        self.store = store or HighlightStore(min_size=float(self.cfg.geometry["min_storage_size"]))
        self.backend = backend
        self.pdf_name = pdf_name
        self.paths: BookPaths | None = backend.paths_for(book_id) if backend is not None else None
        # one writer at a time, and each writer snapshots the store under the lock
        self._save_lock = threading.Lock()
        if backend is not None:
            self.store.subscribe(lambda action, h: self.save())

    def load(self) -> int:
        """Pull the persisted set into the store; returns the skip count."""
        if self.backend is None:
            return 0
        highlights, stats = self.backend.load(self.book_id)
        self.store.load(highlights)
        return stats.skipped

    def save(self) -> None:
        if self.backend is None:
            return
        with self._save_lock:
            self.backend.save(self.book_id, self.store.all(), pdf_name=self.pdf_name)

    def _highlight_from_capture(
        self, result: CaptureResult, color: str, note_text: str | None
    ) -> Highlight | None:
        try:
            page = self.registry.page(result.page_number)
            transform = self.registry.transform(result.page_number)
        except KeyError:
            logger.debug("page %s is not registered; dropping its part of the selection", result.page_number)
            return None
        return Highlight(
            id=_new_id(),
            page_number=result.page_number,
            rects=tuple(to_storage(r, page, transform) for r in result.rects),
            color=color,
            source_text=result.text,
            note_text=note_text,
        )

    def _add(self, h: Highlight) -> Highlight | None:
        try:
            return self.store.add(h)
        except InvalidHighlight as e:
            logger.debug("selection produced no highlight: %s", e)
            return None

    def highlight_selection(
        self,
        selection: SelectionRange,
        layers: Sequence[LayerHandle],
        *,
        color: str | None = None,
        note_text: str | None = None,
    ) -> list[Highlight]:
        """One Highlight per page the selection touches; [] when nothing usable."""
        color = color or str(self.cfg.render["default_color"])
        try:
            captures = capture_across_pages(
                selection,
                layers,
                min_size=float(self.cfg.geometry["min_rect_size"]),
                join_lines_with=str(self.cfg.selection["join_lines_with"]),
            )
        except SelectionOutsideLayer as e:
            logger.debug("ignoring selection: %s", e)
            return []

        added: list[Highlight] = []
        for result in captures:
            candidate = self._highlight_from_capture(result, color, note_text)
            if candidate is None:
                continue
            h = self._add(candidate)
            if h is not None:
                added.append(h)
        return added

    def highlight_words(
        self,
        words: Sequence[OcrWord],
        *,
        color: str | None = None,
        note_text: str | None = None,
    ) -> list[Highlight]:
        """Highlight OCR words directly; their boxes are already Storage rects."""
        by_page: dict[int, list[OcrWord]] = {}
        for w in words:
            by_page.setdefault(w.epoch.page_number, []).append(w)

        added: list[Highlight] = []
        for page_number in sorted(by_page):
            page_words = by_page[page_number]
            h = self._add(
                Highlight(
                    id=_new_id(),
                    page_number=page_number,
                    rects=tuple(w.box for w in page_words),
                    color=color or str(self.cfg.render["default_color"]),
                    source_text=" ".join(w.text for w in page_words),
                    note_text=note_text,
                )
            )
            if h is not None:
                added.append(h)
        return added

    def drawables(self, page_number: int) -> list[DrawableRect]:
        page = self.registry.page(page_number)
        transform = self.registry.transform(page_number)
        return render(self.store.by_page(page_number), page, transform)
