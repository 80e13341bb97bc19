"""End-to-end tests: selection -> storage -> store -> backend -> re-render."""
from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from highlight_engine.annotator import Annotator
from highlight_engine.geometry import rects_close
from highlight_engine.persistence import JsonFileStore
from highlight_engine.registry import PageRegistry
from highlight_engine.selection import LayerHandle, SelectionRange
from highlight_engine.types import Highlight, OcrWord, Page, Rect, ViewportTransform


def _single(layer: LayerHandle, rects: list[Rect], text: str = "selected") -> SelectionRange:
    return SelectionRange(
        text=text,
        client_rects=tuple(rects),
        start_layer_id=layer.layer_id,
        end_layer_id=layer.layer_id,
        ancestor_layer_id=layer.layer_id,
    )


@pytest.fixture
def registry() -> PageRegistry:
    reg = PageRegistry()
    for n in (1, 2, 3):
        reg.register(Page(n, 600.0, 800.0), ViewportTransform(scale=1.5))
    return reg


@pytest.fixture
def layer() -> LayerHandle:
    return LayerHandle(layer_id="L1", page_number=1, origin_x=10, origin_y=20, width=900, height=1200)


class TestAnnotator:
    def test_end_to_end_example(self, registry: PageRegistry, layer: LayerHandle):
        annotator = Annotator("book", registry)

        added = annotator.highlight_selection(_single(layer, [Rect(110, 220, 50, 20)]), [layer])

        assert len(added) == 1
        stored = added[0].rects[0]
        assert stored.x == pytest.approx(66.67, abs=0.01)
        assert stored.y == pytest.approx(133.33, abs=0.01)
        assert stored.width == pytest.approx(33.33, abs=0.01)
        assert stored.height == pytest.approx(13.33, abs=0.01)

        registry.update(1, scale=1.0)
        shown = annotator.drawables(1)[0].viewport_rect
        assert rects_close(shown, stored)

    def test_multi_line_is_one_highlight(self, registry: PageRegistry, layer: LayerHandle):
        annotator = Annotator("book", registry)
        lines = [Rect(110, 220 + 30 * i, 400, 20) for i in range(3)]

        added = annotator.highlight_selection(_single(layer, lines), [layer])

        assert len(added) == 1
        assert len(added[0].rects) == 3

    def test_cross_page_is_two_highlights(self, registry: PageRegistry):
        annotator = Annotator("book", registry)
        layers = [
            LayerHandle(layer_id="P2", page_number=2, origin_x=0, origin_y=0, width=900, height=1200),
            LayerHandle(layer_id="P3", page_number=3, origin_x=0, origin_y=1220, width=900, height=1200),
        ]
        sel = SelectionRange(
            text="tail head",
            client_rects=(Rect(30, 1150, 300, 24), Rect(30, 1180, 200, 15), Rect(30, 1240, 300, 24)),
            start_layer_id="P2",
            end_layer_id="P3",
            ancestor_layer_id=None,
        )

        added = annotator.highlight_selection(sel, layers)

        assert sorted(h.page_number for h in added) == [2, 3]
        page2 = next(h for h in added if h.page_number == 2)
        page3 = next(h for h in added if h.page_number == 3)
        assert len(page2.rects) == 2
        assert len(page3.rects) == 1
        assert rects_close(page3.rects[0], Rect(20, 20 / 1.5, 200, 16))

    def test_thin_selection_yields_nothing(self, registry: PageRegistry, layer: LayerHandle):
        annotator = Annotator("book", registry)

        added = annotator.highlight_selection(_single(layer, [Rect(110, 220, 1, 20)]), [layer])

        assert added == []
        assert annotator.store.all() == []

    def test_selection_outside_layer_ignored(self, registry: PageRegistry, layer: LayerHandle):
        annotator = Annotator("book", registry)
        sel = SelectionRange(
            text="menu",
            client_rects=(Rect(0, 0, 50, 20),),
            start_layer_id=None,
            end_layer_id=None,
            ancestor_layer_id=None,
        )

        assert annotator.highlight_selection(sel, [layer]) == []

    def test_unregistered_page_is_skipped(self, registry: PageRegistry):
        annotator = Annotator("book", registry)
        orphan = LayerHandle(layer_id="P9", page_number=9, origin_x=0, origin_y=0, width=900, height=1200)

        assert annotator.highlight_selection(_single(orphan, [Rect(30, 30, 200, 20)]), [orphan]) == []
        assert annotator.store.all() == []

    def test_cross_page_with_one_page_unregistered(self, registry: PageRegistry):
        annotator = Annotator("book", registry)
        layers = [
            LayerHandle(layer_id="P3", page_number=3, origin_x=0, origin_y=0, width=900, height=1200),
            LayerHandle(layer_id="P9", page_number=9, origin_x=0, origin_y=1220, width=900, height=1200),
        ]
        sel = SelectionRange(
            text="end start",
            client_rects=(Rect(30, 1150, 300, 24), Rect(30, 1240, 300, 24)),
            start_layer_id="P3",
            end_layer_id="P9",
            ancestor_layer_id=None,
        )

        added = annotator.highlight_selection(sel, layers)

        assert [h.page_number for h in added] == [3]

    def test_color_and_note(self, registry: PageRegistry, layer: LayerHandle):
        annotator = Annotator("book", registry)

        h = annotator.highlight_selection(_single(layer, [Rect(110, 220, 50, 20)]), [layer], color="#FFB6C1", note_text="n")[0]

        assert h.color == "#FFB6C1"
        assert h.note_text == "n"
        assert h.source_text == "selected"

    def test_default_color(self, registry: PageRegistry, layer: LayerHandle):
        h = Annotator("book", registry).highlight_selection(_single(layer, [Rect(110, 220, 50, 20)]), [layer])[0]
        assert h.color == "#FFEB3B"

    def test_highlight_ocr_words(self, registry: PageRegistry):
        annotator = Annotator("book", registry)
        epoch = registry.current_epoch(2)
        words = [
            OcrWord(text="Call", box=Rect(100, 200, 50, 20), epoch=epoch),
            OcrWord(text="me", box=Rect(160, 200, 30, 20), epoch=epoch),
        ]

        added = annotator.highlight_words(words)

        assert len(added) == 1
        assert added[0].page_number == 2
        assert added[0].source_text == "Call me"
        assert len(annotator.drawables(2)) == 2

    def test_rotation_after_highlight(self, registry: PageRegistry, layer: LayerHandle):
        annotator = Annotator("book", registry)
        annotator.highlight_selection(_single(layer, [Rect(110, 220, 50, 20)]), [layer])

        registry.update(1, rotation=90)
        rotated = annotator.drawables(1)[0].viewport_rect
        registry.update(1, rotation=0)
        upright = annotator.drawables(1)[0].viewport_rect

        assert rects_close(upright, Rect(100, 200, 50, 20))
        assert rects_close(rotated, Rect(1200 - 220, 100, 20, 50))


class TestPersistence:
    def test_write_through_and_reload(self, registry: PageRegistry, layer: LayerHandle, tmp_path: Path):
        backend = JsonFileStore(tmp_path)
        annotator = Annotator("book", registry, backend=backend, pdf_name="book.pdf")

        h = annotator.highlight_selection(_single(layer, [Rect(110, 220, 50, 20)]), [layer])[0]
        annotator.store.update(h.id, note_text="later")

        fresh = Annotator("book", registry, backend=backend)
        assert fresh.load() == 0
        reloaded = fresh.store.get(h.id)
        assert reloaded.note_text == "later"
        assert rects_close(reloaded.rects[0], h.rects[0])

    def test_reload_skips_corrupt_records(self, registry: PageRegistry, tmp_path: Path):
        backend = JsonFileStore(tmp_path)
        paths = backend.paths_for("book")
        paths.highlights_json.write_text(
            '{"bookId": "book", "highlights": ['
            '{"id": "a", "pageNumber": 1, "color": "#FFFF00", "highlightRects": [{"x": 1, "y": 1, "width": 10, "height": 10}]},'
            '{"id": "b", "pageNumber": 1, "color": "#FFFF00", "highlightRects": []},'
            '{"id": "c", "pageNumber": 2, "color": "#FFFF00", "highlightRects": [{"x": 1, "y": 1, "width": 10, "height": 10}]}'
            "]}",
            encoding="utf-8",
        )
        annotator = Annotator("book", registry, backend=backend)

        assert annotator.load() == 1
        assert [h.id for h in annotator.store.all()] == ["a", "c"]
        assert len(paths.errors_jsonl.read_text(encoding="utf-8").strip().splitlines()) == 1

    def test_concurrent_changes_all_reach_disk(self, registry: PageRegistry, tmp_path: Path):
        class SlowStore(JsonFileStore):
            """First save stalls after taking its snapshot."""

            def __init__(self, workspace):
                super().__init__(workspace)
                self.entered = threading.Event()
                self.stalled = False

            def save(self, book_id, highlights, *, pdf_name=None):
                highlights = list(highlights)
                if not self.stalled:
                    self.stalled = True
                    self.entered.set()
                    time.sleep(0.3)
                return super().save(book_id, highlights, pdf_name=pdf_name)

        backend = SlowStore(tmp_path)
        annotator = Annotator("book", registry, backend=backend)
        first = threading.Thread(
            target=annotator.store.add,
            args=(Highlight(id="a", page_number=1, rects=(Rect(10, 10, 50, 10),)),),
        )

        first.start()
        assert backend.entered.wait(timeout=5)
        annotator.store.add(Highlight(id="b", page_number=1, rects=(Rect(10, 30, 50, 10),)))
        first.join(timeout=5)

        on_disk, _ = JsonFileStore(tmp_path).load("book")
        assert len(annotator.store) == 2
        assert sorted(h.id for h in on_disk) == ["a", "b"]
