from __future__ import annotations

import logging
from pathlib import Path

import pytest

from highlight_engine.errors import CorruptRecord
from highlight_engine.library import create_book_dirs
from highlight_engine.persistence import (
    JsonFileStore,
    export_set,
    from_wire,
    import_set,
    load_records,
    to_wire,
)
from highlight_engine.types import DEFAULT_COLOR, Highlight, Rect
from highlight_engine.utils import write_json


def _record(**overrides):
    rec = {
        "id": "h1",
        "bookId": "book",
        "pageNumber": 3,
        "color": "#90EE90",
        "noteText": None,
        "highlightText": "selected words",
        "highlightRects": [{"x": 10, "y": 20, "width": 30, "height": 12}],
    }
    rec.update(overrides)
    return rec


class TestWire:
    def test_to_wire_schema(self):
        h = Highlight(id="h1", page_number=2, rects=(Rect(1.5, 2, 3, 4),), color="yellow", source_text="abc")

        rec = to_wire(h, "book-7")

        assert rec["bookId"] == "book-7"
        assert rec["pageNumber"] == 2
        assert rec["highlightRects"] == [{"x": 1.5, "y": 2, "width": 3, "height": 4}]
        assert rec["highlightText"] == "abc"
        assert rec["noteText"] is None

    def test_from_wire(self):
        h = from_wire(_record())

        assert h.id == "h1"
        assert h.page_number == 3
        assert h.rects == (Rect(10.0, 20.0, 30.0, 12.0),)
        assert h.source_text == "selected words"

    def test_wire_round_trip(self):
        h = Highlight(id="x", page_number=1, rects=(Rect(1, 2, 3, 4), Rect(1, 8, 3, 4)), note_text="n")
        assert from_wire(to_wire(h, "b")) == h

    def test_missing_id_and_color_get_defaults(self):
        rec = _record()
        del rec["id"]
        del rec["color"]

        h = from_wire(rec)

        assert h.id
        assert h.color == DEFAULT_COLOR

    @pytest.mark.parametrize(
        "overrides",
        [
            {"highlightRects": []},
            {"highlightRects": None},
            {"pageNumber": None},
            {"pageNumber": 0},
            {"pageNumber": "3"},
            {"pageNumber": True},
            {"highlightRects": [{"x": "a", "y": 0, "width": 1, "height": 1}]},
            {"highlightRects": [{"x": 0, "y": 0, "width": 0, "height": 5}]},
        ],
    )
    def test_corrupt_records(self, overrides):
        with pytest.raises(CorruptRecord):
            from_wire(_record(**overrides))

    def test_missing_page_number_key(self):
        rec = _record()
        del rec["pageNumber"]
        with pytest.raises(CorruptRecord):
            from_wire(rec)

    def test_legacy_position_object(self):
        rec = _record(
            highlightRects={
                "boundingRect": {"x1": 0, "y1": 0, "x2": 100, "y2": 20, "pageNumber": 3},
                "rects": [{"x1": 10, "y1": 20, "x2": 60, "y2": 32}],
            }
        )

        h = from_wire(rec)

        assert h.rects == (Rect(10.0, 20.0, 50.0, 12.0),)

    def test_malformed_rect_dropped_when_others_valid(self):
        rec = _record(highlightRects=[{"x": 1, "y": 1, "width": 5, "height": 5}, {"x": 1}])
        assert len(from_wire(rec).rects) == 1


class TestLoadRecords:
    def test_corrupt_record_skipped(self, caplog):
        records = [_record(id="a"), _record(id="b", highlightRects=[]), _record(id="c")]
        skipped: list[int] = []

        with caplog.at_level(logging.WARNING, logger="highlight_engine.persistence"):
            out = load_records(records, on_skip=lambda idx, rec, err: skipped.append(idx))

        assert [h.id for h in out] == ["a", "c"]
        assert skipped == [1]
        assert len([r for r in caplog.records if "corrupt" in r.getMessage()]) == 1

    def test_skip_journaled(self, tmp_path: Path):
        paths = create_book_dirs(tmp_path, "book")

        load_records([_record(pageNumber=None), "not a record"], paths=paths)

        lines = paths.errors_jsonl.read_text(encoding="utf-8").strip().splitlines()
        assert len(lines) == 2


class TestExportImport:
    def test_export_payload(self):
        payload = export_set([from_wire(_record())], book_id="book", pdf_name="moby.pdf")

        assert payload["bookId"] == "book"
        assert payload["pdfName"] == "moby.pdf"
        assert len(payload["highlights"]) == 1

    def test_import_skips_bad_records(self):
        payload = {"bookId": "book", "highlights": [_record(id="a"), {"pageNumber": 1}, _record(id="b")]}

        highlights, stats = import_set(payload)

        assert [h.id for h in highlights] == ["a", "b"]
        assert (stats.records_seen, stats.imported, stats.skipped) == (3, 2, 1)

    def test_import_bare_list(self):
        highlights, stats = import_set([_record()])
        assert stats.imported == 1

    def test_import_rejects_non_export(self):
        with pytest.raises(ValueError):
            import_set({"bookId": "x"})
        with pytest.raises(ValueError):
            import_set("nope")


class TestJsonFileStore:
    def test_save_load_delete(self, tmp_path: Path):
        backend = JsonFileStore(tmp_path)
        h = from_wire(_record())

        path = backend.save("My Book", [h], pdf_name="book.pdf")
        assert path.exists()

        loaded, stats = backend.load("My Book")
        assert loaded == [h]
        assert stats.skipped == 0

        assert backend.delete("My Book") is True
        after, _ = backend.load("My Book")
        assert after == []
        assert backend.delete("My Book") is False

    def test_load_unknown_book(self, tmp_path: Path):
        highlights, stats = JsonFileStore(tmp_path).load("nothing")
        assert highlights == []
        assert stats.records_seen == 0

    def test_save_replaces_file_atomically(self, tmp_path: Path):
        backend = JsonFileStore(tmp_path)
        h = from_wire(_record())
        path = backend.save("book", [h])

        with pytest.raises(TypeError):
            write_json(path, {"highlights": [object()]})

        loaded, _ = backend.load("book")
        assert loaded == [h]
        assert [p.name for p in path.parent.iterdir() if p.suffix == ".tmp"] == []
