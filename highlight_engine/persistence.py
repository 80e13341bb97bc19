"""Highlight <-> persisted record mapping, plus a JSON file backend.

Record schema (one per highlight, JSON-compatible):

    {
      "id": str,
      "bookId": str,
      "pageNumber": int >= 1,
      "color": str,
      "noteText": str | null,
      "highlightText": str | null,
      "highlightRects": [{"x", "y", "width", "height"}, ...],
      "createdAt": str | null,
      "updatedAt": str | null
    }

`highlightRects` are Intrinsic (Storage) units, never pixels at a zoom level.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from .errors import CorruptRecord
from .library import BookPaths, book_paths, create_book_dirs, record_error
from .types import DEFAULT_COLOR, Highlight, Rect
from .utils import is_finite_number, load_json, utc_now_iso, write_json

logger = logging.getLogger(__name__)

SkipHandler = Callable[[int, dict[str, Any] | Any, CorruptRecord], None]


def to_wire(h: Highlight, book_id: str) -> dict[str, Any]:
    return {
        "id": h.id,
        "bookId": book_id,
        "pageNumber": h.page_number,
        "color": h.color,
        "noteText": h.note_text,
        "highlightText": h.source_text or None,
        "highlightRects": [r.to_dict() for r in h.rects],
        "createdAt": h.created_at,
        "updatedAt": h.updated_at,
    }


def _rect_from_wire(obj: Any) -> Rect | None:
    """Accepts {x,y,width,height}; older rows stored {x1,y1,x2,y2,...}."""
    if not isinstance(obj, dict):
        return None
    if all(k in obj for k in ("x", "y", "width", "height")):
        vals = [obj["x"], obj["y"], obj["width"], obj["height"]]
        if not all(is_finite_number(v) for v in vals):
            return None
        rect = Rect.from_dict(obj)
    elif all(k in obj for k in ("x1", "y1", "x2", "y2")):
        vals = [obj["x1"], obj["y1"], obj["x2"], obj["y2"]]
        if not all(is_finite_number(v) for v in vals):
            return None
        rect = Rect.from_xyxy(*(float(v) for v in vals))
    else:
        return None
    if rect.width <= 0 or rect.height <= 0:
        return None
    return rect


def _rects_field(raw: Any) -> list[Any]:
    # Legacy rows stored the whole viewer position object: {"boundingRect": ..., "rects": [...]}.
    if isinstance(raw, dict):
        raw = raw.get("rects")
    return raw if isinstance(raw, list) else []


def from_wire(record: Any) -> Highlight:
    """Rebuild a Highlight; raises CorruptRecord for anything unusable."""
    if not isinstance(record, dict):
        raise CorruptRecord("record is not an object")

    page_number = record.get("pageNumber")
    if page_number is None:
        raise CorruptRecord("pageNumber is missing")
    if isinstance(page_number, bool) or not isinstance(page_number, int) or page_number < 1:
        raise CorruptRecord(f"pageNumber is invalid: {page_number!r}")

    raw_rects = _rects_field(record.get("highlightRects"))
    if not raw_rects:
        raise CorruptRecord("highlightRects is empty")
    rects = [r for r in (_rect_from_wire(o) for o in raw_rects) if r is not None]
    if not rects:
        raise CorruptRecord("highlightRects has no valid rect")
    if len(rects) != len(raw_rects):
        logger.debug("dropped %s malformed rects from record %r", len(raw_rects) - len(rects), record.get("id"))

    color = record.get("color")
    note = record.get("noteText")
    text = record.get("highlightText")
    return Highlight(
        id=str(record.get("id") or uuid.uuid4().hex),
        page_number=page_number,
        rects=tuple(rects),
        color=str(color) if isinstance(color, str) and color.strip() else DEFAULT_COLOR,
        source_text=str(text) if isinstance(text, str) else "",
        note_text=str(note) if isinstance(note, str) else None,
        created_at=record.get("createdAt") if isinstance(record.get("createdAt"), str) else None,
        updated_at=record.get("updatedAt") if isinstance(record.get("updatedAt"), str) else None,
    )


def load_records(
    records: Iterable[Any],
    *,
    on_skip: SkipHandler | None = None,
    paths: BookPaths | None = None,
) -> list[Highlight]:
    """Decode every record, skipping corrupt ones. Never raises for bad data."""
    out: list[Highlight] = []
    for idx, record in enumerate(records):
        try:
            out.append(from_wire(record))
        except CorruptRecord as e:
            e.index = idx
            page = record.get("pageNumber") if isinstance(record, dict) else None
            logger.warning("skipping corrupt highlight record #%s: %s", idx, e)
            record_error(paths, page_number=page if isinstance(page, int) else None, stage="load", message=f"record[{idx}]: {e}")
            if on_skip is not None:
                on_skip(idx, record, e)
    return out


@dataclass
class ImportStats:
    records_seen: int = 0
    imported: int = 0
    skipped: int = 0


def export_set(highlights: Iterable[Highlight], *, book_id: str, pdf_name: str | None = None) -> dict[str, Any]:
    return {
        "bookId": book_id,
        "pdfName": pdf_name,
        "exportedAt": utc_now_iso(),
        "highlights": [to_wire(h, book_id) for h in highlights],
    }


def import_set(payload: Any, *, paths: BookPaths | None = None) -> tuple[list[Highlight], ImportStats]:
    """Accepts an export object or a bare list of records."""
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict):
        records = payload.get("highlights")
        if not isinstance(records, list):
            raise ValueError("highlight export object must contain list field: highlights")
    else:
        raise ValueError("highlight export must be a list or an object with highlights")

    stats = ImportStats(records_seen=len(records))
    highlights = load_records(records, paths=paths)
    stats.imported = len(highlights)
    stats.skipped = stats.records_seen - stats.imported
    return highlights, stats


class JsonFileStore:
    """Key-value backend: one JSON export document per book id."""

    def __init__(self, workspace: str | Path):
        self.workspace = Path(workspace)

    def paths_for(self, book_id: str) -> BookPaths:
        return create_book_dirs(self.workspace, book_id)

    def save(self, book_id: str, highlights: Iterable[Highlight], *, pdf_name: str | None = None) -> Path:
        paths = self.paths_for(book_id)
        write_json(paths.highlights_json, export_set(highlights, book_id=book_id, pdf_name=pdf_name))
        return paths.highlights_json

    def load(self, book_id: str) -> tuple[list[Highlight], ImportStats]:
        paths = book_paths(self.workspace, book_id)
        if not paths.highlights_json.exists():
            return [], ImportStats()
        return import_set(load_json(paths.highlights_json), paths=paths)

    def delete(self, book_id: str) -> bool:
        path = book_paths(self.workspace, book_id).highlights_json
        if not path.exists():
            return False
        path.unlink()
        return True
