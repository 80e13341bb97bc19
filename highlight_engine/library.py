from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .utils import append_jsonl, ensure_dir, slugify, utc_now_iso


@dataclass
class BookPaths:
    book_dir: Path
    pages_dir: Path  # rendered page previews
    ocr_dir: Path  # OCR word dumps, one file per page
    highlights_json: Path
    errors_jsonl: Path


def book_paths(workspace: str | Path, book_id: str) -> BookPaths:
    """Resolve the per-book layout without touching the filesystem."""
    book_dir = Path(workspace) / "books" / slugify(book_id)
    return BookPaths(
        book_dir=book_dir,
        pages_dir=book_dir / "pages",
        ocr_dir=book_dir / "ocr",
        highlights_json=book_dir / "highlights.json",
        errors_jsonl=book_dir / "errors.jsonl",
    )


def create_book_dirs(workspace: str | Path, book_id: str) -> BookPaths:
    paths = book_paths(workspace, book_id)
    for p in [paths.book_dir, paths.pages_dir, paths.ocr_dir]:
        ensure_dir(p)
    # errors.jsonl always exists so readers never have to special-case it.
    paths.errors_jsonl.touch(exist_ok=True)
    return paths


def record_error(paths: BookPaths | None, page_number: int | None, stage: str, message: str) -> None:
    if paths is None:
        return
    append_jsonl(
        paths.errors_jsonl,
        {"page_number": page_number, "stage": stage, "message": message, "at": utc_now_iso()},
    )
