from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any

from .config import load_config
from .errors import DecodeFailure, InvalidHighlight
from .library import create_book_dirs, record_error
from .ocr import OCRExtractor
from .persistence import JsonFileStore, export_set, import_set
from .rasterizer import PdfRasterizer, RenderScheduler
from .registry import PageRegistry
from .renderer import paint, render
from .store import HighlightStore
from .synthesizer import OcrState, OcrTextSynthesizer
from .types import ViewportTransform
from .utils import load_json, write_json

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="highlight_engine")
    p.add_argument("--config", default=str(Path("config") / "default.json"), help="Config path")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    def _view_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--pdf", required=True, help="PDF file")
        sp.add_argument("--page", type=int, required=True, help="1-based page number")
        sp.add_argument("--scale", type=float, default=1.0)
        sp.add_argument("--rotation", type=int, default=0, choices=[0, 90, 180, 270])
        sp.add_argument("--workspace", default=None, help="Workspace root (defaults to config storage.workspace)")
        sp.add_argument("--book-id", default=None, help="Book id (defaults to the PDF file name)")

    rnd = sub.add_parser("render", help="Rasterize a page with its stored highlights painted on top")
    _view_args(rnd)
    rnd.add_argument("--out", default=None, help="Output PNG (defaults to <book>/pages/page_NNN.png)")

    ocr = sub.add_parser("ocr", help="OCR a page and write Storage-space word boxes")
    _view_args(ocr)

    exp = sub.add_parser("export", help="Export a book's highlights as JSON")
    exp.add_argument("--workspace", default=None)
    exp.add_argument("--book-id", required=True)
    exp.add_argument("--out", required=True)
    exp.add_argument("--pdf-name", default=None)

    imp = sub.add_parser("import", help="Import highlights, skipping malformed records")
    imp.add_argument("--workspace", default=None)
    imp.add_argument("--book-id", required=True)
    imp.add_argument("--in", dest="in_path", required=True)
    imp.add_argument("--replace", action="store_true", help="Drop existing highlights first")

    val = sub.add_parser("validate", help="Validate a highlight export file")
    val.add_argument("--in", dest="in_path", required=True)

    return p


def _workspace(args: argparse.Namespace, cfg: Any) -> str:
    return args.workspace or str(cfg.storage["workspace"])


def cmd_render(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    book_id = args.book_id or Path(args.pdf).name
    backend = JsonFileStore(_workspace(args, cfg))
    paths = backend.paths_for(book_id)

    try:
        rasterizer = PdfRasterizer(args.pdf)
    except DecodeFailure as e:
        print(f"open_failed: {e}")
        return 1
    registry = PageRegistry(epsilon=float(cfg.geometry["epsilon"]))
    scheduler = RenderScheduler(
        rasterizer,
        registry,
        workers=int(cfg.render["workers"]),
        timeout_s=float(cfg.render["timeout_s"]),
        paths=paths,
    )
    try:
        page = rasterizer.page(args.page)
        transform = ViewportTransform(scale=args.scale, rotation=args.rotation)
        registry.register(page, transform)
        rendered = scheduler.render(page.number)
        if rendered is None:
            print("render_failed: timeout")
            return 1

        highlights, stats = backend.load(book_id)
        drawables = render(highlights, page, transform)
        img = paint(rendered.image, drawables, opacity=float(cfg.render["opacity"]))
        out = Path(args.out) if args.out else paths.pages_dir / f"page_{page.number:03d}.png"
        out.parent.mkdir(parents=True, exist_ok=True)
        img.save(out, format="PNG")
    except DecodeFailure as e:
        print(f"render_failed: {e}")
        return 1
    finally:
        scheduler.shutdown()
        rasterizer.close()

    print(f"drawables={len(drawables)} skipped_records={stats.skipped} text_runs={len(rendered.text_runs)}")
    print(str(out))
    return 0


def cmd_ocr(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    book_id = args.book_id or Path(args.pdf).name
    paths = create_book_dirs(_workspace(args, cfg), book_id)

    try:
        rasterizer = PdfRasterizer(args.pdf)
    except DecodeFailure as e:
        print(f"open_failed: {e}")
        return 1
    registry = PageRegistry(epsilon=float(cfg.geometry["epsilon"]))
    engine = OCRExtractor(
        lang=str(cfg.ocr["lang"]),
        engine=str(cfg.ocr["engine"]),
        use_preprocessing=bool(cfg.ocr["use_preprocessing"]),
        max_retries=int(cfg.ocr["max_retries"]),
    )
    synth = OcrTextSynthesizer(
        rasterizer,
        engine,
        registry,
        boost=float(cfg.ocr["boost"]),
        timeout_s=float(cfg.ocr["timeout_s"]),
        paths=paths,
        daemon=True,
    )
    try:
        page = rasterizer.page(args.page)
        registry.register(page, ViewportTransform(scale=args.scale, rotation=args.rotation))
        synth.trigger(page.number)
        run = synth.wait(page.number)
    except DecodeFailure as e:
        print(f"ocr_failed: {e}")
        return 1
    finally:
        synth.shutdown()
        rasterizer.close()

    if run is None or run.state != OcrState.SUCCEEDED:
        reason = run.reason if run is not None else "not_started"
        retry = run.retryable if run is not None else True
        print(f"ocr_failed: reason={reason} retryable={retry}")
        return 1

    out = paths.ocr_dir / f"page_{page.number:03d}.json"
    write_json(
        out,
        {
            "page_number": page.number,
            "intrinsic_size": [page.intrinsic_width, page.intrinsic_height],
            "words": [
                {"text": w.text, "box": w.box.to_dict(), "confidence": w.confidence}
                for w in run.words
            ],
        },
    )
    print(f"words={len(run.words)}")
    print(str(out))
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    backend = JsonFileStore(_workspace(args, cfg))
    highlights, stats = backend.load(args.book_id)
    write_json(args.out, export_set(highlights, book_id=args.book_id, pdf_name=args.pdf_name))
    print(f"exported={len(highlights)} skipped={stats.skipped}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    backend = JsonFileStore(_workspace(args, cfg))
    paths = backend.paths_for(args.book_id)
    try:
        incoming, stats = import_set(load_json(args.in_path), paths=paths)
    except (OSError, ValueError) as e:
        print(f"import_failed: {e}")
        return 1

    store = HighlightStore(min_size=float(cfg.geometry["min_storage_size"]))
    if not args.replace:
        existing, _ = backend.load(args.book_id)
        store.load(existing)

    added = 0
    rejected = 0
    for h in incoming:
        try:
            store.add(h)
        except InvalidHighlight as e:
            # duplicate id (in the file or already stored) or no usable rects
            logger.warning("not importing highlight %s: %s", h.id, e)
            record_error(paths, page_number=h.page_number, stage="import", message=str(e))
            rejected += 1
            continue
        added += 1

    backend.save(args.book_id, store.all())
    print(f"imported={added} skipped={stats.skipped} rejected={rejected} total={len(store)}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        payload = load_json(args.in_path)
        highlights, stats = import_set(payload)
    except (OSError, ValueError) as e:
        print(f"invalid_file: {e}")
        return 1

    print(f"records={stats.records_seen}")
    print(f"valid={stats.imported}")
    print(f"corrupt={stats.skipped}")
    if stats.skipped:
        return 1
    print("OK")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "render":
        return cmd_render(args)

    if args.command == "ocr":
        return cmd_ocr(args)

    if args.command == "export":
        return cmd_export(args)

    if args.command == "import":
        return cmd_import(args)

    if args.command == "validate":
        return cmd_validate(args)

    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
