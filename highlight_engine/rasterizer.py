from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from io import BytesIO
from pathlib import Path
from typing import Protocol

from PIL import Image

from .errors import DecodeFailure
from .library import BookPaths, record_error
from .registry import PageRegistry
from .text_layer import extract_text_runs
from .types import Epoch, Page, RenderedPage

logger = logging.getLogger(__name__)


class Rasterizer(Protocol):
    def page_count(self) -> int: ...

    def page(self, page_number: int) -> Page: ...

    def render(self, page_number: int, scale: float, rotation: int) -> RenderedPage: ...


class PdfRasterizer:
    """PyMuPDF-backed decoder: page geometry, bitmaps and native text runs."""

    def __init__(self, pdf_path: str | Path):
        try:
            import fitz  # PyMuPDF
        except Exception as e:  # pragma: no cover
            raise RuntimeError("PyMuPDF is required to open PDFs. Install pymupdf.") from e

        self._fitz = fitz
        self.pdf_path = Path(pdf_path)
        try:
            self._doc = fitz.open(self.pdf_path)
        except Exception as e:
            raise DecodeFailure(None, f"cannot open {self.pdf_path.name}: {e}") from e
        # fitz documents are not safe to share between threads.
        self._lock = threading.Lock()

    def page_count(self) -> int:
        return int(self._doc.page_count)

    def _load(self, page_number: int):
        if page_number < 1 or page_number > self._doc.page_count:
            raise DecodeFailure(page_number, f"out of range (1..{self._doc.page_count})")
        return self._doc.load_page(page_number - 1)

    def page(self, page_number: int) -> Page:
        with self._lock:
            p = self._load(page_number)
            return Page(number=page_number, intrinsic_width=float(p.rect.width), intrinsic_height=float(p.rect.height))

    def render(self, page_number: int, scale: float, rotation: int) -> RenderedPage:
        with self._lock:
            try:
                p = self._load(page_number)
                matrix = self._fitz.Matrix(scale, scale).prerotate(rotation)
                pix = p.get_pixmap(matrix=matrix, alpha=False)
                img = Image.open(BytesIO(pix.tobytes("png"))).convert("RGB")
                runs = extract_text_runs(p)
            except DecodeFailure:
                raise
            except Exception as e:
                raise DecodeFailure(page_number, str(e)) from e
        return RenderedPage(
            page_number=page_number,
            image=img,
            text_runs=runs,
            meta={"scale": scale, "rotation": rotation, "source_ref": f"{self.pdf_path.name}#page={page_number}"},
        )

    def close(self) -> None:
        with self._lock:
            self._doc.close()


class RenderScheduler:
    """Background rasterization keyed by (page, scale, rotation).

    A finished render whose epoch is no longer current resolves to None
    instead of a bitmap, so a late result never paints over the current view.
    """

    def __init__(
        self,
        rasterizer: Rasterizer,
        registry: PageRegistry,
        *,
        workers: int = 2,
        timeout_s: float = 30.0,
        paths: BookPaths | None = None,
    ):
        self.rasterizer = rasterizer
        self.registry = registry
        self.timeout_s = float(timeout_s)
        self.paths = paths
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="render")

    def _run(self, epoch: Epoch) -> RenderedPage | None:
        if not self.registry.is_current(epoch):
            logger.debug("skipping stale render before start: %s", epoch)
            return None
        try:
            rendered = self.rasterizer.render(epoch.page_number, epoch.scale, epoch.rotation)
        except DecodeFailure as e:
            # a failure for a view that is already gone says nothing about the live page
            if self.registry.is_current(epoch):
                self.registry.mark_unavailable(epoch.page_number, str(e))
            record_error(self.paths, page_number=epoch.page_number, stage="render", message=str(e))
            raise

        if not self.registry.is_current(epoch):
            logger.debug("discarding stale render: %s", epoch)
            return None
        self.registry.mark_available(epoch.page_number)
        rendered.meta["epoch"] = epoch
        return rendered

    def request(self, page_number: int) -> Future:
        epoch = self.registry.current_epoch(page_number)
        return self._executor.submit(self._run, epoch)

    def render(self, page_number: int, timeout: float | None = None) -> RenderedPage | None:
        """Blocking render with a bounded wait; None on timeout or staleness."""
        fut = self.request(page_number)
        try:
            return fut.result(timeout=self.timeout_s if timeout is None else timeout)
        except FutureTimeout:
            fut.cancel()
            logger.warning("render of page %s timed out", page_number)
            record_error(self.paths, page_number=page_number, stage="render", message="timeout")
            return None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
