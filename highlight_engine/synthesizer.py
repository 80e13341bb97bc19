"""OCR text synthesis for pages without a native text layer.

Per page the run state goes Idle -> Running -> Succeeded | Failed. Runs are
only started by an explicit trigger. The page is re-rasterized at a boosted
scale for the OCR engine, the word boxes are rescaled to what is on screen
and immediately normalized into Storage space, and the whole result is thrown
away if the page's render generation moved on while OCR was running.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum

from .errors import DecodeFailure, OcrFailure, StaleEpoch
from .geometry import is_degenerate, rotated_size, to_storage
from .library import BookPaths, record_error
from .ocr import OcrEngine
from .rasterizer import Rasterizer
from .registry import PageRegistry
from .types import Epoch, OcrWord, Rect, RawWord, ViewportTransform

logger = logging.getLogger(__name__)


class OcrState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Failure reasons
STALE_EPOCH = StaleEpoch.__name__
DECODE_FAILURE = DecodeFailure.__name__
OCR_FAILURE = OcrFailure.__name__


@dataclass
class OcrRun:
    page_number: int
    epoch: Epoch
    state: OcrState = OcrState.RUNNING
    words: list[OcrWord] = field(default_factory=list)
    reason: str | None = None
    retryable: bool = False
    error: str | None = None
    cancelled: bool = False


def rescale_words(
    raw_words: list[RawWord],
    *,
    raster_size: tuple[int, int],
    display_size: tuple[float, float],
) -> list[tuple[RawWord, Rect]]:
    """Map OCR-raster boxes onto the displayed page (Viewport space)."""
    rw, rh = raster_size
    dw, dh = display_size
    if rw <= 0 or rh <= 0:
        return []
    sx = dw / rw
    sy = dh / rh
    out: list[tuple[RawWord, Rect]] = []
    for w in raw_words:
        x0, y0, x1, y1 = w.bbox_xyxy
        out.append((w, Rect.from_xyxy(x0 * sx, y0 * sy, x1 * sx, y1 * sy)))
    return out


class OcrTextSynthesizer:
    def __init__(
        self,
        rasterizer: Rasterizer,
        engine: OcrEngine,
        registry: PageRegistry,
        *,
        boost: float = 2.0,
        workers: int = 1,
        timeout_s: float = 120.0,
        paths: BookPaths | None = None,
        daemon: bool = False,
    ):
        if boost < 2.0:
            raise ValueError(f"boost must be >= 2.0, got {boost}")
        self.rasterizer = rasterizer
        self.engine = engine
        self.registry = registry
        self.boost = float(boost)
        self.timeout_s = float(timeout_s)
        self.paths = paths
        self._lock = threading.Lock()
        self._runs: dict[int, OcrRun] = {}
        self._futures: dict[int, Future] = {}
        # pool workers are joined at interpreter exit; daemon jobs are not
        self.daemon = daemon
        self._executor: ThreadPoolExecutor | None = None
        if not daemon:
            self._executor = ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="ocr")

    def state(self, page_number: int) -> OcrState:
        with self._lock:
            run = self._runs.get(page_number)
            return OcrState.IDLE if run is None else run.state

    def run_for(self, page_number: int) -> OcrRun | None:
        with self._lock:
            return self._runs.get(page_number)

    def trigger(self, page_number: int) -> Future | None:
        """Start OCR for a page. No-op (None) while a run for it is in flight."""
        with self._lock:
            current = self._runs.get(page_number)
            if current is not None and current.state == OcrState.RUNNING:
                logger.debug("ocr already running for page %s", page_number)
                return None
            epoch = self.registry.current_epoch(page_number)
            run = OcrRun(page_number=page_number, epoch=epoch)
            self._runs[page_number] = run
            if self._executor is not None:
                fut = self._executor.submit(self._execute, run)
            else:
                fut = Future()
                threading.Thread(
                    target=self._run_detached,
                    args=(fut, run),
                    name=f"ocr-page-{page_number}",
                    daemon=True,
                ).start()
            self._futures[page_number] = fut
            return fut

    def cancel(self, page_number: int) -> None:
        """Mark the in-flight run stale; its result is dropped on arrival."""
        with self._lock:
            run = self._runs.get(page_number)
            if run is None or run.state != OcrState.RUNNING:
                return
            run.cancelled = True
            fut = self._futures.get(page_number)
        if fut is not None and fut.cancel():
            # never started, so no worker will resolve it
            self._finish(run, OcrState.FAILED, reason=STALE_EPOCH)

    def wait(self, page_number: int, timeout: float | None = None) -> OcrRun | None:
        with self._lock:
            fut = self._futures.get(page_number)
        if fut is None:
            return self.run_for(page_number)
        try:
            return fut.result(timeout=self.timeout_s if timeout is None else timeout)
        except CancelledError:
            return self.run_for(page_number)
        except FutureTimeout:
            logger.warning("ocr for page %s still running after timeout; cancelling", page_number)
            self.cancel(page_number)
            return self.run_for(page_number)

    def words(self, page_number: int) -> list[OcrWord]:
        """Words of the last successful run, if it still matches the live view."""
        run = self.run_for(page_number)
        if run is None or run.state != OcrState.SUCCEEDED:
            return []
        if not self.registry.is_current(run.epoch):
            return []
        return list(run.words)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _run_detached(self, fut: Future, run: OcrRun) -> None:
        if not fut.set_running_or_notify_cancel():
            return
        try:
            fut.set_result(self._execute(run))
        except Exception as e:
            fut.set_exception(e)

    def _finish(self, run: OcrRun, state: OcrState, *, reason: str | None = None, error: str | None = None) -> OcrRun:
        with self._lock:
            run.state = state
            run.reason = reason
            run.error = error
            run.retryable = state == OcrState.FAILED and reason in (DECODE_FAILURE, OCR_FAILURE)
            if state != OcrState.SUCCEEDED:
                run.words = []
        return run

    def _execute(self, run: OcrRun) -> OcrRun:
        epoch = run.epoch
        transform = ViewportTransform(scale=epoch.scale, rotation=epoch.rotation)
        try:
            page = self.registry.page(epoch.page_number)
        except KeyError:
            return self._finish(run, OcrState.FAILED, reason=STALE_EPOCH)

        try:
            raster = self.rasterizer.render(epoch.page_number, epoch.scale * self.boost, epoch.rotation)
        except Exception as e:
            logger.exception("ocr raster of page %s failed", epoch.page_number)
            record_error(self.paths, page_number=epoch.page_number, stage="ocr_render", message=str(e))
            return self._finish(run, OcrState.FAILED, reason=DECODE_FAILURE, error=str(e))

        try:
            raw_words = self.engine.recognize(raster.image)
        except Exception as e:
            logger.exception("ocr engine failed on page %s", epoch.page_number)
            record_error(self.paths, page_number=epoch.page_number, stage="ocr", message=str(e))
            return self._finish(run, OcrState.FAILED, reason=OCR_FAILURE, error=str(e))

        display_size = rotated_size(page, transform)
        words: list[OcrWord] = []
        for raw, viewport_box in rescale_words(raw_words, raster_size=raster.image.size, display_size=display_size):
            if not raw.text.strip():
                continue
            box = to_storage(viewport_box, page, transform)
            if is_degenerate(box):
                continue
            words.append(OcrWord(text=raw.text.strip(), box=box, epoch=epoch, confidence=raw.confidence))

        with self._lock:
            stale = run.cancelled
        if stale or not self.registry.is_current(epoch):
            logger.debug("discarding stale ocr result for %s", epoch)
            return self._finish(run, OcrState.FAILED, reason=STALE_EPOCH)

        with self._lock:
            run.words = words
        logger.info("ocr page %s: %s words", epoch.page_number, len(words))
        return self._finish(run, OcrState.SUCCEEDED)


def raise_for_failure(run: OcrRun) -> None:
    """Surface a failed run as the matching exception; stale runs stay silent."""
    if run.state != OcrState.FAILED or run.reason == STALE_EPOCH:
        return
    if run.reason == DECODE_FAILURE:
        raise DecodeFailure(run.page_number, run.error or "render failed")
    raise OcrFailure(run.error or "ocr failed", retryable=run.retryable)
