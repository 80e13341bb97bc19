from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import cv2
import numpy as np
from PIL import Image, ImageEnhance

from .errors import OcrFailure
from .types import RawWord

logger = logging.getLogger(__name__)


class OcrEngine(Protocol):
    def recognize(self, image: Image.Image) -> list[RawWord]: ...


def _poly_to_xyxy(poly: list[list[float]] | list[tuple[float, float]]) -> tuple[float, float, float, float]:
    xs = [float(p[0]) for p in poly]
    ys = [float(p[1]) for p in poly]
    return min(xs), min(ys), max(xs), max(ys)


def _word(text: Any, poly: Any, confidence: Any) -> RawWord | None:
    text = str(text or "").strip()
    if not text:
        return None
    return RawWord(text=text, bbox_xyxy=_poly_to_xyxy(poly), confidence=float(confidence))


@dataclass
class OCRExtractor:
    """Word-level OCR over a PIL image; boxes come back in raster pixels.

    `engine` is auto, easyocr or paddleocr. In auto mode EasyOCR is tried
    first and PaddleOCR is the fallback. Later attempts run on a binarized,
    denoised copy of the image.
    """

    lang: str = "en"
    engine: str = "auto"
    use_preprocessing: bool = True
    max_retries: int = 2
    _ocr: Any | None = None

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        if not self.use_preprocessing:
            return image

        try:
            img_array = np.array(image.convert("RGB"))
            gray = cv2.cvtColor(img_array, cv2.COLOR_RGB2GRAY)

            # adaptive threshold copes with uneven scan lighting
            binary = cv2.adaptiveThreshold(
                gray, 255,
                cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
                cv2.THRESH_BINARY,
                11, 2,
            )
            denoised = cv2.fastNlMeansDenoising(binary, None, 10, 7, 21)
            kernel = np.array([[-1, -1, -1], [-1, 9, -1], [-1, -1, -1]])
            sharpened = cv2.filter2D(denoised, -1, kernel)

            processed = ImageEnhance.Contrast(Image.fromarray(sharpened)).enhance(1.5)
            return processed.convert("RGB")
        except cv2.error as e:
            logger.debug("preprocessing failed, using original image: %s", e)
            return image

    def recognize(self, image: Image.Image) -> list[RawWord]:
        """Run OCR with retries.

        An empty page is not an error and yields []. Raises OcrFailure only
        when the last attempt raised.
        """
        attempts = max(1, int(self.max_retries))
        for attempt in range(attempts):
            processed = image if attempt == 0 else self._preprocess_image(image)
            try:
                words = self._extract_with_engine(processed)
            except Exception as e:
                if attempt == attempts - 1:
                    raise OcrFailure(f"ocr engine {self.engine!r} failed: {e}") from e
                logger.debug("ocr attempt %s failed: %s", attempt + 1, e)
                continue

            if words:
                return words
            if attempt < attempts - 1:
                time.sleep(0.1)
        return []

    def _extract_with_engine(self, image: Image.Image) -> list[RawWord]:
        if self.engine == "auto":
            try:
                return self._extract_easyocr(image)
            except Exception as e:
                logger.debug("easyocr unavailable, falling back to paddleocr: %s", e)
                return self._extract_paddleocr(image)
        if self.engine == "easyocr":
            return self._extract_easyocr(image)
        if self.engine == "paddleocr":
            return self._extract_paddleocr(image)
        raise ValueError(f"Unknown OCR engine: {self.engine}")

    def _extract_easyocr(self, image: Image.Image) -> list[RawWord]:
        import easyocr

        if self._ocr is None or not isinstance(self._ocr, easyocr.Reader):
            langs = [s.strip() for s in self.lang.replace("+", ",").split(",") if s.strip()]
            self._ocr = easyocr.Reader(langs, gpu=False)

        results = self._ocr.readtext(np.array(image))
        words: list[RawWord] = []
        for bbox, text, confidence in results:
            w = _word(text, bbox, confidence)
            if w is not None:
                words.append(w)
        return words

    def _extract_paddleocr(self, image: Image.Image) -> list[RawWord]:
        from paddleocr import PaddleOCR

        if self._ocr is None or not hasattr(self._ocr, "ocr"):
            self._ocr = PaddleOCR(use_angle_cls=True, lang=self.lang, show_log=False)

        arr = np.array(image)
        try:
            result = self._ocr.ocr(arr, cls=True)
        except TypeError:
            result = self._ocr.ocr(arr)

        words: list[RawWord] = []
        for line in result or []:
            for item in line or []:
                poly, (text, score) = item
                w = _word(text, poly, score)
                if w is not None:
                    words.append(w)
        return words
