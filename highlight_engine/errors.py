"""Error taxonomy of the annotation engine.

Only DecodeFailure and OcrFailure are meant to reach a user. The others are
control-flow signals that callers swallow (StaleEpoch, SelectionOutsideLayer),
reject a single input (InvalidHighlight) or skip a single record
(CorruptRecord).
"""
from __future__ import annotations


class AnnotationError(Exception):
    """Base class for every error raised by highlight_engine."""


class DecodeFailure(AnnotationError):
    def __init__(self, page_number: int | None, message: str):
        super().__init__(f"page {page_number}: {message}" if page_number is not None else message)
        self.page_number = page_number
        self.retryable = True


class OcrFailure(AnnotationError):
    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class StaleEpoch(AnnotationError):
    pass


class SelectionOutsideLayer(AnnotationError):
    pass


class InvalidHighlight(AnnotationError):
    pass


class CorruptRecord(AnnotationError):
    def __init__(self, message: str, *, index: int | None = None):
        super().__init__(message)
        self.index = index
