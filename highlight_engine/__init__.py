"""Document highlight annotation engine.

This package focuses on:
- converting selections between Viewport and Storage coordinates
- capturing selections from native or OCR-synthesized text layers
- storing, persisting and re-rendering highlights at any scale/rotation

Document decoding, OCR inference and UI are delegated to collaborators
(PyMuPDF, EasyOCR/PaddleOCR, the host viewer).
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
