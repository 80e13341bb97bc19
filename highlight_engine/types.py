from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from PIL import Image

VALID_ROTATIONS = (0, 90, 180, 270)
DEFAULT_COLOR = "#FFEB3B"


@dataclass(frozen=True)
class Page:
    number: int  # 1-based
    intrinsic_width: float  # scale=1, rotation=0
    intrinsic_height: float

    def __post_init__(self) -> None:
        if self.number < 1:
            raise ValueError(f"page number must be >= 1, got {self.number}")
        if self.intrinsic_width <= 0 or self.intrinsic_height <= 0:
            raise ValueError(f"page {self.number} has non-positive intrinsic size")


@dataclass(frozen=True)
class ViewportTransform:
    scale: float = 1.0
    rotation: int = 0

    def __post_init__(self) -> None:
        if not self.scale > 0:
            raise ValueError(f"scale must be > 0, got {self.scale}")
        rotation = int(self.rotation) % 360
        if rotation not in VALID_ROTATIONS:
            raise ValueError(f"rotation must be a multiple of 90, got {self.rotation}")
        object.__setattr__(self, "rotation", rotation)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle, origin top-left.

    Used for Viewport rects (rendered pixels) and for normalized Storage rects
    (Intrinsic units). Which frame a rect lives in is decided by the code that
    produced it, never by the rect itself.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def contains_point(self, px: float, py: float) -> bool:
        return self.x <= px <= self.right and self.y <= py <= self.bottom

    def intersects(self, other: "Rect") -> bool:
        return not (
            other.x >= self.right
            or other.right <= self.x
            or other.y >= self.bottom
            or other.bottom <= self.y
        )

    def translate(self, dx: float, dy: float) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Rect":
        return cls(float(d["x"]), float(d["y"]), float(d["width"]), float(d["height"]))

    @classmethod
    def from_xyxy(cls, x0: float, y0: float, x1: float, y1: float) -> "Rect":
        return cls(min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0))


@dataclass(frozen=True)
class Highlight:
    id: str
    page_number: int
    rects: tuple[Rect, ...]  # Storage space
    color: str = DEFAULT_COLOR
    source_text: str = ""
    note_text: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Epoch:
    """Render generation at which an async operation was started."""

    page_number: int
    scale: float
    rotation: int
    generation: int


@dataclass(frozen=True)
class OcrWord:
    text: str
    box: Rect  # Storage space
    epoch: Epoch
    confidence: float | None = None


@dataclass(frozen=True)
class RawWord:
    """A word as returned by an OCR engine, boxed in raster pixels."""

    text: str
    bbox_xyxy: tuple[float, float, float, float]
    confidence: float | None = None


@dataclass(frozen=True)
class TextRun:
    text: str
    origin_x: float  # Intrinsic space
    origin_y: float
    glyph_height: float
    glyph_angle: float = 0.0  # degrees
    font_id: str = ""
    advance: float | None = None  # run width in Intrinsic units, when known


@dataclass(frozen=True)
class TextSpan:
    """One invisible, selectable node of an interactive layer (Viewport space)."""

    text: str
    left: float
    top: float
    font_size: float
    angle: float
    font_id: str = ""
    width: float | None = None
    height: float | None = None


@dataclass(frozen=True)
class DrawableRect:
    viewport_rect: Rect
    color: str
    highlight_id: str


@dataclass(frozen=True)
class CaptureResult:
    page_number: int
    text: str
    rects: tuple[Rect, ...]  # layer-relative Viewport space


@dataclass
class RenderedPage:
    page_number: int
    image: Image.Image
    text_runs: list[TextRun] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)
