from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import load_json

DEFAULTS: dict[str, dict[str, Any]] = {
    "geometry": {
        # Viewport px; rects thinner than this are line-boundary artifacts.
        "min_rect_size": 2.0,
        # Intrinsic units; anything smaller is treated as degenerate after clamping.
        "min_storage_size": 0.5,
        "epsilon": 1e-6,
    },
    "selection": {
        "join_lines_with": " ",
    },
    "ocr": {
        "engine": "auto",  # auto, easyocr, paddleocr
        "lang": "en",
        "boost": 2.0,
        "max_retries": 2,
        "use_preprocessing": True,
        "timeout_s": 120.0,
        "workers": 1,
    },
    "render": {
        "workers": 2,
        "timeout_s": 30.0,
        "default_color": "#FFEB3B",
        "opacity": 0.4,
    },
    "storage": {
        "workspace": "./workspace",
    },
}


@dataclass(frozen=True)
class EngineConfig:
    geometry: dict[str, Any] = field(default_factory=lambda: dict(DEFAULTS["geometry"]))
    selection: dict[str, Any] = field(default_factory=lambda: dict(DEFAULTS["selection"]))
    ocr: dict[str, Any] = field(default_factory=lambda: dict(DEFAULTS["ocr"]))
    render: dict[str, Any] = field(default_factory=lambda: dict(DEFAULTS["render"]))
    storage: dict[str, Any] = field(default_factory=lambda: dict(DEFAULTS["storage"]))


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    merged = dict(DEFAULTS[name])
    merged.update(data.get(name, {}) or {})
    return merged


def load_config(config_path: str | Path | None = None) -> EngineConfig:
    """Load a JSON config, filling every missing key from DEFAULTS.

    A missing file is not an error: the engine runs on defaults.
    """
    data: dict[str, Any] = {}
    if config_path is not None and Path(config_path).exists():
        loaded = load_json(config_path)
        if not isinstance(loaded, dict):
            raise ValueError(f"config must be a JSON object: {config_path}")
        data = loaded

    cfg = EngineConfig(
        geometry=_section(data, "geometry"),
        selection=_section(data, "selection"),
        ocr=_section(data, "ocr"),
        render=_section(data, "render"),
        storage=_section(data, "storage"),
    )
    if float(cfg.ocr["boost"]) < 2.0:
        raise ValueError(f"ocr.boost must be >= 2.0, got {cfg.ocr['boost']}")
    return cfg
