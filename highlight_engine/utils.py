from __future__ import annotations

import hashlib
import json
import math
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def ensure_dir(path: str | Path) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def safe_filename_token(text: str, max_len: int = 50) -> str:
    text = text.strip().lower()
    text = re.sub(r"[^a-z0-9_-]+", "_", text)
    text = re.sub(r"_+", "_", text).strip("_")
    return text[:max_len] or "token"


def slugify(text: str, max_len: int = 50, *, add_hash: bool = True) -> str:
    """Safe filename slug.

    Notes:
    - Keeps output ASCII-safe for Windows paths.
    - Optionally appends a short sha1 suffix so that book ids differing only in
      punctuation or non-ASCII characters do not share a directory.
    """
    base = safe_filename_token(text, max_len=max_len)
    if not add_hash:
        return base
    h = hashlib.sha1(text.encode("utf-8"), usedforsecurity=False).hexdigest()[:8]
    if len(base) + 1 + len(h) > max_len:
        base = base[: max(1, max_len - 1 - len(h))]
    return f"{base}_{h}"


def write_json(path: str | Path, data: Any) -> None:
    """Write via a sibling temp file and os.replace; readers never see a partial file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def append_jsonl(path: str | Path, obj: dict[str, Any]) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False) + "\n")


def load_json(path: str | Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def is_finite_number(v: Any) -> bool:
    # bool is an int subclass; a stored `true` is never a coordinate.
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return False
    return math.isfinite(float(v))
