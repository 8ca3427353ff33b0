from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from core.errors import PersistenceFailure


def read_json(path: Path | str, default: Any = None) -> Any:
    """Load JSON from disk; a missing or unreadable file yields ``default``."""
    target = Path(path)
    if not target.exists():
        return default
    try:
        return json.loads(target.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default


def write_json_atomic(path: Path | str, payload: Any) -> None:
    """Write via a temp file in the same directory, then ``os.replace``."""
    target = Path(path)
    tmp_path = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, suffix=target.suffix or ".json")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2, default=str)
        os.replace(tmp_path, target)
    except (OSError, TypeError, ValueError) as exc:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise PersistenceFailure(f"failed to write {target}", original=exc, path=str(target)) from exc


__all__ = ["read_json", "write_json_atomic"]
