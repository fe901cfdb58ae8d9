"""Persist the authenticated identity so a later process can restore it."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, Optional

BASE_DIR = Path.home() / ".meshchat"
SESSION_PATH = BASE_DIR / "session.json"


def _write_private_json(path: Path, payload: Dict[str, str]) -> None:
    """Replace ``path`` with ``payload`` readable by the owner only."""

    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.parent / f".{path.name}.partial"
    fd = os.open(staging, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(staging, path)
    except OSError:
        staging.unlink(missing_ok=True)
        raise


def load_session(path: Path = SESSION_PATH) -> Optional[Dict[str, str]]:
    try:
        data = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, ValueError):
        return None

    if not isinstance(data, dict):
        return None
    alias = data.get("alias")
    public_key = data.get("pub")
    if not isinstance(alias, str) or not isinstance(public_key, str) or not alias or not public_key:
        return None
    return {"alias": alias, "pub": public_key}


def save_session(alias: str, public_key: str, path: Path = SESSION_PATH) -> None:
    _write_private_json(Path(path), {"alias": alias, "pub": public_key})


def clear_session(path: Path = SESSION_PATH) -> None:
    try:
        Path(path).expanduser().unlink()
    except FileNotFoundError:
        pass
