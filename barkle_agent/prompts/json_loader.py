from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger("barkle_agent.prompts")

_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def _data_dir() -> Path:
    return Path(__file__).with_name("data")


def _read_text(path: Path) -> str:
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "cp1252"):
        try:
            return path.read_text(encoding=encoding)
        except UnicodeDecodeError as exc:
            last_exc = exc
    if last_exc is not None:
        raise last_exc
    raise RuntimeError(f"Unable to read prompt JSON: {path}")


def load_prompt_json(filename: str, defaults: dict[str, Any], data_dir: Path | None = None) -> dict[str, Any]:
    """Shallow-merge ``data/<filename>`` over ``defaults``; cached by mtime."""
    path = (data_dir or _data_dir()) / filename
    cache_key = str(path.resolve())

    mtime_ns: int | None = None
    if path.exists():
        try:
            mtime_ns = path.stat().st_mtime_ns
        except OSError:
            mtime_ns = None

    cached = _CACHE.get(cache_key)
    if cached is not None and cached[0] == mtime_ns:
        return copy.deepcopy(cached[1])

    merged = copy.deepcopy(defaults)
    if path.exists():
        try:
            payload = json.loads(_read_text(path))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to parse prompt JSON %s (%s). Using defaults.", path, exc)
            payload = None
        if isinstance(payload, dict):
            for key, value in payload.items():
                if key in merged and isinstance(value, type(merged[key])):
                    merged[key] = value
                elif key not in merged:
                    logger.debug("Ignoring unknown prompt key %s in %s", key, path)
        elif payload is not None:
            logger.warning("Prompt JSON root must be an object: %s (using defaults)", path)
    else:
        logger.debug("Prompt JSON not found: %s (using defaults)", path)

    _CACHE[cache_key] = (mtime_ns, copy.deepcopy(merged))
    return merged
