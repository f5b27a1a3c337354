"""Configuration handling for Mixboot."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

log = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "version": "1.0",
    "bootstrap": {
        "n": 1000,
        "workers": 0,
        "seed": None,
        "level": 0.95,
        "show_progress": False,
    },
    "logging": {
        "level": "INFO",
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into ``base`` and return ``base``."""

    for key, val in override.items():
        if (
            isinstance(val, dict)
            and key in base
            and isinstance(base[key], dict)
        ):
            _merge(base[key], val)
        else:
            base[key] = val
    return base


def defaults() -> Dict[str, Any]:
    return json.loads(json.dumps(DEFAULT_CONFIG))  # deep copy


def load(path: str | Path) -> Dict[str, Any]:
    """Load configuration from *path* or return defaults if missing."""

    p = Path(path)
    cfg = defaults()
    if not p.exists():
        return cfg
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        log.warning("ignoring unreadable config %s: %s", p, exc)
        return cfg
    if isinstance(data, dict):
        _merge(cfg, data)
    return cfg


def save(path: str | Path, cfg: Dict[str, Any]) -> None:
    """Persist ``cfg`` to ``path``."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as fh:
        json.dump(cfg, fh, indent=2, sort_keys=True)
