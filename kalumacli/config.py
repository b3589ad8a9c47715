"""Configuration helpers for kalumacli."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any

from .settings import CONFIG_FILE, DEFAULT_BAUDRATE

logger = logging.getLogger(__name__)


def _coerce_int(value: Any, default: int, minimum: int = 0) -> int:
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return default


def _coerce_float(value: Any, default: float) -> float:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return default


@dataclass
class ToolConfig:
    port: str = ""
    baudrate: int = DEFAULT_BAUDRATE
    read_timeout: float = 0.05
    write_timeout: float = 1.0
    open_timeout: float = 2.0
    eval_timeout: float = 5.0
    chunk_size: int = 256
    max_line_length: int = 2048
    retries: int = 3
    flash_chunk_size: int = 128
    flash_chunk_delay: float = 0.01
    settle_delay: float = 1.0
    load_delay: float = 1.0
    erase_timeout: float = 5.0
    bundler: str = "esbuild"


_INT_FIELDS = {
    "baudrate": 1,
    "chunk_size": 1,
    "max_line_length": 64,
    "retries": 0,
    "flash_chunk_size": 1,
}
_FLOAT_FIELDS = (
    "read_timeout",
    "write_timeout",
    "open_timeout",
    "eval_timeout",
    "flash_chunk_delay",
    "settle_delay",
    "load_delay",
    "erase_timeout",
)


def load_config(path: str | Path = CONFIG_FILE) -> ToolConfig:
    """Load configuration data from *path* or return defaults on failure."""

    defaults = ToolConfig()
    cfg_path = Path(path)
    if not cfg_path.exists():
        return defaults

    try:
        raw = json.loads(cfg_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.error("Config file %s contains invalid JSON: %s", cfg_path, exc)
        return defaults
    except OSError as exc:
        logger.error("Could not read config file %s: %s", cfg_path, exc)
        return defaults

    if not isinstance(raw, dict):
        logger.error("Config file %s did not contain an object", cfg_path)
        return defaults

    data = asdict(defaults)
    data["port"] = str(raw.get("port", data["port"]))
    data["bundler"] = str(raw.get("bundler", data["bundler"])) or defaults.bundler
    for name, minimum in _INT_FIELDS.items():
        data[name] = _coerce_int(raw.get(name), data[name], minimum)
    for name in _FLOAT_FIELDS:
        data[name] = _coerce_float(raw.get(name), data[name])

    return ToolConfig(**data)
