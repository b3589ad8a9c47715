"""Configuration helpers and shared constants for kalumacli."""

from __future__ import annotations

import logging

CONFIG_FILE = "kaluma.json"
LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

DEFAULT_BAUDRATE = 115200

# Console framing as printed by the Kaluma REPL.
LINE_TERMINATOR = b"\r"
PROMPT = b"> "

# Console dot-commands.
FLASH_WRITE_COMMAND = ".flash -w"
FLASH_ERASE_COMMAND = ".flash -e"
LOAD_COMMAND = ".load"

END_OF_CODE = b"\x1a"
INTERRUPT = b"\x03"


def configure_logging(
    *, level: int = LOG_LEVEL, fmt: str = LOG_FORMAT, force: bool = False
) -> None:
    """Initialize the root logger used across kalumacli."""

    if force:
        logging.basicConfig(level=level, format=fmt, force=True)
        return

    if logging.getLogger().handlers:
        return
    logging.basicConfig(level=level, format=fmt)
