"""Request/response protocols layered on the serial transport."""

from .evaluator import Evaluator
from .flash import FlashReport, erase, flash
from .get import Downloader
from .put import Uploader
from .session import TransferSession

__all__ = [
    "Downloader",
    "Evaluator",
    "FlashReport",
    "TransferSession",
    "Uploader",
    "erase",
    "flash",
]
