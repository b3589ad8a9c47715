"""Host-side services used by the command line."""

from .bundler import Asset, BuildReport, bundle
from .system import PortInfo, PortService

__all__ = ["Asset", "BuildReport", "PortInfo", "PortService", "bundle"]
