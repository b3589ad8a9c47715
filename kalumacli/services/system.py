"""Service utilities for serial port discovery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import serial.tools.list_ports


@dataclass
class PortInfo:
    """One serial port as reported by the host."""

    device: str
    manufacturer: Optional[str] = None


class PortService:
    """Provide serial port discovery helpers decoupled from the CLI."""

    def list_ports(self) -> List[PortInfo]:
        return [
            PortInfo(
                device=info.device,
                manufacturer=getattr(info, "manufacturer", None) or None,
            )
            for info in serial.tools.list_ports.comports()
        ]

    def resolve(self, requested: Optional[str], fallback: Optional[str] = None) -> Optional[str]:
        """Return the port to use: the explicit request, else the configured one."""

        normalized = (requested or "").strip()
        if normalized:
            return normalized
        return (fallback or "").strip() or None
