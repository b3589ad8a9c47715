"""kalumacli package: serial tooling for Kaluma devices."""

from __future__ import annotations

__all__ = ["main"]


def main() -> None:
    """Run the kalumacli command line."""

    from .cli import main as _cli_main

    raise SystemExit(_cli_main())
