"""Bundling of JavaScript sources through an external esbuild process."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

_LOGGER = logging.getLogger(__name__)

# Modules provided by the firmware; the bundler must leave these requires alone.
DEVICE_MODULES = (
    "adc",
    "button",
    "events",
    "flash",
    "fs",
    "gpio",
    "i2c",
    "led",
    "pio",
    "pwm",
    "rp2",
    "rtc",
    "spi",
    "startup",
    "storage",
    "stream",
    "uart",
    "url",
    "vfs_lfs",
)

BUNDLE_TIMEOUT = 120


@dataclass
class Asset:
    name: str
    size: int


@dataclass
class BuildReport:
    """Outcome of one bundler run."""

    ok: bool
    assets: List[Asset] = field(default_factory=list)
    errors: str = ""
    code: Optional[str] = None


def build_command(
    source: str,
    *,
    executable: str = "esbuild",
    output: Optional[str] = None,
    minify: bool = False,
    sourcemap: bool = False,
    externals: Sequence[str] = DEVICE_MODULES,
) -> List[str]:
    cmd = [executable, source, "--bundle", "--platform=node", "--format=cjs"]
    cmd.extend(f"--external:{name}" for name in externals)
    if output:
        cmd.append(f"--outfile={output}")
    if minify:
        cmd.append("--minify")
    if sourcemap:
        # An inline map is the only kind that survives a stdout build.
        cmd.append("--sourcemap" if output else "--sourcemap=inline")
    return cmd


def bundle(
    source: str,
    *,
    output: str = "bundle.js",
    minify: bool = False,
    sourcemap: bool = False,
    in_memory: bool = False,
    executable: str = "esbuild",
    timeout: int = BUNDLE_TIMEOUT,
) -> BuildReport:
    """Bundle *source* into *output*, or into ``BuildReport.code`` when *in_memory*."""

    cmd = build_command(
        source,
        executable=executable,
        output=None if in_memory else output,
        minify=minify,
        sourcemap=sourcemap,
    )
    _LOGGER.debug("Running bundler: %s", " ".join(cmd))
    try:
        process = subprocess.run(
            cmd, capture_output=True, text=True, check=False, timeout=timeout
        )
    except FileNotFoundError:
        return BuildReport(ok=False, errors=f"{executable} not found. Is it installed and in PATH?")
    except subprocess.TimeoutExpired:
        return BuildReport(ok=False, errors=f"{executable} timed out after {timeout}s")

    if process.returncode != 0:
        return BuildReport(ok=False, errors=(process.stderr or process.stdout).strip())

    if in_memory:
        code = process.stdout
        name = f"{Path(output).name} [memory]"
        return BuildReport(ok=True, assets=[Asset(name, len(code.encode("utf-8")))], code=code)

    assets = [Asset(Path(output).name, os.path.getsize(output))]
    map_path = f"{output}.map"
    if sourcemap and os.path.exists(map_path):
        assets.append(Asset(Path(map_path).name, os.path.getsize(map_path)))
    return BuildReport(ok=True, assets=assets)
