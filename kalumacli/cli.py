"""Command line interface for kalumacli."""

from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Callable, List, Optional

from .config import ToolConfig, load_config
from .errors import (
    BundleError,
    DeviceConnectionError,
    DeviceIOError,
    DeviceTimeoutError,
    EraseError,
    EvalError,
    FlashError,
    KalumaError,
    TransferError,
)
from .protocol import Downloader, Evaluator, TransferSession, Uploader, erase, flash
from .services import BuildReport, PortService, bundle
from .settings import CONFIG_FILE, configure_logging
from .transport import connect

_LOGGER = logging.getLogger(__name__)

EXIT_USAGE = 1
EXIT_CODES = (
    (DeviceConnectionError, 2),
    (DeviceIOError, 3),
    (DeviceTimeoutError, 4),
    (EvalError, 5),
    (TransferError, 6),
    (FlashError, 7),
    (EraseError, 8),
    (BundleError, 9),
)

_UNITS = ("B", "KiB", "MiB", "GiB")


def format_size(size: int) -> str:
    """Return *size* bytes in a human readable unit."""
    value = float(size)
    for unit in _UNITS:
        if value < 1024 or unit == _UNITS[-1]:
            break
        value /= 1024
    if unit == "B":
        return f"{int(value)} B"
    return f"{value:.2f} {unit}"


def exit_code_for(exc: BaseException) -> int:
    for kind, code in EXIT_CODES:
        if isinstance(exc, kind):
            return code
    return EXIT_USAGE


def _progress_printer(label: str) -> Callable[[TransferSession], None]:
    def report(session: TransferSession) -> None:
        print(
            f"\r{label} {format_size(session.transferred)} / "
            f"{format_size(session.total_size)}",
            end="\n" if session.complete else "",
            flush=True,
        )

    return report


def _print_assets(report: BuildReport) -> None:
    for asset in report.assets:
        print(f"{asset.name} {format_size(asset.size)}")


def _evaluator(transport, config: ToolConfig) -> Evaluator:
    return Evaluator(
        transport,
        timeout=config.eval_timeout,
        max_line_length=config.max_line_length,
    )


def _port(args: argparse.Namespace, config: ToolConfig) -> str:
    return PortService().resolve(args.port, config.port) or ""


def cmd_ports(args: argparse.Namespace, config: ToolConfig) -> int:
    for port in PortService().list_ports():
        line = port.device
        if port.manufacturer:
            line += f" [{port.manufacturer}]"
        print(line)
    return 0


def cmd_flash(args: argparse.Namespace, config: ToolConfig) -> int:
    with open(args.file, "r", encoding="utf-8") as handle:
        code = handle.read()
    name = args.file

    if args.bundle:
        print(f"bundling {args.file}")
        report = bundle(
            args.file,
            minify=args.minify,
            sourcemap=args.sourcemap,
            in_memory=True,
            executable=config.bundler,
        )
        if not report.ok:
            raise BundleError(report.errors)
        _print_assets(report)
        code = report.code or ""
        name = "bundle.js [memory]"

    print(f"flashing {name}")
    with connect(_port(args, config), config) as transport:
        result = flash(
            transport,
            code,
            load=args.load,
            chunk_size=config.flash_chunk_size,
            chunk_delay=config.flash_chunk_delay,
            settle_delay=config.settle_delay,
            load_delay=config.load_delay,
            prompt_timeout=config.eval_timeout,
        )
    print(f"{format_size(result.written_bytes)} written")
    print("Done.")
    return 0


def cmd_erase(args: argparse.Namespace, config: ToolConfig) -> int:
    print("Erasing user code...")
    with connect(_port(args, config), config) as transport:
        erase(transport, timeout=config.erase_timeout)
    print("Done.")
    return 0


def cmd_bundle(args: argparse.Namespace, config: ToolConfig) -> int:
    print(f"Bundling {args.file}")
    report = bundle(
        args.file,
        output=args.output,
        minify=args.minify,
        sourcemap=args.sourcemap,
        executable=config.bundler,
    )
    if not report.ok:
        raise BundleError(report.errors)
    _print_assets(report)
    print("Done.")
    return 0


def cmd_put(args: argparse.Namespace, config: ToolConfig) -> int:
    src = os.path.abspath(args.src)
    if not os.path.isfile(src):
        print(f"File not found: {args.src}")
        return EXIT_USAGE
    size = os.path.getsize(src)
    with connect(_port(args, config), config) as transport:
        uploader = Uploader(
            _evaluator(transport, config),
            chunk_size=config.chunk_size,
            retries=config.retries,
            on_progress=_progress_printer("put"),
        )
        written = uploader.upload(src, args.dest, size)
    print(f"{format_size(written)} written to {args.dest}")
    return 0


def cmd_get(args: argparse.Namespace, config: ToolConfig) -> int:
    with connect(_port(args, config), config) as transport:
        downloader = Downloader(
            _evaluator(transport, config),
            chunk_size=config.chunk_size,
            retries=config.retries,
            on_progress=_progress_printer("get"),
        )
        received = downloader.download(args.src, args.dest)
    print(f"{format_size(received)} read into {args.dest}")
    return 0


def _parse_argument(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def cmd_eval(args: argparse.Namespace, config: ToolConfig) -> int:
    source = args.function
    if os.path.isfile(source):
        with open(source, "r", encoding="utf-8") as handle:
            source = handle.read()
    values = [_parse_argument(arg) for arg in args.args]
    with connect(_port(args, config), config) as transport:
        result = _evaluator(transport, config).evaluate(source, *values)
    print(json.dumps(result))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="kaluma", description="Kaluma device tool.")
    p.add_argument("--config", default=CONFIG_FILE, help="JSON config file.")
    p.add_argument("-v", "--verbose", action="store_true", help="Log serial traffic.")
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_port(x: argparse.ArgumentParser) -> None:
        x.add_argument("-p", "--port", help="port where device is connected")

    def add_build_flags(x: argparse.ArgumentParser) -> None:
        x.add_argument("-m", "--minify", action="store_true", help="minify bundled code")
        x.add_argument("-s", "--sourcemap", action="store_true", help="generate sourcemap")

    ports = sub.add_parser("ports", help="list available serial ports")
    ports.set_defaults(func=cmd_ports)

    fl = sub.add_parser("flash", help="flash code (.js file) to device")
    fl.add_argument("file")
    add_port(fl)
    fl.add_argument("--no-load", dest="load", action="store_false", help="skip code loading")
    fl.add_argument("-b", "--bundle", action="store_true", help="bundle file")
    add_build_flags(fl)
    fl.set_defaults(func=cmd_flash)

    er = sub.add_parser("erase", help="erase code in device")
    add_port(er)
    er.set_defaults(func=cmd_erase)

    bu = sub.add_parser("bundle", help="bundle codes")
    bu.add_argument("file")
    bu.add_argument("-o", "--output", default="bundle.js", help="output file")
    add_build_flags(bu)
    bu.set_defaults(func=cmd_bundle)

    put = sub.add_parser("put", help="copy a file from host to device")
    put.add_argument("src")
    put.add_argument("dest")
    add_port(put)
    put.set_defaults(func=cmd_put)

    get = sub.add_parser("get", help="copy a file from device to host")
    get.add_argument("src")
    get.add_argument("dest")
    add_port(get)
    get.set_defaults(func=cmd_get)

    ev = sub.add_parser("eval", help="run a function on the device and print its result")
    ev.add_argument("function", help="function source, or a file containing it")
    ev.add_argument("args", nargs="*", help="JSON encoded arguments")
    add_port(ev)
    ev.set_defaults(func=cmd_eval)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    config = load_config(args.config)

    try:
        return int(args.func(args, config))
    except KalumaError as exc:
        _LOGGER.error("%s failed: %s", args.cmd, exc)
        if isinstance(exc, TransferError):
            _LOGGER.error(
                "Transfer incomplete, stopped at offset %d (%s)",
                exc.offset,
                format_size(exc.offset),
            )
        output = getattr(exc, "output", "")
        if output:
            _LOGGER.error("Device output:\n%s", output)
        return exit_code_for(exc)
    except OSError as exc:
        _LOGGER.error("%s failed: %s", args.cmd, exc)
        return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
