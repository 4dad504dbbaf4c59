"""romprops CLI: identify disc/cartridge images and print their fields.

Usage::

    romprops detect game.iso
    romprops info game.gcz
    romprops info game.sfc --json
    romprops info game.wbfs --msgpack fields.msgpack
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

from . import __version__
from .config import Config
from .fields import DateTimeFlags, FieldType, RomFields
from .romdata import RomData, SystemNameType, detect
from .stream import open_stream


# ── Terminal UI (stdlib only: colors when TTY) ──────────────────────────────

def _color_enabled() -> bool:
    if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
        return False
    return os.environ.get("NO_COLOR", "").strip() == ""

_COLORS = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "green": "\033[32m",
    "cyan": "\033[36m",
    "bold": "\033[1m",
    "red": "\033[31m",
}

def _c(name: str, text: str) -> str:
    if not _color_enabled() or name not in _COLORS:
        return text
    return f"{_COLORS[name]}{text}{_COLORS['reset']}"

def _section(title: str) -> str:
    return _c("cyan", f"\n  ◆ {title}")

def _fail(msg: str) -> None:
    print(_c("red", f"romprops: {msg}"), file=sys.stderr)
    sys.exit(1)


def _format_datetime(ts: int, flags: int) -> str:
    if ts == -1:
        return "Unknown"
    try:
        dt = datetime.fromtimestamp(ts, timezone.utc)
    except (ValueError, OverflowError, OSError):
        # Outside what datetime can represent; show the raw seconds.
        return f"{ts} (Unix time)"
    if flags & DateTimeFlags.HAS_DATE and flags & DateTimeFlags.HAS_TIME:
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    if flags & DateTimeFlags.HAS_TIME:
        return dt.strftime("%H:%M:%S")
    return dt.strftime("%Y-%m-%d")


def _print_fields(fields: RomFields, indent: int = 4) -> None:
    pad = " " * indent
    width = max((len(f.label) for f in fields), default=0)
    for f in fields:
        if f.type == FieldType.FIELDS:
            print(_c("bold", f"{pad}{f.label}"))
            _print_fields(f.value, indent + 2)
        elif f.type == FieldType.DATETIME:
            print(f"{pad}{f.label:<{width}}  {_format_datetime(f.value, f.flags)}")
        else:
            print(f"{pad}{f.label:<{width}}  {f.value}")


def _open(path: str, config: Config) -> RomData:
    try:
        stream = open_stream(path, config)
    except OSError as exc:
        _fail(f"cannot open {path}: {exc}")
    with stream:
        rom = detect(stream, config)
    if rom is None:
        _fail(f"{path}: unknown format")
    return rom


# ── Commands ────────────────────────────────────────────────────────────────


def cmd_detect(args: argparse.Namespace) -> None:
    with _open(args.file, args.config) as rom:
        print(f"{type(rom).__name__}  {rom.system_name(SystemNameType.LONG)}")


def cmd_info(args: argparse.Namespace) -> None:
    with _open(args.file, args.config) as rom:
        ret = rom.load_field_data()
        if ret < 0:
            _fail(f"{args.file}: could not load fields ({os.strerror(-ret)})")
        fields = rom.fields

        if args.msgpack:
            with open(args.msgpack, "wb") as f:
                f.write(fields.pack())

        if args.json:
            print(json.dumps(fields.to_dict(), indent=2, ensure_ascii=False))
            return

        print(_c("bold", "\n  romprops  ") + _c("dim", args.file))
        print(_section(rom.system_name(SystemNameType.LONG)))
        _print_fields(fields)
        print()


# ── Entry point ─────────────────────────────────────────────────────────────


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="romprops", description="Disc and cartridge image metadata"
    )
    parser.add_argument(
        "--version", action="version", version=f"romprops {__version__}"
    )
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable debug logging")
    parser.add_argument("--no-xgd3-heuristic", action="store_true",
                        help="Only report Xbox discs with a known PVD timestamp")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("detect", help="Identify the image format")
    p.add_argument("file", help="path or http(s) URL")

    p = sub.add_parser("info", help="Print decoded fields")
    p.add_argument("file", help="path or http(s) URL")
    p.add_argument("--json", action="store_true", help="Print fields as JSON")
    p.add_argument("--msgpack", metavar="OUT", help="Write fields as msgpack to OUT")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING, format="%(message)s")

    config = Config.from_env()
    if args.no_xgd3_heuristic:
        config = dataclasses.replace(config, xgd3_heuristic=False)
    args.config = config

    cmds = {
        "detect": cmd_detect,
        "info": cmd_info,
    }
    fn = cmds.get(args.command)
    if fn:
        fn(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
