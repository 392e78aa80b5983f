"""Command-line interface for the CMD402 mint terminal.

``console`` opens the interactive terminal, ``run`` executes one console
command non-interactively (handy in scripts), and ``show-config`` prints the
resolved network settings.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Sequence

from .config import ConfigurationError, NetworkConfig, load_network_config, set_default_config_path
from .console import build_console, console_main
from .dispatcher import parse_keyword
from .ledger import LedgerFault
from .rpc_client import RPCError, RPCTransportError
from .transcript import LineKind

logger = logging.getLogger(__name__)

COMPACT_JSON_SEPARATORS = (",", ":")
NO_CONNECT_COMMANDS = {"help", "clear", "connect"}


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _should_debug() -> bool:
    return os.environ.get("CMD402_DEBUG", "0").strip() not in {"", "0"}


def configure_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug or _should_debug() else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cmd402", description="CMD402 NFT terminal")
    parser.add_argument("--config", help="Path to a YAML config file (default: ~/.cmd402.yaml)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--rpc-url", help="Override the JSON-RPC endpoint")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("console", help="Launch the interactive console (default)")

    run_parser = subparsers.add_parser(
        "run", help="Connect the wallet and run one console command, e.g. 'run balance'"
    )
    run_parser.add_argument("words", nargs="+", help="Console command and its arguments")

    show_parser = subparsers.add_parser("show-config", help="Print the resolved configuration")
    show_parser.add_argument("--compact", action="store_true", help="Emit single-line JSON")
    return parser


def _load_config(args: argparse.Namespace) -> NetworkConfig:
    if args.config:
        set_default_config_path(args.config)
    overrides = {"rpc_url": args.rpc_url} if args.rpc_url else None
    return load_network_config(overrides=overrides)


async def _run_once(config: NetworkConfig, line: str) -> int:
    controller = build_console(config)
    transcript = controller.transcript
    start = len(transcript)
    keyword, _args = parse_keyword(line)
    if keyword in controller.dispatcher.keywords and keyword not in NO_CONNECT_COMMANDS:
        await controller.submit_line("connect")
    await controller.submit_line(line)

    produced = transcript.lines[start:] if keyword != "clear" else transcript.lines
    for entry in produced:
        print(entry.text)
    return 1 if any(entry.kind is LineKind.ERROR for entry in produced) else 0


def cmd_run(config: NetworkConfig, args: argparse.Namespace) -> int:
    line = " ".join(args.words).strip()
    if not line:
        raise CLIError("run requires a console command")
    return asyncio.run(_run_once(config, line))


def cmd_show_config(config: NetworkConfig, args: argparse.Namespace) -> None:
    if args.compact:
        print(json.dumps(config.to_jsonable(), separators=COMPACT_JSON_SEPARATORS))
    else:
        print(json.dumps(config.to_jsonable(), indent=2))


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.debug)
    exit_code = 0
    try:
        config = _load_config(args)
        if args.command in (None, "console"):
            console_main(config)
        elif args.command == "run":
            exit_code = cmd_run(config, args)
        elif args.command == "show-config":
            cmd_show_config(config, args)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (CLIError, ConfigurationError, RPCError, RPCTransportError, LedgerFault) as exc:
        parser.exit(1, f"error: {exc}\n")
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main(sys.argv[1:])
