#!/usr/bin/env python3
"""wg-bridge command line.

Usage:
    wg-bridge [--settings FILE] <command> [args]

Environment variables:
    WG_BRIDGE_*          Settings overrides (see wg_bridge.settings)
    WG_BRIDGE_LOG_LEVEL  Console log level (default: INFO)
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from .control import ControlPlane
from .errors import BridgeError
from .settings import BridgeSettings
from .utils.logging_config import setup_logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

INTERFACE_COMMANDS = {
    "reload": "Re-sync the live configuration into the interface",
    "up": "Start the wg-quick unit",
    "down": "Stop the wg-quick unit",
    "restart": "Restart the wg-quick unit",
    "status": "Show wg-quick unit status",
}


def _read_text(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text()


def _meta_args(values: list[str]) -> dict[str, str]:
    meta = {}
    for item in values:
        name, sep, path = item.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"--meta expects NAME=FILE, got {item!r}")
        meta[name] = Path(path).read_text()
    return meta


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wg-bridge",
        description="WireGuard configuration control plane",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run the inbox watcher
    wg-bridge serve

    # Apply a configuration
    wg-bridge apply wg0 /tmp/wg0.conf

    # Export for a peer and trust their signing key
    wg-bridge export wg0 <their exchange key>
    wg-bridge trust site-b <their signing key>
""",
    )
    parser.add_argument("--settings", type=Path, help="YAML settings file (default: environment)")
    parser.add_argument("--log-file", type=Path, help="Service log file (serve only)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Watch the inbox until interrupted")

    p = sub.add_parser("apply", help="Apply a configuration file to an interface")
    p.add_argument("name")
    p.add_argument("file", help="Configuration file, or - for stdin")

    p = sub.add_parser("validate", help="Validate a configuration file")
    p.add_argument("file", help="Configuration file, or - for stdin")

    p = sub.add_parser("export", help="Export a signed, encrypted bundle")
    p.add_argument("name")
    p.add_argument("recipient", help="Recipient's exchange key (base64)")
    p.add_argument("--meta", action="append", default=[], metavar="NAME=FILE",
                   help="Auxiliary file to include under meta/")

    sub.add_parser("inbox", help="Report on bundles in the inbox")
    sub.add_parser("pending", help="List staged bundles awaiting promotion")

    p = sub.add_parser("promote", help="Apply a pending configuration")
    p.add_argument("name")

    sub.add_parser("rotate-keys", help="Rotate exchange and signing keys")
    sub.add_parser("exchange-key", help="Print this node's exchange key")
    sub.add_parser("fingerprint", help="Print this node's signing key fingerprint")

    p = sub.add_parser("trust", help="Trust a peer's signing key")
    p.add_argument("name")
    p.add_argument("public_key")

    p = sub.add_parser("write", help="Write a configuration file and sync the interface")
    p.add_argument("name")
    p.add_argument("file", help="Configuration file, or - for stdin")

    for command, help_text in INTERFACE_COMMANDS.items():
        p = sub.add_parser(command, help=help_text)
        p.add_argument("name")

    return parser


def request_for(args: argparse.Namespace) -> tuple[str, dict]:
    """Translate parsed arguments into a control method and params."""
    command = args.command
    if command == "apply":
        return "apply_changes", {"name": args.name, "text": _read_text(args.file)}
    if command == "validate":
        return "validate_config", {"text": _read_text(args.file)}
    if command == "export":
        params = {"name": args.name, "recipient": args.recipient}
        if args.meta:
            params["metadata"] = _meta_args(args.meta)
        return "export_bundle", params
    if command == "promote":
        return "promote_pending", {"name": args.name}
    if command == "trust":
        return "trust_signing_key", {"name": args.name, "public_key": args.public_key}
    if command == "write":
        return "write_config", {"name": args.name, "text": _read_text(args.file)}
    if command in INTERFACE_COMMANDS:
        method = "get_interface_status" if command == "status" else f"{command}_interface"
        return method, {"name": args.name}
    simple = {
        "inbox": "list_inbox_bundles",
        "pending": "list_pending",
        "rotate-keys": "rotate_keys",
        "exchange-key": "get_exchange_key",
        "fingerprint": "get_signing_fingerprint",
    }
    return simple[command], {}


async def serve(settings: BridgeSettings) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with ControlPlane(settings) as plane:
        logger.info(f"Serving; exchange key {plane.keyring.get_exchange_key()}")
        await stop.wait()
    return 0


async def run_once(settings: BridgeSettings, method: str, params: dict) -> int:
    async with ControlPlane(settings, watch_inbox=False) as plane:
        response = await plane.call(method, params)
    print(json.dumps(response, indent=2, default=str))
    return 1 if "error" in response else 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = BridgeSettings.from_file(args.settings) if args.settings else BridgeSettings.from_env()
        if args.command == "serve":
            setup_logging(args.log_file)
            return asyncio.run(serve(settings))
        method, params = request_for(args)
        return asyncio.run(run_once(settings, method, params))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except (BridgeError, OSError, argparse.ArgumentTypeError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
