"""
Command-line client for the miniui agent.

Usage:
    miniui-call status
    miniui-call apply_lan '{"ipaddr": "192.168.1.1", "netmask": "255.255.255.0"}'
    miniui-call sysupgrade '{"source": "https://fw.example/img.bin", "keep": false}'
    miniui-call --list

Replies are printed as JSON on stdout. The exit status is 0 on success and 1
when the call failed or the agent could not be reached.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

import yaml
from pydantic import ValidationError

from miniui.config import load_config
from miniui.ipc.client import BusClient
from miniui.ipc.protocol import BusCallError, BusError
from miniui.logging import setup_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="miniui-call",
        description="Call a method on the miniui agent",
    )
    parser.add_argument("method", nargs="?", help="Method to call")
    parser.add_argument(
        "params",
        nargs="?",
        default="{}",
        help="Method parameters as a JSON object",
    )
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument("--socket", "-s", type=str, help="Agent socket path")
    parser.add_argument("--timeout", "-t", type=float, help="Call timeout in seconds")
    parser.add_argument(
        "--list",
        action="store_true",
        help="List the object's methods and their fields",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to stderr")
    return parser


def _parse_params(raw: str) -> dict[str, Any]:
    try:
        params = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Parameters are not valid JSON: {e}") from e
    if not isinstance(params, dict):
        raise ValueError("Parameters must be a JSON object")
    return params


async def _run(
    client: BusClient,
    method: str | None,
    params: dict[str, Any],
) -> dict[str, Any]:
    async with client:
        if method is None:
            return await client.list_methods()
        return await client.call(method, params)


def main(argv: list[str] | None = None) -> int:
    """Entry point of ``miniui-call``."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.list and not args.method:
        parser.error("a method name is required unless --list is given")

    setup_logging(
        level="DEBUG" if args.verbose else "ERROR",
        json_format=False,
        log_to_stdout=False,
    )

    try:
        params = _parse_params(args.params)
    except ValueError as e:
        print(f"Invalid parameters: {e}", file=sys.stderr)
        return 1

    try:
        config = load_config(config_path=args.config, cli_args=[])
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    client = BusClient(
        socket_path=args.socket or config.bus.socket_path,
        timeout=args.timeout or config.bus.request_timeout_seconds,
    )

    try:
        result = asyncio.run(_run(client, None if args.list else args.method, params))
    except BusCallError as e:
        print(f"Command failed: {e.code}: {e.message}", file=sys.stderr)
        return 1
    except BusError as e:
        print(f"Agent unreachable: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
