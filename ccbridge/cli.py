#!/usr/bin/env python3
"""
ccbridge CLI

Command-line interface for the cross-ledger asset bridge. Transfers run on
an in-process simulated network built from the known ledger profiles, so
the full burn, submit, deliver and mint cycle can be exercised and
inspected without external infrastructure.

Usage:
    ccbridge <command> [subcommand] [options]

Commands:
    ledgers     List known ledger profiles
    estimate    Quote the transport fee for a transfer
    transfer    Run a simulated end-to-end transfer
    config      Configuration management

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

from ccbridge import __version__
from ccbridge.config import KNOWN_LEDGERS, ConfigError, get_config, get_config_manager
from ccbridge.hardening import BridgeError, ValidationErrors, require_address
from ccbridge.ledger import Account
from ccbridge.network import BridgeNetwork, deploy_bridge
from ccbridge.transport import TransportError


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(json.loads(json.dumps(data, default=str)), default_flow_style=False)
    return _format_text(data)


def _format_text(data: Any, indent: int = 0) -> str:
    pad = "  " * indent
    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, (dict, list)) and value:
                lines.append(f"{pad}{key}:")
                lines.append(_format_text(value, indent + 1))
            else:
                lines.append(f"{pad}{key}: {value}")
        return "\n".join(lines)
    if isinstance(data, list):
        return "\n".join(
            _format_text(item, indent) if isinstance(item, (dict, list)) else f"{pad}- {item}"
            for item in data
        )
    return f"{pad}{data}"


class BridgeCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="ccbridge",
            description="Cross-ledger burn-and-mint asset bridge",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"ccbridge {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Load configuration from a YAML file",
        )
        self.parser.add_argument(
            "--log-level",
            choices=["debug", "info", "warning", "error", "critical"],
            help="Override observability.log_level",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error output",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self.subparsers.add_parser("ledgers", help="List known ledger profiles")
        self._register_estimate_command()
        self._register_transfer_command()
        self._register_config_commands()

    @staticmethod
    def _add_route_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--token-id", "-t", required=True, type=int, help="Asset id")
        parser.add_argument("--from", dest="source", required=True, choices=sorted(KNOWN_LEDGERS),
                            help="Origin ledger")
        parser.add_argument("--to", dest="destination", required=True, choices=sorted(KNOWN_LEDGERS),
                            help="Destination ledger")
        parser.add_argument("--receiver", "-r", help="Receiver address (default: the holder)")
        parser.add_argument("--metadata-uri", "-m", default="ipfs://ccbridge/demo-metadata.json",
                            help="Metadata URI of the issued asset")

    def _register_estimate_command(self) -> None:
        estimate = self.subparsers.add_parser("estimate", help="Quote the transport fee for a transfer")
        self._add_route_arguments(estimate)

    def _register_transfer_command(self) -> None:
        transfer = self.subparsers.add_parser("transfer", help="Run a simulated end-to-end transfer")
        self._add_route_arguments(transfer)
        transfer.add_argument("--prepaid", default="10", help="Fee tokens prefunded on each endpoint")
        transfer.add_argument("--duplicate", action="store_true",
                              help="Deliver the message a second time after it succeeds")
        transfer.add_argument("--drop", action="store_true",
                              help="Lose the message in transit; the transfer is reported stuck")
        transfer.add_argument("--journal", help="Append the transfer to this JSON journal")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., transport.base_fee)")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._apply_global_options(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except BridgeError as e:
            if not parsed.quiet:
                print(f"Error [{e.code}]: {e}", file=sys.stderr)
            return 1

        except (ConfigError, ValidationErrors, TransportError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _apply_global_options(self, args: argparse.Namespace) -> None:
        mgr = get_config_manager()
        if args.config:
            mgr.load_from_file(args.config)
        if args.log_level:
            mgr.set("observability.log_level", args.log_level)

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Ledger handlers
    def _handle_ledgers(self, args: argparse.Namespace) -> Any:
        return [
            {
                "name": p.name,
                "display_name": p.display_name,
                "chain_id": p.chain_id,
                "selector": str(p.selector),
                "fee_multiplier": str(p.fee_multiplier),
            }
            for p in KNOWN_LEDGERS.values()
        ]

    # Transfer handlers
    def _prepare(self, args: argparse.Namespace, prepaid: Any = "0") -> Dict[str, Any]:
        if args.source == args.destination:
            raise CLIError("--from and --to must name different ledgers")
        network = deploy_bridge([args.source, args.destination], prepaid=prepaid)
        holder = Account.generate()
        receiver = require_address(args.receiver, "receiver") if args.receiver else holder.address
        network[args.source].endpoint.issue(
            holder.address, args.token_id, args.metadata_uri, caller=network.admin.address,
        )
        return {"network": network, "holder": holder.address, "receiver": receiver}

    def _handle_estimate(self, args: argparse.Namespace) -> Any:
        ctx = self._prepare(args)
        network: BridgeNetwork = ctx["network"]
        origin = network[args.source]
        fee = origin.endpoint.estimate_transfer_cost(
            network[args.destination].ledger_id, ctx["receiver"], args.token_id,
        )
        return {
            "token_id": str(args.token_id),
            "from": args.source,
            "to": args.destination,
            "receiver": ctx["receiver"],
            "fee": str(fee),
            "fee_token": origin.fee_token.symbol,
        }

    def _handle_transfer(self, args: argparse.Namespace) -> Any:
        ctx = self._prepare(args, prepaid=args.prepaid)
        network: BridgeNetwork = ctx["network"]
        transport = network.transport

        message_id = network.transfer(
            args.source, args.destination, ctx["holder"], ctx["receiver"], args.token_id,
        )
        if args.drop:
            transport.drop(message_id)
            network.tracker.check_stuck(now=datetime.now(timezone.utc) + network.tracker.stuck_after)
        else:
            transport.deliver(message_id)
            if args.duplicate:
                transport.redeliver(message_id)

        if args.journal:
            try:
                network.tracker.save(args.journal, merge=True)
            except (OSError, ValueError) as e:
                raise CLIError(f"Cannot update journal {args.journal}: {e}") from e

        record = network.tracker.get(message_id)
        return {
            "transfer": record.to_dict() if record else {"message_id": message_id},
            "deliveries": [r.to_dict() for r in transport.reports(message_id)],
            "asset_present_on": [network[lid].profile.name for lid in network.locate(args.token_id)],
            "journal": args.journal,
        }

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        mgr = get_config_manager()
        value = mgr.get(args.path)
        if not isinstance(value, (str, int, bool)):
            value = str(value)
        return {"path": args.path, "value": value}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config().to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def main() -> int:
    """CLI entry point."""
    cli = BridgeCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
