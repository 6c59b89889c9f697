#!/usr/bin/env python3
"""
EQLEDGER CLI

Command-line access to the ledger's derivation helpers, its storage
layouts, a local simulation of a deployed token, and configuration.

Usage:
    eqledger <command> [subcommand] [options]

Commands:
    slot        Compute a namespaced storage slot
    role        Compute a role identifier
    derive-id   Derive a token id from a share composition
    layout      Show the storage layout of a logic module
    simulate    Deploy a token locally and run a sample scenario
    config      Configuration management
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

from eqledger import __version__
from eqledger.config import ConfigError, get_config_manager
from eqledger.events import Event, get_event_bus
from eqledger.hardening import LedgerRevert
from eqledger.observability import LedgerLayer, get_logger, timed_operation

logger = get_logger("cli", LedgerLayer.CLI)


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
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
        return yaml.dump(data, default_flow_style=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return str(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:66] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        lines.append(header_line)
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _render_event(event: Event) -> Dict[str, Any]:
    args = [hex(a) if isinstance(a, int) and not isinstance(a, bool) and a >= 1 << 64 else a
            for a in event.args]
    return {"event": event.event_type, "args": args}


class LedgerCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="eqledger",
            description="EQLEDGER upgradeable multi-token ledger CLI",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"eqledger {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file to load on top of the default locations",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error text and log records below error level",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        slot = self.subparsers.add_parser("slot", help="Compute a namespaced storage slot")
        slot.add_argument("namespace", help="Namespace, e.g. luna.storage.ERC1155")
        slot.add_argument(
            "--erc1967",
            action="store_true",
            help="Use the ERC-1967 form keccak256(label) - 1",
        )

        role = self.subparsers.add_parser("role", help="Compute a role identifier")
        role.add_argument("name", help="Role name, e.g. MINTER_ROLE")

        derive = self.subparsers.add_parser("derive-id", help="Derive a token id")
        derive.add_argument("--percents", "-p", type=int, nargs="*", default=[], help="Share percentages")
        derive.add_argument("--share-ids", "-s", type=int, nargs="*", default=[], help="Share ids")
        derive.add_argument("--originator", "-o", required=True, help="Originator address")

        layout = self.subparsers.add_parser("layout", help="Show storage layouts")
        layout.add_argument("--module", "-m", choices=["v1", "v2"], default="v1", help="Logic module")

        simulate = self.subparsers.add_parser("simulate", help="Run the sample token scenario")
        simulate.add_argument("--uri", help="Metadata URI template (default: ledger.default_uri)")

        self._register_config_commands()

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., ledger.max_batch_size)")

        set_cmd = config_sub.add_parser("set", help="Set configuration value")
        set_cmd.add_argument("path", help="Config path")
        set_cmd.add_argument("value", help="Value to set")

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
            mgr = get_config_manager()
            mgr.load_defaults()
            if parsed.config:
                mgr.load_from_file(parsed.config)
            if parsed.quiet:
                mgr.set("observability.log_level", "error")

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (ConfigError, LedgerRevert) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}")

        return handler(args)

    # Derivation handlers
    def _handle_slot(self, args: argparse.Namespace) -> Any:
        from eqledger.slots import compute_slot, erc1967_slot

        slot = erc1967_slot(args.namespace) if args.erc1967 else compute_slot(args.namespace)
        return {
            "namespace": args.namespace,
            "scheme": "erc1967" if args.erc1967 else "erc7201",
            "slot": slot.to_hex(),
        }

    def _handle_role(self, args: argparse.Namespace) -> Any:
        from eqledger.roles import ADMIN_ROLE, role_id

        role = ADMIN_ROLE if args.name == "DEFAULT_ADMIN_ROLE" else role_id(args.name)
        return {"name": args.name, "role": role.to_hex()}

    def _handle_derive_id(self, args: argparse.Namespace) -> Any:
        from eqledger.identity import derive_id

        token_id = derive_id(args.percents, args.share_ids, args.originator)
        return {
            "percents": args.percents,
            "share_ids": args.share_ids,
            "originator": args.originator.lower(),
            "id": hex(token_id),
            "id_decimal": str(token_id),
        }

    def _handle_layout(self, args: argparse.Namespace) -> Any:
        from eqledger.token import EqToken, EqTokenV2

        module = EqTokenV2 if args.module == "v2" else EqToken
        rows = []
        for layout in module.storage_layouts:
            for entry in layout.describe()["fields"]:
                rows.append({"namespace": layout.namespace, **entry})
        return rows

    @timed_operation(logger, "simulate")
    def _handle_simulate(self, args: argparse.Namespace) -> Any:
        from eqledger.hardening import NonexistentToken
        from eqledger.host import CallContext, LogicRegistry, account, deploy_proxy
        from eqledger.token import EqToken, EqTokenV2

        uri = args.uri or get_config_manager().get("ledger.default_uri")
        owner, minter, burner, admin, user, manager = (
            account(label) for label in ("owner", "minter", "burner", "admin", "user1", "manager")
        )
        steps: List[Dict[str, Any]] = []

        def record(receipt: Any) -> Any:
            steps.append({
                "method": receipt.method,
                "caller": receipt.caller,
                "result": receipt.return_value,
                "events": [_render_event(e) for e in receipt.events],
            })
            return receipt.return_value

        registry = LogicRegistry()
        v1 = registry.deploy(EqToken(), owner)
        proxy, receipt = deploy_proxy(
            registry, v1, CallContext(owner), uri, minter, burner, admin, event_bus=get_event_bus(),
        )
        record(receipt)

        token_id = record(proxy.transact(CallContext(manager), "generate_id", [10, 20], [1, 2], manager))
        steps[-1]["result"] = hex(token_id)
        record(proxy.transact(CallContext(minter), "mint", user, token_id, 1000, b""))

        try:
            proxy.transact(CallContext(minter), "mint", user, 99999, 100, b"")
        except NonexistentToken as e:
            steps.append({"method": "mint", "caller": minter, "result": f"reverted: {e.reason}", "events": []})

        record(proxy.transact(CallContext(owner), "get_version"))
        record(proxy.transact(CallContext(admin), "grant_role", proxy.call("default_admin_role"), owner))
        v2 = registry.deploy(EqTokenV2(), owner)
        record(proxy.transact(CallContext(owner), "upgrade_to", v2))
        record(proxy.transact(CallContext(owner), "get_version"))

        steps.append({
            "method": "balance_of",
            "caller": user,
            "result": proxy.call("balance_of", user, token_id),
            "events": [],
        })
        return steps

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_set(self, args: argparse.Namespace) -> Any:
        mgr = get_config_manager()
        mgr.set(args.path, args.value)
        return {"path": args.path, "value": mgr.get(args.path), "status": "updated"}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def main() -> int:
    """CLI entry point."""
    cli = LedgerCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
