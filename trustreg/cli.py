#!/usr/bin/env python3
"""
Trusted Issuers Registry CLI

Command-line administration of a registry persisted as a snapshot file.
Every invocation loads the snapshot, applies one operation as ``--caller``
and, for mutations, writes the snapshot back atomically.

Usage:
    trustreg [--registry PATH] [--caller PRINCIPAL] <command> [options]

Commands:
    init                Create an empty registry file owned by --owner
    add                 Register an issuer for claim topics
    remove              Remove an issuer
    update              Replace an issuer's claim topics
    list                List trusted issuers in registration order
    check               Is an issuer trusted (optionally for a topic)
    topics              Claim topics of an issuer
    issuers-for-topic   Issuers trusted for a claim topic
    transfer-ownership  Hand ownership to another principal
    digest              SHA-256 of the canonical snapshot
    keygen              Generate an Ed25519 did:key and its private JWK
    config              Configuration management

Exit codes:
    0 success, 1 unexpected error, 2 invalid argument, 3 unauthorized,
    4 not found, 5 already exists
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

from trustreg import __version__
from trustreg.config import ConfigError, get_config, get_config_manager
from trustreg.hardening import (
    AlreadyExists,
    InvalidArgument,
    NotFound,
    RegistryError,
    Unauthorized,
)
from trustreg.observability import configure_logging, generate_correlation_id, set_correlation_id


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


EXIT_CODES: Dict[Type[RegistryError], int] = {
    InvalidArgument: 2,
    Unauthorized: 3,
    NotFound: 4,
    AlreadyExists: 5,
}


def exit_code_for(error: Exception) -> int:
    """Process exit code for an exception raised by a command."""
    if isinstance(error, CLIError):
        return error.exit_code
    for error_type, code in EXIT_CODES.items():
        if isinstance(error, error_type):
            return code
    return 1


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return _format_text(data)


def _cell(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[_cell(row.get(h, ""))[:66] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {_cell(v)}" for k, v in data.items())
    return _format_text(data)


def _format_text(data: Any) -> str:
    if isinstance(data, list):
        return "\n".join(_cell(item.get("issuer", item)) if isinstance(item, dict) else _cell(item)
                         for item in data)
    if isinstance(data, dict):
        return "\n".join(f"{k}={_cell(v)}" for k, v in data.items())
    return str(data)


class TrustRegCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="trustreg",
            description="Trusted issuers registry administration",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"trustreg {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--registry", "-r",
            help="Snapshot file (.json, .yaml, .yml); defaults to storage.snapshot_path",
        )
        self.parser.add_argument(
            "--caller", "-c",
            help="Principal performing the operation",
        )
        self.parser.add_argument(
            "--config",
            help="YAML configuration file",
        )
        self.parser.add_argument(
            "--verbose", "-v",
            action="store_true",
            help="Emit logs at the configured observability.log_level",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all commands."""
        self._register_registry_commands()
        self._register_config_commands()

        self.subparsers.add_parser("keygen", help="Generate an Ed25519 did:key and private JWK")

    def _register_registry_commands(self) -> None:
        """Register registry commands."""
        init = self.subparsers.add_parser("init", help="Create an empty registry")
        init.add_argument("--owner", "-o", required=True, help="Owner principal")
        init.add_argument("--force", action="store_true", help="Overwrite an existing file")

        add = self.subparsers.add_parser("add", help="Add a trusted issuer")
        add.add_argument("issuer", help="Issuer reference")
        add.add_argument("topics", type=int, nargs="+", metavar="TOPIC", help="Claim topics")

        remove = self.subparsers.add_parser("remove", help="Remove a trusted issuer")
        remove.add_argument("issuer", help="Issuer reference")

        update = self.subparsers.add_parser("update", help="Replace an issuer's claim topics")
        update.add_argument("issuer", help="Issuer reference")
        update.add_argument("topics", type=int, nargs="+", metavar="TOPIC", help="Claim topics")

        self.subparsers.add_parser("list", help="List trusted issuers")

        check = self.subparsers.add_parser("check", help="Check whether an issuer is trusted")
        check.add_argument("issuer", help="Issuer reference")
        check.add_argument("--topic", "-t", type=int, help="Claim topic")

        topics = self.subparsers.add_parser("topics", help="Claim topics of an issuer")
        topics.add_argument("issuer", help="Issuer reference")

        for_topic = self.subparsers.add_parser("issuers-for-topic", help="Issuers trusted for a topic")
        for_topic.add_argument("topic", type=int, help="Claim topic")

        transfer = self.subparsers.add_parser("transfer-ownership", help="Transfer registry ownership")
        transfer.add_argument("new_owner", help="New owner principal")

        self.subparsers.add_parser("digest", help="Snapshot digest")

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")
        config.set_defaults(subcommand="show")

        # config show
        config_sub.add_parser("show", help="Show all configuration")

        # config validate
        config_sub.add_parser("validate", help="Validate configuration")

        # config schema
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._configure(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except (CLIError, RegistryError, ConfigError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return exit_code_for(e)

        except Exception as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _configure(self, args: argparse.Namespace) -> None:
        mgr = get_config_manager()
        if args.config:
            mgr.load_from_file(args.config)
        else:
            mgr.load_defaults()

        obs = mgr.config.observability
        level = obs.log_level.get() if args.verbose else "warning"
        configure_logging(level=level, fmt=obs.log_format.get())
        set_correlation_id(generate_correlation_id())

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}")

        return handler(args)

    # Registry access
    def _registry_path(self, args: argparse.Namespace) -> Path:
        return Path(args.registry or get_config().storage.snapshot_path.get())

    def _load(self, args: argparse.Namespace):
        from trustreg.persistence import load_registry
        return load_registry(self._registry_path(args))

    def _save(self, args: argparse.Namespace, registry) -> None:
        from trustreg.persistence import save_snapshot
        save_snapshot(registry, self._registry_path(args))

    # Registry handlers
    def _handle_init(self, args: argparse.Namespace) -> Any:
        from trustreg.registry import IssuerRegistry
        path = self._registry_path(args)
        if path.exists() and not args.force:
            raise CLIError(f"Registry file already exists: {path} (use --force)", exit_code=5)
        registry = IssuerRegistry(args.owner)
        self._save(args, registry)
        return {"path": str(path), "owner": registry.owner, "status": "created"}

    def _handle_add(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        registry.add_trusted_issuer(args.caller, args.issuer, args.topics)
        self._save(args, registry)
        entry = registry.get_entry(args.issuer)
        return {**entry.to_dict(), "status": "added"}

    def _handle_remove(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        registry.remove_trusted_issuer(args.caller, args.issuer)
        self._save(args, registry)
        return {"issuer": args.issuer, "status": "removed"}

    def _handle_update(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        registry.update_issuer_claim_topics(args.caller, args.issuer, args.topics)
        self._save(args, registry)
        entry = registry.get_entry(args.issuer)
        return {**entry.to_dict(), "status": "updated"}

    def _handle_list(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        return [entry.to_dict() for entry in registry]

    def _handle_check(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        result: Dict[str, Any] = {
            "issuer": args.issuer,
            "trusted": registry.is_trusted_issuer(args.issuer),
        }
        if args.topic is not None:
            result["claim_topic"] = args.topic
            result["has_claim_topic"] = registry.has_claim_topic(args.issuer, args.topic)
        return result

    def _handle_topics(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        return {
            "issuer": args.issuer,
            "claim_topics": registry.get_trusted_issuer_claim_topics(args.issuer),
        }

    def _handle_issuers_for_topic(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        return {
            "claim_topic": args.topic,
            "issuers": registry.get_trusted_issuers_for_claim_topic(args.topic),
        }

    def _handle_transfer_ownership(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        previous = registry.owner
        registry.transfer_ownership_on_issuers_registry_contract(args.caller, args.new_owner)
        self._save(args, registry)
        return {"previous_owner": previous, "new_owner": registry.owner, "status": "transferred"}

    def _handle_digest(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        return {"digest": registry.digest(), "owner": registry.owner, "issuers": len(registry)}

    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        from trustreg.identity import generate_ed25519_jwk
        did, jwk = generate_ed25519_jwk()
        return {"did": did, "private_jwk": jwk}

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = TrustRegCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
