"""CLI entry point for supabase-mcp."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from . import __version__
from .config import ENV_DESCRIPTIONS, SERVER_URL_ENV, Settings, get_account_name, load_settings, missing_env_vars
from .errors import SupabaseMcpError


def _configure_logging(level: str) -> None:
    # stdout carries MCP traffic; everything human-readable goes to stderr
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format="[supabase-mcp] %(levelname)s %(name)s: %(message)s",
    )


def _validate_environment_or_exit() -> None:
    missing = missing_env_vars()
    if not missing:
        return
    print(f"Missing required environment variables: {', '.join(missing)}", file=sys.stderr)
    print("Required environment variables:", file=sys.stderr)
    for name, description in ENV_DESCRIPTIONS.items():
        print(f"  - {name}: {description}", file=sys.stderr)
    sys.exit(1)


def _load_settings_or_exit(config_path: Path | None) -> Settings:
    try:
        return load_settings(config_path)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


async def _check(settings: Settings) -> bool:
    from .server import create_registry

    registry = create_registry(settings)
    context = registry.context
    healthy = True

    print(f"Account: {context.account}")
    print("\n1. Supabase CLI...")
    cli_status = await context.runner.check_installed()
    if cli_status.installed:
        print(f"   OK - {cli_status.version}")
    else:
        print(f"   FAILED - {cli_status.error}")
        healthy = False

    print("\n2. Credentials...")
    try:
        refs = await context.credentials.get_project_refs()
        print(f"   OK - {len(refs)} project ref(s)")
        for ref in refs:
            print(f"     - {ref}")
    except SupabaseMcpError as e:
        print(f"   FAILED - {e}")
        healthy = False

    print("\nAll checks passed." if healthy else "\nSome checks failed.")
    return healthy


def _run_serve(settings: Settings) -> None:
    from .server import create_registry, serve

    logger = logging.getLogger("supabase_mcp")
    logger.info(f"Starting MCP server for account: {get_account_name()}")
    logger.info(f"Credentials will be fetched from: {os.environ.get(SERVER_URL_ENV)}")
    registry = create_registry(settings)
    try:
        asyncio.run(serve(registry))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="supabase-mcp", description="MCP server for Supabase CLI operations with cloud-stored credentials"
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Serve tools over MCP stdio (default)")
    subparsers.add_parser("check", help="Check CLI installation and credential access, then exit")

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", dest="config_path", default=None, help="Path to config.yaml")
    parser.add_argument("--log-level", dest="log_level", default=None, help="Override log level (e.g., DEBUG)")

    args = parser.parse_args()

    settings = _load_settings_or_exit(Path(args.config_path) if args.config_path else None)
    if args.log_level:
        settings.log_level = args.log_level.upper()
    _configure_logging(settings.log_level)
    _validate_environment_or_exit()

    if args.command == "check":
        ok = asyncio.run(_check(settings))
        sys.exit(0 if ok else 1)

    _run_serve(settings)


if __name__ == "__main__":
    main()
