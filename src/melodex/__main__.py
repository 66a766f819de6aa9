"""melodex entry point.

Examples:
  melodex login spotify              Sign in through the browser
  melodex status                     Show stored logins and expiry
  melodex refresh osu                Refresh an expired access token
  melodex logout spotify             Forget the stored login
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from melodex import __version__
from melodex.auth.credential_store import CredentialStore
from melodex.auth.errors import AuthEngineError, ConfigError
from melodex.auth.models import AuthState, AuthStatus, utc_now
from melodex.auth.providers import PROVIDERS
from melodex.auth.refresh import TokenRefreshGate
from melodex.auth.state_machine import AuthorizationStateMachine
from melodex.config import load_client_configs
from melodex.logging_setup import setup_logging

logger = logging.getLogger(__name__)
console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="melodex",
        description="Spotify and osu! sign-in for melodex",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
    )
    parser.add_argument("--version", action="version", version=f"melodex {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.json with client credentials (default: ./config.json)",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Path to the credential file (default: login_info.json in the data directory)",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    sub = parser.add_subparsers(dest="command", required=True)
    platforms = sorted(PROVIDERS)

    login = sub.add_parser("login", help="Authorize a platform in the browser")
    login.add_argument("platform", choices=platforms)
    login.add_argument(
        "--timeout", type=float, default=180.0, help="Seconds to wait for the browser redirect"
    )

    sub.add_parser("status", help="Show stored logins")

    refresh = sub.add_parser("refresh", help="Make sure a platform's access token is valid")
    refresh.add_argument("platform", choices=platforms)

    logout = sub.add_parser("logout", help="Remove a platform's stored login")
    logout.add_argument("platform", choices=platforms)
    return parser


def _print_status(platform: str, status: AuthStatus) -> None:
    if status.state is AuthState.FAILED:
        console.print(f"{platform}: {status}", style="red", markup=False)
    elif status.state is AuthState.COMPLETED:
        console.print(f"{platform}: {status}", style="green", markup=False)
    else:
        console.print(f"{platform}: {status}", markup=False)


async def run_login(args: argparse.Namespace, store: CredentialStore) -> int:
    configs = load_client_configs(args.config)
    engine = AuthorizationStateMachine(
        store,
        configs,
        on_status=_print_status,
        callback_timeout=args.timeout,
    )
    try:
        status = await engine.start(args.platform)
    except asyncio.CancelledError:
        engine.cancel(args.platform)
        raise
    return 0 if status.state is AuthState.COMPLETED else 1


async def run_refresh(args: argparse.Namespace, store: CredentialStore) -> int:
    gate = TokenRefreshGate(store, load_client_configs(args.config))
    record = await gate.ensure_valid(args.platform)
    console.print(
        f"{args.platform}: access token valid until {record.expiry_time:%Y-%m-%d %H:%M:%S} UTC"
    )
    return 0


def run_status(store: CredentialStore) -> int:
    credentials = store.load()
    if not credentials:
        console.print("No stored logins.")
        return 0

    now = utc_now()
    table = Table(title="Stored logins")
    table.add_column("Platform")
    table.add_column("User")
    table.add_column("Expires (UTC)")
    table.add_column("State")
    for platform, record in sorted(credentials.items()):
        state = "[red]expired[/red]" if record.is_expired(now) else "[green]valid[/green]"
        table.add_row(
            platform,
            escape(record.user_name or "-"),
            f"{record.expiry_time:%Y-%m-%d %H:%M:%S}",
            state,
        )
    console.print(table)
    return 0


def run_logout(args: argparse.Namespace, store: CredentialStore) -> int:
    if store.remove(args.platform):
        console.print(f"Logged out of {args.platform}.")
    else:
        console.print(f"Not logged in to {args.platform}.")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(level="DEBUG" if args.debug else "INFO")

    store = CredentialStore(args.store)
    try:
        if args.command == "login":
            return asyncio.run(run_login(args, store))
        if args.command == "refresh":
            return asyncio.run(run_refresh(args, store))
        if args.command == "status":
            return run_status(store)
        if args.command == "logout":
            return run_logout(args, store)
    except ConfigError as e:
        console.print(str(e), style="red", markup=False, highlight=False)
        return 2
    except AuthEngineError as e:
        console.print(str(e), style="red", markup=False, highlight=False)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    return 2


if __name__ == "__main__":
    sys.exit(main())
