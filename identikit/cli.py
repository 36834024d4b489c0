"""Command-line interface for identikit logins and configuration."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from pathlib import Path
from typing import TYPE_CHECKING, Any

from .auth.acquisition import AUTHORIZATION_URL_PATHS


if TYPE_CHECKING:
    from .client import IdentikitClient
    from .config import IdentikitSettings
    from .state.types import AuthResult


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : list of str, optional
        Arguments to parse instead of ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="identikit",
        description="identikit login and configuration tools",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    # login command
    login_parser = subparsers.add_parser(
        "login",
        help="Sign in through a third-party identity provider",
    )
    login_parser.add_argument(
        "provider",
        choices=sorted(AUTHORIZATION_URL_PATHS),
        help="Identity provider to sign in with",
    )
    login_parser.add_argument(
        "--timeout",
        "-t",
        type=float,
        default=None,
        help="Seconds to wait for the login to finish (uses config default)",
    )
    login_parser.add_argument(
        "--relay-port",
        type=int,
        default=None,
        help="Also accept the result on a localhost relay at this port (0 picks one)",
    )

    # newgrounds command
    newgrounds_parser = subparsers.add_parser(
        "newgrounds",
        help="Exchange a Newgrounds session id for a session token",
    )
    newgrounds_parser.add_argument("session_id", help="Newgrounds.io session id")

    subparsers.add_parser("status", help="Show whether a session token is held")
    subparsers.add_parser("whoami", help="Show the signed-in user")
    subparsers.add_parser("logout", help="End the session and clear the token")

    args = parser.parse_args(argv)

    if args.command == "config":
        return handle_config(args)
    if args.command == "login":
        return handle_login(args)
    if args.command == "newgrounds":
        return handle_newgrounds(args)
    if args.command == "status":
        return handle_status(args)
    if args.command == "whoami":
        return handle_whoami(args)
    if args.command == "logout":
        return handle_logout(args)
    parser.print_help()
    return 0


def _build_client(settings: IdentikitSettings | None = None, **kwargs: Any) -> IdentikitClient:
    """Create a client and apply the configured log settings."""
    from .client import IdentikitClient
    from .config import get_settings
    from .log import configure

    settings = settings or get_settings()
    configure(settings.log)
    return IdentikitClient.from_settings(settings, **kwargs)


def _report(result: AuthResult) -> int:
    """Print an authentication result and map it to an exit code."""
    if result.success:
        name = result.user.username or result.user.id or "unknown user"
        print(f"Logged in as {name}")
        return 0
    print(f"Login failed ({result.error_kind}): {result.message}", file=sys.stderr)
    return 1


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import IdentikitSettings

    if args.sources:
        return show_config_sources()

    settings = IdentikitSettings()

    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    from .config import _user_config_dir, config_sources

    found = {path.resolve() for path in config_sources()}
    candidates = [
        ("pyproject.toml [tool.identikit]", Path("pyproject.toml")),
        ("./identikit.toml", Path("identikit.toml")),
        ("User config", _user_config_dir() / "config.toml"),
    ]
    env_file = os.environ.get("IDENTIKIT_CONFIG_FILE")
    if env_file:
        candidates.append(("IDENTIKIT_CONFIG_FILE", Path(env_file)))

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<40} {'Status':<15} {'Path'}")
    print("-" * 80)
    print(f"{'Built-in defaults':<40} {'✓ Active':<15}")

    for name, path in candidates:
        status = "✓ Found" if path.exists() and path.resolve() in found else "✗ Not found"
        print(f"{name:<40} {status:<15} {path}")

    env_vars = [k for k in os.environ if k.startswith("IDENTIKIT_")]
    if env_vars:
        shown = ", ".join(env_vars[:3]) + ("..." if len(env_vars) > 3 else "")
        print(f"{'Environment variables':<40} {f'✓ {len(env_vars)} vars':<15} {shown}")
    else:
        print(f"{'Environment variables':<40} {'✗ No vars':<15}")

    print("\nNote: Later sources override earlier ones.")
    return 0


def handle_login(args: argparse.Namespace) -> int:
    """Handle the login command.

    Opens the provider's authorization page in the system browser and
    waits for completion by polling, and by the localhost relay when
    ``--relay-port`` is given.
    """
    from .auth.host import SystemBrowserHost
    from .auth.relay_server import MessageRelayServer
    from .config import get_settings

    settings = get_settings()
    if args.timeout is not None:
        settings = settings.model_copy(
            update={"auth": settings.auth.model_copy(update={"popup_timeout": args.timeout})}
        )

    relay = MessageRelayServer(port=args.relay_port) if args.relay_port is not None else None

    async def _login() -> AuthResult:
        return_url = relay.base_url if relay is not None else ""
        async with _build_client(
            settings, host=SystemBrowserHost(return_url=return_url), channel=relay
        ) as client:
            return await client.login.login(args.provider)

    if relay is None:
        return _report(asyncio.run(_login()))

    with relay:
        print(f"Waiting for the login result at {relay.message_url}")
        return _report(asyncio.run(_login()))


def handle_newgrounds(args: argparse.Namespace) -> int:
    """Handle the newgrounds command."""

    async def _authenticate() -> AuthResult:
        async with _build_client() as client:
            return await client.login.authenticate_newgrounds(args.session_id)

    return _report(asyncio.run(_authenticate()))


def handle_status(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    """Handle the status command; exit code 1 when signed out."""
    client = _build_client()
    if client.is_logged_in():
        print("Logged in")
        return 0
    print("Not logged in")
    return 1


def handle_whoami(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    """Handle the whoami command."""

    async def _whoami() -> int:
        async with _build_client() as client:
            if not client.is_logged_in():
                print("Not logged in", file=sys.stderr)
                return 1
            response = await client.session.get_current_user()
            if not response.success:
                print(f"Error: {response.message or response.error}", file=sys.stderr)
                return 1
            info = response.data
            print(f"User:      {info.user.username} ({info.user.id})")
            print(f"Platform:  {info.user.platform}")
            print(f"Admin:     {'yes' if info.user.is_admin else 'no'}")
            print(f"Character: {'yes' if info.has_character else 'no'}")
            return 0

    return asyncio.run(_whoami())


def handle_logout(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    """Handle the logout command; the local token is cleared either way."""

    async def _logout() -> int:
        async with _build_client() as client:
            if not client.is_logged_in():
                print("Not logged in")
                return 0
            response = await client.session.logout()
            if not response.success:
                print(f"Server logout failed: {response.message or response.error}", file=sys.stderr)
            print("Logged out")
            return 0

    return asyncio.run(_logout())


if __name__ == "__main__":
    sys.exit(main())
