"""
GranaStream Session Command-Line Entry Point.

Bootstraps the session stack via ``create_session_core()`` and runs one
session command against the configured API.  Tokens persist in the
configured credential store between invocations, so ``login`` followed
by ``profile`` works across two runs.

Usage::

    python main.py status
    python main.py login --email ana@example.com
    python main.py profile
    python main.py update-profile --name "Ana Souza"
    python main.py logout
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from typing import Optional

from grana.bootstrap import create_session_core
from grana.logger import StructuredLogger, get_logger
from grana.networking.api_error import user_facing_message
from grana.session import SessionCore


def _print_status(session: SessionCore) -> None:
    user = session.current_user
    print(f"State: {session.state.value}")
    if session.expires_at is not None:
        print(f"Access token expires at: {session.expires_at.isoformat()}")
    if user is not None:
        print(f"User: {user.name or '-'} <{user.email or '-'}> (id: {user.id})")


def _print_profile(session: SessionCore) -> None:
    profile = session.profile
    if profile is None:
        return
    print(f"Name:   {profile.name or '-'}")
    print(f"E-mail: {profile.email or '-'}")
    print(f"Status: {profile.status.label}")


def _password(value: Optional[str], prompt: str = "Password: ") -> str:
    return value if value else getpass.getpass(prompt)


async def run_command(args: argparse.Namespace, logger: StructuredLogger) -> int:
    """Execute one CLI command; returns the process exit code."""
    container = create_session_core()
    session = container["session"]
    api = container["api"]

    try:
        if args.command == "status":
            if session.pending_refresh is not None:
                await session.refresh_tokens_if_needed()
            _print_status(session)

        elif args.command == "login":
            await session.login(args.email, _password(args.password))
            print("Signed in.")
            _print_status(session)

        elif args.command == "signup":
            await session.signup(args.name, args.email, _password(args.password))
            print("Account created and signed in.")
            _print_status(session)

        elif args.command == "logout":
            await session.logout()
            print("Signed out.")

        elif args.command == "refresh":
            if not await session.refresh_tokens():
                print("No session to refresh. Please sign in again.")
                return 1
            print("Tokens refreshed.")
            _print_status(session)

        elif args.command == "profile":
            await session.load_profile()
            _print_profile(session)

        elif args.command == "update-profile":
            await session.update_profile(args.name, args.email)
            _print_profile(session)

        elif args.command == "change-password":
            await session.change_password(
                _password(args.current, "Current password: "),
                _password(args.new, "New password: "),
            )
            print("Password changed.")

    except Exception as exc:
        message = user_facing_message(exc)
        logger.error("Command %s failed: %s", args.command, type(exc).__name__)
        if message:
            print(f"Error: {message}", file=sys.stderr)
        return 1
    finally:
        await session.aclose()
        await api.aclose()

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="GranaStream session client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Show the current session state")

    login = commands.add_parser("login", help="Sign in with e-mail and password")
    login.add_argument("--email", required=True)
    login.add_argument("--password", help="Prompted for when omitted")

    signup = commands.add_parser("signup", help="Create an account and sign in")
    signup.add_argument("--name", required=True)
    signup.add_argument("--email", required=True)
    signup.add_argument("--password", help="Prompted for when omitted")

    commands.add_parser("logout", help="Sign out and forget stored tokens")
    commands.add_parser("refresh", help="Force a token refresh")
    commands.add_parser("profile", help="Fetch and show the user profile")

    update = commands.add_parser("update-profile", help="Change name and e-mail")
    update.add_argument("--name", required=True)
    update.add_argument("--email")

    change = commands.add_parser("change-password", help="Change the account password")
    change.add_argument("--current", help="Prompted for when omitted")
    change.add_argument("--new", help="Prompted for when omitted")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Application entry point: parse arguments and run one command."""
    args = build_parser().parse_args(argv)
    logger = get_logger("main")
    sys.exit(asyncio.run(run_command(args, logger)))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)
