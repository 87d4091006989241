"""Command-line interface for the serverless function platform."""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from invok.auth import AuthError, login, logout, register
from invok.functions import FunctionError, list_functions


def _add_credentials(parser: argparse.ArgumentParser, action: str) -> None:
    parser.add_argument(
        "-e", "--email", metavar="EMAIL", required=True,
        help=f"The email to {action} with",
    )
    parser.add_argument(
        "-p", "--password", metavar="PASSWORD", required=True,
        help=f"The password to {action} with",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invok",
        description="Serverless Function Platform CLI - Create and deploy functions to the cloud",
    )
    parser.add_argument("--version", action="version", version="%(prog)s 1.0")
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("list", help="Lists all functions")
    _add_credentials(
        commands.add_parser("login", help="Login to the serverless platform"), "login"
    )
    _add_credentials(commands.add_parser("register", help="Register a new user"), "register")
    commands.add_parser("logout", help="Logout from the serverless platform")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; returns the process exit status."""
    args = build_parser().parse_args(argv)

    if args.command == "list":
        try:
            list_functions()
        except FunctionError as exc:
            print(f"Error getting function: {exc}", file=sys.stderr)
            return 1
        return 0

    if args.command == "login":
        try:
            session = login(args.email, args.password)
        except AuthError as exc:
            print(f"Login failed: {exc}", file=sys.stderr)
            return 1
        print(f"Logged in successfully as {session.email} (User ID: {session.user_uuid})")
        return 0

    if args.command == "register":
        try:
            session = register(args.email, args.password)
        except AuthError as exc:
            print(f"Registration failed: {exc}", file=sys.stderr)
            return 1
        print(
            f"Registered and logged in successfully as {session.email} "
            f"(User ID: {session.user_uuid})"
        )
        return 0

    if args.command == "logout":
        try:
            logout()
        except AuthError as exc:
            print(f"Logout failed: {exc}", file=sys.stderr)
            return 1
        print("Logged out successfully")
        return 0

    print(
        "Please use a valid subcommand. Run with --help for more information.",
        file=sys.stderr,
    )
    return 1


if __name__ == "__main__":
    sys.exit(main())