#!/usr/bin/env python3
"""
Tokenguard -- administration CLI for the auth core.

Usage:
  python main.py gen-secret
  python main.py create-admin --username admin --email admin@example.com
  python main.py cleanup-tokens
  python main.py cleanup-tokens --retention-days 1

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: sqlite:///tokenguard_auth.db)
  JWT_SECRET     Signing secret. Required outside development environments.
  ENVIRONMENT    "production" by default; dev/local/test enable the development key.
"""

import argparse
import asyncio
import getpass
import logging
import sys
from datetime import timedelta
from typing import Optional

from auth.context import build_auth_context
from auth.keys import KeyProvisioningError, generate_secret
from auth.permissions import ADMIN_ROLE_ID
from core.config import get_settings
from core.errors import ServiceError


def _read_password(provided: Optional[str]) -> Optional[str]:
    """Password from --password, or prompted twice on the terminal."""
    if provided:
        return provided
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


async def _create_admin(username: str, email: str, password: str) -> int:
    auth = build_auth_context(get_settings())
    try:
        user = await auth.service.register(username=username, email=email, password=password)
        await auth.service.assign_role(user.id, ADMIN_ROLE_ID)
    except ServiceError as exc:
        print(f"  [!] {exc.message}")
        for field, problem in sorted(exc.field_errors.items()):
            print(f"      {field}: {problem}")
        return 1
    finally:
        auth.close()
    print(f"  Created admin '{user.username}' ({user.id}).")
    return 0


async def _cleanup_tokens(retention_days: Optional[int]) -> int:
    settings = get_settings()
    days = settings.used_token_retention_days if retention_days is None else retention_days
    auth = build_auth_context(settings)
    try:
        expired, used = await auth.service.cleanup_tokens(timedelta(days=days))
    except ServiceError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        auth.close()
    print(f"  Removed {expired} expired and {used} used token row(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tokenguard",
        description="Administration commands for the Tokenguard auth core.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py gen-secret > jwt_secret.txt
  JWT_SECRET_FILE=jwt_secret.txt python main.py create-admin --username admin --email admin@example.com
  python main.py cleanup-tokens --retention-days 1
        """,
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        metavar="LEVEL",
        help="Logging level for the command (default: WARNING)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    commands.add_parser("gen-secret", help="Print a new random JWT signing secret")

    create_admin = commands.add_parser("create-admin", help="Register a user and grant the ADMIN role")
    create_admin.add_argument("--username", required=True, help="Login name (3-30 chars: letters, digits or _)")
    create_admin.add_argument("--email", required=True, help="Email address")
    create_admin.add_argument(
        "--password",
        default=None,
        help="Password. Prompted for when omitted, which keeps it out of shell history.",
    )

    cleanup = commands.add_parser("cleanup-tokens", help="Delete expired and old used token ledger rows")
    cleanup.add_argument(
        "--retention-days",
        type=int,
        default=None,
        metavar="DAYS",
        help="Keep used tokens this many days (default: USED_TOKEN_RETENTION_DAYS)",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "gen-secret":
        print(generate_secret())
        return 0

    try:
        if args.command == "create-admin":
            password = _read_password(args.password)
            if password is None:
                return 1
            return asyncio.run(_create_admin(args.username, args.email, password))

        if args.retention_days is not None and args.retention_days < 0:
            print("  [!] --retention-days must not be negative.")
            return 2
        return asyncio.run(_cleanup_tokens(args.retention_days))
    except KeyProvisioningError as exc:
        print(f"  [!] {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
