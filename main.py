#!/usr/bin/env python3
"""
CourseHub Auth -- operator maintenance commands.

Usage:
  python main.py create-admin --email admin@example.com --name "Site Admin"
  python main.py purge-sessions

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. Same value the API server uses.
  DATABASE_URL   Optional. Defaults to the SQLite file beside auth/.

Expired session rows are never swept in the background; they are removed for
one user at that user's next login, or for everyone by `purge-sessions`
(suitable for a daily cron job).
"""

import argparse
import getpass
from typing import Optional

from auth.errors import AuthError
from auth.roles import Role
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings


def _open_service() -> AuthService:
    settings = get_settings()
    return AuthService(UserStore(settings.database_url, pool_size=settings.db_pool_size))


def _read_password() -> Optional[str]:
    """Prompt twice for a password. Returns None if the entries differ."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    if len(first) < 6:
        print("  [!] Password must be at least 6 characters long.")
        return None
    return first


def create_admin(service: AuthService, email: str, name: str) -> int:
    password = _read_password()
    if password is None:
        return 1
    try:
        profile = service.create_account(name, email, password, Role.admin, verified=True)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    print(f"  Admin account created: {profile.email} (id={profile.id})")
    return 0


def purge_sessions(service: AuthService) -> int:
    removed = service.purge_expired_sessions()
    print(f"  Removed {removed} expired session(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="coursehub-auth",
        description="Maintenance commands for the CourseHub auth database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com --name "Site Admin"
  python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = sub.add_parser("create-admin", help="Create an administrator account (prompts for a password)")
    admin.add_argument("--email", required=True, help="Login email for the new admin")
    admin.add_argument("--name", required=True, help="Display name for the new admin")

    sub.add_parser("purge-sessions", help="Delete every expired session row")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    service = _open_service()
    try:
        if args.command == "create-admin":
            return create_admin(service, args.email, args.name)
        return purge_sessions(service)
    finally:
        service.store.close()


if __name__ == "__main__":
    raise SystemExit(main())
