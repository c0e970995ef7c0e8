#!/usr/bin/env python3
"""
Stocks Hunter -- auth administration CLI.

Usage:
  python main.py seed
  python main.py seed --admin-email admin@example.com --admin-password 'S3cure!pass'
  ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='S3cure!pass' python main.py seed

Environment variables:
  DATABASE_URL     SQLAlchemy URL of the auth database (see core/config.py)
  ADMIN_EMAIL      Default for --admin-email
  ADMIN_PASSWORD   Default for --admin-password
  ADMIN_NAME       Default for --admin-name
"""

import argparse
import os
import sys

from api.models import is_strong_password
from auth.schema import create_auth_engine
from auth.seed import seed_auth
from auth.tokens import is_valid_email
from core.config import get_settings


def _seed(args: argparse.Namespace) -> int:
    if bool(args.admin_email) != bool(args.admin_password):
        print("  [!] --admin-email and --admin-password must be given together.")
        return 2
    if args.admin_email and not is_valid_email(args.admin_email):
        print(f"  [!] Admin email is not a valid address: {args.admin_email!r}")
        return 2
    if args.admin_password and not 10 <= len(args.admin_password) <= 128:
        print("  [!] Admin password must be 10 to 128 characters.")
        return 2
    if args.admin_password and not is_strong_password(args.admin_password):
        print("  [!] Admin password must include uppercase, lowercase, number, and special character.")
        return 2

    engine = create_auth_engine(args.database_url or get_settings().database_url)
    try:
        result = seed_auth(
            engine,
            admin_email=args.admin_email,
            admin_password=args.admin_password,
            admin_name=args.admin_name,
        )
    finally:
        engine.dispose()

    print(f"  {result.permission_count} permissions, {result.role_count} roles seeded.")
    if result.admin_user_id is None:
        print("  No admin credentials given -- catalog only.")
    elif result.admin_created:
        print(f"  Admin user created ({result.admin_user_id}).")
    else:
        print(f"  Admin user already existed ({result.admin_user_id}); ADMIN role ensured.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="stocks-hunter",
        description="Stocks Hunter auth administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='S3cure!pass' python main.py seed
        """,
    )
    sub = parser.add_subparsers(dest="command")

    seed = sub.add_parser("seed", help="Install default permissions and roles, and the first admin user")
    seed.add_argument(
        "--admin-email",
        default=os.environ.get("ADMIN_EMAIL") or None,
        metavar="EMAIL",
        help="Admin user email (default: $ADMIN_EMAIL)",
    )
    seed.add_argument(
        "--admin-password",
        default=os.environ.get("ADMIN_PASSWORD") or None,
        metavar="PASSWORD",
        help="Admin user password (default: $ADMIN_PASSWORD)",
    )
    seed.add_argument(
        "--admin-name",
        default=os.environ.get("ADMIN_NAME") or "Admin User",
        metavar="NAME",
        help="Admin display name (default: $ADMIN_NAME or 'Admin User')",
    )
    seed.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="Override DATABASE_URL for this run",
    )

    args = parser.parse_args()
    if args.command == "seed":
        sys.exit(_seed(args))
    parser.print_help()


if __name__ == "__main__":
    main()
