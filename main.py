#!/usr/bin/env python3
"""
School admin backend -- administrative command line.

Usage:
  python main.py seed
  python main.py create-user --email jane@school.org --password secret --role curator
  python main.py create-user --email bob@school.org --password secret --role manager \
      --full-name "Bob Smith" --phone "+1 555 0100"

Both commands read the same settings as the API (DATABASE_URL, SECRET_KEY,
ADMIN_* ...) from the environment or .env file.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import EmailAlreadyRegistered
from auth.models import User
from auth.seed import DEFAULT_ROLES, seed_roles, seed_roles_and_admin
from auth.store import RoleStore, UserStore, open_engine
from auth.tokens import PASSWORD_MAX_BYTES, hash_password
from core.config import get_settings


def _cmd_seed(roles: RoleStore, users: UserStore) -> int:
    """Create default roles and the initial admin if missing."""
    try:
        seed_roles_and_admin(roles, users, get_settings())
    except RuntimeError as e:
        print(f"  [!] {e}")
        return 1
    print("  Roles and admin account are in place.")
    return 0


def _cmd_create_user(
    roles: RoleStore,
    users: UserStore,
    email: str,
    password: Optional[str],
    role_name: str,
    full_name: str,
    phone: str,
) -> int:
    seed_roles(roles)
    role = roles.get_by_name(role_name)
    if role is None:
        print(f"  [!] Unknown role '{role_name}'.")
        return 1

    if not password:
        password = getpass.getpass("  Password: ")
    if not password:
        print("  [!] A password is required.")
        return 1
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        print(f"  [!] Password must be at most {PASSWORD_MAX_BYTES} bytes.")
        return 1

    try:
        user_id = users.create_user(
            User(
                full_name=full_name,
                email=email,
                password_hash=hash_password(password),
                telephone=phone,
                role_id=role.id,
            )
        )
    except EmailAlreadyRegistered:
        print(f"  [!] A user with email '{email}' already exists.")
        return 1

    print(f"  Created user {user_id} ({role.name}).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="schooladmin",
        description="Administrative tasks for the school admin backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-user --email jane@school.org --role curator
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("seed", help="Create default roles and the initial admin account")

    create = sub.add_parser("create-user", help="Create a user with the given role")
    create.add_argument("--email", required=True, help="Login email (stored lower-cased)")
    create.add_argument(
        "--password",
        default=None,
        help="Initial password. Prompted for when omitted.",
    )
    create.add_argument(
        "--role",
        default="curator",
        choices=sorted(DEFAULT_ROLES),
        help="Role name (default: curator)",
    )
    create.add_argument("--full-name", default="", help="Display name")
    create.add_argument("--phone", default="", help="Telephone number")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    engine = open_engine(get_settings().database_url)
    roles, users = RoleStore(engine), UserStore(engine)
    try:
        if args.command == "seed":
            return _cmd_seed(roles, users)
        return _cmd_create_user(
            roles,
            users,
            email=args.email,
            password=args.password,
            role_name=args.role,
            full_name=args.full_name,
            phone=args.phone,
        )
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
