#!/usr/bin/env python3
"""
Meetup backend -- management commands.

Usage:
  python main.py create-user --email admin@example.com --username admin --password 's3cret-pass' --role admin --activated
  python main.py permissions
  python main.py serve --host 0.0.0.0 --port 8000 --workers 4

Environment variables are read through core.config (SECRET_KEY,
DATABASE_URL, REDIS_URL, ...). See .env.example.
"""

import argparse
import sys

from auth.models import USER_ROLES, User, UserProfile
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.database import create_db_engine
from core.errors import StoreError
from core.log import configure_logging
from core.permissions import PERMISSIONS_BY_CATEGORY


def _create_user(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(create_db_engine(settings.database_url))
    user = User(email=args.email, password_hash=hash_password(args.password), role=args.role)
    try:
        store.create_user(user, UserProfile(username=args.username))
        if args.activated:
            store.activate(user)
    except StoreError as exc:
        print(f"  [!] Could not create user: {exc.reason}", file=sys.stderr)
        return 1
    finally:
        store.close()
    state = "active" if args.activated else "awaiting email verification"
    print(f"  Created {args.role} user {user.id} <{user.email}> ({state}).")
    return 0


def _print_permissions(_args: argparse.Namespace) -> int:
    for category, perms in PERMISSIONS_BY_CATEGORY.items():
        print(f"{category}:")
        for perm in perms:
            print(f"  {perm}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, workers=args.workers, reload=args.reload)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="meetup",
        description="Management commands for the Meetup organization backend.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a user directly in the database")
    create.add_argument("--email", required=True)
    create.add_argument("--username", required=True)
    create.add_argument("--password", required=True)
    create.add_argument("--role", choices=USER_ROLES, default="client")
    create.add_argument(
        "--activated",
        action="store_true",
        help="Mark the email as verified so the user can log in immediately",
    )
    create.set_defaults(func=_create_user)

    perms = sub.add_parser("permissions", help="Print the organization permission catalog")
    perms.set_defaults(func=_print_permissions)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--workers", type=int, default=1)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=_serve)

    args = parser.parse_args(argv)
    if args.command != "permissions":
        configure_logging(get_settings().log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
