#!/usr/bin/env python3
"""
HubAuth -- maintenance commands for the account database.

Usage:
  python main.py purge-sessions
  python main.py create-admin --email admin@example.org --password 's3cret-pass'
  python main.py create-admin --email admin@example.org --password 's3cret-pass' --full-name "Hub Admin"

The server itself runs under uvicorn (uvicorn asgi:app). These commands use
the same DATABASE_URL and SECRET_KEY settings as the server.
"""

import argparse
import logging
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.sessions import SessionRegistry
from auth.store import UserStore, make_engine, normalize_email
from auth.tokens import hash_password
from core.config import get_settings

logger = logging.getLogger("hubauth.cli")

_MIN_PASSWORD = 8
_MAX_PASSWORD_BYTES = 72


def purge_sessions(args: argparse.Namespace) -> int:
    """Delete expired and revoked session rows."""
    settings = get_settings()
    engine = make_engine(settings.database_url)
    try:
        removed = SessionRegistry(engine, ttl_seconds=settings.session_expire_seconds).purge()
    finally:
        engine.dispose()
    logger.info("Purged %d session(s) from the CLI", removed)
    print(f"  Purged {removed} session(s).")
    return 0


def create_admin(args: argparse.Namespace) -> int:
    """Create a verified admin account, or promote an existing one.

    This is the only way to claim ADMIN_EMAIL: self-service signup refuses it.
    """
    if len(args.password) < _MIN_PASSWORD:
        print(f"  [!] Password must be at least {_MIN_PASSWORD} characters.")
        return 1
    if len(args.password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {_MAX_PASSWORD_BYTES} bytes.")
        return 1

    settings = get_settings()
    store = UserStore(make_engine(settings.database_url))
    email = normalize_email(args.email)
    try:
        existing = store.get_by_email(email)
        if existing is not None:
            store.update_user(
                existing.id,
                role="admin",
                email_verified=True,
                hashed_password=hash_password(args.password),
            )
            logger.warning("Account %s promoted to admin from the CLI", existing.id)
            print(f"  Existing account promoted to admin (id={existing.id}, email={email}).")
            return 0
        user_id = store.create_user(
            User(
                email=email,
                role="admin",
                hashed_password=hash_password(args.password),
                full_name=args.full_name,
                email_verified=True,
            )
        )
    except IntegrityError:
        print(f"  [!] An account for '{email}' was created concurrently; run the command again to promote it.")
        return 1
    finally:
        store.close()
    logger.info("Admin account %s created from the CLI", user_id)
    print(f"  Admin account created (id={user_id}, email={email}).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hubauth",
        description="HubAuth account database maintenance.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py purge-sessions
  python main.py create-admin --email admin@example.org --password 's3cret-pass'
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    purge = sub.add_parser("purge-sessions", help="Delete expired and revoked sessions")
    purge.set_defaults(func=purge_sessions)

    admin = sub.add_parser("create-admin", help="Create (or promote) a verified admin account")
    admin.add_argument("--email", required=True, help="Admin email address")
    admin.add_argument("--password", required=True, help="Admin password (min 8 characters)")
    admin.add_argument("--full-name", default=None, help="Display name")
    admin.set_defaults(func=create_admin)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
