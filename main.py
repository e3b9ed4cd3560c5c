#!/usr/bin/env python3
"""
Kamnet Marketplace API -- command-line entry point.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --reload
  python main.py create-admin --name "Site Admin" --email admin@example.com

Admins cannot self-register over HTTP; create-admin is the only way to mint
one. The password is prompted for (never passed on the command line) unless
ADMIN_PASSWORD is set (environment or .env).

Configuration comes from the environment / .env file, see core/config.py.
"""

import argparse
import getpass
import sys

from auth.errors import AuthError
from auth.google import GoogleIdentityVerifier
from auth.revocation import InMemoryRevocationRegistry
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from mail.dispatcher import build_mailer


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _read_password(settings: Settings) -> str:
    password = settings.admin_password
    if password:
        return password
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return ""
    return password


def _create_admin(args: argparse.Namespace) -> int:
    settings = get_settings()
    password = _read_password(settings)
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1

    store = AccountStore(db_url=settings.database_url)
    try:
        service = AuthService.from_settings(
            settings,
            store=store,
            codec=TokenCodec.from_settings(settings, InMemoryRevocationRegistry()),
            identity_verifier=GoogleIdentityVerifier(settings.google_client_id),
            notifier=build_mailer(settings),
        )
        try:
            account = service.create_admin(args.name, args.email, password)
        except AuthError as e:
            print(f"  [!] {e.message}")
            return 1
    finally:
        store.close()

    print(f"  Admin account created: {account.email} (id {account.id})")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="localmarket",
        description="Kamnet local-services marketplace API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-admin --name "Site Admin" --email admin@example.com
  ADMIN_PASSWORD=... python main.py create-admin --name Ops --email ops@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    admin = sub.add_parser("create-admin", help="Create an admin account")
    admin.add_argument("--name", required=True, help="Display name")
    admin.add_argument("--email", required=True, help="Login email")
    admin.set_defaults(func=_create_admin)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
