#!/usr/bin/env python3
"""Promote an existing account to admin.

New Google logins are provisioned with DEFAULT_USER_ROLE (``temporary`` unless
configured). Run this once after the first operator has signed in.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=owner@example.com python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email owner@example.com --dry-run

Environment Variables:
    ADMIN_EMAIL: Email of the account to promote
    DATABASE_URL: PostgreSQL connection string (or pass --database-url)
"""
from __future__ import annotations

import argparse
import os
import sys
from typing import Optional

from dotenv import dotenv_values

from sugarrush.config import Settings
from sugarrush.service.auth import UserDirectory
from sugarrush.storage.models import Role


def bootstrap_admin(store: UserDirectory, email: str, dry_run: bool = False) -> dict:
    """Promote the account registered under ``email`` to admin.

    Returns:
        dict with user_id, email, and status
        ('promoted', 'already_admin', 'dry_run' or 'not_found')
    """
    existing_user = store.get_user_by_email(email)
    if existing_user is None:
        print(f"No account found for {email}; sign in with Google first")
        return {"user_id": None, "email": email, "status": "not_found"}

    if existing_user.role == Role.ADMIN.value:
        print(f"User {email} already exists as admin (id: {existing_user.id})")
        return {"user_id": existing_user.id, "email": email, "status": "already_admin"}

    if dry_run:
        print(f"[DRY RUN] Would promote existing user {email} to admin")
        return {"user_id": existing_user.id, "email": email, "status": "dry_run"}

    store.update_user(existing_user.id, role=Role.ADMIN.value)
    print(f"Promoted existing user {email} to admin (id: {existing_user.id})")
    return {"user_id": existing_user.id, "email": email, "status": "promoted"}


def default_database_url() -> str:
    """DATABASE_URL from the environment, then ``.env``, then the settings default.

    Only the DSN is read, so JWT_SECRET and the other server settings need not
    be present.
    """
    if os.environ.get("DATABASE_URL"):
        return os.environ["DATABASE_URL"]
    from_file = dotenv_values(".env").get("DATABASE_URL")
    if from_file:
        return from_file
    return Settings.model_fields["database_url"].default


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Promote a SugarRush account to admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Account email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="PostgreSQL DSN (defaults to DATABASE_URL)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args(argv)

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        return 1

    from sugarrush.storage.postgres import PostgresStore

    try:
        store = PostgresStore(args.database_url or default_database_url())
        try:
            result = bootstrap_admin(store, args.email, args.dry_run)
        finally:
            store.close()
    except Exception as e:
        print(f"Error: {e}")
        return 1
    return 0 if result["status"] != "not_found" else 1


if __name__ == "__main__":
    sys.exit(main())
