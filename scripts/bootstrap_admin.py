#!/usr/bin/env python3
"""Create or promote the TalentHub admin account.

Usage:
    python scripts/bootstrap_admin.py --password 'Admin123!'
    ADMIN_EMAIL=ops@talenthub.com ADMIN_PASSWORD=... python scripts/bootstrap_admin.py

Environment Variables:
    ADMIN_EMAIL: Email for the admin user (default admin@talenthub.com)
    ADMIN_NAME: Display name (default "Admin User")
    ADMIN_PASSWORD: Password for the admin user
    USE_MEMORY_STORE / DATABASE_URL: select the store exactly as the API does
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys

from talenthub.storage.errors import ConstraintViolation
from talenthub.storage.models import UserRole


async def bootstrap_admin(email: str, name: str, password: str, dry_run: bool = False) -> dict:
    """Create an ADMIN with two-factor disabled, or promote an existing account.

    Returns:
        dict with user_id, email, and status ('created', 'promoted' or 'dry_run')
    """
    # Imported late so the CLI can set env vars before settings load
    from talenthub.service.runtime import get_runtime

    runtime = get_runtime()
    store = runtime.store
    existing = store.get_user_by_email(email)

    if dry_run:
        action = "promote" if existing else "create"
        print(f"[DRY RUN] Would {action} admin user: {email}")
        return {"user_id": existing.id if existing else None, "email": email, "status": "dry_run"}

    password_hash = await runtime.auth.hash_password(password)

    if existing:
        store.update_flags(existing.id, role=UserRole.ADMIN.value, two_factor_enabled=False)
        store.update_password(existing.id, password_hash)
        print(f"Promoted existing user {email} to admin (id: {existing.id})")
        return {"user_id": existing.id, "email": email, "status": "promoted"}

    try:
        user = store.create_user(email, name, password_hash, role=UserRole.ADMIN.value)
    except ConstraintViolation as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)
    print(f"Created admin user: {email} (id: {user.id})")
    return {"user_id": user.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap the TalentHub admin user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL", "admin@talenthub.com"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--name",
        default=os.environ.get("ADMIN_NAME", "Admin User"),
        help="Admin display name (or set ADMIN_NAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.password and not args.dry_run:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    result = asyncio.run(bootstrap_admin(args.email, args.name, args.password or "", args.dry_run))
    print(f"Result: {result['status']}")


if __name__ == "__main__":
    main()
