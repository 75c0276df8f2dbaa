#!/usr/bin/env python3
"""Create or promote an admin account.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=Secret123 ADMIN_NAME="Site Admin" \
        PERSIST_STATE=true python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password Secret123

Roles are a closed set (user, publisher, admin), so this script is the only
repair path needed for an account that must hold the admin role.

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password for a newly created admin (same rules as signup)
    ADMIN_NAME: Display name for a newly created admin
    SHARED_FS_ROOT / PERSIST_STATE: where the user store is snapshotted
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def bootstrap_admin(
    email: str, password: str | None, name: str, dry_run: bool = False
) -> dict:
    """Create or promote an admin user.

    Returns:
        dict with user_id, email, and status
        ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # Imported late so env defaults set in main() are seen by Settings
    from taskgate.config import get_settings
    from taskgate.service.container import Container
    from taskgate.service.validation import normalize_email
    from taskgate.storage.models import Role

    container = Container(get_settings())
    email = normalize_email(email)
    existing_user = container.store.get_user_by_email(email)

    if existing_user:
        if existing_user.role == Role.ADMIN:
            return {"user_id": existing_user.id, "email": email, "status": "already_admin"}
        if dry_run:
            return {"user_id": existing_user.id, "email": email, "status": "dry_run"}
        await container.users.update(existing_user.id, role=Role.ADMIN)
        return {"user_id": existing_user.id, "email": email, "status": "promoted"}

    if not password:
        raise ValueError("--password or ADMIN_PASSWORD is required to create a new admin")
    if dry_run:
        return {"user_id": None, "email": email, "status": "dry_run"}

    user = await container.users.create(name, email, password, Role.ADMIN)
    return {"user_id": user.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for TaskGate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--name",
        default=os.environ.get("ADMIN_NAME", "Administrator"),
        help="Display name for a new admin (or set ADMIN_NAME env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    os.environ.setdefault("PERSIST_STATE", "true")

    try:
        result = asyncio.run(
            bootstrap_admin(args.email, args.password, args.name, args.dry_run)
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    messages = {
        "created": "Admin user created",
        "promoted": "Existing user promoted to admin",
        "already_admin": "No changes needed - user is already an admin",
        "dry_run": "[DRY RUN] No changes made",
    }
    print(f"{messages[result['status']]}: {result['email']} (id: {result['user_id']})")


if __name__ == "__main__":
    main()
