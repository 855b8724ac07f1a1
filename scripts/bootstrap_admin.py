#!/usr/bin/env python3
"""Bootstrap an admin user for initial setup.

Usage:
    # Using environment variables:
    ADMIN_USERNAME=admin ADMIN_PASSWORD='Secure123!' python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --username admin --password 'Secure123!'

Environment Variables:
    ADMIN_USERNAME: Username for the admin user
    ADMIN_PASSWORD: Password for the admin user (must satisfy the password policy)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import secrets
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def bootstrap_admin(username: str, password: str, dry_run: bool = False) -> dict:
    """Create a user with the admin role, or promote an existing one.

    Returns:
        dict with user_id, username, and status ('created', 'promoted',
        'already_admin' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from jwtauth.api.schemas import normalize_username
    from jwtauth.service.errors import ValidationError
    from jwtauth.service.runtime import get_runtime

    # same canonical form the login endpoint looks up
    username = normalize_username(username)
    runtime = get_runtime()
    admin_role = runtime.settings.admin_role

    with runtime.store.session() as uow:
        existing_user = uow.get_user_by_username(username)
        if existing_user is not None:
            if existing_user.role == admin_role:
                print(f"User {username} already exists as admin (id: {existing_user.id})")
                return {"user_id": existing_user.id, "username": username, "status": "already_admin"}
            if dry_run:
                print(f"[DRY RUN] Would promote existing user {username} to admin")
                return {"user_id": existing_user.id, "username": username, "status": "dry_run"}
            existing_user.role = admin_role
            uow.commit()
            print(f"Promoted existing user {username} to admin (id: {existing_user.id})")
            return {"user_id": existing_user.id, "username": username, "status": "promoted"}

    if dry_run:
        check = runtime.policy.validate(password)
        if not check.ok:
            print(f"[DRY RUN] Password rejected: {', '.join(check.violations)}")
        print(f"[DRY RUN] Would create admin user: {username}")
        return {"user_id": None, "username": username, "status": "dry_run"}

    check = runtime.policy.validate(password)
    if not check.ok:
        raise ValidationError(
            runtime.policy.message, detail={"violations": list(check.violations)}
        )
    digest, salt = runtime.hasher.hash(password)
    with runtime.store.session() as uow:
        user = uow.create_user(username, digest, salt, role=admin_role)
        uow.commit()

    print(f"Created admin user: {username} (id: {user.id})")
    return {"user_id": user.id, "username": username, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for jwtauth",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        help="Admin username (or set ADMIN_USERNAME env var)",
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

    if not args.username:
        print("Error: --username or ADMIN_USERNAME environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not os.environ.get("JWT_SECRET"):
        os.environ["JWT_SECRET"] = secrets.token_urlsafe(48)

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = bootstrap_admin(args.username, args.password, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Username: {result['username']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "promoted":
        print("\nExisting user promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - user is already an admin.")


if __name__ == "__main__":
    main()
