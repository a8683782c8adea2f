#!/usr/bin/env python3
"""Create or promote the first admin account.

Admin is never self-assignable through the public registration route, so
deployments seed one with this script.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='Secure@Pass123' python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password 'Secure@Pass123' --name "Site Admin"

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password for the admin user (same rules as registration)
    DATABASE_URL: PostgreSQL connection string (uses the memory store if not set)
    JWT_SECRET / JWT_REFRESH_SECRET: signing secrets (generated if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import secrets
import sys
from pathlib import Path

from pydantic import ValidationError

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_admin_input(email: str, password: str, name: str) -> tuple[str, str]:
    """Apply the registration rules; returns ``(normalized_email, name)``."""
    from devhub.api.schemas import RegisterRequest

    body = RegisterRequest(
        name=name,
        email=email,
        password=password,
        password_confirmation=password,
    )
    return body.email, body.name


async def bootstrap_admin(
    email: str, password: str, name: str = "Administrator", dry_run: bool = False
) -> dict:
    """Create an admin user, or promote an existing account with this email.

    Returns:
        dict with user_id, email and status ('created', 'promoted',
        'already_admin' or 'dry_run')
    """
    from devhub.service.runtime import get_runtime
    from devhub.storage.models import Role

    runtime = get_runtime()
    existing_user = runtime.store.get_user_by_email(email)

    if existing_user:
        if existing_user.role == Role.ADMIN.value:
            print(f"User {email} already exists as admin (id: {existing_user.id})")
            return {"user_id": existing_user.id, "email": email, "status": "already_admin"}
        if dry_run:
            print(f"[DRY RUN] Would promote existing user {email} to admin")
            return {"user_id": existing_user.id, "email": email, "status": "dry_run"}
        runtime.store.update_user_role(existing_user.id, Role.ADMIN.value)
        print(f"Promoted existing user {email} to admin (id: {existing_user.id})")
        return {"user_id": existing_user.id, "email": email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin user: {email}")
        return {"user_id": None, "email": email, "status": "dry_run"}

    user = await runtime.sessions.register(email=email, password=password, name=name)
    runtime.store.update_user_role(user.id, Role.ADMIN.value)
    print(f"Created admin user: {email} (id: {user.id})")
    return {"user_id": user.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for DevHub",
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
    parser.add_argument("--name", default="Administrator", help="Display name")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)
    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    try:
        email, name = validate_admin_input(args.email, args.password, args.name)
    except ValidationError as exc:
        print("Error: invalid admin details")
        for err in exc.errors():
            print(f"  - {err['msg']}")
        sys.exit(1)

    # The issuer refuses to start without two distinct secrets.
    os.environ.setdefault("JWT_SECRET", secrets.token_urlsafe(48))
    os.environ.setdefault("JWT_REFRESH_SECRET", secrets.token_urlsafe(48))

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(bootstrap_admin(email, args.password, name, args.dry_run))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "promoted":
        print("\nExisting user promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - user is already an admin.")


if __name__ == "__main__":
    main()
