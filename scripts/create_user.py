#!/usr/bin/env python3
"""Seed a user account for testing and initial setup.

Usage:
    # Using environment variables:
    SEED_EMAIL=user@example.com SEED_PASSWORD='Secure123!' python scripts/create_user.py

    # Or with command line args:
    python scripts/create_user.py --email user@example.com --password 'Secure123!' --requires-2fa

Environment Variables:
    SEED_EMAIL: Email for the user
    SEED_PASSWORD: Password for the user (must meet the password rules)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def create_user(
    email: str, password: str, requires_2fa: bool = False, dry_run: bool = False
) -> dict:
    """Create a user unless one already exists.

    Returns:
        dict with email, requires_2fa and status ('created', 'exists' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from authservice.service.runtime import get_runtime
    from authservice.storage.errors import UserNotFoundError
    from authservice.types import Email, Password

    runtime = get_runtime()
    await runtime.startup()
    try:
        parsed_email = Email.parse(email)
        Password.parse(password)
        try:
            existing = await runtime.users.get_user(parsed_email)
        except UserNotFoundError:
            existing = None

        if existing is not None:
            print(f"User {parsed_email.redacted()} already exists")
            return {
                "email": parsed_email.value,
                "requires_2fa": existing.requires_2fa,
                "status": "exists",
            }

        if dry_run:
            print(f"[DRY RUN] Would create user: {parsed_email.redacted()}")
            return {
                "email": parsed_email.value,
                "requires_2fa": requires_2fa,
                "status": "dry_run",
            }

        user = await runtime.auth.signup(email, password, requires_2fa)
        print(f"Created user: {user.email.redacted()}")
        return {
            "email": user.email.value,
            "requires_2fa": user.requires_2fa,
            "status": "created",
        }
    finally:
        await runtime.shutdown()


def main():
    parser = argparse.ArgumentParser(
        description="Create a user for the auth service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("SEED_EMAIL"),
        help="User email (or set SEED_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("SEED_PASSWORD"),
        help="User password (or set SEED_PASSWORD env var)",
    )
    parser.add_argument(
        "--requires-2fa",
        action="store_true",
        help="Require an emailed 2FA code at login",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or SEED_EMAIL environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or SEED_PASSWORD environment variable required")
        sys.exit(1)

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/authservice-seed"

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    from authservice.service.errors import ServiceError
    from authservice.storage.errors import StoreError
    from authservice.types import MalformedHashError, ValueTypeError

    try:
        result = asyncio.run(
            create_user(args.email, args.password, args.requires_2fa, args.dry_run)
        )
    except ValueTypeError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    except (ServiceError, StoreError) as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    except MalformedHashError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nUser created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  Requires 2FA: {result['requires_2fa']}")
    elif result["status"] == "exists":
        print("\nNo changes needed - user already exists.")


if __name__ == "__main__":
    main()
