#!/usr/bin/env python3
"""Create or refresh the default ``user`` and ``admin`` accounts.

Usage:
    DATABASE_URL=postgresql://... JWT_SECRET=... python scripts/seed_users.py

    # Preview without writing:
    python scripts/seed_users.py --dry-run

Environment Variables:
    DATABASE_URL: PostgreSQL connection string (required unless --memory)
    SEED_USER_PASSWORD: Password for the ``user`` account (default: userPassword)
    SEED_ADMIN_PASSWORD: Password for the ``admin`` account (default: adminPassword)
    PASSWORD_HASH_COST: argon2 time cost used for the seeded hashes
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Dict, List, Tuple

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from reelscore.service.passwords import PasswordHasher  # noqa: E402
from reelscore.storage.common import UserDirectory  # noqa: E402
from reelscore.storage.models import Role  # noqa: E402

DEFAULT_ACCOUNTS: List[Tuple[str, str, str, Role]] = [
    ("user", "user@example.com", "userPassword", Role.USER),
    ("admin", "admin@example.com", "adminPassword", Role.ADMIN),
]


async def seed_accounts(
    users: UserDirectory,
    hasher: PasswordHasher,
    accounts: List[Tuple[str, str, str, Role]],
    *,
    dry_run: bool = False,
) -> List[Dict[str, str]]:
    """Upsert each account by username; existing accounts only get a new password."""
    results: List[Dict[str, str]] = []
    for username, email, password, role in accounts:
        existing = await users.find_by_username(username)
        if dry_run:
            status = "would_update" if existing else "would_create"
            results.append({"username": username, "status": status})
            continue
        password_hash = await hasher.hash(password)
        if existing:
            user = await users.update_fields(username, {"password_hash": password_hash})
            status = "updated"
        else:
            user = await users.create(username, email, password_hash, role=role)
            status = "created"
        # Seeded accounts are confirmed so the unverified-account sweep keeps them.
        user = await users.set_verified(user.id)
        results.append({"username": username, "user_id": user.id, "status": status})
    return results


async def _run(args: argparse.Namespace) -> List[Dict[str, str]]:
    from reelscore.config import get_settings
    from reelscore.storage.memory import MemoryStore
    from reelscore.storage.postgres import PostgresStore

    settings = get_settings()
    accounts = [
        (
            username,
            email,
            os.environ.get(f"SEED_{username.upper()}_PASSWORD", password),
            role,
        )
        for username, email, password, role in DEFAULT_ACCOUNTS
    ]
    hasher = PasswordHasher(settings.password_hash_cost)
    if args.memory:
        store = MemoryStore()
        return await seed_accounts(store.users, hasher, accounts, dry_run=args.dry_run)
    store = PostgresStore(settings.database_url)
    await store.open()
    try:
        return await seed_accounts(store.users, hasher, accounts, dry_run=args.dry_run)
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(
        description="Seed default accounts for The Reel Score",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Seed a throwaway in-memory store (smoke test only)",
    )
    args = parser.parse_args()

    if not args.memory and not os.environ.get("DATABASE_URL"):
        print("Error: DATABASE_URL environment variable required (or pass --memory)")
        sys.exit(1)

    try:
        results = asyncio.run(_run(args))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    for result in results:
        suffix = f" (id: {result['user_id']})" if result.get("user_id") else ""
        print(f"{result['username']}: {result['status']}{suffix}")


if __name__ == "__main__":
    main()
