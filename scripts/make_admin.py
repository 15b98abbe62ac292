#!/usr/bin/env python3
"""
Promote a registered user to the admin role.

Usage:
    python3 scripts/make_admin.py someone@example.com

    # Demote back to a standard user
    python3 scripts/make_admin.py someone@example.com --revoke
"""

import argparse
import asyncio
import sys

from launch_studio.config import settings
from launch_studio.db.session import Database
from launch_studio.models.api import UserRole
from launch_studio.observability import get_logger, setup_logging
from launch_studio.services.content_store import ContentStore

logger = get_logger(__name__)


async def set_role(email: str, role: UserRole) -> bool:
    """Set the role of the user with this email. Returns False if no such user."""
    database = Database.from_settings(settings)
    try:
        async with database.session() as session:
            store = ContentStore(session)
            user = await store.find_user_by_email(email)
            if user is None:
                logger.error("user_not_found", email=email)
                return False
            await store.update_user_role(user.id, role)
            return True
    finally:
        await database.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Grant or revoke the admin role")
    parser.add_argument("email", help="Email of a registered user")
    parser.add_argument(
        "--revoke",
        action="store_true",
        help="Demote to a standard user instead",
    )
    args = parser.parse_args()

    setup_logging()
    role = UserRole.STANDARD if args.revoke else UserRole.ADMIN
    if not asyncio.run(set_role(args.email, role)):
        print(f"No user registered with {args.email}", file=sys.stderr)
        return 1

    print(f"{args.email} is now {role.value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
