"""
Create or update a super admin.

    python seed_admin.py --email ops@aotf.in --password '...' --name 'Ops'

Flags fall back to ADMIN_EMAIL / ADMIN_PASSWORD / ADMIN_NAME.
"""

import argparse
import logging
import os
import sys

from database import db as default_db, utcnow
from permissions import role_permissions
from sessions import hash_password

logger = logging.getLogger(__name__)


def seed_admin(db, email: str, password: str, name: str) -> str:
    """Upsert a super_admin by email. Returns "created" or "updated"."""
    email = email.strip().lower()
    now = utcnow()
    result = db["admin"].update_one(
        {"email": email},
        {
            "$set": {
                "password": hash_password(password),
                "name": name,
                "role": "super_admin",
                "permissions": role_permissions("super_admin"),
                "isActive": True,
                "updatedAt": now,
            },
            "$setOnInsert": {"email": email, "createdAt": now, "lastLogin": None},
        },
        upsert=True,
    )
    return "created" if result.upserted_id is not None else "updated"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create or update a super admin")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"))
    parser.add_argument("--name", default=os.getenv("ADMIN_NAME", "Super Admin"))
    args = parser.parse_args(argv)

    if not args.email or not args.password:
        parser.error("email and password are required (flags or ADMIN_EMAIL / ADMIN_PASSWORD)")
    if len(args.password) < 8:
        parser.error("password must be at least 8 characters")
    if default_db is None:
        logger.error("DATABASE_URL / DATABASE_NAME not set")
        return 1

    outcome = seed_admin(default_db, args.email, args.password, args.name)
    logger.info("Super admin %s %s", args.email.strip().lower(), outcome)
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    sys.exit(main())
