"""
Create an admin account, or promote an existing user to admin.

    python -m create_admin --email admin@swapcell.lk --name "Site Admin" --password ...
"""

import argparse
import getpass
import logging
import sys

from auth import hash_password
from database import create_document, db, now
from schemas import Role, User

logger = logging.getLogger(__name__)


def create_admin(database, name: str, email: str, password: str) -> str:
    email = email.lower().strip()
    existing = database["user"].find_one({"email": email})
    if existing:
        database["user"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"role": Role.admin.value, "is_active": True, "updated_at": now()}},
        )
        logger.info("promoted %s to admin", email)
        return str(existing["_id"])
    user = User(name=name, email=email, password_hash=hash_password(password), role=Role.admin)
    user_id = create_document(database, "user", user)
    logger.info("created admin %s", email)
    return user_id


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Administrator")
    parser.add_argument("--password", help="prompted for when omitted")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    if db is None:
        logger.error("DATABASE_URL and DATABASE_NAME must be set")
        return 1
    password = args.password or getpass.getpass("Admin password: ")
    user_id = create_admin(db, args.name, args.email, password)
    print(user_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
