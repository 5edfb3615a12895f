# scripts/create_admin.py
"""Create (or reset the password of) an admin account.

Usage: python -m scripts.create_admin [username]
Reads ADMIN_USERNAME / ADMIN_PASSWORD from the environment or .env.
"""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from models.base import Base, init_engine_and_session
from models.users_db import create_user, get_user, set_password

# Load .env from project root
load_dotenv(Path(__file__).resolve().parents[1] / ".env")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    username = (argv[0] if argv else os.getenv("ADMIN_USERNAME", "admin")).strip()
    password = os.getenv("ADMIN_PASSWORD")
    if not password:
        print("ADMIN_PASSWORD must be set", file=sys.stderr)
        return 2

    engine, _ = init_engine_and_session()
    Base.metadata.create_all(engine, checkfirst=True)

    if get_user(username):
        set_password(username, password, role="admin")
        print(f"updated admin {username}")
    elif create_user(username, password, role="admin"):
        print(f"created admin {username}")
    else:
        print(f"invalid username {username!r}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
