"""
Create the first admin account.
Usage: python scripts/seed_admin.py <email> <password> [name]
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception as e:
    print(f"WARNING: Could not load .env file: {e}")

from labwise.config import settings
from labwise.db import Base, create_db_engine, create_session_factory
from labwise.errors import DuplicateEmail
from labwise.models import models  # noqa: F401
from labwise.services.users import create_user


def seed_admin(email: str, password: str, name: str = "Administrador"):
    engine = create_db_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    db = create_session_factory(engine)()
    try:
        user = create_user(
            db,
            {"name": name, "email": email, "password": password, "role": "admin"},
            actor="System",
        )
        print(f"Created admin {user.email} ({user.id})")
    except DuplicateEmail:
        print(f"User {email} already exists. Nothing to do.")
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)
    seed_admin(sys.argv[1], sys.argv[2], *(sys.argv[3:4]))
