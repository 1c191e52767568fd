"""
Seed the four built-in notification rules.
Does nothing when any notification setting already exists.
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
from labwise.models import models  # noqa: F401
from labwise.services.rules import seed_default_settings


def seed_notification_settings():
    engine = create_db_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    db = create_session_factory(engine)()
    try:
        created = seed_default_settings(db, settings.default_recipients)
        if created:
            print(f"Seeded {created} notification settings")
        else:
            print("Notification settings already exist. No seeding needed.")
    except Exception as e:
        db.rollback()
        print(f"Error seeding notification settings: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_notification_settings()
