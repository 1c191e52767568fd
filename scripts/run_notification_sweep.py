"""
Run one notification sweep and exit.
For cron-style deployments that keep SWEEP_ENABLED=false on the API workers.
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
from labwise.db import create_db_engine, create_session_factory
from labwise.logging import setup_logging
from labwise.services.mailer import build_transport
from labwise.services.sweep import SweepRunner


def run_sweep() -> int:
    setup_logging()
    session_factory = create_session_factory(create_db_engine(settings.database_url))
    runner = SweepRunner(session_factory, build_transport(settings), settings)
    report = runner.run(trigger="cron")
    print(
        f"Sweep finished: {report.firings} firings, {report.dispatched} dispatched, "
        f"{report.sent} sent, {report.failed} failed"
    )
    if report.truncated:
        print("WARNING: sweep deadline exceeded; remaining firings were skipped")
    if report.error:
        print(f"ERROR: {report.error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run_sweep())
