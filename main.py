import logging
import signal
import threading
from pathlib import Path

from alembic import command
from alembic.config import Config

from database import session_scope
from scheduler import SchedulerManager
from seed import seed_from_config


logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent


def upgrade_database() -> None:
    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(BASE_DIR / "alembic"))
    command.upgrade(alembic_cfg, "head")


def main() -> None:
    upgrade_database()
    with session_scope() as session:
        for outcome in seed_from_config(session):
            logger.info(f"seed: {outcome}")

    scheduler_manager = SchedulerManager()
    scheduler_manager.start()

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        stop.wait()
    finally:
        scheduler_manager.stop()


if __name__ == "__main__":
    main()
