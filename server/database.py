"""Database setup and session management using SQLAlchemy + SQLite.

The only table is ``config``: tunable scoring thresholds that operators can
adjust without a redeploy. Check-in persistence belongs to the caller.
"""

import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///checkin.db")

engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
Base = declarative_base()


# Default scoring thresholds (must match ScoringConfig defaults in integrity.py)
DEFAULT_THRESHOLDS = {
    "pass_threshold": "60",
    "distance_tiers": "20:40,30:35,40:30",
    "distance_fence_points": "25",
    "distance_buffer_m": "20.0",
    "distance_buffer_points": "20",
    "wifi_points_per_match": "12",
    "time_full_window_ms": "60000",
    "time_decay_window_ms": "120000",
    "accuracy_tiers": "10:10,20:8,30:6,50:4",
    "motion_tiers": "0.5:10,1.5:8,3.0:5",
    "motion_absent_points": "5",
}


def init_db(bind=None):
    """Create all tables and seed the default thresholds."""
    from models import Config  # noqa: F401

    bind = bind or engine
    logger.info("Initializing database at %s", bind.url)
    Base.metadata.create_all(bind=bind)
    _seed_config(sessionmaker(bind=bind))


def _seed_config(session_factory):
    """Insert default scoring thresholds if not present."""
    from models import Config

    db = session_factory()
    try:
        for key, value in DEFAULT_THRESHOLDS.items():
            if not db.query(Config).filter(Config.key == key).first():
                db.add(Config(key=key, value=value))
        db.commit()
    finally:
        db.close()
