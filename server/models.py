"""SQLAlchemy models for tunable scoring configuration."""

import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from database import Base


class Config(Base):
    """A single scoring threshold override, stored as text.

    Numeric keys hold a plain number ("60", "20.0"); tier keys hold a
    comma-separated list of ``limit:points`` pairs ("20:40,30:35,40:30").
    """

    __tablename__ = "config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)
