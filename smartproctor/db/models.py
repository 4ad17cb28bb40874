"""
SQLAlchemy ORM models.

  - config_entries → operator settings (API keys, backend URLs) written
    through the ConfigStore.  Session data is never persisted here.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from smartproctor.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfigEntry(Base):
    __tablename__ = "config_entries"

    key        = Column(String(128), primary_key=True)
    value      = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
