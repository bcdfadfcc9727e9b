from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, JSON
from .database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Document(Base):
    """
    One row per stored document. Collections share the table; the payload is
    kept as JSON and `version` backs the store's compare-and-swap writes.
    """
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    data = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
