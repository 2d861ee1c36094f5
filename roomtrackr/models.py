from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredCollection(Base):
    """
    SQLAlchemy model holding one whole entity collection.

    Each entity kind (rooms, bookings, maintenance records) lives in a
    single row as a JSON array, mirroring the "read/replace whole
    collection" contract of the store.

    Attributes
    ----------
    key : str
        Collection name (e.g. 'roomtrackr_rooms').
    payload : str
        JSON-encoded array of entity records.
    version : int
        Incremented on every write; used for compare-and-swap updates.
    updated_at : datetime
        Timestamp of the last write.
    """
    __tablename__ = "collections"

    key = Column(String(64), primary_key=True)
    payload = Column(Text, nullable=False, default="[]")
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
