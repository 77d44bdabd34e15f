from sqlalchemy import Column, Integer, String, DateTime, JSON, Boolean, UniqueConstraint
from datetime import datetime, timezone

from .database import Base


def utcnow():
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class StoredResource(Base):
    """
    One version of a FHIR resource held by the SQL store.

    Every create/update/delete appends a row; the current state of a
    resource is its highest version_id. Deletions are tombstone rows
    (is_deleted=True, content=None) so history and vread keep working.
    """
    __tablename__ = "fhir_resources"
    __table_args__ = (
        UniqueConstraint("resource_type", "resource_id", "version_id", name="uq_resource_version"),
    )

    pk = Column(Integer, primary_key=True, index=True)
    resource_type = Column(String(64), nullable=False, index=True)
    resource_id = Column(String(64), nullable=False, index=True)
    version_id = Column(Integer, nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    content = Column(JSON, nullable=True)  # Full resource JSON including meta
    last_updated = Column(DateTime, default=utcnow)
