from sqlalchemy import Column, DateTime, Integer, func

from callaudit.database import Base


class SchemaVersion(Base):
    """Single-row table recording the applied schema version."""

    __tablename__ = "schema_version"

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
