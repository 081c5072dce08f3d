"""
SQLAlchemy engine, session factory and versioned schema setup.

The schema evolves through ordered, additive migrations; each one may add
tables or indexes but never rewrites existing rows.
"""

import logging
from typing import Callable, Dict, Optional

from sqlalchemy import create_engine, inspect, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from callaudit.config import settings
from callaudit.errors import StorageUnavailable

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
AUDIO_HASH_INDEX = "ix_audit_history_audio_hash"


def make_engine(url: str) -> Engine:
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def _create_base_tables(conn: Connection) -> None:
    from callaudit.models.audit import AuditRecord
    from callaudit.models.config_list import ConfigList

    Base.metadata.create_all(conn, tables=[AuditRecord.__table__, ConfigList.__table__])


def _add_audio_hash_index(conn: Connection) -> None:
    from callaudit.models.audit import AuditRecord

    existing = {ix["name"] for ix in inspect(conn).get_indexes(AuditRecord.__tablename__)}
    if AUDIO_HASH_INDEX in existing:
        return
    for index in AuditRecord.__table__.indexes:
        if index.name == AUDIO_HASH_INDEX:
            index.create(conn)


MIGRATIONS: Dict[int, Callable[[Connection], None]] = {
    1: _create_base_tables,
    2: _add_audio_hash_index,
}


def current_schema_version(conn: Connection) -> int:
    from callaudit.models.schema_version import SchemaVersion

    version = conn.execute(select(SchemaVersion.version).where(SchemaVersion.id == 1)).scalar()
    return version or 0


def init_db(bind: Optional[Engine] = None) -> int:
    """
    Create or upgrade the schema to SCHEMA_VERSION.

    Returns the schema version in effect. Raises StorageUnavailable if the
    database cannot be opened or a migration fails.
    """
    from callaudit.models.schema_version import SchemaVersion

    bind = bind or engine
    try:
        with bind.begin() as conn:
            SchemaVersion.__table__.create(conn, checkfirst=True)
            current = current_schema_version(conn)
            for version in range(current + 1, SCHEMA_VERSION + 1):
                logger.info(f"Applying schema migration v{version}")
                MIGRATIONS[version](conn)
            if current == 0:
                conn.execute(SchemaVersion.__table__.insert().values(id=1, version=SCHEMA_VERSION))
            elif current < SCHEMA_VERSION:
                conn.execute(
                    SchemaVersion.__table__.update()
                    .where(SchemaVersion.id == 1)
                    .values(version=SCHEMA_VERSION)
                )
    except SQLAlchemyError as e:
        logger.error(f"Database initialisation failed: {e}")
        raise StorageUnavailable("open", str(e)) from e
    return max(current, SCHEMA_VERSION)
