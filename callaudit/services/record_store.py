"""
Record store: durable CRUD for audit entries and the agent/auditor lists.

Every write is a single transaction. SQLAlchemy failures are rolled back
and re-raised as StorageUnavailable so callers never see driver errors.
"""

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from callaudit.errors import DuplicateIdentity, InvalidArgument, StorageUnavailable
from callaudit.models.audit import AuditRecord
from callaudit.models.config_list import LIST_KEY, LIST_NAMES, ConfigList
from callaudit.schemas.audit_schemas import AnalysisResult, AuditEntry

logger = logging.getLogger(__name__)


def record_from_entry(entry: AuditEntry) -> AuditRecord:
    return AuditRecord(
        id=entry.id,
        auditor_name=entry.auditor_name,
        agent_email=entry.agent_email,
        timestamp=entry.timestamp,
        file_name=entry.file_name,
        analysis=entry.analysis.to_json_dict(),
        audio_hash=entry.audio_hash,
        nominated=entry.nominated,
        buyer_user_id=entry.buyer_user_id,
        call_stamp=entry.call_stamp,
        audio_data=entry.audio_data,
        audio_mime_type=entry.audio_mime_type,
        extra=dict(entry.model_extra) if entry.model_extra else None,
    )


def entry_from_record(record: AuditRecord) -> AuditEntry:
    return AuditEntry(
        **(record.extra or {}),
        id=record.id,
        auditor_name=record.auditor_name,
        agent_email=record.agent_email,
        timestamp=record.timestamp,
        file_name=record.file_name,
        analysis=AnalysisResult.model_validate(record.analysis),
        audio_hash=record.audio_hash,
        nominated=record.nominated,
        buyer_user_id=record.buyer_user_id or "",
        call_stamp=record.call_stamp or "",
        audio_data=record.audio_data,
        audio_mime_type=record.audio_mime_type,
    )


class RecordStore:
    """
    Audit record store bound to one database session.

    The session is owned by the caller (request scope or test fixture).
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _reading(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Storage read failed during {operation}: {e}")
            raise StorageUnavailable(operation, str(e)) from e

    @contextmanager
    def _writing(self, operation: str) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Storage transaction failed during {operation}: {e}")
            raise StorageUnavailable(operation, str(e)) from e

    # ============== AUDIT ENTRIES ==============

    def get_all(self) -> List[AuditEntry]:
        """Every stored entry, in no particular order."""
        with self._reading("get_all"):
            records = self.db.query(AuditRecord).all()
            return [entry_from_record(r) for r in records]

    def get(self, entry_id: int) -> Optional[AuditEntry]:
        with self._reading("get"):
            record = self.db.get(AuditRecord, entry_id)
            return entry_from_record(record) if record else None

    def get_by_hash(self, audio_hash: str) -> Optional[AuditEntry]:
        """First entry recorded for this audio content hash, if any."""
        with self._reading("get_by_hash"):
            record = (
                self.db.query(AuditRecord)
                .filter(AuditRecord.audio_hash == audio_hash)
                .order_by(AuditRecord.id)
                .first()
            )
            return entry_from_record(record) if record else None

    def count(self) -> int:
        with self._reading("count"):
            return self.db.query(func.count(AuditRecord.id)).scalar() or 0

    def add(self, entry: AuditEntry) -> None:
        """Insert a new entry. Never overwrites: a taken id raises DuplicateIdentity."""
        try:
            with self._reading("add"):
                exists = self.db.get(AuditRecord, entry.id) is not None
            if exists:
                raise DuplicateIdentity(entry.id)
            self.db.add(record_from_entry(entry))
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateIdentity(entry.id) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Storage transaction failed during add: {e}")
            raise StorageUnavailable("add", str(e)) from e
        logger.debug(f"Stored audit entry {entry.id}")

    def update(self, entry: AuditEntry) -> None:
        """Replace the entry with the same id, inserting it if absent."""
        with self._writing("update"):
            self.db.merge(record_from_entry(entry))

    def bulk_upsert(self, entries: Iterable[AuditEntry]) -> int:
        """Replace or insert every entry in one all-or-nothing transaction."""
        written = 0
        with self._writing("bulk_upsert"):
            for entry in entries:
                self.db.merge(record_from_entry(entry))
                written += 1
        logger.info(f"Bulk upserted {written} audit entries")
        return written

    def clear_all(self) -> int:
        """Delete every audit entry. Agent and auditor lists are untouched."""
        with self._writing("clear_all"):
            deleted = self.db.query(AuditRecord).delete()
        logger.info(f"Cleared {deleted} audit entries")
        return deleted

    # ============== NAMED LISTS ==============

    def _check_list_name(self, name: str) -> None:
        if name not in LIST_NAMES:
            raise InvalidArgument(f"Unknown list '{name}'. Must be one of {LIST_NAMES}.")

    def get_list(self, name: str) -> List[str]:
        self._check_list_name(name)
        with self._reading("get_list"):
            row = self.db.get(ConfigList, (name, LIST_KEY))
            return list(row.items) if row else []

    def save_list(self, name: str, values: List[str]) -> None:
        """Replace the named list as a whole."""
        self._check_list_name(name)
        with self._writing("save_list"):
            self.db.merge(ConfigList(collection=name, key=LIST_KEY, items=list(values)))
