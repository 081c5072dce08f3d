"""
Import/merge engine and JSON export.

Imported files are authoritative: an incoming entry replaces whatever is
stored under the same id, in file-processing order. Each file is validated
as a whole before any of its entries join the merge, and the merged set is
written back in one bulk upsert.
"""

import json
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Sequence

from pydantic import ValidationError

from callaudit.errors import InvalidArgument, InvalidImportFormat
from callaudit.schemas.audit_schemas import AuditEntry, ImportSummary, epoch_millis
from callaudit.services.aggregation_service import sort_by_timestamp_desc
from callaudit.services.record_store import RecordStore
from callaudit.utils.logging_config import StructuredLogger, metrics

logger = StructuredLogger(__name__)

REQUIRED_FIELDS = ("id", "timestamp")


@dataclass
class ImportFile:
    """A named blob expected to hold a JSON array of audit entries."""
    name: str
    content: bytes


@dataclass
class ImportResult:
    summary: ImportSummary
    entries: List[AuditEntry]  # full merged collection, newest first


def synthesize_id(timestamp: str) -> int:
    """Id for legacy entries without one: creation time plus a random tie-breaker."""
    return epoch_millis(timestamp) + random.randint(0, 999)


def parse_import_file(file: ImportFile) -> List[AuditEntry]:
    """
    Parse and validate one file.

    Raises InvalidImportFormat if the file is not a JSON array of objects
    that each carry ``id`` and ``timestamp`` and validate as audit entries.
    """
    try:
        payload = json.loads(file.content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidImportFormat(file.name, f"not valid UTF-8 JSON ({e})") from e

    if not isinstance(payload, list):
        raise InvalidImportFormat(file.name, "it must be an array of audit entries")

    entries: List[AuditEntry] = []
    for position, raw in enumerate(payload):
        if not isinstance(raw, dict):
            raise InvalidImportFormat(file.name, f"element {position} is not an object")
        missing = [name for name in REQUIRED_FIELDS if name not in raw]
        if missing:
            raise InvalidImportFormat(
                file.name, f"element {position} is missing {', '.join(missing)}"
            )

        raw = dict(raw)
        try:
            if not raw["id"]:
                raw["id"] = synthesize_id(str(raw["timestamp"]))
            entries.append(AuditEntry.model_validate(raw))
        except (ValueError, TypeError) as e:
            # ValidationError is a ValueError subclass
            detail = e.errors()[0]["msg"] if isinstance(e, ValidationError) else str(e)
            raise InvalidImportFormat(file.name, f"element {position}: {detail}") from e

    return entries


def import_files(store: RecordStore, files: Sequence[ImportFile]) -> ImportResult:
    """
    Merge every readable file into the store.

    Bad files are skipped and reported; storage failures propagate as
    StorageUnavailable with nothing written.
    """
    if not files:
        raise InvalidArgument("No files selected for import.")

    merged: Dict[int, AuditEntry] = {entry.id: entry for entry in store.get_all()}
    summary = ImportSummary()

    for file in files:
        try:
            entries = parse_import_file(file)
        except InvalidImportFormat as e:
            logger.warning("Import file rejected", file=file.name, reason=e.reason)
            summary.failed_files.append(file.name)
            summary.failure_reasons[file.name] = e.reason
            metrics.increment("imports.files_failed")
            continue

        for entry in entries:
            if entry.id in merged:
                summary.updated_records += 1
            else:
                summary.new_records += 1
            merged[entry.id] = entry
        summary.files_processed += 1

    store.bulk_upsert(merged.values())

    logger.info(
        "Import finished",
        files_processed=summary.files_processed,
        new_records=summary.new_records,
        updated_records=summary.updated_records,
        failed_files=summary.failed_files,
    )
    metrics.increment("imports.completed")
    return ImportResult(summary=summary, entries=sort_by_timestamp_desc(list(merged.values())))


# ============== EXPORT ==============


OMIT_WHEN_UNSET = ("audioHash", "nominated", "audioData", "audioMimeType")


def _export_dict(entry: AuditEntry) -> dict:
    data = entry.to_json_dict()
    for key in OMIT_WHEN_UNSET:
        if data.get(key) is None:
            data.pop(key, None)
    return data


def export_entries(entries: Sequence[AuditEntry]) -> str:
    """Serialise entries to the JSON array transfer format.

    Unknown keys are written as they were read, nulls included.
    """
    return json.dumps([_export_dict(entry) for entry in entries], indent=2)


def export_filename(now: datetime = None) -> str:
    now = now or datetime.now()
    return f"callaudit_history_export_{now.strftime('%Y-%m-%d')}.json"
