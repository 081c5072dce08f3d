from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from callaudit.errors import DuplicateAudio, InvalidArgument, RecordNotFound
from callaudit.schemas.audit_schemas import AuditEntry
from callaudit.services.audio_service import encode_audio, hash_audio
from callaudit.services.llm_client import AnalysisService
from callaudit.services.record_store import RecordStore
from callaudit.utils.logging_config import StructuredLogger, metrics

logger = StructuredLogger(__name__)


@dataclass
class CallSubmission:
    """One uploaded call plus the metadata the auditor enters alongside it."""
    audio: bytes
    file_name: str
    mime_type: str
    auditor_name: str
    agent_email: str
    buyer_user_id: str
    call_stamp: str


def _validate(submission: CallSubmission) -> None:
    missing = [
        name
        for name, value in (
            ("auditor_name", submission.auditor_name),
            ("agent_email", submission.agent_email),
            ("buyer_user_id", (submission.buyer_user_id or "").strip()),
            ("call_stamp", submission.call_stamp),
            ("audio", submission.audio),
        )
        if not value
    ]
    if missing:
        raise InvalidArgument(
            "Please ensure all fields are filled and an audio file is selected.",
            fields=missing,
        )


def _iso_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def submit_call(
    store: RecordStore,
    analysis_service: AnalysisService,
    submission: CallSubmission,
    now: Optional[datetime] = None,
) -> AuditEntry:
    """
    Analyze and store one call.

    1) Validate the submission.
    2) Reject audio that was already audited, before any analysis call.
    3) Run the analysis service and store the new entry.
    """
    _validate(submission)

    audio_hash = hash_audio(submission.audio)
    existing = store.get_by_hash(audio_hash)
    if existing is not None:
        logger.info(
            "Duplicate audio submitted",
            audio_hash=audio_hash,
            existing_id=existing.id,
            auditor=submission.auditor_name,
        )
        metrics.increment("audits.duplicate_audio")
        raise DuplicateAudio(existing)

    result = analysis_service.analyze(submission.audio, submission.mime_type, submission.file_name)

    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.astimezone()
    entry = AuditEntry(
        id=int(moment.timestamp() * 1000),
        auditor_name=submission.auditor_name,
        agent_email=submission.agent_email,
        timestamp=_iso_utc(moment),
        file_name=submission.file_name,
        analysis=result,
        audio_hash=audio_hash,
        buyer_user_id=submission.buyer_user_id.strip(),
        call_stamp=submission.call_stamp,
        audio_data=encode_audio(submission.audio),
        audio_mime_type=submission.mime_type,
    )
    store.add(entry)

    logger.info(
        "Audit stored",
        entry_id=entry.id,
        agent=entry.agent_email,
        auditor=entry.auditor_name,
        overall_score=entry.overall_score,
    )
    metrics.increment("audits.created")
    return entry


def nominate(store: RecordStore, entry_id: int) -> AuditEntry:
    """Mark an entry as a best-practice example. No other field changes."""
    entry = store.get(entry_id)
    if entry is None:
        raise RecordNotFound(entry_id)

    updated = entry.model_copy(update={"nominated": True})
    store.update(updated)
    logger.info("Audit nominated", entry_id=entry_id)
    metrics.increment("audits.nominated")
    return updated
