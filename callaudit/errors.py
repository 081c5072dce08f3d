"""
Error taxonomy for the audit store, import engine and analysis boundary.

Low-level exceptions (SQLAlchemy, JSON, pydantic, OpenAI) are translated
into one of these where they occur. ``status_code`` is the HTTP status the
API layer answers with.
"""

from typing import List, Optional


class CallAuditError(Exception):
    """Base class for all CallAudit errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StorageUnavailable(CallAuditError):
    """The embedded database cannot be opened or a transaction failed."""

    status_code = 503

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Storage unavailable during {operation}: {reason}. "
            "Check that the database location is writable and not full."
        )
        self.operation = operation
        self.reason = reason


class DuplicateIdentity(CallAuditError):
    """Non-overwriting insert of a record whose id already exists."""

    status_code = 409

    def __init__(self, entry_id: int):
        super().__init__(f"An audit entry with id {entry_id} already exists.")
        self.entry_id = entry_id


class InvalidImportFormat(CallAuditError):
    """An import file is not a JSON array of audit entries."""

    status_code = 400

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"File {file_name} has an invalid format: {reason}")
        self.file_name = file_name
        self.reason = reason


class DuplicateAudio(CallAuditError):
    """The submitted audio was already audited; carries the existing entry."""

    status_code = 409

    def __init__(self, existing):
        when = existing.created_at.strftime("%Y-%m-%d")
        super().__init__(
            f"Duplicate Audio: This call was already audited by {existing.auditor_name} "
            f"on {when}. The previous report has been opened for you."
        )
        self.existing = existing


class AnalysisError(CallAuditError):
    """The analysis service failed or returned malformed data."""

    status_code = 502


class InvalidArgument(CallAuditError):
    status_code = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class RecordNotFound(CallAuditError):
    status_code = 404

    def __init__(self, entry_id: int):
        super().__init__(f"No audit entry with id {entry_id}.")
        self.entry_id = entry_id
