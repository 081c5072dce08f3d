"""
Current-user slot and alert dismissals.

Kept in a small JSON file outside the record store. This is a convenience
"who is auditing" marker, not authentication.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from callaudit.config import settings
from callaudit.errors import InvalidArgument, StorageUnavailable
from callaudit.services import list_service
from callaudit.services.record_store import RecordStore

logger = logging.getLogger(__name__)

CURRENT_USER = "currentUser"
DISMISSED_ALERTS = "dismissedAlerts"


class SessionSlot:
    """Key-value slot persisted as one JSON document."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.session_file)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageUnavailable("session write", str(e)) from e

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    # ============== CURRENT USER ==============

    @property
    def current_user(self) -> Optional[str]:
        return self.get(CURRENT_USER)

    # ============== DISMISSED ALERTS ==============

    @property
    def dismissed_alerts(self) -> List[str]:
        return list(self.get(DISMISSED_ALERTS, []))

    def dismiss(self, alert_ids: List[str]) -> List[str]:
        merged = list(dict.fromkeys([*self.dismissed_alerts, *alert_ids]))
        self.set(DISMISSED_ALERTS, merged)
        return merged


def login(slot: SessionSlot, store: RecordStore, email: str) -> str:
    """
    Remember ``email`` as the current auditor.

    Unknown auditors are added to the auditor list. A failed list save is
    logged and the login still proceeds for this session.
    """
    auditor = list_service.normalize_email(email)
    if not list_service.is_valid_email(auditor):
        raise InvalidArgument("Please enter a valid email address to log in.", fields=["email"])

    try:
        list_service.add_auditor(store, auditor)
    except StorageUnavailable as e:
        logger.warning(f"Could not save new auditor {auditor}, continuing login: {e.message}")

    slot.set(CURRENT_USER, auditor)
    logger.info(f"Auditor logged in: {auditor}")
    return auditor


def logout(slot: SessionSlot) -> None:
    slot.remove(CURRENT_USER)
