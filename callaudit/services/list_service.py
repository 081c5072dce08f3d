"""
Agent and auditor list management.

Lists are sets of lowercase emails kept sorted. Callers compute the new
full list here and the store replaces it in one write.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from callaudit.config import settings
from callaudit.errors import InvalidArgument, StorageUnavailable
from callaudit.models.config_list import AGENTS, AUDITORS
from callaudit.services.record_store import RecordStore

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(normalize_email(value)))


def with_email(values: List[str], email: str) -> List[str]:
    """New sorted list including ``email``; unchanged if already present (case-insensitive)."""
    email = normalize_email(email)
    current = [normalize_email(v) for v in values]
    if not email or email in current:
        return sorted(set(current))
    return sorted(set(current) | {email})


def without_email(values: List[str], email: str) -> List[str]:
    email = normalize_email(email)
    return sorted({normalize_email(v) for v in values} - {email})


@dataclass
class LoadedLists:
    agents: List[str] = field(default_factory=list)
    auditors: List[str] = field(default_factory=list)
    degraded: bool = False
    error: Optional[str] = None


def load_lists(store: RecordStore) -> LoadedLists:
    """
    Load both lists, seeding configured defaults into an empty store.

    If storage is unavailable the defaults are returned in memory with
    ``degraded`` set so the caller can stay usable and report the problem.
    """
    try:
        agents = store.get_list(AGENTS)
        auditors = store.get_list(AUDITORS)
        if not agents and settings.default_agents_list:
            agents = settings.default_agents_list
            store.save_list(AGENTS, agents)
        if not auditors and settings.default_auditors_list:
            auditors = settings.default_auditors_list
            store.save_list(AUDITORS, auditors)
        return LoadedLists(agents=agents, auditors=auditors)
    except StorageUnavailable as e:
        logger.error(f"Falling back to default lists: {e.message}")
        return LoadedLists(
            agents=settings.default_agents_list,
            auditors=settings.default_auditors_list,
            degraded=True,
            error=(
                "Could not load application data. Please ensure the database "
                "location is available and writable."
            ),
        )


def _add(store: RecordStore, name: str, email: str) -> List[str]:
    if not is_valid_email(email):
        raise InvalidArgument(f"'{email}' is not a valid email address.", fields=["email"])
    current = store.get_list(name)
    updated = with_email(current, email)
    if updated != current:
        store.save_list(name, updated)
        logger.info(f"Added {normalize_email(email)} to {name}")
    return updated


def _delete(store: RecordStore, name: str, email: str) -> List[str]:
    current = store.get_list(name)
    updated = without_email(current, email)
    if updated != current:
        store.save_list(name, updated)
        logger.info(f"Removed {normalize_email(email)} from {name}")
    return updated


def add_agent(store: RecordStore, email: str) -> List[str]:
    return _add(store, AGENTS, email)


def delete_agent(store: RecordStore, email: str) -> List[str]:
    return _delete(store, AGENTS, email)


def add_auditor(store: RecordStore, email: str) -> List[str]:
    return _add(store, AUDITORS, email)


def delete_auditor(store: RecordStore, email: str) -> List[str]:
    return _delete(store, AUDITORS, email)
