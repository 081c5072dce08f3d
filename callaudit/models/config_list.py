"""
Named string lists (agents, auditors).

Each collection holds a single JSON array under the fixed key ``list``;
the lists are replaced as a whole, never appended row by row.
"""

from sqlalchemy import Column, JSON, String

from callaudit.database import Base

AGENTS = "agents"
AUDITORS = "auditors"
LIST_KEY = "list"
LIST_NAMES = (AGENTS, AUDITORS)


class ConfigList(Base):
    __tablename__ = "config_lists"

    collection = Column(String(32), primary_key=True)  # agents | auditors
    key = Column(String(32), primary_key=True, default=LIST_KEY)
    items = Column(JSON, nullable=False, default=list)
