from sqlalchemy import BigInteger, Boolean, Column, Index, JSON, String, Text

from callaudit.database import AUDIO_HASH_INDEX, Base


class AuditRecord(Base):
    """One audited call. Primary key is the creation-time id, never autoincremented."""

    __tablename__ = "audit_history"
    __table_args__ = (
        # Non-unique: duplicates are detected by lookup, not enforced here
        Index(AUDIO_HASH_INDEX, "audio_hash"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=False)

    auditor_name = Column(String, nullable=False, default="")
    agent_email = Column(String, nullable=False, default="")
    timestamp = Column(String(64), nullable=False)   # ISO-8601, stored verbatim
    file_name = Column(String, nullable=False, default="")

    analysis = Column(JSON, nullable=False)          # AnalysisResult payload (camelCase)
    audio_hash = Column(String(64), nullable=True)   # SHA-256 hex of the source audio
    nominated = Column(Boolean, nullable=True)       # None = never nominated

    buyer_user_id = Column(String, nullable=False, default="")
    call_stamp = Column(String, nullable=False, default="")

    audio_data = Column(Text, nullable=True)         # base64 copy of the source audio
    audio_mime_type = Column(String(100), nullable=True)

    extra = Column(JSON, nullable=True)              # unknown keys carried by imports
