import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey
from ehr_access.core.base import Base, TimestampedMixin, UTCDateTime

class ShareLink(Base, TimestampedMixin):
    nonce: Mapped[str] = mapped_column(String(64), unique=True)
    scope_type: Mapped[str] = mapped_column(String(16))  # record | all
    scope_id: Mapped[str] = mapped_column(String(64))    # record id or patient id
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    issued_by: Mapped[str] = mapped_column(String(64))
    duration: Mapped[str] = mapped_column(String(8))     # 4h | 24h | 7d

    issued_at: Mapped[datetime] = mapped_column(UTCDateTime())
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())
    access_count: Mapped[int] = mapped_column(Integer, default=0)
    last_accessed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

class ShareLinkAccess(Base, TimestampedMixin):
    share_link_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("sharelink.id"), index=True)
    viewer_id: Mapped[str] = mapped_column(String(64), index=True)
    viewer_role: Mapped[str] = mapped_column(String(24))
    patient_id: Mapped[str] = mapped_column(String(64))
    accessed_at: Mapped[datetime] = mapped_column(UTCDateTime())
