from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Index, text
from ehr_access.core.base import Base, TimestampedMixin, UTCDateTime

_ACTIVE = text("status IN ('pending', 'approved')")

class AccessRequest(Base, TimestampedMixin):
    requester_id: Mapped[str] = mapped_column(String(64), index=True)
    requester_role: Mapped[str] = mapped_column(String(24))  # doctor | lab_assistant
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | approved | denied | cancelled | revoked
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())  # only meaningful while pending
    revocation_effective_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    auto_expired: Mapped[bool] = mapped_column(default=False)

    __table_args__ = (
        # at most one pending/approved request per (requester, patient)
        Index(
            "uq_accessrequest_active_pair", "requester_id", "patient_id",
            unique=True, postgresql_where=_ACTIVE, sqlite_where=_ACTIVE,
        ),
    )
