from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String
from ehr_access.core.base import Base, TimestampedMixin, UTCDateTime

class AuditEvent(Base, TimestampedMixin):
    # who
    actor_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # None for anonymous link scans
    actor_role: Mapped[str | None] = mapped_column(String(24), nullable=True)
    # what happened
    action: Mapped[str] = mapped_column(String(32))  # read | respond | cancel | revoke | share | redeem
    resource_type: Mapped[str] = mapped_column(String(48))  # access_request | share_link | record | patient_records
    resource_id: Mapped[str] = mapped_column(String(64))
    purpose: Mapped[str | None] = mapped_column(String(64), nullable=True)
    success: Mapped[bool] = mapped_column(default=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=lambda: datetime.now(timezone.utc))
