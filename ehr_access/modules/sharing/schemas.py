import enum
import uuid
from datetime import datetime
from typing import Any
from pydantic import BaseModel
from ehr_access.modules.sharing.token_codec import ScopeType

class ShareDuration(str, enum.Enum):
    h4 = "4h"
    h24 = "24h"
    d7 = "7d"

DURATION_MS = {
    ShareDuration.h4: 14_400_000,
    ShareDuration.h24: 86_400_000,
    ShareDuration.d7: 604_800_000,
}

class ShareLinkCreate(BaseModel):
    duration: ShareDuration = ShareDuration.h24

class ShareLinkIssued(BaseModel):
    share_link: str
    token: str
    scope_type: ScopeType
    scope_id: str
    duration: ShareDuration
    expires_at: datetime

class ShareLinkOut(BaseModel):
    id: uuid.UUID
    scope_type: ScopeType
    scope_id: str
    duration: ShareDuration
    issued_at: datetime
    expires_at: datetime
    access_count: int
    last_accessed_at: datetime | None
    expired: bool

class PatientSummary(BaseModel):
    id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None

class Redemption(BaseModel):
    scope_type: ScopeType
    patient: PatientSummary
    records: list[dict[str, Any]]
    expires_at: datetime
    access_count: int

class AccessedLinkOut(BaseModel):
    id: uuid.UUID
    patient_id: str
    scope_type: ScopeType
    scope_id: str
    shared_at: datetime
    last_accessed_at: datetime
    expires_at: datetime
    access_count: int
    expired: bool
