import uuid
from datetime import datetime
from pydantic import BaseModel, AliasChoices, Field
from ehr_access.modules.access_requests.lifecycle import (
    RequestStatus, ResponseAction, RevokeTiming, effective_status, is_expired,
)

class AccessRequestCreate(BaseModel):
    # exactly one selector is needed; email/phone are resolved through the user directory
    patient_id: str | None = Field(default=None, validation_alias=AliasChoices("patient_id", "patientId"))
    patient_email: str | None = Field(default=None, validation_alias=AliasChoices("patient_email", "patientEmail"))
    patient_phone: str | None = Field(default=None, validation_alias=AliasChoices("patient_phone", "patientPhone", "phoneNumber"))
    message: str | None = None

class AccessRequestRespond(BaseModel):
    action: ResponseAction

class AccessRequestRevoke(BaseModel):
    timing: RevokeTiming = RevokeTiming.immediate

class AccessRequestOut(BaseModel):
    id: uuid.UUID
    requester_id: str
    requester_role: str
    patient_id: str
    message: str | None
    status: RequestStatus
    expired: bool
    created_at: datetime
    responded_at: datetime | None
    expires_at: datetime | None
    revocation_effective_at: datetime | None
    revoked_at: datetime | None

    @classmethod
    def from_model(cls, obj, now: datetime) -> "AccessRequestOut":
        status = effective_status(obj, now)
        expired = is_expired(obj, now)
        responded_at = obj.responded_at
        if expired and responded_at is None:
            responded_at = obj.expires_at
        revoked_at = obj.revoked_at
        if status is RequestStatus.revoked and revoked_at is None:
            revoked_at = obj.revocation_effective_at
        return cls(
            id=obj.id,
            requester_id=obj.requester_id,
            requester_role=obj.requester_role,
            patient_id=obj.patient_id,
            message=obj.message,
            status=status,
            expired=expired,
            created_at=obj.created_at,
            responded_at=responded_at,
            # the deadline only applies while the request is waiting on the patient
            expires_at=obj.expires_at if status is RequestStatus.pending or expired else None,
            revocation_effective_at=obj.revocation_effective_at,
            revoked_at=revoked_at,
        )

class AccessDecisionOut(BaseModel):
    allowed: bool
    subject_id: str
    patient_id: str
    record_id: str | None = None
    basis: str  # owner | standing_grant | none
