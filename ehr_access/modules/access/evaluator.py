"""Read-time access decisions for patient records.

A caller may read a patient's records if it *is* that patient, or if it holds
a standing grant (an access request whose effective status is approved).
Scheduled revocations are honoured from the moment they fall due, whether or
not anything has rewritten the stored status yet. Evaluation never writes.
"""
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.core.clock import Clock, utcnow
from ehr_access.core.security import Principal
from ehr_access.platform.ports.records import RecordRef
from ehr_access.modules.access_requests.lifecycle import RequestStatus, effective_status
from ehr_access.modules.access_requests.repository import AccessRequestRepository
from ehr_access.modules.access_requests.schemas import AccessDecisionOut

log = logging.getLogger("access.evaluator")

class AccessEvaluator:
    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        self.repo = AccessRequestRepository(session)
        self.clock = clock

    async def decide(self, identity: Principal, patient_id: str, record_id: str | None = None) -> AccessDecisionOut:
        if identity.user_id == patient_id:
            basis = "owner"
        else:
            grant = await self.repo.get_approved_for_pair(identity.user_id, patient_id)
            if grant is not None and effective_status(grant, self.clock()) is RequestStatus.approved:
                basis = "standing_grant"
            else:
                basis = "none"
        log.debug("access %s -> patient=%s record=%s: %s", identity.user_id, patient_id, record_id, basis)
        return AccessDecisionOut(
            allowed=basis != "none",
            subject_id=identity.user_id,
            patient_id=patient_id,
            record_id=record_id,
            basis=basis,
        )

    async def can_access_all_records(self, identity: Principal, patient_id: str) -> bool:
        return (await self.decide(identity, patient_id)).allowed

    async def can_access_record(self, identity: Principal, record: RecordRef) -> bool:
        return (await self.decide(identity, record.patient_id, record.id)).allowed
