import uuid
from datetime import datetime
from typing import Iterable, Sequence
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.modules.access_requests.models import AccessRequest
from ehr_access.modules.access_requests.lifecycle import RequestStatus, ACTIVE_STATUSES

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]

class AccessRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> AccessRequest:
        obj = AccessRequest(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, request_id: uuid.UUID) -> AccessRequest | None:
        q = select(AccessRequest).where(AccessRequest.id == request_id)
        res = await self.session.execute(q.execution_options(populate_existing=True))
        return res.scalar_one_or_none()

    async def get_active_for_pair(self, requester_id: str, patient_id: str) -> AccessRequest | None:
        q = select(AccessRequest).where(
            AccessRequest.requester_id == requester_id,
            AccessRequest.patient_id == patient_id,
            AccessRequest.status.in_(_ACTIVE_VALUES),
        )
        res = await self.session.execute(q.execution_options(populate_existing=True))
        return res.scalars().first()

    async def get_approved_for_pair(self, requester_id: str, patient_id: str) -> AccessRequest | None:
        q = select(AccessRequest).where(
            AccessRequest.requester_id == requester_id,
            AccessRequest.patient_id == patient_id,
            AccessRequest.status == RequestStatus.approved.value,
        )
        res = await self.session.execute(q.execution_options(populate_existing=True))
        return res.scalars().first()

    async def list(self, *, requester_id: str | None = None, patient_id: str | None = None,
                   statuses: Iterable[RequestStatus] | None = None,
                   limit: int = 100, offset: int = 0) -> Sequence[AccessRequest]:
        q = select(AccessRequest)
        if requester_id is not None:
            q = q.where(AccessRequest.requester_id == requester_id)
        if patient_id is not None:
            q = q.where(AccessRequest.patient_id == patient_id)
        if statuses:
            q = q.where(AccessRequest.status.in_([s.value for s in statuses]))
        q = q.order_by(AccessRequest.created_at.desc()).limit(limit).offset(offset)
        res = await self.session.execute(q.execution_options(populate_existing=True))
        return res.scalars().all()

    async def transition(self, obj: AccessRequest, expected: RequestStatus, **values) -> bool:
        """Compare-and-set on (id, status, version); False when someone else got there first."""
        q = (
            update(AccessRequest)
            .where(and_(
                AccessRequest.id == obj.id,
                AccessRequest.status == expected.value,
                AccessRequest.version == obj.version,
            ))
            .values(version=AccessRequest.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        if res.rowcount == 0:
            await self.session.refresh(obj)
            return False
        await self.session.refresh(obj)
        return True

    async def settle(self, now: datetime, *, requester_id: str | None = None, patient_id: str | None = None) -> int:
        """Persist lazy transitions that are already in effect: stale pending -> denied, due revocations -> revoked."""
        scope = []
        if requester_id is not None:
            scope.append(AccessRequest.requester_id == requester_id)
        if patient_id is not None:
            scope.append(AccessRequest.patient_id == patient_id)

        expired = await self.session.execute(
            update(AccessRequest)
            .where(and_(
                AccessRequest.status == RequestStatus.pending.value,
                AccessRequest.expires_at < now,
                *scope,
            ))
            .values(
                status=RequestStatus.denied.value,
                auto_expired=True,
                responded_at=AccessRequest.expires_at,
                version=AccessRequest.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        revoked = await self.session.execute(
            update(AccessRequest)
            .where(and_(
                AccessRequest.status == RequestStatus.approved.value,
                AccessRequest.revocation_effective_at.is_not(None),
                AccessRequest.revocation_effective_at <= now,
                *scope,
            ))
            .values(
                status=RequestStatus.revoked.value,
                revoked_at=AccessRequest.revocation_effective_at,
                version=AccessRequest.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return (expired.rowcount or 0) + (revoked.rowcount or 0)
