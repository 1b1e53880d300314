import logging
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.core.clock import Clock, utcnow
from ehr_access.core.config import settings
from ehr_access.core.errors import NotFoundError, ForbiddenError, ExpiredError
from ehr_access.core.security import Principal, Role
from ehr_access.platform.ports.directory import DirectoryPort
from ehr_access.platform.ports.records import RecordStorePort
from ehr_access.modules.audit.service import AuditService
from ehr_access.modules.events.outbox import OutboxService
from ehr_access.modules.sharing import token_codec
from ehr_access.modules.sharing.token_codec import ScopeType, DecodeError
from ehr_access.modules.sharing.repository import ShareLinkRepository
from ehr_access.modules.sharing.schemas import (
    ShareDuration, DURATION_MS, ShareLinkIssued, ShareLinkOut, PatientSummary, Redemption, AccessedLinkOut,
)

log = logging.getLogger("access.sharing")

def share_url(scope_type: ScopeType, token: str) -> str:
    base = settings.PUBLIC_BASE_URL.rstrip("/")
    if scope_type is ScopeType.all:
        return f"{base}/shared/all/{token}"
    return f"{base}/shared/{token}"

class ShareLinkService:
    def __init__(self, session: AsyncSession, directory: DirectoryPort, records: RecordStorePort, clock: Clock = utcnow):
        self.session = session
        self.directory = directory
        self.records = records
        self.clock = clock
        self.repo = ShareLinkRepository(session)
        self.audit = AuditService(session)
        self.outbox = OutboxService(session)

    async def issue(self, owner: Principal, scope_type: ScopeType, duration: ShareDuration,
                    record_id: str | None = None) -> ShareLinkIssued:
        now = self.clock()
        if owner.role != Role.patient:
            await self.audit.denied(owner, "share", "patient_records", owner.user_id, occurred_at=now)
            raise ForbiddenError("Only patients can share their records", code="not_patient")

        if scope_type is ScopeType.all:
            scope_id = owner.user_id
        else:
            record = await self.records.get_record(record_id)
            if record is None:
                raise NotFoundError("Record not found", code="record_not_found")
            if record.patient_id != owner.user_id:
                await self.audit.denied(owner, "share", "record", record.id, occurred_at=now)
                raise ForbiddenError("Only the record's patient can share it")
            scope_id = record.id

        token, payload = token_codec.encode(scope_type, scope_id, DURATION_MS[duration], now=now)
        link = await self.repo.create(
            nonce=payload.nonce,
            scope_type=scope_type.value,
            scope_id=scope_id,
            patient_id=owner.user_id,
            issued_by=owner.user_id,
            duration=duration.value,
            issued_at=now,
            expires_at=payload.expires_at,
            access_count=0,
        )
        await self.outbox.enqueue("SHARE_LINK_ISSUED", "share_link", link.id, {
            "patient_id": link.patient_id, "scope_type": link.scope_type,
            "scope_id": link.scope_id, "expires_at": payload.expires_at.isoformat(),
        })
        await self.session.commit()
        log.info("Share link %s issued by %s (%s, %s)", link.id, owner.user_id, scope_type.value, duration.value)
        return ShareLinkIssued(
            share_link=share_url(scope_type, token),
            token=token,
            scope_type=scope_type,
            scope_id=scope_id,
            duration=duration,
            expires_at=payload.expires_at,
        )

    async def redeem(self, token: str, viewer: Principal | None = None, request: Request | None = None,
                     expected_scope: ScopeType | None = None) -> Redemption:
        now = self.clock()
        try:
            payload = token_codec.decode(token)
        except DecodeError:
            raise NotFoundError("Share link not found", code="malformed")
        if expected_scope is not None and payload.scope_type is not expected_scope:
            raise NotFoundError("Share link not found", code="malformed")
        if payload.is_expired(now):
            raise ExpiredError("This share link has expired", code="link_expired",
                               detail={"expires_at": payload.expires_at.isoformat()})

        link = await self.repo.get_by_nonce(payload.nonce)
        if link is None or link.scope_type != payload.scope_type.value or link.scope_id != payload.scope_id:
            raise NotFoundError("Share link not found")

        try:
            count = await self.repo.increment_access(link.id, now)
            if payload.scope_type is ScopeType.all:
                refs = await self.records.list_patient_records(link.patient_id)
            else:
                ref = await self.records.get_record(link.scope_id)
                if ref is None or ref.patient_id != link.patient_id:
                    raise NotFoundError("Shared record no longer exists", code="record_not_found")
                refs = [ref]
            patient = await self.directory.get_user(link.patient_id)

            if viewer is not None:
                await self.repo.record_access(link, viewer.user_id, viewer.role.value, now)
            await self.audit.log(viewer, "redeem", "share_link", str(link.id), purpose=payload.scope_type.value,
                                 request=request, occurred_at=now)
            await self.outbox.enqueue("SHARE_LINK_REDEEMED", "share_link", link.id, {
                "patient_id": link.patient_id, "access_count": count,
                "viewer_id": viewer.user_id if viewer else None,
            })
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return Redemption(
            scope_type=payload.scope_type,
            patient=PatientSummary(
                id=link.patient_id,
                first_name=patient.first_name if patient else None,
                last_name=patient.last_name if patient else None,
                email=patient.email if patient else None,
            ),
            records=[r.data or {"id": r.id, "patientId": r.patient_id} for r in refs],
            expires_at=payload.expires_at,
            access_count=count,
        )

    async def list_issued(self, owner: Principal, limit: int = 100, offset: int = 0) -> list[ShareLinkOut]:
        now = self.clock()
        rows = await self.repo.list_for_issuer(owner.user_id, limit=limit, offset=offset)
        return [
            ShareLinkOut(
                id=r.id, scope_type=ScopeType(r.scope_type), scope_id=r.scope_id,
                duration=ShareDuration(r.duration), issued_at=r.issued_at, expires_at=r.expires_at,
                access_count=r.access_count, last_accessed_at=r.last_accessed_at,
                expired=now > r.expires_at,
            )
            for r in rows
        ]

    async def list_accessed(self, viewer: Principal, scope_type: ScopeType | None = ScopeType.all,
                            limit: int = 100, offset: int = 0) -> list[AccessedLinkOut]:
        now = self.clock()
        rows = await self.repo.list_accessed_by(viewer.user_id, scope_type.value if scope_type else None,
                                               limit=limit, offset=offset)
        return [
            AccessedLinkOut(
                id=link.id, patient_id=link.patient_id, scope_type=ScopeType(link.scope_type),
                scope_id=link.scope_id, shared_at=first, last_accessed_at=last,
                expires_at=link.expires_at, access_count=link.access_count,
                expired=now > link.expires_at,
            )
            for link, first, last in rows
        ]
