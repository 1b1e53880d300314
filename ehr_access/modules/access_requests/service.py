import uuid
import logging
from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.core.clock import Clock, utcnow
from ehr_access.core.config import settings
from ehr_access.core.errors import ValidationError, NotFoundError, ForbiddenError, ConflictError, ExpiredError
from ehr_access.core.security import Principal, Role
from ehr_access.platform.ports.directory import DirectoryPort, DirectoryUser
from ehr_access.modules.access_requests.repository import AccessRequestRepository
from ehr_access.modules.access_requests.models import AccessRequest
from ehr_access.modules.access_requests.schemas import AccessRequestCreate, AccessRequestOut
from ehr_access.modules.access_requests.lifecycle import (
    RequestStatus, ResponseAction, RevokeTiming, REVOKE_OFFSETS, effective_status, is_past_deadline, can_transition,
)
from ehr_access.modules.audit.service import AuditService
from ehr_access.modules.events.outbox import OutboxService

log = logging.getLogger("access.requests")

def _state(obj: AccessRequest, now: datetime) -> dict:
    out = AccessRequestOut.from_model(obj, now)
    return out.model_dump(mode="json")

class AccessRequestService:
    def __init__(self, session: AsyncSession, directory: DirectoryPort, clock: Clock = utcnow):
        self.session = session
        self.directory = directory
        self.clock = clock
        self.repo = AccessRequestRepository(session)
        self.audit = AuditService(session)
        self.outbox = OutboxService(session)

    async def _resolve_patient(self, payload: AccessRequestCreate) -> DirectoryUser:
        if payload.patient_id:
            user = await self.directory.get_user(payload.patient_id)
        elif payload.patient_email or payload.patient_phone:
            user = await self.directory.find_patient(email=payload.patient_email, phone=payload.patient_phone)
        else:
            raise ValidationError("patientId, patientEmail or patientPhone is required", code="missing_patient")
        if user is None or user.role != Role.patient:
            raise NotFoundError("Patient not found", code="patient_not_found")
        return user

    async def _load(self, request_id: uuid.UUID) -> AccessRequest:
        obj = await self.repo.get(request_id)
        if obj is None:
            raise NotFoundError("Access request not found")
        return obj

    async def _deny_stale(self, obj: AccessRequest, now: datetime) -> None:
        # persist a lazy expiry discovered on the write path
        if await self.repo.transition(obj, RequestStatus.pending, status=RequestStatus.denied.value,
                                      auto_expired=True, responded_at=obj.expires_at):
            await self.outbox.enqueue("ACCESS_REQUEST_EXPIRED", "access_request", obj.id,
                                      {"requester_id": obj.requester_id, "patient_id": obj.patient_id})
        await self.session.commit()

    # ---- create ----
    async def create(self, requester: Principal, payload: AccessRequestCreate) -> AccessRequestOut:
        if not requester.is_provider:
            raise ValidationError("Only doctors and lab assistants can request access", code="invalid_role",
                                  detail={"role": requester.role.value})
        message = (payload.message or "").strip() or None
        if message and len(message) > settings.ACCESS_REQUEST_MESSAGE_MAX:
            raise ValidationError(f"Message must be at most {settings.ACCESS_REQUEST_MESSAGE_MAX} characters",
                                  code="message_too_long", detail={"length": len(message)})

        patient = await self._resolve_patient(payload)
        now = self.clock()

        # settle the pair first so a stale pending or a due revocation doesn't block a fresh request
        await self.repo.settle(now, requester_id=requester.user_id, patient_id=patient.id)
        await self.session.commit()

        existing = await self.repo.get_active_for_pair(requester.user_id, patient.id)
        if existing is not None:
            raise ConflictError("An active access request already exists for this patient",
                                code="duplicate_active", detail={"request": _state(existing, now)})

        try:
            obj = await self.repo.create(
                requester_id=requester.user_id,
                requester_role=requester.role.value,
                patient_id=patient.id,
                message=message,
                status=RequestStatus.pending.value,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(days=settings.ACCESS_REQUEST_TTL_DAYS),
            )
        except IntegrityError:
            # lost a race with a concurrent create for the same pair
            await self.session.rollback()
            existing = await self.repo.get_active_for_pair(requester.user_id, patient.id)
            detail = {"request": _state(existing, now)} if existing else {}
            raise ConflictError("An active access request already exists for this patient",
                                code="duplicate_active", detail=detail)

        await self.outbox.enqueue(
            "ACCESS_REQUEST_CREATED", "access_request", obj.id,
            {"requester_id": obj.requester_id, "requester_role": obj.requester_role,
             "patient_id": obj.patient_id, "has_message": message is not None},
        )
        await self.session.commit()
        log.info("Access request %s created by %s for patient %s", obj.id, obj.requester_id, obj.patient_id)
        return AccessRequestOut.from_model(obj, now)

    # ---- patient response ----
    async def respond(self, patient: Principal, request_id: uuid.UUID, action: ResponseAction) -> AccessRequestOut:
        obj = await self._load(request_id)
        now = self.clock()
        if obj.patient_id != patient.user_id:
            await self.audit.denied(patient, "respond", "access_request", str(obj.id), occurred_at=now)
            raise ForbiddenError("Only the patient can respond to this request")

        if obj.status == RequestStatus.pending.value and is_past_deadline(obj, now):
            await self._deny_stale(obj, now)
        if obj.auto_expired:
            raise ExpiredError("This access request has expired", code="request_expired",
                               detail={"request": _state(obj, now)})
        target = RequestStatus.approved if action is ResponseAction.approve else RequestStatus.denied
        if not can_transition(effective_status(obj, now), target):
            raise ConflictError("This access request has already been answered", code="not_pending",
                                detail={"request": _state(obj, now)})

        ok = await self.repo.transition(obj, RequestStatus.pending, status=target.value, responded_at=now)
        if not ok:
            raise ConflictError("This access request has already been answered", code="not_pending",
                                detail={"request": _state(obj, now)})

        await self.outbox.enqueue(
            f"ACCESS_REQUEST_{target.value.upper()}", "access_request", obj.id,
            {"requester_id": obj.requester_id, "patient_id": obj.patient_id},
        )
        await self.session.commit()
        log.info("Access request %s %s by patient %s", obj.id, target.value, patient.user_id)
        return AccessRequestOut.from_model(obj, now)

    # ---- requester cancel ----
    async def cancel(self, requester: Principal, request_id: uuid.UUID) -> AccessRequestOut:
        obj = await self._load(request_id)
        now = self.clock()
        if obj.requester_id != requester.user_id:
            await self.audit.denied(requester, "cancel", "access_request", str(obj.id), occurred_at=now)
            raise ForbiddenError("Only the requester can cancel this request")

        if obj.status == RequestStatus.pending.value and is_past_deadline(obj, now):
            await self._deny_stale(obj, now)
        if not can_transition(effective_status(obj, now), RequestStatus.cancelled):
            raise ConflictError("Only pending requests can be cancelled", code="not_pending",
                                detail={"request": _state(obj, now)})

        ok = await self.repo.transition(obj, RequestStatus.pending, status=RequestStatus.cancelled.value, responded_at=now)
        if not ok:
            raise ConflictError("Only pending requests can be cancelled", code="not_pending",
                                detail={"request": _state(obj, now)})
        await self.outbox.enqueue("ACCESS_REQUEST_CANCELLED", "access_request", obj.id,
                                  {"requester_id": obj.requester_id, "patient_id": obj.patient_id})
        await self.session.commit()
        return AccessRequestOut.from_model(obj, now)

    # ---- patient revoke ----
    async def revoke(self, patient: Principal, request_id: uuid.UUID, timing: RevokeTiming) -> AccessRequestOut:
        obj = await self._load(request_id)
        now = self.clock()
        if obj.patient_id != patient.user_id:
            await self.audit.denied(patient, "revoke", "access_request", str(obj.id), occurred_at=now)
            raise ForbiddenError("Only the patient can revoke this access")

        if not can_transition(effective_status(obj, now), RequestStatus.revoked):
            raise ConflictError("Only approved access can be revoked", code="not_approved",
                                detail={"request": _state(obj, now)})

        effective_at = now + REVOKE_OFFSETS[timing]
        if (timing is not RevokeTiming.immediate and obj.revocation_effective_at is not None
                and obj.revocation_effective_at <= effective_at):
            # a schedule can only be brought forward
            return AccessRequestOut.from_model(obj, now)

        if timing is RevokeTiming.immediate:
            ok = await self.repo.transition(obj, RequestStatus.approved, status=RequestStatus.revoked.value,
                                            revoked_at=now, revocation_effective_at=now)
            event = "ACCESS_REVOKED"
        else:
            ok = await self.repo.transition(obj, RequestStatus.approved, revocation_effective_at=effective_at)
            event = "ACCESS_REVOCATION_SCHEDULED"
        if not ok:
            raise ConflictError("Only approved access can be revoked", code="not_approved",
                                detail={"request": _state(obj, now)})

        await self.outbox.enqueue(event, "access_request", obj.id, {
            "requester_id": obj.requester_id, "patient_id": obj.patient_id,
            "timing": timing.value, "effective_at": obj.revocation_effective_at.isoformat(),
        })
        await self.session.commit()
        log.info("Access request %s revoke (%s) effective %s", obj.id, timing.value, obj.revocation_effective_at)
        return AccessRequestOut.from_model(obj, now)

    # ---- reads ----
    async def get(self, principal: Principal, request_id: uuid.UUID) -> AccessRequestOut:
        obj = await self._load(request_id)
        now = self.clock()
        if principal.role != Role.admin and principal.user_id not in (obj.requester_id, obj.patient_id):
            await self.audit.denied(principal, "read", "access_request", str(obj.id), occurred_at=now)
            raise ForbiddenError("Not a party to this access request")
        if await self.repo.settle(now, requester_id=obj.requester_id, patient_id=obj.patient_id):
            await self.session.commit()
            obj = await self._load(request_id)
        return AccessRequestOut.from_model(obj, now)

    async def _list(self, now: datetime, statuses: list[RequestStatus] | None, limit: int, offset: int,
                    **scope) -> list[AccessRequestOut]:
        if await self.repo.settle(now, **scope):
            await self.session.commit()
        rows = await self.repo.list(statuses=statuses, limit=limit, offset=offset, **scope)
        return [AccessRequestOut.from_model(r, now) for r in rows]

    async def list_sent(self, requester: Principal, status: RequestStatus | None = None,
                        limit: int = 100, offset: int = 0) -> list[AccessRequestOut]:
        now = self.clock()
        return await self._list(now, [status] if status else None, limit, offset, requester_id=requester.user_id)

    async def list_pending(self, patient: Principal, limit: int = 100, offset: int = 0) -> list[AccessRequestOut]:
        now = self.clock()
        return await self._list(now, [RequestStatus.pending], limit, offset, patient_id=patient.user_id)

    async def list_granted(self, patient: Principal, status: RequestStatus | None = RequestStatus.approved,
                           limit: int = 100, offset: int = 0) -> list[AccessRequestOut]:
        now = self.clock()
        return await self._list(now, [status] if status else None, limit, offset, patient_id=patient.user_id)
