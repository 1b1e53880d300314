from typing import Any
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.core.clock import Clock, get_clock
from ehr_access.core.db import get_session
from ehr_access.core.errors import NotFoundError, ForbiddenError
from ehr_access.core.security import get_principal, Principal
from ehr_access.platform.ports.records import RecordStorePort, RecordRef
from ehr_access.platform.provider_registry import get_record_store
from ehr_access.modules.access.evaluator import AccessEvaluator
from ehr_access.modules.access_requests.schemas import AccessDecisionOut
from ehr_access.modules.audit.service import AuditService

router = APIRouter()

def evaluator(session: AsyncSession = Depends(get_session), clock: Clock = Depends(get_clock)) -> AccessEvaluator:
    return AccessEvaluator(session, clock)

async def _load_record(records: RecordStorePort, record_id: str) -> RecordRef:
    record = await records.get_record(record_id)
    if record is None:
        raise NotFoundError("Record not found", code="record_not_found")
    return record

# ---- decisions, for other surfaces guarding their own read paths ----

@router.get("/access/patients/{patient_id}", response_model=AccessDecisionOut)
async def check_patient_access(
    patient_id: str,
    principal: Principal = Depends(get_principal),
    ev: AccessEvaluator = Depends(evaluator),
):
    return await ev.decide(principal, patient_id)

@router.get("/access/records/{record_id}", response_model=AccessDecisionOut)
async def check_record_access(
    record_id: str,
    principal: Principal = Depends(get_principal),
    ev: AccessEvaluator = Depends(evaluator),
    records: RecordStorePort = Depends(get_record_store),
):
    record = await _load_record(records, record_id)
    return await ev.decide(principal, record.patient_id, record.id)

# ---- guarded reads ----

@router.get("/patients/{patient_id}/records")
async def read_patient_records(
    patient_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    ev: AccessEvaluator = Depends(evaluator),
    records: RecordStorePort = Depends(get_record_store),
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> dict[str, Any]:
    audit = AuditService(session)
    if not await ev.can_access_all_records(principal, patient_id):
        await audit.denied(principal, "read", "patient_records", patient_id, request=request, occurred_at=clock())
        raise ForbiddenError("No access to this patient's records", code="no_access")
    refs = await records.list_patient_records(patient_id)
    await audit.log(principal, "read", "patient_records", patient_id, request=request, occurred_at=clock())
    await session.commit()
    return {"patient_id": patient_id, "records": [r.data for r in refs]}

@router.get("/records/{record_id}")
async def read_record(
    record_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    ev: AccessEvaluator = Depends(evaluator),
    records: RecordStorePort = Depends(get_record_store),
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> dict[str, Any]:
    record = await _load_record(records, record_id)
    audit = AuditService(session)
    if not await ev.can_access_record(principal, record):
        await audit.denied(principal, "read", "record", record.id, request=request, occurred_at=clock())
        raise ForbiddenError("No access to this record", code="no_access")
    await audit.log(principal, "read", "record", record.id, request=request, occurred_at=clock())
    await session.commit()
    return {"record": record.data}
