import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.core.clock import Clock, get_clock
from ehr_access.core.db import get_session
from ehr_access.core.security import get_principal, require_roles, Principal, Role
from ehr_access.platform.ports.directory import DirectoryPort
from ehr_access.platform.provider_registry import get_directory
from ehr_access.modules.access_requests.lifecycle import RequestStatus
from ehr_access.modules.access_requests.schemas import (
    AccessRequestCreate, AccessRequestOut, AccessRequestRespond, AccessRequestRevoke,
)
from ehr_access.modules.access_requests.service import AccessRequestService

router = APIRouter()

def svc(
    session: AsyncSession = Depends(get_session),
    directory: DirectoryPort = Depends(get_directory),
    clock: Clock = Depends(get_clock),
) -> AccessRequestService:
    return AccessRequestService(session, directory, clock)

@router.post("", response_model=AccessRequestOut, status_code=201)
async def create_access_request(
    payload: AccessRequestCreate,
    principal: Principal = Depends(get_principal),
    service: AccessRequestService = Depends(svc),
):
    return await service.create(principal, payload)

@router.get("/mine", response_model=list[AccessRequestOut])
async def list_my_requests(
    status: RequestStatus | None = None,
    principal: Principal = Depends(get_principal),
    service: AccessRequestService = Depends(svc),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await service.list_sent(principal, status, limit=limit, offset=offset)

@router.get("/pending", response_model=list[AccessRequestOut])
async def list_pending_requests(
    principal: Principal = Depends(require_roles(Role.patient)),
    service: AccessRequestService = Depends(svc),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await service.list_pending(principal, limit=limit, offset=offset)

@router.get("/granted", response_model=list[AccessRequestOut])
async def list_granted_access(
    status: RequestStatus | None = RequestStatus.approved,
    principal: Principal = Depends(require_roles(Role.patient)),
    service: AccessRequestService = Depends(svc),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await service.list_granted(principal, status, limit=limit, offset=offset)

@router.get("/{request_id}", response_model=AccessRequestOut)
async def get_access_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AccessRequestService = Depends(svc),
):
    return await service.get(principal, request_id)

@router.put("/{request_id}/respond", response_model=AccessRequestOut)
async def respond_to_request(
    request_id: uuid.UUID,
    payload: AccessRequestRespond,
    principal: Principal = Depends(get_principal),
    service: AccessRequestService = Depends(svc),
):
    return await service.respond(principal, request_id, payload.action)

@router.put("/{request_id}/cancel", response_model=AccessRequestOut)
async def cancel_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AccessRequestService = Depends(svc),
):
    return await service.cancel(principal, request_id)

# the row is kept as history; DELETE is an alias for cancel
@router.delete("/{request_id}", response_model=AccessRequestOut)
async def delete_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AccessRequestService = Depends(svc),
):
    return await service.cancel(principal, request_id)

@router.put("/{request_id}/revoke", response_model=AccessRequestOut)
async def revoke_access(
    request_id: uuid.UUID,
    payload: AccessRequestRevoke,
    principal: Principal = Depends(get_principal),
    service: AccessRequestService = Depends(svc),
):
    return await service.revoke(principal, request_id, payload.timing)
