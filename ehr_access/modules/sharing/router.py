from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.core.clock import Clock, get_clock
from ehr_access.core.db import get_session
from ehr_access.core.security import get_principal, get_optional_principal, require_roles, Principal, Role
from ehr_access.platform.ports.directory import DirectoryPort
from ehr_access.platform.ports.records import RecordStorePort
from ehr_access.platform.provider_registry import get_directory, get_record_store
from ehr_access.modules.sharing.token_codec import ScopeType
from ehr_access.modules.sharing.schemas import (
    ShareLinkCreate, ShareLinkIssued, ShareLinkOut, Redemption, AccessedLinkOut,
)
from ehr_access.modules.sharing.service import ShareLinkService

router = APIRouter()
public_router = APIRouter()

def svc(
    session: AsyncSession = Depends(get_session),
    directory: DirectoryPort = Depends(get_directory),
    records: RecordStorePort = Depends(get_record_store),
    clock: Clock = Depends(get_clock),
) -> ShareLinkService:
    return ShareLinkService(session, directory, records, clock)

@router.post("/all", response_model=ShareLinkIssued, status_code=201)
async def share_all_records(
    payload: ShareLinkCreate,
    principal: Principal = Depends(get_principal),
    service: ShareLinkService = Depends(svc),
):
    return await service.issue(principal, ScopeType.all, payload.duration)

@router.post("/record/{record_id}", response_model=ShareLinkIssued, status_code=201)
async def share_record(
    record_id: str,
    payload: ShareLinkCreate,
    principal: Principal = Depends(get_principal),
    service: ShareLinkService = Depends(svc),
):
    return await service.issue(principal, ScopeType.record, payload.duration, record_id=record_id)

@router.get("", response_model=list[ShareLinkOut])
async def list_my_links(
    principal: Principal = Depends(require_roles(Role.patient)),
    service: ShareLinkService = Depends(svc),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await service.list_issued(principal, limit=limit, offset=offset)

@router.get("/accessed", response_model=list[AccessedLinkOut])
async def list_accessed_links(
    principal: Principal = Depends(get_principal),
    service: ShareLinkService = Depends(svc),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await service.list_accessed(principal, limit=limit, offset=offset)

# ---- public redemption (no auth required; a bearer token, if sent, records the viewer) ----

@public_router.get("/all/{token}", response_model=Redemption)
async def redeem_all_records_link(
    token: str,
    request: Request,
    viewer: Principal | None = Depends(get_optional_principal),
    service: ShareLinkService = Depends(svc),
):
    return await service.redeem(token, viewer, request=request, expected_scope=ScopeType.all)

@public_router.get("/{token}", response_model=Redemption)
async def redeem_link(
    token: str,
    request: Request,
    viewer: Principal | None = Depends(get_optional_principal),
    service: ShareLinkService = Depends(svc),
):
    return await service.redeem(token, viewer, request=request)
