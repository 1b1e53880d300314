import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.core.db import get_session
from ehr_access.core.security import Principal, Role, require_roles
from ehr_access.modules.audit.service import AuditService

router = APIRouter()

class AuditEventOut(BaseModel):
    id: uuid.UUID
    actor_user_id: str | None
    actor_role: str | None
    action: str
    resource_type: str
    resource_id: str
    purpose: str | None
    success: bool
    occurred_at: datetime

    class Config:
        from_attributes = True

@router.get("/audit", response_model=list[AuditEventOut])
async def list_audit(
    principal: Principal = Depends(require_roles(Role.admin)),
    session: AsyncSession = Depends(get_session),
    limit: int = Query(50, ge=1, le=200),
    success: bool | None = None,
):
    return await AuditService(session).recent(limit=limit, success=success)
