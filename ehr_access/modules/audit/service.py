import logging
from datetime import datetime
from fastapi import Request
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.core.security import Principal
from ehr_access.modules.audit.models import AuditEvent

log = logging.getLogger("access.audit")

class AuditService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log(self,
                  actor: Principal | None,
                  action: str,
                  resource_type: str,
                  resource_id: str,
                  purpose: str | None = None,
                  request: Request | None = None,
                  success: bool = True,
                  occurred_at: datetime | None = None) -> AuditEvent:
        """Stage an audit row in the current transaction; the caller commits."""
        ev = AuditEvent(
            actor_user_id=actor.user_id if actor else None,
            actor_role=actor.role.value if actor else None,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            purpose=purpose,
            success=success,
            client_ip=(request.client.host if request and request.client else None),
            user_agent=(request.headers.get("user-agent") if request else None),
        )
        if occurred_at is not None:
            ev.occurred_at = occurred_at
        self.session.add(ev)
        await self.session.flush()
        return ev

    async def denied(self, actor: Principal, action: str, resource_type: str, resource_id: str,
                     request: Request | None = None, occurred_at: datetime | None = None) -> None:
        # ownership mismatches are a stale client or a probe; keep a trail of both
        log.warning("Denied %s on %s/%s for user=%s role=%s", action, resource_type, resource_id, actor.user_id, actor.role.value)
        await self.log(actor, action, resource_type, resource_id, purpose="ownership_check",
                       request=request, success=False, occurred_at=occurred_at)
        await self.session.commit()

    async def recent(self, limit: int = 50, success: bool | None = None):
        q = select(AuditEvent)
        if success is not None:
            q = q.where(AuditEvent.success.is_(success))
        q = q.order_by(desc(AuditEvent.occurred_at)).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()
