import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from ehr_access.modules.sharing.models import ShareLink, ShareLinkAccess

class ShareLinkRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> ShareLink:
        obj = ShareLink(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get_by_nonce(self, nonce: str) -> ShareLink | None:
        q = select(ShareLink).where(ShareLink.nonce == nonce)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def increment_access(self, link_id: uuid.UUID, when: datetime) -> int:
        # single statement; concurrent scans each get their own count
        q = (
            update(ShareLink)
            .where(ShareLink.id == link_id)
            .values(access_count=ShareLink.access_count + 1, last_accessed_at=when)
            .returning(ShareLink.access_count)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return res.scalar_one()

    async def record_access(self, link: ShareLink, viewer_id: str, viewer_role: str, when: datetime) -> ShareLinkAccess:
        obj = ShareLinkAccess(
            share_link_id=link.id,
            viewer_id=viewer_id,
            viewer_role=viewer_role,
            patient_id=link.patient_id,
            accessed_at=when,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def list_for_issuer(self, issued_by: str, limit: int = 100, offset: int = 0) -> Sequence[ShareLink]:
        q = select(ShareLink).where(
            ShareLink.issued_by == issued_by,
        ).order_by(ShareLink.issued_at.desc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_accessed_by(self, viewer_id: str, scope_type: str | None = None, limit: int = 100, offset: int = 0):
        """Links a viewer redeemed, with first/last time they did."""
        q = (
            select(
                ShareLink,
                func.min(ShareLinkAccess.accessed_at).label("first_accessed_at"),
                func.max(ShareLinkAccess.accessed_at).label("last_accessed_at"),
            )
            .join(ShareLinkAccess, ShareLinkAccess.share_link_id == ShareLink.id)
            .where(ShareLinkAccess.viewer_id == viewer_id)
            .group_by(ShareLink.id)
            .order_by(func.max(ShareLinkAccess.accessed_at).desc())
            .limit(limit)
            .offset(offset)
        )
        if scope_type is not None:
            q = q.where(ShareLink.scope_type == scope_type)
        res = await self.session.execute(q)
        return res.all()
