from fastapi import APIRouter
from ehr_access.modules.access_requests.router import router as access_requests_router
from ehr_access.modules.sharing.router import router as share_links_router, public_router as shared_router
from ehr_access.modules.access.router import router as access_router
from ehr_access.modules.audit.router import router as audit_router

api_router = APIRouter()
api_router.include_router(access_requests_router, prefix="/access-requests", tags=["access-requests"])
api_router.include_router(share_links_router, prefix="/share-links", tags=["share-links"])
api_router.include_router(shared_router, prefix="/shared", tags=["shared"])
api_router.include_router(access_router, tags=["access"])
# access_router carries /access/*, /patients/{id}/records and /records/{id}
api_router.include_router(audit_router, tags=["audit"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
