from ehr_access.core.config import settings
from ehr_access.core.security import Role, parse_role
from ehr_access.platform.ports.directory import DirectoryPort, DirectoryUser
from ehr_access.platform.adapters.upstream_http import BackendClient, unwrap

def _role(value, default: Role | None) -> Role | None:
    if not value:
        return default
    try:
        return parse_role(value)
    except ValueError:
        return None

def _to_user(doc: dict | None, default_role: Role | None = None) -> DirectoryUser | None:
    if not doc:
        return None
    return DirectoryUser(
        id=str(doc.get("_id") or doc.get("id")),
        role=_role(doc.get("role"), default_role),
        email=doc.get("email"),
        phone=doc.get("phoneNumber") or doc.get("phone"),
        first_name=doc.get("firstName"),
        last_name=doc.get("lastName"),
    )
class HttpDirectory(DirectoryPort):
    def __init__(self, client: BackendClient | None = None):
        self.client = client or BackendClient(settings.DIRECTORY_BASE_URL)

    async def get_user(self, user_id: str) -> DirectoryUser | None:
        body = await self.client.get_json(f"/api/auth/users/{user_id}")
        return _to_user(unwrap(body, "user"))

    async def find_patient(self, *, email: str | None = None, phone: str | None = None) -> DirectoryUser | None:
        params = {}
        if email:
            params["email"] = email
        if phone:
            params["phoneNumber"] = phone
        if not params:
            return None
        body = await self.client.get_json("/api/auth/verify-patient", params=params)
        return _to_user(unwrap(body, "user"), default_role=Role.patient)
