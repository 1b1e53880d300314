from typing import Protocol, runtime_checkable
from pydantic import BaseModel
from ehr_access.core.security import Role

class DirectoryUser(BaseModel):
    id: str
    role: Role | None = None
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None

@runtime_checkable
class DirectoryPort(Protocol):
    async def get_user(self, user_id: str) -> DirectoryUser | None: ...

    async def find_patient(self, *, email: str | None = None, phone: str | None = None) -> DirectoryUser | None: ...
