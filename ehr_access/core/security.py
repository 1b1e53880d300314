import enum
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from ehr_access.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

class Role(str, enum.Enum):
    patient = "patient"
    doctor = "doctor"
    lab_assistant = "lab_assistant"
    admin = "admin"

PROVIDER_ROLES = frozenset({Role.doctor, Role.lab_assistant})

# role spellings used by the web client
_ROLE_ALIASES = {"labassistant": Role.lab_assistant}

def parse_role(value: str | None) -> Role:
    raw = (value or "").strip().lower()
    if raw in _ROLE_ALIASES:
        return _ROLE_ALIASES[raw]
    return Role(raw)

class Principal(BaseModel):
    user_id: str
    role: Role
    email: str | None = None

    @property
    def is_provider(self) -> bool:
        return self.role in PROVIDER_ROLES

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

def principal_from_token(token: str) -> Principal:
    data = _decode_token(token)
    user_id = data.get("sub") or data.get("user_id") or data.get("_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    try:
        role = parse_role(data.get("role"))
    except ValueError:
        raise HTTPException(status_code=401, detail="Token carries an unknown role")
    return Principal(user_id=str(user_id), role=role, email=data.get("email"))

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")
    return principal_from_token(creds.credentials)

async def get_optional_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal | None:
    # public endpoints: an absent token is fine, a bad one is not
    if creds is None:
        return None
    return principal_from_token(creds.credentials)

def require_roles(*allowed: Role):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return principal
    return dep
