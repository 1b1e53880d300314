"""Share tokens: signed, self-describing, URL-safe.

A token carries ``{scope_type, scope_id, expires_at_ms, nonce}`` as a compact
JWS, so a scanner needs no lookup to learn what it points at or when it
lapses, and nobody can mint one without the signing key. The nonce comes from
``secrets`` and also keys the server-side access counter.

``decode`` only answers "is this a token we issued"; whether it is still
usable is the caller's decision.
"""
import enum
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from jose import jws
from jose.exceptions import JWSError
from ehr_access.core.config import settings

NONCE_BYTES = 16

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FIELDS = {"st", "sid", "exp", "n"}


class ScopeType(str, enum.Enum):
    record = "record"
    all = "all"


class DecodeError(Exception):
    """The string is not a well-formed token signed by this service."""


@dataclass(frozen=True)
class SharePayload:
    scope_type: ScopeType
    scope_id: str
    expires_at_ms: int
    nonce: str

    @property
    def expires_at(self) -> datetime:
        return from_ms(self.expires_at_ms)

    def is_expired(self, now: datetime) -> bool:
        return to_ms(now) > self.expires_at_ms


def to_ms(dt: datetime) -> int:
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def from_ms(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=ms)


def encode(scope_type: ScopeType | str, scope_id: str, duration_ms: int, *, now: datetime | None = None,
           secret: str | None = None) -> tuple[str, SharePayload]:
    scope_type = ScopeType(scope_type)  # ValueError on anything else
    issued = now or datetime.now(timezone.utc)
    payload = SharePayload(
        scope_type=scope_type,
        scope_id=str(scope_id),
        expires_at_ms=to_ms(issued) + int(duration_ms),
        nonce=secrets.token_urlsafe(NONCE_BYTES),
    )
    claims = {"st": payload.scope_type.value, "sid": payload.scope_id, "exp": payload.expires_at_ms, "n": payload.nonce}
    token = jws.sign(claims, secret or settings.SHARE_TOKEN_SECRET, algorithm=settings.SHARE_TOKEN_ALG)
    return token, payload


def decode(token: str, *, secret: str | None = None) -> SharePayload:
    try:
        raw = jws.verify(token, secret or settings.SHARE_TOKEN_SECRET, algorithms=[settings.SHARE_TOKEN_ALG])
        claims = json.loads(raw)
    except (JWSError, ValueError, TypeError) as e:
        raise DecodeError(str(e)) from e

    if not isinstance(claims, dict) or set(claims) != _FIELDS:
        raise DecodeError("unexpected token fields")
    st, sid, exp, nonce = claims["st"], claims["sid"], claims["exp"], claims["n"]
    if not isinstance(sid, str) or not sid:
        raise DecodeError("bad scope id")
    if not isinstance(exp, int) or isinstance(exp, bool):
        raise DecodeError("bad expiry")
    if not isinstance(nonce, str) or len(nonce) < 22:
        raise DecodeError("bad nonce")
    try:
        scope_type = ScopeType(st)
    except ValueError as e:
        raise DecodeError("bad scope type") from e
    return SharePayload(scope_type=scope_type, scope_id=sid, expires_at_ms=exp, nonce=nonce)
