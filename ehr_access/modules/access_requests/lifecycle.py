"""Status rules for access requests.

Time-based transitions (a pending request running past its deadline, a
scheduled revocation coming due) are never waited on by a background job.
``effective_status`` recomputes them from the stored row and a clock reading,
and every read and write path goes through it.
"""
import enum
from datetime import datetime, timedelta


class RequestStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    denied = "denied"
    cancelled = "cancelled"
    revoked = "revoked"


class ResponseAction(str, enum.Enum):
    approve = "approve"
    deny = "deny"


class RevokeTiming(str, enum.Enum):
    immediate = "immediate"
    h4 = "4h"
    h8 = "8h"


ACTIVE_STATUSES = frozenset({RequestStatus.pending, RequestStatus.approved})

REVOKE_OFFSETS = {
    RevokeTiming.immediate: timedelta(0),
    RevokeTiming.h4: timedelta(hours=4),
    RevokeTiming.h8: timedelta(hours=8),
}

VALID_NEXT = {
    RequestStatus.pending: {RequestStatus.approved, RequestStatus.denied, RequestStatus.cancelled},
    RequestStatus.approved: {RequestStatus.revoked},
    RequestStatus.denied: set(),
    RequestStatus.cancelled: set(),
    RequestStatus.revoked: set(),
}


def is_past_deadline(req, now: datetime) -> bool:
    return now > req.expires_at


def is_revocation_due(req, now: datetime) -> bool:
    return req.revocation_effective_at is not None and now >= req.revocation_effective_at


def effective_status(req, now: datetime) -> RequestStatus:
    stored = RequestStatus(req.status)
    if stored is RequestStatus.pending and is_past_deadline(req, now):
        return RequestStatus.denied
    if stored is RequestStatus.approved and is_revocation_due(req, now):
        return RequestStatus.revoked
    return stored


def is_expired(req, now: datetime) -> bool:
    """True when the request was (or now would be) denied by running out of time."""
    if req.auto_expired:
        return True
    return RequestStatus(req.status) is RequestStatus.pending and is_past_deadline(req, now)


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in VALID_NEXT[current]
