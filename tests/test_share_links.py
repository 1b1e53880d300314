"""
Share links: issuing, public redemption, expiry and access counting.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from ehr_access.core.config import settings
from ehr_access.core.errors import UpstreamError
from ehr_access.modules.audit.models import AuditEvent
from ehr_access.modules.sharing import token_codec
from ehr_access.modules.sharing.token_codec import ScopeType

from conftest import PATIENT, OTHER_PATIENT, DOCTOR, LAB, START, bearer


async def _share_all(client, api, duration="24h", who=PATIENT):
    return await client.post(f"{api}/share-links/all", json={"duration": duration}, headers=bearer(who))


async def _share_record(client, api, record_id, duration="24h", who=PATIENT):
    return await client.post(f"{api}/share-links/record/{record_id}", json={"duration": duration}, headers=bearer(who))


# ── issue ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("duration,delta", [
    ("4h", timedelta(hours=4)),
    ("24h", timedelta(hours=24)),
    ("7d", timedelta(days=7)),
])
async def test_issue_all_records_link(client, api, duration, delta):
    r = await _share_all(client, api, duration)
    assert r.status_code == 201
    body = r.json()
    assert body["scope_type"] == "all"
    assert body["scope_id"] == PATIENT.user_id
    assert body["duration"] == duration
    assert datetime.fromisoformat(body["expires_at"]) == START + delta
    assert body["share_link"] == f"{settings.PUBLIC_BASE_URL}/shared/all/{body['token']}"


async def test_issue_rejects_unknown_duration(client, api):
    r = await _share_all(client, api, "1y")
    assert r.status_code == 422


async def test_only_patients_issue_links(client, api):
    r = await _share_all(client, api, who=DOCTOR)
    assert r.status_code == 403
    assert r.json()["code"] == "not_patient"


async def test_issue_single_record_link(client, api):
    r = await _share_record(client, api, "rec-1", "4h")
    assert r.status_code == 201
    body = r.json()
    assert body["scope_type"] == "record"
    assert body["scope_id"] == "rec-1"
    assert body["share_link"].endswith(f"/shared/{body['token']}")


async def test_cannot_share_someone_elses_record(client, api):
    r = await _share_record(client, api, "rec-3")
    assert r.status_code == 403


async def test_cannot_share_missing_record(client, api):
    r = await _share_record(client, api, "rec-404")
    assert r.status_code == 404


async def test_patient_lists_issued_links(client, api, clock):
    await _share_all(client, api, "4h")
    clock.advance(hours=1)
    await _share_record(client, api, "rec-2", "7d")
    clock.advance(hours=4)

    r = await client.get(f"{api}/share-links", headers=bearer(PATIENT))
    items = r.json()
    assert [(i["scope_type"], i["expired"]) for i in items] == [("record", False), ("all", True)]


# ── redeem ───────────────────────────────────────────────────────────

async def test_redeem_all_records_counts_each_scan(client, api):
    token = (await _share_all(client, api)).json()["token"]

    r = await client.get(f"{api}/shared/all/{token}")
    assert r.status_code == 200
    body = r.json()
    assert body["access_count"] == 1
    assert body["patient"]["id"] == PATIENT.user_id
    assert body["patient"]["first_name"] == "Pat"
    assert sorted(rec["_id"] for rec in body["records"]) == ["rec-1", "rec-2"]

    r = await client.get(f"{api}/shared/{token}")
    assert r.json()["access_count"] == 2


async def test_concurrent_redemptions_each_get_their_own_count(client, api):
    token = (await _share_all(client, api)).json()["token"]

    first, second = await asyncio.gather(
        client.get(f"{api}/shared/all/{token}"),
        client.get(f"{api}/shared/all/{token}"),
    )
    assert {first.status_code, second.status_code} == {200}
    assert sorted([first.json()["access_count"], second.json()["access_count"]]) == [1, 2]

    r = await client.get(f"{api}/share-links", headers=bearer(PATIENT))
    assert r.json()[0]["access_count"] == 2


async def test_redeem_single_record_link_returns_only_that_record(client, api):
    token = (await _share_record(client, api, "rec-2")).json()["token"]
    r = await client.get(f"{api}/shared/{token}")
    assert r.status_code == 200
    body = r.json()
    assert body["scope_type"] == "record"
    assert [rec["_id"] for rec in body["records"]] == ["rec-2"]


async def test_record_link_is_not_an_all_records_link(client, api):
    token = (await _share_record(client, api, "rec-2")).json()["token"]
    r = await client.get(f"{api}/shared/all/{token}")
    assert r.status_code == 404


async def test_four_hour_link_boundary(client, api, clock):
    token = (await _share_all(client, api, "4h")).json()["token"]

    clock.advance(hours=4, milliseconds=-1)
    r = await client.get(f"{api}/shared/all/{token}")
    assert r.status_code == 200
    assert r.json()["access_count"] == 1

    clock.advance(milliseconds=2)
    r = await client.get(f"{api}/shared/all/{token}")
    assert r.status_code == 401
    assert r.json()["code"] == "link_expired"


async def test_expired_redemption_does_not_count(client, api, clock):
    token = (await _share_all(client, api, "4h")).json()["token"]
    await client.get(f"{api}/shared/all/{token}")
    clock.advance(hours=5)
    await client.get(f"{api}/shared/all/{token}")

    r = await client.get(f"{api}/share-links", headers=bearer(PATIENT))
    assert r.json()[0]["access_count"] == 1


@pytest.mark.parametrize("token", ["garbage", "YWJjLTE3NjcyMjU2MDAwMDAtMC4xMjM0NQ"])
async def test_malformed_token_is_not_found(client, api, token):
    r = await client.get(f"{api}/shared/{token}")
    assert r.status_code == 404
    assert r.json()["code"] == "malformed"


async def test_validly_signed_but_never_issued_token_is_not_found(client, api):
    token, _ = token_codec.encode(ScopeType.all, PATIENT.user_id, 86_400_000, now=START)
    r = await client.get(f"{api}/shared/all/{token}")
    assert r.status_code == 404


async def test_redemption_is_read_only_for_records(client, api, records):
    before = {k: dict(v.data) for k, v in records.records.items()}
    token = (await _share_all(client, api)).json()["token"]
    await client.get(f"{api}/shared/all/{token}")
    assert {k: v.data for k, v in records.records.items()} == before


async def test_redemption_is_audited(client, api, session):
    token = (await _share_all(client, api)).json()["token"]
    await client.get(f"{api}/shared/all/{token}", headers={"user-agent": "qr-scanner/1.0"})

    (ev,) = (await session.execute(select(AuditEvent).where(AuditEvent.action == "redeem"))).scalars().all()
    assert ev.actor_user_id is None
    assert ev.user_agent == "qr-scanner/1.0"
    assert ev.success is True


async def test_signed_in_viewer_sees_links_they_opened(client, api, clock):
    token = (await _share_all(client, api, "7d")).json()["token"]
    other = (await _share_all(client, api, "7d", who=OTHER_PATIENT)).json()["token"]

    await client.get(f"{api}/shared/all/{token}", headers=bearer(DOCTOR))
    clock.advance(hours=2)
    await client.get(f"{api}/shared/all/{token}", headers=bearer(DOCTOR))
    await client.get(f"{api}/shared/all/{token}")  # anonymous scan still counts
    await client.get(f"{api}/shared/all/{other}", headers=bearer(LAB))

    r = await client.get(f"{api}/share-links/accessed", headers=bearer(DOCTOR))
    (item,) = r.json()
    assert item["patient_id"] == PATIENT.user_id
    assert item["access_count"] == 3
    assert datetime.fromisoformat(item["shared_at"]) == START
    assert datetime.fromisoformat(item["last_accessed_at"]) == START + timedelta(hours=2)
    assert item["expired"] is False


async def test_bad_bearer_on_public_route_is_rejected(client, api):
    token = (await _share_all(client, api)).json()["token"]
    r = await client.get(f"{api}/shared/all/{token}", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


async def test_end_to_end_share_all_link(client, api, clock):
    issued = (await _share_all(client, api, "24h")).json()
    token = issued["token"]

    first = await client.get(f"{api}/shared/all/{token}")
    assert first.json()["access_count"] == 1
    assert first.json()["patient"]["id"] == PATIENT.user_id

    second = await client.get(f"{api}/shared/all/{token}")
    assert second.json()["access_count"] == 2

    clock.advance(hours=24, milliseconds=1)
    third = await client.get(f"{api}/shared/all/{token}")
    assert third.status_code == 401


async def test_upstream_failure_rolls_back_the_count(client, api, records, monkeypatch):
    token = (await _share_all(client, api)).json()["token"]

    async def down(patient_id):
        raise UpstreamError("Upstream request timed out", code="upstream_timeout")

    monkeypatch.setattr(records, "list_patient_records", down)
    r = await client.get(f"{api}/shared/all/{token}")
    assert r.status_code == 503

    monkeypatch.undo()
    r = await client.get(f"{api}/shared/all/{token}")
    assert r.json()["access_count"] == 1
