"""
Access decisions for record reads, including scheduled revocations.
"""

from sqlalchemy import select

from ehr_access.modules.access.evaluator import AccessEvaluator
from ehr_access.modules.access_requests.models import AccessRequest
from ehr_access.modules.access_requests.schemas import AccessRequestCreate
from ehr_access.modules.access_requests.service import AccessRequestService
from ehr_access.modules.access_requests.lifecycle import ResponseAction, RevokeTiming
from ehr_access.platform.ports.records import RecordRef

from conftest import PATIENT, OTHER_PATIENT, DOCTOR, LAB, ADMIN, bearer

REC_1 = RecordRef(id="rec-1", patient_id="pat-1")


async def _approved(session, directory, clock, requester=DOCTOR):
    svc = AccessRequestService(session, directory, clock)
    req = await svc.create(requester, AccessRequestCreate(patient_id=PATIENT.user_id))
    await svc.respond(PATIENT, req.id, ResponseAction.approve)
    return svc, req


async def test_owner_always_has_access(session, clock):
    ev = AccessEvaluator(session, clock)
    assert await ev.can_access_all_records(PATIENT, PATIENT.user_id)
    assert await ev.can_access_record(PATIENT, REC_1)
    assert not await ev.can_access_record(OTHER_PATIENT, REC_1)


async def test_pending_request_grants_nothing(session, directory, clock):
    svc = AccessRequestService(session, directory, clock)
    await svc.create(DOCTOR, AccessRequestCreate(patient_id=PATIENT.user_id))
    ev = AccessEvaluator(session, clock)
    assert not await ev.can_access_all_records(DOCTOR, PATIENT.user_id)


async def test_approved_request_grants_all_records(session, directory, clock):
    await _approved(session, directory, clock)
    ev = AccessEvaluator(session, clock)
    assert await ev.can_access_all_records(DOCTOR, PATIENT.user_id)
    assert await ev.can_access_record(DOCTOR, REC_1)
    assert not await ev.can_access_all_records(LAB, PATIENT.user_id)
    assert not await ev.can_access_all_records(DOCTOR, OTHER_PATIENT.user_id)


async def test_immediate_revoke_takes_effect_in_the_same_millisecond(session, directory, clock):
    svc, req = await _approved(session, directory, clock)
    await svc.revoke(PATIENT, req.id, RevokeTiming.immediate)
    ev = AccessEvaluator(session, clock)
    assert not await ev.can_access_record(DOCTOR, REC_1)


async def test_scheduled_revoke_is_honoured_without_a_write(session, directory, clock):
    svc, req = await _approved(session, directory, clock)
    await svc.revoke(PATIENT, req.id, RevokeTiming.h4)
    ev = AccessEvaluator(session, clock)

    assert await ev.can_access_record(DOCTOR, REC_1)
    clock.advance(hours=4, milliseconds=-1)
    assert await ev.can_access_record(DOCTOR, REC_1)
    clock.advance(milliseconds=1)
    assert not await ev.can_access_record(DOCTOR, REC_1)

    # evaluation is read-only: the stored row still says approved
    row = (await session.execute(select(AccessRequest))).scalar_one()
    assert row.status == "approved"


async def test_decision_endpoints(client, api, records):
    r = await client.get(f"{api}/access/patients/{PATIENT.user_id}", headers=bearer(PATIENT))
    assert r.json() == {"allowed": True, "subject_id": "pat-1", "patient_id": "pat-1", "record_id": None, "basis": "owner"}

    r = await client.get(f"{api}/access/records/rec-1", headers=bearer(DOCTOR))
    assert r.json()["allowed"] is False
    assert r.json()["basis"] == "none"

    r = await client.get(f"{api}/access/records/rec-404", headers=bearer(DOCTOR))
    assert r.status_code == 404


async def test_guarded_record_reads(client, api):
    r = await client.get(f"{api}/patients/{PATIENT.user_id}/records", headers=bearer(DOCTOR))
    assert r.status_code == 403
    assert r.json()["code"] == "no_access"

    r = await client.get(f"{api}/records/rec-1", headers=bearer(PATIENT))
    assert r.status_code == 200
    assert r.json()["record"]["title"] == "Blood panel"


async def test_end_to_end_standing_access(client, api):
    r = await client.post(f"{api}/access-requests", json={"patientId": PATIENT.user_id, "message": "need access"},
                          headers=bearer(DOCTOR))
    assert r.status_code == 201

    pending = (await client.get(f"{api}/access-requests/pending", headers=bearer(PATIENT))).json()
    assert len(pending) == 1
    assert pending[0]["requester_id"] == DOCTOR.user_id
    assert pending[0]["message"] == "need access"

    r = await client.put(f"{api}/access-requests/{pending[0]['id']}/respond", json={"action": "approve"},
                         headers=bearer(PATIENT))
    assert r.status_code == 200

    r = await client.get(f"{api}/access/patients/{PATIENT.user_id}", headers=bearer(DOCTOR))
    assert r.json()["allowed"] is True
    assert r.json()["basis"] == "standing_grant"
    r = await client.get(f"{api}/patients/{PATIENT.user_id}/records", headers=bearer(DOCTOR))
    assert len(r.json()["records"]) == 2

    r = await client.put(f"{api}/access-requests/{pending[0]['id']}/revoke", json={"timing": "immediate"},
                         headers=bearer(PATIENT))
    assert r.status_code == 200

    r = await client.get(f"{api}/access/patients/{PATIENT.user_id}", headers=bearer(DOCTOR))
    assert r.json()["allowed"] is False

    r = await client.post(f"{api}/access-requests", json={"patientId": PATIENT.user_id}, headers=bearer(DOCTOR))
    assert r.status_code == 201


async def test_scheduled_revocation_over_http(client, api, clock):
    req = (await client.post(f"{api}/access-requests", json={"patientId": PATIENT.user_id}, headers=bearer(DOCTOR))).json()
    await client.put(f"{api}/access-requests/{req['id']}/respond", json={"action": "approve"}, headers=bearer(PATIENT))
    await client.put(f"{api}/access-requests/{req['id']}/revoke", json={"timing": "4h"}, headers=bearer(PATIENT))

    r = await client.get(f"{api}/records/rec-1", headers=bearer(DOCTOR))
    assert r.status_code == 200

    clock.advance(hours=4)
    r = await client.get(f"{api}/records/rec-1", headers=bearer(DOCTOR))
    assert r.status_code == 403


async def test_denied_reads_show_up_in_the_audit_trail(client, api):
    await client.get(f"{api}/patients/{PATIENT.user_id}/records", headers=bearer(LAB))

    r = await client.get(f"{api}/audit", params={"success": "false"}, headers=bearer(ADMIN))
    assert r.status_code == 200
    (ev,) = r.json()
    assert ev["actor_user_id"] == LAB.user_id
    assert ev["resource_type"] == "patient_records"
    assert ev["resource_id"] == PATIENT.user_id

    r = await client.get(f"{api}/audit", headers=bearer(DOCTOR))
    assert r.status_code == 403
