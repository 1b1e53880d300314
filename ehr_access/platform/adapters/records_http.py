from ehr_access.core.config import settings
from ehr_access.platform.ports.records import RecordStorePort, RecordRef
from ehr_access.platform.adapters.upstream_http import BackendClient, unwrap

def _to_ref(doc: dict) -> RecordRef:
    patient = doc.get("patientId")
    if isinstance(patient, dict):  # populated reference
        patient = patient.get("_id") or patient.get("id")
    return RecordRef(id=str(doc.get("_id") or doc.get("id")), patient_id=str(patient), data=doc)

class HttpRecordStore(RecordStorePort):
    def __init__(self, client: BackendClient | None = None):
        self.client = client or BackendClient(settings.RECORDS_BASE_URL)

    async def get_record(self, record_id: str) -> RecordRef | None:
        body = await self.client.get_json(f"/api/records/view/{record_id}")
        doc = unwrap(body, "record")
        return _to_ref(doc) if doc else None

    async def list_patient_records(self, patient_id: str) -> list[RecordRef]:
        body = await self.client.get_json(f"/api/records/{patient_id}")
        docs = unwrap(body, "records") or []
        return [_to_ref(d) for d in docs]
