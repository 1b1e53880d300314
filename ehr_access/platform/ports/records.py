from typing import Any, Protocol, runtime_checkable
from pydantic import BaseModel

class RecordRef(BaseModel):
    id: str
    patient_id: str
    # full record document as returned by the record store
    data: dict[str, Any] = {}

@runtime_checkable
class RecordStorePort(Protocol):
    async def get_record(self, record_id: str) -> RecordRef | None: ...

    async def list_patient_records(self, patient_id: str) -> list[RecordRef]: ...
