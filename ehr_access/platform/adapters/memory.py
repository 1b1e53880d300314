"""In-process directory and record store, used for local runs and tests."""
from ehr_access.core.security import Role
from ehr_access.platform.ports.directory import DirectoryPort, DirectoryUser
from ehr_access.platform.ports.records import RecordStorePort, RecordRef

class InMemoryDirectory(DirectoryPort):
    def __init__(self, users: list[DirectoryUser] | None = None):
        self.users: dict[str, DirectoryUser] = {u.id: u for u in users or []}

    def add(self, user: DirectoryUser) -> DirectoryUser:
        self.users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> DirectoryUser | None:
        return self.users.get(user_id)

    async def find_patient(self, *, email: str | None = None, phone: str | None = None) -> DirectoryUser | None:
        for u in self.users.values():
            if u.role != Role.patient:
                continue
            if email and u.email and u.email.lower() == email.lower():
                return u
            if phone and u.phone == phone:
                return u
        return None

class InMemoryRecordStore(RecordStorePort):
    def __init__(self, records: list[RecordRef] | None = None):
        self.records: dict[str, RecordRef] = {r.id: r for r in records or []}

    def add(self, record: RecordRef) -> RecordRef:
        self.records[record.id] = record
        return record

    async def get_record(self, record_id: str) -> RecordRef | None:
        return self.records.get(record_id)

    async def list_patient_records(self, patient_id: str) -> list[RecordRef]:
        return [r for r in self.records.values() if r.patient_id == patient_id]
