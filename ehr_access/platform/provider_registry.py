from ehr_access.core.config import settings
from ehr_access.platform.ports.event_bus import EventBusPort
from ehr_access.platform.adapters.bus_noop import NoopEventBus
from ehr_access.platform.adapters.bus_redis import RedisEventBus
from ehr_access.platform.ports.directory import DirectoryPort
from ehr_access.platform.ports.records import RecordStorePort
from ehr_access.platform.adapters.directory_http import HttpDirectory
from ehr_access.platform.adapters.records_http import HttpRecordStore
from ehr_access.platform.adapters.memory import InMemoryDirectory, InMemoryRecordStore

class ProviderRegistry:
    _event_bus: EventBusPort | None = None
    _directory: DirectoryPort | None = None
    _record_store: RecordStorePort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def directory(cls) -> DirectoryPort:
        if cls._directory is None:
            if settings.DIRECTORY_PROVIDER == "memory":
                cls._directory = InMemoryDirectory()
            else:
                cls._directory = HttpDirectory()
        return cls._directory

    @classmethod
    def record_store(cls) -> RecordStorePort:
        if cls._record_store is None:
            if settings.RECORDS_PROVIDER == "memory":
                cls._record_store = InMemoryRecordStore()
            else:
                cls._record_store = HttpRecordStore()
        return cls._record_store

registry = ProviderRegistry()

# FastAPI dependencies; tests override these
def get_directory() -> DirectoryPort:
    return registry.directory()

def get_record_store() -> RecordStorePort:
    return registry.record_store()
