import logging
from collections import deque
from ehr_access.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Logs events instead of shipping them; keeps the last few for inspection."""

    def __init__(self, keep: int = 100):
        self.recent: deque[dict] = deque(maxlen=keep)

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        self.recent.append({"topic": topic, "key": key, "value": value, "headers": headers or {}})
        log.info("[NOOP BUS] topic=%s key=%s event=%s", topic, key, value.get("event_type"))

    async def close(self) -> None:
        self.recent.clear()
