import logging
from collections import OrderedDict
from typing import Optional

logger = logging.getLogger("matrix_human_bot.dedupe")

DEFAULT_CAPACITY = 1000


class EventDedupeWindow:
    """Bounded, insertion-ordered set of recently seen Matrix event IDs.

    Eviction is FIFO: once the window holds more than ``capacity`` IDs the
    oldest inserted ones are dropped, regardless of how recently they were
    looked up. Memory stays bounded without any wall-clock expiry, at the cost
    of forgetting IDs older than the last ``capacity`` insertions.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0; got {capacity}")
        self.capacity = capacity
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def has(self, event_id: str) -> bool:
        return event_id in self._seen

    def add(self, event_id: str) -> None:
        self._seen[event_id] = None

    def evict_if_over_capacity(self) -> int:
        """Drop the oldest IDs until the window fits its capacity.

        Returns the number of IDs removed.
        """
        overflow = len(self._seen) - self.capacity
        for _ in range(max(overflow, 0)):
            self._seen.popitem(last=False)
        if overflow > 0:
            logger.debug("Evicted old event IDs", extra={"evicted": overflow, "size": len(self._seen)})
        return max(overflow, 0)

    def check_and_add(self, event_id: Optional[str]) -> bool:
        """Record ``event_id`` and return True if it had not been seen before.

        Empty IDs are never recorded and always return False.
        """
        if not event_id:
            return False
        if event_id in self._seen:
            logger.debug("Duplicate Matrix event detected", extra={"event_id": event_id})
            return False
        self.add(event_id)
        self.evict_if_over_capacity()
        return True

    def clear(self) -> None:
        self._seen.clear()
