"""Remember recent webhook delivery ids so redelivered events are skipped."""

from collections import deque

MAX_DELIVERIES = 50


class DuplicateDeliveryGuard:
    """Bounded set of the most recently processed delivery ids."""

    def __init__(self, max_entries: int = MAX_DELIVERIES):
        self._processed: set[str] = set()
        self._queue: deque[str] = deque()
        self._max_entries = max_entries

    def is_duplicate(self, delivery_id: str) -> bool:
        return delivery_id in self._processed

    def register(self, delivery_id: str) -> None:
        if delivery_id in self._processed:
            return
        self._processed.add(delivery_id)
        self._queue.append(delivery_id)
        if len(self._queue) > self._max_entries:
            self._processed.discard(self._queue.popleft())

    def __len__(self) -> int:
        return len(self._queue)
