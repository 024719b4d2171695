"""Short-lived record of webhook delivery ids already handled."""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable

import structlog

log = structlog.get_logger(__name__)


class DeliveryDeduplicator:
    """Process-wide seen-set of delivery ids with a retention window.

    Entries expire ``ttl_seconds`` after they were marked. The set never
    holds more than ``max_entries`` ids; the oldest are evicted first.
    Pruning of expired ids runs independently of requests (see ``run_pruner``).
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._expiry: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._expiry)

    def __contains__(self, delivery_id: str) -> bool:
        expiry = self._expiry.get(delivery_id)
        return expiry is not None and expiry > self._clock()

    def mark(self, delivery_id: str) -> bool:
        """Record a delivery id; return False if it was already seen within the window."""
        if delivery_id in self:
            return False

        self._expiry.pop(delivery_id, None)
        self._expiry[delivery_id] = self._clock() + self.ttl_seconds
        while len(self._expiry) > self.max_entries:
            evicted, _ = self._expiry.popitem(last=False)
            log.debug("delivery_id_evicted", delivery_id=evicted)
        return True

    def forget(self, delivery_id: str) -> None:
        """Drop a delivery id so a redelivery is processed again."""
        self._expiry.pop(delivery_id, None)

    def prune(self) -> int:
        """Remove expired ids and return how many were removed."""
        now = self._clock()
        expired = [delivery_id for delivery_id, expiry in self._expiry.items() if expiry <= now]
        for delivery_id in expired:
            del self._expiry[delivery_id]
        if expired:
            log.debug("delivery_ids_pruned", count=len(expired), remaining=len(self._expiry))
        return len(expired)

    async def run_pruner(self, interval_seconds: float) -> None:
        """Prune forever at a fixed interval; cancel the task to stop."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.prune()
