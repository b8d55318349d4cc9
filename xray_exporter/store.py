"""
In-memory metric state shared between the poll loop and the HTTP read path.

The store holds one immutable StoreSnapshot. The poll loop is the only
writer: it builds a complete new snapshot and swaps the reference in a
single assignment. Readers (the /metrics collectors) grab the current
reference and never see a half-applied update.

Two update disciplines live side by side:

- traffic counters are upserted by identity; identities missing from a
  poll keep their last value
- online presence is replaced wholesale; anything not in the new set is
  gone after the swap
"""

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Iterable, Mapping, Optional, Tuple

from xray_exporter.models import OnlineIPRecord, TrafficSample

TrafficKey = Tuple[str, str, str]


@dataclass(frozen=True)
class StoreSnapshot:
    """Everything /metrics exposes from the store, as of one commit."""

    traffic: Mapping[TrafficKey, int]
    online: FrozenSet[OnlineIPRecord]
    up: bool

    @classmethod
    def empty(cls) -> "StoreSnapshot":
        return cls(traffic=MappingProxyType({}), online=frozenset(), up=False)

    def is_online(self, user: str, ip: str) -> bool:
        return OnlineIPRecord(user=user, ip=ip) in self.online

    def online_ips(self, user: str) -> FrozenSet[str]:
        return frozenset(record.ip for record in self.online if record.user == user)


class MetricStateStore:
    """Single-writer holder of the current StoreSnapshot."""

    def __init__(self) -> None:
        # Serializes writers only; readers never take it.
        self._write_lock = threading.Lock()
        self._snapshot = StoreSnapshot.empty()

    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    def commit(
        self,
        *,
        up: bool,
        online: Optional[Iterable[OnlineIPRecord]] = None,
        traffic: Optional[Iterable[TrafficSample]] = None,
    ) -> StoreSnapshot:
        """
        Publish the result of one poll as a new snapshot.

        - up:      always written
        - online:  None keeps the current presence set, anything else
                   replaces it entirely (an empty iterable clears it)
        - traffic: upserted by (type, name, direction); None or empty
                   leaves the counters untouched

        All inputs are materialized before the lock is taken, so the lock
        is only held for the merge and the swap.
        """
        new_online = frozenset(online) if online is not None else None
        samples = list(traffic) if traffic is not None else []

        with self._write_lock:
            current = self._snapshot

            if samples:
                merged = dict(current.traffic)
                for sample in samples:
                    merged[sample.identity] = sample.value
                new_traffic: Mapping[TrafficKey, int] = MappingProxyType(merged)
            else:
                new_traffic = current.traffic

            self._snapshot = StoreSnapshot(
                traffic=new_traffic,
                online=new_online if new_online is not None else current.online,
                up=up,
            )
            return self._snapshot

    def mark_down(self) -> StoreSnapshot:
        """Record a failed poll: up=0, everything else untouched."""
        return self.commit(up=False)
