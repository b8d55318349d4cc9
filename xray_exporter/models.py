"""
Plain data models shared by the parser, the state store and the collectors.

- StatRow:        one raw record returned by the Xray stats service
- TrafficSample:  a cumulative byte counter, keyed by (type, name, direction)
- OnlineIPRecord: one (user, ip) pair reported online by the last poll
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class StatRow:
    """
    Raw upstream record, e.g. ``user>>>alice>>>traffic>>>uplink = 738059``.

    Produced fresh on every poll and never retained.
    """

    name: str
    value: int


@dataclass(frozen=True)
class TrafficSample:
    """
    Cumulative traffic counter for one entity and direction.

    Typical values:
    - entity_type: "user", "inbound" or "outbound"
    - direction:   "uplink" or "downlink"

    Neither field is validated; whatever upstream reports becomes a label.
    """

    entity_type: str
    entity_name: str
    direction: str
    value: int

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.entity_type, self.entity_name, self.direction)


@dataclass(frozen=True)
class OnlineIPRecord:
    """A user seen online from one IP during the latest completed poll."""

    user: str
    ip: str
