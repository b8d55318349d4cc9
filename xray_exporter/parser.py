"""
Stat name parsing.

Xray names its counters with ">>>"-joined segments:

    user>>>alice>>>traffic>>>uplink
    inbound>>>api>>>traffic>>>downlink
    user>>>alice>>>online

Fields are extracted purely by position. No segment is checked against a
known set of values, so unexpected upstream names show up as-is in the
exported labels.
"""

from typing import Optional

from xray_exporter.models import StatRow, TrafficSample

DELIMITER = ">>>"

USER_PREFIX = f"user{DELIMITER}"


def split_name(name: str) -> list:
    return name.split(DELIMITER)


def parse_traffic(row: StatRow) -> Optional[TrafficSample]:
    """
    Turn a stat row into a TrafficSample.

    Needs at least 4 segments: [0] entity type, [1] entity name,
    [3] direction. Segment [2] (normally "traffic") is ignored.
    Returns None for shorter names; those are simply not traffic stats.
    """
    parts = split_name(row.name)
    if len(parts) < 4:
        return None
    return TrafficSample(
        entity_type=parts[0],
        entity_name=parts[1],
        direction=parts[3],
        value=row.value,
    )


def parse_user(name: str) -> Optional[str]:
    """Return segment [1] of a name with at least 2 segments, else None."""
    parts = split_name(name)
    if len(parts) < 2:
        return None
    return parts[1]


def is_user_stat(name: str) -> bool:
    return name.startswith(USER_PREFIX)


def online_key(user: str) -> str:
    """Name used to query a user's online IP list."""
    return DELIMITER.join(("user", user, "online"))
