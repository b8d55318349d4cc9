"""Shared fixtures: a scriptable StatsSource and isolated settings."""

import os
import sys

import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from xray_exporter.config import Settings
from xray_exporter.models import StatRow
from xray_exporter.stats_client import StatsTimeout, StatsUnavailable


class FakeStatsSource:
    """
    StatsSource driven by plain attributes:

    - rows:        StatRow list returned by fetch_all (filtered by prefix)
    - online:      user -> list of IPs
    - fail_all:    fetch_all raises fail_exc
    - fail_exc:    StatsSourceError subclass raised on failure
    - fail_users:  fetch_online_ips raises for these users
    """

    def __init__(self, rows=None, online=None):
        self.rows = list(rows or [])
        self.online = dict(online or {})
        self.fail_all = False
        self.fail_users = set()
        self.fail_exc = StatsUnavailable
        self.patterns = []
        self.ip_keys = []

    def fetch_all(self, pattern=""):
        self.patterns.append(pattern)
        if self.fail_all:
            raise self.fail_exc("connection refused")
        return [row for row in self.rows if row.name.startswith(pattern)]

    def fetch_online_ips(self, key):
        self.ip_keys.append(key)
        user = key.split(">>>")[1]
        if user in self.fail_users:
            raise self.fail_exc(f"lookup failed for {user}")
        return set(self.online.get(user, []))


def user_rows(*users, value=100):
    rows = []
    for user in users:
        rows.append(StatRow(f"user>>>{user}>>>traffic>>>uplink", value))
        rows.append(StatRow(f"user>>>{user}>>>traffic>>>downlink", value * 2))
    return rows


def make_settings(**overrides):
    values = dict(warmup_seconds=0, traffic_mode="pull")
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def source():
    return FakeStatsSource(rows=user_rows("alice", "bob"))


# Both upstream failure kinds must be handled the same way.
UPSTREAM_ERRORS = pytest.mark.parametrize(
    "fail_exc", [StatsUnavailable, StatsTimeout], ids=["unavailable", "timeout"]
)
