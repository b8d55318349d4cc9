"""
Xray stats client abstraction.

We support two modes:

1. Real Xray, over the gRPC StatsService API (USE_STATS_STUB=0, default).
2. Stub mode: generate realistic-looking counters and online IPs in-memory.

Both implement the StatsSource protocol, which is all the collectors
depend on:

- fetch_all(pattern)     -> list of StatRow ("" = every stat, otherwise prefix)
- fetch_online_ips(key)  -> set of IP strings for "user>>>NAME>>>online"

Every call is bounded by its own timeout; failures surface as
StatsUnavailable or StatsTimeout.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Dict, List, Optional, Protocol, Set

import grpc

from xray_exporter import stats_proto as pb
from xray_exporter.config import Settings
from xray_exporter.models import StatRow
from xray_exporter.parser import DELIMITER, parse_user

logger = logging.getLogger(__name__)


class StatsSourceError(Exception):
    """Raised when the Xray stats service cannot answer a query."""


class StatsUnavailable(StatsSourceError):
    """Upstream unreachable, refused the call or returned an error status."""


class StatsTimeout(StatsSourceError):
    """A call exceeded its per-call timeout."""


class StatsSource(Protocol):
    def fetch_all(self, pattern: str = "") -> List[StatRow]:
        ...

    def fetch_online_ips(self, key: str) -> Set[str]:
        ...


# ---------------------------------------------------------------------------
# Stub implementation: fake counters for demo purposes
# ---------------------------------------------------------------------------


class StubStatsSource:
    """
    In-memory stand-in for an Xray instance.

    Each fetch_all() call increments every counter by a random amount to
    simulate traffic; fetch_online_ips() returns a random subset of a small
    per-user IP pool, so users come and go between polls.
    """

    USERS = ("alice", "bob", "carol")
    INBOUNDS = ("api", "vless-in")
    OUTBOUNDS = ("direct", "block")

    def __init__(self, seed: Optional[int] = None) -> None:
        self._random = random.Random(seed)
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}

        for kind, names in (
            ("user", self.USERS),
            ("inbound", self.INBOUNDS),
            ("outbound", self.OUTBOUNDS),
        ):
            for name in names:
                for direction in ("uplink", "downlink"):
                    stat = DELIMITER.join((kind, name, "traffic", direction))
                    # Seed counters with some baseline values
                    self._counters[stat] = self._random.randint(1_000_000, 10_000_000)

    def fetch_all(self, pattern: str = "") -> List[StatRow]:
        with self._lock:
            for stat in self._counters:
                self._counters[stat] += self._random.randint(10_000, 100_000)
            return [
                StatRow(name=stat, value=value)
                for stat, value in self._counters.items()
                if stat.startswith(pattern)
            ]

    def fetch_online_ips(self, key: str) -> Set[str]:
        user = parse_user(key)
        if user not in self.USERS:
            return set()
        with self._lock:
            pool = [f"10.0.{self.USERS.index(user)}.{n}" for n in range(1, 5)]
            return set(self._random.sample(pool, self._random.randint(0, 2)))

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Real implementation: Xray gRPC StatsService
# ---------------------------------------------------------------------------


class GrpcStatsSource:
    """
    StatsSource backed by Xray's gRPC API (the `api` section of the Xray
    config, with the StatsService enabled).

    The channel connects lazily; an unreachable Xray shows up as
    StatsUnavailable on the first call rather than at construction.
    """

    def __init__(
        self,
        target: str,
        timeout: float = 3.0,
        channel: Optional[grpc.Channel] = None,
    ) -> None:
        self.target = target
        self.timeout = timeout
        self._channel = channel if channel is not None else grpc.insecure_channel(target)

        self._query_stats = self._channel.unary_unary(
            pb.QUERY_STATS_METHOD,
            request_serializer=pb.QueryStatsRequest.SerializeToString,
            response_deserializer=pb.QueryStatsResponse.FromString,
        )
        self._online_ip_list = self._channel.unary_unary(
            pb.ONLINE_IP_LIST_METHOD,
            request_serializer=pb.GetStatsRequest.SerializeToString,
            response_deserializer=pb.GetStatsOnlineIpListResponse.FromString,
        )

    def fetch_all(self, pattern: str = "") -> List[StatRow]:
        request = pb.QueryStatsRequest(pattern=pattern, reset=False)
        response = self._call("QueryStats", self._query_stats, request)
        return [StatRow(name=stat.name, value=int(stat.value)) for stat in response.stat]

    def fetch_online_ips(self, key: str) -> Set[str]:
        request = pb.GetStatsRequest(name=key, reset=False)
        response = self._call("GetStatsOnlineIpList", self._online_ip_list, request)
        return set(response.ips)

    def close(self) -> None:
        self._channel.close()

    def _call(self, method_name: str, method, request):
        try:
            return method(request, timeout=self.timeout)
        except grpc.RpcError as exc:
            # Errors raised by unary calls are also grpc.Call objects.
            code = exc.code() if hasattr(exc, "code") else None
            if code == grpc.StatusCode.DEADLINE_EXCEEDED:
                raise StatsTimeout(
                    f"{method_name} on {self.target} timed out after {self.timeout}s"
                ) from exc
            details = exc.details() if hasattr(exc, "details") else str(exc)
            raise StatsUnavailable(
                f"{method_name} on {self.target} failed: {code}: {details}"
            ) from exc


# ---------------------------------------------------------------------------
# Public API function used by the entrypoint
# ---------------------------------------------------------------------------


def build_stats_source(settings: Settings) -> StatsSource:
    """
    Main entry point: returns the StatsSource selected by the settings.

    The gRPC channel connects lazily, so this never talks to Xray; an
    unreachable upstream shows up later as failed polls (`xray_up 0`).
    A malformed address is already rejected by Settings.
    """
    if settings.use_stats_stub:
        logger.warning("USE_STATS_STUB is set, serving fake Xray stats")
        return StubStatsSource()

    return GrpcStatsSource(settings.xray_api, timeout=settings.rpc_timeout_seconds)
