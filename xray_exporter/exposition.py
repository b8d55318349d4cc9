"""
Prometheus collectors and registry wiring.

- StoreCollector:   serves xray_up and xray_user_ip_online (and, in
                    background mode, xray_traffic_bytes_total) from the
                    MetricStateStore snapshot
- TrafficCollector: pull mode; queries Xray during the scrape itself and
                    serves xray_traffic_bytes_total straight from the answer

Exactly one of the two emits the traffic counters, chosen by TRAFFIC_MODE.
"""

import logging
from typing import Iterator

from prometheus_client import CollectorRegistry
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from xray_exporter.parser import parse_traffic
from xray_exporter.stats_client import StatsSource, StatsSourceError
from xray_exporter.store import MetricStateStore

logger = logging.getLogger(__name__)

# CounterMetricFamily appends the "_total" suffix on exposition.
TRAFFIC_METRIC = "xray_traffic_bytes"
ONLINE_METRIC = "xray_user_ip_online"
UP_METRIC = "xray_up"

TRAFFIC_LABELS = ["type", "name", "direction"]
ONLINE_LABELS = ["name", "ip"]


def _traffic_family() -> CounterMetricFamily:
    return CounterMetricFamily(TRAFFIC_METRIC, "Xray traffic statistics", labels=TRAFFIC_LABELS)


def _online_family() -> GaugeMetricFamily:
    return GaugeMetricFamily(
        ONLINE_METRIC, "User online status per IP (1=online)", labels=ONLINE_LABELS
    )


def _up_family(up: bool) -> GaugeMetricFamily:
    return GaugeMetricFamily(
        UP_METRIC, "Whether Xray is reachable (1=up, 0=down)", value=1 if up else 0
    )


class StoreCollector:
    """Reads one StoreSnapshot per scrape; never touches the upstream."""

    def __init__(self, store: MetricStateStore, include_traffic: bool = False) -> None:
        self.store = store
        self.include_traffic = include_traffic

    def describe(self) -> Iterator[Metric]:
        yield _online_family()
        yield _up_family(False)
        if self.include_traffic:
            yield _traffic_family()

    def collect(self) -> Iterator[Metric]:
        snapshot = self.store.snapshot()

        online = _online_family()
        for record in sorted(snapshot.online, key=lambda r: (r.user, r.ip)):
            online.add_metric([record.user, record.ip], 1)
        yield online

        yield _up_family(snapshot.up)

        if self.include_traffic:
            traffic = _traffic_family()
            for (entity_type, entity_name, direction), value in sorted(snapshot.traffic.items()):
                traffic.add_metric([entity_type, entity_name, direction], value)
            yield traffic


class TrafficCollector:
    """
    Scrape-time traffic counters.

    Every collect() issues one QueryStats call and reports the cumulative
    totals Xray returns. Rows with value 0 are skipped: Xray registers a
    counter before any traffic has passed. An upstream failure yields an
    empty family rather than failing the scrape; xray_up stays the poll
    loop's business.
    """

    def __init__(self, source: StatsSource) -> None:
        self.source = source

    def describe(self) -> Iterator[Metric]:
        # Without this, registering the collector would call collect().
        yield _traffic_family()

    def collect(self) -> Iterator[Metric]:
        traffic = _traffic_family()
        try:
            rows = self.source.fetch_all("")
        except StatsSourceError as exc:
            logger.warning("Traffic query failed during scrape: %s", exc)
            yield traffic
            return

        for row in rows:
            if row.value == 0:
                continue
            sample = parse_traffic(row)
            if sample is None:
                continue
            traffic.add_metric(
                [sample.entity_type, sample.entity_name, sample.direction], sample.value
            )
        yield traffic


def build_registry(
    store: MetricStateStore,
    source: StatsSource,
    traffic_mode: str,
) -> CollectorRegistry:
    """
    Registry for /metrics with the collectors matching the traffic mode.

    A dedicated registry keeps the default process/platform collectors
    out of the exporter's output.
    """
    registry = CollectorRegistry()
    background = traffic_mode == "background"
    registry.register(StoreCollector(store, include_traffic=background))
    if not background:
        registry.register(TrafficCollector(source))
    return registry
