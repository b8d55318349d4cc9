"""
Background poll loop.

This module:
- queries the Xray stats service on a fixed cadence
- discovers the users present in the stat table
- looks up each user's online IPs
- commits the result to the MetricStateStore in one swap

The loop slows down after repeated failures (BACKOFF) and speeds back up
on the first successful poll. Only stop() ends it.

In "background" traffic mode it also upserts the traffic counters; in
"pull" mode those are read at scrape time by exposition.TrafficCollector.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Iterable, List, Optional, Set

from xray_exporter.config import Settings
from xray_exporter.models import OnlineIPRecord, StatRow, TrafficSample
from xray_exporter.parser import USER_PREFIX, is_user_stat, online_key, parse_traffic, parse_user
from xray_exporter.stats_client import StatsSource, StatsSourceError
from xray_exporter.store import MetricStateStore

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    RUNNING = "running"
    BACKOFF = "backoff"
    STOPPED = "stopped"


def next_state(consecutive_failures: int, threshold: int) -> SchedulerState:
    if consecutive_failures >= threshold:
        return SchedulerState.BACKOFF
    return SchedulerState.RUNNING


def next_interval(
    consecutive_failures: int,
    base_interval: float,
    fail_interval: float,
    threshold: int,
) -> float:
    """Delay before the next poll, given how many polls failed in a row."""
    if next_state(consecutive_failures, threshold) is SchedulerState.BACKOFF:
        return fail_interval
    return base_interval


class PollScheduler:
    """
    Owns the poll loop thread and the failure bookkeeping.

    run_cycle() performs exactly one poll and is what tests drive directly;
    start()/stop() wrap it in a background thread.
    """

    def __init__(
        self,
        source: StatsSource,
        store: MetricStateStore,
        settings: Settings,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.source = source
        self.store = store
        self.settings = settings
        self.collect_traffic = settings.traffic_mode == "background"

        self.state = SchedulerState.RUNNING
        self.consecutive_failures = 0
        self.last_success: Optional[float] = None

        self._stop = stop_event if stop_event is not None else threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -----------------------------------------------------------------------
    # One poll
    # -----------------------------------------------------------------------

    def poll_once(self) -> None:
        """
        Fetch, parse and commit one poll.

        Raises StatsSourceError if the stat table query fails; in that case
        nothing but the caller's up=0 is written. Failed per-user IP lookups
        only drop that user from the new presence set.
        """
        pattern = "" if self.collect_traffic else USER_PREFIX
        rows = self.source.fetch_all(pattern)

        traffic = self._parse_traffic(rows) if self.collect_traffic else None
        users = self._discover_users(rows)
        online = self._fetch_online(sorted(users))

        snapshot = self.store.commit(up=True, online=online, traffic=traffic)
        logger.debug(
            "Committed %d online entries for %d users, %d traffic series",
            len(snapshot.online),
            len(users),
            len(snapshot.traffic),
        )

    def _parse_traffic(self, rows: Iterable[StatRow]) -> List[TrafficSample]:
        samples = []
        for row in rows:
            sample = parse_traffic(row)
            if sample is None:
                logger.debug("Skipping non-traffic stat %r", row.name)
                continue
            samples.append(sample)
        return samples

    @staticmethod
    def _discover_users(rows: Iterable[StatRow]) -> Set[str]:
        users = set()
        for row in rows:
            if not is_user_stat(row.name):
                continue
            user = parse_user(row.name)
            if user:
                users.add(user)
        return users

    def _fetch_online(self, users: List[str]) -> List[OnlineIPRecord]:
        workers = min(self.settings.ip_query_workers, len(users))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="xray-ip") as pool:
                per_user = list(pool.map(self._online_for_user, users))
        else:
            per_user = [self._online_for_user(user) for user in users]
        return [record for records in per_user for record in records]

    def _online_for_user(self, user: str) -> List[OnlineIPRecord]:
        try:
            ips = self.source.fetch_online_ips(online_key(user))
        except StatsSourceError as exc:
            logger.warning("Online IP lookup failed for user %s: %s", user, exc)
            return []

        ips = sorted(ips)
        cap = self.settings.max_ips_per_user
        if cap and len(ips) > cap:
            logger.warning(
                "User %s has %d online IPs, exporting the first %d", user, len(ips), cap
            )
            ips = ips[:cap]
        return [OnlineIPRecord(user=user, ip=ip) for ip in ips]

    # -----------------------------------------------------------------------
    # Failure bookkeeping
    # -----------------------------------------------------------------------

    def run_cycle(self) -> bool:
        """Run one poll, update up/backoff state, never raise. Returns success."""
        try:
            self.poll_once()
        except StatsSourceError as exc:
            self._record_failure()
            logger.error("Poll failed (%d in a row): %s", self.consecutive_failures, exc)
            return False
        except Exception:
            self._record_failure()
            logger.exception("Unexpected error during poll (%d in a row)", self.consecutive_failures)
            return False

        if self.state is SchedulerState.BACKOFF:
            logger.info("Xray reachable again after %d failed polls", self.consecutive_failures)
        self.consecutive_failures = 0
        self.last_success = time.time()
        self.state = SchedulerState.RUNNING
        return True

    def _record_failure(self) -> None:
        self.store.mark_down()
        self.consecutive_failures += 1
        state = next_state(self.consecutive_failures, self.settings.fail_threshold)
        if state is SchedulerState.BACKOFF and self.state is not SchedulerState.BACKOFF:
            logger.warning(
                "Backing off to %.1fs polls after %d consecutive failures",
                self.settings.fail_interval_seconds,
                self.consecutive_failures,
            )
        self.state = state

    def current_interval(self) -> float:
        return next_interval(
            self.consecutive_failures,
            self.settings.scrape_interval_seconds,
            self.settings.fail_interval_seconds,
            self.settings.fail_threshold,
        )

    # -----------------------------------------------------------------------
    # Loop
    # -----------------------------------------------------------------------

    def run(self) -> None:
        """
        Main loop: warm up, then poll, sleep, repeat until stopped.

        Sleeps wait on the stop event so stop() takes effect between polls;
        an in-flight poll always finishes first.
        """
        logger.info(
            "Poll loop started (interval %.1fs, backoff %.1fs, traffic mode %s)",
            self.settings.scrape_interval_seconds,
            self.settings.fail_interval_seconds,
            self.settings.traffic_mode,
        )

        if not self._stop.wait(self.settings.warmup_seconds):
            while not self._stop.is_set():
                self.run_cycle()
                if self._stop.wait(self.current_interval()):
                    break

        self.state = SchedulerState.STOPPED
        logger.info("Poll loop stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self.run, name="xray-poll", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        else:
            self.state = SchedulerState.STOPPED
