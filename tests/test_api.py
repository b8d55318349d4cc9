import threading
import time

import pytest
from fastapi.testclient import TestClient
from prometheus_client.parser import text_string_to_metric_families

from conftest import FakeStatsSource, make_settings, user_rows
from xray_exporter.api import create_app


@pytest.fixture
def app():
    source = FakeStatsSource(rows=user_rows("alice"), online={"alice": ["1.2.3.4"]})
    return create_app(make_settings(), source)


def test_metrics_endpoint_after_poll(app):
    # No `with`: lifespan (and the poll thread) stays off, cycles are driven by hand.
    client = TestClient(app)
    app.state.scheduler.run_cycle()

    resp = client.get("/metrics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    families = {f.name: f for f in text_string_to_metric_families(resp.text)}
    online = [(s.labels, s.value) for s in families["xray_user_ip_online"].samples]
    assert online == [({"name": "alice", "ip": "1.2.3.4"}, 1.0)]
    assert [s.value for s in families["xray_up"].samples] == [1.0]
    assert families["xray_traffic_bytes"].samples


def test_metrics_endpoint_survives_upstream_outage(app):
    client = TestClient(app)
    app.state.scheduler.run_cycle()
    app.state.source.fail_all = True
    app.state.scheduler.run_cycle()

    resp = client.get("/metrics")

    assert resp.status_code == 200
    assert "xray_up 0.0" in resp.text
    # last known presence is still served
    assert 'name="alice"' in resp.text


def test_health_reports_scheduler_state(app):
    client = TestClient(app)

    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["last_success"] is None

    app.state.scheduler.run_cycle()
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["state"] == "running"
    assert data["online_entries"] == 1
    assert data["traffic_mode"] == "pull"
    assert data["last_success"] is not None


def test_lifespan_starts_and_stops_poll_loop():
    source = FakeStatsSource(rows=user_rows("alice"), online={"alice": ["1.2.3.4"]})
    app = create_app(make_settings(scrape_interval_seconds=0.01), source)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200

    assert app.state.scheduler.state.value == "stopped"


class SlowClosingSource(FakeStatsSource):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.events = []
        self.lookup_started = threading.Event()

    def fetch_online_ips(self, key):
        self.lookup_started.set()
        time.sleep(0.2)
        ips = super().fetch_online_ips(key)
        self.events.append(("lookup", key))
        return ips

    def close(self):
        self.events.append(("close", None))


def test_shutdown_closes_source_after_inflight_poll():
    users = [f"u{n}" for n in range(4)]
    source = SlowClosingSource(rows=user_rows(*users))
    app = create_app(make_settings(), source)

    with TestClient(app):
        assert source.lookup_started.wait(5)

    # every lookup of the running poll happened before the channel closed
    assert source.events[-1] == ("close", None)
    assert [e for e in source.events if e[0] == "lookup"] == [
        ("lookup", f"user>>>{user}>>>online") for user in users
    ]
