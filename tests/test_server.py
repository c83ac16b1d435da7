import json
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from usagelens.config import Config
from usagelens.server import build_store, create_app
from usagelens.store.memory import InMemoryUsageStore


def _events(body: "str") -> "list[dict[str, Any]]":
    return [
        json.loads(line[len("data: ") :])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


@pytest.fixture()
def items(item_factory: "Callable[..., dict[str, Any]]") -> "list[dict[str, Any]]":
    rows = [
        item_factory(id=str(i), timestamp=f"2025-11-{i + 1:02d}T10:00:00Z")
        for i in range(12)
    ]
    # the same record stored twice
    rows.append(item_factory(id="3", timestamp="2025-11-04T10:00:00Z"))
    return rows


@pytest.fixture()
def client(
    items: "list[dict[str, Any]]",
    registry: "CollectorRegistry",
) -> "Iterator[TestClient]":
    config = Config(demo=True, scan_segments=4, run_timeout=10.0)
    app = create_app(config, store=InMemoryUsageStore(items), registry=registry)
    with TestClient(app) as test_client:
        yield test_client


class TestUsageStream:
    def test_streams_until_complete(self, client: "TestClient") -> "None":
        response = client.get("/api/usage-stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "no-store" in response.headers["cache-control"]

        events = _events(response.text)
        # heartbeat plus one event per segment
        assert len(events) == 5
        assert all(event["demo"] is True for event in events)

        final = events[-1]
        assert final["isComplete"] is True
        assert final["progress"] == 100
        assert final["data"]["totalRecords"] == 12
        assert final["data"]["stats"]["totalRequests"] == 12

        delivered = [r["id"] for e in events for r in e["data"]["newRecords"]]
        assert sorted(delivered, key=int) == [str(i) for i in range(12)]

    def test_since_limits_records(self, client: "TestClient") -> "None":
        response = client.get(
            "/api/usage-stream", params={"since": "2025-11-08T00:00:00Z"}
        )

        final = _events(response.text)[-1]
        # 2025-11-08 through 2025-11-12
        assert final["data"]["totalRecords"] == 5
        assert final["data"]["stats"]["totalRequests"] == 5

    def test_rejects_invalid_since(self, client: "TestClient") -> "None":
        response = client.get("/api/usage-stream", params={"since": "last tuesday"})

        assert response.status_code == 400
        assert response.json()["success"] is False


class TestUsage:
    def test_returns_stats_and_records(self, client: "TestClient") -> "None":
        response = client.get("/api/usage")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["stats"]["totalRequests"] == 12
        assert len(body["data"]["records"]) == 12


class TestExport:
    def test_csv(self, client: "TestClient") -> "None":
        response = client.get("/api/usage/export", params={"format": "csv"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        assert len(response.text.strip().splitlines()) == 13

    def test_text(self, client: "TestClient") -> "None":
        response = client.get("/api/usage/export", params={"format": "text"})

        assert response.status_code == 200
        assert response.text.startswith("API USAGE COST REPORT")

    def test_summary(self, client: "TestClient") -> "None":
        response = client.get("/api/usage/export", params={"format": "summary"})

        assert response.status_code == 200
        assert response.json()["totalRecords"] == 12

    def test_unknown_format(self, client: "TestClient") -> "None":
        response = client.get("/api/usage/export", params={"format": "xml"})

        assert response.status_code == 422


class TestMetricsEndpoint:
    def test_exposes_scan_metrics(self, client: "TestClient") -> "None":
        client.get("/api/usage-stream")

        response = client.get("/metrics/")

        assert response.status_code == 200
        assert 'usagelens_scan_runs_total{outcome="completed"} 1.0' in response.text
        assert "usagelens_duplicates_total 1.0" in response.text
        assert "usagelens_active_sessions 0.0" in response.text


class TestBuildStore:
    def test_demo_without_table(self) -> "None":
        store = build_store(Config())

        assert store.name == "memory"
        assert len(store) > 0

    def test_dynamodb_with_table(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")

        store = build_store(Config(table_name="usage-records"))

        assert store.name == "dynamodb"
