from email.utils import formatdate

import pytest
from fastapi.testclient import TestClient

from repofeed.api import main as api_main
from repofeed.api.dependencies import engine_dependency, settings_dependency
from repofeed.api.telemetry import Telemetry
from repofeed.gitlab import GitLabAPIError
from repofeed.registry import AggregationEngine


@pytest.fixture
def client(settings, gitlab, monkeypatch):
    monkeypatch.setattr(api_main, "telemetry", Telemetry())
    api_main.app.dependency_overrides[settings_dependency] = lambda: settings
    api_main.app.dependency_overrides[engine_dependency] = lambda: AggregationEngine(
        settings, client=gitlab
    )
    yield TestClient(api_main.app)
    api_main.app.dependency_overrides.clear()


@pytest.fixture
def published(gitlab):
    repo = gitlab.add_repository("acme/lib", activity="2024-01-01T00:00:00Z")
    gitlab.add_ref(repo, "main", {"name": "acme/lib"})
    gitlab.add_ref(repo, "1.2.0", {"name": "acme/lib"}, tag=True)
    return repo


def test_health(client) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_packages_served_with_cache_headers(client, published, settings) -> None:
    response = client.get("/packages.json")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    assert response.headers["cache-control"] == "max-age=0"
    mtime = int(settings.packages_file.stat().st_mtime)
    assert response.headers["last-modified"] == formatdate(mtime, usegmt=True)
    assert set(response.json()["packages"]["acme/lib"]) == {"dev-main", "1.2.0", "dev-1.2.0"}


def test_if_modified_since_short_circuits(client, published, gitlab) -> None:
    first = client.get("/packages.json")
    gitlab.calls.clear()

    second = client.get(
        "/packages.json", headers={"If-Modified-Since": first.headers["last-modified"]}
    )

    assert second.status_code == 304
    assert second.content == b""
    assert gitlab.calls["list_branches"] == 0
    assert gitlab.calls["get_file"] == 0


def test_stale_if_modified_since_gets_body(client, published) -> None:
    response = client.get(
        "/packages.json", headers={"If-Modified-Since": "Mon, 01 Jan 2001 00:00:00 GMT"}
    )

    assert response.status_code == 200
    assert "acme/lib" in response.json()["packages"]


def test_malformed_if_modified_since_is_ignored(client, published) -> None:
    response = client.get("/packages.json", headers={"If-Modified-Since": "yesterday"})

    assert response.status_code == 200


def test_force_parameter_rebuilds(client, published, settings) -> None:
    client.get("/packages.json")
    client.get("/packages.json?force=1")

    snapshot = client.get("/telemetry").json()
    assert snapshot["builds"] == 2
    assert snapshot["rebuilds"] == 2
    assert snapshot["served"] == 2
    assert snapshot["last_build"]["forced"] is True
    assert snapshot["last_build"]["package_count"] == 1


def test_unforced_request_reuses_index(client, published) -> None:
    client.get("/packages.json")
    client.get("/packages.json")

    snapshot = client.get("/telemetry").json()
    assert snapshot["rebuilds"] == 1
    assert snapshot["last_build"]["rebuilt"] is False
    assert snapshot["last_build"]["repository_count"] == 1


def test_missing_configuration_returns_500(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("REPOFEED_CONFIG_PATH", str(tmp_path / "missing.toml"))
    client = TestClient(api_main.app)

    response = client.get("/packages.json")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("text/plain")
    assert "missing" in response.text


def test_gitlab_outage_returns_502(settings, monkeypatch) -> None:
    class Down:
        def iter_projects(self):
            raise GitLabAPIError("503 Service Unavailable", status_code=503)

    monkeypatch.setattr(api_main, "telemetry", Telemetry())
    api_main.app.dependency_overrides[settings_dependency] = lambda: settings
    api_main.app.dependency_overrides[engine_dependency] = lambda: AggregationEngine(
        settings, client=Down()
    )
    try:
        response = TestClient(api_main.app).get("/packages.json")
        snapshot = api_main.telemetry.snapshot()
    finally:
        api_main.app.dependency_overrides.clear()

    assert response.status_code == 502
    assert snapshot["failures"] == 1
    assert snapshot["last_build"]["ok"] is False
    assert "503" in snapshot["last_build"]["error"]


def test_telemetry_can_be_disabled(make_settings, gitlab, monkeypatch) -> None:
    settings = make_settings()
    settings.telemetry_enabled = False
    api_main.app.dependency_overrides[settings_dependency] = lambda: settings
    try:
        response = TestClient(api_main.app).get("/telemetry")
    finally:
        api_main.app.dependency_overrides.clear()

    assert response.status_code == 404
