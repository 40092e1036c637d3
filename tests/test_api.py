"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from corecatalog.main import create_app

from conftest import BASE, CATALOG_URL, RBF_BYTES, publish_default_catalog


@pytest.fixture
def client(config, platform):
    app = create_app(config, platform)
    with TestClient(app) as client:
        yield client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestCatalogEndpoints:
    def test_create_and_list(self, client, server):
        publish_default_catalog(server)

        response = client.post("/catalogs", json={"url": CATALOG_URL, "priority": 1})

        assert response.status_code == 201
        created = response.json()
        assert created["uniqueName"] == "test"
        assert "json" not in created
        assert [c["id"] for c in client.get("/catalogs").json()] == [created["id"]]

    def test_get_catalog(self, client, server):
        publish_default_catalog(server)
        catalog_id = client.post("/catalogs", json={"url": CATALOG_URL}).json()["id"]

        body = client.get(f"/catalogs/{catalog_id}").json()

        assert body["catalog"]["cores"]["_url"] == f"{BASE}/cores.json"
        assert body["catalog"]["cores"]["nes"]["uniqueName"] == "nes"

    def test_unknown_catalog(self, client):
        assert client.get("/catalogs/99").status_code == 404
        assert client.post("/catalogs/99/install").status_code == 404

    def test_invalid_catalog(self, client, server):
        server.documents[CATALOG_URL] = {"name": "no"}

        response = client.post("/catalogs", json={"url": CATALOG_URL})

        assert response.status_code == 422

    def test_unreachable_catalog(self, client):
        assert client.post("/catalogs", json={"url": CATALOG_URL}).status_code == 502

    def test_duplicate_catalog(self, client, server):
        publish_default_catalog(server)
        client.post("/catalogs", json={"url": CATALOG_URL})

        assert client.post("/catalogs", json={"url": CATALOG_URL}).status_code == 409

    def test_check_and_updates(self, client, server):
        publish_default_catalog(server)
        catalog_id = client.post("/catalogs", json={"url": CATALOG_URL}).json()["id"]

        assert client.post(f"/catalogs/{catalog_id}/check").json() == {"updateAvailable": False}
        assert client.get(f"/catalogs/{catalog_id}/updates").json()["cores"] == {}

        publish_default_catalog(server, version="2")
        assert client.post("/catalogs/check").json() == {"updateAvailable": True}
        assert client.get("/catalogs").json()[0]["updatePending"] is True


class TestInstallEndpoints:
    def test_install(self, client, server):
        publish_default_catalog(server)
        catalog_id = client.post("/catalogs", json={"url": CATALOG_URL}).json()["id"]

        report = client.post(f"/catalogs/{catalog_id}/install").json()

        assert report["catalogId"] == catalog_id
        assert [c["uniqueName"] for c in report["cores"]] == ["nes"]
        assert report["cores"][0]["rbfPath"].endswith("nes.rbf")
        assert client.get(f"/catalogs/{catalog_id}/state").json()["state"] == "idle"

    def test_install_selection(self, client, server):
        publish_default_catalog(server)
        catalog_id = client.post("/catalogs", json={"url": CATALOG_URL}).json()["id"]

        report = client.post(f"/catalogs/{catalog_id}/install", json={"systems": ["nes"], "cores": []}).json()

        assert report["cores"] == []
        assert [s["uniqueName"] for s in report["systems"]] == ["nes"]

    def test_integrity_failure(self, client, server):
        publish_default_catalog(server)
        catalog_id = client.post("/catalogs", json={"url": CATALOG_URL}).json()["id"]
        server.blobs[f"{BASE}/files/nes.rbf"] = b"x" * len(RBF_BYTES)

        response = client.post(f"/catalogs/{catalog_id}/install")

        assert response.status_code == 502
        assert "mismatch" in response.json()["detail"]

    def test_update_without_pending(self, client, server):
        publish_default_catalog(server)
        catalog_id = client.post("/catalogs", json={"url": CATALOG_URL}).json()["id"]

        assert client.post(f"/catalogs/{catalog_id}/update").status_code == 409

    def test_platform_upgrade_without_release(self, client, server):
        publish_default_catalog(server)
        catalog_id = client.post("/catalogs", json={"url": CATALOG_URL}).json()["id"]

        assert client.post(f"/catalogs/{catalog_id}/platform-upgrade").json() == {
            "upgraded": False,
            "cancelled": False,
        }
