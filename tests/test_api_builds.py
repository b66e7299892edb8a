import pytest
from fastapi.testclient import TestClient

from rigshare.config import DATA_DIR, Settings
from rigshare.main import create_app


AUTH_U1 = {"X-User-Id": "U1"}
AUTH_U2 = {"X-User-Id": "U2"}

GAMING_PAYLOAD = {
    "name": "Gaming 2024",
    "isPublic": True,
    "selections": [
        {"category": "CPU", "componentId": "C1", "quantity": 1},
        {"category": "GPU", "componentId": "C2", "quantity": 1},
    ],
}


@pytest.fixture
def client(db_path, catalog, users):
    app = create_app(Settings(db_path=db_path, build_events=True))
    return TestClient(app)


def _create(client, payload=None, headers=AUTH_U1):
    resp = client.post("/api/builds", json=payload or GAMING_PAYLOAD, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def test_create_returns_composed_build(client):
    data = _create(client)

    assert data["totalPrice"] == 444000
    assert data["isPublic"] is True
    assert data["owner"] == {"id": "U1", "displayName": "Alice Smith"}
    assert data["components"][0]["category"] == "CPU"
    assert data["components"][0]["component"]["id"] == "C1"
    assert data["components"][0]["component"]["image"] == "https://img.example/c1.png"
    assert data["components"][1]["quantity"] == 1
    assert "createdAt" in data and "updatedAt" in data


def test_create_without_identity_is_unauthenticated(client):
    resp = client.post("/api/builds", json=GAMING_PAYLOAD)
    assert resp.status_code == 401
    assert resp.json()["kind"] == "Unauthenticated"


def test_unknown_user_is_treated_as_anonymous(client):
    resp = client.post("/api/builds", json=GAMING_PAYLOAD, headers={"X-User-Id": "ghost"})
    assert resp.status_code == 401


def test_create_with_missing_components(client):
    payload = dict(GAMING_PAYLOAD, selections=[{"category": "CPU", "componentId": "X1", "quantity": 1}])
    resp = client.post("/api/builds", json=payload, headers=AUTH_U1)

    assert resp.status_code == 422
    body = resp.json()
    assert body["kind"] == "ComponentsNotFound"
    assert body["detail"] == {"missingIds": ["X1"]}


def test_create_with_short_name(client):
    resp = client.post("/api/builds", json=dict(GAMING_PAYLOAD, name="ab"), headers=AUTH_U1)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidArgument"


def test_malformed_body_maps_to_invalid_argument(client):
    payload = dict(GAMING_PAYLOAD, selections=[{"category": "CPU", "componentId": "C1", "quantity": 0}])
    resp = client.post("/api/builds", json=payload, headers=AUTH_U1)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidArgument"


def test_oversized_quantity_maps_to_invalid_argument(client):
    payload = dict(GAMING_PAYLOAD, selections=[{"category": "CPU", "componentId": "C1", "quantity": 10**18}])
    resp = client.post("/api/builds", json=payload, headers=AUTH_U1)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidArgument"
    assert client.get("/api/builds/my", headers=AUTH_U1).json()["data"]["total"] == 0


def test_private_build_visibility(client):
    build = _create(client, dict(GAMING_PAYLOAD, isPublic=False))

    assert client.get(f"/api/builds/{build['id']}").status_code == 403
    assert client.get(f"/api/builds/{build['id']}", headers=AUTH_U2).status_code == 403
    assert client.get(f"/api/builds/{build['id']}", headers=AUTH_U1).status_code == 200
    assert client.get("/api/builds/nope").status_code == 404


def test_update_replaces_components(client):
    build = _create(client)

    resp = client.put(
        f"/api/builds/{build['id']}",
        json={"selections": [{"category": "RAM", "componentId": "C3", "quantity": 1}]},
        headers=AUTH_U1,
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["totalPrice"] == 59000
    assert [c["component"]["id"] for c in data["components"]] == ["C3"]


def test_update_by_other_user_is_forbidden(client):
    build = _create(client)
    resp = client.put(f"/api/builds/{build['id']}", json={"name": "Mine now"}, headers=AUTH_U2)
    assert resp.status_code == 403


def test_delete_then_get_is_not_found(client):
    build = _create(client)

    resp = client.delete(f"/api/builds/{build['id']}", headers=AUTH_U1)

    assert resp.status_code == 200
    assert client.get(f"/api/builds/{build['id']}", headers=AUTH_U1).status_code == 404


def test_copy_flow(client):
    build = _create(client)

    resp = client.post(f"/api/builds/{build['id']}/copy", json={"name": "Bob's copy"}, headers=AUTH_U2)

    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["owner"]["id"] == "U2"
    assert data["isPublic"] is False
    assert data["totalPrice"] == 444000
    assert data["description"] == "Copy of build: Gaming 2024"


def test_copy_private_build_is_forbidden(client):
    build = _create(client, dict(GAMING_PAYLOAD, isPublic=False))
    resp = client.post(f"/api/builds/{build['id']}/copy", json={"name": "Nope copy"}, headers=AUTH_U2)

    assert resp.status_code == 403
    assert resp.json() == {"kind": "Forbidden", "message": "private", "detail": {"buildId": build["id"]}}


def test_my_and_public_listings(client):
    _create(client)
    _create(client, dict(GAMING_PAYLOAD, name="Private rig", isPublic=False))

    mine = client.get("/api/builds/my", headers=AUTH_U1).json()["data"]
    public = client.get("/api/builds/public", params={"sortBy": "totalPrice", "sortOrder": "asc"}).json()["data"]

    assert mine["total"] == 2
    assert mine["totalPages"] == 1
    assert [b["name"] for b in mine["builds"]] == ["Private rig", "Gaming 2024"]
    assert public["total"] == 1
    assert public["hasNext"] is False


def test_listing_bounds(client):
    assert client.get("/api/builds/my", params={"limit": 51}, headers=AUTH_U1).status_code == 400
    assert client.get("/api/builds/my").status_code == 401
    assert client.get("/api/builds/public", params={"sortBy": "updatedAt"}).status_code == 400
    assert client.get("/api/builds/public", params={"page": "abc"}).status_code == 400
    huge_page = client.get("/api/builds/public", params={"page": "100000000000000000000"})
    assert huge_page.status_code == 400
    assert huge_page.json()["kind"] == "InvalidArgument"


def test_metrics_and_health(client):
    _create(client)

    metrics = client.get("/api/metrics").json()
    assert metrics["total_builds"] == 1
    assert metrics["events_by_action"] == {"create": 1}

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["database"] == "connected"


def test_default_database_is_outside_data_dir():
    assert Settings.from_env().db_path.parent != DATA_DIR
