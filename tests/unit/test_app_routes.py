import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from protocol_registry.main import app
from tests.common.protocol_fixtures import push_approve_merge, soil_moisture_protocol


@pytest.fixture
def client(registry_runtime, monkeypatch):
    for module in ("protocols", "submissions"):
        monkeypatch.setattr(
            f"protocol_registry.routers.{module}.get_registry_runtime",
            lambda: registry_runtime
        )
    return TestClient(app)


def test_history_route_is_not_shadowed_by_pull(client, registry_runtime):
    push_approve_merge(registry_runtime, soil_moisture_protocol(bits=8), "1.0.0")
    push_approve_merge(registry_runtime, soil_moisture_protocol(bits=7), "1.1.0", "tighter")

    history = client.get("/v1/protocols/environmental/soil/soil_moisture_percent/history")
    pulled = client.get("/v1/protocols/environmental/soil/soil_moisture_percent", params={"version": "1.0.0"})

    assert history.status_code == 200
    assert history.json()["archived_versions"] == ["1.0.0"]
    assert pulled.status_code == 200
    assert pulled.json()["bits"] == 8


def test_push_approve_merge_over_http(client):
    definition = soil_moisture_protocol().model_dump(mode="json")
    pushed = client.post(
        "/v1/protocols",
        json={"definition": definition, "domain_path": "environmental/soil", "version": "1.0.0"},
    )
    assert pushed.status_code == 200
    submission_id = pushed.json()["submission_id"]

    approved = client.post(f"/v1/submissions/{submission_id}/approve", json={"reviewer": "alice"})
    assert approved.json()["state"] == "approved"

    merged = client.post("/v1/merges", json={"submission_ids": [submission_id]})
    assert [r["status"] for r in merged.json()["results"]] == ["promoted"]

    listed = client.get("/v1/protocols")
    assert listed.json()["paths"] == ["environmental/soil/soil_moisture_percent"]

    rejected = client.post(f"/v1/submissions/{submission_id}/reject", json={})
    assert rejected.status_code == 409
    assert rejected.json()["detail"]["code"] == "CONFLICT"
