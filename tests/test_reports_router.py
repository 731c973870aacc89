"""
Tests for the reports and lookups routers through FastAPI's TestClient
"""
import base64

import pytest
from fastapi.testclient import TestClient

from database import Base, SessionLocal, engine
from models import Client, Site, Technician, AuditLog
from repository import SqlAlchemyRepository
from routers import reports as reports_router
from main import app


@pytest.fixture
def client(tmp_path):
    app.dependency_overrides[reports_router.get_repository] = (
        lambda: SqlAlchemyRepository(SessionLocal, blob_root=str(tmp_path / "photos"))
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    reports_router._sessions.clear()
    reports_router._last_touched.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def directory(client):
    db = SessionLocal()
    try:
        acme = Client(name="ACME Chimie", city="Lyon")
        db.add(acme)
        db.flush()
        db.add_all([
            Site(client_id=acme.id, name="Usine Nord"),
            Site(client_id=acme.id, name="Entrepôt", active=False),
            Technician(full_name="J. Martin", email="jm@example.com"),
        ])
        db.commit()
        return {"client_id": acme.id}
    finally:
        db.close()


def edit(client, session_id, action, target, indices=None, patch=None):
    return client.post(f"/api/reports/sessions/{session_id}/edits", json={
        "action": action, "target": target, "indices": indices or [], "patch": patch or {},
    })


def fill_fixed_report(client, session_id):
    edit(client, session_id, "update", "intervention", patch={
        "intervention_date": "2024-03-01", "start_time": "08:00", "end_time": "10:00",
        "technician": "J. Martin", "intervention_types": ["Maintenance préventive"],
    })
    edit(client, session_id, "update", "client", patch={"client_id": 1, "site_id": 1})
    edit(client, session_id, "update", "unit", [0], {"make": "Oldham", "model": "OLCT 10", "serial_number": "SN123"})
    edit(client, session_id, "add", "gas_detector", [0], {"make": "Oldham", "gas_type": "CO"})
    edit(client, session_id, "add", "threshold", [0, 0], {"value": "50"})


def walk_to_conclusion(client, session_id):
    for _ in range(3):
        response = client.post(f"/api/reports/sessions/{session_id}/next")
        assert response.status_code == 200
    assert response.json()["wizard"]["step"] == "conclusion"


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_create_session(client):
    response = client.post("/api/reports/sessions", json={"variant": "fixed"})
    assert response.status_code == 200
    data = response.json()
    assert data["wizard"]["step"] == "info"
    assert data["wizard"]["item_count"] == 1
    assert data["persisted_id"] is None
    assert len(data["report"]["units"]) == 1


def test_unknown_session(client):
    assert client.get("/api/reports/sessions/nope").status_code == 404


def test_next_with_missing_fields(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "fixed"}).json()["session_id"]
    response = client.post(f"/api/reports/sessions/{session_id}/next")
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert "technician" in detail["missing_fields"]
    assert detail["message"].startswith("Missing required fields")
    assert detail["invalid_fields"] == []


def test_edit_errors(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "fixed"}).json()["session_id"]
    assert edit(client, session_id, "remove", "unit", [0]).status_code == 409
    assert edit(client, session_id, "update", "unit", [0], {"colour": "red"}).status_code == 400
    assert edit(client, session_id, "update", "unit", [4], {"make": "x"}).status_code == 400
    assert edit(client, session_id, "add", "portable_gas", [0]).status_code == 400


def test_add_unit_returns_index(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "fixed"}).json()["session_id"]
    response = edit(client, session_id, "add", "unit", patch={"kind": "automate"})
    assert response.json()["index"] == 1
    assert response.json()["report"]["units"][1]["kind"] == "automate"


def test_save_outside_conclusion_refused(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "fixed"}).json()["session_id"]
    assert client.post(f"/api/reports/sessions/{session_id}/save").status_code == 409


def test_full_flow_create_edit_duplicate(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "fixed"}).json()["session_id"]
    fill_fixed_report(client, session_id)
    photo = base64.b64encode(b"fake-jpeg").decode()
    response = client.post(f"/api/reports/sessions/{session_id}/photos", json={"filename": "a.jpg", "content_base64": photo})
    assert response.status_code == 200
    walk_to_conclusion(client, session_id)

    saved = client.post(f"/api/reports/sessions/{session_id}/save", params={"mode": "create_new"})
    assert saved.status_code == 200
    intervention_id = saved.json()["intervention_id"]
    assert saved.json()["skipped_photos"] == []

    edit_session = client.post(f"/api/reports/sessions/edit/{intervention_id}", params={"variant": "fixed"})
    assert edit_session.status_code == 200
    edit_id = edit_session.json()["session_id"]
    report = edit_session.json()["report"]
    assert report["units"][0]["gas_detectors"][0]["thresholds"][0]["value"] == "50"

    edit(client, edit_id, "update", "threshold", [0, 0, 0], {"value": "75"})
    walk_to_conclusion(client, edit_id)
    updated = client.post(f"/api/reports/sessions/{edit_id}/save")
    assert updated.json()["mode"] == "update_in_place"
    assert updated.json()["intervention_id"] == intervention_id
    assert updated.json()["closed"] is True

    reopened = client.post(f"/api/reports/sessions/edit/{intervention_id}", params={"variant": "fixed"}).json()
    assert reopened["report"]["units"][0]["gas_detectors"][0]["thresholds"][0]["value"] == "75"
    walk_to_conclusion(client, reopened["session_id"])
    duplicated = client.post(f"/api/reports/sessions/{reopened['session_id']}/save", params={"mode": "duplicate_as_new"})
    assert duplicated.json()["intervention_id"] != intervention_id

    db = SessionLocal()
    try:
        actions = [entry.action for entry in db.query(AuditLog).order_by(AuditLog.id).all()]
    finally:
        db.close()
    assert actions == ["CREATE", "UPDATE", "DUPLICATE"]


def test_open_missing_report(client):
    response = client.post("/api/reports/sessions/edit/999", params={"variant": "fixed"})
    assert response.status_code == 404


def test_bad_photo_payload(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "portable"}).json()["session_id"]
    response = client.post(f"/api/reports/sessions/{session_id}/photos", json={"filename": "a.jpg", "content_base64": "%%%"})
    assert response.status_code == 400


def test_discard_session(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "portable"}).json()["session_id"]
    assert client.delete(f"/api/reports/sessions/{session_id}").status_code == 200
    assert client.get(f"/api/reports/sessions/{session_id}").status_code == 404


def test_lookups(client, directory):
    clients = client.get("/api/lookups/clients").json()
    assert [c["name"] for c in clients] == ["ACME Chimie"]
    sites = client.get(f"/api/lookups/clients/{directory['client_id']}/sites").json()
    assert [s["name"] for s in sites] == ["Usine Nord"]
    assert client.get("/api/lookups/clients/999/sites").status_code == 404
    technicians = client.get("/api/lookups/technicians").json()
    assert technicians[0]["full_name"] == "J. Martin"


def test_session_closed_after_save(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "fixed"}).json()["session_id"]
    fill_fixed_report(client, session_id)
    walk_to_conclusion(client, session_id)
    saved = client.post(f"/api/reports/sessions/{session_id}/save")
    assert saved.status_code == 200
    assert saved.json()["closed"] is True
    assert client.get(f"/api/reports/sessions/{session_id}").status_code == 404
    assert session_id not in reports_router._sessions


def test_abandoned_sessions_expire(client):
    stale_id = client.post("/api/reports/sessions", json={"variant": "portable"}).json()["session_id"]
    fresh_id = client.post("/api/reports/sessions", json={"variant": "portable"}).json()["session_id"]
    reports_router._last_touched[stale_id] = 0

    assert client.get(f"/api/reports/sessions/{stale_id}").status_code == 404
    assert stale_id not in reports_router._sessions
    assert client.get(f"/api/reports/sessions/{fresh_id}").status_code == 200


def test_expired_sessions_swept_on_create(client):
    stale_id = client.post("/api/reports/sessions", json={"variant": "fixed"}).json()["session_id"]
    reports_router._last_touched[stale_id] = 0
    client.post("/api/reports/sessions", json={"variant": "fixed"})
    assert stale_id not in reports_router._sessions
    assert stale_id not in reports_router._last_touched


def test_malformed_date_reported(client):
    session_id = client.post("/api/reports/sessions", json={"variant": "fixed"}).json()["session_id"]
    edit(client, session_id, "update", "intervention", patch={
        "intervention_date": "01/03/2024", "start_time": "08:00", "end_time": "10:00",
        "technician": "J. Martin", "intervention_types": ["Maintenance préventive"],
    })
    response = client.post(f"/api/reports/sessions/{session_id}/next")
    assert response.status_code == 422
    assert response.json()["detail"]["invalid_fields"] == ["date (YYYY-MM-DD)"]
    assert response.json()["detail"]["missing_fields"] == []
