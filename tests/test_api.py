"""Tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient

from taskflow.main import create_app


@pytest.fixture
def client(repository):
    with TestClient(create_app(repository=repository)) as client:
        yield client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_task_lifecycle(client):
    response = client.post("/api/tasks", json={"name": "Write report", "tags": ["work"], "priority": "high"})
    assert response.status_code == 201
    task = response.json()
    assert task["status"] == "pending"
    assert task["priority"] == "high"

    short = task["id"].replace("-", "")[:8]
    assert client.get(f"/api/tasks/{short}").json()["id"] == task["id"]

    listing = client.get("/api/tasks", params={"tag": "work"}).json()
    assert listing["count"] == 1
    assert listing["tasks"][0]["tags"] == ["work"]

    response = client.patch(f"/api/tasks/{task['id']}", json={"name": "Write final report"})
    assert response.json()["name"] == "Write final report"

    response = client.post(f"/api/tasks/{task['id']}/complete")
    assert response.status_code == 200
    assert response.json()["kind"] == "single"
    assert response.json()["completed"]["status"] == "completed"

    assert client.delete(f"/api/tasks/{task['id']}").status_code == 204
    assert client.get(f"/api/tasks/{task['id']}").status_code == 404


def test_errors_use_the_error_envelope(client):
    response = client.get("/api/tasks/ffffffff")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"

    response = client.post("/api/tasks", json={"name": "Bad", "rrule": "FREQ=MINUTELY"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_RRULE"

    response = client.get("/api/tasks", params={"due": "someday"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_INPUT"


def test_blocked_completion_is_a_conflict(client):
    blocker = client.post("/api/tasks", json={"name": "First"}).json()
    task = client.post("/api/tasks", json={"name": "Second", "depends_on": blocker["id"]}).json()

    response = client.post(f"/api/tasks/{task['id']}/complete")

    assert response.status_code == 409
    assert response.json()["error"]["details"]["blocked_by"] == ["First"]


def test_series_endpoints(client):
    template = client.post(
        "/api/tasks",
        json={"name": "Water plants", "due_at": "2025-07-02T09:00:00Z", "rrule": "FREQ=DAILY"},
    ).json()

    series_list = client.get("/api/series").json()
    assert len(series_list) == 1
    series = series_list[0]
    assert series["template_task_id"] == template["id"]

    response = client.post(f"/api/series/{series['id']}/skip", json={"occurrence_dt": "2025-07-03T09:00:00Z"})
    assert response.status_code == 201
    assert response.json()["exception_type"] == "skip"

    preview = client.get(f"/api/series/{series['id']}/preview", params={"count": 2}).json()
    assert [occ["effective_at"] for occ in preview] == ["2025-07-02T09:00:00Z", "2025-07-04T09:00:00Z"]

    response = client.post(
        f"/api/series/{series['id']}/move",
        json={"from_dt": "2025-07-05T09:00:00Z", "to_dt": "2025-07-05T18:00:00Z"},
    )
    assert response.status_code == 201
    assert response.json()["exception_type"] == "move"

    stats = client.get(f"/api/series/{series['id']}/statistics").json()
    assert stats["skip_exceptions"] == 1
    assert stats["move_exceptions"] == 1

    assert client.post(f"/api/series/{series['id']}/archive").status_code == 409

    summary = client.post(
        "/api/series/refresh", json={"start": "2025-08-01T00:00:00Z", "end": "2025-08-03T00:00:00Z"}
    ).json()
    assert summary["instances_created"] == 2


def test_unknown_series(client):
    response = client.get("/api/series/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "SERIES_NOT_FOUND"


def test_projects(client):
    assert client.post("/api/projects", json={"name": "P"}).status_code == 201
    client.post("/api/tasks", json={"name": "T", "project_name": "P"})

    response = client.delete("/api/projects/P")
    assert response.status_code == 422
    assert "1 associated task(s)" in response.json()["error"]["message"]
    assert [project["name"] for project in client.get("/api/projects").json()] == ["P"]
