"""
Tests for the worker HTTP API.
"""

import uuid

import pytest
from fastapi.testclient import TestClient

from conftest import make_submission

from corral.common.constants import TaskState
from corral.common.schemas import DiskStats, LoadStats, MemoryStats, Stats
from corral.worker.api import WorkerAPI
from corral.worker.engine import WorkerEngine
from corral.worker.stats import StatsCollector


class _FixedStats(StatsCollector):
    def collect(self) -> Stats:
        return Stats(
            memory=MemoryStats(total=1024, available=512, used=512, percent=50.0),
            disk=DiskStats(total=2048, free=1024, used=1024),
            cpu_percent=12.5,
            load=LoadStats(one=0.5, five=0.25, fifteen=0.1),
            task_count=self._task_count(),
        )


@pytest.fixture
def engine(driver):
    return WorkerEngine(driver, name="worker-test")


@pytest.fixture
def client(engine):
    api = WorkerAPI(engine, stats=_FixedStats(lambda: engine.task_count), start_background=False)
    return TestClient(api.app)


def _body(submission):
    return submission.model_dump(mode="json")


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["node_type"] == "WORKER"


def test_post_task_echoes_submission(client, engine):
    submission = make_submission()
    response = client.post("/tasks", json=_body(submission))

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == str(submission.id)
    assert body["task"]["id"] == str(submission.task.id)
    assert len(engine.queue) == 1


def test_post_unknown_field_is_rejected(client, engine):
    body = _body(make_submission())
    body["unexpected"] = True
    response = client.post("/tasks", json=body)

    assert response.status_code == 400
    assert response.json()["httpStatusCode"] == 400
    assert "unexpected" in response.json()["message"]
    assert len(engine.queue) == 0


def test_post_malformed_body_is_rejected(client, engine):
    response = client.post("/tasks", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["httpStatusCode"] == 400
    assert len(engine.queue) == 0


def test_post_unsupported_state_is_rejected(client, engine):
    response = client.post("/tasks", json=_body(make_submission(state=TaskState.RUNNING)))

    assert response.status_code == 400
    assert response.json()["message"] == "unsupported target state: running"
    assert len(engine.queue) == 0


def test_get_tasks_lists_registry(client, engine):
    assert client.get("/tasks").json() == []

    submission = make_submission()
    client.post("/tasks", json=_body(submission))
    engine.process_next()

    tasks = client.get("/tasks").json()
    assert [task["id"] for task in tasks] == [str(submission.task.id)]
    assert tasks[0]["state"] == "running"


@pytest.mark.parametrize("path", ["/tasks", "/tasks/"])
def test_delete_without_id(client, engine, path):
    response = client.delete(path)

    assert response.status_code == 400
    assert response.json() == {"httpStatusCode": 400, "message": "no task id passed in request"}
    assert len(engine.queue) == 0


def test_delete_invalid_id(client, engine):
    response = client.delete("/tasks/not-a-uuid")

    assert response.status_code == 400
    assert response.json()["httpStatusCode"] == 400
    assert len(engine.queue) == 0


def test_delete_unknown_task(client, engine):
    response = client.delete(f"/tasks/{uuid.uuid4()}")

    assert response.status_code == 404
    assert response.json()["httpStatusCode"] == 404
    assert len(engine.queue) == 0


def test_delete_queues_stop_request(client, engine, driver):
    submission = make_submission()
    client.post("/tasks", json=_body(submission))
    engine.process_next()

    response = client.delete(f"/tasks/{submission.task.id}")
    assert response.status_code == 204
    assert len(engine.queue) == 1
    # Still running until the engine processes the stop.
    assert engine.get_task(submission.task.id).state == TaskState.RUNNING

    engine.process_next()
    assert engine.get_task(submission.task.id).state == TaskState.COMPLETED
    assert driver.stops == ["container-1"]


def test_stats(client, engine):
    response = client.get("/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["memory"]["total"] == 1024
    assert body["load"]["one"] == 0.5
    assert body["task_count"] == 0
