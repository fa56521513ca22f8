import asyncio
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import core.globals
from api.router import api_router
from conftest import FakeEngine, make_loader, missing_environment
from core.job_manager import JobManager


def _client(monkeypatch, loader):
    monkeypatch.setattr(core.globals, "engine_loader", loader)
    monkeypatch.setattr(core.globals, "job_manager", JobManager(loader))
    app = FastAPI()
    app.include_router(api_router)
    return TestClient(app)


def _wait_for(client, job_id, statuses, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/jobs/{job_id}").json()
        if job["status"] in statuses:
            return job
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} never reached {statuses}")


def test_engine_status_and_ensure(monkeypatch) -> None:
    with _client(monkeypatch, make_loader(engine=FakeEngine())) as client:
        assert client.get("/api/engine/status").json()["state"] == "idle"

        body = client.post("/api/engine/ensure").json()

        assert body["state"] == "ready"
        assert body["version"] == "ffmpeg version fake"
        assert body["attempts"] == 1
        assert body["diagnostics"] is None


def test_ensure_reports_capability_failure(monkeypatch) -> None:
    with _client(monkeypatch, make_loader(probe=missing_environment)) as client:
        body = client.post("/api/engine/ensure").json()

        assert body["state"] == "failed"
        assert body["diagnostics"]["kind"] == "capability_missing"
        assert body["diagnostics"]["retryable"] is False

        report = client.get("/api/engine/diagnostics/report").json()["report"]
        assert "shared_memory" in report

        cleared = client.post("/api/engine/diagnostics/clear").json()
        assert cleared["diagnostics"] is None


def test_convert_queued_paths_and_fetch_artifact(monkeypatch, make_source) -> None:
    source = make_source("trip.mkv", b"frames")

    with _client(monkeypatch, make_loader(engine=FakeEngine())) as client:
        client.post("/api/engine/ensure")
        job_id = client.post(
            "/api/jobs/paths", json={"paths": [str(source)], "profile": "full-reencode"}
        ).json()["job_ids"][0]

        assert client.post("/api/jobs/start").json() == {"started": True}
        job = _wait_for(client, job_id, {"completed", "failed"})

        assert job["status"] == "completed"
        assert job["progress"] == 100.0
        assert job["profile"] == "full-reencode"
        assert job["artifact"]["filename"] == "trip.mp4"

        artifact = client.get(f"/api/jobs/{job_id}/artifact")
        assert artifact.status_code == 200
        assert artifact.content == b"mp4:frames"
        assert artifact.headers["content-type"] == "video/mp4"

        assert client.post("/api/jobs/clear-completed").json() == {"removed": 1}
        assert client.get(f"/api/jobs/{job_id}").status_code == 404


def test_enqueue_rejects_missing_paths(monkeypatch, tmp_path) -> None:
    with _client(monkeypatch, make_loader()) as client:
        response = client.post("/api/jobs/paths", json={"paths": [str(tmp_path / "missing.mkv")]})

        assert response.status_code == 400


def test_upload_queues_files(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr("api.jobs.UPLOADS_DIR", tmp_path / "uploads")

    with _client(monkeypatch, make_loader()) as client:
        response = client.post(
            "/api/jobs/upload",
            files=[("files", ("clip.mov", b"bytes", "video/quicktime"))],
            data={"profile": "fast-remux"},
        )
        job_id = response.json()["job_ids"][0]
        listing = client.get("/api/jobs").json()

    assert listing["summary"]["queued"] == 1
    assert listing["jobs"][0]["id"] == job_id
    assert listing["jobs"][0]["filename"] == "clip.mov"
    assert len(list((tmp_path / "uploads").iterdir())) == 1


def test_start_without_engine_fails_jobs(monkeypatch, make_source) -> None:
    with _client(monkeypatch, make_loader()) as client:
        job_id = client.post("/api/jobs/paths", json={"paths": [str(make_source())]}).json()["job_ids"][0]
        client.post("/api/jobs/start")
        job = _wait_for(client, job_id, {"failed"})

        assert job["diagnostics"]["kind"] == "engine_not_ready"

        retry = client.post(f"/api/jobs/{job_id}/retry")
        assert retry.status_code == 200
        assert retry.json()["job_id"] != job_id


@pytest.mark.parametrize("path", ["/api/jobs/unknown", "/api/jobs/unknown/artifact"])
def test_unknown_job_is_404(monkeypatch, path) -> None:
    with _client(monkeypatch, make_loader()) as client:
        assert client.get(path).status_code == 404


def _upload(client, name="clip.mov", data=b"bytes"):
    response = client.post(
        "/api/jobs/upload",
        files=[("files", (name, data, "video/quicktime"))],
        data={"profile": "fast-remux"},
    )
    return response.json()["job_ids"][0]


def test_deleting_uploaded_job_removes_its_copy(monkeypatch, tmp_path) -> None:
    uploads = tmp_path / "uploads"
    monkeypatch.setattr("api.jobs.UPLOADS_DIR", uploads)

    with _client(monkeypatch, make_loader()) as client:
        job_id = _upload(client)
        assert len(list(uploads.iterdir())) == 1

        assert client.delete(f"/api/jobs/{job_id}").status_code == 200

    assert list(uploads.iterdir()) == []


def test_clearing_converted_uploads_removes_their_copies(monkeypatch, tmp_path) -> None:
    uploads = tmp_path / "uploads"
    monkeypatch.setattr("api.jobs.UPLOADS_DIR", uploads)

    with _client(monkeypatch, make_loader(engine=FakeEngine())) as client:
        client.post("/api/engine/ensure")
        job_id = _upload(client, data=b"frames")
        client.post("/api/jobs/start")
        job = _wait_for(client, job_id, {"completed", "failed"})
        assert job["status"] == "completed"

        assert client.post("/api/jobs/clear-completed").json() == {"removed": 1}

    assert list(uploads.iterdir()) == []


def test_sweep_uploads_removes_leftover_copies(monkeypatch, tmp_path) -> None:
    from api.jobs import sweep_uploads

    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "stale_clip.mov").write_bytes(b"old")
    monkeypatch.setattr("api.jobs.UPLOADS_DIR", uploads)

    sweep_uploads()

    assert not uploads.exists()


def test_progress_socket_sends_snapshot_on_connect(monkeypatch, make_source) -> None:
    with _client(monkeypatch, make_loader()) as client:
        job_id = client.post("/api/jobs/paths", json={"paths": [str(make_source())]}).json()["job_ids"][0]

        with client.websocket_connect("/ws/progress") as websocket:
            snapshot = websocket.receive_json()

    assert snapshot["event"] == "snapshot"
    assert snapshot["engine_state"] == "idle"
    assert [job["id"] for job in snapshot["jobs"]] == [job_id]
    assert snapshot["summary"]["queued"] == 1


def test_broadcast_drops_subscribers_that_fail() -> None:
    from api.websocket import ProgressHub

    class Subscriber:
        def __init__(self, broken=False):
            self.broken = broken
            self.received = []

        async def send_json(self, message):
            if self.broken:
                raise RuntimeError("connection closed")
            self.received.append(message)

    hub = ProgressHub()
    healthy, broken = Subscriber(), Subscriber(broken=True)
    hub.subscribers = [broken, healthy]

    asyncio.run(hub.broadcast({"event": "progress", "progress": 50.0}))

    assert hub.subscribers == [healthy]
    assert healthy.received == [{"event": "progress", "progress": 50.0}]
