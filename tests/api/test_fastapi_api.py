import aiohttp
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backupmon.config import MonitorSettings
from backupmon.exceptions import RequestError
from backupmon.fastapi.deps import get_monitor
from backupmon.fastapi.lifecycle import setup_backupmon
from backupmon.models import BackupJob, JobStatus
from backupmon.monitor import BackupMonitor
from backupmon.stream import EventStreamClient


def _make_app(api, session) -> tuple[FastAPI, BackupMonitor]:
    stream = EventStreamClient("ws://backup.local/ws", session=session)
    monitor = BackupMonitor(MonitorSettings(poll_interval=0), api=api, stream=stream)
    app = FastAPI()
    setup_backupmon(app, monitor=monitor)
    return app, monitor


@pytest.fixture()
def offline_session(make_session):
    return make_session(aiohttp.ClientConnectionError("refused"))


def test_deps_guard_raises_without_setup():
    class Dummy:
        pass

    d = Dummy()
    d.app = Dummy()
    d.app.state = Dummy()
    with pytest.raises(RuntimeError):
        get_monitor(d)  # no monitor set


def test_jobs_endpoints_serve_startup_snapshot(fake_api, offline_session):
    fake_api.active_jobs = [
        BackupJob(id=3, client_id="c1", status=JobStatus.running, progress_percentage=35, files_total=70)
    ]
    app, monitor = _make_app(fake_api, offline_session)
    with TestClient(app) as client:
        r = client.get("/api/v1/backups/jobs")
        assert r.status_code == 200
        body = r.json()
        assert body["total"] == 1
        item = body["items"][0]
        assert item["id"] == 3 and item["status"] == "RUNNING"
        assert item["progress_percentage"] == 35 and item["optimistic"] is False

        g = client.get("/api/v1/backups/jobs/3")
        assert g.status_code == 200 and g.json()["files_total"] == 70

        assert client.get("/api/v1/backups/jobs/999").status_code == 404
        assert client.get("/api/v1/backups/jobs/nope").status_code == 422


def test_start_endpoint_guard_and_errors(fake_api, offline_session):
    app, monitor = _make_app(fake_api, offline_session)
    with TestClient(app) as client:
        r1 = client.post("/api/v1/backups/start/c1")
        assert r1.status_code == 202
        assert r1.json() == {"client_id": "c1", "job_id": 100, "message": "Backup started"}

        r2 = client.post("/api/v1/backups/start/c1")
        assert r2.status_code == 409
        assert fake_api.start_calls == ["c1"]

        fake_api.start_error = RequestError("SSH target unreachable", status=500)
        r3 = client.post("/api/v1/backups/start/c2")
        assert r3.status_code == 502 and r3.json()["detail"] == "SSH target unreachable"
        assert not monitor.initiator.is_in_flight("c2")

        assert client.post("/api/v1/backups/start/" + "x" * 129).status_code == 422

        listed = client.get("/api/v1/backups/jobs").json()
        assert [i["id"] for i in listed["items"]] == [100]


def test_progress_and_dismiss(fake_api, offline_session):
    app, monitor = _make_app(fake_api, offline_session)
    with TestClient(app) as client:
        monitor.notifier.on_started("c1", 7)
        monitor.notifier.on_progress("c1", 7, 64, "uploading")

        p = client.get("/api/v1/backups/progress")
        assert p.status_code == 200
        [surface] = p.json()
        assert surface["job_id"] == 7 and surface["state"] == "VISIBLE"
        assert surface["last_seen_progress"] == 64 and surface["message"] == "uploading"

        d = client.post("/api/v1/backups/progress/7/dismiss")
        assert d.status_code == 200 and d.json() == {"job_id": 7, "dismissed": True}
        assert client.get("/api/v1/backups/progress").json() == []

        assert client.post("/api/v1/backups/progress/99/dismiss").status_code == 404


def test_health_reports_degraded_push_channel(fake_api, offline_session):
    app, monitor = _make_app(fake_api, offline_session)
    with TestClient(app) as client:
        h = client.get("/api/v1/backups/_health")
        assert h.status_code == 200
        assert h.json() == {
            "status": "degraded",
            "connected": False,
            "reconnect_attempts": 0,
            "max_reconnect_attempts": 5,
            "in_flight": [],
        }

        client.post("/api/v1/backups/start/c9")
        assert client.get("/api/v1/backups/_health").json()["in_flight"] == ["c9"]


def test_health_reports_connected(fake_api, make_ws, make_session):
    app, _ = _make_app(fake_api, make_session(make_ws()))
    with TestClient(app) as client:
        body = client.get("/api/v1/backups/_health").json()
        assert body["status"] == "connected" and body["connected"] is True
