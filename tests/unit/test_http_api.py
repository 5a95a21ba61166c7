import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from backupmon.api.http import HttpBackupApi
from backupmon.exceptions import RequestError
from backupmon.models import BackupConfiguration, JobStatus


def _service_app(seen: list) -> web.Application:
    routes = web.RouteTableDef()

    @routes.post("/api/v1/backup/start/{client_id}")
    async def start(request):
        seen.append(("start", request.match_info["client_id"], request.headers.get("Authorization")))
        if request.match_info["client_id"] == "busy":
            return web.json_response({"error": "Backup already running for busy"}, status=409)
        if request.match_info["client_id"] == "nojob":
            return web.json_response({"message": "Backup queued"})
        return web.json_response({"jobId": 41, "message": "Backup started"})

    @routes.get("/api/v1/backup/jobs/active")
    async def active(request):
        return web.json_response(
            [{"id": 41, "clientId": "c1", "status": "RUNNING", "progressPercentage": 12}]
        )

    @routes.get("/api/v1/backup/jobs/{client_id}")
    async def history(request):
        seen.append(("history", request.match_info["client_id"], request.query.get("limit")))
        return web.json_response({"jobs": [{"id": 1, "clientId": "c1", "status": "COMPLETED"}]})

    @routes.post("/api/v1/backup/test-ssh/{client_id}")
    async def ssh(request):
        return web.json_response({"success": False, "message": "Permission denied"})

    @routes.post("/api/v1/backup/configuration")
    async def save(request):
        body = await request.json()
        seen.append(("save", body))
        body["id"] = 9
        return web.json_response(body)

    @routes.get("/api/v1/backup/configuration/{client_id}")
    async def get_config(request):
        raise web.HTTPNotFound()

    @routes.get("/api/v1/backup/configurations/all")
    async def all_configs(request):
        seen.append(("configurations", "all"))
        return web.json_response([])

    @routes.post("/api/v1/backup/pause/{client_id}")
    async def pause(request):
        return web.Response(status=204)

    @routes.get("/api/v1/backup/health")
    async def health(request):
        return web.Response(status=500, text="<html>oops</html>")

    app = web.Application()
    app.add_routes(routes)
    return app


@pytest.fixture()
async def service():
    seen = []
    server = TestServer(_service_app(seen))
    await server.start_server()
    api = HttpBackupApi(str(server.make_url("/api/v1/backup/")), token="t0k")
    try:
        yield api, seen
    finally:
        await api.close()
        await server.close()


@pytest.mark.asyncio
async def test_start_backup(service):
    api, seen = service
    result = await api.start_backup("c1")
    assert result.client_id == "c1" and result.job_id == 41
    assert result.message == "Backup started"
    assert seen[0] == ("start", "c1", "Bearer t0k")

    queued = await api.start_backup("nojob")
    assert queued.job_id is None


@pytest.mark.asyncio
async def test_service_error_text_is_surfaced(service):
    api, _ = service
    with pytest.raises(RequestError) as exc:
        await api.start_backup("busy")
    assert exc.value.status == 409
    assert exc.value.message == "Backup already running for busy"


@pytest.mark.asyncio
async def test_non_json_error_falls_back_to_fixed_message(service):
    api, _ = service
    with pytest.raises(RequestError) as exc:
        await api.health()
    assert exc.value.status == 500
    assert exc.value.message == "Backup service unavailable"


@pytest.mark.asyncio
async def test_job_lists(service):
    api, seen = service
    [job] = await api.get_active_jobs()
    assert job.id == 41 and job.status == JobStatus.running and job.progress_percentage == 12

    history = await api.get_jobs_by_client("c1", limit=3)
    assert [j.id for j in history] == [1]
    assert ("history", "c1", "3") in seen


@pytest.mark.asyncio
async def test_ssh_result_and_configuration(service):
    api, seen = service
    result = await api.test_ssh_connection("c1")
    assert result.success is False and result.message == "Permission denied"

    config = BackupConfiguration(
        client_id="c1",
        source_directory="/data",
        frequency_hours=6,
        ssh_host="nas",
        ssh_username="bk",
        ssh_password="pw",
        ssh_remote_path="/srv",
    )
    saved = await api.save_configuration(config)
    assert saved.id == 9 and saved.ssh_host == "nas"
    body = next(item[1] for item in seen if item[0] == "save")
    assert body["clientId"] == "c1" and body["frequencyHours"] == 6

    assert await api.get_configuration("c1") is None
    assert await api.list_configurations(include_inactive=True) == []
    assert ("configurations", "all") in seen
    assert await api.pause_backups("c1") == {}


@pytest.mark.asyncio
async def test_unreachable_service_raises_request_error():
    api = HttpBackupApi("http://127.0.0.1:1/api/v1/backup", timeout=2)
    try:
        with pytest.raises(RequestError) as exc:
            await api.get_active_jobs()
        assert exc.value.message == "Error fetching active jobs"
        assert exc.value.status is None
    finally:
        await api.close()
