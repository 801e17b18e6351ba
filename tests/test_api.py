"""API tests for the render, variation and progress-bar routes.

Runs the FastAPI app in-process through ``httpx.ASGITransport``. The lifespan
is not run; queue, worker and event manager are put on ``app.state`` by the
``app`` fixture with fake render commands.
"""

import asyncio

import httpx
import pytest

from conftest import CRASHING_SCRIPT, FAKE_VIDEO
from varirender.config import get_settings
from varirender.main import app as application
from varirender.render.local_worker import LocalRenderWorker
from varirender.render.remote_queue import RemoteRenderQueue
from varirender.services.event_manager import JobEventManager


@pytest.fixture
def app(settings, storage, remote_command, local_command):
    events = JobEventManager()
    application.state.job_events = events
    application.state.render_queue = RemoteRenderQueue(storage, settings, events=events, command=remote_command())
    application.state.local_worker = LocalRenderWorker(settings, events=events, command=local_command())
    application.dependency_overrides[get_settings] = lambda: settings
    yield application
    application.dependency_overrides.clear()


def client_for(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


async def wait_terminal(client: httpx.AsyncClient, url: str) -> dict:
    for _ in range(500):
        body = (await client.get(url)).json()
        if body["status"] in ("completed", "failed"):
            return body
        await asyncio.sleep(0.01)
    raise AssertionError(f"{url} never finished")


class TestRemoteRender:
    """POST /api/render -> GET status -> PUT download."""

    @pytest.mark.asyncio
    async def test_full_cycle(self, app, render_spec):
        async with client_for(app) as client:
            resp = await client.post("/api/render", json=render_spec.to_wire())
            assert resp.status_code == 202
            submitted = resp.json()
            job_id = submitted["jobId"]
            assert submitted["status"] == "pending"
            assert submitted["pollingUrl"] == f"/api/render/{job_id}"
            assert submitted["downloadUrl"] == f"/api/render/{job_id}/download"

            status = await wait_terminal(client, submitted["pollingUrl"])
            assert status["status"] == "completed"
            assert status["progress"] == 100
            assert status["result"].endswith(".mp4")
            assert status["createdAt"] is not None

            resp = await client.put(submitted["downloadUrl"])
            assert resp.status_code == 200
            assert resp.headers["content-type"] == "video/mp4"
            assert resp.headers["content-disposition"] == 'attachment; filename="Summer_Sale_M-video.mp4"'
            assert resp.content == FAKE_VIDEO

            # The job is forgotten once downloaded
            resp = await client.get(submitted["pollingUrl"])
            assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_download_while_processing(self, app, render_spec, remote_command):
        app.state.render_queue.command = remote_command(delay=0.3)
        async with client_for(app) as client:
            job_id = (await client.post("/api/render", json=render_spec.to_wire())).json()["jobId"]

            resp = await client.put(f"/api/render/{job_id}/download")
            assert resp.status_code == 202
            assert resp.json()["error"]["code"] == "JOB_NOT_READY"

            await app.state.render_queue.join()

    @pytest.mark.asyncio
    async def test_failed_job_download_and_retry(self, app, render_spec, script_command, remote_command):
        app.state.render_queue.command = script_command("crash.py", CRASHING_SCRIPT)
        async with client_for(app) as client:
            job_id = (await client.post("/api/render", json=render_spec.to_wire())).json()["jobId"]
            status = await wait_terminal(client, f"/api/render/{job_id}")
            assert status["status"] == "failed"
            assert status["errorCode"] == "RENDER_FAILED"

            resp = await client.put(f"/api/render/{job_id}/download")
            assert resp.status_code == 500
            assert resp.json()["error"]["code"] == "RENDER_FAILED"
            # Still there for a retry
            assert (await client.get(f"/api/render/{job_id}")).status_code == 200

            app.state.render_queue.command = remote_command()
            resp = await client.post(f"/api/render/{job_id}/retry")
            assert resp.status_code == 202
            status = await wait_terminal(client, f"/api/render/{job_id}")
            assert status["status"] == "completed"
            assert status["attempts"] == 2

    @pytest.mark.asyncio
    async def test_retry_completed_job_conflicts(self, app, render_spec):
        async with client_for(app) as client:
            job_id = (await client.post("/api/render", json=render_spec.to_wire())).json()["jobId"]
            await wait_terminal(client, f"/api/render/{job_id}")

            resp = await client.post(f"/api/render/{job_id}/retry")
            assert resp.status_code == 409
            assert resp.json()["error"]["code"] == "JOB_STATE_CONFLICT"

    @pytest.mark.asyncio
    async def test_unknown_job(self, app):
        async with client_for(app) as client:
            resp = await client.get("/api/render/does-not-exist")
            assert resp.status_code == 404
            error = resp.json()["error"]
            assert error["code"] == "JOB_NOT_FOUND"
            assert error["location"]["job_id"] == "does-not-exist"

            resp = await client.put("/api/render/does-not-exist/download")
            assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_body(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/render", json={"duration": -1})
            assert resp.status_code == 422
            assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_events_of_finished_job(self, app, render_spec):
        async with client_for(app) as client:
            job_id = (await client.post("/api/render", json=render_spec.to_wire())).json()["jobId"]
            await wait_terminal(client, f"/api/render/{job_id}")

            resp = await client.get(f"/api/render/{job_id}/events")
            assert resp.status_code == 200
            assert resp.headers["content-type"].startswith("text/event-stream")
            assert resp.text.startswith("event: completed\n")


class TestLocalRender:
    @pytest.mark.asyncio
    async def test_full_cycle(self, app, render_spec):
        async with client_for(app) as client:
            resp = await client.post("/api/render-local", json=render_spec.to_wire())
            assert resp.status_code == 202
            submitted = resp.json()
            assert submitted["pollingUrl"].startswith("/api/render-local/")

            status = await wait_terminal(client, submitted["pollingUrl"])
            assert status["result"] == f"{len(FAKE_VIDEO)} bytes in memory"

            resp = await client.put(submitted["downloadUrl"])
            assert resp.status_code == 200
            assert resp.content == FAKE_VIDEO
            assert (await client.get(submitted["pollingUrl"])).status_code == 404


class TestVariations:
    @pytest.mark.asyncio
    async def test_combinations(self, app, composition, variations):
        body = {"composition": composition.to_wire(), "variations": variations.to_wire()}
        async with client_for(app) as client:
            resp = await client.post("/api/variations/combinations", json=body)
            assert resp.status_code == 200
            combos = resp.json()
            assert [c["id"] for c in combos] == ["original", "video1", "text1", "text2", "speed1"]
            assert combos[1]["name"] == "Summer_Sale_A-video_M-text_M-audio_M-speed.mp4"
            assert combos[1]["smartName"] == "A-video_M-text_M-audio_M-speed"

            resp = await client.post(
                "/api/variations/combinations", params={"policy": "cross_product"}, json=body
            )
            assert len(resp.json()) == 12

    @pytest.mark.asyncio
    async def test_render_spec(self, app, composition, variations):
        body = {
            "composition": composition.to_wire(),
            "variations": variations.to_wire(),
            "combination": {"id": "speed1", "choices": {"speed": 1}},
            "naming": {"pattern": {"type": "numbers"}},
        }
        async with client_for(app) as client:
            resp = await client.post("/api/variations/render-spec", json=body)
            assert resp.status_code == 200
            spec = resp.json()
            assert spec["speedMultiplier"] == 0.5
            assert spec["duration"] == 8000
            assert spec["name"] == "Summer_Sale_M-video_M-text_M-audio_1-speed.mp4"

    @pytest.mark.asyncio
    async def test_render_spec_out_of_range(self, app, composition, variations):
        body = {
            "composition": composition.to_wire(),
            "variations": variations.to_wire(),
            "combination": {"id": "text9", "choices": {"text": 9}},
        }
        async with client_for(app) as client:
            resp = await client.post("/api/variations/render-spec", json=body)
            assert resp.status_code == 400
            assert resp.json()["error"]["location"]["field"] == "combination.choices.text"


class TestProgressSample:
    @pytest.mark.asyncio
    async def test_sample(self, app):
        body = {"totalMs": 2000, "fps": 10, "config": {"useDeceptiveProgress": True, "fastStartDuration": 1.0}}
        async with client_for(app) as client:
            resp = await client.post("/api/progress-bar/sample", json=body)
            assert resp.status_code == 200
            data = resp.json()
            assert data["frames"] == 20
            assert len(data["baked"]) == len(data["preview"]) == 20
            assert data["baked"][10] == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_huge_duration_is_rejected(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/progress-bar/sample", json={"totalMs": 10**10, "fps": 120})
            assert resp.status_code == 422
            assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_duration_above_render_limit(self, app, settings):
        body = {"totalMs": settings.max_render_duration_ms + 1000}
        async with client_for(app) as client:
            resp = await client.post("/api/progress-bar/sample", json=body)
            assert resp.status_code == 400
            error = resp.json()["error"]
            assert error["code"] == "VALIDATION_ERROR"
            assert error["location"]["field"] == "totalMs"


@pytest.mark.asyncio
async def test_health(app):
    async with client_for(app) as client:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
