"""
Tests for the HTTP job contract and the progress WebSocket.
"""

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from narrator.main import app
from narrator.services.job_manager import set_job_manager

TERMINAL = {"completed", "completed_with_warnings", "failed", "cancelled"}


@pytest.fixture
def api_manager(manager):
    set_job_manager(manager)
    yield manager
    set_job_manager(None)


@pytest.fixture
def client(api_manager):
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.asyncio
async def test_submit_poll_and_fetch_result(client, api_manager, short_video):
    async with client:
        response = await client.post(
            "/api/jobs", json={"input": short_video, "options": {"generate_audio": False}}
        )
        assert response.status_code == 202
        body = response.json()
        assert body["variant"] == "windows"
        assert body["selectionReason"] == "short-content"
        job_id = body["jobId"]

        await api_manager.wait(job_id, timeout=5)

        status = (await client.get(f"/api/jobs/{job_id}")).json()
        assert status["jobId"] == job_id
        assert status["status"] == "completed"
        assert status["progress"] == 100.0
        assert status["totalStages"] == 5

        result = await client.get(f"/api/jobs/{job_id}/result")
        assert result.status_code == 200
        output = result.json()
        assert output["partial"] is False
        assert len(output["fragments"]) == 5
        assert output["fragments"][0]["timestamp"] == "00:00.00 - 00:10.00"
        assert output["skippedUnits"] == []
        assert output["audio"] == []

        jobs = (await client.get("/api/jobs")).json()
        assert [j["jobId"] for j in jobs] == [job_id]

        health = (await client.get("/health")).json()
        assert health["completedJobs"] == 1
        assert health["activeJobs"] == 0


@pytest.mark.asyncio
async def test_cancel_and_partial_result(client, api_manager, providers, short_video):
    providers.media.block_from = 0.0
    providers.media.gate.clear()

    async with client:
        job_id = (await client.post("/api/jobs", json={"input": short_video})).json()["jobId"]

        not_ready = await client.get(f"/api/jobs/{job_id}/result")
        assert not_ready.status_code == 409
        assert not_ready.json()["code"] == "RESULT_NOT_READY"

        ack = await client.post(f"/api/jobs/{job_id}/cancel")
        assert ack.status_code == 200
        assert ack.json()["jobId"] == job_id

        await api_manager.wait(job_id, timeout=5)

        again = await client.post(f"/api/jobs/{job_id}/cancel")
        assert again.status_code == 409
        assert again.json()["code"] == "ALREADY_TERMINAL"

        partial = await client.get(f"/api/jobs/{job_id}/result", params={"partial": "true"})
        assert partial.status_code == 200
        assert partial.json()["partial"] is True
        assert partial.json()["status"] == "cancelled"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "changes, code",
    [
        ({"size_bytes": 600 * 1024 * 1024}, "INPUT_TOO_LARGE"),
        ({"location": "uploads/clip.txt", "content_type": None}, "UNSUPPORTED_FORMAT"),
        ({"media_kind": "hologram"}, "INVALID_INPUT"),
    ],
)
async def test_submit_errors_are_422(client, short_video, changes, code):
    async with client:
        response = await client.post("/api/jobs", json={"input": {**short_video, **changes}})
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == code
    assert set(body) == {"code", "message", "suggestion"}


@pytest.mark.asyncio
async def test_unknown_job_is_404(client):
    async with client:
        for response in (
            await client.get("/api/jobs/nope"),
            await client.post("/api/jobs/nope/cancel"),
            await client.get("/api/jobs/nope/result"),
        ):
            assert response.status_code == 404
            assert response.json()["code"] == "JOB_NOT_FOUND"


@pytest.mark.asyncio
async def test_list_pipelines(client):
    async with client:
        variants = (await client.get("/api/pipelines")).json()
    by_name = {v["name"]: v for v in variants}
    assert set(by_name) == {"windows", "scenes", "still"}
    assert by_name["scenes"]["is_default"] is True
    assert by_name["windows"]["fallback"] == "scenes"


def test_websocket_streams_until_terminal(api_manager, short_video):
    with TestClient(app) as client:
        response = client.post(
            "/api/jobs", json={"input": short_video, "options": {"generate_audio": False}}
        )
        job_id = response.json()["jobId"]

        messages = []
        with client.websocket_connect(f"/ws/{job_id}") as ws:
            while True:
                message = ws.receive_json()
                messages.append(message)
                if message.get("status") in TERMINAL:
                    break

    assert messages[-1]["status"] == "completed"
    assert messages[-1]["progress"] == 100.0
    progress = [m["progress"] for m in messages if m.get("status") == "processing"]
    assert progress == sorted(progress)


def test_websocket_unknown_job(api_manager):
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/nope") as ws:
                ws.receive_json()
    assert exc_info.value.code == 4004


@pytest.mark.asyncio
async def test_image_batch(client, api_manager, short_video):
    image = {"location": "uploads/cover.png", "media_kind": "image", "size_bytes": 1024}
    async with client:
        response = await client.post("/api/jobs/batch", json={
            "items": [
                {"id": "cover", "input": image},
                {"id": "trailer", "input": short_video},
            ],
            "options": {"generate_audio": False},
        })
        assert response.status_code == 202
        body = response.json()
        assert body["total"] == 2
        cover, trailer = body["results"]
        assert trailer == {
            "id": "trailer",
            "jobId": None,
            "status": "failed",
            "error": {
                "code": "INVALID_INPUT",
                "message": trailer["error"]["message"],
                "suggestion": trailer["error"]["suggestion"],
            },
        }

        await api_manager.wait(cover["jobId"], timeout=5)
        batch = (await client.get(f"/api/jobs/batch/{body['batchId']}")).json()
        assert batch["status"] == "partial"
        assert batch["results"][0]["status"] == "completed"

        missing = await client.get("/api/jobs/batch/nope")
        assert missing.status_code == 404
        assert missing.json()["code"] == "BATCH_NOT_FOUND"

        empty = await client.post("/api/jobs/batch", json={"items": []})
        assert empty.status_code == 422
        assert empty.json()["code"] == "INVALID_INPUT"
