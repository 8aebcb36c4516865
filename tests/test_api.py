"""HTTP surface of the dashboard server"""
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from milhouse.broadcast import LogBroadcaster
from milhouse.config import Config
from milhouse.server.app import create_app
from milhouse.server.browse import FolderPickerError
from milhouse.server.runtime import Runtime
from milhouse.server.stream import log_stream, to_sse
from tests.conftest import ENGINE_HANGS, python_command, wait_for


@pytest_asyncio.fixture
async def app(config: Config) -> AsyncGenerator[FastAPI]:
    app = create_app(config)
    app.state.runtime.connect()
    yield app
    await app.state.runtime.close()


@pytest.fixture
def runtime(app: FastAPI) -> Runtime:
    return app.state.runtime


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestStart:
    @pytest.mark.asyncio
    async def test_start_returns_session(self, client: AsyncClient, runtime: Runtime, workdir):
        response = await client.post("/api/start", json={"goal": "add a health endpoint", "maxIterations": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["session"]["goal"] == "add a health endpoint"
        assert data["session"]["maxIterations"] == 2
        assert data["session"]["workdir"] == str(workdir)
        assert data["session"]["status"] == "running"

        await runtime.supervisor.wait()

    @pytest.mark.asyncio
    async def test_missing_goal(self, client: AsyncClient, runtime: Runtime):
        response = await client.post("/api/start", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "goal is required"}
        assert runtime.registry.list_all() == []

    @pytest.mark.asyncio
    async def test_blank_goal(self, client: AsyncClient):
        response = await client.post("/api/start", json={"goal": "   "})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_negative_iterations_rejected(self, client: AsyncClient, runtime: Runtime):
        response = await client.post("/api/start", json={"goal": "g", "maxIterations": -1})

        assert response.status_code == 400
        assert "maxIterations" in response.json()["error"]
        assert runtime.registry.list_all() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, "", "lots"])
    async def test_blank_iterations_mean_unbounded(self, client: AsyncClient, runtime: Runtime, value):
        response = await client.post("/api/start", json={"goal": "g", "maxIterations": value})

        assert response.status_code == 200
        assert response.json()["session"]["maxIterations"] == 0
        await runtime.supervisor.wait()

    @pytest.mark.asyncio
    async def test_wrong_body_type_uses_error_shape(self, client: AsyncClient):
        response = await client.post("/api/start", json={"goal": ["not", "a", "string"]})

        assert response.status_code == 400
        assert "goal" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_unwritable_registry(self, client: AsyncClient, runtime: Runtime):
        runtime.registry.path.mkdir(parents=True)

        response = await client.post("/api/start", json={"goal": "g"})

        assert response.status_code == 400
        assert "Could not record session" in response.json()["error"]
        assert (await client.get("/api/status")).json()["running"] is False

    @pytest.mark.asyncio
    async def test_missing_workdir_without_create(self, client: AsyncClient, runtime: Runtime):
        response = await client.post(
            "/api/start",
            json={"goal": "g", "workdir": "does/not/exist", "createIfMissing": False},
        )

        assert response.status_code == 400
        assert "Workdir not found" in response.json()["error"]
        assert runtime.registry.list_all() == []

    @pytest.mark.asyncio
    async def test_second_start_while_running(self, client: AsyncClient, runtime: Runtime):
        runtime.supervisor.engine_command = python_command(ENGINE_HANGS)

        first = await client.post("/api/start", json={"goal": "first"})
        second = await client.post("/api/start", json={"goal": "second"})

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json() == {"error": "A run is already in progress"}
        assert len(runtime.registry.list_all()) == 1


class TestStopAndStatus:
    @pytest.mark.asyncio
    async def test_idle_status(self, client: AsyncClient):
        response = await client.get("/api/status")
        assert response.json() == {"running": False, "session": None, "artifacts": {}}

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, client: AsyncClient, runtime: Runtime):
        response = await client.post("/api/stop")

        assert response.json() == {"ok": True}
        assert runtime.registry.list_all() == []

    @pytest.mark.asyncio
    async def test_stop_running(self, client: AsyncClient, runtime: Runtime):
        runtime.supervisor.engine_command = python_command(ENGINE_HANGS)
        await client.post("/api/start", json={"goal": "g"})
        await wait_for(lambda: "thread: live-42" in runtime.broadcaster.lines)

        status = (await client.get("/api/status")).json()
        assert status["running"] is True
        assert status["session"]["threadId"] == "live-42"

        await client.post("/api/stop")
        await runtime.supervisor.wait()

        status = (await client.get("/api/status")).json()
        assert status["running"] is False
        assert status["session"]["status"] == "stopped"
        assert "endedAt" in status["session"]

    @pytest.mark.asyncio
    async def test_artifacts(self, client: AsyncClient, runtime: Runtime):
        await client.post("/api/start", json={"goal": "g"})
        await runtime.supervisor.wait()
        state_dir = runtime.supervisor.session.state_dir
        (state_dir / "IMPLEMENTATION_PLAN.md").write_text("STATUS: DONE\n")
        (state_dir / "thread_id").write_text("th-1\n")

        artifacts = (await client.get("/api/artifacts")).json()

        assert artifacts == {"planFile": "STATUS: DONE\n", "threadId": "th-1"}


class TestSessions:
    @pytest.mark.asyncio
    async def test_empty(self, client: AsyncClient):
        response = await client.get("/api/sessions")
        assert response.json() == {"sessions": []}

    @pytest.mark.asyncio
    async def test_lists_finished_runs_in_order(self, client: AsyncClient, runtime: Runtime):
        for goal in ("first", "second"):
            await client.post("/api/start", json={"goal": goal})
            await runtime.supervisor.wait()

        sessions = (await client.get("/api/sessions")).json()["sessions"]

        assert [s["goal"] for s in sessions] == ["first", "second"]
        assert all(s["status"] == "succeeded" for s in sessions)
        assert all(s["threadId"] == "th-123" for s in sessions)


class TestMisc:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_favicon_empty(self, client: AsyncClient):
        response = await client.get("/favicon.ico")
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_dashboard_served(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "milhouse" in response.text

    @pytest.mark.asyncio
    async def test_browse_unsupported_platform(self, client: AsyncClient, monkeypatch):
        def unsupported(default_path):
            raise FolderPickerError("Folder picker not supported on this OS")

        monkeypatch.setattr("milhouse.server.browse.picker_commands", unsupported)

        response = await client.post("/api/browse", json={})

        assert response.status_code == 400
        assert "not supported" in response.json()["error"]


class TestLogStream:
    def test_sse_frame(self):
        assert to_sse("hello") == "data: hello\n\n"

    @pytest.mark.asyncio
    async def test_replays_then_follows(self):
        broadcaster = LogBroadcaster()
        broadcaster.publish("one")
        broadcaster.publish("two")

        stream = log_stream(broadcaster)
        assert await anext(stream) == "data: one\n\n"
        assert await anext(stream) == "data: two\n\n"

        broadcaster.publish("three")
        assert await anext(stream) == "data: three\n\n"
        assert broadcaster.subscriber_count == 1

        await stream.aclose()
        assert broadcaster.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_ends_when_broadcaster_closes(self):
        broadcaster = LogBroadcaster()
        broadcaster.publish("only")

        stream = log_stream(broadcaster)
        assert await anext(stream) == "data: only\n\n"
        broadcaster.close()

        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_browse_cancelled(self, client: AsyncClient, monkeypatch):
        async def cancelled(default_path, on_stderr=None):
            return None

        monkeypatch.setattr("milhouse.server.routers.browse.pick_folder", cancelled)

        response = await client.post("/api/browse", json={"defaultPath": "/tmp"})
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_browse_picked(self, client: AsyncClient, monkeypatch):
        seen = []

        async def picked(default_path, on_stderr=None):
            seen.append(default_path)
            return "/srv/app"

        monkeypatch.setattr("milhouse.server.routers.browse.pick_folder", picked)

        response = await client.post("/api/browse", content=b'{"defaultPath": "/srv"}')

        assert response.json() == {"path": "/srv/app"}
        assert seen == ["/srv"]
