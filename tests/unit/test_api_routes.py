"""Unit tests for the REST routes, with the store and queue mocked out."""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest
from api import dependencies
from api.dependencies import get_job_queue, get_store, get_stream_registry
from api.server import app
from fastapi.testclient import TestClient
from models.schedule import ScheduleEntry
from shorts_agent.phase_events import PhaseStreamRegistry


@pytest.fixture
def store():
    store = Mock()
    store.save_job = AsyncMock()
    store.get_job = AsyncMock(return_value=None)
    store.list_jobs = AsyncMock(return_value=[])
    store.delete_job = AsyncMock(return_value=False)
    store.save_schedule = AsyncMock()
    store.get_schedule = AsyncMock(return_value=None)
    store.list_schedules = AsyncMock(return_value=[])
    store.delete_schedule = AsyncMock(return_value=False)
    return store


@pytest.fixture
def queue():
    queue = Mock()
    queue.is_in_flight.return_value = False
    queue.enqueue.return_value = True
    return queue


@pytest.fixture
def streams():
    return PhaseStreamRegistry()


@pytest.fixture
def client(store, queue, streams):
    # No context manager: the lifespan (real store, poller) is not started
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_job_queue] = lambda: queue
    app.dependency_overrides[get_stream_registry] = lambda: streams
    yield TestClient(app)
    app.dependency_overrides.clear()


def _entry(**overrides) -> ScheduleEntry:
    values = dict(
        id="sched-1",
        schedule_type="daily",
        time_of_day="09:00",
        timezone="America/Los_Angeles",
        start_date=date(2026, 1, 1),
        next_run=datetime(2026, 1, 1, 17, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return ScheduleEntry(**values)


@pytest.mark.unit
class TestCoreRoutes:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "trendshorts API"

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["scheduler_running"] is False


@pytest.mark.unit
class TestShortRoutes:
    """Tests for one-off short jobs."""

    def test_create_queues_job(self, client, store, queue, streams):
        response = client.post("/api/shorts", json={"category": "Sports", "duration": 30})

        assert response.status_code == 202
        job_id = response.json()["job_id"]
        assert response.json()["status"] == "pending"
        store.save_job.assert_awaited_once()
        assert queue.enqueue.call_args[0][0] == job_id
        assert streams.get(job_id) is not None

    @pytest.mark.parametrize(
        "body",
        [
            {"duration": 7},
            {"duration": 100},
            {"aspect_ratio": "4:3"},
            {"category": ""},
        ],
    )
    def test_invalid_request(self, client, store, body):
        response = client.post("/api/shorts", json=body)

        assert response.status_code == 422
        store.save_job.assert_not_awaited()

    def test_get_missing_job(self, client):
        assert client.get("/api/shorts/nope").status_code == 404

    def test_get_job_includes_phase(self, client, store):
        store.get_job.return_value = {"id": "j1", "status": "pending"}

        response = client.get("/api/shorts/j1")

        assert response.status_code == 200
        assert response.json()["phase"] is None

    def test_events_without_stream(self, client):
        assert client.get("/api/shorts/nope/events").status_code == 404

    def test_download_requires_success(self, client, store):
        store.get_job.return_value = {"id": "j1", "status": "running", "result": None}

        assert client.get("/api/shorts/j1/download").status_code == 400

    def test_download_missing_file(self, client, store, tmp_path):
        store.get_job.return_value = {
            "id": "j1",
            "status": "succeeded",
            "result": {"video_path": str(tmp_path / "gone.mp4")},
        }

        assert client.get("/api/shorts/j1/download").status_code == 404

    def test_download(self, client, store, tmp_path):
        video = tmp_path / "final.mp4"
        video.write_bytes(b"mp4data")
        store.get_job.return_value = {
            "id": "j1",
            "status": "succeeded",
            "result": {"video_path": str(video)},
        }

        response = client.get("/api/shorts/j1/download")

        assert response.status_code == 200
        assert response.content == b"mp4data"

    def test_delete_running_job_conflicts(self, client, queue, store):
        queue.is_in_flight.return_value = True

        assert client.delete("/api/shorts/j1").status_code == 409
        store.delete_job.assert_not_awaited()

    def test_delete_job(self, client, store, streams):
        store.delete_job.return_value = True
        streams.get_or_create("j1")

        assert client.delete("/api/shorts/j1").status_code == 200
        assert streams.get("j1") is None

    def test_websocket_unknown_job(self, client):
        with client.websocket_connect("/ws/shorts/nope") as ws:
            message = ws.receive_json()

        assert message["phase"] == "ERROR"


@pytest.mark.unit
class TestScheduleRoutes:
    """Tests for recurring schedules."""

    def test_create_schedule(self, client, store):
        response = client.post(
            "/api/schedules",
            json={
                "schedule_type": "weekly",
                "time_of_day": "9:30",
                "timezone": "Europe/Berlin",
                "start_date": "2030-01-07",
                "job": {"category": "Tech", "duration": 45},
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["time_of_day"] == "09:30"
        assert data["next_run"] == "2030-01-07T08:30:00+00:00"
        assert data["job_template"]["category"] == "Tech"
        store.save_schedule.assert_awaited_once()

    @pytest.mark.parametrize(
        "body",
        [
            {"time_of_day": "25:00"},
            {"time_of_day": "noon"},
            {"timezone": "Mars/Olympus_Mons"},
            {"schedule_type": "hourly"},
            {"start_date": "2030-02-01", "end_date": "2030-01-01"},
            {"job": {"duration": 33}},
        ],
    )
    def test_invalid_schedule(self, client, store, body):
        response = client.post("/api/schedules", json=body)

        assert response.status_code == 422
        store.save_schedule.assert_not_awaited()

    def test_get_missing_schedule(self, client):
        assert client.get("/api/schedules/nope").status_code == 404

    def test_patch_time_recomputes_next_run(self, client, store):
        store.get_schedule.return_value = _entry(start_date=date(2030, 1, 1))

        response = client.patch("/api/schedules/sched-1", json={"time_of_day": "18:00"})

        assert response.status_code == 200
        assert response.json()["next_run"] == "2030-01-02T02:00:00+00:00"

    def test_patch_reactivation_resets_failures(self, client, store):
        store.get_schedule.return_value = _entry(active=False, fail_count=3)

        response = client.patch("/api/schedules/sched-1", json={"active": True})

        assert response.status_code == 200
        assert response.json()["active"] is True
        assert response.json()["fail_count"] == 0

    def test_patch_end_date_before_start(self, client, store):
        store.get_schedule.return_value = _entry()

        response = client.patch("/api/schedules/sched-1", json={"end_date": "2025-12-31"})

        assert response.status_code == 422
        store.save_schedule.assert_not_awaited()

    def test_delete_missing_schedule(self, client):
        assert client.delete("/api/schedules/nope").status_code == 404


@pytest.mark.unit
@pytest.mark.asyncio
class TestRunJob:
    """Tests for the queue runner's stream bookkeeping."""

    async def test_stream_released_after_run(self, sample_job):
        registry = PhaseStreamRegistry(retention_seconds=0)
        agent = Mock()
        agent.produce = AsyncMock(side_effect=RuntimeError("boom"))

        with patch.object(dependencies, "_streams", registry), patch.object(
            dependencies, "get_agent", return_value=agent
        ):
            with pytest.raises(RuntimeError):
                await dependencies.run_job(sample_job)

            assert registry.get(sample_job.id) is None
