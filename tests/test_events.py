"""Change event bus: per-job delivery, thread-safe publish, store notifications."""
import asyncio
import threading

from app.core.events import JOB_TABLE, RESULT_TABLE, ChangeEvent, EventBus
from app.models import ImageAnalysisResult
from app.services.job_store import JobStore


def _event(job_id: str, status: str = "processing") -> ChangeEvent:
    return ChangeEvent(table=JOB_TABLE, event_type="UPDATE", job_id=job_id, record={"id": job_id, "status": status})


def test_subscriber_only_sees_its_job():
    bus = EventBus()

    async def run():
        with bus.subscribe("job-a") as sub:
            bus.publish(_event("job-b"))
            bus.publish(_event("job-a", "completed"))
            first = await sub.get(timeout=1)
            second = await sub.get(timeout=0.05)
        return first, second

    first, second = asyncio.run(run())
    assert first.job_id == "job-a"
    assert first.record["status"] == "completed"
    assert second is None
    assert bus.subscriber_count("job-a") == 0


def test_publish_from_another_thread():
    bus = EventBus()

    async def run():
        with bus.subscribe("job-a") as sub:
            worker = threading.Thread(target=bus.publish, args=(_event("job-a"),))
            worker.start()
            event = await sub.get(timeout=2)
            worker.join()
        return event

    assert asyncio.run(run()).job_id == "job-a"


def test_payload_shape():
    payload = _event("job-a").to_payload()
    assert payload["table"] == JOB_TABLE
    assert payload["eventType"] == "UPDATE"
    assert payload["record"]["id"] == "job-a"
    assert "emitted_at" in payload


def test_store_writes_publish_events():
    bus = EventBus()
    store = JobStore(bus=bus)
    job = store.create_job("farmer-1", 1, "field-a", "comprehensive")

    async def run():
        events = []
        with bus.subscribe(job.id) as sub:
            store.mark_processing(job.id)
            store.save_result(ImageAnalysisResult(batch_id=job.id, image_index=0, image_url="https://img.example/0.jpg"))
            store.fail_job(job.id, "Batch aborted: test")
            for _ in range(3):
                events.append(await sub.get(timeout=1))
        return events

    events = asyncio.run(run())
    assert [(e.table, e.event_type) for e in events] == [
        (JOB_TABLE, "UPDATE"),
        (RESULT_TABLE, "INSERT"),
        (JOB_TABLE, "UPDATE"),
    ]
    assert events[0].record["status"] == "processing"
    assert events[1].record["image_index"] == 0
    assert events[2].record["status"] == "failed"
    assert events[2].record["error_message"] == "Batch aborted: test"
