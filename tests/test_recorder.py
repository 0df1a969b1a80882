"""Background scan recorder tests."""

import uuid

import pytest
from sqlalchemy import func, select

from qrlinks.classifier import Classification, ScanContext
from qrlinks.dependencies import RequestContext, ServiceManager
from qrlinks.geo import GeoPoint
from qrlinks.models import ScanEvent
from qrlinks.recorder import ScanRecord, ScanRecorder
from qrlinks.registry import LinkRegistry


async def _count(services: ServiceManager) -> int:
    async with services.session_factory() as session:
        return (await session.execute(select(func.count(ScanEvent.id)))).scalar_one()


@pytest.mark.asyncio
async def test_submitted_records_are_written_in_batches(
    context: RequestContext, services: ServiceManager, owner_id: uuid.UUID
) -> None:
    link, target = await LinkRegistry.from_context(context).create_link(owner_id, "Menu", None, "https://example.com")
    recorder = ScanRecorder(services.session_factory, max_size=50, batch_size=4)
    await recorder.start()

    scan = ScanContext(
        ip="198.51.100.4",
        user_agent="Mozilla/5.0",
        classification=Classification(device="desktop", os="Windows 10", browser="Chrome 120.0"),
        geo=GeoPoint(country="SG", region="Central", city="Singapore", lat=1.29, lon=103.85),
    )
    for _ in range(10):
        assert recorder.submit(ScanRecord(link.id, target.id, scan, utm={"source": "flyer"}))

    await recorder.flush()
    assert recorder.pending == 0
    assert await _count(services) == 10

    async with services.session_factory() as session:
        event = (await session.execute(select(ScanEvent).limit(1))).scalar_one()
    assert event.region == "Central"
    assert event.country == "SG"
    assert event.browser == "Chrome 120.0"
    assert event.utm == {"source": "flyer"}
    assert event.is_prefetch is False

    await recorder.stop()
    assert recorder.running is False


@pytest.mark.asyncio
async def test_submit_before_start_is_dropped(services: ServiceManager) -> None:
    recorder = ScanRecorder(services.session_factory)
    record = ScanRecord(uuid.uuid4(), uuid.uuid4(), ScanContext())
    assert recorder.submit(record) is False


@pytest.mark.asyncio
async def test_full_queue_drops_without_raising(services: ServiceManager, monkeypatch) -> None:
    recorder = ScanRecorder(services.session_factory, max_size=2)
    await recorder.start()

    written = []

    async def counting_write(batch):
        written.append(len(batch))

    monkeypatch.setattr(recorder, "_write", counting_write)
    record = ScanRecord(uuid.uuid4(), uuid.uuid4(), ScanContext())
    # the worker has not had a chance to run yet, so the queue fills up
    results = [recorder.submit(record) for _ in range(4)]
    assert results == [True, True, False, False]

    await recorder.flush()
    assert sum(written) == 2
    await recorder.stop()


@pytest.mark.asyncio
async def test_write_failure_is_logged_and_worker_survives(
    context: RequestContext, services: ServiceManager, owner_id: uuid.UUID
) -> None:
    link, target = await LinkRegistry.from_context(context).create_link(owner_id, "Menu", None, "https://example.com")
    recorder = ScanRecorder(services.session_factory, batch_size=1)
    await recorder.start()

    # the JSON column cannot serialize this batch
    bad = ScanRecord(link.id, target.id, ScanContext(ip="198.51.100.4"), utm={"source": object()})
    good = ScanRecord(link.id, target.id, ScanContext(ip="198.51.100.5"))
    assert recorder.submit(bad)
    assert recorder.submit(good)

    await recorder.flush()
    assert recorder.running
    assert await _count(services) == 1
    await recorder.stop()


@pytest.mark.asyncio
async def test_stop_drains_pending_records(
    context: RequestContext, services: ServiceManager, owner_id: uuid.UUID
) -> None:
    link, target = await LinkRegistry.from_context(context).create_link(owner_id, "Menu", None, "https://example.com")
    recorder = ScanRecorder(services.session_factory, batch_size=2, shutdown_flush_seconds=5.0)
    await recorder.start()

    for _ in range(5):
        recorder.submit(ScanRecord(link.id, target.id, ScanContext()))
    await recorder.stop()

    assert await _count(services) == 5
    assert recorder.submit(ScanRecord(link.id, target.id, ScanContext())) is False
