"""Background scan-event writer.

The redirect path hands scan records to ``ScanRecorder.submit()``, which only
enqueues. A single worker task drains the bounded queue in batches and writes
them through its own database sessions, so a slow or failing database never
delays or reverses a redirect.

Flow Diagram — Scan recording
=============================
::
    redirect handler            worker task
    ────────────────            ───────────
    submit(record) ──put──▶ ┌─────────────┐
          │                 │ asyncio     │
          ▼                 │ Queue       │──get──▶ batch (≤ batch_size)
    302 response            │ (bounded)   │             │
                            └─────────────┘             ▼
                                                 session.add_all()
                                                 commit / log failure

Key Behaviours
===============
- A full queue drops the record with a warning; nothing is raised.
- Write failures are logged and counted, the batch is discarded.
- ``stop()`` waits up to ``SCAN_SHUTDOWN_FLUSH_SECONDS`` for the queue to
  drain, then cancels the worker. A hard crash loses in-flight records.
"""

import asyncio
import datetime
import logging
import uuid
from dataclasses import dataclass, field

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qrlinks.classifier import ScanContext
from qrlinks.models import ScanEvent

__all__ = ["ScanRecord", "ScanRecorder"]

logger = logging.getLogger(__name__)

SCAN_WRITES_TOTAL = Counter(
    "qrlinks_scan_writes_total",
    "Scan events written to the database",
    ["prefetch"],
)
SCAN_WRITE_FAILURES_TOTAL = Counter(
    "qrlinks_scan_write_failures_total",
    "Scan events lost because their batch failed to write",
)
SCAN_QUEUE_DROPPED_TOTAL = Counter(
    "qrlinks_scan_queue_dropped_total",
    "Scan events dropped because the recorder was full or not running",
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class ScanRecord:
    link_id: uuid.UUID
    target_id: uuid.UUID
    context: ScanContext
    utm: dict[str, str] = field(default_factory=dict)
    occurred_at: datetime.datetime = field(default_factory=_utcnow)

    def to_event(self) -> ScanEvent:
        ctx = self.context
        return ScanEvent(
            link_id=self.link_id,
            target_id=self.target_id,
            occurred_at=self.occurred_at,
            ip=ctx.ip,
            user_agent=ctx.user_agent,
            device_type=ctx.classification.device,
            os=ctx.classification.os,
            browser=ctx.classification.browser,
            country=ctx.geo.country,
            region=ctx.geo.region,
            city=ctx.geo.city,
            lat=ctx.geo.lat,
            lon=ctx.geo.lon,
            language=ctx.language,
            referer=ctx.referer,
            utm=dict(self.utm),
            is_prefetch=ctx.is_prefetch,
        )


class ScanRecorder:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_size: int = 10000,
        batch_size: int = 100,
        shutdown_flush_seconds: float = 5.0,
    ) -> None:
        assert max_size > 0, f"max_size must be positive, got {max_size!r}"
        assert batch_size > 0, f"batch_size must be positive, got {batch_size!r}"
        self._session_factory = session_factory
        self._max_size = max_size
        self._batch_size = batch_size
        self._shutdown_flush_seconds = shutdown_flush_seconds
        self._queue: asyncio.Queue[ScanRecord] | None = None
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_size)
        self._worker = asyncio.create_task(self._run(), name="scan-recorder")
        logger.info("Scan recorder started")

    def submit(self, record: ScanRecord) -> bool:
        """Enqueue ``record`` without waiting. Returns False when it was dropped."""
        if self._queue is None or not self.running:
            SCAN_QUEUE_DROPPED_TOTAL.inc()
            logger.warning(f"Scan recorder not running, dropping scan for link {record.link_id}")
            return False
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            SCAN_QUEUE_DROPPED_TOTAL.inc()
            logger.warning(f"Scan queue full ({self._max_size}), dropping scan for link {record.link_id}")
            return False
        return True

    async def flush(self) -> None:
        """Wait until every submitted record has been written or discarded."""
        if self._queue is not None and self.running:
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.flush(), timeout=self._shutdown_flush_seconds)
        except TimeoutError:
            logger.error(f"Scan recorder shutdown timed out with {self.pending} scans unwritten")

        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.info("Scan recorder stopped")

    async def _run(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            batch = [await queue.get()]
            while len(batch) < self._batch_size:
                try:
                    batch.append(queue.get_nowait())
                except asyncio.QueueEmpty:
                    break

            try:
                await self._write(batch)
            except Exception as exc:
                SCAN_WRITE_FAILURES_TOTAL.inc(len(batch))
                logger.error(f"Scan write failed, discarding {len(batch)} scans: {exc}")
            finally:
                for _ in batch:
                    queue.task_done()

    async def _write(self, batch: list[ScanRecord]) -> None:
        async with self._session_factory() as session:
            session.add_all([record.to_event() for record in batch])
            await session.commit()

        for record in batch:
            SCAN_WRITES_TOTAL.labels(prefetch=str(record.context.is_prefetch).lower()).inc()
        logger.debug(f"Wrote {len(batch)} scan events")
