"""Redis-backed cache of slug resolutions.

Flow Diagram — Resolution lookup
================================
::
    ┌─────────────┐
    │ GET /r/slug │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.get() │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Joined  │  │ Use     │
│ DB read │  │ payload │
└────┬────┘  └─────────┘
     ▼
┌─────────┐
│ cache.  │
│ store() │
└─────────┘

Key Behaviours
===============
- Payloads are ``ResolvedLink`` JSON with a short TTL.
- Retarget, archive and rename invalidate the slug after commit by bumping
  a per-slug generation and deleting the entry.
- A reader samples the generation before its database read and only
  stores the result if the generation is unchanged, so a read that started
  before an invalidation can never re-cache the old target.
- Every Redis failure is logged and treated as a miss; the redirect path
  never depends on Redis being up.
"""

import logging

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import WatchError

from qrlinks.schemas import ResolvedLink

__all__ = ["ResolutionCache", "build_redis"]

logger = logging.getLogger(__name__)

REDIS_OPERATIONS_TOTAL = Counter(
    "qrlinks_redis_operations_total",
    "Total Redis operations issued by the resolution cache",
    ["operation", "status"],
)


def build_redis(redis_url: str) -> redis.Redis:
    return redis.from_url(redis_url, encoding="utf-8", decode_responses=True)


class ResolutionCache:
    def __init__(self, client: redis.Redis, ttl_seconds: int) -> None:
        self._client = client
        self._ttl = ttl_seconds

    @property
    def client(self) -> redis.Redis:
        return self._client

    @staticmethod
    def key(slug: str) -> str:
        return f"link:{slug}"

    @staticmethod
    def generation_key(slug: str) -> str:
        return f"link:gen:{slug}"

    async def get(self, slug: str) -> ResolvedLink | None:
        try:
            cached = await self._client.get(self.key(slug))
        except Exception as exc:
            REDIS_OPERATIONS_TOTAL.labels(operation="get", status="error").inc()
            logger.warning(f"Resolution cache read failed for {slug}: {exc}")
            return None
        REDIS_OPERATIONS_TOTAL.labels(operation="get", status="ok").inc()

        if not cached:
            return None
        try:
            return ResolvedLink.model_validate_json(cached)
        except Exception as exc:
            logger.error(f"Cache deserialization error for {slug}: {exc}")
            return None

    async def generation(self, slug: str) -> int | None:
        """Current invalidation generation of ``slug``; None when Redis is unavailable."""
        try:
            value = await self._client.get(self.generation_key(slug))
        except Exception as exc:
            REDIS_OPERATIONS_TOTAL.labels(operation="generation", status="error").inc()
            logger.warning(f"Resolution cache generation read failed for {slug}: {exc}")
            return None
        REDIS_OPERATIONS_TOTAL.labels(operation="generation", status="ok").inc()
        return int(value or 0)

    async def store(self, slug: str, resolved: ResolvedLink, generation: int | None) -> bool:
        """Cache ``resolved`` only if ``slug`` was not invalidated since ``generation`` was read.

        The generation key is WATCHed so an invalidation landing between the
        check and the SET aborts the transaction.
        """
        if generation is None:
            return False
        generation_key = self.generation_key(slug)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(generation_key)
                current = int(await pipe.get(generation_key) or 0)
                if current != generation:
                    REDIS_OPERATIONS_TOTAL.labels(operation="set", status="stale").inc()
                    logger.info(f"Skipping stale cache write for {slug} (generation {generation} != {current})")
                    return False
                pipe.multi()
                pipe.set(self.key(slug), resolved.model_dump_json(), ex=self._ttl)
                await pipe.execute()
        except WatchError:
            REDIS_OPERATIONS_TOTAL.labels(operation="set", status="stale").inc()
            logger.info(f"Cache write for {slug} lost a race with an invalidation")
            return False
        except Exception as exc:
            REDIS_OPERATIONS_TOTAL.labels(operation="set", status="error").inc()
            logger.warning(f"Resolution cache write failed for {slug}: {exc}")
            return False
        REDIS_OPERATIONS_TOTAL.labels(operation="set", status="ok").inc()
        return True

    async def invalidate(self, *slugs: str) -> None:
        slugs = tuple(slug for slug in slugs if slug)
        if not slugs:
            return
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for slug in slugs:
                    pipe.incr(self.generation_key(slug))
                    pipe.delete(self.key(slug))
                await pipe.execute()
            REDIS_OPERATIONS_TOTAL.labels(operation="delete", status="ok").inc()
        except Exception as exc:
            REDIS_OPERATIONS_TOTAL.labels(operation="delete", status="error").inc()
            logger.warning(f"Resolution cache invalidation failed for {', '.join(slugs)}: {exc}")

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
