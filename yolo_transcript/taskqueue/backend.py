"""Queue selection: RQ on Redis when reachable, the in-memory fallback otherwise."""
from __future__ import annotations

import logging
from typing import Any

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue

from ..config import get_settings
from .fallback import InMemoryQueue, InMemoryRedis

logger = logging.getLogger(__name__)

_fallback_queue: InMemoryQueue | None = None


class QueueUnavailableError(RuntimeError):
    pass


def _memory_queue(name: str) -> InMemoryQueue:
    global _fallback_queue
    if _fallback_queue is None or _fallback_queue.name != name:
        _fallback_queue = InMemoryQueue(name, connection=InMemoryRedis.from_url("memory://local"))
    return _fallback_queue


def obtain_queue() -> tuple[Any, bool]:
    """Return a queue instance and whether it uses the in-memory fallback."""

    settings = get_settings()
    if settings.queue_backend == "memory":
        return _memory_queue(settings.rq_default_queue), True
    try:
        redis_conn = Redis.from_url(settings.redis_url)
        redis_conn.ping()
        return Queue(settings.rq_default_queue, connection=redis_conn), False
    except (RedisError, OSError) as exc:
        if settings.queue_backend == "redis":
            logger.error("Redis backend required but unavailable", extra={"detail": str(exc)})
            raise QueueUnavailableError("Redis backend unavailable") from exc
        logger.warning("Redis/RQ unavailable, enabling in-memory queue fallback", extra={"detail": str(exc)})
        return _memory_queue(settings.rq_default_queue), True


def queue_length(queue: Any) -> int:
    count_attr = getattr(queue, "count", 0)
    return int(count_attr()) if callable(count_attr) else int(count_attr)
