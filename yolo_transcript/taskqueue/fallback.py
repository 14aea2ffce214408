"""In-memory replacements for Redis/RQ so the app works without extra services."""

from __future__ import annotations

import threading
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from . import tasks


class InMemoryRedis:
    """Tiny Redis stand-in used when the real dependency is unavailable."""

    _jobs: Dict[str, "InMemoryJob"] = {}
    _jobs_lock = threading.Lock()

    def __init__(self, url: str = "memory://local") -> None:
        self.url = url

    @staticmethod
    def from_url(url: str) -> "InMemoryRedis":
        return InMemoryRedis(url)

    def ping(self) -> bool:  # pragma: no cover - trivial
        return True

    @classmethod
    def register(cls, job: "InMemoryJob") -> None:
        with cls._jobs_lock:
            cls._jobs[job.id] = job

    @classmethod
    def discard(cls, job_id: str) -> None:
        with cls._jobs_lock:
            cls._jobs.pop(job_id, None)

    @classmethod
    def jobs(cls) -> list["InMemoryJob"]:
        with cls._jobs_lock:
            return list(cls._jobs.values())


class InMemoryJob:
    """Background job executed on a timer thread, optionally after a delay."""

    def __init__(
        self,
        func: Callable[..., Any],
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        *,
        queue: "InMemoryQueue",
        meta: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.func = func
        self.args = args
        self.kwargs = kwargs
        self.queue = queue
        self.meta: Dict[str, Any] = {"status": "scheduled" if delay > 0 else "queued"}
        if meta:
            self.meta.update(meta)
        self._status = self.meta["status"]
        self.result: Any = None
        self.exc_info: Optional[BaseException] = None
        self._timer = threading.Timer(max(delay, 0.0), self._run)
        self._timer.daemon = True
        InMemoryRedis.register(self)
        self._timer.start()

    def get_status(self, refresh: bool = True) -> str:
        return self._status

    def save_meta(self) -> None:  # pragma: no cover - nothing to persist
        pass

    def cancel(self) -> None:
        self._timer.cancel()
        if self._status in {"queued", "scheduled"}:
            self._status = "canceled"
            InMemoryRedis.discard(self.id)

    def is_finished(self) -> bool:
        return self._status in {"finished", "failed", "canceled"}

    def _run(self) -> None:
        tasks.set_current_job(self)
        self._status = "started"
        outcome = "failed"
        try:
            self.result = self.func(*self.args, **self.kwargs)
            outcome = "finished"
        except Exception as exc:
            self.exc_info = exc
            self.meta["error_message"] = str(exc)
        finally:
            self.meta["status"] = outcome
            tasks.clear_current_job()
            # Only pending and running jobs stay registered.
            InMemoryRedis.discard(self.id)
            self._status = outcome


class InMemoryQueue:
    """Simple queue facade compatible with the bits of RQ that we use."""

    def __init__(self, name: str, connection: Optional[InMemoryRedis] = None) -> None:
        self.name = name
        self.connection = connection or InMemoryRedis()

    def _make_job(self, func: Callable[..., Any], args: Tuple[Any, ...], kwargs: Dict[str, Any], delay: float) -> InMemoryJob:
        meta = kwargs.pop("meta", None)
        for rq_option in ("job_timeout", "result_ttl", "failure_ttl"):
            kwargs.pop(rq_option, None)
        return InMemoryJob(func, args, kwargs, queue=self, meta=meta, delay=delay)

    def enqueue(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> InMemoryJob:
        return self._make_job(func, args, kwargs, 0.0)

    def enqueue_in(self, time_delta: timedelta, func: Callable[..., Any], *args: Any, **kwargs: Any) -> InMemoryJob:
        return self._make_job(func, args, kwargs, time_delta.total_seconds())

    def fetch_job(self, job_id: str) -> Optional[InMemoryJob]:
        with self.connection._jobs_lock:
            return self.connection._jobs.get(job_id)

    @property
    def count(self) -> int:
        return sum(1 for job in self.connection.jobs() if not job.is_finished())


def cancel_pending_jobs() -> None:
    """Stop timers that have not fired yet (used on shutdown and in tests)."""

    for job in InMemoryRedis.jobs():
        job.cancel()
    with InMemoryRedis._jobs_lock:
        InMemoryRedis._jobs.clear()


def drain_completed_jobs(timeout: float = 0.0) -> None:
    """Utility for tests: wait for any due in-memory jobs to settle."""

    deadline = time.monotonic() + max(timeout, 0.0)
    while True:
        running = [job for job in InMemoryRedis.jobs() if job.get_status() in {"queued", "started"}]
        if not running or time.monotonic() >= deadline:
            break
        time.sleep(0.01)
