"""Base class for background jobs."""

from __future__ import annotations

import logging
import traceback
import uuid
from abc import ABC, abstractmethod
from typing import Any

from cardlink.events.bus import SYSTEM_MONITOR_TOPIC, Publisher
from cardlink.jobs.retry import RetryPolicy
from cardlink.types import BroadcastEvent, BroadcastType

_logger = logging.getLogger(__name__)

BACKTRACE_FRAMES = 10


def _backtrace(exc: BaseException) -> str:
    """The frames nearest the raise, one line per frame, raising frame last."""
    frames = traceback.extract_tb(exc.__traceback__)[-BACKTRACE_FRAMES:]
    return "\n".join(
        f"{f.filename}:{f.lineno} in {f.name}" + (f": {f.line}" if f.line else "")
        for f in frames
    )


def failure_report(job: Job, exc: BaseException) -> dict[str, Any]:
    """Payload describing an uncaught job exception for operators."""
    return BroadcastEvent(BroadcastType.JOB_FAILED, {
        "message": f"{type(exc).__name__}: {exc}",
        "job_class": type(job).__name__,
        "job_id": job.job_id,
        "queue": job.queue_name,
        "exception_class": type(exc).__name__,
        "backtrace": _backtrace(exc),
    }).to_payload()


class Job(ABC):
    """One unit of background work.

    Subclasses implement ``perform()`` and let exceptions propagate:
    ``run()`` reports every uncaught exception to the system monitor topic
    and re-raises it so the runner's retry bookkeeping still applies.
    """

    queue_name = "default"

    def __init__(self, publisher: Publisher | None = None) -> None:
        self.job_id = uuid.uuid4().hex
        self.publisher = publisher
        self.executions = 0

    @abstractmethod
    async def perform(self) -> Any:
        ...

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy()

    async def run(self) -> Any:
        self.executions += 1
        try:
            return await self.perform()
        except Exception as e:
            await self._report_failure(e)
            raise

    async def _report_failure(self, exc: Exception) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish(SYSTEM_MONITOR_TOPIC, failure_report(self, exc))
        except Exception as e:
            _logger.error("Failed to broadcast job error: %s", e)
