"""Typed retry policy and the runner that applies it around jobs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from cardlink.config import RetrySpec
from cardlink.errors import ApiError, LLMTimeoutError

if TYPE_CHECKING:
    from cardlink.jobs.base import Job

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryRule:
    """Retry *exception* after *wait* seconds, for at most *attempts* executions.

    ``attempts`` counts executions that failed with this rule, the first
    one included: ``attempts=2`` means one retry.
    """

    exception: type[BaseException]
    wait: float
    attempts: int
    predicate: Callable[[BaseException], bool] | None = None

    def matches(self, exc: BaseException) -> bool:
        if not isinstance(exc, self.exception):
            return False
        return self.predicate is None or self.predicate(exc)


def _is_retryable_api_error(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and exc.retryable


class RetryPolicy:
    """Ordered list of rules; the first matching rule classifies a failure."""

    def __init__(self, rules: list[RetryRule] | None = None) -> None:
        self.rules = list(rules or [])

    def classify(self, exc: BaseException) -> RetryRule | None:
        for rule in self.rules:
            if rule.matches(exc):
                return rule
        return None

    @classmethod
    def from_spec(cls, spec: RetrySpec) -> RetryPolicy:
        """Timeouts and retryable API errors (rate limit, 5xx); nothing else."""
        return cls([
            RetryRule(LLMTimeoutError, spec.timeout_wait, spec.timeout_attempts),
            RetryRule(
                ApiError,
                spec.api_error_wait,
                spec.api_error_attempts,
                predicate=_is_retryable_api_error,
            ),
        ])


class JobRunner:
    """Runs jobs, re-executing them per their retry policy.

    Parameters
    ----------
    sleep:
        Coroutine used to wait between attempts (tests pass a fake).
    """

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> None:
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    async def run(self, job: Job) -> Any:
        """Execute *job* until it succeeds or its policy gives up."""
        policy = job.retry_policy()
        failures: dict[RetryRule, int] = {}
        while True:
            try:
                return await job.run()
            except Exception as e:
                rule = policy.classify(e)
                if rule is None:
                    raise
                failures[rule] = failures.get(rule, 0) + 1
                if failures[rule] >= rule.attempts:
                    _logger.error(
                        "%s %s giving up after %d attempts: %s",
                        type(job).__name__, job.job_id, failures[rule], e,
                    )
                    raise
                _logger.warning(
                    "%s %s failed (%s), retrying in %ss (attempt %d/%d)",
                    type(job).__name__, job.job_id, type(e).__name__,
                    rule.wait, failures[rule] + 1, rule.attempts,
                )
                await self._sleep(rule.wait)

    def enqueue(self, job: Job) -> asyncio.Task:
        """Schedule *job* in the background and return its task."""
        task = asyncio.create_task(self._run_logged(job), name=f"{job.queue_name}:{job.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_logged(self, job: Job) -> Any:
        try:
            return await self.run(job)
        except Exception:
            _logger.exception("Job %s %s failed", type(job).__name__, job.job_id)
            raise

    async def drain(self) -> None:
        """Wait for every enqueued job to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
