"""Background jobs and their retry runner."""

from cardlink.jobs.base import Job, failure_report
from cardlink.jobs.llm_stream import LLMStreamJob
from cardlink.jobs.retry import JobRunner, RetryPolicy, RetryRule
from cardlink.jobs.specializations import ExtractSpecializationsJob, parse_specializations

__all__ = [
    "ExtractSpecializationsJob",
    "Job",
    "JobRunner",
    "LLMStreamJob",
    "RetryPolicy",
    "RetryRule",
    "failure_report",
    "parse_specializations",
]
