"""
Durable background jobs: payload schemas, the SQL-backed dispatcher and
per-category worker pools.
"""

from app.jobs.dispatcher import JobDispatcher
from app.jobs.errors import (
    InvalidPayload,
    JobError,
    JobNotCancellable,
    JobNotFound,
    PermanentJobError,
    TransientJobError,
)
from app.jobs.payloads import JobCategory, parse_payload

__all__ = [
    "JobDispatcher",
    "JobCategory",
    "parse_payload",
    "JobError",
    "InvalidPayload",
    "PermanentJobError",
    "TransientJobError",
    "JobNotFound",
    "JobNotCancellable",
]
