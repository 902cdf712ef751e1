"""
Job queue exceptions.

Handlers raise PermanentJobError for failures a retry cannot fix (malformed
recipient, unusable payload) and anything else for transient trouble.
"""

from typing import Any, Optional


class JobError(Exception):
    """Base class for job queue errors."""


class InvalidPayload(JobError):
    """The payload does not match the category's schema."""

    def __init__(self, category: str, detail: Any):
        self.category = category
        self.detail = detail
        super().__init__(f"Invalid {category} payload: {detail}")


class PermanentJobError(JobError):
    """Non-retryable failure; the job fails without consuming an attempt."""

    def __init__(self, message: str, result: Optional[dict] = None):
        self.result = result
        super().__init__(message)


class TransientJobError(JobError):
    """Retryable failure, optionally carrying partial results."""

    def __init__(self, message: str, result: Optional[dict] = None):
        self.result = result
        super().__init__(message)


class JobNotFound(JobError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class JobNotCancellable(JobError):
    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is {status} and can no longer be cancelled")
