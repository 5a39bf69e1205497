"""
Error taxonomy for the aggregation pipeline.

Source errors never leave an adapter: SourceAdapter.fetch() converts them
into an Unavailable result. InternalFault is raised by a run stage and is
caught at the RunScheduler boundary.
"""

from typing import Optional


class SourceError(Exception):
    """Base class for provider failures."""

    def __init__(self, source_id: str, reason: str):
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class TransientSourceError(SourceError):
    """Network failure, timeout, rate limit or 5xx — worth retrying."""

    def __init__(self, source_id: str, reason: str, status_code: Optional[int] = None):
        super().__init__(source_id, reason)
        self.status_code = status_code


class PermanentSourceError(SourceError):
    """Missing credentials, rejected request or malformed payload — never retried."""


class InternalFault(Exception):
    """Programming error inside a pipeline stage."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause!r}")
        self.stage = stage
        self.cause = cause
