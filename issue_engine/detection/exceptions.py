"""Issue detection exception hierarchy."""

from typing import Optional


class IssueDetectionError(Exception):
    """Base exception for all issue detection errors."""


class DataUnavailable(IssueDetectionError):
    """The detection context could not be loaded; the pass is aborted."""


class AIBackendError(IssueDetectionError):
    """Language-model call failed (network, timeout, auth)."""


class AIParseError(IssueDetectionError):
    """Language-model response did not contain the expected JSON."""


class PersistenceError(IssueDetectionError):
    """Writing an alert group (or reading existing alerts) failed."""

    def __init__(
        self,
        message: str,
        issue_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> None:
        self.issue_type = issue_type
        self.entity_id = entity_id
        super().__init__(message)


class SchedulerOverlapError(IssueDetectionError):
    """A detection pass was requested while another one is running."""
