"""
Error Taxonomy
==============
Per-document failures are IngestError subclasses: the engine converts them
into a DocumentOutcome and moves on. ConfigurationError is the only error
that stops a run.
"""

from __future__ import annotations

from typing import Optional

from .models import SkipReason


class ConfigurationError(Exception):
    """Run cannot start: missing exam, no usable extraction strategy, etc."""


class IngestError(Exception):
    """Base class for recoverable, per-document failures."""

    reason: Optional[SkipReason] = None
    permanent: bool = False

    def __init__(self, message: str = "", *, permanent: Optional[bool] = None):
        super().__init__(message)
        if permanent is not None:
            self.permanent = permanent


class FetchError(IngestError):
    """Network failure or 5xx; retried unless marked permanent."""
    reason = SkipReason.FETCH_FAILED

    def __init__(
        self,
        message: str = "",
        *,
        status_code: Optional[int] = None,
        permanent: Optional[bool] = None,
    ):
        super().__init__(message, permanent=permanent)
        self.status_code = status_code


class FetchNotFound(FetchError):
    """HTTP 404/410. Never retried."""
    reason = SkipReason.NOT_FOUND
    permanent = True


class ProviderError(IngestError):
    """An extraction strategy failed outright (HTTP error, bad payload)."""
    reason = SkipReason.EXTRACTION_FAILED


class AttemptTimeout(ProviderError):
    """A time-boxed call did not finish in time."""


class ExtractionFailed(IngestError):
    """Every strategy in the waterfall was exhausted."""
    reason = SkipReason.EXTRACTION_FAILED
    permanent = True

    def __init__(self, message: str = "", *, reason: Optional[SkipReason] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class NotInExamFamily(IngestError):
    """Document belongs to an unrelated exam sharing the listing page."""
    reason = SkipReason.NOT_IN_EXAM_FAMILY
    permanent = True


class NoQuestionsFound(IngestError):
    """Text was extracted but no question survived segmentation."""
    reason = SkipReason.NO_QUESTIONS
    permanent = True
