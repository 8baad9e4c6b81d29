"""
Error Taxonomy

Every failure raised by the classification pipeline derives from
LandCoverError. Errors carry the stage that raised them plus the counts
involved, so a failed run can be diagnosed from the log line alone.
"""

from typing import Any, Dict, Optional


class LandCoverError(Exception):
    """
    Base class for all pipeline errors.

    Args:
        message: Human readable description
        stage: Pipeline stage that failed (e.g. "training")
        details: Counts and identifiers relevant to the failure
    """

    def __init__(self, message: str, stage: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.stage = stage
        self.details = dict(details or {})
        text = message
        if stage:
            text = f"[{stage}] {text}"
        if self.details:
            text += " (" + ", ".join(f"{k}={v}" for k, v in self.details.items()) + ")"
        super().__init__(text)


class DataAvailabilityError(LandCoverError):
    """No scenes survive the query filters, or the composite is entirely no-data."""


class InsufficientDataError(LandCoverError):
    """A configured class has zero training samples."""


class SchemaMismatchError(LandCoverError):
    """Feature vector names, order or length disagree with the training schema."""


class EmptyTestSetError(LandCoverError):
    """Accuracy was requested for a test set with no records."""


class ExportTooLargeError(LandCoverError):
    """The requested export grid exceeds the configured pixel-count guard."""
