from __future__ import annotations

from typing import Any, Dict, Optional


class VocTrackerError(Exception):
    """Base class for every error raised by the tracker."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(VocTrackerError):
    """Malformed input: bad product reference, non-positive gallons, invalid date."""


class ConfigurationError(VocTrackerError):
    """Missing/zero permit limit or unresolvable product during a computation."""


class UpstreamUnavailable(VocTrackerError):
    """External catalog / usage store could not be reached or answered with an error."""
