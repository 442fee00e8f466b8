"""Error hierarchy for batch preparation and interactive counting.

Propagation policy
------------------
- ``ConfigurationError`` aborts an operation before any region is touched.
- ``TransientClientError`` is retried per attempt; exhausting the attempt
  budget fails the region, never the run.
- ``GeometryError`` and ``ArtifactMissingError`` skip a single region.
- ``InvariantViolation`` rejects the value at the boundary that produced it.
- ``UserAbort`` models a host-side cancellation; QUIT itself is a normal
  return path of the analysis loop.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
    "CristaeDensityError",
    "ConfigurationError",
    "TransientClientError",
    "GeometryError",
    "ArtifactMissingError",
    "InvariantViolation",
    "UserAbort",
]


class CristaeDensityError(Exception):
    """Base exception carrying a message and structured context."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        self.suggestions = list(suggestions or [])

    def format_user_message(self) -> str:
        """Format error for user display (without technical details)."""
        msg = self.message
        if self.suggestions:
            msg += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                msg += f"\n  {i}. {suggestion}"
        return msg


class ConfigurationError(CristaeDensityError):
    """Missing model artifact, empty catalog, unwritable output root, bad settings."""


class TransientClientError(CristaeDensityError):
    """Segmentation client timed out or reported failure for one attempt."""

    def __init__(self, message: str, stage: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.stage = stage
        if stage:
            self.context.setdefault("stage", stage)


class GeometryError(CristaeDensityError):
    """Zero-area or out-of-bounds region."""


class ArtifactMissingError(CristaeDensityError):
    """Raw crop or probability map absent for a catalog entry."""


class InvariantViolation(CristaeDensityError):
    """A produced value breaks a data-model invariant and is rejected."""


class UserAbort(CristaeDensityError):
    """Host requested a graceful stop."""
