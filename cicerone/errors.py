"""Error types for Cicerone.

None of these is fatal: each one disables a slice of the guide (narration,
position-based filtering, catalog refresh) while the rest keeps working.
"""

from typing import Any, Optional


class GuideError(Exception):
    """Base exception for the guide."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, "details": self.details}


class CatalogLoadFailure(GuideError):
    """The POI source could not be reached or returned unusable rows.

    The previously loaded catalog stays in place; the user may reload manually.
    """


class GeolocationUnavailable(GuideError):
    """No position fix: capability missing, permission denied or timed out."""


class SpeechUnsupported(GuideError):
    """No speech synthesis capability on this system."""


class AudioUnlockFailure(GuideError):
    """Tone or speech failed while unlocking audio; the gate stays locked."""
