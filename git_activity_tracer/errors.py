"""Exception types raised across git-activity-tracer."""


class ActivityTrackerError(Exception):
    """Base class for all errors raised by this package."""


class ConstructionError(ActivityTrackerError):
    """A connector could not be created (missing or blank credential)."""


class AuthenticationError(ActivityTrackerError):
    """The token owner's identity could not be resolved."""


class UpstreamStructuralError(ActivityTrackerError):
    """The primary discovery query failed or returned an error payload."""


class UpstreamPartialError(ActivityTrackerError):
    """A single repository, branch or request sub-fetch failed."""


class CacheReadError(ActivityTrackerError):
    """A cache file exists but could not be read or parsed."""


class CacheWriteError(ActivityTrackerError):
    """A cache file could not be written."""


class ValidationError(ActivityTrackerError, ValueError):
    """Invalid user input, with suggestions on how to fix it.

    Args:
        message: Description of the problem
        suggestions: Hints shown to the user alongside the message
    """

    def __init__(self, message: str, suggestions: list[str] | None = None):
        super().__init__(message)
        self.suggestions = suggestions or []
