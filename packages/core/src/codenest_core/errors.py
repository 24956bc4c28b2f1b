"""Exception types raised by codenest_core."""

from __future__ import annotations


class CodenestError(Exception):
    """Base class for every error raised by the review pipeline."""


class ReviewConfigError(CodenestError, ValueError):
    """The review request is invalid (e.g. more than one review mode selected)."""


class DiscoveryError(CodenestError):
    """Workspace or changed files could not be resolved."""


class ExtractionError(CodenestError, ValueError):
    """No structured review content could be recovered from a model response."""


class ProviderError(CodenestError):
    """A chat-completion or embedding request failed after all retries."""
