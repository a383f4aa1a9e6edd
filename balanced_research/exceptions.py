"""Exceptions raised across the research pipeline."""
from __future__ import annotations


class ResearchError(Exception):
    """Base exception for research pipeline errors."""


class ConfigurationError(ResearchError):
    """Raised when a required credential or setting is missing."""


class SourceFetchError(ResearchError):
    """Raised when a source adapter cannot produce results."""

    def __init__(self, message: str, *, source: str, status_code: int | None = None):
        super().__init__(message)
        self.source = source
        self.status_code = status_code


class CustomUrlValidationError(ResearchError):
    """Raised before fetching when any custom URL is malformed."""

    def __init__(self, invalid_urls: list[str]):
        self.invalid_urls = list(invalid_urls)
        super().__init__(f"Invalid URLs detected: {', '.join(self.invalid_urls)}")


class ExtractionError(ResearchError):
    """Raised inside the content extractor; never escapes it."""


class SynthesisError(ResearchError):
    """Raised when the answer completion call fails."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
