"""Error taxonomy for the rates core."""


class RateServiceError(Exception):
    """Base class for every error raised by the rates core."""


class ExtractionError(RateServiceError):
    """A source could not produce a valid rate (primary and fallback exhausted)."""


class ValidationError(RateServiceError):
    """A caller-supplied sampling parameter is out of bounds."""


class UnavailableError(RateServiceError):
    """No cache tier, origin or stale fallback could answer a read."""


class TransientStorageError(RateServiceError):
    """The persistent store failed an I/O operation."""
