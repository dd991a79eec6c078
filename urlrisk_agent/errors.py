from __future__ import annotations


class UrlValidationError(ValueError):
    """Raised when the submitted URL fails a validation rule.

    ``kind`` is one of the ``ErrorKind`` literals and is surfaced to the
    caller so it can tell which rule rejected the input.
    """

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class ParseError(ValueError):
    pass


class SourceError(Exception):
    """A signal source failed and retrying will not help."""


class TransientSourceError(SourceError):
    """A signal source failed in a way that may succeed on retry (network, 429, 5xx)."""


class SourceSkipped(Exception):
    """A signal source cannot run for this request (no credentials, disabled upstream)."""


class AnalysisFailedError(RuntimeError):
    """Unexpected failure after validation. The message is safe to show to clients."""

    def __init__(self, message: str = "An unexpected error occurred during URL analysis"):
        super().__init__(message)
        self.message = message
