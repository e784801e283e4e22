"""
Error kinds raised by the converter.

Every component raises the first error it hits and lets it propagate to the
caller untouched. The caller owns the output buffer and must discard whatever
was appended for the failing event.
"""

# Buffer growth failure is the interpreter's own error; nothing wraps it.
OutOfMemory = MemoryError


class ConversionError(Exception):
    """Base class for errors raised while converting audit events."""


class InvalidArguments(ConversionError, ValueError):
    """A format configuration or a required input is invalid."""


class SourceReadFailed(ConversionError):
    """The record source could not supply an expected value."""


class InvalidSequence(ConversionError):
    """A record or field sequence violates the collector contracts."""

    def __init__(self, message: str, record: str | None = None):
        super().__init__(message)
        self.record = record


class InvalidExecveSequence(InvalidSequence):
    """An EXECVE record group cannot be reassembled."""
