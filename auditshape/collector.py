"""
Collector interface.

A collector turns the records routed to it during one event into one rendered
unit. Instances live for the whole run: `add()` is called for each record,
`end()` once the event's records are exhausted, and `empty()` resets the
per-event state so the same instance serves the next event.
"""

import abc

from auditshape.buffer import OutputBuffer
from auditshape.errors import InvalidArguments, SourceReadFailed
from auditshape.format import Format
from auditshape.source import AuditField, AuditRecord


class Collector(abc.ABC):
    def __init__(self, format: Format, buf: OutputBuffer, args=None):
        if not isinstance(format, Format) or not isinstance(buf, OutputBuffer):
            raise InvalidArguments("collector needs a format and an output buffer")
        self.format = format
        self.buf = buf

    @abc.abstractmethod
    def is_valid(self) -> bool:
        """Check the collector's internal invariants."""

    @abc.abstractmethod
    def is_empty(self) -> bool:
        """Return True if nothing would be output by `end()`."""

    @abc.abstractmethod
    def empty(self) -> None:
        """Discard accumulated per-event state."""

    @abc.abstractmethod
    def add(self, level: int, record: AuditRecord) -> None:
        """Consume one record, rendering at nesting `level`."""

    @abc.abstractmethod
    def end(self, level: int, first: bool) -> bool:
        """
        Write the accumulated output to the shared buffer.

        `first` tells whether nothing was written yet at this level, so JSON
        output knows whether a separating comma is due. Returns the updated
        flag.
        """

    def cleanup(self) -> None:
        self.empty()


def record_text(record: AuditRecord) -> str:
    if record.text is None:
        raise SourceReadFailed("record text unavailable")
    return record.text


def record_type(record: AuditRecord) -> str:
    if not record.type_name:
        raise SourceReadFailed("record type unavailable")
    return record.type_name


def field_name(item: AuditField) -> str:
    if item.name is None:
        raise SourceReadFailed("field name unavailable")
    return item.name


def field_raw(item: AuditField) -> str:
    if item.raw is None:
        raise SourceReadFailed(f"raw value of field {item.name} unavailable")
    return item.raw


def field_interpreted(item: AuditField) -> str:
    if item.interpreted is None:
        raise SourceReadFailed(f"interpreted value of field {item.name} unavailable")
    return item.interpreted
