"""
Event assembler: frames each audit event and feeds its records through the
collectors into a single output buffer.
"""

import datetime as dt

from auditshape.buffer import OutputBuffer
from auditshape.dispatch_collector import DEFAULT_MAP, DispatchCollector
from auditshape.errors import InvalidArguments, SourceReadFailed
from auditshape.format import Format, Lang
from auditshape.source import AuditEvent


def format_timestamp(seconds: int, millis: int, tz: dt.tzinfo | None = None) -> str:
    """Render `YYYY-MM-DDTHH:MM:SS.mmm+HH:MM`, in local time unless `tz` is given."""
    if tz is None:
        moment = dt.datetime.fromtimestamp(seconds).astimezone()
    else:
        moment = dt.datetime.fromtimestamp(seconds, tz=tz)
    zone = moment.strftime("%z")
    return f"{moment.strftime('%Y-%m-%dT%H:%M:%S')}.{millis:03d}{zone[:3]}:{zone[3:5]}"


class Converter:
    def __init__(self, format: Format):
        if not isinstance(format, Format):
            raise InvalidArguments("converter needs a Format")
        self.format = format
        self.buf = OutputBuffer(format)
        self.coll = DispatchCollector(format, self.buf, DEFAULT_MAP)

    def getvalue(self) -> str:
        return self.buf.getvalue()

    def empty(self) -> None:
        self.buf.empty()
        self.coll.empty()

    def cleanup(self) -> None:
        self.buf.cleanup()
        self.coll.cleanup()

    def add_prologue(self) -> None:
        buf = self.buf
        buf.space_opening(0)
        if self.format.lang is Lang.XML:
            buf.add_str('<?xml version="1.0" encoding="UTF-8"?>')
            buf.space_opening(0)
            buf.add_str("<log>")
        else:
            buf.add_str("[")

    def add_epilogue(self) -> None:
        buf = self.buf
        buf.space_closing(0)
        buf.add_str("</log>" if self.format.lang is Lang.XML else "]")

    def add_event(self, event: AuditEvent, first: bool = True) -> None:
        """
        Append one event to the buffer.

        `first` tells whether this is the first event of the document, which
        decides JSON comma placement. On error the buffer holds a partial
        event; discarding it is up to the caller.
        """
        if event is None:
            raise InvalidArguments("no event to add")
        if event.seconds is None:
            raise SourceReadFailed(f"timestamp of event {event.serial} unavailable")
        buf = self.buf
        level = 1 if self.format.events_per_doc else 0
        depth = level
        timestamp = format_timestamp(event.seconds, event.millis, self.format.tz)

        self.coll.empty()

        if self.format.lang is Lang.XML:
            buf.space_opening(depth)
            buf.add_fmt('<event serial="%d" time="%s"', event.serial, timestamp)
            if event.host is not None:
                buf.add_str(' host="')
                buf.add_xml(event.host)
                buf.add_str('"')
            buf.add_str(">")
        else:
            if not first:
                buf.add_str(",")
            buf.space_opening(depth)
            buf.add_str("{")
            depth += 1
            buf.space_opening(depth)
            buf.add_fmt('"serial":%d,', event.serial)
            buf.space_opening(depth)
            buf.add_fmt('"time":"%s",', timestamp)
            if event.host is not None:
                buf.space_opening(depth)
                buf.add_str('"host":"')
                buf.add_json(event.host)
                buf.add_str('",')
            buf.space_opening(depth)
            buf.add_str('"records":{')

        depth += 1
        if not event.records:
            raise SourceReadFailed(f"event {event.serial} has no records")
        for record in event.records:
            self.coll.add(depth, record)
        first_record = self.coll.end(depth, True)
        self.coll.empty()

        depth -= 1
        if self.format.lang is Lang.XML:
            buf.space_closing(depth)
            buf.add_str("</event>")
        else:
            if not first_record:
                buf.space_closing(depth)
            buf.add_str("}")
            depth -= 1
            buf.space_closing(depth)
            buf.add_str("}")
