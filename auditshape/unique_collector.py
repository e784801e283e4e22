"""
Collector for records rendered one by one, such as SYSCALL, CWD or PATH.

Each record becomes an element (XML) or object (JSON) named after its type,
with one child per field carrying the interpreted value and, where it
differs, the raw one:

    <cwd raw="type=CWD msg=..."><cwd i="/root"/></cwd>
    "cwd":{"raw":"type=CWD msg=...","cwd":["/root"]}

In unique mode a record identical to the one accumulated right before it is
dropped. In JSON, a collector that ends up with several records, or that is
not in unique mode, outputs them as an array so member names never repeat.
Field names must be unique within a record for the same reason.
"""

import re
from dataclasses import dataclass

from auditshape.collector import (
    Collector,
    field_interpreted,
    field_name,
    field_raw,
    record_text,
    record_type,
)
from auditshape.errors import InvalidArguments, InvalidSequence
from auditshape.format import Lang
from auditshape.source import AuditRecord


NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]*")
RESERVED_NAMES = {"raw"}


@dataclass(frozen=True)
class UniqueCollectorArgs:
    unique: bool = True


def element_name(type_name: str) -> str:
    name = re.sub(r"[^a-z0-9_.-]", "_", type_name.lower())
    if not NAME_RE.fullmatch(name):
        name = "_" + name
    return name


class UniqueCollector(Collector):
    def __init__(self, format, buf, args=None):
        super().__init__(format, buf, args)
        if args is None:
            args = UniqueCollectorArgs()
        if not isinstance(args, UniqueCollectorArgs):
            raise InvalidArguments("unique collector expects UniqueCollectorArgs")
        self.unique = args.unique
        self.type_name: str | None = None
        self.name: str | None = None
        self.items: list[tuple[str, tuple[tuple[str, str, str], ...]]] = []

    def is_valid(self) -> bool:
        return (self.type_name is None) == (self.name is None) and (
            not self.items or self.type_name is not None
        )

    def is_empty(self) -> bool:
        return not self.items

    def empty(self) -> None:
        self.items.clear()

    def add(self, level: int, record: AuditRecord) -> None:
        type_name = record_type(record)
        text = record_text(record)
        if self.type_name is None:
            self.type_name = type_name
            self.name = element_name(type_name)
        elif type_name != self.type_name:
            raise InvalidSequence(
                f"{type_name} record routed to the {self.type_name} collector", text
            )
        if not record.fields:
            raise InvalidSequence(f"{type_name} record without fields", text)

        fields = []
        seen = set()
        for item in record.fields:
            name = field_name(item)
            if name in ("type", "node"):
                continue
            if name in RESERVED_NAMES or not NAME_RE.fullmatch(name):
                raise InvalidSequence(f"unusable field name {name!r}", text)
            if name in seen:
                raise InvalidSequence(f"repeated field name {name!r}", text)
            seen.add(name)
            fields.append((name, field_interpreted(item), field_raw(item)))

        entry = (text, tuple(fields))
        if self.unique and self.items and self.items[-1] == entry:
            return
        self.items.append(entry)

    def _add_xml_item(self, level: int, entry) -> None:
        buf = self.buf
        text, fields = entry
        buf.space_opening(level)
        buf.add_str(f'<{self.name} raw="')
        buf.add_xml(text)
        if not fields:
            buf.add_str('"/>')
            return
        buf.add_str('">')
        for name, value, raw in fields:
            buf.space_opening(level + 1)
            buf.add_str(f'<{name} i="')
            buf.add_xml(value)
            if raw != value:
                buf.add_str('" r="')
                buf.add_xml(raw)
            buf.add_str('"/>')
        buf.space_closing(level)
        buf.add_str(f"</{self.name}>")

    def _add_json_members(self, level: int, entry) -> None:
        buf = self.buf
        text, fields = entry
        buf.space_opening(level)
        buf.add_str('"raw":"')
        buf.add_json(text)
        buf.add_str('"')
        for name, value, raw in fields:
            buf.add_str(",")
            buf.space_opening(level)
            buf.add_fmt('"%s":["', name)
            buf.add_json(value)
            if raw != value:
                buf.add_str('","')
                buf.add_json(raw)
            buf.add_str('"]')

    def end(self, level: int, first: bool) -> bool:
        buf = self.buf
        if self.format.lang is Lang.XML:
            for entry in self.items:
                self._add_xml_item(level, entry)
            return False

        if not first:
            buf.add_str(",")
        buf.space_opening(level)
        if self.unique and len(self.items) == 1:
            buf.add_fmt('"%s":{', self.name)
            self._add_json_members(level + 1, self.items[0])
            buf.space_closing(level)
            buf.add_str("}")
            return False

        buf.add_fmt('"%s":[', self.name)
        for idx, entry in enumerate(self.items):
            if idx > 0:
                buf.add_str(",")
            buf.space_opening(level + 1)
            buf.add_str("{")
            self._add_json_members(level + 2, entry)
            buf.space_closing(level + 1)
            buf.add_str("}")
        buf.space_closing(level)
        buf.add_str("]")
        return False
