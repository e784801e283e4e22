"""
EXECVE record collector.

The kernel caps the size of a single audit field, so long process arguments
arrive split into slices: `aN_len` announces the transferred length of
argument N and `aN[0]`, `aN[1]`, ... carry its pieces. Whole arguments arrive
as plain `aN` fields, and unused slots may be left out altogether. This
collector reassembles all of them into one ordered argument list, rendering
markup as it goes so nothing but the rendered text is kept per event.
"""

import re

from auditshape.buffer import OutputBuffer
from auditshape.collector import (
    Collector,
    field_interpreted,
    field_name,
    field_raw,
    record_text,
)
from auditshape.errors import InvalidExecveSequence
from auditshape.format import Lang
from auditshape.source import AuditField, AuditRecord


ARG_RE = re.compile(r"a([0-9]+)")
ARG_LEN_RE = re.compile(r"a([0-9]+)_len")
ARG_SLICE_RE = re.compile(r"a([0-9]+)\[([0-9]+)\]")
UINT_RE = re.compile(r"[0-9]+")


def parse_uint(value: str, record: str) -> int:
    if not UINT_RE.fullmatch(value):
        raise InvalidExecveSequence(f"expected an unsigned integer, got {value!r}", record)
    return int(value)


def byte_length(text: str) -> int:
    """Length of `text` in the bytes the kernel counted."""
    return len(text.encode("utf-8", errors="surrogateescape"))


class ExecveCollector(Collector):
    def __init__(self, format, buf, args=None):
        super().__init__(format, buf, args)
        self.raw = OutputBuffer(format)
        self.args = OutputBuffer(format)
        self.empty()

    def is_valid(self) -> bool:
        return (
            self.arg_idx <= self.arg_num
            and (self.got_len or (self.slice_idx == 0 and self.len_total == 0))
            and self.len_read <= self.len_total
        )

    def is_empty(self) -> bool:
        return self.arg_num == 0

    def empty(self) -> None:
        self.raw.empty()
        self.args.empty()
        self.arg_num = 0
        self.arg_idx = 0
        self.got_len = False
        self.slice_idx = 0
        self.len_total = 0
        self.len_read = 0

    def _add_arg_str(self, level: int, value: str) -> None:
        if self.format.lang is Lang.XML:
            self.args.space_opening(level)
            self.args.add_str('<a i="')
            self.args.add_xml(value)
            self.args.add_str('"/>')
        else:
            if self.arg_idx > 0:
                self.args.add_str(",")
            self.args.space_opening(level)
            self.args.add_str('"')
            self.args.add_json(value)
            self.args.add_str('"')
        self.arg_idx += 1

    def _fill_skipped(self, level: int, arg_idx: int) -> None:
        while self.arg_idx < arg_idx:
            self._add_arg_str(level, "")

    def _add_argc(self, item: AuditField, record: str) -> None:
        if self.arg_num != 0:
            raise InvalidExecveSequence("repeated argc field", record)
        self.arg_num = parse_uint(field_raw(item), record)

    def _add_arg(self, level: int, arg_idx: int, item: AuditField, record: str) -> None:
        if self.got_len or not self.arg_idx <= arg_idx < self.arg_num:
            raise InvalidExecveSequence(f"unexpected argument a{arg_idx}", record)
        self._fill_skipped(level, arg_idx)
        self._add_arg_str(level, field_interpreted(item))

    def _add_arg_len(self, level: int, arg_idx: int, item: AuditField, record: str) -> None:
        if self.got_len or not self.arg_idx <= arg_idx < self.arg_num:
            raise InvalidExecveSequence(f"unexpected argument length a{arg_idx}_len", record)
        self._fill_skipped(level, arg_idx)
        self.got_len = True
        self.len_total = parse_uint(field_raw(item), record)

    def _add_arg_slice(
        self, level: int, arg_idx: int, slice_idx: int, item: AuditField, record: str
    ) -> None:
        if not (
            arg_idx == self.arg_idx
            and arg_idx < self.arg_num
            and self.got_len
            and slice_idx == self.slice_idx
        ):
            raise InvalidExecveSequence(f"unexpected argument slice a{arg_idx}[{slice_idx}]", record)

        raw = field_raw(item)
        value = field_interpreted(item)
        raw_len = byte_length(raw)
        value_len = byte_length(value)
        # Slices come either HEX-encoded or as is, and user space double-quotes
        # the latter. Only a HEX-encoded slice shrinks to half its raw length
        # when interpreted, so that case counts the raw length.
        if value_len == raw_len // 2:
            length = raw_len
        else:
            length = value_len
        if self.len_read + length > self.len_total:
            raise InvalidExecveSequence(
                f"argument a{arg_idx} exceeds its declared length {self.len_total}", record
            )

        if slice_idx == 0:
            if self.format.lang is Lang.XML:
                self.args.space_opening(level)
                self.args.add_str('<a i="')
            else:
                if self.arg_idx > 0:
                    self.args.add_str(",")
                self.args.space_opening(level)
                self.args.add_str('"')
        self.args.add_escaped(value)
        self.len_read += length

        if self.len_read == self.len_total:
            self.args.add_str('"/>' if self.format.lang is Lang.XML else '"')
            self.got_len = False
            self.slice_idx = 0
            self.len_total = 0
            self.len_read = 0
            self.arg_idx += 1
        else:
            self.slice_idx += 1

    def add(self, level: int, record: AuditRecord) -> None:
        level += 1 if self.format.lang is Lang.XML else 2

        text = record_text(record)
        if len(self.raw) > 0:
            self.raw.add_str("\n")
        self.raw.add_str(text)

        if not record.fields:
            raise InvalidExecveSequence("EXECVE record without fields", text)
        for item in record.fields:
            name = field_name(item)
            if name in ("type", "node"):
                continue
            if name == "argc":
                self._add_argc(item, text)
                continue
            match = ARG_RE.fullmatch(name)
            if match:
                self._add_arg(level, int(match.group(1)), item, text)
                continue
            match = ARG_LEN_RE.fullmatch(name)
            if match:
                self._add_arg_len(level, int(match.group(1)), item, text)
                continue
            match = ARG_SLICE_RE.fullmatch(name)
            if match:
                self._add_arg_slice(
                    level, int(match.group(1)), int(match.group(2)), item, text
                )
                continue
            raise InvalidExecveSequence(f"unexpected field {name!r}", text)

    def end(self, level: int, first: bool) -> bool:
        if self.got_len:
            raise InvalidExecveSequence(
                f"argument a{self.arg_idx} is incomplete: "
                f"{self.len_read} of {self.len_total} bytes received",
                self.raw.getvalue(),
            )
        buf = self.buf
        depth = level

        if self.format.lang is Lang.XML:
            buf.space_opening(depth)
            buf.add_str('<execve raw="')
            buf.add_xml(self.raw.getvalue())
            buf.add_str('">')
        else:
            if not first:
                buf.add_str(",")
            buf.space_opening(depth)
            buf.add_str('"execve":{')
            depth += 1
            buf.space_opening(depth)
            buf.add_str('"raw":"')
            buf.add_json(self.raw.getvalue())
            buf.add_str('",')
            buf.space_opening(depth)
            buf.add_str('"args":[')
        depth += 1

        self._fill_skipped(depth, self.arg_num)
        buf.add_buf(self.args)

        depth -= 1
        if self.format.lang is Lang.XML:
            buf.space_closing(depth)
            buf.add_str("</execve>")
        else:
            if len(self.args) > 0:
                buf.space_closing(depth)
            buf.add_str("]")
            depth -= 1
            buf.space_closing(depth)
            buf.add_str("}")
        return False
