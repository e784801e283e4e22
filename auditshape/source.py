"""
Raw audit log reading: line parsing, field interpretation, event grouping.

Records are handed to the collectors as plain data. Any value the source could
not supply is `None`; the collectors turn that into `SourceReadFailed`.
"""

import io
import os
import re
import sys
import time
from dataclasses import dataclass, field
from typing import Iterable, Iterator


HEADER_RE = re.compile(
    r"^(?:node=(?P<node>\S+) )?type=(?P<type>\S+) "
    r"msg=audit\((?P<sec>\d+)\.(?P<sub>\d+):(?P<serial>\d+)\):\s?(?P<body>.*)$",
    re.DOTALL,
)
# Keys start after whitespace, so prose such as "(seqno=2)" inside user
# messages yields no field.
FIELD_RE = re.compile(r"""(?<!\S)([A-Za-z0-9_.\-\[\]]+)=("[^"]*"|'[^']*'|\S*)""")
HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
EXECVE_ARG_RE = re.compile(r"^a\d+(\[\d+\])?$")
ENRICHED_SEP = "\x1d"

# Fields whose unquoted values are hex-encoded by the kernel.
ENCODED_FIELDS = {
    "comm",
    "cwd",
    "data",
    "dir",
    "exe",
    "file",
    "key",
    "name",
    "new",
    "ocomm",
    "old",
    "path",
    "proctitle",
    "root_dir",
    "watch",
}

ARCH_NAMES = {
    "40000003": "i386",
    "c000003e": "x86_64",
    "40000028": "arm",
    "c00000b7": "aarch64",
    "80000016": "s390",
    "80000015": "ppc64",
    "c0000015": "ppc64le",
    "c00000f3": "riscv64",
}


@dataclass
class AuditField:
    name: str | None
    raw: str | None
    interpreted: str | None


@dataclass
class AuditRecord:
    type_name: str | None
    text: str | None
    fields: list[AuditField] = field(default_factory=list)


@dataclass
class AuditEvent:
    serial: int
    seconds: int | None
    millis: int = 0
    host: str | None = None
    records: list[AuditRecord] = field(default_factory=list)


def unquote(value: str) -> str | None:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return None


def decode_hex(value: str) -> str | None:
    if not value or len(value) % 2 or not HEX_RE.match(value):
        return None
    return bytes.fromhex(value).decode("utf-8", errors="surrogateescape")


def interpret_field(name: str, raw: str, enriched: dict[str, str] | None = None) -> str:
    """Return the human-readable form of a raw audit field value."""
    if enriched and name.upper() in enriched:
        value = enriched[name.upper()]
        quoted = unquote(value)
        return value if quoted is None else quoted
    quoted = unquote(raw)
    if quoted is not None:
        return quoted
    if name == "arch":
        return ARCH_NAMES.get(raw.lower(), raw)
    if name in ENCODED_FIELDS or EXECVE_ARG_RE.match(name):
        decoded = decode_hex(raw)
        if decoded is not None:
            if name == "proctitle":
                return decoded.replace("\0", " ").rstrip()
            return decoded
    return raw


def split_fields(body: str) -> list[tuple[str, str]]:
    pairs = []
    for key, value in FIELD_RE.findall(body):
        if key == "msg" and value.startswith("'"):
            # User-space records nest their own fields inside msg='...'.
            pairs.extend(split_fields(value[1:-1]))
            continue
        pairs.append((key, value))
    return pairs


def parse_line(line: str) -> dict | None:
    text = line.rstrip("\r\n")
    match = HEADER_RE.match(text)
    if not match:
        return None
    record_type = match.group("type")
    if record_type == "EOE":
        return None
    body = match.group("body")
    enriched = {}
    if ENRICHED_SEP in body:
        body, tail = body.split(ENRICHED_SEP, 1)
        enriched = dict(split_fields(tail))
    fields = []
    node = match.group("node")
    if node is not None:
        fields.append(AuditField("node", node, node))
    fields.append(AuditField("type", record_type, record_type))
    for key, value in split_fields(body):
        fields.append(AuditField(key, value, interpret_field(key, value, enriched)))
    sub = match.group("sub")
    return {
        "seq": int(match.group("serial")),
        "sec": int(match.group("sec")),
        "milli": int((sub + "000")[:3]),
        "host": node,
        "record": AuditRecord(record_type, text, fields),
    }


def iter_events(lines: Iterable[str]) -> Iterator[AuditEvent]:
    """Group consecutive records sharing a timestamp and serial into events."""
    current_key = None
    current = None
    for line in lines:
        parsed = parse_line(line)
        if not parsed:
            continue
        key = (parsed["sec"], parsed["milli"], parsed["seq"])
        if key != current_key:
            if current is not None:
                yield current
            current_key = key
            current = AuditEvent(
                serial=parsed["seq"],
                seconds=parsed["sec"],
                millis=parsed["milli"],
                host=parsed["host"],
            )
        current.records.append(parsed["record"])
    if current is not None:
        yield current


def open_log(path: str, follow: bool, poll_interval: float):
    """Open an audit log, waiting for it to appear when following."""
    while True:
        try:
            return open(path, "r", encoding="utf-8", errors="surrogateescape")
        except FileNotFoundError:
            if not follow:
                raise
            time.sleep(poll_interval)


def log_replaced(path: str, handle) -> bool:
    """Tell whether the log at `path` was rotated or truncated under `handle`."""
    try:
        stat = os.stat(path)
    except FileNotFoundError:
        # Rotated away and not recreated yet; keep the old handle.
        return False
    return stat.st_ino != os.fstat(handle.fileno()).st_ino or stat.st_size < handle.tell()


def iter_lines(path: str, follow: bool, poll_interval: float) -> Iterator[str]:
    """Yield lines of `path` ("-" for stdin), tailing it when `follow` is set."""
    if path == "-":
        yield from io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="surrogateescape")
        return

    handle = open_log(path, follow, poll_interval)
    try:
        while True:
            line = handle.readline()
            if line:
                yield line
            elif not follow:
                return
            else:
                time.sleep(poll_interval)
                if log_replaced(path, handle):
                    handle.close()
                    handle = open_log(path, follow, poll_interval)
    finally:
        handle.close()
