from __future__ import annotations

"""
Shared pytest utilities for the test suite.

This module:
- builds output formats pinned to UTC so rendered timestamps are stable,
- converts whole documents in one call for assertions on complete output, and
- runs a single collector over a record list for collector-level tests.
"""

import datetime as dt
from pathlib import Path

import pytest

from auditshape.buffer import OutputBuffer
from auditshape.converter import Converter
from auditshape.format import FOLD_ALL, FOLD_NONE, Format, Lang


ROOT_DIR = Path(__file__).resolve().parents[1]


def utc_format(
    lang: Lang,
    fold_level: int = FOLD_NONE,
    events_per_doc: bool = True,
    indent: str = "  ",
) -> Format:
    return Format(
        lang=lang,
        fold_level=fold_level,
        events_per_doc=events_per_doc,
        indent=indent,
        tz=dt.timezone.utc,
    )


def render_document(fmt: Format, *events) -> str:
    """Convert events into one complete document, prologue to epilogue."""
    converter = Converter(fmt)
    converter.add_prologue()
    for idx, event in enumerate(events):
        converter.add_event(event, idx == 0)
    converter.add_epilogue()
    return converter.getvalue()


def run_collector(collector_type, fmt: Format, records, level: int = 0, first: bool = True, args=None) -> str:
    buf = OutputBuffer(fmt)
    collector = collector_type(fmt, buf, args)
    for record in records:
        collector.add(level, record)
    collector.end(level, first)
    return buf.getvalue()


@pytest.fixture
def json_folded() -> Format:
    return utc_format(Lang.JSON, FOLD_ALL)


@pytest.fixture
def xml_folded() -> Format:
    return utc_format(Lang.XML, FOLD_ALL)
