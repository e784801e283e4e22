from __future__ import annotations

import io
import json
import xml.etree.ElementTree as ET

import pytest

from auditshape.cli import apply_overrides, convert, describe_error, parse_args
from auditshape.converter import Converter
from auditshape.errors import InvalidExecveSequence
from auditshape.format import FOLD_ALL, Lang
from tests.conftest import utc_format
from tests.support.synthetic_logs import make_event, make_record


pytestmark = pytest.mark.unit


def cwd_events(count: int) -> list:
    return [
        make_event(make_record("CWD", ("cwd", f"/dir{idx}"), seq=idx), serial=idx)
        for idx in range(1, count + 1)
    ]


def run_convert(fmt, events) -> tuple[int, str]:
    writer = io.StringIO()
    status = convert(iter(events), Converter(fmt), writer)
    return status, writer.getvalue()


def test_json_document_per_event() -> None:
    """Every event is a standalone JSON document on its own line."""
    status, output = run_convert(utc_format(Lang.JSON, FOLD_ALL, events_per_doc=False), cwd_events(3))
    assert status == 0
    lines = output.splitlines()
    assert len(lines) == 3
    documents = [json.loads(line) for line in lines]
    assert [doc["serial"] for doc in documents] == [1, 2, 3]
    assert documents[2]["records"]["cwd"]["cwd"] == ["/dir3"]


def test_json_document_per_event_unfolded() -> None:
    status, output = run_convert(utc_format(Lang.JSON, events_per_doc=False), cwd_events(2))
    assert status == 0
    first, second = output.split("}\n{")
    assert json.loads(first + "}")["serial"] == 1
    assert json.loads("{" + second)["serial"] == 2


def test_xml_document_per_event() -> None:
    status, output = run_convert(utc_format(Lang.XML, FOLD_ALL, events_per_doc=False), cwd_events(3))
    assert status == 0
    elements = [ET.fromstring(line) for line in output.splitlines()]
    assert [element.attrib["serial"] for element in elements] == ["1", "2", "3"]
    assert not output.startswith("<?xml")


def test_json_single_document() -> None:
    status, output = run_convert(utc_format(Lang.JSON), cwd_events(3))
    assert status == 0
    assert output.endswith("]\n")
    assert [event["serial"] for event in json.loads(output)] == [1, 2, 3]


def test_conversion_error_stops_the_stream(capsys) -> None:
    bad = make_event(
        make_record("EXECVE", ("argc", "1"), ("a0_len", "2"), ("a0[0]", "2F74"), seq=2),
        serial=2,
    )
    status, output = run_convert(utc_format(Lang.JSON, FOLD_ALL, events_per_doc=False), [*cwd_events(1), bad])
    assert status == 1
    assert output.splitlines() == [output.strip()]
    assert json.loads(output)["serial"] == 1
    stderr = capsys.readouterr().err
    assert stderr.startswith("auditshape: event 2:")
    assert "    type=EXECVE" in stderr


def test_describe_error_indents_record() -> None:
    exc = InvalidExecveSequence("bad slice", "line one\nline two")
    assert describe_error(9, exc) == "auditshape: event 9: bad slice\n    line one\n    line two"


def test_cli_flags_override_config() -> None:
    cfg = {"output": {"lang": "xml", "fold": "all"}, "input": {"audit_log": "/var/log/a.log"}}
    args = parse_args(["--lang", "json", "--events-per-doc", "none", "/tmp/b.log"])
    merged = apply_overrides(cfg, args)
    assert merged["output"] == {"lang": "json", "fold": "all", "events_per_doc": "none"}
    assert merged["input"]["audit_log"] == "/tmp/b.log"
    assert cfg["output"]["lang"] == "xml"
