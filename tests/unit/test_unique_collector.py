from __future__ import annotations

import json
import xml.etree.ElementTree as ET

import pytest

from auditshape.buffer import OutputBuffer
from auditshape.errors import InvalidArguments, InvalidSequence, SourceReadFailed
from auditshape.format import Lang
from auditshape.source import AuditField, AuditRecord
from auditshape.unique_collector import UniqueCollector, UniqueCollectorArgs, element_name
from tests.conftest import run_collector, utc_format
from tests.support.synthetic_logs import make_record


pytestmark = pytest.mark.unit

DEDUP = UniqueCollectorArgs(unique=True)
PASS_THROUGH = UniqueCollectorArgs(unique=False)


def cwd(path: str, seq: int = 1) -> AuditRecord:
    return make_record("CWD", ("cwd", path), seq=seq)


def as_json(output: str) -> dict:
    return json.loads("{" + output + "}")


def test_dedup_drops_identical_neighbours(json_folded) -> None:
    """Two identical consecutive records render once; a different third adds a child."""
    records = [cwd("/root"), cwd("/root")]
    result = as_json(run_collector(UniqueCollector, json_folded, records, args=DEDUP))
    assert isinstance(result["cwd"], dict)
    assert result["cwd"] == {"raw": records[0].text, "cwd": ["/root"]}

    records.append(cwd("/tmp"))
    result = as_json(run_collector(UniqueCollector, json_folded, records, args=DEDUP))
    assert [item["cwd"] for item in result["cwd"]] == [["/root"], ["/tmp"]]


def test_dedup_only_compares_the_previous_record(json_folded) -> None:
    records = [cwd("/a"), cwd("/b"), cwd("/a")]
    result = as_json(run_collector(UniqueCollector, json_folded, records, args=DEDUP))
    assert [item["cwd"] for item in result["cwd"]] == [["/a"], ["/b"], ["/a"]]


def test_pass_through_keeps_every_record(json_folded) -> None:
    path = make_record("PATH", ("item", "0"), ("name", '"/bin/ls"'), ("nametype", "NORMAL"))
    result = as_json(run_collector(UniqueCollector, json_folded, [path, path], args=PASS_THROUGH))
    assert len(result["path"]) == 2
    assert result["path"][0] == {
        "raw": path.text,
        "item": ["0"],
        "name": ["/bin/ls", '"/bin/ls"'],
        "nametype": ["NORMAL"],
    }


def test_pass_through_single_record_is_still_a_list(json_folded) -> None:
    path = make_record("PATH", ("item", "0"))
    result = as_json(run_collector(UniqueCollector, json_folded, [path], args=PASS_THROUGH))
    assert isinstance(result["path"], list)


def test_xml_rendering_keeps_raw_only_when_different(xml_folded) -> None:
    record = make_record("SYSCALL", ("arch", "c000003e"), ("syscall", "59"), ("comm", '"ls"'))
    output = run_collector(UniqueCollector, xml_folded, [record], args=DEDUP)
    element = ET.fromstring(output)
    assert element.tag == "syscall"
    assert element.attrib["raw"] == record.text
    children = [(child.tag, child.attrib) for child in element]
    assert children == [
        ("arch", {"i": "x86_64", "r": "c000003e"}),
        ("syscall", {"i": "59"}),
        ("comm", {"i": "ls", "r": '"ls"'}),
    ]


def test_xml_pass_through_renders_siblings(xml_folded) -> None:
    records = [make_record("PATH", ("item", "0")), make_record("PATH", ("item", "1"))]
    output = run_collector(UniqueCollector, xml_folded, records, args=PASS_THROUGH)
    root = ET.fromstring(f"<records>{output}</records>")
    assert [child.find("item").attrib["i"] for child in root] == ["0", "1"]


def test_record_with_only_pseudo_fields_self_closes(xml_folded) -> None:
    record = AuditRecord("EOE", "type=EOE msg=audit(0.000:1): ", [AuditField("type", "EOE", "EOE")])
    output = run_collector(UniqueCollector, xml_folded, [record])
    assert output == '<eoe raw="type=EOE msg=audit(0.000:1): "/>'


def test_json_layout_when_unfolded() -> None:
    fmt = utc_format(Lang.JSON)
    record = cwd("/root")
    output = run_collector(UniqueCollector, fmt, [record], level=1, first=False)
    raw = record.text.replace('"', '\\"')
    assert output == (
        ",\n"
        '  "cwd":{\n'
        f'    "raw":"{raw}",\n'
        '    "cwd":["/root"]\n'
        "  }"
    )


def test_reserved_field_name_is_invalid(json_folded) -> None:
    record = make_record("USER", ("raw", "1"))
    with pytest.raises(InvalidSequence) as excinfo:
        run_collector(UniqueCollector, json_folded, [record])
    assert excinfo.value.record == record.text


def test_repeated_field_name_is_invalid(json_folded) -> None:
    """A field name used twice in one record would repeat a JSON member."""
    record = make_record("USER_LOGIN", ("uid", "0"), ("op", "login"), ("uid", "1000"))
    with pytest.raises(InvalidSequence) as excinfo:
        run_collector(UniqueCollector, json_folded, [record])
    assert "uid" in str(excinfo.value)
    assert excinfo.value.record == record.text


def test_record_without_fields_is_invalid(json_folded) -> None:
    with pytest.raises(InvalidSequence):
        run_collector(UniqueCollector, json_folded, [AuditRecord("CWD", "type=CWD", [])])


def test_unusable_field_name_is_invalid(xml_folded) -> None:
    record = AuditRecord("CWD", "type=CWD", [AuditField("a<b", "1", "1")])
    with pytest.raises(InvalidSequence):
        run_collector(UniqueCollector, xml_folded, [record])


def test_other_record_type_is_invalid(json_folded) -> None:
    with pytest.raises(InvalidSequence):
        run_collector(UniqueCollector, json_folded, [cwd("/"), make_record("PATH", ("item", "0"))])


def test_missing_values_fail_source_read(json_folded) -> None:
    record = AuditRecord("CWD", "type=CWD", [AuditField("cwd", None, "/")])
    with pytest.raises(SourceReadFailed):
        run_collector(UniqueCollector, json_folded, [record])
    with pytest.raises(SourceReadFailed):
        run_collector(UniqueCollector, json_folded, [AuditRecord(None, "type=?", [])])


def test_empty_clears_records_but_keeps_type(json_folded) -> None:
    buf = OutputBuffer(json_folded)
    collector = UniqueCollector(json_folded, buf, DEDUP)
    collector.add(0, cwd("/root"))
    assert not collector.is_empty()
    collector.empty()
    assert collector.is_empty()
    assert collector.type_name == "CWD"
    assert collector.is_valid()


def test_rejects_foreign_arguments(json_folded) -> None:
    with pytest.raises(InvalidArguments):
        UniqueCollector(json_folded, OutputBuffer(json_folded), {"unique": True})


def test_element_name_is_a_valid_xml_name() -> None:
    assert element_name("USER_CMD") == "user_cmd"
    assert element_name("UNKNOWN[1334]") == "unknown_1334_"
    assert element_name("1300") == "_1300"
