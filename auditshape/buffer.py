"""
Output buffer shared by every collector of a conversion run.

All markup goes through here so escaping and line folding live in one place.
Source text may carry undecodable bytes as surrogate escapes (the way files
are read with `errors="surrogateescape"`); both escapers represent those bytes
instead of dropping them.
"""

from auditshape.format import Format, Lang


def _build_xml_table() -> dict[int, str]:
    table: dict[int, str] = {
        ord("&"): "&amp;",
        ord("<"): "&lt;",
        ord(">"): "&gt;",
        ord('"'): "&quot;",
        ord("\\"): "\\\\",
        ord("\t"): "&#9;",
        ord("\n"): "&#10;",
        ord("\r"): "&#13;",
    }
    for code in range(0x20):
        table.setdefault(code, f"\\x{code:02x}")
    for code in range(0xD800, 0xE000):
        if 0xDC80 <= code <= 0xDCFF:
            table[code] = f"\\x{code - 0xDC00:02x}"
        else:
            table[code] = f"\\u{code:04x}"
    table[0xFFFE] = "\\ufffe"
    table[0xFFFF] = "\\uffff"
    return table


def _build_json_table() -> dict[int, str]:
    table: dict[int, str] = {
        ord('"'): '\\"',
        ord("\\"): "\\\\",
        ord("\b"): "\\b",
        ord("\f"): "\\f",
        ord("\n"): "\\n",
        ord("\r"): "\\r",
        ord("\t"): "\\t",
    }
    for code in range(0x20):
        table.setdefault(code, f"\\u{code:04x}")
    for code in range(0xD800, 0xE000):
        table[code] = f"\\u{code:04x}"
    return table


XML_TABLE = _build_xml_table()
JSON_TABLE = _build_json_table()


def escape_xml(text: str) -> str:
    return text.translate(XML_TABLE)


def escape_json(text: str) -> str:
    return text.translate(JSON_TABLE)


class OutputBuffer:
    def __init__(self, format: Format):
        self.format = format
        self._chunks: list[str] = []
        self._len = 0

    def __len__(self) -> int:
        return self._len

    def getvalue(self) -> str:
        if len(self._chunks) > 1:
            self._chunks = ["".join(self._chunks)]
        return self._chunks[0] if self._chunks else ""

    def add_str(self, text: str) -> None:
        if text:
            self._chunks.append(text)
            self._len += len(text)

    def add_fmt(self, template: str, *args) -> None:
        self.add_str(template % args)

    def add_buf(self, other: "OutputBuffer") -> None:
        self.add_str(other.getvalue())

    def add_xml(self, text: str) -> None:
        self.add_str(escape_xml(text))

    def add_json(self, text: str) -> None:
        self.add_str(escape_json(text))

    def add_escaped(self, text: str) -> None:
        """Append text escaped for the configured output language."""
        if self.format.lang is Lang.XML:
            self.add_xml(text)
        else:
            self.add_json(text)

    def space_opening(self, level: int) -> None:
        """Lay out the start of a construct opened at nesting `level`."""
        if level >= self.format.fold_level:
            return
        if level > 0 or self._len > 0:
            self.add_str("\n")
        self.add_str(self.format.indent * level)

    def space_closing(self, level: int) -> None:
        """Lay out the end of a construct closed at nesting `level`."""
        if level >= self.format.fold_level:
            return
        self.add_str("\n" + self.format.indent * level)

    def empty(self) -> None:
        self._chunks.clear()
        self._len = 0

    def cleanup(self) -> None:
        self.empty()
