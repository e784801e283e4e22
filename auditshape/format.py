import datetime as dt
import enum
import sys
from dataclasses import dataclass

from auditshape.errors import InvalidArguments


# Fold level that no nesting depth ever reaches.
FOLD_NONE = sys.maxsize
# Fold level that puts the whole document on a single line.
FOLD_ALL = 0


class Lang(enum.Enum):
    XML = "xml"
    JSON = "json"


@dataclass(frozen=True)
class Format:
    """
    Output format shared by the buffer and every collector of a run.

    Nesting levels below `fold_level` are laid out one construct per line and
    indented with `indent`; deeper levels are folded onto a single line.
    """

    lang: Lang = Lang.XML
    fold_level: int = FOLD_NONE
    events_per_doc: bool = True
    indent: str = "    "
    tz: dt.tzinfo | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.lang, Lang):
            raise InvalidArguments(f"unknown output language: {self.lang!r}")
        if isinstance(self.fold_level, bool) or not isinstance(self.fold_level, int):
            raise InvalidArguments(f"fold level must be an integer: {self.fold_level!r}")
        if self.fold_level < 0:
            raise InvalidArguments(f"fold level must not be negative: {self.fold_level}")
        if not isinstance(self.indent, str) or self.indent.strip():
            raise InvalidArguments(f"indent must be whitespace: {self.indent!r}")


def parse_lang(value: str | None) -> Lang:
    try:
        return Lang(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidArguments(f"unknown output language: {value!r}") from exc


def parse_fold(value) -> int:
    if value is None:
        return FOLD_NONE
    if isinstance(value, bool):
        raise InvalidArguments(f"invalid fold level: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise InvalidArguments(f"fold level must not be negative: {value}")
        return value
    text = str(value).strip().lower()
    if text == "all":
        return FOLD_ALL
    if text == "none":
        return FOLD_NONE
    if not text.isdigit():
        raise InvalidArguments(f"invalid fold level: {value!r}")
    return int(text)


def parse_events_per_doc(value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text == "all":
        return True
    if text == "none":
        return False
    raise InvalidArguments(f"invalid events per document: {value!r}")


def parse_indent(value) -> str:
    if isinstance(value, str) and not value.strip():
        return value
    if isinstance(value, bool):
        raise InvalidArguments(f"invalid indent: {value!r}")
    try:
        width = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArguments(f"invalid indent: {value!r}") from exc
    if width < 0:
        raise InvalidArguments(f"indent must not be negative: {width}")
    return " " * width


def format_from_config(cfg: dict) -> Format:
    """Build a Format from the `output` section of a configuration mapping."""
    out = cfg.get("output") or {}
    if not isinstance(out, dict):
        raise InvalidArguments("output section must be a mapping")
    tz = dt.timezone.utc if out.get("utc", False) else None
    return Format(
        lang=parse_lang(out.get("lang", "xml")),
        fold_level=parse_fold(out.get("fold", "none")),
        events_per_doc=parse_events_per_doc(out.get("events_per_doc", "all")),
        indent=parse_indent(out.get("indent", 4)),
        tz=tz,
    )
