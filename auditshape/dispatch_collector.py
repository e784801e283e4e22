"""
Top-level collector routing each record to a per-type child collector.
"""

from typing import NamedTuple

from auditshape.collector import Collector, record_type
from auditshape.errors import InvalidArguments
from auditshape.execve_collector import ExecveCollector
from auditshape.source import AuditRecord
from auditshape.unique_collector import UniqueCollector, UniqueCollectorArgs


class DispatchLink(NamedTuple):
    name: str | None
    coll_type: type
    args: object = None


# Consulted in order; the entry without a name matches any record type.
DEFAULT_MAP = (
    DispatchLink("EXECVE", ExecveCollector),
    DispatchLink("PATH", UniqueCollector, UniqueCollectorArgs(unique=False)),
    DispatchLink(None, UniqueCollector, UniqueCollectorArgs(unique=True)),
)


class DispatchCollector(Collector):
    def __init__(self, format, buf, args=None):
        super().__init__(format, buf, args)
        links = tuple(DEFAULT_MAP if args is None else args)
        if not links or links[-1].name is not None:
            raise InvalidArguments("dispatch map must end with a catch-all entry")
        if any(link.name is None for link in links[:-1]):
            raise InvalidArguments("dispatch map has a catch-all entry before its end")
        self.links = links
        # Children by record type name, in creation order.
        self.children: dict[str, Collector] = {}

    def lookup(self, type_name: str) -> DispatchLink:
        for link in self.links[:-1]:
            if link.name == type_name:
                return link
        return self.links[-1]

    def is_valid(self) -> bool:
        return all(child.is_valid() for child in self.children.values())

    def is_empty(self) -> bool:
        return all(child.is_empty() for child in self.children.values())

    def empty(self) -> None:
        for child in self.children.values():
            child.empty()

    def add(self, level: int, record: AuditRecord) -> None:
        type_name = record_type(record)
        child = self.children.get(type_name)
        if child is None:
            link = self.lookup(type_name)
            child = link.coll_type(self.format, self.buf, link.args)
            self.children[type_name] = child
        child.add(level, record)

    def end(self, level: int, first: bool) -> bool:
        for child in self.children.values():
            if not child.is_empty():
                first = child.end(level, first)
        return first

    def cleanup(self) -> None:
        for child in self.children.values():
            child.cleanup()
        self.children.clear()
