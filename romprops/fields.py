"""Ordered, typed metadata fields extracted from a ROM or disc image.

A :class:`RomFields` is what every format front-end produces. It is plain
data: the shell layer that displays it receives it through
:meth:`RomFields.pack` (msgpack), never through Python objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterator, Optional, Union

import msgpack

from .format import DateTimeFlags

__all__ = ["DateTimeFlags", "Field", "FieldType", "RomFields"]


class FieldType(IntEnum):
    STRING = 0
    DATETIME = 1      # value: Unix seconds
    FIELDS = 2        # value: nested RomFields


FieldValue = Union[str, int, "RomFields"]


@dataclass
class Field:
    label: str
    type: FieldType
    value: FieldValue
    flags: int = 0
    tab: int = 0


@dataclass
class RomFields:
    """Ordered field list with optional tab names."""

    fields: list[Field] = field(default_factory=list)
    tabs: list[str] = field(default_factory=list)
    _tab: int = field(default=0, compare=False, repr=False)

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self) -> Iterator[Field]:
        return iter(self.fields)

    # ── Building ─────────────────────────────────────────────────────────

    def set_tab_name(self, index: int, name: str) -> None:
        while len(self.tabs) <= index:
            self.tabs.append("")
        self.tabs[index] = name

    def set_tab_index(self, index: int) -> None:
        """Fields added from now on go to tab *index*."""
        if index >= len(self.tabs):
            self.set_tab_name(index, "")
        self._tab = index

    def add_string(self, label: str, value: str, flags: int = 0) -> Field:
        return self._add(Field(label, FieldType.STRING, value, flags, self._tab))

    def add_datetime(
        self,
        label: str,
        timestamp: int,
        flags: int = DateTimeFlags.HAS_DATE | DateTimeFlags.HAS_TIME,
    ) -> Field:
        return self._add(Field(label, FieldType.DATETIME, timestamp, int(flags), self._tab))

    def add_fields(self, label: str, sub: RomFields) -> Field:
        return self._add(Field(label, FieldType.FIELDS, sub, 0, self._tab))

    def _add(self, f: Field) -> Field:
        self.fields.append(f)
        return f

    # ── Lookup ───────────────────────────────────────────────────────────

    def get(self, label: str) -> Optional[Field]:
        """First field with *label*, or None."""
        for f in self.fields:
            if f.label == label:
                return f
        return None

    def __getitem__(self, label: str) -> FieldValue:
        f = self.get(label)
        if f is None:
            raise KeyError(label)
        return f.value

    # ── Serialization ────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        out = []
        for f in self.fields:
            value = f.value.to_dict() if f.type == FieldType.FIELDS else f.value
            out.append({
                "label": f.label,
                "type": f.type.name,
                "value": value,
                "flags": f.flags,
                "tab": f.tab,
            })
        return {"tabs": list(self.tabs), "fields": out}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RomFields:
        rf = cls(tabs=list(d.get("tabs", [])))
        for item in d.get("fields", []):
            ftype = FieldType[item["type"]]
            value = item["value"]
            if ftype == FieldType.FIELDS:
                value = cls.from_dict(value)
            rf.fields.append(Field(item["label"], ftype, value, item.get("flags", 0), item.get("tab", 0)))
        return rf

    def pack(self) -> bytes:
        return msgpack.packb(self.to_dict(), use_bin_type=True)

    @classmethod
    def unpack(cls, data: bytes) -> RomFields:
        return cls.from_dict(msgpack.unpackb(data, raw=False))
