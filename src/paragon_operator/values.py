"""Typed values for the remote API's untyped credential maps.

The remote credential API stores a flat ``{key: any}`` JSON map. Declared
configuration, on the other hand, is typed. Everything crossing that boundary
goes through ``ConfigValue``, a closed tagged variant with four kinds:

    STRING | BOOL | NUMBER | NULL

All conversions (declared -> wire, wire -> declared) are total functions over
this variant, so an unexpected wire shape degrades to a string instead of
failing a type assertion somewhere downstream.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Accepted literal shapes for best-effort re-typing of string values.
# Special floats (inf/nan) are not matched and stay strings.
INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+", re.ASCII)
FLOAT_PATTERN = re.compile(
    r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?", re.ASCII
)

SCOPE_SEPARATOR = " "


class ValueKind(str, Enum):
    """Kinds of values an extra-configuration entry may hold."""

    STRING = "string"
    BOOL = "bool"
    NUMBER = "number"
    NULL = "null"


Scalar = str | bool | int | float | None


@dataclass(frozen=True)
class ConfigValue:
    """A single dynamically typed configuration value."""

    kind: ValueKind
    value: Scalar = None

    def __post_init__(self) -> None:
        expected: dict[ValueKind, tuple[type, ...]] = {
            ValueKind.STRING: (str,),
            ValueKind.BOOL: (bool,),
            ValueKind.NUMBER: (int, float),
            ValueKind.NULL: (type(None),),
        }
        allowed = expected[self.kind]
        # bool is an int subclass; a NUMBER must never hold one
        if self.kind == ValueKind.NUMBER and isinstance(self.value, bool):
            raise ValueError("NUMBER value cannot be a bool")
        if not isinstance(self.value, allowed):
            raise ValueError(f"{self.kind.value} value has type {type(self.value).__name__}")

    @classmethod
    def string(cls, value: str) -> ConfigValue:
        return cls(ValueKind.STRING, value)

    @classmethod
    def boolean(cls, value: bool) -> ConfigValue:
        return cls(ValueKind.BOOL, value)

    @classmethod
    def number(cls, value: int | float) -> ConfigValue:
        return cls(ValueKind.NUMBER, value)

    @classmethod
    def null(cls) -> ConfigValue:
        return cls(ValueKind.NULL, None)

    @classmethod
    def from_wire(cls, raw: Any) -> ConfigValue:
        """Convert a decoded JSON value by its runtime type.

        Unrecognized shapes (lists, objects) fall back to their textual form.
        """
        match raw:
            case None:
                return cls.null()
            case bool():
                return cls.boolean(raw)
            case int() | float():
                return cls.number(raw)
            case str():
                return cls.string(raw)
            case _:
                return cls.string(str(raw))

    @classmethod
    def parse_string(cls, text: str) -> ConfigValue:
        """Re-type a string value: bool literal, then integer, then float.

        Falls back to the original string when nothing else matches.
        """
        if text == "true":
            return cls.boolean(True)
        if text == "false":
            return cls.boolean(False)
        if INTEGER_PATTERN.fullmatch(text):
            return cls.number(int(text))
        if FLOAT_PATTERN.fullmatch(text):
            return cls.number(float(text))
        return cls.string(text)

    @classmethod
    def from_declared(cls, raw: Any) -> ConfigValue:
        """Convert a declared value to its natural scalar type.

        Declared strings pass through ``parse_string``, so ``"3"`` becomes 3.
        """
        if isinstance(raw, str):
            return cls.parse_string(raw)
        return cls.from_wire(raw)

    def to_wire(self) -> Scalar:
        """Return the JSON-ready value."""
        return self.value

    def __str__(self) -> str:
        match self.kind:
            case ValueKind.NULL:
                return ""
            case ValueKind.BOOL:
                return "true" if self.value else "false"
            case _:
                return str(self.value)


@dataclass(frozen=True)
class ExtraConfiguration:
    """Typed extra-configuration block plus the declared key set.

    ``declared_keys`` is carried explicitly so read reconciliation never has to
    infer it from the shape of a previous value.
    """

    values: Mapping[str, ConfigValue] = field(default_factory=dict)
    declared_keys: frozenset[str] = frozenset()

    @classmethod
    def from_declared(cls, declared: Mapping[str, Any] | None) -> ExtraConfiguration | None:
        """Build a block from a declared mapping, or None if nothing is declared."""
        if not declared:
            return None
        values = {key: ConfigValue.from_declared(raw) for key, raw in declared.items()}
        return cls(values=values, declared_keys=frozenset(values))

    @property
    def keys(self) -> list[str]:
        return sorted(self.values)

    def to_wire(self) -> dict[str, Scalar]:
        return {key: value.to_wire() for key, value in self.values.items()}

    def __len__(self) -> int:
        return len(self.values)


def split_scopes(joined: str) -> list[str] | None:
    """Split a space-joined scope string, preserving order.

    An empty string means no scopes and yields None.
    """
    if joined == "":
        return None
    return joined.split(SCOPE_SEPARATOR)


def join_scopes(scopes: Iterable[str] | None) -> str:
    """Join declared scopes into the single wire string."""
    if scopes is None:
        return ""
    return SCOPE_SEPARATOR.join(scopes)
