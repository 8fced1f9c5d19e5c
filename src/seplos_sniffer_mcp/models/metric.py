"""Decoded metric: one named, unit-tagged value for one pack."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class ValueKind(str, Enum):
    NUMBER = "number"
    TEXT = "text"


class Role(str, Enum):
    """Semantic role of a value, used by sinks to pick a presentation."""

    VALUE = "value"
    VOLTAGE = "value.voltage"
    CURRENT = "value.current"
    TEMPERATURE = "value.temperature"
    PERCENTAGE = "value.percentage"
    TEXT = "text"


def device_prefix(device_index: int) -> str:
    """Key prefix grouping every metric of one pack."""
    return f"bms_{device_index}"


def metric_key(device_index: int, name: str) -> str:
    return f"{device_prefix(device_index)}.{name}"


@dataclass(frozen=True)
class DecodedMetric:
    """A single decoded value.

    ``key`` is hierarchical and scoped by device index, e.g.
    ``bms_3.pack_voltage``.
    """

    device_index: int
    name: str
    value: Union[float, int, str]
    unit: str = ""
    role: Role = Role.VALUE
    kind: ValueKind = ValueKind.NUMBER

    @property
    def key(self) -> str:
        return metric_key(self.device_index, self.name)

    @classmethod
    def number(
        cls, device_index: int, name: str, value: float, unit: str, role: Role = Role.VALUE
    ) -> DecodedMetric:
        return cls(device_index, name, value, unit, role, ValueKind.NUMBER)

    @classmethod
    def text(cls, device_index: int, name: str, value: str) -> DecodedMetric:
        return cls(device_index, name, value, "", Role.TEXT, ValueKind.TEXT)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "unit": self.unit,
            "role": self.role.value,
            "kind": self.kind.value,
        }

    def __repr__(self) -> str:
        suffix = f" {self.unit}" if self.unit else ""
        return f"DecodedMetric({self.key}={self.value!r}{suffix})"
