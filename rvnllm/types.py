"""Enumerations and typed values of the GGUF file format."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Union


class GgufError(ValueError):
    """Raised for malformed or unsupported GGUF content."""


class MetadataValueType(IntEnum):
    """Type codes of metadata values, as stored on disk."""

    UINT8 = 0
    INT8 = 1
    UINT16 = 2
    INT16 = 3
    UINT32 = 4
    INT32 = 5
    FLOAT32 = 6
    BOOL = 7
    STRING = 8
    ARRAY = 9
    UINT64 = 10
    INT64 = 11
    FLOAT64 = 12

    @classmethod
    def _missing_(cls, value: object) -> MetadataValueType:
        raise GgufError(f"wrong metadata type: {value}")


class GGMLType(IntEnum):
    """Tensor storage types, as stored on disk."""

    F32 = 0
    F16 = 1
    Q4_0 = 2
    Q4_1 = 3
    Q5_0 = 6
    Q5_1 = 7
    Q8_0 = 8
    Q8_1 = 9
    Q2K = 10
    Q3K = 11
    Q4K = 12
    Q5K = 13
    Q6K = 14
    Q8K = 15
    I8 = 16
    I16 = 17
    I32 = 18
    COUNT = 19

    @classmethod
    def _missing_(cls, value: object) -> GGMLType:
        raise GgufError(f"invalid GGML type: {value}")

    def __str__(self) -> str:
        return "Count" if self is GGMLType.COUNT else self.name


class GgufVersion(IntEnum):
    """File format versions that can be read."""

    V2 = 2
    V3 = 3

    @classmethod
    def _missing_(cls, value: object) -> GgufVersion:
        raise GgufError(f"Unsupported GGUF version: {value}")


_INT_RANGES = {
    MetadataValueType.UINT8: (0, 0xFF),
    MetadataValueType.INT8: (-0x80, 0x7F),
    MetadataValueType.UINT16: (0, 0xFFFF),
    MetadataValueType.INT16: (-0x8000, 0x7FFF),
    MetadataValueType.UINT32: (0, 0xFFFF_FFFF),
    MetadataValueType.INT32: (-0x8000_0000, 0x7FFF_FFFF),
    MetadataValueType.UINT64: (0, 0xFFFF_FFFF_FFFF_FFFF),
    MetadataValueType.INT64: (-0x8000_0000_0000_0000, 0x7FFF_FFFF_FFFF_FFFF),
}

_FLOAT_TYPES = (MetadataValueType.FLOAT32, MetadataValueType.FLOAT64)

Payload = Union[int, float, bool, str, tuple["Value", ...]]


@dataclass(frozen=True)
class Value:
    """A metadata value together with its on-disk type.

    Arrays hold a tuple of ``Value`` items that all share one non-array type.
    """

    kind: MetadataValueType
    value: Payload

    def __post_init__(self) -> None:
        kind = MetadataValueType(self.kind)
        object.__setattr__(self, "kind", kind)
        value = self.value
        if kind in _INT_RANGES:
            low, high = _INT_RANGES[kind]
            if isinstance(value, bool) or not isinstance(value, int):
                raise GgufError(f"{kind.name} value must be an integer")
            if not low <= value <= high:
                raise GgufError(f"{value} out of range for {kind.name}")
        elif kind in _FLOAT_TYPES:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise GgufError(f"{kind.name} value must be a number")
            object.__setattr__(self, "value", float(value))
        elif kind is MetadataValueType.BOOL:
            if not isinstance(value, bool):
                raise GgufError("BOOL value must be a bool")
        elif kind is MetadataValueType.STRING:
            if not isinstance(value, str):
                raise GgufError("STRING value must be a str")
        else:
            items = tuple(value)
            for item in items:
                if not isinstance(item, Value):
                    raise GgufError("array items must be Value instances")
                if item.kind is MetadataValueType.ARRAY:
                    raise GgufError("unsupported nested array element")
            if len({item.kind for item in items}) > 1:
                raise GgufError("array items must share one type")
            object.__setattr__(self, "value", items)