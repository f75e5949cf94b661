"""Byte-level views over tensor data held in a model file."""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

Buffer = Union[bytes, bytearray, memoryview]


class TensorError(ValueError):
    """Raised when tensor data cannot be viewed or computed on as requested."""


class TensorDType(Enum):
    """How the bytes of a tensor are to be interpreted."""

    F32 = "F32"
    F16 = "F16"
    I8 = "I8"
    Q4_0 = "Q4_0"
    Q4_1 = "Q4_1"
    Q5_0 = "Q5_0"
    Q5_1 = "Q5_1"
    Q8_0 = "Q8_0"
    Q8_1 = "Q8_1"
    Q2K = "Q2K"
    Q3KS = "Q3KS"
    Q3KM = "Q3KM"
    Q3KL = "Q3KL"
    Q4KS = "Q4KS"
    Q4KM = "Q4KM"
    Q5KS = "Q5KS"
    Q5KM = "Q5KM"
    Q6K = "Q6K"


# Packed quantised types are addressed one byte at a time.
_ELEMENT_SIZES = {TensorDType.F32: 4, TensorDType.F16: 2}

# Tensor kind codes understood by Tensor.view.
_KIND_DTYPES = {
    0: TensorDType.F32,
    1: TensorDType.F16,
    2: TensorDType.Q4_0,
    16: TensorDType.I8,
}


@dataclass
class TensorView:
    """A shaped, typed window onto raw tensor bytes."""

    data: Buffer
    shape: tuple[int, ...]
    dtype: TensorDType

    def __post_init__(self) -> None:
        self.shape = tuple(int(d) for d in self.shape)

    def elements_size(self) -> int:
        """Bytes per addressable element of this view's dtype."""
        return _ELEMENT_SIZES.get(self.dtype, 1)

    def num_elements(self) -> int:
        return math.prod(self.shape)

    def expected_byte_len(self) -> int:
        return self.num_elements() * self.elements_size()

    def _check_length(self, label: str) -> None:
        if self.expected_byte_len() != len(self.data):
            raise TensorError(f"[TensorView] length mismatch for {label}")

    def as_f32(self) -> list[float]:
        """Decode the bytes as little-endian 32-bit floats."""
        if self.dtype is not TensorDType.F32:
            raise TensorError("[TensorView] Tensor is not f32")
        if self.expected_byte_len() != len(self.data):
            raise TensorError("[TensorView] Tensor data length mismatch")
        return list(struct.unpack_from(f"<{self.num_elements()}f", self.data))

    def as_i8(self) -> list[int]:
        """Decode the bytes as signed 8-bit integers."""
        if self.dtype is not TensorDType.I8:
            raise TensorError("[TensorView] Tensor is not i8")
        if self.expected_byte_len() != len(self.data):
            raise TensorError("[TensorView] Tensor data length mismatch")
        return list(struct.unpack_from(f"<{self.num_elements()}b", self.data))

    def as_raw(self, dtype: TensorDType) -> bytes:
        """Return the raw bytes, provided the view holds ``dtype`` and is sized right."""
        if self.dtype is not dtype:
            raise TensorError(f"[TensorView] not {dtype.value}")
        self._check_length(dtype.value)
        return bytes(self.data)


@dataclass
class Tensor:
    """A tensor descriptor: where its bytes live in a buffer and how they are shaped."""

    name: str
    kind: int
    offset: int
    size: int
    shape: list[int] = field(default_factory=list)

    def view(self, buffer: Buffer) -> TensorView:
        """Return a zero-copy view of this tensor's bytes in ``buffer``."""
        start = self.offset
        end = start + self.size
        if end > len(buffer):
            raise TensorError(f"[Tensor] Tensor out of bounds: {end} > {len(buffer)}")
        dtype = _KIND_DTYPES.get(self.kind)
        if dtype is None:
            raise TensorError(f"[Tensor] Unsupported tensor dtype kind {self.kind}")
        return TensorView(memoryview(buffer)[start:end], tuple(self.shape), dtype)