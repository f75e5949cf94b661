"""Reading GGUF model files: header, typed metadata and tensor descriptors."""

from __future__ import annotations

import contextlib
import logging
import math
import mmap
import os
import struct
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Union

from rvnllm.tensor_view import Tensor as _BaseTensor
from rvnllm.tensor_view import TensorDType, TensorError, TensorView
from rvnllm.types import GGMLType, GgufError, GgufVersion, MetadataValueType, Value

log = logging.getLogger(__name__)

Buffer = Union[bytes, bytearray, memoryview]

MAGIC = 0x4655_4747  # "GGUF" read as a little-endian u32

_SCALAR_FORMATS = {
    MetadataValueType.UINT8: "<B",
    MetadataValueType.INT8: "<b",
    MetadataValueType.UINT16: "<H",
    MetadataValueType.INT16: "<h",
    MetadataValueType.UINT32: "<I",
    MetadataValueType.INT32: "<i",
    MetadataValueType.FLOAT32: "<f",
    MetadataValueType.UINT64: "<Q",
    MetadataValueType.INT64: "<q",
    MetadataValueType.FLOAT64: "<d",
}


class _Cursor:
    """A read-only stream over a buffer that never copies the whole buffer."""

    def __init__(self, data: Buffer) -> None:
        self._view = memoryview(data)
        self._pos = 0

    def read(self, size: int = -1) -> bytes:
        end = len(self._view) if size < 0 else min(self._pos + size, len(self._view))
        chunk = bytes(self._view[self._pos:end])
        self._pos = end
        return chunk


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise GgufError("unexpected end of data")
    return data


def _unpack(stream: BinaryIO, fmt: str):
    return struct.unpack(fmt, _read_exact(stream, struct.calcsize(fmt)))[0]


def read_string(stream: BinaryIO) -> str:
    """Read a UTF-8 string prefixed by its u64 byte length."""
    length = _unpack(stream, "<Q")
    raw = _read_exact(stream, length)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise GgufError(f"invalid UTF-8 string: {exc}") from exc


def _read_item(stream: BinaryIO, kind: MetadataValueType, in_array: bool) -> Value:
    if kind is MetadataValueType.BOOL:
        byte = _unpack(stream, "<B")
        # Inside arrays any non-zero byte is true; standalone only 1 is.
        return Value(kind, byte != 0 if in_array else byte == 1)
    if kind is MetadataValueType.STRING:
        return Value(kind, read_string(stream))
    if kind is MetadataValueType.ARRAY:
        if in_array:
            raise GgufError("unsupported nested array element")
        elem_kind = MetadataValueType(_unpack(stream, "<I"))
        count = _unpack(stream, "<Q")
        items = tuple(_read_item(stream, elem_kind, True) for _ in range(count))
        return Value(kind, items)
    return Value(kind, _unpack(stream, _SCALAR_FORMATS[kind]))


def read_value(stream: BinaryIO) -> Value:
    """Read a type code followed by a metadata value of that type."""
    kind = MetadataValueType(_unpack(stream, "<I"))
    return _read_item(stream, kind, False)


def parse_metadata(stream: BinaryIO, count: int) -> dict[str, Value]:
    """Read ``count`` key/value pairs of metadata."""
    metadata: dict[str, Value] = {}
    for _ in range(count):
        key = read_string(stream)
        metadata[key] = read_value(stream)
    return metadata


def tensor_byte_size(kind: int, shape: Sequence[int]) -> int:
    """Number of bytes a tensor of ``kind`` and ``shape`` occupies."""
    block = 1 if kind < 2 else 32 if kind < 10 else 256
    ggml_type = GGMLType(kind)
    type_sizes = {
        GGMLType.F32: 4,
        GGMLType.F16: 2,
        GGMLType.Q4_0: 2 + block // 2,
        GGMLType.Q4_1: 2 + 2 + block // 2,
        GGMLType.Q5_0: 2 + 4 + block // 2,
        GGMLType.Q5_1: 2 + 2 + 4 + block // 2,
        GGMLType.Q8_0: 2 + block,
        GGMLType.Q8_1: 4 + 4 + block,
        GGMLType.Q2K: block // 16 + block // 4 + 2 + 2,
        GGMLType.Q3K: block // 8 + block // 4 + 12 + 2,
        GGMLType.Q4K: 2 + 2 + 12 + block // 2,
        GGMLType.Q5K: 2 + 2 + 12 + block // 8 + block // 2,
        GGMLType.Q6K: block // 2 + block // 4 + block // 16 + 2,
    }
    type_size = type_sizes.get(ggml_type)
    if type_size is None:
        raise GgufError(f"unsupported GGMLType {ggml_type}")
    return math.prod(shape) * type_size // block


class Tensor(_BaseTensor):
    """A tensor descriptor whose view is decoded through the format registry."""

    def view(self, blob: Buffer) -> TensorView:
        """Decode this tensor's bytes in ``blob`` with the format for its kind."""
        end = self.offset + self.size
        if end > len(blob):
            raise TensorError(f"tensor '{self.name}' slice out of bounds")
        fmt = get_format(self.kind)
        if fmt is None:
            raise TensorError(f"unknown tensor kind {self.kind}")
        return fmt.decode(memoryview(blob)[self.offset:end], self.shape)


def parse_tensors(stream: BinaryIO, count: int) -> dict[str, Tensor]:
    """Read ``count`` tensor descriptors."""
    tensors: dict[str, Tensor] = {}
    for _ in range(count):
        name = read_string(stream)
        dims = _unpack(stream, "<I")
        shape = [_unpack(stream, "<Q") for _ in range(dims)]
        kind = _unpack(stream, "<I")
        offset = _unpack(stream, "<Q")
        size = tensor_byte_size(kind, shape)
        tensor = Tensor(name=name, kind=kind, offset=offset, size=size, shape=shape)
        log.debug("tensor: %r", tensor)
        tensors[name] = tensor
    return tensors


def _blocks(raw: Buffer, size: int) -> Iterator[memoryview]:
    """Yield complete ``size``-byte blocks; a trailing partial block is dropped."""
    view = memoryview(raw)
    usable = len(view) - len(view) % size
    for start in range(0, usable, size):
        yield view[start:start + size]


_Q6K_ELEMS = 32
_Q6K_DATA = (_Q6K_ELEMS * 6 + 7) // 8
_Q6K_BLOCK = 8 + _Q6K_DATA


def decode_q6k(raw: Buffer, shape: Sequence[int]) -> list[float]:
    """Decode blocks of scale, bias and 32 packed 6-bit values into floats."""
    n = math.prod(shape)
    out: list[float] = []
    for block in _blocks(raw, _Q6K_BLOCK):
        scale, bias = struct.unpack_from("<2f", block)
        data = block[8:]
        for bitpos in range(0, _Q6K_ELEMS * 6, 6):
            index, shift = divmod(bitpos, 8)
            value = data[index] >> shift
            if shift > 2:
                value |= data[index + 1] << (8 - shift)
            out.append((value & 0x3F) * scale + bias)
            if len(out) == n:
                return out
    return out


_Q4KS_VALUES = 64
_Q4KS_BLOCK = 4 * 2 + 1 + 32


def decode_q4ks(raw: Buffer, shape: Sequence[int]) -> list[float]:
    """Decode blocks of two scales, a zero point and 32 bytes of 4-bit pairs."""
    n = math.prod(shape)
    out: list[float] = []
    for block in _blocks(raw, _Q4KS_BLOCK):
        scale_0, scale_1 = struct.unpack_from("<2f", block)
        zero_point = block[8]
        for i, byte in enumerate(block[9:]):
            scale = scale_0 if 2 * i < _Q4KS_VALUES // 2 else scale_1
            out.append(((byte & 0x0F) - zero_point) * scale)
            out.append(((byte >> 4) - zero_point) * scale)
            if len(out) >= n:
                return out
    return out


_Q2K_BLOCK = 4 + 4 + 32 // 8


def decode_q2k(raw: Buffer, shape: Sequence[int]) -> list[float]:
    """Decode blocks of a scale, a zero point and four bytes of 2-bit values."""
    n = math.prod(shape)
    out: list[float] = []
    for block in _blocks(raw, _Q2K_BLOCK):
        scale = struct.unpack_from("<f", block)[0]
        zero_point = float(struct.unpack_from("<I", block, 4)[0])
        for byte in block[8:12]:
            for bit in range(8):
                # Shift amounts wrap at the width of a byte.
                code = (byte >> ((bit * 2) & 7)) & 0x03
                out.append((code - zero_point) * scale)
                if len(out) == n:
                    break
            if len(out) == n:
                break
    return out


Decoder = Callable[[Buffer, Sequence[int]], "list[float]"]


@dataclass(frozen=True)
class TensorFormat:
    """How a tensor kind's bytes become a view: passed through or decoded to f32."""

    id: int
    name: str
    dtype: TensorDType
    decoder: Decoder | None = None

    def decode(self, data: Buffer, shape: Sequence[int]) -> TensorView:
        if self.decoder is None:
            return TensorView(data, tuple(shape), self.dtype)
        values = self.decoder(data, shape)
        packed = struct.pack(f"<{len(values)}f", *values)
        return TensorView(packed, tuple(shape), TensorDType.F32)


_FORMATS = {
    fmt.id: fmt
    for fmt in (
        TensorFormat(0, "F32", TensorDType.F32),
        TensorFormat(2, "Q4_0", TensorDType.Q4_0),
        TensorFormat(10, "Q2_K", TensorDType.F32, decode_q2k),
        TensorFormat(12, "Q3_K_M", TensorDType.Q3KM),
        TensorFormat(14, "Q4_K_S", TensorDType.F32, decode_q4ks),
        TensorFormat(18, "Q6_K", TensorDType.Q6K),
    )
}


def get_format(kind: int) -> TensorFormat | None:
    """The registered format for a tensor kind code, if any."""
    return _FORMATS.get(kind)


@dataclass
class Header:
    tensor_count: int = 0
    metadata_kv_count: int = 0


@dataclass
class ParsedGGUF:
    """A parsed model: header, metadata, tensor descriptors and the raw file bytes."""

    header: Header
    metadata: dict[str, Value]
    tensors: dict[str, Tensor]
    raw_bytes: Buffer = field(repr=False)
    _mmap: mmap.mmap | None = field(default=None, init=False, repr=False, compare=False)

    def tensor(self, name: str) -> Tensor | None:
        return self.tensors.get(name)

    def tensor_view(self, name: str) -> TensorView:
        tensor = self.tensors.get(name)
        if tensor is None:
            raise GgufError(f"no tensor {name}")
        return tensor.view(self.raw_bytes)

    def items(self) -> Iterator[tuple[str, Tensor]]:
        return iter(self.tensors.items())

    def close(self) -> None:
        """Release the file mapping, if the model was loaded from disk."""
        if self._mmap is None:
            return
        if isinstance(self.raw_bytes, memoryview):
            self.raw_bytes.release()
        # Views still held elsewhere keep the mapping alive until they go.
        with contextlib.suppress(BufferError):
            self._mmap.close()
        self._mmap = None

    def __enter__(self) -> ParsedGGUF:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def _parse_body(stream: BinaryIO) -> tuple[Header, dict[str, Value], dict[str, Tensor]]:
    tensor_count = _unpack(stream, "<Q")
    metadata_kv_count = _unpack(stream, "<Q")
    log.debug("tensor_count: %d, metadata_kv_count: %d", tensor_count, metadata_kv_count)
    metadata = parse_metadata(stream, metadata_kv_count)
    tensors = parse_tensors(stream, tensor_count)
    return Header(tensor_count, metadata_kv_count), metadata, tensors


_PARSERS = {GgufVersion.V2: _parse_body, GgufVersion.V3: _parse_body}


def parse_gguf(data: Buffer) -> ParsedGGUF:
    """Parse a complete GGUF image held in memory."""
    stream = _Cursor(data)
    magic = _unpack(stream, "<I")
    if magic != MAGIC:
        raise GgufError(f"invalid GGUF magic 0x{magic:08X}")
    version = GgufVersion(_unpack(stream, "<I"))
    log.debug("version: %s", version.name)
    parser = _PARSERS.get(version)
    if parser is None:
        raise GgufError(f"unsupported GGUF version {version.name}")
    header, metadata, tensors = parser(stream)
    return ParsedGGUF(header, metadata, tensors, data)


def load_model(path: str | os.PathLike[str]) -> ParsedGGUF:
    """Memory-map a GGUF file and parse it."""
    path = Path(path)
    log.info("Loading model %s", path)
    with path.open("rb") as handle:
        if os.fstat(handle.fileno()).st_size == 0:
            return parse_gguf(b"")
        mapped = mmap.mmap(handle.fileno(), 0, access=mmap.ACCESS_READ)
    data = memoryview(mapped)
    try:
        parsed = parse_gguf(data)
    except BaseException:
        data.release()
        with contextlib.suppress(BufferError):
            mapped.close()
        raise
    parsed._mmap = mapped
    return parsed