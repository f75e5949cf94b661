"""Cut a GGUF model down to its first layers, for small test fixtures."""

from __future__ import annotations

import logging
import os
import struct
from collections.abc import Mapping, Sequence
from typing import BinaryIO, Union

from rvnllm.gguf import Tensor, load_model
from rvnllm.types import GgufError, Value

log = logging.getLogger(__name__)

Buffer = Union[bytes, bytearray, memoryview]

# Layer number assumed for "blk." names whose layer field is not a number.
_UNPARSABLE_LAYER = 999


def _layer_number(name: str) -> int:
    field = name.split(".")[1]
    if field.isascii() and field.isdigit():
        return int(field)
    return _UNPARSABLE_LAYER


def _keep(name: str, layers: int) -> bool:
    if name.startswith("token_emb") or name.startswith("output"):
        return True
    if name.startswith("blk."):
        return _layer_number(name) < layers
    return False


def select_tensors(tensors: Mapping[str, Tensor], layers: int) -> list[tuple[str, Tensor]]:
    """Embedding, output and ``blk.N`` tensors with ``N < layers``, in mapping order."""
    return [(name, tensor) for name, tensor in tensors.items() if _keep(name, layers)]


def _u64(value: int) -> bytes:
    return struct.pack("<Q", value)


def _name(text: str) -> bytes:
    encoded = text.encode("utf-8")
    return _u64(len(encoded)) + encoded


def write_gguf(
    stream: BinaryIO,
    metadata: Mapping[str, Value],
    tensors: Sequence[tuple[str, Tensor]],
    blob: Buffer,
) -> None:
    """Write a minimal version-2 file: header, metadata keys, descriptors, data.

    Metadata values are not written; each key gets a placeholder tag and a zero.
    The data blob is written at the first tensor's offset.
    """
    if not tensors:
        raise GgufError("no tensors to write")
    stream.write(b"GGUF")
    stream.write(bytes([2, 0, 0, 0]))
    stream.write(_u64(len(metadata)))
    stream.write(_u64(len(tensors)))

    for key in metadata:
        stream.write(_name(key))
        stream.write(bytes([0x01]))
        stream.write(struct.pack("<I", 0))

    for name, tensor in tensors:
        stream.write(_name(name))
        stream.write(struct.pack("<I", len(tensor.shape)))
        for dim in tensor.shape:
            stream.write(_u64(dim))
        stream.write(struct.pack("<I", tensor.kind))
        stream.write(_u64(tensor.offset))
        stream.write(_u64(tensor.size))

    stream.seek(tensors[0][1].offset)
    stream.write(bytes(blob))


def run_truncate(
    path: str | os.PathLike[str],
    output: str | os.PathLike[str],
    layers: int = 1,
    verbose: bool = False,
) -> list[tuple[str, Tensor]]:
    """Write the kept tensors of the model at ``path`` to ``output``.

    Returns the written descriptors, with offsets packed from zero.
    """
    log.debug("[run_truncate]")
    with load_model(path) as gguf:
        selected = select_tensors(gguf.tensors, layers)
        if verbose:
            print(f"Keeping {len(selected)} tensors out of {len(gguf.tensors)}")

        blob = bytearray()
        packed: list[tuple[str, Tensor]] = []
        for name, tensor in selected:
            view = tensor.view(gguf.raw_bytes)
            offset = len(blob)
            blob += view.data
            size = len(blob) - offset
            if isinstance(view.data, memoryview):
                view.data.release()
            packed.append(
                (
                    name,
                    Tensor(
                        name=name,
                        kind=tensor.kind,
                        offset=offset,
                        size=size,
                        shape=list(tensor.shape),
                    ),
                )
            )
        metadata = dict(gguf.metadata)

    with open(output, "wb") as out:
        write_gguf(out, metadata, packed, blob)
    return packed