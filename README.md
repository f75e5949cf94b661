# rvnllm

A reader and inspector for GGUF model files. It also has small reference
CPU tensor operations: add, matmul, softmax, RMSNorm, GELU and single-head
attention. It uses only the standard library.

## Installation

```
pip install .
```

To install the test dependencies, run `pip install .[test]`.

## Command line

```
rvnllm list --file model.gguf
rvnllm truncate --file model.gguf --output small.gguf --layers 1 --verbose
```

Every command first prints `dispatch`.

- `list` prints the tensor count, then each tensor's name and shape.
- `truncate` writes a smaller file. It keeps the tensors whose names start
  with `token_emb` or `output`, and the `blk.N.*` tensors with
  `N < --layers` (the default is 1). The data of the kept tensors is packed
  from offset zero. The new file has version 2. Metadata keys are kept, but
  each value is written as a placeholder tag and a zero, so the values are
  lost. `--verbose` prints how many tensors are kept. If truncation fails,
  the command prints no error.

The parser also accepts these subcommands: `info`, `dump`, `forward`,
`forward-simple`, `decode-test`, `diff`, `validate`, `analyze`, `profile`,
`watch`, `watch-perf` and `debug`. Each of them only prints a short message
saying it is not implemented. `-V`/`--version` prints the version.

## Library use

```python
from rvnllm.gguf import load_model
from rvnllm import ops

with load_model("model.gguf") as gguf:
    print(gguf.header.tensor_count, gguf.header.metadata_kv_count)
    for name, tensor in gguf.items():
        print(name, tensor.shape, tensor.kind, tensor.offset, tensor.size)
    view = gguf.tensor_view("blk.0.attn_norm.weight")
    values = view.as_f32()  # only for F32 views

a = ops.f32_view([1.0, 2.0, 3.0], [3])
b = ops.f32_view([4.0, 5.0, 6.0], [3])
print(ops.add(a, b))  # [5.0, 7.0, 9.0]
```

### GGUF reading (`rvnllm.gguf`)

- Files of version 2 and 3 are read. `load_model` memory-maps a file, and
  `parse_gguf` parses bytes that are already in memory. Both return a
  `ParsedGGUF`. Use it as a context manager, or call `close()`, to release
  the mapping.
- Metadata values come back as `rvnllm.types.Value` objects. Each holds a
  `MetadataValueType` and a payload. A payload can be a number, a bool, a
  string or a tuple of `Value` items.
- `tensor_byte_size` gives the size of each tensor, worked out from its
  GGML type code and its shape.
- `tensor_view` returns a view through the format registry, keyed by tensor
  kind code:

  | Code | Format | Result |
  | ---- | ------ | ------ |
  | 0 | F32 | raw bytes as F32 |
  | 2 | Q4_0 | raw bytes |
  | 10 | Q2_K | decoded to F32 with `decode_q2k` |
  | 12 | Q3_K_M | raw bytes |
  | 14 | Q4_K_S | decoded to F32 with `decode_q4ks` |
  | 18 | Q6_K | raw bytes |

  A kind code outside this table raises `TensorError`. `decode_q6k` is
  available as a function, but no registry entry uses it.

### Tensor views (`rvnllm.tensor_view`)

`TensorView` wraps bytes together with a shape and a `TensorDType`. It
provides these methods:

- `as_f32()` and `as_i8()` decode the bytes as F32 or I8 values.
- `as_raw(dtype)` returns the bytes, after checking the dtype and the
  length.
- `num_elements()` and `expected_byte_len()` report the view's size.

### Operations (`rvnllm.ops`)

All operations take F32 views and return plain lists of floats:
`add`, `matmul`, `softmax`, `softmax_values`, `rmsnorm`, `gelu`,
`gelu_scalar` and `attention_forward`. The attention takes one query row,
`q` of shape `[1, d_k]`, with `k` of shape `[n, d_k]` and `v` of shape
`[n, d_v]`. `f32_view` packs a list of floats into a view of a given shape.

### Errors

- Malformed or unsupported file content raises `rvnllm.types.GgufError`.
- A wrong tensor type, shape or bounds raises
  `rvnllm.tensor_view.TensorError`.

Both are subclasses of `ValueError`.

## What it does not do

- It does not run models. There is no tokenizer, forward pass or sampling.
- It has no GPU support.
- Apart from Q2_K and Q4_K_S, quantised tensors are not decoded. Tensors
  whose type has no registered size, such as Q8_K and the integer types,
  cannot be read.
- It does not write complete GGUF files. `truncate` produces only the
  minimal, metadata-less form described above.