"""Reference CPU kernels operating on f32 tensor views."""

from __future__ import annotations

import math
import struct
from collections.abc import Iterable, Sequence

from rvnllm.tensor_view import TensorDType, TensorError, TensorView

_GELU_C = math.sqrt(2.0 / math.pi)


def f32_view(values: Iterable[float], shape: Sequence[int] | None = None) -> TensorView:
    """Pack ``values`` as little-endian f32 into a view of the given shape."""
    floats = list(values)
    dims = tuple(shape) if shape is not None else (len(floats),)
    if math.prod(dims) != len(floats):
        raise TensorError(f"shape {dims} does not hold {len(floats)} values")
    return TensorView(struct.pack(f"<{len(floats)}f", *floats), dims, TensorDType.F32)


def _is_f32(*views: TensorView) -> bool:
    return all(view.dtype is TensorDType.F32 for view in views)


def add(a: TensorView, b: TensorView) -> list[float]:
    """Element-wise sum of two f32 tensors of equal shape."""
    if not _is_f32(a, b):
        raise TensorError("[cpu::add] only f32 add supported")
    if a.shape != b.shape:
        raise TensorError("[cpu::add] shape mismatch in add, cannot add different shapes")
    return [x + y for x, y in zip(a.as_f32(), b.as_f32())]


def matmul(a: TensorView, b: TensorView) -> list[float]:
    """Row-major product of an ``m x k`` and a ``k x n`` f32 matrix."""
    if not _is_f32(a, b):
        raise TensorError("Only f32 matmul supported")
    if len(a.shape) < 2 or len(b.shape) < 2:
        raise TensorError("matmul needs two-dimensional operands")
    m, k1 = a.shape[0], a.shape[1]
    k2, n = b.shape[0], b.shape[1]
    if k1 != k2:
        raise TensorError(f"Shape mismatch: {k1} != {k2}")
    a_vals = a.as_f32()
    b_vals = b.as_f32()
    rows = [a_vals[i * k1:(i + 1) * k1] for i in range(m)]
    cols = [b_vals[j:k1 * n:n] for j in range(n)]
    return [sum(x * y for x, y in zip(row, col)) for row in rows for col in cols]


def softmax_values(values: Sequence[float]) -> list[float]:
    """Numerically stable softmax of a plain sequence of numbers."""
    if not values:
        return []
    peak = max(values)
    exps = [math.exp(v - peak) for v in values]
    total = sum(exps)
    return [e / total for e in exps]


def softmax(a: TensorView) -> list[float]:
    """Softmax of a one-dimensional f32 tensor."""
    if a.dtype is not TensorDType.F32:
        raise TensorError("[cpu][softmax] only f32 supported")
    if len(a.shape) != 1:
        raise TensorError("[cpu][softmax] only 1D tensors supported")
    return softmax_values(a.as_f32())


def rmsnorm(input: TensorView, weight: TensorView, eps: float) -> list[float]:
    """Scale ``input`` by its root mean square and multiply by ``weight``."""
    if not _is_f32(input, weight):
        raise TensorError("[cpu] RMSNorm: only f32 supported")
    if input.num_elements() != weight.num_elements():
        raise TensorError("[cpu] RMSNorm: size mismatch")
    xs = input.as_f32()
    ws = weight.as_f32()
    if not xs:
        return []
    mean_square = sum(x * x for x in xs) / len(xs)
    rms = math.sqrt(mean_square + eps)
    return [(x / rms) * w for x, w in zip(xs, ws)]


def gelu_scalar(x: float) -> float:
    """GELU activation, tanh approximation."""
    return 0.5 * x * (1.0 + math.tanh(_GELU_C * (x + 0.044715 * x ** 3)))


def gelu(input: TensorView) -> list[float]:
    """Apply GELU to every element of an f32 tensor."""
    return [gelu_scalar(x) for x in input.as_f32()]


def attention_forward(q: TensorView, k: TensorView, v: TensorView) -> list[float]:
    """Single-head scaled dot-product attention for one query row.

    ``q`` is ``[1, d_k]``, ``k`` is ``[n_tokens, d_k]`` and ``v`` is
    ``[n_tokens, d_v]``; the result has ``d_v`` values.
    """
    if len(q.shape) < 2 or len(k.shape) < 2:
        raise TensorError("attention needs two-dimensional q and k")
    n_tokens, d_k = k.shape[0], k.shape[1]
    # The key buffer is read with its dimensions swapped; its bytes are not reordered.
    k_t = TensorView(k.data, (d_k, n_tokens), k.dtype)
    scores = matmul(q, k_t)
    if len(scores) != n_tokens:
        raise TensorError("attention expects a single query row")
    scale = 1.0 / math.sqrt(q.shape[1])
    weights = softmax_values([s * scale for s in scores])
    return matmul(f32_view(weights, (1, n_tokens)), v)