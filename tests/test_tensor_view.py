import struct

import pytest

from rvnllm.tensor_view import Tensor, TensorDType, TensorError, TensorView


def _f32_bytes(values):
    return struct.pack(f"<{len(values)}f", *values)


def test_f32_round_trip():
    values = [1.5, -2.0, 0.25]
    view = TensorView(_f32_bytes(values), (3,), TensorDType.F32)
    assert view.as_f32() == values


def test_f32_two_dimensional_round_trip():
    values = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    view = TensorView(_f32_bytes(values), (2, 3), TensorDType.F32)
    assert view.as_f32() == values
    assert view.expected_byte_len() == len(view.data)


def test_element_sizes():
    assert TensorView(b"", (0,), TensorDType.F32).elements_size() == 4
    assert TensorView(b"", (0,), TensorDType.F16).elements_size() == 2
    assert TensorView(b"", (0,), TensorDType.Q6K).elements_size() == 1


def test_expected_byte_len_is_elements_times_size():
    view = TensorView(b"", (2, 3, 4), TensorDType.F16)
    assert view.expected_byte_len() == view.num_elements() * view.elements_size()


def test_i8_values_match_input_bytes():
    data = bytes(range(6))
    view = TensorView(data, (2, 3), TensorDType.I8)
    assert view.as_i8() == list(range(6))
    assert view.num_elements() == len(data)


def test_i8_is_signed():
    view = TensorView(bytes([0x80, 0xFF, 0x7F]), (3,), TensorDType.I8)
    assert view.as_i8() == [-128, -1, 127]


def test_as_f32_rejects_other_dtype():
    view = TensorView(bytes(4), (4,), TensorDType.I8)
    with pytest.raises(TensorError, match="not f32"):
        view.as_f32()


def test_as_f32_rejects_length_mismatch():
    view = TensorView(bytes(6), (2,), TensorDType.F32)
    with pytest.raises(TensorError, match="length mismatch"):
        view.as_f32()


def test_as_i8_rejects_other_dtype():
    view = TensorView(bytes(4), (1,), TensorDType.F32)
    with pytest.raises(TensorError, match="not i8"):
        view.as_i8()


def test_as_raw_returns_bytes():
    data = bytes([1, 2, 3, 4])
    view = TensorView(data, (4,), TensorDType.Q4_0)
    assert view.as_raw(TensorDType.Q4_0) == data


def test_as_raw_rejects_wrong_dtype():
    view = TensorView(bytes(4), (4,), TensorDType.Q4_0)
    with pytest.raises(TensorError, match="not Q6K"):
        view.as_raw(TensorDType.Q6K)


def test_as_raw_rejects_length_mismatch():
    view = TensorView(bytes(3), (4,), TensorDType.Q4_0)
    with pytest.raises(TensorError, match="length mismatch for Q4_0"):
        view.as_raw(TensorDType.Q4_0)


def test_tensor_view_slices_buffer():
    values = [1.0, 2.0]
    buffer = bytes(4) + _f32_bytes(values) + bytes(4)
    tensor = Tensor("w", 0, 4, 8, [2])
    view = tensor.view(buffer)
    assert view.dtype is TensorDType.F32
    assert view.shape == (2,)
    assert view.as_f32() == values


@pytest.mark.parametrize(
    "kind, dtype",
    [
        (0, TensorDType.F32),
        (1, TensorDType.F16),
        (2, TensorDType.Q4_0),
        (16, TensorDType.I8),
    ],
)
def test_tensor_kind_maps_to_dtype(kind, dtype):
    tensor = Tensor("t", kind, 0, 4, [1])
    assert tensor.view(bytes(8)).dtype is dtype


def test_tensor_unsupported_kind():
    tensor = Tensor("t", 3, 0, 4, [1])
    with pytest.raises(TensorError, match="Unsupported tensor dtype kind 3"):
        tensor.view(bytes(8))


def test_tensor_out_of_bounds():
    tensor = Tensor("t", 0, 4, 8, [2])
    with pytest.raises(TensorError, match="out of bounds"):
        tensor.view(bytes(8))