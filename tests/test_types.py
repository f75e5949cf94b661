import pytest

from rvnllm.types import GGMLType, GgufError, GgufVersion, MetadataValueType, Value


def test_metadata_type_round_trip():
    for member in MetadataValueType:
        assert MetadataValueType(int(member)) is member


def test_metadata_type_codes_from_spec():
    assert MetadataValueType(8) is MetadataValueType.STRING
    assert MetadataValueType(9) is MetadataValueType.ARRAY


def test_metadata_type_unknown_code():
    with pytest.raises(GgufError, match="wrong metadata type: 13"):
        MetadataValueType(13)


def test_ggml_type_round_trip():
    for member in GGMLType:
        assert GGMLType(int(member)) is member


@pytest.mark.parametrize("code", [4, 5, 20])
def test_ggml_type_unknown_code(code):
    with pytest.raises(GgufError, match="invalid GGML type"):
        GGMLType(code)


@pytest.mark.parametrize(
    "member, label",
    [
        (GGMLType.F32, "F32"),
        (GGMLType.Q4_0, "Q4_0"),
        (GGMLType.Q2K, "Q2K"),
        (GGMLType.Q6K, "Q6K"),
        (GGMLType.COUNT, "Count"),
    ],
)
def test_ggml_type_display(member, label):
    assert str(member) == label


def test_gguf_version_known():
    assert GgufVersion(2) is GgufVersion.V2
    assert GgufVersion(3) is GgufVersion.V3
    assert int(GgufVersion.V3) == 3


def test_gguf_version_unsupported():
    with pytest.raises(GgufError, match="Unsupported GGUF version: 1"):
        GgufVersion(1)


def test_value_keeps_payload():
    value = Value(MetadataValueType.STRING, "llama")
    assert value.value == "llama"
    assert value.kind is MetadataValueType.STRING


def test_value_accepts_integer_code_for_kind():
    value = Value(4, 7)
    assert value.kind is MetadataValueType.UINT32


def test_value_float_is_stored_as_float():
    value = Value(MetadataValueType.FLOAT32, 2)
    assert isinstance(value.value, float)
    assert value.value == 2


@pytest.mark.parametrize(
    "kind, payload",
    [
        (MetadataValueType.UINT8, 256),
        (MetadataValueType.UINT8, -1),
        (MetadataValueType.INT8, -129),
        (MetadataValueType.UINT32, "7"),
        (MetadataValueType.INT32, True),
        (MetadataValueType.BOOL, 1),
        (MetadataValueType.STRING, b"bytes"),
        (MetadataValueType.FLOAT64, "1.0"),
    ],
)
def test_value_rejects_bad_payload(kind, payload):
    with pytest.raises(GgufError):
        Value(kind, payload)


def test_array_value_becomes_tuple():
    items = [Value(MetadataValueType.INT32, 1), Value(MetadataValueType.INT32, 2)]
    array = Value(MetadataValueType.ARRAY, items)
    assert array.value == tuple(items)


def test_nested_array_rejected():
    inner = Value(MetadataValueType.ARRAY, [])
    with pytest.raises(GgufError, match="nested array"):
        Value(MetadataValueType.ARRAY, [inner])


def test_mixed_array_rejected():
    items = [Value(MetadataValueType.INT32, 1), Value(MetadataValueType.STRING, "a")]
    with pytest.raises(GgufError, match="share one type"):
        Value(MetadataValueType.ARRAY, items)