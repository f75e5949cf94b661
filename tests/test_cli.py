import struct

import pytest

from rvnllm.cli import (
    CacheMode,
    Device,
    DumpFormat,
    PerfMetric,
    ValidationProfile,
    build_parser,
    dispatch,
    main,
    run_list,
)
from rvnllm.types import GgufError


def _gguf_bytes(tensors):
    """Build a version-3 GGUF image holding f32 tensors after the header."""

    def header(offsets):
        parts = [struct.pack("<IIQQ", 0x46554747, 3, len(tensors), 0)]
        for (name, _, shape), off in zip(tensors, offsets):
            enc = name.encode()
            parts.append(
                struct.pack("<Q", len(enc))
                + enc
                + struct.pack("<I", len(shape))
                + struct.pack(f"<{len(shape)}Q", *shape)
                + struct.pack("<IQ", 0, off)
            )
        return b"".join(parts)

    datas = [struct.pack(f"<{len(v)}f", *v) for _, v, _ in tensors]
    pos = len(header([0] * len(tensors)))
    offsets = []
    for data in datas:
        offsets.append(pos)
        pos += len(data)
    return header(offsets) + b"".join(datas)


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "model.gguf"
    path.write_bytes(
        _gguf_bytes(
            [
                ("token_embd.weight", [1.0, 2.0], [2]),
                ("blk.0.w", [3.0, 4.0, 5.0, 6.0], [2, 2]),
            ]
        )
    )
    return path


def test_parser_list_command():
    args = build_parser().parse_args(["list", "-f", "m.gguf"])
    assert args.command == "list"
    assert args.file == "m.gguf"


def test_parser_defaults():
    parser = build_parser()
    dump = parser.parse_args(["dump", "--file", "m.gguf", "--name", "t"])
    assert dump.format is DumpFormat.SHAPE
    profile = parser.parse_args(["profile", "-f", "m.gguf"])
    assert profile.device is Device.CPU
    assert profile.cache_mode is CacheMode.NONE
    assert profile.tokens == 32
    validate = parser.parse_args(["validate", "-f", "m.gguf"])
    assert validate.profile is ValidationProfile.LLAMA


def test_parser_metrics_are_comma_separated():
    args = build_parser().parse_args(["watch-perf", "-f", "m", "-i", "x", "--metrics", "time,kv"])
    assert args.metrics == [PerfMetric.TIME, PerfMetric.KV]


def test_parser_rejects_unknown_device():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["profile", "-f", "m", "--device", "tpu"])


def test_parser_truncate_layers_default():
    args = build_parser().parse_args(["truncate", "--file", "a", "--output", "b"])
    assert args.layers == 1
    assert args.verbose is False


def test_main_requires_command():
    with pytest.raises(SystemExit):
        main([])


def test_run_list_prints_shapes(model_file, capsys):
    run_list(model_file)
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Tensor count: 2"
    assert "blk.0.w => shape: [2, 2]" in lines
    assert "token_embd.weight => shape: [2]" in lines


def test_main_list(model_file, capsys):
    assert main(["list", "--file", str(model_file)]) == 0
    out = capsys.readouterr().out
    assert out.startswith("dispatch\n")
    assert "Tensor count: 2" in out


def test_main_list_bad_magic(tmp_path):
    path = tmp_path / "bad.gguf"
    path.write_bytes(b"\x00" * 32)
    with pytest.raises(GgufError):
        main(["list", "-f", str(path)])


def test_dispatch_diff_message(capsys):
    dispatch(build_parser().parse_args(["diff", "-a", "x", "-b", "y"]))
    assert "[TODO] Diff 'x' vs 'y' not implemented yet" in capsys.readouterr().out


def test_dispatch_decode_test_message(capsys):
    dispatch(build_parser().parse_args(["decode-test", "-f", "m.gguf", "-n", "t"]))
    assert "[TODO] DecodeTest not implemented yet for file: m.gguf" in capsys.readouterr().out


def test_main_truncate_writes_output(model_file, tmp_path):
    target = tmp_path / "small.gguf"
    assert main(["truncate", "--file", str(model_file), "--output", str(target)]) == 0
    data = target.read_bytes()
    assert data[:8] == struct.pack("<2f", 1.0, 2.0)


def test_main_truncate_ignores_missing_input(tmp_path):
    target = tmp_path / "out.gguf"
    assert main(["truncate", "--file", str(tmp_path / "absent"), "--output", str(target)]) == 0
    assert not target.exists()