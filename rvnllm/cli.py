"""Command-line interface: inspect and manipulate GGUF model files."""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from rvnllm.gguf import load_model
from rvnllm.truncate import run_truncate

VERSION = "0.0.1"

_EXAMPLES = """\
commands:
    info             View model metadata, headers, or tensor info
    dump             Dump tensor contents (supports multiple formats)
    forward          Execute full forward pass (WIP)
    forward-simple   Run attention-only forward pass for inspection
    decode-test      Decode a tensor and check for anomalies
    diff             Compare two models' tensor sets
    validate         Run structural integrity checks on GGUF files
    analyze          Analyze tensor structures and usage heuristics
    profile          Measure model performance (CPU/CUDA)
    watch            Inspect and audit model for suspicious patterns
    watch-perf       Run forward pass and collect performance metrics

examples:
    rvnllm info --file llama2.gguf --header
    rvnllm list --file llama2.gguf
    rvnllm decode-test --file llama2.gguf --name blk.0.attn_q.weight
    rvnllm forward-simple --file llama2.gguf --q ... --k ... --v ...
"""


class _Choice(str, Enum):
    def __str__(self) -> str:
        return self.value


class Device(_Choice):
    CPU = "cpu"
    CUDA = "cuda"


class DumpFormat(_Choice):
    SHAPE = "shape"
    F32 = "f32"
    RAW = "raw"
    JSON = "json"


class OutputFormat(_Choice):
    TEXT = "text"
    JSON = "json"
    LOGITS = "logits"


class CacheMode(_Choice):
    NONE = "none"
    KV = "kv"
    FULL = "full"


class ValidationProfile(_Choice):
    LLAMA = "llama"
    STRICT = "strict"
    PARANOID = "paranoid"


class WatchProfile(_Choice):
    LLAMA = "llama"
    STRICT = "strict"
    PARANOID = "paranoid"


class PerfMetric(_Choice):
    TIME = "time"
    CACHE = "cache"
    KV = "kv"
    ATTENTION = "attention"
    LOGITS = "logits"
    HEATMAP = "heatmap"
    MEMORY = "memory"
    ENTROPY = "entropy"


class PerfPreset(_Choice):
    MINIMAL = "minimal"
    DEEP = "deep"
    DEBUG = "debug"


def _enum_option(parser, flag, enum, default=None):
    names = ", ".join(member.value for member in enum)
    parser.add_argument(flag, type=enum, choices=list(enum), default=default, metavar=f"{{{names}}}")


def _metric_list(text: str) -> list[PerfMetric]:
    try:
        return [PerfMetric(part) for part in text.split(",")]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _file(parser, short="-f"):
    parser.add_argument(short, "--file", required=True)


def _output(parser):
    parser.add_argument("--output", type=Path)


def build_parser() -> argparse.ArgumentParser:
    """The argument parser for every subcommand."""
    parser = argparse.ArgumentParser(
        prog="rvnllm",
        description="High-performance GGUF loader. Load, inspect, validate, and run models fast.",
        epilog=_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {VERSION}")
    sub = parser.add_subparsers(dest="command", required=True, metavar="<COMMAND>")

    p = sub.add_parser("info", help="View model metadata, headers, or tensor info")
    _file(p)
    p.add_argument("--header", action="store_true")
    p.add_argument("--metadata", action="store_true")
    p.add_argument("--tensor")
    _output(p)

    p = sub.add_parser("list", help="List all tensor names and shapes")
    _file(p)
    _output(p)

    p = sub.add_parser("dump", help="Dump tensor contents (supports multiple formats)")
    _file(p)
    p.add_argument("-n", "--name", required=True)
    _enum_option(p, "--format", DumpFormat, DumpFormat.SHAPE)
    _output(p)

    p = sub.add_parser(
        "forward-simple",
        help="Run attention-only forward pass for inspection (only f32 for now)",
    )
    _file(p)
    p.add_argument("--q", required=True)
    p.add_argument("--k", required=True)
    p.add_argument("--v", required=True)

    p = sub.add_parser("forward", help="Execute full forward pass")
    _file(p)
    p.add_argument("-i", "--input", required=True)
    _enum_option(p, "--device", Device, Device.CPU)
    _enum_option(p, "--cache-mode", CacheMode, CacheMode.NONE)
    p.add_argument("--quantize", action="store_true")
    p.add_argument("--stream", action="store_true")
    p.add_argument("--personality")
    _enum_option(p, "--output-format", OutputFormat, OutputFormat.TEXT)
    p.add_argument("--dump-activations", action="store_true")
    _output(p)

    p = sub.add_parser("diff", help="Compare two models' tensor sets")
    p.add_argument("-a", "--file-a", dest="file_a", required=True)
    p.add_argument("-b", "--file-b", dest="file_b", required=True)
    _output(p)

    p = sub.add_parser("decode-test", help="Decode a tensor and check for anomalies")
    _file(p)
    p.add_argument("-n", "--name", required=True)
    p.add_argument("--verbose", action="store_true")
    p.add_argument("--json", action="store_true")
    p.add_argument("--fail-on-anomaly", action="store_true")

    p = sub.add_parser("debug", help="Dump the full parsed structure: header, metadata and tensors")
    _file(p)
    p.add_argument("--threads", type=int)
    p.add_argument("--output")
    p.add_argument("--compat", action="store_true")

    p = sub.add_parser("truncate", help="Truncate GGUF file for development/testing purposes.")
    p.add_argument("--file", type=Path, required=True)
    p.add_argument("--output", type=Path, required=True)
    p.add_argument("--layers", type=int, default=1)
    p.add_argument("--verbose", action="store_true")

    p = sub.add_parser("analyze", help="Analyze tensor structures and usage heuristics.")
    _file(p)
    _output(p)

    p = sub.add_parser("profile", help="Measure model performance (CPU/CUDA)")
    _file(p)
    _enum_option(p, "--device", Device, Device.CPU)
    p.add_argument("--tokens", type=int, default=32)
    _enum_option(p, "--cache-mode", CacheMode, CacheMode.NONE)
    _output(p)

    p = sub.add_parser("validate", help="Run structural integrity checks on GGUF files")
    _file(p)
    _enum_option(p, "--profile", ValidationProfile, ValidationProfile.LLAMA)
    _output(p)

    p = sub.add_parser("watch", help="Inspect and audit model for suspicious patterns")
    _file(p)
    _enum_option(p, "--profile", WatchProfile, WatchProfile.LLAMA)
    for flag in ("--dummy-forward", "--check-tokenizer", "--check-entropy", "--scan-triggers", "--verbose"):
        p.add_argument(flag, action="store_true")
    _output(p)

    p = sub.add_parser("watch-perf", help="Run forward pass and collect performance metrics")
    _file(p)
    p.add_argument("-i", "--input", required=True)
    p.add_argument("--metrics", type=_metric_list, action="extend", default=[])
    _enum_option(p, "--preset", PerfPreset)
    _enum_option(p, "--device", Device, Device.CPU)
    _output(p)

    return parser


def run_list(path: str | os.PathLike[str]) -> None:
    """Print the tensor count and each tensor's name and shape."""
    with load_model(path) as gguf:
        print(f"Tensor count: {len(gguf.tensors)}")
        for name, tensor in gguf.items():
            print(f"{name} => shape: {list(tensor.shape)}")


def dispatch(args: argparse.Namespace) -> None:
    """Run the subcommand selected in parsed ``args``."""
    print("dispatch")
    match args.command:
        case "list":
            run_list(args.file)
        case "forward-simple":
            print("run forward simple")
        case "info":
            print("[TODO] Info not implemented yet")
        case "dump":
            print("run dump")
        case "analyze":
            print("run analyze")
        case "validate":
            print("run validate")
        case "forward":
            print("[TODO] run forward not implemented yet")
        case "diff":
            print(f"[TODO] Diff '{args.file_a}' vs '{args.file_b}' not implemented yet")
        case "profile":
            print(f"[TODO] Profile not implemented yet for file: {args.file}")
        case "watch":
            print("[TODO] Watch not yet implemented")
        case "watch-perf":
            print(f"[TODO] WatchPerf not implemented yet for file: {args.file}")
        case "debug":
            print(f"[TODO] Debug not implemented yet for file: {args.file}")
        case "truncate":
            # A failed truncation is ignored, as the command has always done.
            try:
                run_truncate(args.file, args.output, args.layers, args.verbose)
            except (OSError, ValueError) as exc:
                logging.getLogger(__name__).debug("truncate failed: %s", exc)
        case "decode-test":
            print(f"[TODO] DecodeTest not implemented yet for file: {args.file}")
        case other:
            raise ValueError(f"unknown command {other}")


def main(argv: Sequence[str] | None = None) -> int:
    """Parse the command line and run the chosen command."""
    logging.basicConfig(level=logging.WARNING)
    args = build_parser().parse_args(argv)
    dispatch(args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())