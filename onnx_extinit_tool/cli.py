"""Command line interface for the ONNX external-initializer tool."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import RewriteConfig, load_rewrite_config
from .errors import ExternalInitError
from .log_utils import configure_logging
from .prepack import PrePackedTable, load_prepacked_npz
from .rewriter import EXTERNAL, save_with_external_initializers
from .roundtrip import load_save_and_compare
from .units import format_bytes, parse_size
from .verifier import verify_files

LOGGER = logging.getLogger(__name__)


def _add_config_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--config", type=str, default=None, help="JSON rewrite config (flags below override it)")
    ap.add_argument("--threshold", type=parse_size, default=None,
                    help="Tensors of at least this many bytes go to the external file (e.g. 1024, 1KiB)")
    ap.add_argument("--align", action="store_true", default=None, help="Align large external tensors")
    ap.add_argument("--align-threshold", type=parse_size, default=None,
                    help="Only tensors of at least this size are aligned")
    ap.add_argument("--granularity", type=parse_size, default=None, help="Alignment unit (e.g. 64KiB)")


def _config_from_args(args: argparse.Namespace, *, apply_prepacked: bool) -> RewriteConfig:
    cfg = load_rewrite_config(args.config) if args.config else RewriteConfig()

    align = cfg.alignment
    if args.align:
        align = dataclasses.replace(align, align_offset=True)
    if args.align_threshold is not None:
        align = dataclasses.replace(align, align_threshold=int(args.align_threshold))
    if args.granularity is not None:
        align = dataclasses.replace(align, allocation_granularity=int(args.granularity))

    cfg = dataclasses.replace(cfg, alignment=align)
    if args.threshold is not None:
        cfg = dataclasses.replace(cfg, size_threshold=int(args.threshold))
    if apply_prepacked:
        cfg = dataclasses.replace(cfg, apply_prepacked=True)
    cfg.validate()
    return cfg


def _load_prepacked(path: Optional[str]) -> Optional[PrePackedTable]:
    if not path:
        return None
    table = load_prepacked_npz(path)
    LOGGER.info("Loaded %d pre-packed tensor(s) for %d initializer(s) from %s", len(table), len(table.names()), path)
    return table


def _default_external_name(out_model: str) -> str:
    return Path(out_model).name + ".data"


def _cmd_rewrite(args: argparse.Namespace) -> int:
    prepacked = _load_prepacked(args.prepacked)
    cfg = _config_from_args(args, apply_prepacked=prepacked is not None)
    ext_name = args.external_data or _default_external_name(args.out_model)

    result = save_with_external_initializers(args.model, args.out_model, ext_name, cfg, prepacked)

    for p in result.placements:
        where = f"external @{p.reference.offset}" if p.location == EXTERNAL and p.reference else "inline"
        print(f"{p.name:<48} {where:<20} {format_bytes(p.length)}")
    print(f"[ok] wrote {args.out_model} + {result.external_data_path} ({format_bytes(result.external_bytes)} external)")
    return 0


def _write_report(report_dict: dict, path: Optional[str]) -> None:
    if path:
        Path(path).write_text(json.dumps(report_dict, indent=2), encoding="utf-8")


def _cmd_verify(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args, apply_prepacked=bool(args.applied_prepack))
    report = verify_files(args.original, args.rewritten, cfg, applied_prepack=bool(args.applied_prepack))
    _write_report(report.to_dict(), args.report)

    if report.ok:
        print(f"[ok] {report.checked} initializer(s) verified")
        return 0
    for v in report.violations:
        print(f"[error] {v.rule}: {v.message}")
    return 1


def _cmd_roundtrip(args: argparse.Namespace) -> int:
    prepacked = _load_prepacked(args.prepacked)
    cfg = _config_from_args(args, apply_prepacked=prepacked is not None)
    ext_name = args.external_data or _default_external_name(args.out_model)

    report = load_save_and_compare(
        args.model,
        args.out_model,
        ext_name,
        cfg,
        prepacked,
        keep_outputs=bool(args.keep),
        raise_on_failure=False,
    )
    _write_report(report.to_dict(), args.report)
    if report.ok:
        print(f"[ok] round trip verified ({report.checked} initializer(s))")
        return 0
    for v in report.violations:
        print(f"[error] {v.rule}: {v.message}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        description="Move ONNX initializers to an external-data file and verify the result."
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--log-level", type=str, default="INFO")
    ap.add_argument("--log-file", type=str, default=None)
    sub = ap.add_subparsers(dest="command", required=True)

    p_rw = sub.add_parser("rewrite", help="Save a model with external initializers")
    p_rw.add_argument("model", help="Input ONNX model")
    p_rw.add_argument("out_model", help="Output ONNX model")
    p_rw.add_argument("--external-data", type=str, default=None,
                      help="External-data file name, relative to the output model (default: <out>.data)")
    p_rw.add_argument("--prepacked", type=str, default=None,
                      help="NPZ with pre-packed tensors keyed '<initializer>:<consumer>'")
    _add_config_args(p_rw)
    p_rw.set_defaults(func=_cmd_rewrite)

    p_v = sub.add_parser("verify", help="Compare a rewritten model with its original")
    p_v.add_argument("original", help="Original ONNX model")
    p_v.add_argument("rewritten", help="Rewritten ONNX model")
    p_v.add_argument("--applied-prepack", action="store_true",
                     help="Rewritten model contains pre-packed '<name>:<consumer>' initializers")
    p_v.add_argument("--report", type=str, default=None, help="Write a JSON verification report")
    _add_config_args(p_v)
    p_v.set_defaults(func=_cmd_verify)

    p_rt = sub.add_parser("roundtrip", help="Rewrite, reload and verify in one go")
    p_rt.add_argument("model", help="Input ONNX model")
    p_rt.add_argument("out_model", help="Temporary output ONNX model")
    p_rt.add_argument("--external-data", type=str, default=None)
    p_rt.add_argument("--prepacked", type=str, default=None)
    p_rt.add_argument("--keep", action="store_true", help="Keep the rewritten model and external-data file")
    p_rt.add_argument("--report", type=str, default=None)
    _add_config_args(p_rt)
    p_rt.set_defaults(func=_cmd_roundtrip)

    args = ap.parse_args(argv)
    configure_logging(args.log_level, Path(args.log_file) if args.log_file else None)

    try:
        return int(args.func(args))
    except (ExternalInitError, OSError) as e:
        LOGGER.error("%s", e)
        print(f"[error] {type(e).__name__}: {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
