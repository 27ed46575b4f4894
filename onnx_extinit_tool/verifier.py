"""Round-trip verification of a rewritten model against its original."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

import onnx
from onnx import TensorProto

from .config import RewriteConfig
from .errors import (
    VIOLATION_TYPES,
    CountMismatchError,
    DataMismatchError,
    LocationMismatchError,
    OffsetMisalignedError,
    OrphanInitializerError,
    PrepackSizeViolationError,
    VerificationError,
)
from .onnx_utils import (
    external_data_info,
    initializer_map,
    is_string_tensor,
    load_model,
    model_base_dir,
    tensor_bytes,
)
from .prepack import CONSUMER_SEPARATOR

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


@dataclass(frozen=True)
class Violation:
    rule: str
    initializer: Optional[str]
    message: str

    def to_error(self) -> VerificationError:
        cls = VIOLATION_TYPES.get(self.rule, VerificationError)
        return cls(self.message, initializer=self.initializer)


@dataclass
class VerificationReport:
    """Outcome of :func:`collect_violations`. Any violation fails the whole check."""

    checked: int = 0
    violations: List[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def add(self, err: VerificationError) -> None:
        self.violations.append(Violation(err.rule, err.initializer, err.message))

    def raise_for_violations(self) -> None:
        if self.violations:
            raise self.violations[0].to_error()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "checked": int(self.checked),
            "violations": [
                {"rule": v.rule, "initializer": v.initializer, "message": v.message} for v in self.violations
            ],
        }


def _original_for(
    name: str, originals: Dict[str, TensorProto], applied_prepack: bool
) -> tuple:
    """Return ``(original_tensor, was_prepacked)`` for a rewritten initializer name."""
    if name in originals:
        return originals[name], False
    if applied_prepack and CONSUMER_SEPARATOR in name:
        base = name.split(CONSUMER_SEPARATOR, 1)[0]
        if base in originals:
            return originals[base], True
    raise OrphanInitializerError(f"'{name}' has no matching initializer in the original model", initializer=name)


def _check_entry(
    tensor: TensorProto,
    original: TensorProto,
    was_prepacked: bool,
    config: RewriteConfig,
    original_base_dir: Optional[PathLike],
    rewritten_base_dir: Optional[PathLike],
    report: VerificationReport,
) -> None:
    name = tensor.name
    info = external_data_info(tensor)

    if is_string_tensor(tensor) and is_string_tensor(original):
        if info is not None:
            report.add(LocationMismatchError(f"string tensor '{name}' must stay inline", initializer=name))
        elif list(tensor.string_data) != list(original.string_data):
            report.add(DataMismatchError(f"string tensor '{name}' differs from the original", initializer=name))
        return
    if is_string_tensor(tensor) or is_string_tensor(original):
        report.add(
            DataMismatchError(f"'{name}' and its original disagree on being a string tensor", initializer=name)
        )
        return

    new_bytes =tensor_bytes(tensor, rewritten_base_dir)
    old_bytes = tensor_bytes(original, original_base_dir)
    length = len(new_bytes)

    if config.is_external(length) != (info is not None):
        want = "external" if config.is_external(length) else "inline"
        have = "external" if info is not None else "inline"
        report.add(
            LocationMismatchError(
                f"'{name}' ({length} bytes, threshold {config.size_threshold}) is {have}, expected {want}",
                initializer=name,
            )
        )

    if was_prepacked:
        if length < len(old_bytes):
            report.add(
                PrepackSizeViolationError(
                    f"pre-packed '{name}' has {length} bytes, smaller than original {len(old_bytes)}",
                    initializer=name,
                )
            )
    elif length != len(old_bytes):
        report.add(
            DataMismatchError(f"'{name}' size changed: {len(old_bytes)} -> {length} bytes", initializer=name)
        )
    elif new_bytes != old_bytes:
        first = next(i for i, (a, b) in enumerate(zip(old_bytes, new_bytes)) if a != b)
        report.add(DataMismatchError(f"'{name}' content differs (first at byte {first})", initializer=name))

    alignment = config.alignment
    if info is not None and alignment.applies_to(length):
        offset = int(info.offset or 0)
        if offset % int(alignment.allocation_granularity) != 0:
            report.add(
                OffsetMisalignedError(
                    f"'{name}' offset {offset} is not a multiple of {alignment.allocation_granularity}",
                    initializer=name,
                )
            )


def collect_violations(
    original: onnx.ModelProto,
    rewritten: onnx.ModelProto,
    config: RewriteConfig,
    applied_prepack: bool,
    *,
    original_base_dir: Optional[PathLike] = None,
    rewritten_base_dir: Optional[PathLike] = None,
) -> VerificationReport:
    """Check every rewritten initializer and return all violations found.

    ``*_base_dir`` are the directories external-data locations are relative
    to (normally the directory of each model file).
    """
    config.validate()
    originals = initializer_map(original)
    report = VerificationReport()
    implied: Set[str] = set()

    for tensor in rewritten.graph.initializer:
        report.checked += 1
        try:
            orig, was_prepacked = _original_for(tensor.name, originals, applied_prepack)
        except OrphanInitializerError as e:
            report.add(e)
            continue
        implied.add(orig.name)
        _check_entry(tensor, orig, was_prepacked, config, original_base_dir, rewritten_base_dir, report)

    if len(originals) != len(implied):
        missing = sorted(set(originals) - implied)
        preview = ", ".join(missing[:5]) + (" ..." if len(missing) > 5 else "")
        report.add(
            CountMismatchError(
                f"original has {len(originals)} initializer(s), rewritten model covers {len(implied)}"
                + (f" (missing: {preview})" if missing else "")
            )
        )

    if report.ok:
        LOGGER.info("Verification passed (%d initializer(s))", report.checked)
    else:
        for v in report.violations:
            LOGGER.error("Verification [%s] %s", v.rule, v.message)
    return report


def verify(
    original: onnx.ModelProto,
    rewritten: onnx.ModelProto,
    config: RewriteConfig,
    applied_prepack: bool,
    *,
    original_base_dir: Optional[PathLike] = None,
    rewritten_base_dir: Optional[PathLike] = None,
) -> VerificationReport:
    """Like :func:`collect_violations`, but raise the first violation."""
    report = collect_violations(
        original,
        rewritten,
        config,
        applied_prepack,
        original_base_dir=original_base_dir,
        rewritten_base_dir=rewritten_base_dir,
    )
    report.raise_for_violations()
    return report


def verify_files(
    original_path: PathLike,
    rewritten_path: PathLike,
    config: RewriteConfig,
    applied_prepack: bool,
) -> VerificationReport:
    """Load both models (external payloads stay on disk) and collect violations."""
    return collect_violations(
        load_model(original_path),
        load_model(rewritten_path),
        config,
        applied_prepack,
        original_base_dir=model_base_dir(original_path),
        rewritten_base_dir=model_base_dir(rewritten_path),
    )
