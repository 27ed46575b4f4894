"""Public API surface.

This module re-exports the most commonly used functions/classes so external
scripts can simply import a single module.
"""

from __future__ import annotations

from . import __version__

# Configuration
from .alignment import AlignmentInfo, compute_offset
from .config import RewriteConfig, config_from_dict, config_to_dict, load_rewrite_config, save_rewrite_config

# Errors
from .errors import (
    CountMismatchError,
    DataMismatchError,
    DuplicateNameError,
    ExternalDataIOError,
    ExternalInitError,
    GraphValidationError,
    InvalidConfigError,
    LocationMismatchError,
    ModelLoadError,
    OffsetMisalignedError,
    OrphanInitializerError,
    PrepackSizeViolationError,
    VerificationError,
)

# External data + pre-packing
from .external_writer import ExternalDataReference, ExternalDataWriter
from .prepack import PrePackedTable, PrePackedTensor, emit_name, load_prepacked_npz, split_emit_name

# ONNX helpers
from .onnx_utils import load_model, resolve_model, save_model, tensor_bytes, with_initializers

# Rewrite / verify
from .rewriter import RewriteResult, plan_emission_units, rewrite, save_with_external_initializers
from .roundtrip import load_save_and_compare
from .verifier import VerificationReport, collect_violations, verify, verify_files

__all__ = [
    "__version__",
    # config
    "AlignmentInfo",
    "compute_offset",
    "RewriteConfig",
    "config_from_dict",
    "config_to_dict",
    "load_rewrite_config",
    "save_rewrite_config",
    # errors
    "ExternalInitError",
    "InvalidConfigError",
    "ExternalDataIOError",
    "ModelLoadError",
    "GraphValidationError",
    "DuplicateNameError",
    "VerificationError",
    "OrphanInitializerError",
    "LocationMismatchError",
    "DataMismatchError",
    "PrepackSizeViolationError",
    "OffsetMisalignedError",
    "CountMismatchError",
    # external data / prepack
    "ExternalDataReference",
    "ExternalDataWriter",
    "PrePackedTable",
    "PrePackedTensor",
    "emit_name",
    "split_emit_name",
    "load_prepacked_npz",
    # onnx helpers
    "load_model",
    "save_model",
    "resolve_model",
    "tensor_bytes",
    "with_initializers",
    # rewrite / verify
    "RewriteResult",
    "plan_emission_units",
    "rewrite",
    "save_with_external_initializers",
    "VerificationReport",
    "collect_violations",
    "verify",
    "verify_files",
    "load_save_and_compare",
]
