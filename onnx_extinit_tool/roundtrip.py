"""Load -> save with external initializers -> reload -> compare."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

from .config import RewriteConfig
from .onnx_utils import load_model, model_base_dir, resolve_model
from .prepack import PrePackedTable
from .rewriter import save_with_external_initializers
from .verifier import VerificationReport, collect_violations

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def load_save_and_compare(
    input_model: PathLike,
    output_model: PathLike,
    external_data_name: str,
    config: RewriteConfig,
    prepacked: Optional[PrePackedTable] = None,
    *,
    keep_outputs: bool = False,
    raise_on_failure: bool = True,
) -> VerificationReport:
    """Full round trip for one model.

    Stale outputs are removed first. The original model is also validated
    (checker + shape inference) so integer initializers used for shapes must
    still resolve. Unless ``keep_outputs`` is set, the rewritten model and its
    external-data file are deleted afterwards.
    """
    out_path = Path(output_model)
    blob_path = out_path.parent / external_data_name
    out_path.unlink(missing_ok=True)
    blob_path.unlink(missing_ok=True)

    save_with_external_initializers(input_model, out_path, external_data_name, config, prepacked)

    try:
        resolve_model(input_model)
        report = collect_violations(
            load_model(input_model),
            load_model(out_path),
            config,
            applied_prepack=bool(config.apply_prepacked),
            original_base_dir=model_base_dir(input_model),
            rewritten_base_dir=model_base_dir(out_path),
        )
    finally:
        if not keep_outputs:
            out_path.unlink(missing_ok=True)
            blob_path.unlink(missing_ok=True)
            LOGGER.debug("Removed %s and %s", out_path, blob_path)

    if raise_on_failure:
        report.raise_for_violations()
    return report
