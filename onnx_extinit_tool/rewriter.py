"""Initializer rewriting: inline vs. external placement.

Every initializer of the input model becomes one or more *emission units*
(one per pre-packed consumer, or the original tensor itself). Small units stay
inline in the model, large ones are appended to a single external-data file.
The pass is sequential, so the same input always yields the same model and
byte-identical external-data file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import onnx
from onnx import TensorProto
from onnx.external_data_helper import set_external_data

from .config import RewriteConfig
from .errors import DuplicateNameError, InvalidConfigError
from .external_writer import ExternalDataReference, ExternalDataWriter
from .onnx_utils import (
    expected_nbytes,
    external_data_info,
    is_string_tensor,
    load_model,
    model_base_dir,
    ordered_initializers,
    save_model,
    tensor_bytes,
    with_initializers,
)
from .prepack import PrePackedTable, PrePackedTensor, emit_name
from .units import format_bytes

LOGGER = logging.getLogger(__name__)

INLINE = "inline"
EXTERNAL = "external"

_DATA_FIELDS = (
    "float_data",
    "int32_data",
    "string_data",
    "int64_data",
    "double_data",
    "uint64_data",
    "raw_data",
    "external_data",
    "data_location",
)


@dataclass(frozen=True)
class EmissionUnit:
    """One initializer of the output model, before placement."""

    source: TensorProto
    consumer_key: Optional[str] = None
    prepacked: Optional[PrePackedTensor] = None

    @property
    def original_name(self) -> str:
        return self.source.name

    @property
    def name(self) -> str:
        if self.consumer_key is None:
            return self.source.name
        return emit_name(self.source.name, self.consumer_key)


@dataclass(frozen=True)
class Placement:
    name: str
    original_name: str
    location: str
    length: int
    reference: Optional[ExternalDataReference] = None


@dataclass
class RewriteResult:
    model: onnx.ModelProto
    external_data_path: Path
    placements: List[Placement] = field(default_factory=list)

    @property
    def external_bytes(self) -> int:
        return sum(p.length for p in self.placements if p.location == EXTERNAL)


def plan_emission_units(
    model: onnx.ModelProto,
    config: RewriteConfig,
    prepacked: Optional[PrePackedTable] = None,
) -> List[EmissionUnit]:
    """Expand initializers into emission units and reject name collisions.

    Runs before any byte is written so a collision never leaves a partial file.
    """
    units: List[EmissionUnit] = []
    seen: dict = {}
    use_prepacked = bool(config.apply_prepacked) and prepacked is not None

    for init in ordered_initializers(model):
        entries = prepacked.lookup(init.name) if use_prepacked else []
        if entries and is_string_tensor(init):
            raise InvalidConfigError(f"String initializer '{init.name}' cannot be replaced by pre-packed data")
        if entries:
            new_units = [EmissionUnit(init, consumer, packed) for consumer, packed in entries]
        else:
            new_units = [EmissionUnit(init)]

        for unit in new_units:
            if unit.name in seen:
                raise DuplicateNameError(
                    f"Initializer name '{unit.name}' emitted twice "
                    f"(from '{seen[unit.name]}' and '{unit.original_name}')"
                )
            seen[unit.name] = unit.original_name
            units.append(unit)

    return units


def _strip_payload(src: TensorProto, name: str) -> TensorProto:
    out = TensorProto()
    out.CopyFrom(src)
    for f in _DATA_FIELDS:
        out.ClearField(f)
    out.name = name
    return out


def _build_tensor(unit: EmissionUnit, payload: bytes) -> TensorProto:
    t = _strip_payload(unit.source, unit.name)
    if unit.prepacked is not None:
        t.data_type = int(unit.prepacked.data_type)
        del t.dims[:]
        t.dims.extend(unit.prepacked.dims)
    t.raw_data = payload
    return t


def _unit_payload(unit: EmissionUnit, base_dir: Optional[Path]) -> bytes:
    if unit.prepacked is not None:
        return unit.prepacked.raw

    payload = tensor_bytes(unit.source, base_dir)
    want = expected_nbytes(unit.source)
    if want is not None and want != len(payload):
        LOGGER.warning(
            "Initializer '%s' holds %d bytes but dims/dtype imply %d", unit.name, len(payload), want
        )
    return payload


def _check_not_overwriting_source(model: onnx.ModelProto, blob_path: Path, base_dir: Optional[Path]) -> None:
    """Refuse an output file that is also the input's external data (``wb`` would truncate it)."""
    target = blob_path.resolve()
    for init in ordered_initializers(model):
        info = external_data_info(init)
        if info is None or not info.location:
            continue
        src = Path(info.location)
        if not src.is_absolute():
            src = Path(base_dir or ".") / src
        if src.resolve() == target:
            raise InvalidConfigError(
                f"Output external data {blob_path} is the input's external data for '{init.name}'; "
                "choose a different external-data name"
            )


def rewrite(
    model: onnx.ModelProto,
    config: RewriteConfig,
    prepacked: Optional[PrePackedTable] = None,
    *,
    external_data_path: Union[str, os.PathLike],
    base_dir: Optional[Union[str, os.PathLike]] = None,
    location: Optional[str] = None,
) -> RewriteResult:
    """Place every initializer of ``model`` inline or in ``external_data_path``.

    ``base_dir`` is where the *input* model's own external data (if any) lives.
    ``location`` is the string stored in the rewritten tensors' external-data
    entries; it defaults to the file name, i.e. the output model is expected to
    sit next to the external-data file.

    The input model is not modified. On any error the partially written
    external-data file is removed.
    """
    config.validate()
    units = plan_emission_units(model, config, prepacked)
    blob_path = Path(external_data_path)
    src_dir = Path(base_dir) if base_dir is not None else None
    _check_not_overwriting_source(model, blob_path, src_dir)

    tensors: List[TensorProto] = []
    placements: List[Placement] = []

    with ExternalDataWriter(blob_path, location=location) as writer:
        for unit in units:
            if is_string_tensor(unit.source) and unit.prepacked is None:
                t = TensorProto()
                t.CopyFrom(unit.source)
                tensors.append(t)
                placements.append(Placement(unit.name, unit.original_name, INLINE, 0))
                LOGGER.debug("%s: string tensor kept inline", unit.name)
                continue

            payload = _unit_payload(unit, src_dir)
            t = _build_tensor(unit, payload)

            if config.is_external(len(payload)):
                ref = writer.write(payload, config.alignment)
                set_external_data(t, ref.location, offset=ref.offset, length=ref.length)
                t.ClearField("raw_data")
                placements.append(Placement(unit.name, unit.original_name, EXTERNAL, ref.length, ref))
                LOGGER.debug("%s: external @%d (+%d bytes)", unit.name, ref.offset, ref.length)
            else:
                placements.append(Placement(unit.name, unit.original_name, INLINE, len(payload)))
                LOGGER.debug("%s: inline (%d bytes)", unit.name, len(payload))

            tensors.append(t)

        file_size = writer.cursor

    result = RewriteResult(with_initializers(model, tensors), blob_path, placements)
    n_ext = sum(1 for p in placements if p.location == EXTERNAL)
    LOGGER.info(
        "Rewrote %d initializer(s): %d external, %d inline; %s written to %s (%s incl. padding)",
        len(placements),
        n_ext,
        len(placements) - n_ext,
        format_bytes(result.external_bytes),
        blob_path,
        format_bytes(file_size),
    )
    return result


def save_with_external_initializers(
    model_path: Union[str, os.PathLike],
    output_model_path: Union[str, os.PathLike],
    external_data_name: str,
    config: RewriteConfig,
    prepacked: Optional[PrePackedTable] = None,
) -> RewriteResult:
    """Load ``model_path``, rewrite it and save it to ``output_model_path``.

    ``external_data_name`` is relative to the output model's directory and is
    recorded verbatim as the external-data ``location``.
    """
    model = load_model(model_path)
    out_path = Path(output_model_path)
    blob_path = out_path.parent / external_data_name

    result = rewrite(
        model,
        config,
        prepacked,
        external_data_path=blob_path,
        base_dir=model_base_dir(model_path),
        location=external_data_name,
    )
    try:
        save_model(result.model, out_path)
    except Exception:
        blob_path.unlink(missing_ok=True)
        raise
    LOGGER.info("Saved %s (external data: %s)", out_path, blob_path)
    return result
