"""ONNX model helpers.

Includes:
- model load/save with consistent error types
- initializer list access and non-mutating rebuild
- physical byte resolution for inline and external tensors
- checker/shape-inference based model validation
"""

from __future__ import annotations

import copy
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import numpy as np
import onnx
from onnx import TensorProto, numpy_helper, shape_inference
from onnx.external_data_helper import ExternalDataInfo, uses_external_data

from .errors import ExternalDataIOError, GraphValidationError, ModelLoadError

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def dtype_nbytes(elem_type: int, default: int = 4) -> int:
    """Return bytes per element for ONNX TensorProto elem_type."""
    T = TensorProto
    mapping = {
        T.FLOAT: 4,
        T.FLOAT16: 2,
        T.BFLOAT16: 2,
        T.DOUBLE: 8,
        T.UINT8: 1,
        T.INT8: 1,
        T.UINT16: 2,
        T.INT16: 2,
        T.UINT32: 4,
        T.INT32: 4,
        T.UINT64: 8,
        T.INT64: 8,
        T.BOOL: 1,
        T.COMPLEX64: 8,
        T.COMPLEX128: 16,
    }
    return int(mapping.get(int(elem_type), default))


def numel_from_dims(dims: Iterable[int]) -> int:
    n = 1
    for d in dims:
        n *= int(d)
    return int(n)


def is_string_tensor(tensor: TensorProto) -> bool:
    return int(tensor.data_type) == int(TensorProto.STRING)


# ---------------------------- Model I/O ----------------------------

def load_model(path: PathLike, *, load_external_data: bool = False) -> onnx.ModelProto:
    """Load an ONNX model.

    External tensor payloads are left on disk by default so the caller can see
    where each initializer physically lives.
    """
    try:
        return onnx.load(os.fspath(path), load_external_data=load_external_data)
    except FileNotFoundError as e:
        raise ModelLoadError(f"Model not found: {path}") from e
    except Exception as e:
        raise ModelLoadError(f"Cannot load ONNX model {path}: {e}") from e


def save_model(model: onnx.ModelProto, path: PathLike) -> None:
    """Serialize ``model`` as-is (no external-data conversion)."""
    try:
        Path(path).write_bytes(model.SerializeToString())
    except OSError as e:
        raise ExternalDataIOError(f"Cannot write model {path}: {e}") from e


def model_base_dir(path: Optional[PathLike]) -> Optional[Path]:
    if path is None:
        return None
    return Path(path).resolve().parent


def resolve_model(model: Union[onnx.ModelProto, PathLike]) -> None:
    """Run the ONNX checker with full (strict) shape inference.

    Pass a path for models that use external data: shape inference needs the
    payload of shape-like initializers (e.g. Reshape targets), so the model is
    loaded with its external data first.
    """
    if not isinstance(model, onnx.ModelProto):
        model = load_model(model, load_external_data=True)
    try:
        onnx.checker.check_model(model, full_check=True)
    except (onnx.checker.ValidationError, shape_inference.InferenceError) as e:
        raise GraphValidationError(str(e)) from e


# ---------------------------- Initializers ----------------------------

def ordered_initializers(model: onnx.ModelProto) -> List[TensorProto]:
    return list(model.graph.initializer)


def initializer_map(model: onnx.ModelProto) -> Dict[str, TensorProto]:
    return {init.name: init for init in model.graph.initializer}


def with_initializers(model: onnx.ModelProto, tensors: Iterable[TensorProto]) -> onnx.ModelProto:
    """Return a copy of ``model`` whose initializer list is ``tensors`` (in order)."""
    out = copy.deepcopy(model)
    del out.graph.initializer[:]
    out.graph.initializer.extend(tensors)
    return out


def external_data_info(tensor: TensorProto) -> Optional[ExternalDataInfo]:
    """External-data entries of ``tensor``, or None for inline tensors."""
    if not uses_external_data(tensor):
        return None
    return ExternalDataInfo(tensor)


def _read_external(tensor: TensorProto, base_dir: Optional[PathLike]) -> bytes:
    info = ExternalDataInfo(tensor)
    if not info.location:
        raise ExternalDataIOError(f"Initializer '{tensor.name}' is external but has no 'location'")

    path = Path(info.location)
    if not path.is_absolute():
        path = Path(base_dir or ".") / path

    offset = int(info.offset or 0)
    try:
        with open(path, "rb") as f:
            f.seek(offset)
            if info.length is None:
                LOGGER.warning("Initializer '%s' has no external 'length'; reading to end of %s", tensor.name, path)
                data = f.read()
            else:
                data = f.read(int(info.length))
    except OSError as e:
        raise ExternalDataIOError(f"Cannot read external data for '{tensor.name}' from {path}: {e}") from e

    if info.length is not None and len(data) != int(info.length):
        raise ExternalDataIOError(
            f"External data for '{tensor.name}' truncated: wanted {info.length} bytes at offset {offset} "
            f"of {path}, got {len(data)}"
        )
    return data


def tensor_bytes(tensor: TensorProto, base_dir: Optional[PathLike] = None) -> bytes:
    """Physical payload of an initializer.

    External tensors are read from ``base_dir / location``; inline tensors use
    ``raw_data`` or, for typed fields (``float_data``...), their little-endian
    raw encoding. String tensors have no raw form and raise ``ValueError``.
    """
    if is_string_tensor(tensor):
        raise ValueError(f"String initializer '{tensor.name}' has no raw byte representation")
    if uses_external_data(tensor):
        return _read_external(tensor, base_dir)
    if tensor.HasField("raw_data"):
        return bytes(tensor.raw_data)

    arr = numpy_helper.to_array(tensor)
    if sys.byteorder == "big":
        arr = arr.byteswap()
    return np.ascontiguousarray(arr).tobytes()


def expected_nbytes(tensor: TensorProto) -> Optional[int]:
    """dims * element size, or None for types without a fixed element size."""
    if is_string_tensor(tensor) or int(tensor.data_type) in (TensorProto.UNDEFINED,):
        return None
    return numel_from_dims(tensor.dims) * dtype_nbytes(tensor.data_type)
