"""Pre-packed initializer substitutions.

A compute kernel may reformat a constant weight into its own layout
("pre-packing"). The table below maps ``(initializer name, consumer key)`` to
such a replacement. One initializer can have several consumers, each with its
own packed payload; in the rewritten model they are emitted as
``"<name>:<consumer>"``.
"""

from __future__ import annotations

import os
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterator, List, Tuple, Union

import numpy as np
from onnx import TensorProto, numpy_helper

from .errors import DuplicateNameError, InvalidConfigError
from .onnx_utils import tensor_bytes

CONSUMER_SEPARATOR = ":"


def emit_name(name: str, consumer_key: str) -> str:
    """Name of the rewritten initializer for one consumer."""
    return f"{name}{CONSUMER_SEPARATOR}{consumer_key}"


def split_emit_name(emitted: str) -> Tuple[str, str]:
    """Inverse of :func:`emit_name`: split at the *first* separator."""
    name, sep, consumer = emitted.partition(CONSUMER_SEPARATOR)
    if not sep:
        raise ValueError(f"'{emitted}' is not a composite '<name>:<consumer>' name")
    return name, consumer


@dataclass(frozen=True)
class PrePackedTensor:
    """Replacement payload plus the element type / dims it is stored with."""

    raw: bytes
    data_type: int = TensorProto.UINT8
    dims: Tuple[int, ...] = ()

    @classmethod
    def from_bytes(cls, data: bytes) -> "PrePackedTensor":
        data = bytes(data)
        return cls(raw=data, data_type=TensorProto.UINT8, dims=(len(data),))

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PrePackedTensor":
        return cls.from_tensor_proto(numpy_helper.from_array(np.ascontiguousarray(arr)))

    @classmethod
    def from_tensor_proto(cls, proto: TensorProto) -> "PrePackedTensor":
        return cls(raw=tensor_bytes(proto), data_type=int(proto.data_type), dims=tuple(int(d) for d in proto.dims))

    def __len__(self) -> int:
        return len(self.raw)


PayloadLike = Union[bytes, bytearray, memoryview, np.ndarray, TensorProto, PrePackedTensor]


def _as_prepacked(payload: PayloadLike) -> PrePackedTensor:
    if isinstance(payload, PrePackedTensor):
        return payload
    if isinstance(payload, TensorProto):
        return PrePackedTensor.from_tensor_proto(payload)
    if isinstance(payload, np.ndarray):
        return PrePackedTensor.from_array(payload)
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return PrePackedTensor.from_bytes(bytes(payload))
    raise TypeError(f"Unsupported pre-packed payload type: {type(payload).__name__}")


class PrePackedTable:
    """Lookup ``initializer name -> [(consumer_key, PrePackedTensor), ...]``.

    Consumers are returned in registration order, which fixes the order of the
    emitted initializers (and therefore the external-data layout).
    """

    def __init__(self) -> None:
        self._entries: Dict[str, "OrderedDict[str, PrePackedTensor]"] = {}

    def register(self, name: str, consumer_key: str, payload: PayloadLike) -> None:
        if not name:
            raise InvalidConfigError("pre-packed entry needs an initializer name")
        if not consumer_key:
            raise InvalidConfigError(f"pre-packed entry for '{name}' needs a consumer key")
        per_name = self._entries.setdefault(name, OrderedDict())
        if consumer_key in per_name:
            raise DuplicateNameError(f"Pre-packed entry '{emit_name(name, consumer_key)}' registered twice")
        per_name[consumer_key] = _as_prepacked(payload)

    def lookup(self, name: str) -> List[Tuple[str, PrePackedTensor]]:
        return list(self._entries.get(name, {}).items())

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return sum(len(v) for v in self._entries.values())

    def __iter__(self) -> Iterator[Tuple[str, str, PrePackedTensor]]:
        for name, per_name in self._entries.items():
            for consumer, packed in per_name.items():
                yield name, consumer, packed

    def names(self) -> List[str]:
        return list(self._entries)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Dict[str, PayloadLike]]) -> "PrePackedTable":
        """Build from ``{name: {consumer_key: payload}}``."""
        table = cls()
        for name, per_name in mapping.items():
            for consumer, payload in per_name.items():
                table.register(name, consumer, payload)
        return table


def load_prepacked_npz(path: Union[str, os.PathLike]) -> PrePackedTable:
    """Read a ``.npz`` whose keys are ``"<initializer>:<consumer>"``."""
    table = PrePackedTable()
    with np.load(os.fspath(path), allow_pickle=False) as npz:
        for key in npz.files:
            try:
                name, consumer = split_emit_name(key)
            except ValueError as e:
                raise InvalidConfigError(f"{path}: {e}") from e
            table.register(name, consumer, npz[key])
    return table
