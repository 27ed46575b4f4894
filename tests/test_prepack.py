from __future__ import annotations

from pathlib import Path

import pytest

np = pytest.importorskip("numpy")
onnx = pytest.importorskip("onnx")
from onnx import TensorProto, numpy_helper

from onnx_extinit_tool.errors import DuplicateNameError, InvalidConfigError
from onnx_extinit_tool.prepack import (
    PrePackedTable,
    PrePackedTensor,
    emit_name,
    load_prepacked_npz,
    split_emit_name,
)


def test_lookup_of_unknown_name_is_empty() -> None:
    assert PrePackedTable().lookup("W") == []


def test_consumers_keep_registration_order() -> None:
    table = PrePackedTable()
    table.register("W", "B", b"bb")
    table.register("W", "A", b"a")
    table.register("scales", "A", b"s")

    assert [c for c, _ in table.lookup("W")] == ["B", "A"]
    assert table.lookup("W")[0][1].raw == b"bb"
    assert len(table) == 3
    assert "scales" in table
    assert table.names() == ["W", "scales"]


def test_registering_the_same_consumer_twice_fails() -> None:
    table = PrePackedTable()
    table.register("W", "MatMul_0", b"x")
    with pytest.raises(DuplicateNameError):
        table.register("W", "MatMul_0", b"y")


def test_empty_consumer_key_is_rejected() -> None:
    with pytest.raises(InvalidConfigError):
        PrePackedTable().register("W", "", b"x")


def test_composite_names_split_at_first_separator() -> None:
    assert emit_name("W", "MatMul_0") == "W:MatMul_0"
    assert split_emit_name("W:MatMul_0") == ("W", "MatMul_0")
    assert split_emit_name("W:ns:kernel") == ("W", "ns:kernel")
    with pytest.raises(ValueError):
        split_emit_name("W")


def test_payload_kinds_are_normalized() -> None:
    arr = np.zeros((2, 3), dtype=np.float32)
    from_arr = PrePackedTensor.from_array(arr)
    assert from_arr.data_type == TensorProto.FLOAT
    assert from_arr.dims == (2, 3)
    assert len(from_arr) == 24

    from_bytes = PrePackedTensor.from_bytes(b"\x01\x02\x03")
    assert from_bytes.data_type == TensorProto.UINT8
    assert from_bytes.dims == (3,)

    proto = numpy_helper.from_array(np.arange(4, dtype=np.int64), "packed")
    table = PrePackedTable.from_mapping({"W": {"K": proto}})
    (consumer, packed), = table.lookup("W")
    assert consumer == "K"
    assert packed.data_type == TensorProto.INT64
    assert packed.raw == np.arange(4, dtype=np.int64).tobytes()


def test_load_prepacked_npz(tmp_path: Path) -> None:
    path = tmp_path / "packed.npz"
    np.savez(path, **{"MatMul.Weight:MatMul_0": np.ones(178, dtype=np.uint8), "scales:MatMul_0": np.ones(4, np.float32)})

    table = load_prepacked_npz(path)
    assert len(table) == 2
    (consumer, packed), = table.lookup("MatMul.Weight")
    assert consumer == "MatMul_0"
    assert len(packed) == 178


def test_load_prepacked_npz_rejects_plain_keys(tmp_path: Path) -> None:
    path = tmp_path / "packed.npz"
    np.savez(path, W=np.ones(4, dtype=np.uint8))
    with pytest.raises(InvalidConfigError):
        load_prepacked_npz(path)
