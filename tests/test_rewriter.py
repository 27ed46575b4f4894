from __future__ import annotations

from pathlib import Path

import pytest

np = pytest.importorskip("numpy")
onnx = pytest.importorskip("onnx")
from onnx import TensorProto, helper

from onnx_extinit_tool.alignment import AlignmentInfo
from onnx_extinit_tool.config import RewriteConfig
from onnx_extinit_tool.errors import DuplicateNameError, InvalidConfigError
from onnx_extinit_tool.onnx_utils import external_data_info, initializer_map, tensor_bytes
from onnx_extinit_tool.prepack import PrePackedTable
from onnx_extinit_tool.rewriter import EXTERNAL, INLINE, plan_emission_units, rewrite
from onnx_extinit_tool.verifier import verify

from onnx_fixtures import make_blob_model, make_matmul_model, pattern_bytes

ALIGN_64 = AlignmentInfo(align_offset=True, align_threshold=0, allocation_granularity=64)


def _location(tensor) -> str:
    return EXTERNAL if tensor.data_location == TensorProto.EXTERNAL else INLINE


def test_only_large_tensor_goes_external(tmp_path: Path) -> None:
    model = make_blob_model({"small": 50, "large": 500})
    cfg = RewriteConfig(size_threshold=100)
    blob = tmp_path / "model.bin"

    result = rewrite(model, cfg, external_data_path=blob)
    inits = initializer_map(result.model)

    assert _location(inits["small"]) == INLINE
    assert inits["small"].raw_data == pattern_bytes(50, seed=0).tobytes()

    assert _location(inits["large"]) == EXTERNAL
    info = external_data_info(inits["large"])
    assert (info.location, info.offset, info.length) == ("model.bin", 0, 500)
    assert not inits["large"].HasField("raw_data")
    assert blob.read_bytes() == pattern_bytes(500, seed=1).tobytes()

    verify(model, result.model, cfg, False, rewritten_base_dir=tmp_path)


def test_threshold_is_inclusive_on_the_external_side(tmp_path: Path) -> None:
    model = make_blob_model({"at": 100, "below": 99})
    result = rewrite(model, RewriteConfig(size_threshold=100), external_data_path=tmp_path / "m.bin")
    inits = initializer_map(result.model)
    assert _location(inits["at"]) == EXTERNAL
    assert _location(inits["below"]) == INLINE


def test_input_model_is_not_modified(tmp_path: Path) -> None:
    model = make_blob_model({"large": 500})
    before = model.SerializeToString()
    rewrite(model, RewriteConfig(size_threshold=0), external_data_path=tmp_path / "m.bin")
    assert model.SerializeToString() == before


def test_rewrite_is_deterministic(tmp_path: Path) -> None:
    model = make_blob_model({"a": 10, "b": 300, "c": 70, "d": 1000})
    cfg = RewriteConfig(size_threshold=64, alignment=ALIGN_64)
    (tmp_path / "one").mkdir()
    (tmp_path / "two").mkdir()

    r1 = rewrite(model, cfg, external_data_path=tmp_path / "one" / "m.bin")
    r2 = rewrite(model, cfg, external_data_path=tmp_path / "two" / "m.bin")

    assert (tmp_path / "one" / "m.bin").read_bytes() == (tmp_path / "two" / "m.bin").read_bytes()
    assert r1.model.SerializeToString() == r2.model.SerializeToString()
    assert [p.reference for p in r1.placements] == [p.reference for p in r2.placements]


def test_aligned_offsets_after_unaligned_cursor(tmp_path: Path) -> None:
    model = make_blob_model({"first": 10, "second": 500})
    cfg = RewriteConfig(size_threshold=0, alignment=ALIGN_64)

    result = rewrite(model, cfg, external_data_path=tmp_path / "m.bin")
    offsets = {p.name: p.reference.offset for p in result.placements}

    assert offsets == {"first": 0, "second": 64}
    assert (tmp_path / "m.bin").stat().st_size == 564
    verify(model, result.model, cfg, False, rewritten_base_dir=tmp_path)


def test_prepacked_replacement_is_emitted_under_composite_name(tmp_path: Path) -> None:
    model = make_matmul_model()
    table = PrePackedTable()
    table.register("MatMul.Weight", "MatMul_0", np.full(178, 3, dtype=np.uint8))
    cfg = RewriteConfig(size_threshold=0, alignment=ALIGN_64, apply_prepacked=True)

    result = rewrite(model, cfg, table, external_data_path=tmp_path / "m.bin")
    inits = initializer_map(result.model)

    assert "MatMul.Weight" not in inits
    packed = inits["MatMul.Weight:MatMul_0"]
    assert _location(packed) == EXTERNAL
    assert external_data_info(packed).length == 178
    assert packed.data_type == TensorProto.UINT8
    assert list(packed.dims) == [178]
    # No entry for these: original bytes under the original name.
    assert {"bias", "shape"} <= set(inits)

    verify(model, result.model, cfg, True, rewritten_base_dir=tmp_path)


def test_two_consumers_yield_two_initializers(tmp_path: Path) -> None:
    model = make_blob_model({"W": 100})
    table = PrePackedTable.from_mapping({"W": {"A": b"a" * 120, "B": b"b" * 140}})
    cfg = RewriteConfig(size_threshold=0, apply_prepacked=True)

    result = rewrite(model, cfg, table, external_data_path=tmp_path / "m.bin")
    names = [t.name for t in result.model.graph.initializer]

    assert names == ["W:A", "W:B"]
    assert [p.reference.offset for p in result.placements] == [0, 120]
    verify(model, result.model, cfg, True, rewritten_base_dir=tmp_path)


def test_prepacked_table_is_ignored_unless_enabled(tmp_path: Path) -> None:
    model = make_blob_model({"W": 100})
    table = PrePackedTable.from_mapping({"W": {"A": b"a" * 120}})

    result = rewrite(model, RewriteConfig(size_threshold=0), table, external_data_path=tmp_path / "m.bin")
    assert [t.name for t in result.model.graph.initializer] == ["W"]


def test_duplicate_emitted_name_fails_before_writing(tmp_path: Path) -> None:
    model = make_blob_model({"W": 100, "W:A": 100})
    table = PrePackedTable.from_mapping({"W": {"A": b"a" * 120}})
    cfg = RewriteConfig(size_threshold=0, apply_prepacked=True)
    blob = tmp_path / "m.bin"

    with pytest.raises(DuplicateNameError):
        plan_emission_units(model, cfg, table)
    with pytest.raises(DuplicateNameError):
        rewrite(model, cfg, table, external_data_path=blob)
    assert not blob.exists()


def test_invalid_config_fails_before_writing(tmp_path: Path) -> None:
    blob = tmp_path / "m.bin"
    with pytest.raises(InvalidConfigError):
        rewrite(make_blob_model({"W": 10}), RewriteConfig(size_threshold=-1), external_data_path=blob)
    bad_align = RewriteConfig(alignment=AlignmentInfo(align_offset=True, allocation_granularity=0))
    with pytest.raises(InvalidConfigError):
        rewrite(make_blob_model({"W": 10}), bad_align, external_data_path=blob)
    assert not blob.exists()


def test_typed_field_initializers_are_stored_as_raw_bytes(tmp_path: Path) -> None:
    model = make_matmul_model()
    result = rewrite(model, RewriteConfig(size_threshold=1000), external_data_path=tmp_path / "m.bin")
    bias = initializer_map(result.model)["bias"]

    assert len(bias.float_data) == 0
    assert bias.raw_data == np.array([0.5, -1.0, 2.0, 0.0, 3.25], dtype=np.float32).tobytes()
    assert tensor_bytes(bias) == tensor_bytes(initializer_map(model)["bias"])


def test_string_initializers_stay_inline(tmp_path: Path) -> None:
    model = make_blob_model({"W": 100})
    labels = helper.make_tensor("labels", TensorProto.STRING, [2], [b"cat", b"dog"])
    model.graph.initializer.append(labels)
    cfg = RewriteConfig(size_threshold=0)

    result = rewrite(model, cfg, external_data_path=tmp_path / "m.bin")
    out = initializer_map(result.model)["labels"]

    assert _location(out) == INLINE
    assert list(out.string_data) == [b"cat", b"dog"]
    verify(model, result.model, cfg, False, rewritten_base_dir=tmp_path)


def test_placements_report_every_emitted_tensor(tmp_path: Path) -> None:
    model = make_blob_model({"small": 50, "large": 500})
    result = rewrite(model, RewriteConfig(size_threshold=100), external_data_path=tmp_path / "m.bin")

    assert [(p.name, p.location, p.length) for p in result.placements] == [
        ("small", INLINE, 50),
        ("large", EXTERNAL, 500),
    ]
    assert result.external_bytes == 500
    assert result.external_data_path == tmp_path / "m.bin"


def test_string_initializers_cannot_be_prepacked(tmp_path: Path) -> None:
    model = make_blob_model({"W": 100})
    model.graph.initializer.append(helper.make_tensor("labels", TensorProto.STRING, [2], [b"cat", b"dog"]))
    table = PrePackedTable.from_mapping({"labels": {"K": b"z" * 64}})
    cfg = RewriteConfig(size_threshold=0, apply_prepacked=True)

    with pytest.raises(InvalidConfigError):
        rewrite(model, cfg, table, external_data_path=tmp_path / "m.bin")
    assert not (tmp_path / "m.bin").exists()
