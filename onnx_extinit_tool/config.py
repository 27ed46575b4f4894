"""Rewrite configuration and its JSON representation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from .alignment import AlignmentInfo
from .errors import InvalidConfigError
from .units import parse_size

DEFAULT_SIZE_THRESHOLD = 1024

_TOP_LEVEL_KEYS = {"size_threshold", "apply_prepacked", "alignment"}
_ALIGNMENT_KEYS = {"align_offset", "align_threshold", "allocation_granularity"}


@dataclass(frozen=True)
class RewriteConfig:
    """Settings for one rewrite pass.

    Tensors with ``len(bytes) >= size_threshold`` are moved to the external
    file; smaller ones stay inline. ``apply_prepacked`` enables substitution
    from a :class:`~onnx_extinit_tool.prepack.PrePackedTable`.
    """

    size_threshold: int = DEFAULT_SIZE_THRESHOLD
    alignment: AlignmentInfo = field(default_factory=AlignmentInfo)
    apply_prepacked: bool = False

    def validate(self) -> None:
        if int(self.size_threshold) < 0:
            raise InvalidConfigError(f"size_threshold must be >= 0 (got {self.size_threshold})")
        self.alignment.validate()

    def is_external(self, payload_length: int) -> bool:
        return int(payload_length) >= int(self.size_threshold)


def _check_keys(data: Mapping[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise InvalidConfigError(f"Unknown {where} key(s): {unknown}")


def _as_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidConfigError(f"'{key}' must be true or false (got {value!r})")
    return value


def config_from_dict(data: Mapping[str, Any]) -> RewriteConfig:
    """Build a validated :class:`RewriteConfig` from a plain dict.

    Size-like values accept unit strings (``"1MiB"``).
    """
    if not isinstance(data, Mapping):
        raise InvalidConfigError("rewrite config root must be an object")
    _check_keys(data, _TOP_LEVEL_KEYS, "config")

    align_raw = data.get("alignment") or {}
    if not isinstance(align_raw, Mapping):
        raise InvalidConfigError("'alignment' must be an object")
    _check_keys(align_raw, _ALIGNMENT_KEYS, "alignment")

    defaults = AlignmentInfo()
    alignment = AlignmentInfo(
        align_offset=_as_bool(align_raw.get("align_offset", defaults.align_offset), "align_offset"),
        align_threshold=parse_size(align_raw.get("align_threshold", defaults.align_threshold)),
        allocation_granularity=parse_size(
            align_raw.get("allocation_granularity", defaults.allocation_granularity)
        ),
    )
    cfg = RewriteConfig(
        size_threshold=parse_size(data.get("size_threshold", DEFAULT_SIZE_THRESHOLD)),
        alignment=alignment,
        apply_prepacked=_as_bool(data.get("apply_prepacked", False), "apply_prepacked"),
    )
    cfg.validate()
    return cfg


def config_to_dict(cfg: RewriteConfig) -> Dict[str, Any]:
    return {
        "size_threshold": int(cfg.size_threshold),
        "apply_prepacked": bool(cfg.apply_prepacked),
        "alignment": {
            "align_offset": bool(cfg.alignment.align_offset),
            "align_threshold": int(cfg.alignment.align_threshold),
            "allocation_granularity": int(cfg.alignment.allocation_granularity),
        },
    }


def load_rewrite_config(path: Union[str, Path]) -> RewriteConfig:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidConfigError(f"{p}: invalid JSON ({e})") from e
    return config_from_dict(data)


def save_rewrite_config(cfg: RewriteConfig, path: Union[str, Path]) -> None:
    Path(path).write_text(json.dumps(config_to_dict(cfg), indent=2, sort_keys=True), encoding="utf-8")
