"""Offset alignment policy for tensors written to an external-data file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .errors import InvalidConfigError

DEFAULT_ALIGN_THRESHOLD = 1024 * 1024
DEFAULT_ALLOCATION_GRANULARITY = 64 * 1024


@dataclass(frozen=True)
class AlignmentInfo:
    """Where externalized tensors may start.

    When ``align_offset`` is set, every tensor of at least ``align_threshold``
    bytes starts at a multiple of ``allocation_granularity`` (so it can be
    memory-mapped directly). Smaller tensors are packed at the current cursor.
    """

    align_offset: bool = False
    align_threshold: int = DEFAULT_ALIGN_THRESHOLD
    allocation_granularity: int = DEFAULT_ALLOCATION_GRANULARITY

    def validate(self) -> None:
        if int(self.align_threshold) < 0:
            raise InvalidConfigError(f"align_threshold must be >= 0 (got {self.align_threshold})")
        if self.align_offset and int(self.allocation_granularity) <= 0:
            raise InvalidConfigError(
                f"allocation_granularity must be > 0 when align_offset is enabled (got {self.allocation_granularity})"
            )

    def applies_to(self, payload_length: int) -> bool:
        return bool(self.align_offset) and int(payload_length) >= int(self.align_threshold)


def compute_offset(current_offset: int, payload_length: int, info: AlignmentInfo) -> Tuple[int, int]:
    """Return ``(write_offset, padding)`` for a payload written at ``current_offset``."""
    info.validate()
    if current_offset < 0 or payload_length < 0:
        raise ValueError("offsets and lengths must be non-negative")

    if not info.applies_to(payload_length):
        return current_offset, 0

    g = int(info.allocation_granularity)
    write_offset = -(-current_offset // g) * g
    return write_offset, write_offset - current_offset
