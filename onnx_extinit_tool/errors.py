"""Exception hierarchy for rewriting and verification."""

from __future__ import annotations

from typing import Optional


class ExternalInitError(Exception):
    """Base class for all errors raised by this package."""


# ---------------------------- configuration ----------------------------

class InvalidConfigError(ExternalInitError, ValueError):
    """Thresholds or alignment settings are unusable."""


# ---------------------------- I/O ----------------------------

class ExternalDataIOError(ExternalInitError, OSError):
    """The external-data file could not be created, written or read."""


class ModelLoadError(ExternalInitError):
    """An ONNX model could not be loaded or parsed."""


class GraphValidationError(ExternalInitError):
    """ONNX checker / shape inference rejected a model."""


# ---------------------------- structural ----------------------------

class DuplicateNameError(ExternalInitError):
    """Two emitted initializers would share the same name."""


# ---------------------------- verification ----------------------------

class VerificationError(ExternalInitError):
    """A rewritten initializer violates one of the round-trip rules.

    ``rule`` is a short machine-readable id (e.g. ``"location"``) and
    ``initializer`` the offending tensor name, when there is one.
    """

    rule = "verification"

    def __init__(self, message: str, *, initializer: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.initializer = initializer


class OrphanInitializerError(VerificationError):
    rule = "orphan"


class LocationMismatchError(VerificationError):
    rule = "location"


class DataMismatchError(VerificationError):
    rule = "data"


class PrepackSizeViolationError(VerificationError):
    rule = "prepack_size"


class OffsetMisalignedError(VerificationError):
    rule = "alignment"


class CountMismatchError(VerificationError):
    rule = "count"


VIOLATION_TYPES = {
    cls.rule: cls
    for cls in (
        OrphanInitializerError,
        LocationMismatchError,
        DataMismatchError,
        PrepackSizeViolationError,
        OffsetMisalignedError,
        CountMismatchError,
    )
}
