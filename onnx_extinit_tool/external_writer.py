"""Sequential writer for the external-data (blob) file."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .alignment import AlignmentInfo, compute_offset
from .errors import ExternalDataIOError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExternalDataReference:
    """Placement of one tensor payload inside an external-data file."""

    location: str
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


class ExternalDataWriter:
    """Append tensor payloads to a single file, tracking the write cursor.

    Use as a context manager::

        with ExternalDataWriter(path) as w:
            ref = w.write(payload, alignment)

    The file is truncated on open. ``location`` is the string recorded in the
    model's ``external_data`` entries (defaults to the file name). If the
    ``with`` block raises, the file is closed and, with ``remove_on_error``,
    deleted.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        location: Optional[str] = None,
        remove_on_error: bool = True,
    ) -> None:
        self.path = Path(path)
        self.location = location if location is not None else self.path.name
        self.remove_on_error = remove_on_error
        self.cursor = 0
        self._fh: Optional[BinaryIO] = None
        self._lock = threading.Lock()

    # Context management --------------------------------------------------
    def open(self) -> "ExternalDataWriter":
        if self._fh is not None:
            raise RuntimeError(f"external-data writer for {self.path} is already open")
        try:
            self._fh = open(self.path, "wb")
        except OSError as e:
            raise ExternalDataIOError(f"Cannot create external-data file {self.path}: {e}") from e
        self.cursor = 0
        LOGGER.debug("Opened external-data file %s", self.path)
        return self

    def close(self) -> None:
        fh, self._fh = self._fh, None
        if fh is None:
            return
        try:
            fh.close()
        except OSError as e:
            raise ExternalDataIOError(f"Cannot close external-data file {self.path}: {e}") from e

    @property
    def closed(self) -> bool:
        return self._fh is None

    def __enter__(self) -> "ExternalDataWriter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
            LOGGER.debug("Closed external-data file %s (%d bytes)", self.path, self.cursor)
            return
        try:
            self.close()
        except ExternalDataIOError:
            LOGGER.debug("Ignoring close failure while unwinding", exc_info=True)
        if self.remove_on_error:
            try:
                os.remove(self.path)
                LOGGER.info("Removed partial external-data file %s", self.path)
            except FileNotFoundError:
                pass

    # Writing -------------------------------------------------------------
    def write(self, payload: bytes, alignment: AlignmentInfo) -> ExternalDataReference:
        """Write ``payload`` (after any alignment padding) and return its placement."""
        if not self._lock.acquire(blocking=False):
            raise RuntimeError("ExternalDataWriter must not be used concurrently")
        try:
            if self._fh is None:
                raise RuntimeError(f"external-data writer for {self.path} is not open")

            data = bytes(payload)
            write_offset, padding = compute_offset(self.cursor, len(data), alignment)
            try:
                if padding:
                    self._fh.write(b"\x00" * padding)
                self._fh.write(data)
            except OSError as e:
                raise ExternalDataIOError(f"Write to {self.path} failed at offset {write_offset}: {e}") from e

            self.cursor = write_offset + len(data)
            return ExternalDataReference(self.location, write_offset, len(data))
        finally:
            self._lock.release()
