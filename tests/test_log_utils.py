from __future__ import annotations

import logging
from pathlib import Path

import pytest

from onnx_extinit_tool.log_utils import configure_logging


def test_configure_logging_appends_file_handler(tmp_path: Path) -> None:
    root = logging.getLogger()
    before = list(root.handlers)
    old_level = root.level
    log_path = tmp_path / "extinit.log"
    try:
        configure_logging("debug", log_path)
        logging.getLogger("onnx_extinit_tool.test").debug("placed %s", "W")
        for h in root.handlers:
            h.flush()
        assert "[DEBUG] placed W" in log_path.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            if h not in before:
                root.removeHandler(h)
                h.close()
        root.setLevel(old_level)


def test_unknown_level_is_rejected() -> None:
    with pytest.raises(ValueError):
        configure_logging("chatty")
