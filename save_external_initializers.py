#!/usr/bin/env python3
"""Convenience entry point.

Equivalent to the ``onnx-extinit`` console script.
"""

from onnx_extinit_tool.api import *  # re-export for convenience
from onnx_extinit_tool.cli import main as _main


if __name__ == "__main__":
    raise SystemExit(_main())
