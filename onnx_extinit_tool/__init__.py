"""ONNX external-initializer tool.

Rewrites ONNX models so that large initializers live in a companion binary
file (with optional offset alignment and pre-packed substitutions) and
verifies the result round-trips byte for byte.
"""

__version__ = "0.3.0"
