"""Hypercerts CLI - manage impact claims on ATProto"""

__version__ = "0.4.0"
