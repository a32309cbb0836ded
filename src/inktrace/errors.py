"""
Error types for inktrace.

Only DecodeError is meant to reach callers. The other conditions are raised
and recovered inside the pipeline and surface as diagnostics on the output.
"""


class InktraceError(Exception):
    """Base class for pipeline errors."""


class DecodeError(InktraceError, ValueError):
    """Source buffer is empty, malformed or has no visible pixels."""


class DegenerateInputError(InktraceError):
    """Too few usable pixels or distinct colors to cluster."""
