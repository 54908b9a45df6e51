# taint_slicer/errors.py
"""
Error types for the taint-source slicing pipeline.

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Error Hierarchy                                    │
├─────────────────────────────────────────────────────────────────────────────┤
│  SlicerError (base)                                                         │
│  ├── ConfigurationError        - Scope / exclusions / selector problems     │
│  │   └── ProgramDumpError      - Malformed program dump, descriptor, IR     │
│  ├── UnresolvedTypeError       - Base type unknown to the class hierarchy   │
│  ├── VoidReturnError           - Call site whose target returns void        │
│  ├── InternalConsistencyError  - Call graph and IR disagree (engine defect) │
│  │   ├── CallSiteNotFoundError                                              │
│  │   └── AmbiguousCallSiteError                                             │
│  └── EngineError               - Call-graph / points-to construction failed │
└─────────────────────────────────────────────────────────────────────────────┘

Every error carries a human-readable message and an optional *subject*:
the node, method, type or file the diagnostic is about.  The CLI prints
``str(error)``; the pipeline records ``kind`` and ``subject`` in its
stage-failure records.
"""

from __future__ import annotations

from typing import Optional


class SlicerError(Exception):
    """Base class for every error raised by :mod:`taint_slicer`."""

    #: Short machine-friendly name used in stage-failure records.
    kind: str = "slicer-error"

    def __init__(self, message: str, subject: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.subject = subject

    def __str__(self) -> str:
        if self.subject:
            return f"{self.message} [{self.subject}]"
        return self.message


# ─────────────────────────────────────────────────────────────────────────
#  Configuration
# ─────────────────────────────────────────────────────────────────────────

class ConfigurationError(SlicerError):
    """Unresolved scope, unreadable exclusions, unknown analysis selector.

    Always fatal: raised before any analysis begins.
    """

    kind = "configuration"


class ProgramDumpError(ConfigurationError):
    """A program dump, method descriptor or instruction stream is malformed."""

    kind = "program-dump"

    def __init__(
        self,
        message: str,
        subject: Optional[str] = None,
        *,
        filename: Optional[str] = None,
    ) -> None:
        super().__init__(message, subject)
        self.filename = filename

    def __str__(self) -> str:
        text = super().__str__()
        if self.filename:
            return f"{self.filename}: {text}"
        return text


# ─────────────────────────────────────────────────────────────────────────
#  Pipeline stage errors
# ─────────────────────────────────────────────────────────────────────────

class UnresolvedTypeError(SlicerError):
    """The type hierarchy cannot resolve a requested type."""

    kind = "unresolved-type"


class VoidReturnError(SlicerError):
    """A forward slice was requested from the return value of a void call.

    This pipeline only slices forward from return *values*; a void call
    has no criterion and is rejected explicitly.
    """

    kind = "void-return"


class InternalConsistencyError(SlicerError):
    """The call graph and the instruction-level view of a node disagree."""

    kind = "internal-consistency"


class CallSiteNotFoundError(InternalConsistencyError):
    """A caller edge exists but no matching call instruction was found."""

    kind = "call-site-not-found"


class AmbiguousCallSiteError(InternalConsistencyError):
    """A call site maps to zero or several instruction indices."""

    kind = "ambiguous-call-site"

    def __init__(
        self,
        message: str,
        subject: Optional[str] = None,
        *,
        count: int = 0,
    ) -> None:
        super().__init__(message, subject)
        self.count = count


class EngineError(SlicerError):
    """Call-graph or points-to construction failed inside the engine."""

    kind = "engine"


__all__ = [
    "SlicerError",
    "ConfigurationError",
    "ProgramDumpError",
    "UnresolvedTypeError",
    "VoidReturnError",
    "InternalConsistencyError",
    "CallSiteNotFoundError",
    "AmbiguousCallSiteError",
    "EngineError",
]
