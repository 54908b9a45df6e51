"""
taint_slicer — Forward Slicing from Input-Stream Taint Sources
==============================================================

Given a whole-program dump of an application, this package builds a call
graph and points-to result, finds every call that application code makes
to a byte-reading ``java.io.InputStream`` method, and computes a forward
interprocedural slice from each call's return value.

Core modules
------------
program_dump
    Reads the S-expression program dump (classes, methods, instructions).
class_hierarchy
    Type hierarchy queries: subtypes, inherited methods, dispatch.
engine
    Call-graph construction strategies (0-CFA, 1-CFA, container 1-CFA).
callgraph / pointer_analysis
    The call graph and points-to result the engine produces.
dependency_graph
    Procedure and system dependence graphs with summary edges.
slicer
    Two-phase forward slicer over the system dependence graph.
sources / call_sites / criteria
    Taint-source discovery, call-site lookup and criterion derivation.
pipeline
    Runs every stage and applies the failure policy.
main
    Command-line interface (``taint-slicer`` / ``python -m taint_slicer``).

Quick start
-----------
>>> from taint_slicer import SlicingPipeline, AnalysisAlgorithm
>>> result = SlicingPipeline(AnalysisAlgorithm.ZERO_CFA).run_dump("app.sexp")
>>> result.statement_count
12
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Internal registry: module_name -> names re-exported at package level
# ---------------------------------------------------------------------------

_MODULES = {
    "errors": [
        "SlicerError",
        "ConfigurationError",
        "ProgramDumpError",
        "UnresolvedTypeError",
        "VoidReturnError",
        "InternalConsistencyError",
        "CallSiteNotFoundError",
        "AmbiguousCallSiteError",
        "EngineError",
    ],
    "references": [
        "MethodSignature",
        "FieldReference",
        "ClassLoaderKind",
    ],
    "program_dump": [
        "Program",
        "load_program",
        "parse_program",
    ],
    "class_hierarchy": [
        "ClassHierarchy",
    ],
    "callgraph": [
        "CallGraph",
        "CallGraphNode",
    ],
    "pointer_analysis": [
        "PointsToResult",
    ],
    "engine": [
        "AnalysisAlgorithm",
        "PropagationEngine",
    ],
    "statements": [
        "Statement",
        "StatementKind",
    ],
    "dependency_graph": [
        "DataDependenceOptions",
        "ControlDependenceOptions",
        "SystemDependenceGraph",
    ],
    "slicer": [
        "ForwardSlicer",
        "compute_forward_slice",
    ],
    "sources": [
        "TaintSourcePattern",
        "find_implementors",
    ],
    "call_sites": [
        "find_application_callers",
        "find_call_sites",
    ],
    "criteria": [
        "derive_return_criterion",
    ],
    "config": [
        "AnalysisScope",
        "FailurePolicy",
        "SlicerConfig",
        "load_exclusions",
    ],
    "pipeline": [
        "PipelineResult",
        "SlicingPipeline",
        "StageFailure",
        "run_pipeline",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"taint_slicer: submodule '{module_rel_name}' failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(f"taint_slicer.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)


for _mod, _names in _MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of the submodules re-exported at package level."""
    return sorted(_MODULES)


__all__ += ["list_submodules", "__version__"]
