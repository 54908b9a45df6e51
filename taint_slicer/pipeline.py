"""
taint_slicer/pipeline.py
════════════════════════

Pipeline Orchestrator: taint sources → application callers → call sites
→ criteria → forward slices.

    ┌─────────────────────────────────────────────────────────────────┐
    │                     SLICING PIPELINE                            │
    │                                                                 │
    │   1. Build the class hierarchy and entrypoints (engine)         │
    │   2. Build the call graph and points-to result (engine)         │
    │   3. Find concrete taint-source implementors                    │
    │   4. Collect application callers of each source                 │
    │   5. Find the call sites in each caller        ─┐               │
    │   6. Derive a return-value criterion per site   ├ per item      │
    │   7. Compute a forward slice per criterion     ─┘               │
    │   8. Concatenate the slices                                     │
    └─────────────────────────────────────────────────────────────────┘

Stages 1–4 are all-or-nothing: any error aborts the run.  Stages 5–7
produce a :class:`StageOutcome` per item and the :class:`FailurePolicy`
decides what a failed item does to the batch:

``ABORT``
    the failure's exception is re-raised; no partial result.
``ISOLATE``
    derivation and slicing failures are recorded in
    :attr:`PipelineResult.failures` and the batch continues.
    Internal-consistency errors still abort, because they mean the call
    graph and the IR disagree, not that one criterion is bad.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Generic,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .call_sites import find_application_callers, find_call_sites
from .callgraph import CallGraph, CallGraphNode
from .class_hierarchy import ClassHierarchy
from .config import AnalysisScope, FailurePolicy, SlicerConfig
from .criteria import derive_return_criterion
from .engine import AnalysisAlgorithm, ProgramAnalysisEngine, PropagationEngine
from .errors import EngineError, InternalConsistencyError, SlicerError
from .pointer_analysis import PointsToResult
from .references import MethodSignature
from .slicer import ForwardSlicer
from .sources import find_pattern_implementors
from .statements import Statement

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaintSourceSet = Mapping[MethodSignature, FrozenSet[CallGraphNode]]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — STAGE OUTCOMES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StageFailure:
    """
    Why one item of a per-item stage failed.

    Attributes:
        stage: Stage name (``call-sites``, ``criterion`` or ``slice``)
        kind: The error's :attr:`~taint_slicer.errors.SlicerError.kind`
        message: Human-readable message
        subject: Node, method or statement the failure is about
        error: The original exception
    """
    stage: str
    kind: str
    message: str
    subject: Optional[str]
    error: SlicerError = field(repr=False, compare=False)

    @classmethod
    def from_error(cls, stage: str, error: SlicerError) -> StageFailure:
        return cls(stage, error.kind, error.message, error.subject, error)

    def __str__(self) -> str:
        subject = f" [{self.subject}]" if self.subject else ""
        return f"{self.stage}: {self.kind}: {self.message}{subject}"


@dataclass(frozen=True)
class StageOutcome(Generic[T]):
    """Success with a value, or failure with a :class:`StageFailure`."""

    value: Optional[T] = None
    failure: Optional[StageFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> StageOutcome[T]:
        return cls(value=value)

    @classmethod
    def failed(cls, failure: StageFailure) -> StageOutcome[T]:
        return cls(failure=failure)


def run_stage(stage: str, fn: Callable[..., T], *args) -> StageOutcome[T]:
    """Call ``fn(*args)``, turning a :class:`SlicerError` into a failure."""
    try:
        return StageOutcome.success(fn(*args))
    except SlicerError as exc:
        return StageOutcome.failed(StageFailure.from_error(stage, exc))


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — RESULTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CallSiteRecord:
    """A call statement together with the taint source it calls."""
    source: MethodSignature
    statement: Statement


@dataclass
class SliceRecord:
    """
    The forward slice of one criterion.

    Attributes:
        source: The taint source whose call produced the criterion
        call_site: The NORMAL call statement
        criterion: The statement the slice was computed from
        statements: Every statement in the slice
    """
    source: MethodSignature
    call_site: Statement
    criterion: Statement
    statements: FrozenSet[Statement]

    def __len__(self) -> int:
        return len(self.statements)

    def ordered(self) -> List[Statement]:
        return sorted(self.statements, key=lambda s: s.sort_key)


@dataclass
class PipelineResult:
    """
    Everything one run produced.

    Attributes:
        algorithm: The call-graph construction strategy used
        sources: Discovered taint-source methods, in discovery order
        taint_sources: Read-only map from source to its application callers
        call_sites: Call statements found, one per (source, caller, site)
        criteria: Criteria derived from the call sites
        slices: One record per successfully sliced criterion
        failures: Items that failed under the ISOLATE policy
        elapsed_ms: Wall-clock time of the whole run
    """
    algorithm: AnalysisAlgorithm
    sources: List[MethodSignature] = field(default_factory=list)
    taint_sources: TaintSourceSet = field(default_factory=lambda: MappingProxyType({}))
    call_sites: List[CallSiteRecord] = field(default_factory=list)
    criteria: List[Statement] = field(default_factory=list)
    slices: List[SliceRecord] = field(default_factory=list)
    failures: List[StageFailure] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def statements(self) -> List[Statement]:
        """All slices concatenated; statements shared by slices repeat."""
        result: List[Statement] = []
        for record in self.slices:
            result.extend(record.ordered())
        return result

    @property
    def statement_count(self) -> int:
        return sum(len(record) for record in self.slices)

    def has_failures(self) -> bool:
        return len(self.failures) > 0


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — ORCHESTRATOR
# ═══════════════════════════════════════════════════════════════════════════

class SlicingPipeline:
    """
    Runs every stage of one slicing run, single-threaded and in order.

    Usage:
        pipeline = SlicingPipeline(AnalysisAlgorithm.ZERO_CFA)
        result = pipeline.run_dump("app.sexp")
        print(result.statement_count)
    """

    def __init__(
        self,
        algorithm: AnalysisAlgorithm,
        config: Optional[SlicerConfig] = None,
        engine: Optional[ProgramAnalysisEngine] = None,
    ) -> None:
        self.algorithm = algorithm
        self.config = config if config is not None else SlicerConfig()
        self.engine: ProgramAnalysisEngine = (
            engine if engine is not None else PropagationEngine(algorithm)
        )

    # ─────────────────────────────────────────────────────────────────
    #  Entry points
    # ─────────────────────────────────────────────────────────────────

    def run_dump(self, dump_path: Union[str, Path]) -> PipelineResult:
        """Load the exclusions and program dump, then :meth:`run`."""
        start = time.monotonic()
        scope = self.config.load_scope(dump_path)
        return self.run(scope, _start=start)

    def run(self, scope: AnalysisScope, *, _start: Optional[float] = None) -> PipelineResult:
        start = time.monotonic() if _start is None else _start
        result = PipelineResult(algorithm=self.algorithm)

        logger.info("Building hierarchy")
        cha = self.engine.make_class_hierarchy(scope)
        entrypoints = self.engine.make_entrypoints(cha)

        logger.info("Building call graph (%s)", self.algorithm)
        cg, pa = self._build_call_graph(entrypoints, cha)

        logger.info("Collecting taint source implementors")
        result.sources = self._collect_sources(cha)

        logger.info("Collecting callers of taint sources in application")
        result.taint_sources = self._collect_callers(cg, result.sources)

        logger.info("Collecting call sites for taint sources")
        for source, callers in result.taint_sources.items():
            for node in sorted(callers, key=lambda n: n.id):
                sites = self._check(run_stage("call-sites", find_call_sites, node, source), result)
                for stmt in sites or ():
                    result.call_sites.append(CallSiteRecord(source, stmt))

        logger.info("Deriving criteria for %d call sites", len(result.call_sites))
        derived: List[Tuple[CallSiteRecord, Statement]] = []
        for record in result.call_sites:
            outcome = run_stage("criterion", derive_return_criterion, record.statement)
            criterion = self._check(outcome, result)
            if criterion is not None:
                result.criteria.append(criterion)
                derived.append((record, criterion))

        slicer = ForwardSlicer(cg, pa, self.config.data_options, self.config.control_options)
        for record, criterion in derived:
            logger.info("Computing slice for %s", criterion)
            outcome = run_stage("slice", slicer.slice, criterion)
            statements = self._check(outcome, result)
            if statements is not None:
                result.slices.append(SliceRecord(
                    source=record.source,
                    call_site=record.statement,
                    criterion=criterion,
                    statements=frozenset(statements),
                ))

        result.elapsed_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "Collected %d statements in %d slices (%d failures)",
            result.statement_count, len(result.slices), len(result.failures),
        )
        return result

    # ─────────────────────────────────────────────────────────────────
    #  Stages
    # ─────────────────────────────────────────────────────────────────

    def _build_call_graph(self, entrypoints, cha: ClassHierarchy) -> Tuple[CallGraph, PointsToResult]:
        try:
            return self.engine.build_call_graph(entrypoints, cha)
        except SlicerError:
            raise
        except Exception as exc:
            logger.error("Call graph construction failed: %s", exc)
            raise EngineError(
                f"call graph construction failed: {exc}", str(self.algorithm)
            ) from exc

    def _collect_sources(self, cha: ClassHierarchy) -> List[MethodSignature]:
        seen: Dict[MethodSignature, None] = {}
        for pattern in self.config.sources:
            for sig in sorted(find_pattern_implementors(cha, pattern), key=str):
                seen[sig] = None
        return list(seen)

    def _collect_callers(self, cg: CallGraph, sources: List[MethodSignature]) -> TaintSourceSet:
        taint_sources: Dict[MethodSignature, FrozenSet[CallGraphNode]] = {}
        for source in sources:
            callers = find_application_callers(cg, source)
            if callers:
                logger.debug("%s: %d application callers", source, len(callers))
                taint_sources[source] = frozenset(callers)
        return MappingProxyType(taint_sources)

    def _check(self, outcome: StageOutcome[T], result: PipelineResult) -> Optional[T]:
        """Apply the failure policy to *outcome*; the value on success."""
        failure = outcome.failure
        if failure is None:
            return outcome.value
        if (
            self.config.failure_policy is FailurePolicy.ABORT
            or isinstance(failure.error, InternalConsistencyError)
        ):
            raise failure.error
        logger.warning("Skipping failed item: %s", failure)
        result.failures.append(failure)
        return None


def run_pipeline(
    dump_path: Union[str, Path],
    algorithm: Union[str, AnalysisAlgorithm],
    config: Optional[SlicerConfig] = None,
) -> PipelineResult:
    """Convenience wrapper: parse *algorithm* and run on *dump_path*."""
    if not isinstance(algorithm, AnalysisAlgorithm):
        algorithm = AnalysisAlgorithm.from_name(algorithm)
    return SlicingPipeline(algorithm, config).run_dump(dump_path)


__all__ = [
    "TaintSourceSet",
    "StageFailure",
    "StageOutcome",
    "run_stage",
    "CallSiteRecord",
    "SliceRecord",
    "PipelineResult",
    "SlicingPipeline",
    "run_pipeline",
]
