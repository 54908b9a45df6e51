"""
taint_slicer.engine
===================

The Program Analysis Engine: class hierarchy, entrypoints, call graph and
points-to analysis.

The slicing pipeline only talks to the engine through the
:class:`ProgramAnalysisEngine` protocol, so another engine can be swapped
in without touching the slicer.  The shipped implementation,
:class:`PropagationEngine`, is a subset-based (Andersen-style) points-to
analysis solved by chaotic iteration together with on-the-fly call-graph
construction.

Algorithms
----------
``0cfa``
    Context-insensitive nodes; one abstract object per concrete type.
``vanilla-1cfa``
    One level of call-site context for every callee; one abstract object
    per allocation site.
``container-1cfa``
    Allocation-site objects; receiver-object contexts only for methods
    invoked on containers (``java/util/Collection`` and ``java/util/Map``
    subtypes), context-insensitive everywhere else.

Public API
----------
    AnalysisAlgorithm         - the three selectors, parsed from their names
    ProgramAnalysisEngine     - protocol the pipeline consumes
    PropagationEngine         - the shipped implementation
    CallGraphBuilder          - the solver behind PropagationEngine
    make_call_graph_builder   - builder factory for one algorithm
    make_main_entrypoints     - static ``main`` methods of application classes
"""

from __future__ import annotations

import enum
import logging
from typing import List, Optional, Protocol, Tuple

from .callgraph import (
    EVERYWHERE,
    CallerSiteContext,
    CallGraph,
    CallGraphNode,
    Context,
    ReceiverContext,
)
from .class_hierarchy import ClassHierarchy
from .config import AnalysisScope
from .errors import ConfigurationError
from .ir import (
    ArrayLoadInstruction,
    ArrayStoreInstruction,
    CheckCastInstruction,
    GetFieldInstruction,
    InvokeInstruction,
    NewInstruction,
    PhiInstruction,
    PutFieldInstruction,
    ReturnInstruction,
)
from .pointer_analysis import (
    AllocationSiteKey,
    ArrayContentsKey,
    ConcreteTypeKey,
    InstanceFieldKey,
    InstanceKey,
    LocalPointerKey,
    PointsToResult,
    ReturnValueKey,
    StaticFieldKey,
)
from .program_dump import MethodInfo
from .references import OBJECT, STRING_ARRAY, VOID, is_reference_type

logger = logging.getLogger(__name__)

CONTAINER_TYPES = ("Ljava/util/Collection", "Ljava/util/Map")
MAIN_SELECTOR = ("main", f"({STRING_ARRAY};){VOID}")


class AnalysisAlgorithm(enum.Enum):
    """Call-graph construction strategies selectable on the command line."""

    ZERO_CFA          = "0cfa"
    VANILLA_ONE_CFA   = "vanilla-1cfa"
    CONTAINER_ONE_CFA = "container-1cfa"

    @classmethod
    def from_name(cls, name: str) -> AnalysisAlgorithm:
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(
                f"unknown analysis; expected one of {', '.join(a.value for a in cls)}",
                name,
            ) from None

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Engine protocol
# ---------------------------------------------------------------------------

class ProgramAnalysisEngine(Protocol):
    """What the pipeline needs from a whole-program analysis engine."""

    def make_class_hierarchy(self, scope: AnalysisScope) -> ClassHierarchy:
        ...

    def make_entrypoints(self, cha: ClassHierarchy) -> List[MethodInfo]:
        ...

    def build_call_graph(
        self,
        entrypoints: List[MethodInfo],
        cha: ClassHierarchy,
    ) -> Tuple[CallGraph, PointsToResult]:
        ...


# ---------------------------------------------------------------------------
# Context selectors and heap models
# ---------------------------------------------------------------------------

class ContextSelector:
    """Chooses the context of a callee node at a call site."""

    uses_receiver = False

    def context(
        self,
        caller: CallGraphNode,
        inst: InvokeInstruction,
        callee: MethodInfo,
        receiver: Optional[InstanceKey],
    ) -> Context:
        return EVERYWHERE


class CallSiteContextSelector(ContextSelector):
    def context(self, caller, inst, callee, receiver):
        return CallerSiteContext(caller.signature, inst.call_site.pc)


class ContainerContextSelector(ContextSelector):
    """Receiver contexts for container methods, nothing elsewhere."""

    uses_receiver = True

    def __init__(self, cha: ClassHierarchy) -> None:
        self.cha = cha

    def context(self, caller, inst, callee, receiver):
        if receiver is not None and any(
            self.cha.is_subtype(receiver.type_name, t) for t in CONTAINER_TYPES
        ):
            return ReceiverContext(receiver)
        return EVERYWHERE


class HeapModel:
    def instance_key(self, node: CallGraphNode, index: int, type_name: str) -> InstanceKey:
        return ConcreteTypeKey(type_name)


class AllocationSiteHeapModel(HeapModel):
    def instance_key(self, node, index, type_name):
        return AllocationSiteKey(node.signature, index, type_name)


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------

class CallGraphBuilder:
    """Points-to analysis with on-the-fly call-graph construction.

    Every node of the call graph is re-visited until neither the
    points-to sets nor the call graph change.  Both only grow and the
    number of contexts and abstract objects is finite, so the iteration
    terminates.
    """

    def __init__(self, cha: ClassHierarchy, selector: ContextSelector, heap: HeapModel) -> None:
        self.cha = cha
        self.selector = selector
        self.heap = heap

    def build(self, entrypoints: List[MethodInfo]) -> Tuple[CallGraph, PointsToResult]:
        cg = CallGraph()
        pa = PointsToResult()
        for method in entrypoints:
            node = cg.find_or_create_node(method, EVERYWHERE)
            cg.add_entrypoint(node)
            self._seed_parameters(node, pa)

        iterations = 0
        changed = True
        while changed:
            iterations += 1
            changed = False
            for node in list(cg):
                if self._visit(node, cg, pa):
                    changed = True

        logger.info(
            "Call graph: %d nodes, %d edges after %d iterations",
            len(cg), len(cg.edges), iterations,
        )
        return cg, pa

    # ----- helpers ----------------------------------------------------------

    def _seed_parameters(self, node: CallGraphNode, pa: PointsToResult) -> None:
        offset = 0 if node.method.is_static else 1
        for k, type_name in enumerate(node.signature.parameter_types):
            if is_reference_type(type_name):
                pa.add(LocalPointerKey(node.id, k + 1 + offset), [ConcreteTypeKey(type_name)])
        if offset:
            pa.add(LocalPointerKey(node.id, 1), [ConcreteTypeKey(node.signature.declaring_type)])

    def _passes_cast(self, ik: InstanceKey, type_name: str) -> bool:
        if type_name == OBJECT or ik.type_name == type_name:
            return True
        if type_name not in self.cha:
            # Nothing known about the target type.
            return True
        return self.cha.is_subtype(ik.type_name, type_name)

    def _visit(self, node: CallGraphNode, cg: CallGraph, pa: PointsToResult) -> bool:
        method = node.method
        if not method.has_body:
            ret = method.signature.return_type
            if method.is_native and is_reference_type(ret):
                return pa.add(ReturnValueKey(node.id), [ConcreteTypeKey(ret)])
            return False

        def local(vn: int) -> LocalPointerKey:
            return LocalPointerKey(node.id, vn)

        changed = False
        for idx, inst in enumerate(node.ir.instructions):
            if isinstance(inst, NewInstruction):
                ik = self.heap.instance_key(node, idx, inst.type_name)
                changed |= pa.add(local(inst.result), [ik])
            elif isinstance(inst, PhiInstruction):
                for v in inst.values:
                    changed |= pa.add(local(inst.result), pa.points_to(local(v)))
            elif isinstance(inst, CheckCastInstruction):
                kept = [ik for ik in pa.points_to(local(inst.value))
                        if self._passes_cast(ik, inst.type_name)]
                changed |= pa.add(local(inst.result), kept)
            elif isinstance(inst, GetFieldInstruction):
                if inst.ref is None:
                    changed |= pa.add(local(inst.result), pa.points_to(StaticFieldKey(inst.field)))
                else:
                    for ik in pa.points_to(local(inst.ref)):
                        changed |= pa.add(
                            local(inst.result),
                            pa.points_to(InstanceFieldKey(ik, inst.field.name)),
                        )
            elif isinstance(inst, PutFieldInstruction):
                values = pa.points_to(local(inst.value))
                if inst.ref is None:
                    changed |= pa.add(StaticFieldKey(inst.field), values)
                else:
                    for ik in pa.points_to(local(inst.ref)):
                        changed |= pa.add(InstanceFieldKey(ik, inst.field.name), values)
            elif isinstance(inst, ArrayLoadInstruction):
                for ik in pa.points_to(local(inst.array)):
                    changed |= pa.add(local(inst.result), pa.points_to(ArrayContentsKey(ik)))
            elif isinstance(inst, ArrayStoreInstruction):
                values = pa.points_to(local(inst.value))
                for ik in pa.points_to(local(inst.array)):
                    changed |= pa.add(ArrayContentsKey(ik), values)
            elif isinstance(inst, ReturnInstruction):
                if inst.value is not None:
                    changed |= pa.add(ReturnValueKey(node.id), pa.points_to(local(inst.value)))
            elif isinstance(inst, InvokeInstruction):
                changed |= self._visit_invoke(node, inst, cg, pa)
        return changed

    def _targets(
        self, node: CallGraphNode, inst: InvokeInstruction, pa: PointsToResult,
    ) -> List[Tuple[MethodInfo, Optional[InstanceKey]]]:
        declared = inst.declared_target
        if inst.call_site.is_static:
            m = self.cha.resolve_method(declared)
            if m is None:
                logger.debug("Unresolved call target %s in %s", declared, node.signature)
                return []
            return [(m, None)]

        receivers = pa.points_to(LocalPointerKey(node.id, inst.receiver))
        if inst.call_site.kind.is_dispatch:
            targets = []
            for ik in receivers:
                m = self.cha.resolve_dispatch(ik.type_name, declared)
                if m is None:
                    logger.debug("No implementation of %s for receiver %s", declared, ik)
                    continue
                targets.append((m, ik))
            return targets

        m = self.cha.resolve_method(declared)
        if m is None:
            logger.debug("Unresolved call target %s in %s", declared, node.signature)
            return []
        if not self.selector.uses_receiver:
            return [(m, None)] if receivers else []
        return [(m, ik) for ik in receivers]

    def _visit_invoke(
        self, node: CallGraphNode, inst: InvokeInstruction, cg: CallGraph, pa: PointsToResult,
    ) -> bool:
        changed = False
        for method, receiver in self._targets(node, inst, pa):
            ctx = self.selector.context(node, inst, method, receiver)
            callee = cg.find_or_create_node(method, ctx)
            changed |= cg.add_edge(node, inst.call_site, callee)

            if method.has_body:
                if method.parameter_count != len(inst.arguments):
                    logger.debug("Arity mismatch calling %s from %s", method.signature, node.signature)
                else:
                    for pos, arg in enumerate(inst.arguments):
                        formal = LocalPointerKey(callee.id, pos + 1)
                        if pos == 0 and receiver is not None:
                            # Only the object dispatched on flows to ``this``.
                            changed |= pa.add(formal, [receiver])
                        else:
                            changed |= pa.add(formal, pa.points_to(LocalPointerKey(node.id, arg)))

            if inst.result is not None:
                changed |= pa.add(
                    LocalPointerKey(node.id, inst.result),
                    pa.points_to(ReturnValueKey(callee.id)),
                )
        return changed


def make_call_graph_builder(algorithm: AnalysisAlgorithm, cha: ClassHierarchy) -> CallGraphBuilder:
    """Return the solver configured for *algorithm*."""
    if algorithm is AnalysisAlgorithm.ZERO_CFA:
        return CallGraphBuilder(cha, ContextSelector(), HeapModel())
    if algorithm is AnalysisAlgorithm.VANILLA_ONE_CFA:
        return CallGraphBuilder(cha, CallSiteContextSelector(), AllocationSiteHeapModel())
    if algorithm is AnalysisAlgorithm.CONTAINER_ONE_CFA:
        return CallGraphBuilder(cha, ContainerContextSelector(cha), AllocationSiteHeapModel())
    raise ConfigurationError("unsupported analysis", str(algorithm))


def make_main_entrypoints(cha: ClassHierarchy) -> List[MethodInfo]:
    """Every ``static main(String[])`` declared by an application class."""
    entrypoints = []
    for cls in cha:
        if not cls.loader.is_application:
            continue
        m = cls.methods.get(MAIN_SELECTOR)
        if m is not None and m.is_static and m.has_body:
            entrypoints.append(m)
    return entrypoints


# ---------------------------------------------------------------------------
# PropagationEngine
# ---------------------------------------------------------------------------

class PropagationEngine:
    """The shipped :class:`ProgramAnalysisEngine`."""

    def __init__(self, algorithm: AnalysisAlgorithm = AnalysisAlgorithm.ZERO_CFA) -> None:
        self.algorithm = algorithm

    def make_class_hierarchy(self, scope: AnalysisScope) -> ClassHierarchy:
        return ClassHierarchy.make(scope)

    def make_entrypoints(self, cha: ClassHierarchy) -> List[MethodInfo]:
        entrypoints = make_main_entrypoints(cha)
        if not entrypoints:
            logger.warning("No application main methods found; the call graph will be empty")
        return entrypoints

    def build_call_graph(
        self,
        entrypoints: List[MethodInfo],
        cha: ClassHierarchy,
    ) -> Tuple[CallGraph, PointsToResult]:
        return make_call_graph_builder(self.algorithm, cha).build(entrypoints)

    def __repr__(self) -> str:
        return f"PropagationEngine({self.algorithm.value})"


__all__ = [
    "CONTAINER_TYPES",
    "AnalysisAlgorithm",
    "ProgramAnalysisEngine",
    "ContextSelector",
    "CallSiteContextSelector",
    "ContainerContextSelector",
    "HeapModel",
    "AllocationSiteHeapModel",
    "CallGraphBuilder",
    "make_call_graph_builder",
    "make_main_entrypoints",
    "PropagationEngine",
]
