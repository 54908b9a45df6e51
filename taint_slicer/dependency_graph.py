"""
taint_slicer/dependency_graph.py
════════════════════════════════

Procedure and system dependence graphs over a context-qualified call
graph.

    ┌─────────────────────────────────────────────────────────────────┐
    │  Dependency Kinds                                               │
    │    DATA      — def-use chain inside one node                    │
    │    CONTROL   — branch (or entry, or call) governs a statement   │
    │    HEAP      — store → load of a may-aliased heap location      │
    │    PARAM     — actual parameter → formal parameter              │
    │    CALL      — call statement → callee entry                    │
    │    RETURN    — callee return value → value at the call site     │
    │    SUMMARY   — actual parameter → value at the call site, when  │
    │                the callee's parameter reaches its return        │
    └─────────────────────────────────────────────────────────────────┘

Theory (Ferrante, Ottenstein & Warren 1987; Horwitz, Reps & Binkley 1990):

    Each call-graph node gets a Procedure Dependence Graph (PDG) whose
    statements are its instructions plus the pseudo-statements of
    :mod:`taint_slicer.statements`.  Data dependence follows SSA def-use
    chains, so it needs no reaching-definitions pass.  Control
    dependence is computed from the post-dominator tree of the
    instruction-level CFG.

    The System Dependence Graph (SDG) links the PDGs with PARAM, CALL and
    RETURN edges resolved per call-graph node, HEAP edges resolved through
    the points-to result, and SUMMARY edges that let a traversal step over
    a call without descending into it.

Edges are never materialised for the whole program: the SDG answers
``successors(statement)`` on demand and caches the answer.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import (
    Callable,
    Deque,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Optional,
    Set,
)

from .callgraph import CallGraph, CallGraphNode
from .ir import (
    IR,
    ArrayLoadInstruction,
    ArrayStoreInstruction,
    GetFieldInstruction,
    Instruction,
    InvokeInstruction,
    PhiInstruction,
    PutFieldInstruction,
    ReturnInstruction,
)
from .pointer_analysis import (
    ArrayContentsKey,
    InstanceFieldKey,
    PointerKey,
    PointsToResult,
    StaticFieldKey,
)
from .statements import Statement, StatementKind

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 0 — OPTIONS AND DEPENDENCY KINDS
# ═══════════════════════════════════════════════════════════════════════════

class DataDependenceOptions(Enum):
    FULL    = "full"      # locals + heap + interprocedural
    NO_HEAP = "no-heap"   # locals + interprocedural
    NONE    = "none"


class ControlDependenceOptions(Enum):
    FULL               = "full"                # intra + call → callee entry
    NO_INTERPROC_EDGES = "no-interproc-edges"
    NONE               = "none"


class DepKind(Enum):
    """
    Classification of dependence edges.

        DATA, CONTROL   — local to one call-graph node
        PARAM, CALL     — descend into a callee
        RETURN          — ascend to a caller
        HEAP            — between any two nodes sharing a heap location
        SUMMARY         — local shortcut over a call
    """
    DATA    = auto()
    CONTROL = auto()
    HEAP    = auto()
    PARAM   = auto()
    CALL    = auto()
    RETURN  = auto()
    SUMMARY = auto()

    @property
    def is_descending(self) -> bool:
        return self in (DepKind.PARAM, DepKind.CALL)

    @property
    def is_ascending(self) -> bool:
        return self is DepKind.RETURN


def enabled_kinds(
    data: DataDependenceOptions,
    control: ControlDependenceOptions,
) -> FrozenSet[DepKind]:
    """Edge kinds followed under *data* and *control*."""
    kinds: Set[DepKind] = set()
    if data is not DataDependenceOptions.NONE:
        kinds |= {DepKind.DATA, DepKind.PARAM, DepKind.RETURN, DepKind.SUMMARY}
    if data is DataDependenceOptions.FULL:
        kinds.add(DepKind.HEAP)
    if control is not ControlDependenceOptions.NONE:
        kinds.add(DepKind.CONTROL)
    if control is ControlDependenceOptions.FULL:
        kinds.add(DepKind.CALL)
    return frozenset(kinds)


@dataclass(frozen=True, slots=True)
class DepEdge:
    source: Statement
    target: Statement
    kind: DepKind

    def __repr__(self) -> str:
        return f"DepEdge({self.source} → {self.target} {self.kind.name})"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — CONTROL DEPENDENCE
#
#  B is control-dependent on branch A iff there is a CFG edge A → C such
#  that B post-dominates C but does not strictly post-dominate A.  For
#  every edge A → C we walk the post-dominator tree from C up to (not
#  including) ipdom(A); every node on the walk depends on A.
#
#  Post-dominators are computed with the iterative algorithm of Cooper,
#  Harvey & Kennedy (2001) on the reverse CFG rooted at the synthetic
#  exit.  Instructions that cannot reach the exit have no post-dominator.
# ═══════════════════════════════════════════════════════════════════════════

def _reverse_postorder(start: int, succs: Callable[[int], List[int]]) -> List[int]:
    """Reverse-postorder traversal from *start* (iterative DFS)."""
    visited: Set[int] = {start}
    post_order: List[int] = []
    stack = [(start, iter(succs(start)))]
    while stack:
        n, it = stack[-1]
        for s in it:
            if s not in visited:
                visited.add(s)
                stack.append((s, iter(succs(s))))
                break
        else:
            stack.pop()
            post_order.append(n)
    post_order.reverse()
    return post_order


def compute_post_dominators(ir: IR) -> Dict[int, int]:
    """Immediate post-dominator of every instruction that reaches the exit.

    The exit index maps to itself.
    """
    exit_id = ir.exit_index
    rpo = _reverse_postorder(exit_id, ir.predecessors)
    rpo_number: Dict[int, int] = {nid: i for i, nid in enumerate(rpo)}

    ipdom: Dict[int, int] = {exit_id: exit_id}

    def intersect(b1: int, b2: int) -> int:
        while b1 != b2:
            while rpo_number[b1] > rpo_number[b2]:
                b1 = ipdom[b1]
            while rpo_number[b2] > rpo_number[b1]:
                b2 = ipdom[b2]
        return b1

    changed = True
    while changed:
        changed = False
        for nid in rpo[1:]:
            # Predecessors in the reverse CFG are forward successors.
            processed = [s for s in ir.successors(nid) if s in ipdom]
            if not processed:
                continue
            new_ipdom = processed[0]
            for p in processed[1:]:
                new_ipdom = intersect(new_ipdom, p)
            if ipdom.get(nid) != new_ipdom:
                ipdom[nid] = new_ipdom
                changed = True
    return ipdom


def compute_control_dependence(ir: IR) -> Dict[int, Set[int]]:
    """Map each branch index to the instruction indices it controls."""
    ipdom = compute_post_dominators(ir)
    exit_id = ir.exit_index
    deps: Dict[int, Set[int]] = defaultdict(set)
    for a, inst in enumerate(ir.instructions):
        if not inst.is_branch:
            continue
        stop = ipdom.get(a)
        for b in ir.successors(a):
            runner: Optional[int] = b
            while runner is not None and runner != stop and runner != exit_id:
                deps[a].add(runner)
                runner = ipdom.get(runner)
    return deps


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — PROCEDURE DEPENDENCE GRAPH
# ═══════════════════════════════════════════════════════════════════════════

class ProcedureDependenceGraph:
    """Statements of one call-graph node and the DATA/CONTROL edges
    between them.

    Nodes without a body (abstract and native methods) only have their
    entry, formal-parameter and return pseudo-statements, and no edges.
    """

    def __init__(self, node: CallGraphNode) -> None:
        self.node = node
        method = node.method
        self.entry = Statement.method_entry(node)
        self.formals = [Statement.param_callee(node, k) for k in range(method.parameter_count)]
        self.return_callee: Optional[Statement] = None
        if not method.signature.returns_void:
            self.return_callee = Statement.return_callee(node)

        self.statements: List[Statement] = [self.entry, *self.formals]
        self._edges: Dict[Statement, List[DepEdge]] = defaultdict(list)
        self._edge_set: Set[DepEdge] = set()

        if method.has_body:
            self._build(node.ir)
        if self.return_callee is not None:
            self.statements.append(self.return_callee)

    # ----- statement naming -------------------------------------------------

    def statement_at(self, index: int) -> Statement:
        """The statement that stands for instruction *index* itself."""
        if isinstance(self.node.ir.instruction(index), PhiInstruction):
            return Statement.phi(self.node, index)
        return Statement.normal(self.node, index)

    def has_return_caller(self, index: int) -> bool:
        inst = self.node.ir.instruction(index)
        return isinstance(inst, InvokeInstruction) and not inst.declared_target.returns_void

    def def_statement(self, value_number: int) -> Optional[Statement]:
        """The statement defining *value_number*, if any."""
        ir = self.node.ir
        if ir.is_parameter(value_number):
            return self.formals[value_number - 1]
        idx = ir.def_index(value_number)
        if idx is None:
            return None
        if isinstance(ir.instruction(idx), InvokeInstruction):
            return Statement.return_caller(self.node, idx)
        return self.statement_at(idx)

    def use_statements(self, index: int, value_number: int) -> List[Statement]:
        """The statements through which instruction *index* reads the value."""
        inst = self.node.ir.instruction(index)
        if isinstance(inst, InvokeInstruction):
            return [
                Statement.param_caller(self.node, index, k)
                for k, arg in enumerate(inst.arguments) if arg == value_number
            ]
        return [self.statement_at(index)]

    # ----- construction -----------------------------------------------------

    def _add(self, source: Statement, target: Statement, kind: DepKind) -> None:
        edge = DepEdge(source, target, kind)
        if edge not in self._edge_set:
            self._edge_set.add(edge)
            self._edges[source].append(edge)

    def _build(self, ir: IR) -> None:
        node = self.node
        for i, inst in enumerate(ir.instructions):
            s = self.statement_at(i)
            self.statements.append(s)
            if isinstance(inst, InvokeInstruction):
                for k in range(len(inst.arguments)):
                    actual = Statement.param_caller(node, i, k)
                    self.statements.append(actual)
                    self._add(s, actual, DepKind.CONTROL)
                if self.has_return_caller(i):
                    rc = Statement.return_caller(node, i)
                    self.statements.append(rc)
                    self._add(s, rc, DepKind.CONTROL)

        for i, inst in enumerate(ir.instructions):
            for vn in dict.fromkeys(inst.uses):
                d = self.def_statement(vn)
                if d is None:
                    continue
                for u in self.use_statements(i, vn):
                    self._add(d, u, DepKind.DATA)
            if (
                isinstance(inst, ReturnInstruction)
                and inst.value is not None
                and self.return_callee is not None
            ):
                self._add(self.statement_at(i), self.return_callee, DepKind.DATA)

        controlled: Set[int] = set()
        for a, targets in sorted(compute_control_dependence(ir).items()):
            for b in sorted(targets):
                self._add(self.statement_at(a), self.statement_at(b), DepKind.CONTROL)
                controlled.add(b)
        for i in range(len(ir)):
            if i not in controlled:
                self._add(self.entry, self.statement_at(i), DepKind.CONTROL)

    # ----- queries ----------------------------------------------------------

    def local_edges(self, stmt: Statement) -> List[DepEdge]:
        return list(self._edges.get(stmt, ()))

    def edges(self) -> Iterator[DepEdge]:
        for out in self._edges.values():
            yield from out

    def __repr__(self) -> str:
        return (
            f"ProcedureDependenceGraph({self.node.signature}#{self.node.id}, "
            f"{len(self.statements)} statements, {len(self._edge_set)} edges)"
        )


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — SYSTEM DEPENDENCE GRAPH
# ═══════════════════════════════════════════════════════════════════════════

class SystemDependenceGraph:
    """Interprocedural dependence graph over every node of *cg*.

    Parameters
    ----------
    cg : CallGraph
    pa : PointsToResult
        Resolves heap locations of field and array accesses.
    data_options, control_options
        Which edge kinds :meth:`successors` reports.
    """

    def __init__(
        self,
        cg: CallGraph,
        pa: PointsToResult,
        data_options: DataDependenceOptions = DataDependenceOptions.FULL,
        control_options: ControlDependenceOptions = ControlDependenceOptions.FULL,
    ) -> None:
        self.cg = cg
        self.pa = pa
        self.data_options = data_options
        self.control_options = control_options
        self.kinds = enabled_kinds(data_options, control_options)

        self._pdgs: Dict[int, ProcedureDependenceGraph] = {}
        self._succ_cache: Dict[Statement, List[DepEdge]] = {}
        self._heap_readers: Optional[Dict[PointerKey, List[Statement]]] = None
        self._summaries: Optional[Dict[Statement, Set[Statement]]] = None

    # ----- per-node graphs --------------------------------------------------

    def pdg(self, node: CallGraphNode) -> ProcedureDependenceGraph:
        pdg = self._pdgs.get(node.id)
        if pdg is None:
            pdg = ProcedureDependenceGraph(node)
            self._pdgs[node.id] = pdg
        return pdg

    def statements(self) -> Iterator[Statement]:
        for node in self.cg:
            yield from self.pdg(node).statements

    # ----- heap -------------------------------------------------------------

    def _heap_locations(self, node: CallGraphNode, inst: Instruction) -> List[PointerKey]:
        if isinstance(inst, (GetFieldInstruction, PutFieldInstruction)):
            if inst.ref is None:
                return [StaticFieldKey(inst.field)]
            return [
                InstanceFieldKey(ik, inst.field.name)
                for ik in self.pa.points_to_local(node, inst.ref)
            ]
        if isinstance(inst, (ArrayLoadInstruction, ArrayStoreInstruction)):
            return [ArrayContentsKey(ik) for ik in self.pa.points_to_local(node, inst.array)]
        return []

    def _readers(self) -> Dict[PointerKey, List[Statement]]:
        if self._heap_readers is None:
            index: Dict[PointerKey, List[Statement]] = defaultdict(list)
            for node in self.cg:
                if not node.has_body:
                    continue
                for i, inst in enumerate(node.ir.instructions):
                    if isinstance(inst, (GetFieldInstruction, ArrayLoadInstruction)):
                        for loc in self._heap_locations(node, inst):
                            index[loc].append(Statement.normal(node, i))
            self._heap_readers = index
        return self._heap_readers

    def heap_successors(self, stmt: Statement) -> List[Statement]:
        """Loads that may read what the store at *stmt* writes."""
        if stmt.kind is not StatementKind.NORMAL:
            return []
        inst = stmt.instruction
        if not isinstance(inst, (PutFieldInstruction, ArrayStoreInstruction)):
            return []
        readers = self._readers()
        result: Dict[Statement, None] = {}
        for loc in self._heap_locations(stmt.node, inst):
            for r in readers.get(loc, ()):
                result[r] = None
        return list(result)

    # ----- interprocedural --------------------------------------------------

    def _call_targets(self, stmt: Statement) -> List[CallGraphNode]:
        inst = stmt.instruction
        if not isinstance(inst, InvokeInstruction):
            return []
        return stmt.node.possible_targets(inst.call_site)

    def _return_sites(self, callee: CallGraphNode) -> List[Statement]:
        sites = []
        for e in callee.in_edges:
            caller = e.caller
            for idx in sorted(caller.ir.call_instruction_indices(e.site)):
                if self.pdg(caller).has_return_caller(idx):
                    sites.append(Statement.return_caller(caller, idx))
        return sites

    # ----- summaries --------------------------------------------------------

    def _same_level_reaches(self, start: Statement, goal: Statement,
                            summaries: Dict[Statement, Set[Statement]]) -> bool:
        local_kinds = self.kinds & {DepKind.DATA, DepKind.CONTROL}
        use_heap = DepKind.HEAP in self.kinds
        pdg = self.pdg(start.node)
        seen: Set[Statement] = {start}
        worklist: Deque[Statement] = deque([start])
        while worklist:
            s = worklist.popleft()
            if s == goal:
                return True
            nexts = [e.target for e in pdg.local_edges(s) if e.kind in local_kinds]
            nexts.extend(summaries.get(s, ()))
            if use_heap:
                nexts.extend(r for r in self.heap_successors(s) if r.node is start.node)
            for t in nexts:
                if t not in seen:
                    seen.add(t)
                    worklist.append(t)
        return False

    def summary_edges(self) -> Dict[Statement, Set[Statement]]:
        """``PARAM_CALLER → NORMAL_RETURN_CALLER`` shortcuts, to a fixpoint."""
        if self._summaries is not None:
            return self._summaries
        summaries: Dict[Statement, Set[Statement]] = defaultdict(set)
        if DepKind.SUMMARY not in self.kinds:
            self._summaries = summaries
            return summaries

        rounds = 0
        changed = True
        while changed:
            rounds += 1
            changed = False
            passing: Dict[int, Set[int]] = {}
            for node in self.cg:
                pdg = self.pdg(node)
                if not node.has_body or pdg.return_callee is None:
                    continue
                passing[node.id] = {
                    k for k, formal in enumerate(pdg.formals)
                    if self._same_level_reaches(formal, pdg.return_callee, summaries)
                }
            for e in self.cg.edges:
                positions = passing.get(e.callee.id)
                if not positions:
                    continue
                caller = e.caller
                for idx in caller.ir.call_instruction_indices(e.site):
                    inst = caller.ir.instruction(idx)
                    if not self.pdg(caller).has_return_caller(idx):
                        continue
                    rc = Statement.return_caller(caller, idx)
                    for k in positions:
                        if k >= len(inst.arguments):
                            continue
                        actual = Statement.param_caller(caller, idx, k)
                        if rc not in summaries[actual]:
                            summaries[actual].add(rc)
                            changed = True

        logger.debug(
            "Summary edges: %d after %d rounds",
            sum(len(v) for v in summaries.values()), rounds,
        )
        self._summaries = summaries
        return summaries

    # ----- successors -------------------------------------------------------

    def successors(self, stmt: Statement) -> List[DepEdge]:
        """Every enabled dependence edge leaving *stmt*."""
        cached = self._succ_cache.get(stmt)
        if cached is not None:
            return cached

        kinds = self.kinds
        edges = [e for e in self.pdg(stmt.node).local_edges(stmt) if e.kind in kinds]
        kind = stmt.kind

        if DepKind.HEAP in kinds:
            edges.extend(DepEdge(stmt, r, DepKind.HEAP) for r in self.heap_successors(stmt))

        if kind is StatementKind.PARAM_CALLER:
            if DepKind.PARAM in kinds:
                for callee in self._call_targets(stmt):
                    if stmt.position < callee.method.parameter_count:
                        edges.append(DepEdge(
                            stmt, Statement.param_callee(callee, stmt.position), DepKind.PARAM))
            if DepKind.SUMMARY in kinds:
                for rc in sorted(self.summary_edges().get(stmt, ()), key=lambda s: s.sort_key):
                    edges.append(DepEdge(stmt, rc, DepKind.SUMMARY))

        elif kind is StatementKind.NORMAL and DepKind.CALL in kinds:
            if isinstance(stmt.instruction, InvokeInstruction):
                for callee in self._call_targets(stmt):
                    edges.append(DepEdge(stmt, Statement.method_entry(callee), DepKind.CALL))

        elif kind is StatementKind.NORMAL_RETURN_CALLEE and DepKind.RETURN in kinds:
            for rc in self._return_sites(stmt.node):
                edges.append(DepEdge(stmt, rc, DepKind.RETURN))

        self._succ_cache[stmt] = edges
        return edges

    def __repr__(self) -> str:
        return (
            f"SystemDependenceGraph({len(self.cg)} nodes, "
            f"data={self.data_options.value}, control={self.control_options.value})"
        )


__all__ = [
    "DataDependenceOptions",
    "ControlDependenceOptions",
    "DepKind",
    "DepEdge",
    "enabled_kinds",
    "compute_post_dominators",
    "compute_control_dependence",
    "ProcedureDependenceGraph",
    "SystemDependenceGraph",
]
