# tests/test_dependency_graph.py
"""
Tests for post-dominators, control dependence and the procedure/system
dependence graphs.
"""

import pytest

from taint_slicer.callgraph import EVERYWHERE, CallGraph
from taint_slicer.dependency_graph import (
    ControlDependenceOptions,
    DataDependenceOptions,
    DepEdge,
    DepKind,
    ProcedureDependenceGraph,
    SystemDependenceGraph,
    compute_control_dependence,
    compute_post_dominators,
    enabled_kinds,
)
from taint_slicer.ir import (
    IR,
    ConditionalBranchInstruction,
    ConstInstruction,
    GotoInstruction,
    ReturnInstruction,
)
from taint_slicer.program_dump import parse_program
from taint_slicer.references import MethodSignature
from taint_slicer.statements import Statement, StatementKind
from tests.conftest import (
    APP_HEAP_FLOW,
    APP_TWO_ID_CALLS,
    FIS_READ,
    MAIN,
    UNBOX,
    UTIL_ID,
    build,
    dump,
    only_node,
    stream_program,
)

SIG = MethodSignature("Lt/T", "m", "()V")


def _ir(*instructions):
    return IR(SIG, instructions, 0)


# ── Post-dominators and control dependence ───────────────────────

class TestControlDependence:

    def test_diamond(self):
        #   0 const   1 if -> 4   2 const   3 goto 5   4 const   5 return
        ir = _ir(
            ConstInstruction(1, 0),
            ConditionalBranchInstruction("eq", 1, 1, 4),
            ConstInstruction(2, 1),
            GotoInstruction(5),
            ConstInstruction(3, 2),
            ReturnInstruction(),
        )
        ipdom = compute_post_dominators(ir)
        assert ipdom == {6: 6, 5: 6, 4: 5, 3: 5, 2: 3, 1: 5, 0: 1}
        assert compute_control_dependence(ir) == {1: {2, 3, 4}}

    def test_loop_header_controls_itself(self):
        #   0 const   1 if -> 4   2 const   3 goto 1   4 return
        ir = _ir(
            ConstInstruction(1, 0),
            ConditionalBranchInstruction("ge", 1, 1, 4),
            ConstInstruction(2, 1),
            GotoInstruction(1),
            ReturnInstruction(),
        )
        assert compute_control_dependence(ir) == {1: {1, 2, 3}}

    def test_straight_line_has_no_dependences(self):
        ir = _ir(ConstInstruction(1, 0), ReturnInstruction())
        assert compute_control_dependence(ir) == {}

    def test_infinite_loop_has_no_post_dominator(self):
        ir = _ir(GotoInstruction(0))
        assert compute_post_dominators(ir) == {1: 1}
        assert compute_control_dependence(ir) == {}


# ── Options ──────────────────────────────────────────────────────

class TestEnabledKinds:

    def test_full(self):
        assert enabled_kinds(DataDependenceOptions.FULL, ControlDependenceOptions.FULL) == set(DepKind)

    def test_no_heap(self):
        kinds = enabled_kinds(DataDependenceOptions.NO_HEAP, ControlDependenceOptions.NONE)
        assert kinds == {DepKind.DATA, DepKind.PARAM, DepKind.RETURN, DepKind.SUMMARY}

    def test_intraprocedural_control(self):
        kinds = enabled_kinds(DataDependenceOptions.NONE, ControlDependenceOptions.NO_INTERPROC_EDGES)
        assert kinds == {DepKind.CONTROL}

    def test_none(self):
        assert enabled_kinds(DataDependenceOptions.NONE, ControlDependenceOptions.NONE) == set()


# ── Procedure dependence graph ───────────────────────────────────

PHI_PROGRAM = dump('''
(class "Lapp/P" (loader application)
  (method "f" "(I)I" (static)
    (body
      (const 2 0)
      (if eq 1 2 4)
      (const 3 1)
      (goto 5)
      (const 4 2)
      (phi 5 3 4)
      (return 5))))
''')


@pytest.fixture
def phi_pdg():
    method = parse_program(PHI_PROGRAM).classes["Lapp/P"].declared_method("f", "(I)I")
    node = CallGraph().find_or_create_node(method, EVERYWHERE)
    return ProcedureDependenceGraph(node)


def _edges(pdg, kind):
    return {(e.source, e.target) for e in pdg.edges() if e.kind is kind}


class TestProcedureDependenceGraph:

    def test_statements(self, phi_pdg):
        node = phi_pdg.node
        assert phi_pdg.entry == Statement.method_entry(node)
        assert phi_pdg.formals == [Statement.param_callee(node, 0)]
        assert phi_pdg.return_callee == Statement.return_callee(node)
        assert Statement.phi(node, 5) in phi_pdg.statements
        assert phi_pdg.statement_at(5).kind is StatementKind.PHI

    def test_data_edges(self, phi_pdg):
        node = phi_pdg.node
        data = _edges(phi_pdg, DepKind.DATA)
        assert (Statement.param_callee(node, 0), Statement.normal(node, 1)) in data
        assert (Statement.normal(node, 2), Statement.phi(node, 5)) in data
        assert (Statement.normal(node, 4), Statement.phi(node, 5)) in data
        assert (Statement.phi(node, 5), Statement.normal(node, 6)) in data
        assert (Statement.normal(node, 6), Statement.return_callee(node)) in data

    def test_control_edges(self, phi_pdg):
        node = phi_pdg.node
        control = _edges(phi_pdg, DepKind.CONTROL)
        branch = Statement.normal(node, 1)
        for i in (2, 3, 4):
            assert (branch, Statement.normal(node, i)) in control
        entry = phi_pdg.entry
        assert {t for s, t in control if s == entry} == {
            Statement.normal(node, 0),
            Statement.normal(node, 1),
            Statement.phi(node, 5),
            Statement.normal(node, 6),
        }

    def test_call_statements(self, one_read_graph):
        cg, _, _ = one_read_graph
        main = only_node(cg, MAIN)
        pdg = ProcedureDependenceGraph(main)
        control = _edges(pdg, DepKind.CONTROL)
        data = _edges(pdg, DepKind.DATA)
        read = Statement.normal(main, 2)
        rc = Statement.return_caller(main, 2)
        assert (read, Statement.param_caller(main, 2, 0)) in control
        assert (read, rc) in control
        # The returned value is defined by the return-caller statement.
        assert pdg.def_statement(3) == rc
        assert (rc, Statement.normal(main, 4)) in data
        assert (rc, Statement.param_caller(main, 5, 0)) in data
        # Void calls get no return-caller statement.
        assert not pdg.has_return_caller(1)
        assert Statement.return_caller(main, 1) not in pdg.statements

    def test_node_without_body(self, one_read_graph):
        cg, _, _ = one_read_graph
        read = only_node(cg, FIS_READ)
        pdg = ProcedureDependenceGraph(read)
        assert pdg.statements == [
            Statement.method_entry(read),
            Statement.param_callee(read, 0),
            Statement.return_callee(read),
        ]
        assert list(pdg.edges()) == []


# ── System dependence graph ──────────────────────────────────────

class TestSystemDependenceGraph:

    def test_param_and_call_edges(self, one_read_graph):
        cg, pa, _ = one_read_graph
        sdg = SystemDependenceGraph(cg, pa)
        main = only_node(cg, MAIN)
        log = only_node(cg, MethodSignature("Lapp/Main", "log", "(I)V"))
        actual = Statement.param_caller(main, 5, 0)
        assert DepEdge(actual, Statement.param_callee(log, 0), DepKind.PARAM) in sdg.successors(actual)
        call = Statement.normal(main, 5)
        assert DepEdge(call, Statement.method_entry(log), DepKind.CALL) in sdg.successors(call)

    def test_return_edges(self):
        cg, pa, _ = build(stream_program(APP_TWO_ID_CALLS))
        sdg = SystemDependenceGraph(cg, pa)
        main = only_node(cg, MAIN)
        ident = only_node(cg, UTIL_ID)
        targets = {e.target for e in sdg.successors(Statement.return_callee(ident))
                   if e.kind is DepKind.RETURN}
        assert targets == {Statement.return_caller(main, 3), Statement.return_caller(main, 5)}

    def test_summary_edges(self):
        cg, pa, _ = build(stream_program(APP_TWO_ID_CALLS))
        sdg = SystemDependenceGraph(cg, pa)
        main = only_node(cg, MAIN)
        summaries = sdg.summary_edges()
        assert summaries[Statement.param_caller(main, 3, 0)] == {Statement.return_caller(main, 3)}
        assert summaries[Statement.param_caller(main, 5, 0)] == {Statement.return_caller(main, 5)}

    def test_no_summaries_without_data_dependence(self):
        cg, pa, _ = build(stream_program(APP_TWO_ID_CALLS))
        sdg = SystemDependenceGraph(cg, pa, DataDependenceOptions.NONE, ControlDependenceOptions.FULL)
        assert sum(len(v) for v in sdg.summary_edges().values()) == 0

    def test_heap_edges(self):
        cg, pa, _ = build(stream_program(APP_HEAP_FLOW))
        sdg = SystemDependenceGraph(cg, pa)
        main = only_node(cg, MAIN)
        unbox = only_node(cg, UNBOX)
        store = Statement.normal(main, 4)
        assert sdg.heap_successors(store) == [Statement.normal(unbox, 0)]
        assert DepEdge(store, Statement.normal(unbox, 0), DepKind.HEAP) in sdg.successors(store)

    def test_heap_edges_disabled(self):
        cg, pa, _ = build(stream_program(APP_HEAP_FLOW))
        sdg = SystemDependenceGraph(cg, pa, DataDependenceOptions.NO_HEAP)
        store = Statement.normal(only_node(cg, MAIN), 4)
        assert all(e.kind is not DepKind.HEAP for e in sdg.successors(store))

    def test_successors_are_cached(self, one_read_graph):
        cg, pa, _ = one_read_graph
        sdg = SystemDependenceGraph(cg, pa)
        stmt = Statement.return_caller(only_node(cg, MAIN), 2)
        assert sdg.successors(stmt) is sdg.successors(stmt)

    def test_statements_cover_every_node(self, one_read_graph):
        cg, pa, _ = one_read_graph
        sdg = SystemDependenceGraph(cg, pa)
        nodes = {s.node for s in sdg.statements()}
        assert nodes == set(cg)
