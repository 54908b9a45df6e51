"""
taint_slicer.callgraph
======================

The whole-program call graph produced by the analysis engine.

The call graph is a directed graph where:

- **Nodes** are context-qualified method activations: one
  :class:`CallGraphNode` per ``(method, context)`` pair the engine
  discovered.  A context-insensitive engine creates one node per method;
  context-sensitive engines may create several.
- **Edges** connect a caller node to a callee node and are annotated with
  the :class:`~taint_slicer.ir.CallSiteReference` that makes the call.

Contexts
--------
``EVERYWHERE``
    The single context of a context-insensitive node.
``CallerSiteContext(caller, pc)``
    One level of call-string: the caller method and program counter.
``ReceiverContext(instance_key)``
    One level of object sensitivity: the abstract receiver object.

Public API
----------
    CallGraphNode       - a node in the call graph
    CallGraphEdge       - a directed edge (call site)
    CallGraph           - the whole-program call graph
    callgraph_summary   - human-readable multi-line summary
"""

from __future__ import annotations

from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass
from typing import (
    Any,
    Deque,
    Dict,
    Hashable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from .ir import IR, CallSiteReference
from .program_dump import MethodInfo
from .references import MethodSignature


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------

class Context:
    """Base class of calling contexts."""

    __slots__ = ()


@dataclass(frozen=True, slots=True)
class _Everywhere(Context):
    def __str__(self) -> str:
        return "Everywhere"


EVERYWHERE = _Everywhere()


@dataclass(frozen=True, slots=True)
class CallerSiteContext(Context):
    """The caller method and the program counter of the call."""

    caller: MethodSignature
    pc: int

    def __str__(self) -> str:
        return f"{self.caller}@{self.pc}"


@dataclass(frozen=True, slots=True)
class ReceiverContext(Context):
    """The abstract object a method was invoked on."""

    instance_key: Hashable

    def __str__(self) -> str:
        return f"receiver {self.instance_key}"


# ---------------------------------------------------------------------------
# CallGraphNode
# ---------------------------------------------------------------------------

class CallGraphNode:
    """A node in the call graph.

    Attributes
    ----------
    id : int
        Unique, dense identifier in creation order.
    method : MethodInfo
        The method this node is an activation of.
    context : Context
        The calling context distinguishing this node from other
        activations of the same method.
    out_edges : list[CallGraphEdge]
        Outgoing call edges (this node calls …).
    in_edges : list[CallGraphEdge]
        Incoming call edges (… calls this node).
    """

    __slots__ = ("id", "method", "context", "out_edges", "in_edges", "_targets")

    def __init__(self, node_id: int, method: MethodInfo, context: Context) -> None:
        self.id: int = node_id
        self.method: MethodInfo = method
        self.context: Context = context
        self.out_edges: List[CallGraphEdge] = []
        self.in_edges: List[CallGraphEdge] = []
        self._targets: Dict[CallSiteReference, List[CallGraphNode]] = defaultdict(list)

    # ----- queries ----------------------------------------------------------

    @property
    def signature(self) -> MethodSignature:
        return self.method.signature

    @property
    def is_application(self) -> bool:
        """True if the owning method was produced by the application loader."""
        return self.method.loader.is_application

    @property
    def ir(self) -> IR:
        return self.method.ir

    @property
    def has_body(self) -> bool:
        return self.method.has_body

    def possible_targets(self, site: CallSiteReference) -> List[CallGraphNode]:
        """Callee nodes the engine resolved *site* to."""
        return list(self._targets.get(site, ()))

    def __repr__(self) -> str:
        return f"CallGraphNode({self.id}, {self.method.signature}, {self.context})"

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other) -> bool:
        if isinstance(other, CallGraphNode):
            return self.id == other.id
        return NotImplemented


# ---------------------------------------------------------------------------
# CallGraphEdge
# ---------------------------------------------------------------------------

class CallGraphEdge:
    """A directed edge in the call graph representing one resolved call.

    Attributes
    ----------
    caller : CallGraphNode
    callee : CallGraphNode
    site : CallSiteReference
        The call site in the caller that makes this call.
    """

    __slots__ = ("caller", "callee", "site")

    def __init__(self, caller: CallGraphNode, callee: CallGraphNode, site: CallSiteReference) -> None:
        self.caller = caller
        self.callee = callee
        self.site = site

    def __repr__(self) -> str:
        return (
            f"CallGraphEdge({self.caller.id} -> {self.callee.id}, "
            f"{self.site.declared_target.name}@{self.site.pc})"
        )

    def __hash__(self) -> int:
        return hash((self.caller.id, self.callee.id, self.site))

    def __eq__(self, other) -> bool:
        if isinstance(other, CallGraphEdge):
            return (
                self.caller.id == other.caller.id
                and self.callee.id == other.callee.id
                and self.site == other.site
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """Whole-program call graph.

    Attributes
    ----------
    nodes : OrderedDict[int, CallGraphNode]
        All nodes, keyed by node id, in creation order.
    edges : list[CallGraphEdge]
        All edges.
    entrypoints : list[CallGraphNode]
        Nodes the analysis started from.
    """

    def __init__(self) -> None:
        self.nodes: OrderedDict[int, CallGraphNode] = OrderedDict()
        self.edges: List[CallGraphEdge] = []
        self.entrypoints: List[CallGraphNode] = []
        # Index: (method, context) -> node
        self._node_index: Dict[Tuple[MethodSignature, Context], CallGraphNode] = {}
        # Index: method -> every node of that method, in creation order
        self._method_index: Dict[MethodSignature, List[CallGraphNode]] = defaultdict(list)
        self._edge_set: Set[CallGraphEdge] = set()

    # ----- node management --------------------------------------------------

    def find_or_create_node(self, method: MethodInfo, context: Context) -> CallGraphNode:
        """Return the node for ``(method, context)``, creating it if needed."""
        key = (method.signature, context)
        node = self._node_index.get(key)
        if node is not None:
            return node
        node = CallGraphNode(len(self.nodes), method, context)
        self.nodes[node.id] = node
        self._node_index[key] = node
        self._method_index[method.signature].append(node)
        return node

    def add_entrypoint(self, node: CallGraphNode) -> None:
        if node not in self.entrypoints:
            self.entrypoints.append(node)

    # ----- edge management --------------------------------------------------

    def add_edge(self, caller: CallGraphNode, site: CallSiteReference, callee: CallGraphNode) -> bool:
        """Record that *site* in *caller* may call *callee*.

        Returns ``True`` if the edge is new.
        """
        edge = CallGraphEdge(caller, callee, site)
        if edge in self._edge_set:
            return False
        self._edge_set.add(edge)
        self.edges.append(edge)
        caller.out_edges.append(edge)
        callee.in_edges.append(edge)
        caller._targets[site].append(callee)
        return True

    # ----- lookups ----------------------------------------------------------

    def __iter__(self) -> Iterator[CallGraphNode]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def nodes_for(self, signature: MethodSignature) -> List[CallGraphNode]:
        """Every node whose method is *signature*."""
        return list(self._method_index.get(signature, ()))

    def pred_nodes(self, node: CallGraphNode) -> List[CallGraphNode]:
        """Distinct callers of *node*, in edge order."""
        return list(OrderedDict.fromkeys(e.caller for e in node.in_edges))

    def succ_nodes(self, node: CallGraphNode) -> List[CallGraphNode]:
        """Distinct callees of *node*, in edge order."""
        return list(OrderedDict.fromkeys(e.callee for e in node.out_edges))

    def sites_calling(self, caller: CallGraphNode, callee: CallGraphNode) -> List[CallSiteReference]:
        """Call sites in *caller* that may reach *callee*."""
        return [e.site for e in caller.out_edges if e.callee is callee]

    # ----- whole-graph queries ----------------------------------------------

    def transitive_callees(self, node: CallGraphNode) -> Set[CallGraphNode]:
        """Return all nodes transitively reachable from *node*."""
        visited: Set[CallGraphNode] = set()
        worklist: Deque[CallGraphNode] = deque([node])
        while worklist:
            n = worklist.popleft()
            if n in visited:
                continue
            visited.add(n)
            for e in n.out_edges:
                worklist.append(e.callee)
        visited.discard(node)
        return visited

    def reachable_nodes(self) -> Set[CallGraphNode]:
        """Entrypoints and every node reachable from them."""
        result: Set[CallGraphNode] = set()
        for entry in self.entrypoints:
            result.add(entry)
            result |= self.transitive_callees(entry)
        return result

    # ----- statistics -------------------------------------------------------

    def statistics(self) -> Dict[str, Any]:
        """Return a dict with summary statistics."""
        n_app = sum(1 for n in self.nodes.values() if n.is_application)
        return {
            "total_nodes": len(self.nodes),
            "application_nodes": n_app,
            "library_nodes": len(self.nodes) - n_app,
            "methods": len(self._method_index),
            "total_edges": len(self.edges),
            "entrypoints": len(self.entrypoints),
        }

    # ----- serialisation ----------------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation.

        Application nodes are filled blue, library nodes yellow and
        entrypoints drawn as inverted houses.
        """
        lines = ["digraph CallGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{title}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')

        entry_ids = {n.id for n in self.entrypoints}
        for n in self.nodes.values():
            if n.id in entry_ids:
                attrs = 'style=filled, fillcolor="#ccffcc", shape=invhouse'
            elif n.is_application:
                attrs = 'style=filled, fillcolor="#ddeeff"'
            else:
                attrs = 'style=filled, fillcolor="#fff3cd", shape=ellipse'
            label = str(n.signature)
            if n.context is not EVERYWHERE:
                label += f"\\n[{n.context}]"
            escaped = label.replace('"', '\\"')
            lines.append(f'  "{n.id}" [label="{escaped}", {attrs}];')

        for e in self.edges:
            lines.append(
                f'  "{e.caller.id}" -> "{e.callee.id}" '
                f'[label="{e.site.kind.value}@{e.site.pc}"];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"CallGraph(nodes={len(self.nodes)}, edges={len(self.edges)})"


# ---------------------------------------------------------------------------
# Convenience utilities
# ---------------------------------------------------------------------------

def callgraph_summary(cg: CallGraph) -> str:
    """Return a human-readable multi-line summary."""
    stats = cg.statistics()
    lines = [
        "Call Graph Summary",
        f"  Nodes:             {stats['total_nodes']}",
        f"  Application nodes: {stats['application_nodes']}",
        f"  Library nodes:     {stats['library_nodes']}",
        f"  Distinct methods:  {stats['methods']}",
        f"  Edges:             {stats['total_edges']}",
        f"  Entrypoints:       {stats['entrypoints']}",
    ]
    return "\n".join(lines)


__all__ = [
    "Context",
    "EVERYWHERE",
    "CallerSiteContext",
    "ReceiverContext",
    "CallGraphNode",
    "CallGraphEdge",
    "CallGraph",
    "callgraph_summary",
]
