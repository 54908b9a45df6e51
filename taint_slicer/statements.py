"""
taint_slicer.statements
=======================

Locations in a call-graph node: the unit of slicing criteria and of slice
output.

    ┌──────────────────────────┬──────────────────────────────────────────┐
    │ kind                     │ location                                 │
    ├──────────────────────────┼──────────────────────────────────────────┤
    │ NORMAL                   │ instruction ``index``                    │
    │ PHI                      │ phi instruction ``index``                │
    │ PARAM_CALLER             │ argument ``position`` of call ``index``  │
    │ PARAM_CALLEE             │ formal parameter ``position``            │
    │ NORMAL_RETURN_CALLER     │ value returned to call ``index``         │
    │ NORMAL_RETURN_CALLEE     │ value returned by the method             │
    │ METHOD_ENTRY             │ entry of the method                      │
    └──────────────────────────┴──────────────────────────────────────────┘

``index`` and ``position`` are ``-1`` where they do not apply.  Argument
positions count the receiver, so position ``k`` corresponds to parameter
value number ``k + 1`` in the callee.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Tuple

from .callgraph import CallGraphNode
from .ir import Instruction


class StatementKind(enum.Enum):
    NORMAL               = "normal"
    PHI                  = "phi"
    PARAM_CALLER         = "param-caller"
    PARAM_CALLEE         = "param-callee"
    NORMAL_RETURN_CALLER = "normal-return-caller"
    NORMAL_RETURN_CALLEE = "normal-return-callee"
    METHOD_ENTRY         = "method-entry"


_INDEXED = frozenset({
    StatementKind.NORMAL,
    StatementKind.PHI,
    StatementKind.PARAM_CALLER,
    StatementKind.NORMAL_RETURN_CALLER,
})

_KIND_ORDER = {k: i for i, k in enumerate(StatementKind)}


@dataclass(frozen=True, slots=True)
class Statement:
    kind: StatementKind
    node: CallGraphNode
    index: int = -1
    position: int = -1

    # ----- constructors -----------------------------------------------------

    @classmethod
    def normal(cls, node: CallGraphNode, index: int) -> Statement:
        return cls(StatementKind.NORMAL, node, index)

    @classmethod
    def phi(cls, node: CallGraphNode, index: int) -> Statement:
        return cls(StatementKind.PHI, node, index)

    @classmethod
    def param_caller(cls, node: CallGraphNode, index: int, position: int) -> Statement:
        return cls(StatementKind.PARAM_CALLER, node, index, position)

    @classmethod
    def param_callee(cls, node: CallGraphNode, position: int) -> Statement:
        return cls(StatementKind.PARAM_CALLEE, node, -1, position)

    @classmethod
    def return_caller(cls, node: CallGraphNode, index: int) -> Statement:
        return cls(StatementKind.NORMAL_RETURN_CALLER, node, index)

    @classmethod
    def return_callee(cls, node: CallGraphNode) -> Statement:
        return cls(StatementKind.NORMAL_RETURN_CALLEE, node)

    @classmethod
    def method_entry(cls, node: CallGraphNode) -> Statement:
        return cls(StatementKind.METHOD_ENTRY, node)

    # ----- queries ----------------------------------------------------------

    @property
    def instruction(self) -> Optional[Instruction]:
        """The instruction at ``index`` for indexed kinds, else ``None``."""
        if self.kind in _INDEXED and self.index >= 0:
            return self.node.ir.instruction(self.index)
        return None

    @property
    def sort_key(self) -> Tuple[int, int, int, int]:
        return (self.node.id, self.index, _KIND_ORDER[self.kind], self.position)

    def __str__(self) -> str:
        where = f"{self.node.signature}#{self.node.id}"
        if self.kind is StatementKind.PARAM_CALLER:
            return f"{self.kind.value}[{self.index}:{self.position}] {where}"
        if self.kind is StatementKind.PARAM_CALLEE:
            return f"{self.kind.value}[{self.position}] {where}"
        if self.index >= 0:
            return f"{self.kind.value}[{self.index}] {where}"
        return f"{self.kind.value} {where}"


__all__ = ["StatementKind", "Statement"]
