"""
taint_slicer.criteria
=====================

Criterion Deriver: from a call statement to the statement that defines
the call's return value.

Slicing forward from the call statement itself would follow its control
edges into every callee; the taint enters the caller through the value
the call returns, which the dependence graph models as a
``NORMAL_RETURN_CALLER`` pseudo-statement.
"""

from __future__ import annotations

from .errors import VoidReturnError
from .ir import InvokeInstruction
from .statements import Statement, StatementKind


def derive_return_criterion(stmt: Statement) -> Statement:
    """Return the ``NORMAL_RETURN_CALLER`` statement of a call.

    Statements that are not NORMAL call statements are returned
    unchanged.

    Raises
    ------
    VoidReturnError
        If the call's declared target returns ``void``.
    """
    if stmt.kind is not StatementKind.NORMAL:
        return stmt
    inst = stmt.instruction
    if not isinstance(inst, InvokeInstruction):
        return stmt
    if inst.declared_target.returns_void:
        raise VoidReturnError(
            f"call at {stmt.index} in {stmt.node.signature} returns void; "
            "there is no return value to slice from",
            str(inst.declared_target),
        )
    return Statement.return_caller(stmt.node, stmt.index)


__all__ = ["derive_return_criterion"]
