"""
taint_slicer.call_sites
=======================

Call-Site Finder: where application code calls a taint source.

Only callers loaded by the application loader are kept.  Library
implementations of a source (the platform's own stream classes calling
each other) are never slicing roots.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import List

from .callgraph import CallGraph, CallGraphNode
from .errors import AmbiguousCallSiteError, CallSiteNotFoundError
from .ir import InvokeInstruction
from .references import MethodSignature
from .statements import Statement

logger = logging.getLogger(__name__)


def find_application_callers(cg: CallGraph, target: MethodSignature) -> List[CallGraphNode]:
    """Application nodes with a call edge into any node of *target*.

    Distinct nodes, in discovery order.
    """
    callers: "OrderedDict[CallGraphNode, None]" = OrderedDict()
    for node in cg.nodes_for(target):
        for pred in cg.pred_nodes(node):
            if pred.is_application:
                callers[pred] = None
    return list(callers)


def find_call_sites(node: CallGraphNode, target: MethodSignature) -> List[Statement]:
    """NORMAL statements of *node* whose call's declared target has the
    same descriptor as *target*.

    Only the descriptor is compared.  A call declared against
    ``InputStream.read()I`` dispatches to ``FileInputStream.read()I``, and
    any other ``()I`` call in *node* is a call site as well.

    Raises
    ------
    AmbiguousCallSiteError
        If a call site maps to more than one instruction index.
    CallSiteNotFoundError
        If *node* contains no matching call.
    """
    logger.debug("Looking for call to %s in %s", target, node.signature)
    ir = node.ir
    sites: List[Statement] = []
    for inst in ir.iterate_all_instructions():
        if not isinstance(inst, InvokeInstruction):
            continue
        if inst.declared_target.descriptor != target.descriptor:
            continue
        indices = ir.call_instruction_indices(inst.call_site)
        if len(indices) != 1:
            raise AmbiguousCallSiteError(
                f"call site {inst.call_site} in {node.signature} maps to indices "
                f"{sorted(indices)}",
                str(target),
                count=len(indices),
            )
        (index,) = indices
        logger.debug("Found call site for %s at %d", target, index)
        sites.append(Statement.normal(node, index))

    if not sites:
        raise CallSiteNotFoundError(
            f"no call in {node.signature}#{node.id} although the call graph has an edge",
            str(target),
        )
    return sites


__all__ = ["find_application_callers", "find_call_sites"]
