"""
taint_slicer.slicer
===================

Forward interprocedural slicing.

A forward slice is everything reachable from the criterion over the
enabled dependence edges of the :class:`SystemDependenceGraph`.  Plain
reachability would let a slice that entered a callee through one call
site leave it through every other call site of that callee; the
traversal therefore runs in two phases (Horwitz, Reps & Binkley):

phase 1
    follows every edge except PARAM and CALL; targets of those are
    handed to phase 2.  Phase 1 may ascend to callers (RETURN).
phase 2
    follows local, SUMMARY, PARAM and CALL edges but never RETURN, so
    it stays inside the callees it descended into.  HEAP edges hand
    their targets back to phase 1, since a load anywhere in the program
    may read the stored value.

A statement already visited in phase 1 is not visited again in phase 2.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Optional, Set, Tuple

from .callgraph import CallGraph
from .dependency_graph import (
    ControlDependenceOptions,
    DataDependenceOptions,
    DepKind,
    SystemDependenceGraph,
)
from .pointer_analysis import PointsToResult
from .statements import Statement

logger = logging.getLogger(__name__)


class ForwardSlicer:
    """Computes forward slices over one call graph and points-to snapshot.

    The dependence graph (and its summary edges) is built once per pair of
    options and reused for every criterion.
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
        self._sdgs: Dict[
            Tuple[DataDependenceOptions, ControlDependenceOptions], SystemDependenceGraph
        ] = {}

    def sdg(
        self,
        data_options: DataDependenceOptions,
        control_options: ControlDependenceOptions,
    ) -> SystemDependenceGraph:
        key = (data_options, control_options)
        sdg = self._sdgs.get(key)
        if sdg is None:
            sdg = SystemDependenceGraph(self.cg, self.pa, data_options, control_options)
            self._sdgs[key] = sdg
        return sdg

    def slice(
        self,
        criterion: Statement,
        data_options: Optional[DataDependenceOptions] = None,
        control_options: Optional[ControlDependenceOptions] = None,
    ) -> Set[Statement]:
        """All statements reachable from *criterion*, the criterion included.

        The options default to those the slicer was created with.
        """
        sdg = self.sdg(
            self.data_options if data_options is None else data_options,
            self.control_options if control_options is None else control_options,
        )

        phase1: Set[Statement] = set()
        phase2: Set[Statement] = set()
        worklist1: Deque[Statement] = deque([criterion])
        worklist2: Deque[Statement] = deque()

        while worklist1 or worklist2:
            while worklist1:
                s = worklist1.popleft()
                if s in phase1:
                    continue
                phase1.add(s)
                for edge in sdg.successors(s):
                    if edge.kind.is_descending:
                        worklist2.append(edge.target)
                    else:
                        worklist1.append(edge.target)

            while worklist2 and not worklist1:
                s = worklist2.popleft()
                if s in phase1 or s in phase2:
                    continue
                phase2.add(s)
                for edge in sdg.successors(s):
                    if edge.kind.is_ascending:
                        continue
                    if edge.kind is DepKind.HEAP:
                        worklist1.append(edge.target)
                    else:
                        worklist2.append(edge.target)

        result = phase1 | phase2
        logger.debug("Slice from %s: %d statements", criterion, len(result))
        return result


def compute_forward_slice(
    criterion: Statement,
    cg: CallGraph,
    pa: PointsToResult,
    data_options: DataDependenceOptions = DataDependenceOptions.FULL,
    control_options: ControlDependenceOptions = ControlDependenceOptions.FULL,
) -> Set[Statement]:
    """One-shot forward slice; prefer :class:`ForwardSlicer` for batches."""
    return ForwardSlicer(cg, pa, data_options, control_options).slice(criterion)


__all__ = ["ForwardSlicer", "compute_forward_slice"]
