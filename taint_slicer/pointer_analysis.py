"""
taint_slicer.pointer_analysis
=============================

Abstract objects, abstract locations and the points-to relation between
them.

Instance keys (abstract objects)
--------------------------------
``ConcreteTypeKey(type)``
    One object per concrete type.  Used by the type-based heap model and
    for synthetic objects (entrypoint arguments, native return values).
``AllocationSiteKey(method, index, type)``
    One object per ``new`` instruction.  Keyed by the allocating method,
    not by call-graph node, so the number of objects stays finite under
    receiver-sensitive contexts.

Pointer keys (abstract locations)
---------------------------------
``LocalPointerKey(node_id, value_number)``, ``ReturnValueKey(node_id)``,
``InstanceFieldKey(instance_key, field)``, ``StaticFieldKey(field)``,
``ArrayContentsKey(instance_key)``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    AbstractSet,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    Set,
    Union,
)

from .references import FieldReference, MethodSignature

if TYPE_CHECKING:
    from .callgraph import CallGraphNode


# ---------------------------------------------------------------------------
# Instance keys
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ConcreteTypeKey:
    type_name: str

    def __str__(self) -> str:
        return f"<{self.type_name}>"


@dataclass(frozen=True, slots=True)
class AllocationSiteKey:
    method: MethodSignature
    index: int
    type_name: str

    def __str__(self) -> str:
        return f"<{self.type_name} @ {self.method}:{self.index}>"


InstanceKey = Union[ConcreteTypeKey, AllocationSiteKey]


# ---------------------------------------------------------------------------
# Pointer keys
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class LocalPointerKey:
    node_id: int
    value_number: int


@dataclass(frozen=True, slots=True)
class ReturnValueKey:
    node_id: int


@dataclass(frozen=True, slots=True)
class InstanceFieldKey:
    # Fields are matched by name: a getfield naming a subclass as owner
    # reads the same slot as a putfield naming the declaring class.
    instance_key: InstanceKey
    field_name: str


@dataclass(frozen=True, slots=True)
class StaticFieldKey:
    field: FieldReference


@dataclass(frozen=True, slots=True)
class ArrayContentsKey:
    instance_key: InstanceKey


PointerKey = Union[
    LocalPointerKey,
    ReturnValueKey,
    InstanceFieldKey,
    StaticFieldKey,
    ArrayContentsKey,
]

_EMPTY: FrozenSet[InstanceKey] = frozenset()


# ---------------------------------------------------------------------------
# PointsToResult
# ---------------------------------------------------------------------------

class PointsToResult:
    """The points-to relation computed by the engine.

    Read-only once the engine returns it; :meth:`add` is for the solver.
    """

    def __init__(self) -> None:
        self._pts: Dict[PointerKey, Set[InstanceKey]] = defaultdict(set)

    # ----- solver interface -------------------------------------------------

    def add(self, key: PointerKey, instance_keys: Iterable[InstanceKey]) -> bool:
        """Add *instance_keys* to the set of *key*; ``True`` if it grew."""
        incoming = set(instance_keys)
        if not incoming:
            return False
        current = self._pts[key]
        before = len(current)
        current |= incoming
        return len(current) != before

    # ----- queries ----------------------------------------------------------

    def points_to(self, key: PointerKey) -> AbstractSet[InstanceKey]:
        """Abstract objects *key* may point to (a read-only view)."""
        pts = self._pts.get(key)
        return frozenset(pts) if pts else _EMPTY

    def points_to_local(self, node: CallGraphNode, value_number: int) -> AbstractSet[InstanceKey]:
        return self.points_to(LocalPointerKey(node.id, value_number))

    def may_alias(
        self,
        node_a: CallGraphNode, vn_a: int,
        node_b: CallGraphNode, vn_b: int,
    ) -> bool:
        a = self._pts.get(LocalPointerKey(node_a.id, vn_a))
        b = self._pts.get(LocalPointerKey(node_b.id, vn_b))
        return bool(a and b and not a.isdisjoint(b))

    def pointer_keys(self) -> Iterator[PointerKey]:
        return (k for k, v in self._pts.items() if v)

    def instance_keys(self) -> Set[InstanceKey]:
        result: Set[InstanceKey] = set()
        for pts in self._pts.values():
            result |= pts
        return result

    def __len__(self) -> int:
        return sum(1 for v in self._pts.values() if v)

    def __repr__(self) -> str:
        return f"PointsToResult({len(self)} pointer keys, {len(self.instance_keys())} objects)"


__all__ = [
    "ConcreteTypeKey",
    "AllocationSiteKey",
    "InstanceKey",
    "LocalPointerKey",
    "ReturnValueKey",
    "InstanceFieldKey",
    "StaticFieldKey",
    "ArrayContentsKey",
    "PointerKey",
    "PointsToResult",
]
