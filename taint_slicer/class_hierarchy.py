"""
taint_slicer.class_hierarchy
============================

The type hierarchy of the analysed program: subtype closure, method
introspection and virtual dispatch.

Classes matched by the scope's exclusion set are never loaded.  A class
whose superclass or interface was excluded (or never declared) is still
loaded; the missing supertype is simply treated as absent, so lookups
through it find nothing.

Public API
----------
    ClassHierarchy.make         - build from an AnalysisScope
    ClassHierarchy.lookup_class - ClassInfo or None
    ClassHierarchy.require_class - ClassInfo or UnresolvedTypeError
    ClassHierarchy.compute_subclasses - transitive subtypes (incl. the type)
    ClassHierarchy.all_methods  - declared + inherited methods
    ClassHierarchy.resolve_method / resolve_dispatch
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import (
    TYPE_CHECKING,
    Deque,
    Dict,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from .errors import UnresolvedTypeError
from .program_dump import ClassInfo, MethodInfo, Program
from .references import MethodSignature

if TYPE_CHECKING:
    from .config import AnalysisScope, ExclusionSet

logger = logging.getLogger(__name__)


class ClassHierarchy:
    """Loaded classes of one scope and the subtype relation between them."""

    def __init__(self, program: Program, exclusions: Optional[ExclusionSet] = None) -> None:
        self._classes: Dict[str, ClassInfo] = {}
        self._direct_subtypes: Dict[str, List[str]] = defaultdict(list)
        self.excluded: Set[str] = set()

        for cls in program:
            if exclusions is not None and exclusions.excludes(cls.name):
                self.excluded.add(cls.name)
                continue
            self._classes[cls.name] = cls

        for cls in self._classes.values():
            for sup in self._direct_supertypes(cls):
                self._direct_subtypes[sup].append(cls.name)

        logger.debug(
            "Class hierarchy: %d classes loaded, %d excluded",
            len(self._classes), len(self.excluded),
        )

    @classmethod
    def make(cls, scope: AnalysisScope) -> ClassHierarchy:
        return cls(scope.program, scope.exclusions)

    # ── lookup ────────────────────────────────────────────────────────

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._classes

    def __iter__(self) -> Iterator[ClassInfo]:
        return iter(self._classes.values())

    def __len__(self) -> int:
        return len(self._classes)

    def lookup_class(self, type_name: str) -> Optional[ClassInfo]:
        return self._classes.get(type_name)

    def require_class(self, type_name: str) -> ClassInfo:
        cls = self._classes.get(type_name)
        if cls is None:
            reason = "excluded from scope" if type_name in self.excluded else "not in hierarchy"
            raise UnresolvedTypeError(f"cannot resolve type ({reason})", type_name)
        return cls

    def _direct_supertypes(self, cls: ClassInfo) -> List[str]:
        sups = []
        if cls.superclass is not None and cls.superclass in self._classes:
            sups.append(cls.superclass)
        sups.extend(i for i in cls.interfaces if i in self._classes)
        return sups

    def superclass(self, cls: ClassInfo) -> Optional[ClassInfo]:
        if cls.superclass is None:
            return None
        return self._classes.get(cls.superclass)

    def superclass_chain(self, cls: ClassInfo) -> Iterator[ClassInfo]:
        """*cls* followed by each loaded superclass, nearest first."""
        seen: Set[str] = set()
        current: Optional[ClassInfo] = cls
        while current is not None and current.name not in seen:
            seen.add(current.name)
            yield current
            current = self.superclass(current)

    # ── subtyping ─────────────────────────────────────────────────────

    def supertypes(self, type_name: str) -> Set[str]:
        """All loaded supertypes of *type_name*, including itself."""
        cls = self._classes.get(type_name)
        if cls is None:
            return set()
        result: Set[str] = set()
        worklist: Deque[ClassInfo] = deque([cls])
        while worklist:
            c = worklist.popleft()
            if c.name in result:
                continue
            result.add(c.name)
            for sup in self._direct_supertypes(c):
                worklist.append(self._classes[sup])
        return result

    def is_subtype(self, sub: str, sup: str) -> bool:
        if sub == sup:
            return True
        return sup in self.supertypes(sub)

    def compute_subclasses(self, type_name: str) -> List[ClassInfo]:
        """*type_name* and every direct and transitive subtype of it.

        For an interface this includes its implementors and their
        subclasses.

        Raises
        ------
        UnresolvedTypeError
            If *type_name* is not loaded.
        """
        root = self.require_class(type_name)
        seen: Set[str] = set()
        order: List[ClassInfo] = []
        worklist: Deque[str] = deque([root.name])
        while worklist:
            name = worklist.popleft()
            if name in seen:
                continue
            seen.add(name)
            order.append(self._classes[name])
            worklist.extend(self._direct_subtypes.get(name, ()))
        return order

    # ── methods ───────────────────────────────────────────────────────

    def all_methods(self, cls: ClassInfo) -> List[MethodInfo]:
        """Declared and inherited methods, nearest declaration winning.

        Inherited methods keep the signature of the class that declares
        them, exactly as a call graph would name them.
        """
        by_selector: Dict[Tuple[str, str], MethodInfo] = {}
        for c in self.superclass_chain(cls):
            for sel, m in c.methods.items():
                by_selector.setdefault(sel, m)
        for sup_name in self.supertypes(cls.name):
            for sel, m in self._classes[sup_name].methods.items():
                by_selector.setdefault(sel, m)
        return list(by_selector.values())

    def resolve_method(self, signature: MethodSignature) -> Optional[MethodInfo]:
        """Static resolution: the declaration *signature* refers to.

        Looks in the declaring type, then up its superclass chain, then in
        its interfaces.  Used for ``static`` and ``special`` calls.
        """
        cls = self._classes.get(signature.declaring_type)
        if cls is None:
            return None
        for c in self.superclass_chain(cls):
            m = c.methods.get(signature.selector)
            if m is not None:
                return m
        for sup_name in self.supertypes(cls.name):
            m = self._classes[sup_name].methods.get(signature.selector)
            if m is not None:
                return m
        return None

    def resolve_dispatch(self, receiver_type: str, target: MethodSignature) -> Optional[MethodInfo]:
        """Virtual dispatch of *target* on an object of *receiver_type*.

        Returns the nearest non-abstract implementation, or ``None`` if the
        receiver type is not loaded or has no implementation.
        """
        cls = self._classes.get(receiver_type)
        if cls is None:
            return None
        for c in self.superclass_chain(cls):
            m = c.methods.get(target.selector)
            if m is not None and not m.is_abstract:
                return m
        return None

    def method(self, signature: MethodSignature) -> Optional[MethodInfo]:
        """The method declared exactly at *signature*, if loaded."""
        cls = self._classes.get(signature.declaring_type)
        if cls is None:
            return None
        return cls.methods.get(signature.selector)

    def __repr__(self) -> str:
        return f"ClassHierarchy({len(self._classes)} classes)"


__all__ = ["ClassHierarchy"]
