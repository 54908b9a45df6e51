"""
taint_slicer.sources
====================

Source Locator: the concrete methods that count as taint sources.

A :class:`TaintSourcePattern` names a base type, a method-name prefix and
an exact return type.  :func:`find_implementors` walks every subtype of
the base type and collects the matching methods each concrete subtype
can dispatch to, inherited ones included.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Set, Tuple

from .references import INT, MethodSignature

if TYPE_CHECKING:
    from .class_hierarchy import ClassHierarchy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TaintSourcePattern:
    """Methods of *base_type* subtypes named ``name_prefix*`` returning *return_type*."""

    base_type: str
    name_prefix: str
    return_type: str

    def matches(self, signature: MethodSignature) -> bool:
        return (
            signature.name.startswith(self.name_prefix)
            and signature.return_type == self.return_type
        )

    def __str__(self) -> str:
        return f"{self.base_type}.{self.name_prefix}*:{self.return_type}"


# Byte-reading operations of java.io.InputStream and its subclasses.
DEFAULT_TAINT_SOURCES: Tuple[TaintSourcePattern, ...] = (
    TaintSourcePattern("Ljava/io/InputStream", "read", INT),
)


def find_implementors(
    cha: ClassHierarchy,
    base_type: str,
    name_prefix: str,
    return_type: str,
) -> Set[MethodSignature]:
    """Concrete methods reachable through subtypes of *base_type*.

    Abstract subtypes are skipped, as are abstract methods of concrete
    ones.  A base type with no matching subtypes yields an empty set.

    Raises
    ------
    UnresolvedTypeError
        If *base_type* is not in the class hierarchy.
    """
    pattern = TaintSourcePattern(base_type, name_prefix, return_type)
    logger.info("Collecting subclass methods for %s", base_type)
    result: Set[MethodSignature] = set()
    for cls in cha.compute_subclasses(base_type):
        if cls.is_abstract:
            continue
        for m in cha.all_methods(cls):
            if m.is_abstract:
                continue
            if pattern.matches(m.signature):
                result.add(m.signature)
    logger.debug("%s: %d implementors", pattern, len(result))
    return result


def find_pattern_implementors(cha: ClassHierarchy, pattern: TaintSourcePattern) -> Set[MethodSignature]:
    return find_implementors(cha, pattern.base_type, pattern.name_prefix, pattern.return_type)


__all__ = [
    "TaintSourcePattern",
    "DEFAULT_TAINT_SOURCES",
    "find_implementors",
    "find_pattern_implementors",
]
