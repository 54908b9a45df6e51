"""
taint_slicer.ir
===============

Per-method intermediate representation: an SSA instruction stream with
stable 0-based indices and an instruction-level control-flow view.

Value numbers
-------------
Every value is a positive integer defined exactly once.  The parameters
of a method are ``1..n`` (``1`` is the receiver of an instance method);
instructions define the rest.  An instruction's ``defs`` and ``uses``
properties report the value numbers it writes and reads.

Control flow
------------
Instruction ``i`` falls through to ``i + 1`` unless it is a ``goto``,
``return`` or ``throw``; a conditional branch has both the fall-through
and its target as successors.  ``return``/``throw`` (and falling off the
end) flow to the synthetic exit index ``len(instructions)``.

Call sites
----------
Each :class:`InvokeInstruction` carries a :class:`CallSiteReference`
(program counter, statically declared target, invocation kind).  For
program dumps the program counter equals the instruction index, but the
IR does not assume so: :meth:`IR.call_instruction_indices` looks the
site up in an index built from the instruction stream.
"""

from __future__ import annotations

import enum
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

from .errors import ProgramDumpError
from .references import FieldReference, MethodSignature


class CallKind(enum.Enum):
    """How an invoke instruction dispatches."""

    STATIC    = "static"
    SPECIAL   = "special"
    VIRTUAL   = "virtual"
    INTERFACE = "interface"

    @property
    def is_dispatch(self) -> bool:
        return self in (CallKind.VIRTUAL, CallKind.INTERFACE)


@dataclass(frozen=True, slots=True)
class CallSiteReference:
    """A call site: program counter plus the statically declared target."""

    pc: int
    declared_target: MethodSignature
    kind: CallKind

    @property
    def is_static(self) -> bool:
        return self.kind is CallKind.STATIC

    def __str__(self) -> str:
        return f"{self.kind.value} {self.declared_target}@{self.pc}"


# ═══════════════════════════════════════════════════════════════════════════
#  Instructions
# ═══════════════════════════════════════════════════════════════════════════

class Instruction:
    """Base class of all instructions."""

    __slots__ = ()

    @property
    def defs(self) -> Tuple[int, ...]:
        return ()

    @property
    def uses(self) -> Tuple[int, ...]:
        return ()

    @property
    def is_branch(self) -> bool:
        """True for instructions with more than one CFG successor."""
        return False

    @property
    def ends_block(self) -> bool:
        """True if control never falls through to the next instruction."""
        return False


@dataclass(frozen=True, slots=True)
class ConstInstruction(Instruction):
    result: int
    value: Any

    @property
    def defs(self) -> Tuple[int, ...]:
        return (self.result,)


@dataclass(frozen=True, slots=True)
class NewInstruction(Instruction):
    result: int
    type_name: str

    @property
    def defs(self) -> Tuple[int, ...]:
        return (self.result,)


@dataclass(frozen=True, slots=True)
class BinaryOpInstruction(Instruction):
    result: int
    op: str
    left: int
    right: int

    @property
    def defs(self) -> Tuple[int, ...]:
        return (self.result,)

    @property
    def uses(self) -> Tuple[int, ...]:
        return (self.left, self.right)


@dataclass(frozen=True, slots=True)
class UnaryOpInstruction(Instruction):
    result: int
    op: str
    operand: int

    @property
    def defs(self) -> Tuple[int, ...]:
        return (self.result,)

    @property
    def uses(self) -> Tuple[int, ...]:
        return (self.operand,)


@dataclass(frozen=True, slots=True)
class CheckCastInstruction(Instruction):
    result: int
    value: int
    type_name: str

    @property
    def defs(self) -> Tuple[int, ...]:
        return (self.result,)

    @property
    def uses(self) -> Tuple[int, ...]:
        return (self.value,)


@dataclass(frozen=True, slots=True)
class GetFieldInstruction(Instruction):
    """``result = ref.field``; ``ref`` is ``None`` for a static field."""

    result: int
    ref: Optional[int]
    field: FieldReference

    @property
    def is_static(self) -> bool:
        return self.ref is None

    @property
    def defs(self) -> Tuple[int, ...]:
        return (self.result,)

    @property
    def uses(self) -> Tuple[int, ...]:
        return () if self.ref is None else (self.ref,)


@dataclass(frozen=True, slots=True)
class PutFieldInstruction(Instruction):
    """``ref.field = value``; ``ref`` is ``None`` for a static field."""

    ref: Optional[int]
    field: FieldReference
    value: int

    @property
    def is_static(self) -> bool:
        return self.ref is None

    @property
    def uses(self) -> Tuple[int, ...]:
        if self.ref is None:
            return (self.value,)
        return (self.ref, self.value)


@dataclass(frozen=True, slots=True)
class ArrayLoadInstruction(Instruction):
    result: int
    array: int
    index: int

    @property
    def defs(self) -> Tuple[int, ...]:
        return (self.result,)

    @property
    def uses(self) -> Tuple[int, ...]:
        return (self.array, self.index)


@dataclass(frozen=True, slots=True)
class ArrayStoreInstruction(Instruction):
    array: int
    index: int
    value: int

    @property
    def uses(self) -> Tuple[int, ...]:
        return (self.array, self.index, self.value)


@dataclass(frozen=True, slots=True)
class InvokeInstruction(Instruction):
    """A call.  ``arguments[0]`` is the receiver unless the call is static."""

    result: Optional[int]
    call_site: CallSiteReference
    arguments: Tuple[int, ...]

    @property
    def declared_target(self) -> MethodSignature:
        return self.call_site.declared_target

    @property
    def receiver(self) -> Optional[int]:
        if self.call_site.is_static or not self.arguments:
            return None
        return self.arguments[0]

    @property
    def defs(self) -> Tuple[int, ...]:
        return () if self.result is None else (self.result,)

    @property
    def uses(self) -> Tuple[int, ...]:
        return self.arguments


@dataclass(frozen=True, slots=True)
class ConditionalBranchInstruction(Instruction):
    op: str
    left: int
    right: int
    target: int

    @property
    def uses(self) -> Tuple[int, ...]:
        return (self.left, self.right)

    @property
    def is_branch(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class GotoInstruction(Instruction):
    target: int

    @property
    def ends_block(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class ReturnInstruction(Instruction):
    value: Optional[int] = None

    @property
    def uses(self) -> Tuple[int, ...]:
        return () if self.value is None else (self.value,)

    @property
    def ends_block(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class ThrowInstruction(Instruction):
    value: int

    @property
    def uses(self) -> Tuple[int, ...]:
        return (self.value,)

    @property
    def ends_block(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class PhiInstruction(Instruction):
    result: int
    values: Tuple[int, ...]

    @property
    def defs(self) -> Tuple[int, ...]:
        return (self.result,)

    @property
    def uses(self) -> Tuple[int, ...]:
        return self.values


# ═══════════════════════════════════════════════════════════════════════════
#  IR
# ═══════════════════════════════════════════════════════════════════════════

class IR:
    """The instruction stream of one method plus derived indices.

    Parameters
    ----------
    method : MethodSignature
        The method this IR belongs to (used in diagnostics).
    instructions : Sequence[Instruction]
        Instructions in index order.
    parameter_count : int
        Number of parameter value numbers, including the receiver.

    Raises
    ------
    ProgramDumpError
        If a value number is defined twice, a parameter is redefined, or
        a branch target is out of range.
    """

    def __init__(
        self,
        method: MethodSignature,
        instructions: Sequence[Instruction],
        parameter_count: int,
    ) -> None:
        self.method = method
        self.instructions: Tuple[Instruction, ...] = tuple(instructions)
        self.parameter_count = parameter_count

        self._def_index: Dict[int, int] = {}
        self._use_index: Dict[int, List[int]] = defaultdict(list)
        self._call_index: Dict[CallSiteReference, List[int]] = defaultdict(list)

        for idx, inst in enumerate(self.instructions):
            for vn in inst.defs:
                if vn <= parameter_count:
                    raise ProgramDumpError(
                        f"instruction {idx} redefines parameter v{vn}", str(method)
                    )
                if vn in self._def_index:
                    raise ProgramDumpError(
                        f"value v{vn} defined at {self._def_index[vn]} and {idx}",
                        str(method),
                    )
                self._def_index[vn] = idx
            for vn in inst.uses:
                self._use_index[vn].append(idx)
            if isinstance(inst, InvokeInstruction):
                self._call_index[inst.call_site].append(idx)
            target = getattr(inst, "target", None)
            if target is not None and not 0 <= target < len(self.instructions):
                raise ProgramDumpError(
                    f"branch at {idx} targets {target}, outside 0..{len(self.instructions) - 1}",
                    str(method),
                )

        self._succs: Dict[int, List[int]] = {}
        self._preds: Dict[int, List[int]] = defaultdict(list)
        for idx, inst in enumerate(self.instructions):
            succs = self._successors_of(idx, inst)
            self._succs[idx] = succs
            for s in succs:
                self._preds[s].append(idx)

    # ── instruction access ────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.instructions)

    def iterate_all_instructions(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    def instruction(self, index: int) -> Instruction:
        return self.instructions[index]

    def call_sites(self) -> List[CallSiteReference]:
        return list(self._call_index)

    def call_instruction_indices(self, site: CallSiteReference) -> FrozenSet[int]:
        """All instruction indices implementing *site* (one, when well formed)."""
        return frozenset(self._call_index.get(site, ()))

    # ── def/use ───────────────────────────────────────────────────────

    @property
    def parameter_value_numbers(self) -> range:
        return range(1, self.parameter_count + 1)

    def is_parameter(self, value_number: int) -> bool:
        return 1 <= value_number <= self.parameter_count

    def def_index(self, value_number: int) -> Optional[int]:
        """Index of the instruction defining *value_number* (None for params)."""
        return self._def_index.get(value_number)

    def use_indices(self, value_number: int) -> List[int]:
        return list(self._use_index.get(value_number, ()))

    # ── control flow ──────────────────────────────────────────────────

    @property
    def entry_index(self) -> int:
        return 0

    @property
    def exit_index(self) -> int:
        """Synthetic exit node; ``return``/``throw`` flow here."""
        return len(self.instructions)

    def successors(self, index: int) -> List[int]:
        return list(self._succs.get(index, ()))

    def predecessors(self, index: int) -> List[int]:
        return list(self._preds.get(index, ()))

    def _successors_of(self, idx: int, inst: Instruction) -> List[int]:
        if isinstance(inst, (ReturnInstruction, ThrowInstruction)):
            return [self.exit_index]
        if isinstance(inst, GotoInstruction):
            return [inst.target]
        nxt = idx + 1
        if isinstance(inst, ConditionalBranchInstruction):
            if inst.target == nxt:
                return [nxt]
            return [nxt, inst.target]
        return [nxt]

    def __repr__(self) -> str:
        return f"IR({self.method}, {len(self.instructions)} instructions)"


__all__ = [
    "CallKind",
    "CallSiteReference",
    "Instruction",
    "ConstInstruction",
    "NewInstruction",
    "BinaryOpInstruction",
    "UnaryOpInstruction",
    "CheckCastInstruction",
    "GetFieldInstruction",
    "PutFieldInstruction",
    "ArrayLoadInstruction",
    "ArrayStoreInstruction",
    "InvokeInstruction",
    "ConditionalBranchInstruction",
    "GotoInstruction",
    "ReturnInstruction",
    "ThrowInstruction",
    "PhiInstruction",
    "IR",
]
