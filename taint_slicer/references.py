"""
taint_slicer.references
=======================

Names for the things a program dump talks about: types, methods, fields
and the class loaders that produced them.

Type names follow the JVM conventions used by bytecode analysis engines:

* primitives are single letters (``I``, ``J``, ``Z``, ``B``, ``V`` …);
* class types are ``L`` + slash-separated name, *without* the trailing
  ``;`` that descriptors use (``Ljava/io/InputStream``);
* arrays prefix ``[`` to their element type (``[B``, ``[Ljava/lang/String``).

Method descriptors keep the JVM syntax verbatim (``(I[BLjava/lang/String;)V``)
and are parsed on demand into parameter and return type names.

Public API
----------
    ClassLoaderKind     - which logical loader produced a class
    MethodSignature     - immutable, hashable method identifier
    FieldReference      - immutable, hashable field identifier
    parse_descriptor    - split a descriptor into (params, return)
    is_reference_type   - True for class and array type names
"""

from __future__ import annotations

import enum
import functools
from dataclasses import dataclass
from typing import Tuple

from .errors import ProgramDumpError

PRIMITIVE_TYPES = frozenset("ZBCSIJFDV")

VOID = "V"
INT = "I"
OBJECT = "Ljava/lang/Object"
STRING_ARRAY = "[Ljava/lang/String"


class ClassLoaderKind(enum.Enum):
    """Logical loader a class was loaded by.

    Only ``APPLICATION`` classes count as user-authored code; everything
    else is library, runtime or synthetic code.
    """

    APPLICATION = "application"
    EXTENSION   = "extension"
    PRIMORDIAL  = "primordial"
    SYNTHETIC   = "synthetic"

    @property
    def is_application(self) -> bool:
        return self is ClassLoaderKind.APPLICATION


def is_reference_type(type_name: str) -> bool:
    """Class and array types are references; primitives are not."""
    return type_name.startswith(("L", "["))


def _split_type_list(text: str, descriptor: str) -> Tuple[str, ...]:
    types = []
    i = 0
    try:
        while i < len(text):
            start = i
            while text[i] == "[":
                i += 1
            if text[i] == "L":
                end = text.index(";", i)
                types.append(text[start:end])
                i = end + 1
            elif text[i] in PRIMITIVE_TYPES:
                types.append(text[start:i + 1])
                i += 1
            else:
                raise ProgramDumpError(
                    f"unexpected character {text[i]!r} in method descriptor",
                    descriptor,
                )
    except (IndexError, ValueError) as exc:
        raise ProgramDumpError("truncated method descriptor", descriptor) from exc
    return tuple(types)


@functools.lru_cache(maxsize=4096)
def parse_descriptor(descriptor: str) -> Tuple[Tuple[str, ...], str]:
    """Split ``(params)ret`` into parameter type names and a return type name.

    >>> parse_descriptor("(I[BLjava/lang/String;)V")
    (('I', '[B', 'Ljava/lang/String'), 'V')
    """
    if not descriptor.startswith("(") or ")" not in descriptor:
        raise ProgramDumpError("method descriptor must look like (...)R", descriptor)
    close = descriptor.index(")")
    params = _split_type_list(descriptor[1:close], descriptor)
    if VOID in params:
        raise ProgramDumpError("void is not a valid parameter type", descriptor)
    ret = _split_type_list(descriptor[close + 1:], descriptor)
    if len(ret) != 1:
        raise ProgramDumpError("method descriptor needs exactly one return type", descriptor)
    return params, ret[0]


@dataclass(frozen=True, slots=True)
class MethodSignature:
    """Declaring type, name and descriptor of a method.

    Used as a dictionary key throughout the pipeline, so equality and
    hashing are structural.
    """

    declaring_type: str
    name: str
    descriptor: str

    @property
    def selector(self) -> Tuple[str, str]:
        """``(name, descriptor)``: what virtual dispatch matches on."""
        return (self.name, self.descriptor)

    @property
    def parameter_types(self) -> Tuple[str, ...]:
        return parse_descriptor(self.descriptor)[0]

    @property
    def return_type(self) -> str:
        return parse_descriptor(self.descriptor)[1]

    @property
    def returns_void(self) -> bool:
        return self.return_type == VOID

    def __str__(self) -> str:
        return f"{self.declaring_type}.{self.name}{self.descriptor}"


@dataclass(frozen=True, slots=True)
class FieldReference:
    """Declaring type and name of a field."""

    declaring_type: str
    name: str

    def __str__(self) -> str:
        return f"{self.declaring_type}.{self.name}"


__all__ = [
    "PRIMITIVE_TYPES",
    "VOID",
    "INT",
    "OBJECT",
    "STRING_ARRAY",
    "ClassLoaderKind",
    "MethodSignature",
    "FieldReference",
    "parse_descriptor",
    "is_reference_type",
]
