"""taint_slicer/program_dump.py – S-expression program dump → program model.

A *program dump* is the on-disk form of the compiled application the
engine analyses: every class with its loader, supertypes and methods,
and every method body as an SSA instruction stream.  The reader turns
the output of ``sexpdata.loads`` into :class:`Program`,
:class:`ClassInfo` and :class:`MethodInfo` objects.

Design principles
-----------------
* **Head-symbol dispatch** – every instruction ``(tag ...)`` is dispatched
  on ``tag`` to a dedicated ``_parse_<tag>`` helper registered in
  ``_INSTRUCTION_DISPATCH``.
* **Fail-fast with location** – :class:`ProgramDumpError` names the class
  and method being read.
* **No implicit coercions** – shapes are validated strictly; anything
  unexpected is an error, not silently ignored.

Surface syntax
--------------
::

    (program
      (class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
        (method "main" "([Ljava/lang/String;)V" (static)
          (body
            (new 2 "Ljava/io/FileInputStream")
            (invoke _ special "Ljava/io/FileInputStream" "<init>" "()V" 2)
            (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
            (const 4 0)
            (if lt 3 4 6)
            (return)
            (return)))))

Descriptors and type names are string literals because ``;`` starts a
comment in S-expression syntax.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    Union,
)

try:
    import sexpdata
    from sexpdata import Symbol
except ImportError:  # pragma: no cover – allow static analysis w/o dep
    raise ImportError(
        "The 'sexpdata' package is required to read program dumps. "
        "Install it with:  pip install sexpdata"
    )

from .errors import ProgramDumpError
from .ir import (
    IR,
    ArrayLoadInstruction,
    ArrayStoreInstruction,
    BinaryOpInstruction,
    CallKind,
    CallSiteReference,
    CheckCastInstruction,
    ConditionalBranchInstruction,
    ConstInstruction,
    GetFieldInstruction,
    GotoInstruction,
    Instruction,
    InvokeInstruction,
    NewInstruction,
    PhiInstruction,
    PutFieldInstruction,
    ReturnInstruction,
    ThrowInstruction,
    UnaryOpInstruction,
)
from .references import ClassLoaderKind, FieldReference, MethodSignature, parse_descriptor


# ═══════════════════════════════════════════════════════════════════════
#  Program model
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class MethodInfo:
    """A method declared by a class in the dump."""

    signature: MethodSignature
    loader: ClassLoaderKind
    is_static: bool = False
    is_abstract: bool = False
    is_native: bool = False
    instructions: Tuple[Instruction, ...] = ()
    _ir: Optional[IR] = field(default=None, repr=False, compare=False)

    @property
    def parameter_count(self) -> int:
        """Parameter value numbers, including the receiver."""
        n = len(self.signature.parameter_types)
        return n if self.is_static else n + 1

    @property
    def has_body(self) -> bool:
        return not (self.is_abstract or self.is_native)

    @property
    def ir(self) -> IR:
        if self._ir is None:
            self._ir = IR(self.signature, self.instructions, self.parameter_count)
        return self._ir

    def __hash__(self) -> int:
        return hash(self.signature)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MethodInfo):
            return NotImplemented
        return self.signature == other.signature


@dataclass
class ClassInfo:
    """A class or interface declared in the dump."""

    name: str
    loader: ClassLoaderKind
    superclass: Optional[str] = None
    interfaces: Tuple[str, ...] = ()
    is_abstract: bool = False
    is_interface: bool = False
    methods: Dict[Tuple[str, str], MethodInfo] = field(default_factory=dict)

    def declared_method(self, name: str, descriptor: str) -> Optional[MethodInfo]:
        return self.methods.get((name, descriptor))

    def __repr__(self) -> str:
        return f"ClassInfo({self.name!r}, {self.loader.value}, {len(self.methods)} methods)"


@dataclass
class Program:
    """Every class of one program dump, keyed by type name."""

    classes: Dict[str, ClassInfo] = field(default_factory=dict)
    source: str = "<string>"

    def __iter__(self) -> Iterator[ClassInfo]:
        return iter(self.classes.values())

    def __len__(self) -> int:
        return len(self.classes)

    def methods(self) -> Iterator[MethodInfo]:
        for cls in self.classes.values():
            yield from cls.methods.values()


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

Sexp = Any  # Union[list, Symbol, str, int, float, bool]


class _ReadContext:
    """Where we are in the dump, for error messages."""

    __slots__ = ("filename", "cls", "method")

    def __init__(self, filename: str) -> None:
        self.filename = filename
        self.cls: Optional[str] = None
        self.method: Optional[str] = None

    def error(self, message: str) -> ProgramDumpError:
        subject = self.cls
        if self.method:
            subject = f"{self.cls}.{self.method}"
        return ProgramDumpError(message, subject, filename=self.filename)


def _is_symbol(s: Sexp, name: Optional[str] = None) -> bool:
    if not isinstance(s, Symbol):
        return False
    return name is None or s.value() == name


def _sym_name(s: Sexp, ctx: _ReadContext) -> str:
    if isinstance(s, Symbol):
        return s.value()
    raise ctx.error(f"expected symbol, got {type(s).__name__}: {s!r}")


def _head(s: Sexp, ctx: _ReadContext) -> str:
    if not isinstance(s, list) or not s:
        raise ctx.error(f"expected form (tag ...), got: {s!r}")
    return _sym_name(s[0], ctx)


def _as_str(s: Sexp, ctx: _ReadContext) -> str:
    """Coerce *s* to a Python ``str`` – accepts Symbol or string literal."""
    if isinstance(s, Symbol):
        return s.value()
    if isinstance(s, str):
        return s
    raise ctx.error(f"expected string or symbol, got {type(s).__name__}: {s!r}")


def _as_value(s: Sexp, ctx: _ReadContext) -> int:
    """An SSA value number: a positive integer."""
    if isinstance(s, int) and not isinstance(s, bool) and s > 0:
        return s
    raise ctx.error(f"expected value number, got {s!r}")


def _as_result(s: Sexp, ctx: _ReadContext) -> Optional[int]:
    """A result slot: a value number or ``_``."""
    if _is_symbol(s, "_"):
        return None
    return _as_value(s, ctx)


def _as_index(s: Sexp, ctx: _ReadContext) -> int:
    if isinstance(s, int) and not isinstance(s, bool) and s >= 0:
        return s
    raise ctx.error(f"expected instruction index, got {s!r}")


def _expect_arity(s: list, n: int, ctx: _ReadContext) -> None:
    if len(s) != n:
        raise ctx.error(
            f"({_head(s, ctx)} ...) takes {n - 1} operands, got {len(s) - 1}"
        )


# ═══════════════════════════════════════════════════════════════════════
#  Instruction parsers
# ═══════════════════════════════════════════════════════════════════════

_INSTRUCTION_DISPATCH: Dict[str, Callable[[list, int, _ReadContext], Instruction]] = {}


def _register(tag: str):
    """Decorator: register an instruction parser under *tag*."""
    def deco(fn):
        _INSTRUCTION_DISPATCH[tag] = fn
        return fn
    return deco


@_register("const")
def _parse_const(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 3, ctx)
    value = s[2].value() if isinstance(s[2], Symbol) else s[2]
    return ConstInstruction(_as_value(s[1], ctx), value)


@_register("new")
def _parse_new(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 3, ctx)
    return NewInstruction(_as_value(s[1], ctx), _as_str(s[2], ctx))


@_register("binop")
def _parse_binop(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 5, ctx)
    return BinaryOpInstruction(
        _as_value(s[1], ctx), _as_str(s[2], ctx),
        _as_value(s[3], ctx), _as_value(s[4], ctx),
    )


@_register("unop")
def _parse_unop(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 4, ctx)
    return UnaryOpInstruction(_as_value(s[1], ctx), _as_str(s[2], ctx), _as_value(s[3], ctx))


@_register("cast")
def _parse_cast(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 4, ctx)
    return CheckCastInstruction(_as_value(s[1], ctx), _as_value(s[2], ctx), _as_str(s[3], ctx))


@_register("getfield")
def _parse_getfield(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 5, ctx)
    fref = FieldReference(_as_str(s[3], ctx), _as_str(s[4], ctx))
    return GetFieldInstruction(_as_value(s[1], ctx), _as_value(s[2], ctx), fref)


@_register("putfield")
def _parse_putfield(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 5, ctx)
    fref = FieldReference(_as_str(s[2], ctx), _as_str(s[3], ctx))
    return PutFieldInstruction(_as_value(s[1], ctx), fref, _as_value(s[4], ctx))


@_register("getstatic")
def _parse_getstatic(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 4, ctx)
    fref = FieldReference(_as_str(s[2], ctx), _as_str(s[3], ctx))
    return GetFieldInstruction(_as_value(s[1], ctx), None, fref)


@_register("putstatic")
def _parse_putstatic(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 4, ctx)
    fref = FieldReference(_as_str(s[1], ctx), _as_str(s[2], ctx))
    return PutFieldInstruction(None, fref, _as_value(s[3], ctx))


@_register("aload")
def _parse_aload(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 4, ctx)
    return ArrayLoadInstruction(_as_value(s[1], ctx), _as_value(s[2], ctx), _as_value(s[3], ctx))


@_register("astore")
def _parse_astore(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 4, ctx)
    return ArrayStoreInstruction(_as_value(s[1], ctx), _as_value(s[2], ctx), _as_value(s[3], ctx))


@_register("invoke")
def _parse_invoke(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    if len(s) < 6:
        raise ctx.error("(invoke R kind owner name descriptor arg...) is too short")
    result = _as_result(s[1], ctx)
    kind_name = _as_str(s[2], ctx)
    try:
        kind = CallKind(kind_name)
    except ValueError:
        raise ctx.error(
            f"unknown invoke kind {kind_name!r}; "
            f"expected one of {[k.value for k in CallKind]}"
        ) from None
    target = MethodSignature(_as_str(s[3], ctx), _as_str(s[4], ctx), _as_str(s[5], ctx))
    args = tuple(_as_value(a, ctx) for a in s[6:])
    try:
        params, ret = parse_descriptor(target.descriptor)
    except ProgramDumpError as exc:
        raise ctx.error(f"bad descriptor in call at {idx}: {exc.message}") from exc
    expected = len(params) + (0 if kind is CallKind.STATIC else 1)
    if len(args) != expected:
        raise ctx.error(
            f"call to {target} at {idx} passes {len(args)} arguments, expected {expected}"
        )
    if result is not None and ret == "V":
        raise ctx.error(f"call to void method {target} at {idx} cannot define a value")
    return InvokeInstruction(result, CallSiteReference(idx, target, kind), args)


@_register("if")
def _parse_if(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 5, ctx)
    return ConditionalBranchInstruction(
        _as_str(s[1], ctx), _as_value(s[2], ctx), _as_value(s[3], ctx), _as_index(s[4], ctx)
    )


@_register("goto")
def _parse_goto(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 2, ctx)
    return GotoInstruction(_as_index(s[1], ctx))


@_register("return")
def _parse_return(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    if len(s) == 1:
        return ReturnInstruction()
    _expect_arity(s, 2, ctx)
    return ReturnInstruction(_as_value(s[1], ctx))


@_register("throw")
def _parse_throw(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    _expect_arity(s, 2, ctx)
    return ThrowInstruction(_as_value(s[1], ctx))


@_register("phi")
def _parse_phi(s: list, idx: int, ctx: _ReadContext) -> Instruction:
    if len(s) < 3:
        raise ctx.error("(phi R V...) needs at least one incoming value")
    return PhiInstruction(_as_value(s[1], ctx), tuple(_as_value(v, ctx) for v in s[2:]))


def parse_instruction(s: Sexp, idx: int, ctx: _ReadContext) -> Instruction:
    tag = _head(s, ctx)
    parser = _INSTRUCTION_DISPATCH.get(tag)
    if parser is None:
        raise ctx.error(f"unknown instruction form ({tag} ...) at index {idx}")
    return parser(s, idx, ctx)


# ═══════════════════════════════════════════════════════════════════════
#  Class / method parsers
# ═══════════════════════════════════════════════════════════════════════

_METHOD_FLAGS = ("static", "abstract", "native")


def _parse_method(s: list, cls: ClassInfo, ctx: _ReadContext) -> MethodInfo:
    if len(s) < 3:
        raise ctx.error("(method name descriptor ...) is too short")
    name = _as_str(s[1], ctx)
    descriptor = _as_str(s[2], ctx)
    ctx.method = f"{name}{descriptor}"
    try:
        parse_descriptor(descriptor)
    except ProgramDumpError as exc:
        raise ctx.error(exc.message) from exc

    flags: Dict[str, bool] = {f: False for f in _METHOD_FLAGS}
    body: List[Instruction] = []
    seen_body = False
    for item in s[3:]:
        tag = _head(item, ctx)
        if tag in flags:
            flags[tag] = True
        elif tag == "body":
            if seen_body:
                raise ctx.error("method has two bodies")
            seen_body = True
            for idx, raw in enumerate(item[1:]):
                body.append(parse_instruction(raw, idx, ctx))
        else:
            raise ctx.error(f"unknown method attribute ({tag} ...)")

    if seen_body and (flags["abstract"] or flags["native"]):
        raise ctx.error("abstract and native methods cannot have a body")

    method = MethodInfo(
        signature=MethodSignature(cls.name, name, descriptor),
        loader=cls.loader,
        is_static=flags["static"],
        is_abstract=flags["abstract"] or cls.is_interface and not seen_body,
        is_native=flags["native"],
        instructions=tuple(body),
    )
    try:
        method.ir
    except ProgramDumpError as exc:
        raise ctx.error(exc.message) from exc
    ctx.method = None
    return method


def _parse_loader(s: list, ctx: _ReadContext) -> ClassLoaderKind:
    _expect_arity(s, 2, ctx)
    name = _as_str(s[1], ctx)
    try:
        return ClassLoaderKind(name)
    except ValueError:
        raise ctx.error(
            f"unknown loader {name!r}; expected one of {[k.value for k in ClassLoaderKind]}"
        ) from None


def _parse_class(s: Sexp, ctx: _ReadContext) -> ClassInfo:
    if _head(s, ctx) != "class" or len(s) < 2:
        raise ctx.error(f"expected (class \"Lname\" ...), got: {s!r}")
    name = _as_str(s[1], ctx)
    ctx.cls = name
    ctx.method = None
    if not name.startswith("L"):
        raise ctx.error("class names must start with 'L'")

    cls = ClassInfo(name=name, loader=ClassLoaderKind.APPLICATION)
    method_forms: List[list] = []
    for item in s[2:]:
        tag = _head(item, ctx)
        if tag == "loader":
            cls.loader = _parse_loader(item, ctx)
        elif tag == "super":
            _expect_arity(item, 2, ctx)
            cls.superclass = _as_str(item[1], ctx)
        elif tag == "interfaces":
            cls.interfaces = tuple(_as_str(i, ctx) for i in item[1:])
        elif tag == "abstract":
            cls.is_abstract = True
        elif tag == "interface":
            cls.is_interface = True
            cls.is_abstract = True
        elif tag == "method":
            method_forms.append(item)
        else:
            raise ctx.error(f"unknown class attribute ({tag} ...)")

    # Methods are read after every class attribute so that the loader and
    # interface flag are known regardless of attribute order.
    for form in method_forms:
        method = _parse_method(form, cls, ctx)
        key = method.signature.selector
        if key in cls.methods:
            raise ctx.error(f"method {method.signature} declared twice")
        cls.methods[key] = method
    return cls


def parse_program(text: str, filename: str = "<string>") -> Program:
    """Parse the text of a program dump.

    Raises
    ------
    ProgramDumpError
        If the text is not a well-formed ``(program ...)`` form.
    """
    ctx = _ReadContext(filename)
    try:
        # Keep ``nil``/``t`` as plain symbols.
        tree = sexpdata.loads(text, nil=None, true=None, false=None)
    except Exception as exc:
        raise ProgramDumpError(
            f"not a valid S-expression: {exc}", filename=filename
        ) from exc
    if _head(tree, ctx) != "program":
        raise ctx.error("a program dump must be a single (program ...) form")

    program = Program(source=filename)
    for form in tree[1:]:
        cls = _parse_class(form, ctx)
        if cls.name in program.classes:
            raise ctx.error(f"class {cls.name} declared twice")
        program.classes[cls.name] = cls
    return program


def load_program(path: Union[str, Path]) -> Program:
    """Read and parse a program dump file.

    Raises
    ------
    ProgramDumpError
        If the file cannot be read or parsed.
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ProgramDumpError(f"cannot read program dump: {exc}", filename=str(p)) from exc
    return parse_program(text, filename=str(p))


__all__ = [
    "MethodInfo",
    "ClassInfo",
    "Program",
    "parse_instruction",
    "parse_program",
    "load_program",
]
