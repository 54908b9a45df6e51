# tests/conftest.py
"""
Shared fixtures for the taint_slicer test-suite.

Program dumps are kept as text constants and combined with
:func:`dump`, so each test module reads like the program it analyses.
Builder helpers run the engine on a dump and hand back the pieces the
component under test needs.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from taint_slicer.callgraph import CallGraph, CallGraphNode
from taint_slicer.class_hierarchy import ClassHierarchy
from taint_slicer.config import AnalysisScope, ExclusionSet
from taint_slicer.engine import AnalysisAlgorithm, PropagationEngine
from taint_slicer.pointer_analysis import PointsToResult
from taint_slicer.program_dump import Program, parse_program
from taint_slicer.references import MethodSignature


# ── Library classes (primordial loader) ──────────────────────────

OBJECT_LIB = '''
(class "Ljava/lang/Object" (loader primordial)
  (method "<init>" "()V" (body (return))))
'''

STREAM_LIB = '''
(class "Ljava/io/InputStream" (loader primordial) (super "Ljava/lang/Object") (abstract)
  (method "<init>" "()V" (body (return)))
  (method "read" "()I" (abstract))
  (method "close" "()V" (body (return))))
(class "Ljava/io/FileInputStream" (loader primordial) (super "Ljava/io/InputStream")
  (method "<init>" "()V" (body (return)))
  (method "read" "()I" (native))
  (method "readFully" "([B)V" (native)))
'''

# read() is only ever declared abstract.
ABSTRACT_STREAM_LIB = '''
(class "Ljava/io/InputStream" (loader primordial) (super "Ljava/lang/Object") (abstract)
  (method "read" "()I" (abstract)))
(class "Ljava/io/FilterInputStream" (loader primordial) (super "Ljava/io/InputStream") (abstract)
  (method "read" "()I" (abstract)))
'''

# A library stream whose read() itself calls FileInputStream.read().
BUFFERED_LIB = '''
(class "Ljava/io/BufferedInputStream" (loader primordial) (super "Ljava/io/InputStream")
  (method "<init>" "()V" (body (return)))
  (method "read" "()I"
    (body
      (new 2 "Ljava/io/FileInputStream")
      (invoke _ special "Ljava/io/FileInputStream" "<init>" "()V" 2)
      (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
      (return 3))))
'''

CONTAINER_LIB = '''
(class "Ljava/util/Collection" (loader primordial) (interface)
  (method "add" "(Ljava/lang/Object;)Z" (abstract)))
(class "Ljava/util/ArrayList" (loader primordial) (super "Ljava/lang/Object")
  (interfaces "Ljava/util/Collection")
  (method "<init>" "()V" (body (return)))
  (method "add" "(Ljava/lang/Object;)Z"
    (body
      (putfield 1 "Ljava/util/ArrayList" "elem" 2)
      (const 3 1)
      (return 3))))
'''


# ── Application classes ──────────────────────────────────────────

# No taint-source calls at all.
APP_NO_SOURCES = '''
(class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
  (method "main" "([Ljava/lang/String;)V" (static)
    (body
      (const 2 1)
      (const 3 2)
      (binop 4 add 2 3)
      (return))))
'''

# read() once; its value feeds a branch guarding a call to log().
#   0 new   1 <init>   2 read   3 const   4 if   5 log(v3)   6 return
APP_ONE_READ = '''
(class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
  (method "main" "([Ljava/lang/String;)V" (static)
    (body
      (new 2 "Ljava/io/FileInputStream")
      (invoke _ special "Ljava/io/FileInputStream" "<init>" "()V" 2)
      (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
      (const 4 0)
      (if lt 3 4 6)
      (invoke _ static "Lapp/Main" "log" "(I)V" 3)
      (return)))
  (method "log" "(I)V" (static)
    (body (return))))
'''

# read() value passed through id() at 3; id() is called again at 5 with
# an untainted constant.
APP_TWO_ID_CALLS = '''
(class "Lapp/Util" (loader application) (super "Ljava/lang/Object")
  (method "id" "(I)I" (static)
    (body (return 1))))
(class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
  (method "main" "([Ljava/lang/String;)V" (static)
    (body
      (new 2 "Ljava/io/FileInputStream")
      (invoke _ special "Ljava/io/FileInputStream" "<init>" "()V" 2)
      (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
      (invoke 4 static "Lapp/Util" "id" "(I)I" 3)
      (const 5 7)
      (invoke 6 static "Lapp/Util" "id" "(I)I" 5)
      (return))))
'''

# read() value stored in a Box field at 4, read back by unbox().
APP_HEAP_FLOW = '''
(class "Lapp/Box" (loader application) (super "Ljava/lang/Object"))
(class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
  (method "main" "([Ljava/lang/String;)V" (static)
    (body
      (new 2 "Ljava/io/FileInputStream")
      (invoke _ special "Ljava/io/FileInputStream" "<init>" "()V" 2)
      (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
      (new 4 "Lapp/Box")
      (putfield 4 "Lapp/Box" "value" 3)
      (invoke 5 static "Lapp/Main" "unbox" "(Lapp/Box;)I" 4)
      (return)))
  (method "unbox" "(Lapp/Box;)I" (static)
    (body
      (getfield 2 1 "Lapp/Box" "value")
      (return 2))))
'''

# read() through a BufferedInputStream only.
APP_BUFFERED_READ = '''
(class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
  (method "main" "([Ljava/lang/String;)V" (static)
    (body
      (new 2 "Ljava/io/BufferedInputStream")
      (invoke _ special "Ljava/io/BufferedInputStream" "<init>" "()V" 2)
      (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
      (return))))
'''

# read() on an entrypoint-independent stream whose read() is abstract.
APP_ABSTRACT_READ = '''
(class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
  (method "main" "([Ljava/lang/String;)V" (static)
    (body
      (new 2 "Ljava/io/FilterInputStream")
      (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
      (return))))
'''

# A void-returning read operation.
APP_VOID_READ = '''
(class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
  (method "main" "([Ljava/lang/String;)V" (static)
    (body
      (new 2 "Ljava/io/FileInputStream")
      (invoke _ special "Ljava/io/FileInputStream" "<init>" "()V" 2)
      (const 3 16)
      (invoke _ virtual "Ljava/io/InputStream" "readFully" "([B)V" 2 3)
      (return))))
'''

# Two lists, one add() on each.
APP_TWO_LISTS = '''
(class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
  (method "main" "([Ljava/lang/String;)V" (static)
    (body
      (new 2 "Ljava/util/ArrayList")
      (invoke _ special "Ljava/util/ArrayList" "<init>" "()V" 2)
      (new 3 "Ljava/util/ArrayList")
      (invoke _ special "Ljava/util/ArrayList" "<init>" "()V" 3)
      (new 4 "Ljava/lang/Object")
      (invoke 5 interface "Ljava/util/Collection" "add" "(Ljava/lang/Object;)Z" 2 4)
      (invoke 6 interface "Ljava/util/Collection" "add" "(Ljava/lang/Object;)Z" 3 4)
      (return))))
'''


# ── Well-known signatures ────────────────────────────────────────

MAIN = MethodSignature("Lapp/Main", "main", "([Ljava/lang/String;)V")
FIS_READ = MethodSignature("Ljava/io/FileInputStream", "read", "()I")
FIS_READ_FULLY = MethodSignature("Ljava/io/FileInputStream", "readFully", "([B)V")
BIS_READ = MethodSignature("Ljava/io/BufferedInputStream", "read", "()I")
IS_READ = MethodSignature("Ljava/io/InputStream", "read", "()I")
UTIL_ID = MethodSignature("Lapp/Util", "id", "(I)I")
UNBOX = MethodSignature("Lapp/Main", "unbox", "(Lapp/Box;)I")
LIST_ADD = MethodSignature("Ljava/util/ArrayList", "add", "(Ljava/lang/Object;)Z")


# ── Builders ─────────────────────────────────────────────────────

def dump(*parts: str) -> str:
    """Wrap class forms into a ``(program ...)`` dump."""
    return "(program\n" + "\n".join(parts) + "\n)"


def stream_program(*app: str) -> str:
    """Object + InputStream/FileInputStream + the given app classes."""
    return dump(OBJECT_LIB, STREAM_LIB, *app)


def make_scope(text: str, exclusions: Optional[ExclusionSet] = None) -> AnalysisScope:
    return AnalysisScope(parse_program(text), exclusions if exclusions is not None else ExclusionSet())


def make_hierarchy(text: str) -> ClassHierarchy:
    return ClassHierarchy(parse_program(text))


def build(
    text: str,
    algorithm: AnalysisAlgorithm = AnalysisAlgorithm.ZERO_CFA,
) -> Tuple[CallGraph, PointsToResult, ClassHierarchy]:
    """Run the shipped engine on *text*."""
    engine = PropagationEngine(algorithm)
    cha = engine.make_class_hierarchy(make_scope(text))
    cg, pa = engine.build_call_graph(engine.make_entrypoints(cha), cha)
    return cg, pa, cha


def only_node(cg: CallGraph, signature: MethodSignature) -> CallGraphNode:
    nodes: List[CallGraphNode] = cg.nodes_for(signature)
    assert len(nodes) == 1, f"expected one node for {signature}, got {nodes}"
    return nodes[0]


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def dump_file(tmp_path: Path):
    """Write a dump to a temporary ``.sexp`` file and return its path."""
    def _write(text: str, name: str = "app.sexp") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write


@pytest.fixture
def one_read_graph():
    return build(stream_program(APP_ONE_READ))
