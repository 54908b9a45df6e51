# tests/test_pipeline.py
"""
End-to-end tests for the slicing pipeline: source discovery, caller and
call-site collection, criteria, slices and the failure policies.
"""

import pytest

from taint_slicer.config import AnalysisScope, FailurePolicy, SlicerConfig
from taint_slicer.engine import AnalysisAlgorithm, PropagationEngine
from taint_slicer.errors import (
    CallSiteNotFoundError,
    ConfigurationError,
    EngineError,
    ProgramDumpError,
    UnresolvedTypeError,
    VoidReturnError,
)
from taint_slicer.pipeline import (
    SlicingPipeline,
    StageFailure,
    run_pipeline,
    run_stage,
)
from taint_slicer.sources import TaintSourcePattern
from taint_slicer.statements import Statement, StatementKind
from tests.conftest import (
    ABSTRACT_STREAM_LIB,
    APP_ABSTRACT_READ,
    APP_BUFFERED_READ,
    APP_NO_SOURCES,
    APP_ONE_READ,
    APP_TWO_ID_CALLS,
    APP_VOID_READ,
    BIS_READ,
    BUFFERED_LIB,
    FIS_READ,
    FIS_READ_FULLY,
    MAIN,
    OBJECT_LIB,
    dump,
    make_scope,
    stream_program,
)

VOID_READS = SlicerConfig(sources=(TaintSourcePattern("Ljava/io/InputStream", "read", "V"),))


def _run(text, config=None, algorithm=AnalysisAlgorithm.ZERO_CFA):
    return SlicingPipeline(algorithm, config).run(make_scope(text))


# ── Stage outcomes ───────────────────────────────────────────────

class TestRunStage:

    def test_success(self):
        outcome = run_stage("slice", lambda x: x + 1, 1)
        assert outcome.ok
        assert outcome.value == 2

    def test_slicer_error_becomes_failure(self):
        def fail():
            raise VoidReturnError("void call", "Lx.f()V")
        outcome = run_stage("criterion", fail)
        assert not outcome.ok
        assert outcome.failure.kind == "void-return"
        assert str(outcome.failure) == "criterion: void-return: void call [Lx.f()V]"

    def test_other_exceptions_propagate(self):
        def boom():
            raise KeyError("x")
        with pytest.raises(KeyError):
            run_stage("slice", boom)


# ── Scenarios ────────────────────────────────────────────────────

class TestPipelineScenarios:

    def test_no_source_calls(self):
        result = _run(stream_program(APP_NO_SOURCES))
        assert result.sources == [FIS_READ]
        assert dict(result.taint_sources) == {}
        assert result.criteria == []
        assert result.slices == []
        assert result.statement_count == 0
        assert result.statements == []

    def test_one_read(self):
        result = _run(stream_program(APP_ONE_READ))
        assert list(result.taint_sources) == [FIS_READ]
        (record,) = result.call_sites
        assert record.source == FIS_READ
        assert record.statement.kind is StatementKind.NORMAL
        assert record.statement.index == 2
        (criterion,) = result.criteria
        assert criterion.kind is StatementKind.NORMAL_RETURN_CALLER
        (sliced,) = result.slices
        main = criterion.node
        assert Statement.normal(main, 4) in sliced.statements
        assert Statement.normal(main, 5) in sliced.statements
        assert result.statement_count == 7
        assert not result.has_failures()
        assert result.elapsed_ms >= 0

    def test_only_abstract_sources(self):
        result = _run(dump(OBJECT_LIB, ABSTRACT_STREAM_LIB, APP_ABSTRACT_READ))
        assert result.sources == []
        assert result.slices == []
        assert result.statement_count == 0

    def test_library_callers_are_not_sources(self):
        result = _run(stream_program(BUFFERED_LIB, APP_BUFFERED_READ))
        assert set(result.sources) == {FIS_READ, BIS_READ}
        assert list(result.taint_sources) == [BIS_READ]
        callers = result.taint_sources[BIS_READ]
        assert {n.signature for n in callers} == {MAIN}
        assert len(result.slices) == 1

    def test_taint_sources_are_read_only(self):
        result = _run(stream_program(APP_ONE_READ))
        with pytest.raises(TypeError):
            result.taint_sources[BIS_READ] = frozenset()

    @pytest.mark.parametrize("algorithm", list(AnalysisAlgorithm))
    def test_every_algorithm(self, algorithm):
        result = _run(stream_program(APP_TWO_ID_CALLS), algorithm=algorithm)
        assert len(result.slices) == 1
        assert result.algorithm is algorithm


# ── Concatenation ────────────────────────────────────────────────

class TestStatements:

    def test_slices_are_concatenated_with_repeats(self):
        app = '''
        (class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
          (method "main" "([Ljava/lang/String;)V" (static)
            (body
              (new 2 "Ljava/io/FileInputStream")
              (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
              (invoke 4 virtual "Ljava/io/InputStream" "read" "()I" 2)
              (binop 5 add 3 4)
              (return))))
        '''
        result = _run(stream_program(app))
        assert len(result.slices) == 2
        assert len(result.statements) == result.statement_count
        # The add uses both reads, so it appears in both slices.
        main = result.criteria[0].node
        assert result.statements.count(Statement.normal(main, 3)) == 2

    def test_slice_order_is_stable(self):
        result = _run(stream_program(APP_ONE_READ))
        (sliced,) = result.slices
        assert sliced.ordered() == sorted(sliced.statements, key=lambda s: s.sort_key)


# ── Failure policies ─────────────────────────────────────────────

class TestFailurePolicy:

    def test_abort_reraises_void_return(self):
        with pytest.raises(VoidReturnError):
            _run(stream_program(APP_VOID_READ), VOID_READS)

    def test_isolate_records_void_return(self):
        config = SlicerConfig(sources=VOID_READS.sources, failure_policy=FailurePolicy.ISOLATE)
        result = _run(stream_program(APP_VOID_READ), config)
        assert result.sources == [FIS_READ_FULLY]
        assert len(result.call_sites) == 1
        assert result.criteria == []
        assert result.slices == []
        (failure,) = result.failures
        assert isinstance(failure, StageFailure)
        assert failure.stage == "criterion"
        assert failure.kind == "void-return"
        assert isinstance(failure.error, VoidReturnError)

    def test_isolate_keeps_the_good_criteria(self):
        app = '''
        (class "Lapp/Main" (loader application) (super "Ljava/lang/Object")
          (method "main" "([Ljava/lang/String;)V" (static)
            (body
              (new 2 "Ljava/io/FileInputStream")
              (invoke _ special "Ljava/io/FileInputStream" "<init>" "()V" 2)
              (invoke 3 virtual "Ljava/io/InputStream" "read" "()I" 2)
              (const 4 16)
              (invoke _ virtual "Ljava/io/InputStream" "readFully" "([B)V" 2 4)
              (return))))
        '''
        config = SlicerConfig(
            sources=(
                TaintSourcePattern("Ljava/io/InputStream", "read", "I"),
                TaintSourcePattern("Ljava/io/InputStream", "read", "V"),
            ),
            failure_policy=FailurePolicy.ISOLATE,
        )
        result = _run(stream_program(app), config)
        assert result.sources == [FIS_READ, FIS_READ_FULLY]
        (sliced,) = result.slices
        assert sliced.source == FIS_READ
        assert sliced.criterion.index == 2
        (failure,) = result.failures
        assert failure.kind == "void-return"
        assert result.has_failures()

    def test_isolate_still_aborts_on_inconsistency(self, monkeypatch):
        def broken(node, target):
            raise CallSiteNotFoundError("no call instruction", str(node))
        monkeypatch.setattr("taint_slicer.pipeline.find_call_sites", broken)
        config = SlicerConfig(failure_policy=FailurePolicy.ISOLATE)
        with pytest.raises(CallSiteNotFoundError):
            _run(stream_program(APP_ONE_READ), config)

    def test_engine_failure_is_wrapped(self):
        class BrokenEngine(PropagationEngine):
            def build_call_graph(self, entrypoints, cha):
                raise RuntimeError("solver diverged")

        pipeline = SlicingPipeline(AnalysisAlgorithm.ZERO_CFA, engine=BrokenEngine())
        with pytest.raises(EngineError) as excinfo:
            pipeline.run(make_scope(stream_program(APP_ONE_READ)))
        assert "solver diverged" in excinfo.value.message
        assert isinstance(excinfo.value.__cause__, RuntimeError)


# ── Dump files ───────────────────────────────────────────────────

class TestRunDump:

    def test_run_dump(self, dump_file):
        path = dump_file(stream_program(APP_ONE_READ))
        result = run_pipeline(path, "vanilla-1cfa")
        assert result.algorithm is AnalysisAlgorithm.VANILLA_ONE_CFA
        assert result.statement_count == 7

    def test_missing_dump(self, tmp_path):
        with pytest.raises(ConfigurationError) as excinfo:
            run_pipeline(tmp_path / "absent.sexp", "0cfa")
        assert "absent.sexp" in excinfo.value.subject

    def test_malformed_dump(self, dump_file):
        path = dump_file("(program (class")
        with pytest.raises(ProgramDumpError):
            run_pipeline(path, "0cfa")

    def test_unknown_algorithm(self, dump_file):
        path = dump_file(stream_program(APP_ONE_READ))
        with pytest.raises(ConfigurationError):
            run_pipeline(path, "2cfa")

    def test_excluded_source_type(self, dump_file, tmp_path):
        exclusions = tmp_path / "exclusions.txt"
        exclusions.write_text("# drop all of java/io\njava/io/.*\n", encoding="utf-8")
        path = dump_file(stream_program(APP_ONE_READ))
        config = SlicerConfig(exclusions_path=exclusions)
        with pytest.raises(UnresolvedTypeError) as excinfo:
            SlicingPipeline(AnalysisAlgorithm.ZERO_CFA, config).run_dump(path)
        assert excinfo.value.subject == "Ljava/io/InputStream"
        assert "excluded" in excinfo.value.message

    def test_exclusions_not_utf8(self, dump_file, tmp_path):
        exclusions = tmp_path / "exclusions.txt"
        exclusions.write_bytes(b"java/\xff.*\n")
        config = SlicerConfig(exclusions_path=exclusions)
        pipeline = SlicingPipeline(AnalysisAlgorithm.ZERO_CFA, config)
        with pytest.raises(ConfigurationError, match="cannot read exclusions") as excinfo:
            pipeline.run_dump(dump_file(stream_program(APP_ONE_READ)))
        assert excinfo.value.subject == str(exclusions)

    def test_scope_from_dump(self, dump_file):
        scope = AnalysisScope.from_dump(dump_file(stream_program(APP_ONE_READ)))
        assert "Lapp/Main" in scope.program.classes
        assert len(scope.exclusions) == 0
