"""
taint_slicer.config
===================

Explicit configuration for one slicing run.

Nothing here is process-wide: the exclusion set is read once, stored in
an :class:`AnalysisScope` together with the program, and handed to the
engine; :class:`SlicerConfig` carries the taint-source patterns,
dependence options and failure policy to the pipeline.

    ExclusionSet     - compiled type-name patterns removed from scope
    load_exclusions  - read an exclusions file (default: packaged resource)
    AnalysisScope    - program + exclusions, built once per run
    FailurePolicy    - abort the batch on the first failure, or isolate it
    SlicerConfig     - everything the pipeline needs besides the engine
"""

from __future__ import annotations

import enum
import importlib.resources
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from .dependency_graph import ControlDependenceOptions, DataDependenceOptions
from .errors import ConfigurationError
from .program_dump import Program, load_program
from .sources import DEFAULT_TAINT_SOURCES, TaintSourcePattern

logger = logging.getLogger(__name__)

DEFAULT_EXCLUSIONS_RESOURCE = "data/exclusions.txt"


# ---------------------------------------------------------------------------
# Exclusions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExclusionSet:
    """Type-name patterns excluded from the analysed scope.

    Patterns are matched with :func:`re.match` against the type name with
    its leading ``L`` stripped, so ``java/awt/.*`` excludes
    ``Ljava/awt/Frame``.
    """

    patterns: Tuple[re.Pattern, ...] = ()

    @classmethod
    def from_lines(cls, lines: Iterable[str], source: str = "<exclusions>") -> ExclusionSet:
        compiled = []
        for lineno, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            try:
                compiled.append(re.compile(line))
            except re.error as exc:
                raise ConfigurationError(
                    f"invalid exclusion pattern {line!r} on line {lineno}: {exc}",
                    source,
                ) from exc
        return cls(tuple(compiled))

    def excludes(self, type_name: str) -> bool:
        bare = type_name[1:] if type_name.startswith("L") else type_name
        return any(p.match(bare) for p in self.patterns)

    def __len__(self) -> int:
        return len(self.patterns)


NO_EXCLUSIONS = ExclusionSet()


def load_exclusions(path: Optional[Union[str, Path]] = None) -> ExclusionSet:
    """Read an exclusions file.

    With no *path*, the default list packaged with :mod:`taint_slicer` is
    used.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or holds an invalid pattern.
    """
    if path is None:
        source = f"taint_slicer/{DEFAULT_EXCLUSIONS_RESOURCE}"
        try:
            text = (
                importlib.resources.files("taint_slicer")
                .joinpath(DEFAULT_EXCLUSIONS_RESOURCE)
                .read_text(encoding="utf-8")
            )
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"cannot read default exclusions: {exc}", source) from exc
    else:
        source = str(path)
        try:
            text = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"cannot read exclusions file: {exc}", source) from exc

    exclusions = ExclusionSet.from_lines(text.splitlines(), source)
    logger.debug("Loaded %d exclusion patterns from %s", len(exclusions), source)
    return exclusions


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisScope:
    """The program under analysis and what to leave out of it."""

    program: Program
    exclusions: ExclusionSet = NO_EXCLUSIONS

    @classmethod
    def from_dump(
        cls,
        path: Union[str, Path],
        exclusions: Optional[ExclusionSet] = None,
    ) -> AnalysisScope:
        """Load a program dump into a scope.

        Raises
        ------
        ConfigurationError
            If *path* does not exist; :class:`~taint_slicer.errors.ProgramDumpError`
            (a subclass) if it cannot be read or parsed.
        """
        p = Path(path).expanduser()
        if not p.is_file():
            raise ConfigurationError("program dump not found", str(p))
        logger.info("Reading program dump %s", p)
        return cls(load_program(p), exclusions if exclusions is not None else NO_EXCLUSIONS)


# ---------------------------------------------------------------------------
# Pipeline configuration
# ---------------------------------------------------------------------------

class FailurePolicy(enum.Enum):
    """What the pipeline does when one item of a stage fails."""

    ABORT   = "abort"     # re-raise the first failure; no partial result
    ISOLATE = "isolate"   # record per-criterion failures, keep going


@dataclass
class SlicerConfig:
    """Configuration of a slicing run.

    Attributes
    ----------
    sources : tuple of TaintSourcePattern
        Which methods count as taint sources.
    data_options, control_options
        Dependence edges followed by the forward slicer.
    failure_policy : FailurePolicy
        Whether a failing criterion aborts the batch.
    exclusions_path : Path or None
        Exclusions file; ``None`` selects the packaged default.
    """

    sources: Tuple[TaintSourcePattern, ...] = DEFAULT_TAINT_SOURCES
    data_options: DataDependenceOptions = DataDependenceOptions.FULL
    control_options: ControlDependenceOptions = ControlDependenceOptions.FULL
    failure_policy: FailurePolicy = FailurePolicy.ABORT
    exclusions_path: Optional[Path] = field(default=None)

    def load_scope(self, dump_path: Union[str, Path]) -> AnalysisScope:
        """Read the exclusions, then the dump, into an :class:`AnalysisScope`."""
        exclusions = load_exclusions(self.exclusions_path)
        return AnalysisScope.from_dump(dump_path, exclusions)


__all__ = [
    "DEFAULT_EXCLUSIONS_RESOURCE",
    "ExclusionSet",
    "NO_EXCLUSIONS",
    "load_exclusions",
    "AnalysisScope",
    "FailurePolicy",
    "SlicerConfig",
]
