#!/usr/bin/env python3
"""taint_slicer/main.py — CLI entry-point for the taint slicer.

Usage examples
--------------
    # Context-insensitive call graph
    taint-slicer app.sexp 0cfa

    # One level of call-site sensitivity, with progress messages
    taint-slicer -v app.sexp vanilla-1cfa

    # Receiver-sensitive contexts for container methods only
    python -m taint_slicer app.sexp container-1cfa

Exit codes
----------
    0   Success.
    1   The analysis failed (unresolved type, void call site, engine or
        call-graph/IR inconsistency).
    2   Bad usage or configuration (wrong arguments, unknown analysis,
        missing or malformed program dump, unreadable exclusions).

The module doubles as ``python -m taint_slicer`` via the companion
``taint_slicer/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from typing import Optional, Sequence

from .engine import AnalysisAlgorithm
from .errors import ConfigurationError, SlicerError
from .pipeline import SlicingPipeline

_log = logging.getLogger("taint_slicer")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_USAGE: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``taint_slicer`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("taint_slicer")
    for old in list(root.handlers):
        root.removeHandler(old)
    root.setLevel(level)
    root.addHandler(handler)


def _build_parser() -> argparse.ArgumentParser:
    analyses = [a.value for a in AnalysisAlgorithm]
    parser = argparse.ArgumentParser(
        prog="taint-slicer",
        description=(
            "Compute forward slices from every application call to a "
            "taint source (InputStream.read*)."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(f"""\
            analyses:
              {analyses[0]:<16} context-insensitive, one object per type
              {analyses[1]:<16} one level of call-site context
              {analyses[2]:<16} receiver contexts for container methods

            example:
              taint-slicer app.sexp {analyses[0]}
        """),
    )
    parser.add_argument(
        "target",
        help="Program dump (S-expression) of the application to analyse.",
    )
    parser.add_argument(
        "analysis",
        choices=analyses,
        metavar="analysis",
        help=f"Call-graph construction algorithm: {', '.join(analyses)}.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v progress, -vv debug).",
    )
    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the slicer CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).  Usage errors
        exit through argparse with status 2.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        algorithm = AnalysisAlgorithm.from_name(args.analysis)
        result = SlicingPipeline(algorithm).run_dump(args.target)
    except ConfigurationError as exc:
        _log.error("%s", exc)
        return EXIT_USAGE
    except SlicerError as exc:
        _log.error("%s", exc)
        return EXIT_ERROR

    print(f"Collected {result.statement_count} statements in slices")
    print(f"\n\t{algorithm.value}: {result.elapsed_ms:.0f} ms")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Module execution support
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    raise SystemExit(main())
