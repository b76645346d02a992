"""
Compilation backends: candidate C → ``CompilationOutcome``.

Both backends run the same structural gate first: candidate source with
unbalanced braces, parentheses or brackets is rejected with
``errors=["invalid structure"]`` before any toolchain is touched.

StructuralCompiler
    Offline stand-in.  Accepts well-formed source that has an ``#include``
    and a function body and hands back a synthetic artifact reference.

GccCompiler
    Writes the candidate into a private temporary directory and runs
    ``gcc -c``.  Diagnostics are parsed from stderr; the object file path is
    the artifact reference.  ``release`` removes the directory.
"""
from __future__ import annotations

import logging
import re
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from decomp_pipeline.core.structure import (
    delimiter_counts,
    has_function_body,
    has_include,
    has_main,
    is_balanced,
)
from decomp_pipeline.core.toolchain import (
    ToolMissing,
    ToolTimeout,
    run_tool,
    tool_version,
)
from decomp_pipeline.errors import CompilerError
from decomp_pipeline.io.schema import CompilationOutcome

logger = logging.getLogger(__name__)

INVALID_STRUCTURE = "invalid structure"

# Matches "file.c:12:5: error: ..." / "file.c:3:1: warning: ..."
_DIAG = re.compile(r"^(?P<loc>[^:\n]+:\d+(?::\d+)?):\s*(?P<kind>fatal error|error|warning):\s*(?P<msg>.*)$")


def structural_gate(source: str) -> Optional[CompilationOutcome]:
    """Return a failed outcome for malformed source, None if it may proceed."""
    if is_balanced(source):
        return None
    logger.info("Structural gate rejected candidate (net open counts: %s)",
                delimiter_counts(source))
    return CompilationOutcome(success=False, errors=[INVALID_STRUCTURE])


def parse_diagnostics(stderr: str) -> Tuple[List[str], List[str]]:
    """Split compiler stderr into (errors, warnings)."""
    errors: List[str] = []
    warnings: List[str] = []
    for line in stderr.splitlines():
        m = _DIAG.match(line.strip())
        if not m:
            continue
        entry = f"{Path(m.group('loc')).name}: {m.group('msg')}"
        if m.group("kind") == "warning":
            warnings.append(entry)
        else:
            errors.append(entry)
    return errors, warnings


# =============================================================================
# Offline backend
# =============================================================================

class StructuralCompiler:
    """Checks shape only; never invokes a toolchain."""

    def __init__(self) -> None:
        self._artifacts: set[str] = set()

    async def compile(self, source: str) -> CompilationOutcome:
        gated = structural_gate(source)
        if gated is not None:
            return gated

        if not has_include(source) or not has_function_body(source):
            return CompilationOutcome(
                success=False,
                errors=["missing #include or function body"],
            )

        warnings = [] if has_main(source) else ["no main function found"]
        ref = f"memory://compiled_{uuid.uuid4().hex[:12]}.o"
        self._artifacts.add(ref)
        logger.info("Compiled %d chars (structural) → %s", len(source), ref)
        return CompilationOutcome(success=True, warnings=warnings, artifact_ref=ref)

    def release(self, outcome: CompilationOutcome) -> None:
        if outcome.artifact_ref:
            self._artifacts.discard(outcome.artifact_ref)

    def describe(self) -> Dict[str, str]:
        return {"path": "structural", "version": "structural-check v0"}


# =============================================================================
# GCC backend
# =============================================================================

DEFAULT_CFLAGS = ["-std=c11", "-O2", "-fno-asynchronous-unwind-tables"]


class GccCompiler:
    """
    Compile candidates with a real C compiler.

    Parameters
    ----------
    compiler_path : str
        Compiler executable (``gcc``, ``clang``, a cross compiler…).
    cflags : list of str, optional
        Flags placed before ``-c``.  Defaults to ``DEFAULT_CFLAGS``.
    timeout : float
        Per-compile timeout in seconds.
    workspace_dir : Path, optional
        Parent directory for per-compile temporary directories.
    """

    def __init__(
        self,
        compiler_path: str = "gcc",
        cflags: Optional[List[str]] = None,
        timeout: float = 60.0,
        workspace_dir: Optional[Path] = None,
    ):
        self.compiler_path = compiler_path
        self.cflags = list(cflags) if cflags is not None else list(DEFAULT_CFLAGS)
        self.timeout = timeout
        self.workspace_dir = workspace_dir
        self._workdirs: Dict[str, Path] = {}

    async def compile(self, source: str) -> CompilationOutcome:
        gated = structural_gate(source)
        if gated is not None:
            return gated

        if self.workspace_dir is not None:
            self.workspace_dir.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="decomp_", dir=self.workspace_dir))
        src_path = workdir / "candidate.c"
        obj_path = workdir / "candidate.o"
        src_path.write_text(source, encoding="utf-8")

        cmd = [self.compiler_path] + self.cflags + ["-c", str(src_path), "-o", str(obj_path)]
        try:
            result = await run_tool(cmd, cwd=workdir, timeout=self.timeout)
        except (ToolMissing, ToolTimeout) as exc:
            shutil.rmtree(workdir, ignore_errors=True)
            logger.error("Compiler unavailable: %s", exc)
            raise CompilerError(str(exc)) from exc

        errors, warnings = parse_diagnostics(result.stderr)

        if result.returncode != 0 or not obj_path.exists():
            if not errors:
                tail = [ln for ln in result.stderr.splitlines() if ln.strip()][-5:]
                errors = tail or [f"{self.compiler_path} exited with code {result.returncode}"]
            shutil.rmtree(workdir, ignore_errors=True)
            logger.info("Compilation failed with %d error(s)", len(errors))
            return CompilationOutcome(success=False, errors=errors, warnings=warnings)

        ref = str(obj_path)
        self._workdirs[ref] = workdir
        logger.info("Compiled candidate → %s (%d warning(s), %d ms)",
                    obj_path.name, len(warnings), result.duration_ms)
        return CompilationOutcome(success=True, warnings=warnings, artifact_ref=ref)

    def release(self, outcome: CompilationOutcome) -> None:
        """Delete the temporary directory behind *outcome*'s artifact."""
        if not outcome.artifact_ref:
            return
        workdir = self._workdirs.pop(outcome.artifact_ref, None)
        if workdir is not None:
            shutil.rmtree(workdir, ignore_errors=True)
            logger.debug("Released %s", workdir)

    def describe(self) -> Dict[str, str]:
        return {"path": self.compiler_path, "version": tool_version(self.compiler_path)}
