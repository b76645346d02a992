"""Tests for compilation backends."""
import asyncio
from pathlib import Path

import pytest

from decomp_pipeline.errors import CompilerError
from decomp_pipeline.stages.base import Compiler
from decomp_pipeline.stages.compiler import (
    INVALID_STRUCTURE,
    GccCompiler,
    StructuralCompiler,
    parse_diagnostics,
)
from decomp_pipeline.stages.generator import render_skeleton

from .conftest import UNBALANCED_C, VALID_C, requires_gcc


class TestParseDiagnostics:

    def test_errors_and_warnings_split(self):
        stderr = (
            "/tmp/decomp_x/candidate.c: In function 'f':\n"
            "/tmp/decomp_x/candidate.c:3:12: error: 'x' undeclared (first use in this function)\n"
            "/tmp/decomp_x/candidate.c:5:1: warning: control reaches end of non-void function\n"
            "    3 |     return x;\n"
        )
        errors, warnings = parse_diagnostics(stderr)
        assert errors == ["candidate.c:3:12: 'x' undeclared (first use in this function)"]
        assert warnings == ["candidate.c:5:1: control reaches end of non-void function"]

    def test_fatal_error_counts_as_error(self):
        errors, _ = parse_diagnostics("c.c:1:10: fatal error: nope.h: No such file or directory")
        assert len(errors) == 1

    def test_noise_ignored(self):
        assert parse_diagnostics("compilation terminated.\n") == ([], [])


class TestStructuralCompiler:
    """Offline backend: shape checks only."""

    def test_satisfies_protocol(self):
        assert isinstance(StructuralCompiler(), Compiler)

    def test_skeleton_compiles(self):
        outcome = asyncio.run(StructuralCompiler().compile(render_skeleton("memcpy")))
        assert outcome.success
        assert outcome.errors == []
        assert outcome.warnings == ["no main function found"]
        assert outcome.artifact_ref.startswith("memory://")

    def test_main_suppresses_warning(self):
        src = "#include <stdio.h>\nint main(void) { return 0; }\n"
        outcome = asyncio.run(StructuralCompiler().compile(src))
        assert outcome.success
        assert outcome.warnings == []

    def test_unbalanced_rejected(self):
        outcome = asyncio.run(StructuralCompiler().compile(UNBALANCED_C))
        assert not outcome.success
        assert outcome.errors == [INVALID_STRUCTURE]
        assert outcome.artifact_ref is None

    def test_missing_include(self):
        outcome = asyncio.run(StructuralCompiler().compile("int f(void) { return 0; }"))
        assert not outcome.success
        assert outcome.errors == ["missing #include or function body"]

    def test_describe(self):
        assert StructuralCompiler().describe()["path"] == "structural"


class TestGccCompilerOffline:
    """Paths that must not reach the toolchain."""

    def test_unbalanced_never_invokes_compiler(self, tmp_path: Path):
        """The structural gate runs first; a bogus compiler path is never used."""
        compiler = GccCompiler(compiler_path="/nonexistent/cc", workspace_dir=tmp_path)
        outcome = asyncio.run(compiler.compile(UNBALANCED_C))
        assert not outcome.success
        assert outcome.errors == [INVALID_STRUCTURE]
        assert list(tmp_path.iterdir()) == []

    def test_missing_compiler_raises(self, tmp_path: Path):
        compiler = GccCompiler(compiler_path="/nonexistent/cc", workspace_dir=tmp_path)
        with pytest.raises(CompilerError):
            asyncio.run(compiler.compile(VALID_C))
        assert list(tmp_path.iterdir()) == []

    def test_describe_unknown_compiler(self):
        info = GccCompiler(compiler_path="/nonexistent/cc").describe()
        assert info == {"path": "/nonexistent/cc", "version": "unknown"}


@requires_gcc
class TestGccCompiler:
    """Real toolchain runs."""

    def test_valid_source(self, tmp_path: Path):
        compiler = GccCompiler(workspace_dir=tmp_path)
        outcome = asyncio.run(compiler.compile(VALID_C))
        assert outcome.success, outcome.errors
        obj = Path(outcome.artifact_ref)
        assert obj.is_file()
        assert obj.read_bytes()[:4] == b"\x7fELF"

        compiler.release(outcome)
        assert not obj.exists()
        assert list(tmp_path.iterdir()) == []

    def test_compile_error_is_data(self, tmp_path: Path):
        src = "#include <stdlib.h>\nint f(void) { return undefined_name; }\n"
        compiler = GccCompiler(workspace_dir=tmp_path)
        outcome = asyncio.run(compiler.compile(src))
        assert not outcome.success
        assert outcome.errors
        assert any("undefined_name" in e for e in outcome.errors)
        assert outcome.artifact_ref is None
        assert list(tmp_path.iterdir()) == []

    def test_warnings_captured(self, tmp_path: Path):
        src = "#include <stdlib.h>\nint f(int a) { if (a) return 1; }\n"
        compiler = GccCompiler(cflags=["-std=c11", "-O2", "-Wall"], workspace_dir=tmp_path)
        outcome = asyncio.run(compiler.compile(src))
        assert outcome.success
        assert outcome.warnings
        compiler.release(outcome)

    def test_describe_reports_version(self):
        assert GccCompiler().describe()["version"] != "unknown"
