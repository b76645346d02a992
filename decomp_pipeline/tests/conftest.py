"""
Test fixtures for decomp_pipeline.

Provides sample assembly fragments and stub stage backends.
"""
from __future__ import annotations

import asyncio
import textwrap
from typing import List, Optional, Sequence

import pytest

from decomp_pipeline.core.store import ResultStore
from decomp_pipeline.core.toolchain import tool_available
from decomp_pipeline.errors import CompilerError, GenerationError, VerificationError
from decomp_pipeline.io.schema import (
    CompilationOutcome,
    Fragment,
    GeneratedSource,
    VerificationVerdict,
)
from decomp_pipeline.runner import PipelineCoordinator
from decomp_pipeline.stages.compiler import StructuralCompiler
from decomp_pipeline.stages.generator import TemplateCodeGenerator
from decomp_pipeline.stages.verifier import HeuristicVerifier


# ── Sample assembly fragments ───────────────────────────────────────────────

MEMCPY_ASM = textwrap.dedent("""\
    memcpy:
        push    rbp
        mov     rbp, rsp
        mov     rcx, rdx
        rep movsb
        pop     rbp
        ret
""")

MEMSET_ASM = textwrap.dedent("""\
    memset:
        mov     rax, rdi
        mov     rcx, rdx
        mov     eax, esi
        rep stosb
        ret
""")

DIRECTIVE_ASM = textwrap.dedent("""\
    ; .fn checksum
        xor     eax, eax
    .loop:
        add     al, byte [rdi]
        ret
""")

ANONYMOUS_ASM = textwrap.dedent("""\
        xor     eax, eax
        ret
""")

UNBALANCED_C = textwrap.dedent("""\
    #include <stdio.h>

    int broken(void) {
        if (1) {
            return 0;
    }
""")

VALID_C = textwrap.dedent("""\
    #include <stdlib.h>

    int answer(void) {
        return 42;
    }
""")


requires_gcc = pytest.mark.skipif(not tool_available("gcc"), reason="gcc not available")


# ── Stub backends ───────────────────────────────────────────────────────────

def fixed_scorer(score: float, discrepancies: Sequence[str] = ()):
    """Scorer for HeuristicVerifier that always reports *score*."""
    def _score(fragment: Fragment, source: str):
        return score, list(discrepancies)
    return _score


class FailingGenerator:
    """Generator whose backend is always down."""

    def __init__(self, message: str = "model backend unreachable"):
        self.message = message

    async def generate(self, fragment: Fragment) -> GeneratedSource:
        raise GenerationError(self.message)

    async def refine(self, fragment, source, discrepancies) -> GeneratedSource:
        raise GenerationError(self.message)


class FixedSourceGenerator:
    """Generator that returns the same candidate for every fragment."""

    def __init__(self, source: str, confidence: float = 0.5, delay: float = 0.0):
        self.source = source
        self.confidence = confidence
        self.delay = delay
        self.refined: List[Sequence[str]] = []

    async def generate(self, fragment: Fragment) -> GeneratedSource:
        if self.delay:
            await asyncio.sleep(self.delay)
        return GeneratedSource(source=self.source, confidence=self.confidence)

    async def refine(self, fragment, source, discrepancies) -> GeneratedSource:
        self.refined.append(list(discrepancies))
        return GeneratedSource(source=source, confidence=self.confidence)


class CountingCompiler(StructuralCompiler):
    """StructuralCompiler that records its calls, optionally failing."""

    def __init__(self, error: Optional[str] = None):
        super().__init__()
        self.error = error
        self.compiled: List[str] = []
        self.released: List[CompilationOutcome] = []

    async def compile(self, source: str) -> CompilationOutcome:
        self.compiled.append(source)
        if self.error:
            raise CompilerError(self.error)
        return await super().compile(source)

    def release(self, outcome: CompilationOutcome) -> None:
        self.released.append(outcome)
        super().release(outcome)


class CountingVerifier(HeuristicVerifier):
    """HeuristicVerifier that records calls, optionally failing or stalling."""

    def __init__(self, scorer=None, error: Optional[str] = None, delay: float = 0.0):
        super().__init__(scorer=scorer)
        self.error = error
        self.delay = delay
        self.calls = 0

    async def verify(self, fragment, source, outcome) -> VerificationVerdict:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise VerificationError(self.error)
        return await super().verify(fragment, source, outcome)


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def memcpy_fragment() -> Fragment:
    return Fragment.from_text(MEMCPY_ASM)


@pytest.fixture
def memset_fragment() -> Fragment:
    return Fragment.from_text(MEMSET_ASM)


@pytest.fixture
def anonymous_fragment() -> Fragment:
    return Fragment.from_text(ANONYMOUS_ASM)


@pytest.fixture
def store() -> ResultStore:
    return ResultStore()


@pytest.fixture
def make_coordinator(store: ResultStore):
    """Factory: coordinator over offline backends, any of which can be swapped."""
    def _make(generator=None, compiler=None, verifier=None, bus=None) -> PipelineCoordinator:
        return PipelineCoordinator(
            generator=generator or TemplateCodeGenerator(),
            compiler=compiler or StructuralCompiler(),
            verifier=verifier or HeuristicVerifier(),
            store=store,
            bus=bus,
        )
    return _make
