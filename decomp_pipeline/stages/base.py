"""
Capability interfaces for the three pipeline stages.

The coordinator depends only on these protocols; concrete backends
(local, remote API, subprocess) are picked when the coordinator is built.
"""
from __future__ import annotations

from typing import Dict, Protocol, Sequence, runtime_checkable

from decomp_pipeline.io.schema import (
    CompilationOutcome,
    Fragment,
    GeneratedSource,
    VerificationVerdict,
)


@runtime_checkable
class CodeGenerator(Protocol):
    """Fragment → candidate source.

    Must raise ``GenerationError`` rather than return empty source.
    """

    async def generate(self, fragment: Fragment) -> GeneratedSource: ...

    async def refine(
        self,
        fragment: Fragment,
        source: str,
        discrepancies: Sequence[str],
    ) -> GeneratedSource: ...


@runtime_checkable
class Compiler(Protocol):
    """Candidate source → compilation outcome.

    Diagnostics are returned in the outcome; only resource failures raise
    ``CompilerError``.
    """

    async def compile(self, source: str) -> CompilationOutcome: ...

    def release(self, outcome: CompilationOutcome) -> None: ...

    def describe(self) -> Dict[str, str]:
        """``{"path": ..., "version": ...}`` of the underlying toolchain."""
        ...


@runtime_checkable
class BinaryVerifier(Protocol):
    """Fragment + candidate + outcome → verdict.

    Raises ``VerificationError`` when the comparison backend is unavailable.
    """

    async def verify(
        self,
        fragment: Fragment,
        source: str,
        outcome: CompilationOutcome,
    ) -> VerificationVerdict: ...
