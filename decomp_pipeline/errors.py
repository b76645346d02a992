"""
Error taxonomy for the decompilation pipeline.

Only backend/resource failures are exceptions.  Compile diagnostics and
low match scores are ordinary data (``CompilationOutcome`` /
``VerificationVerdict``) and never raise.
"""
from __future__ import annotations

from typing import Optional


class DecompPipelineError(Exception):
    """Base class for every error raised by decomp_pipeline."""


class GenerationError(DecompPipelineError):
    """Code generation backend unreachable, or the fragment is unusable."""


class CompilerError(DecompPipelineError):
    """Toolchain unavailable, timed out or exhausted its resources."""


class VerificationError(DecompPipelineError):
    """Comparison backend unavailable."""


class PipelineError(DecompPipelineError):
    """A run aborted at *stage*; *cause* is the stage error that stopped it."""

    def __init__(
        self,
        stage: str,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ):
        self.stage = stage
        self.cause = cause
        if message is None:
            detail = str(cause) if cause is not None else "aborted"
            message = f"{stage} stage failed: {detail}"
        super().__init__(message)


class RunCancelled(PipelineError):
    """The caller cancelled the run before *stage* started."""

    def __init__(self, stage: str, run_id: str):
        self.run_id = run_id
        super().__init__(stage, message=f"run {run_id} cancelled before {stage} stage")
