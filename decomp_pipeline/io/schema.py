"""
Schema — Pydantic models shared by every pipeline stage.

Records:
  Fragment             — assembly text plus inferred identifier (immutable).
  GeneratedSource      — candidate C and backend confidence.
  CompilationOutcome   — success flag, diagnostics, artifact reference.
  VerificationVerdict  — match score, discrepancies, optional diff.
  PipelineRun          — one end-to-end record, appended to the history.
  ProgressEvent        — stage-boundary notification.

Everything a stage hands to the next stage is frozen.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from decomp_pipeline import PACKAGE_NAME, SCHEMA_VERSION
from decomp_pipeline.core.fragment import extract_identifier, is_identifier


# ── Enums ────────────────────────────────────────────────────────────────────

class Stage(str, Enum):
    GENERATE = "generate"
    COMPILE = "compile"
    VERIFY = "verify"


class RunState(str, Enum):
    """Coordinator state machine positions."""
    IDLE = "idle"
    GENERATING = "generating"
    COMPILING = "compiling"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# ── Input ────────────────────────────────────────────────────────────────────

class Fragment(BaseModel):
    """A unit of assembly text to decompile."""
    model_config = ConfigDict(frozen=True)

    text: str
    identifier: str

    @field_validator("identifier")
    @classmethod
    def check_identifier(cls, v: str) -> str:
        if not is_identifier(v):
            raise ValueError(f"not a valid C identifier: {v!r}")
        return v

    @classmethod
    def from_text(cls, text: str, identifier_hint: Optional[str] = None) -> Fragment:
        """Build a fragment, inferring the identifier unless a hint is given."""
        identifier = identifier_hint or extract_identifier(text)
        return cls(text=text, identifier=identifier)


# ── Stage outputs ────────────────────────────────────────────────────────────

class GeneratedSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    confidence: float = Field(ge=0.0, le=1.0)


class CompilationOutcome(BaseModel):
    """Result of one compile attempt.  Diagnostics are data, not errors."""
    model_config = ConfigDict(frozen=True)

    success: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    artifact_ref: Optional[str] = None


class VerificationVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    match_percentage: int = Field(ge=0, le=100)
    discrepancies: List[str] = Field(default_factory=list)
    detailed_diff: Optional[str] = None


# ── Aggregate record ─────────────────────────────────────────────────────────

class PipelineRun(BaseModel):
    """One immutable generate → compile → verify record."""
    model_config = ConfigDict(frozen=True)

    id: str
    fragment_identifier: str
    source_fragment: str
    candidate_source: str
    status: RunStatus
    match_percentage: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    discrepancies: Optional[List[str]] = None

    # Diagnostics carried over from the stages
    confidence: Optional[float] = None
    compile_errors: List[str] = Field(default_factory=list)
    compile_warnings: List[str] = Field(default_factory=list)
    detailed_diff: Optional[str] = None


class ProgressEvent(BaseModel):
    """Stage-boundary notification.  Informational only."""
    model_config = ConfigDict(frozen=True)

    run_id: str
    stage: str
    percent_complete: int = Field(ge=0, le=100)
    message: str


class HistorySnapshot(BaseModel):
    """Serialisable view of the history, most recent first."""
    package_name: str = PACKAGE_NAME
    schema_version: str = SCHEMA_VERSION
    count: int = 0
    runs: List[PipelineRun] = Field(default_factory=list)
