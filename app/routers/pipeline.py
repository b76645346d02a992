"""
Pipeline Router
Assembly → C decompilation runs, verification and history.

Runs execute inside the request: the response is the finished
``PipelineRun``.  A client that supplies its own ``run_id`` can cancel the
run from another request and poll its progress events meanwhile.
"""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from decomp_pipeline import PACKAGE_NAME, PIPELINE_VERSION, SCHEMA_VERSION
from decomp_pipeline.core.fragment import IDENTIFIER_PATTERN
from decomp_pipeline.errors import PipelineError, RunCancelled
from decomp_pipeline.io.report import build_report
from decomp_pipeline.io.schema import (
    Fragment,
    HistorySnapshot,
    PipelineRun,
    ProgressEvent,
)

from app.context import PipelineContext
from app.dependencies import get_context

logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================

_IDENTIFIER_FIELD = f"^{IDENTIFIER_PATTERN}$"


class RunRequest(BaseModel):
    """Decompile one assembly fragment."""
    assembly: str = Field(..., description="Assembly text of the function")
    identifier: Optional[str] = Field(
        None,
        pattern=_IDENTIFIER_FIELD,
        description="Function name (default: inferred from the assembly)",
    )
    run_id: Optional[str] = Field(
        None,
        description="Caller-chosen run id, needed to cancel or follow the run",
    )


class VerifyRequest(BaseModel):
    """Verify an existing C candidate against its assembly."""
    assembly: str
    source: str = Field(..., description="Candidate C source")
    identifier: Optional[str] = Field(None, pattern=_IDENTIFIER_FIELD)
    run_id: Optional[str] = None


class CancelResponse(BaseModel):
    run_id: str
    cancelled: bool


class ClearResponse(BaseModel):
    cleared: int


class CompilerInfo(BaseModel):
    backend: str
    path: str
    version: str


# =============================================================================
# Helpers
# =============================================================================

def _pipeline_failure(exc: PipelineError) -> HTTPException:
    if isinstance(exc, RunCancelled):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"stage": exc.stage, "error": str(exc)},
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"stage": exc.stage, "error": str(exc.cause or exc)},
    )


def _duplicate_run(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


@router.post(
    "/runs",
    response_model=PipelineRun,
    status_code=status.HTTP_200_OK,
    summary="Generate, compile and verify C for an assembly fragment",
)
async def create_run(request: RunRequest, ctx: PipelineContext = Depends(get_context)):
    """
    Run the full pipeline on ``assembly``.

    Stage failures (model or toolchain unavailable, empty fragment) return
    502 with the failing stage.  Compile errors and low match scores are
    part of the returned run, not HTTP errors.
    """
    fragment = Fragment.from_text(request.assembly, request.identifier)
    try:
        return await ctx.coordinator.run(fragment, run_id=request.run_id)
    except PipelineError as exc:
        raise _pipeline_failure(exc) from exc
    except ValueError as exc:
        raise _duplicate_run(exc) from exc


@router.post(
    "/verify",
    response_model=PipelineRun,
    summary="Compile and verify an existing C candidate",
)
async def verify_candidate(request: VerifyRequest, ctx: PipelineContext = Depends(get_context)):
    fragment = Fragment.from_text(request.assembly, request.identifier)
    try:
        return await ctx.coordinator.verify_source(fragment, request.source, run_id=request.run_id)
    except PipelineError as exc:
        raise _pipeline_failure(exc) from exc
    except ValueError as exc:
        raise _duplicate_run(exc) from exc


@router.post("/runs/{run_id}/cancel", response_model=CancelResponse)
async def cancel_run(run_id: str, ctx: PipelineContext = Depends(get_context)):
    """Request cancellation; takes effect at the next stage boundary."""
    if not ctx.coordinator.cancel(run_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active run: {run_id}",
        )
    return CancelResponse(run_id=run_id, cancelled=True)


@router.get("/runs/{run_id}/events", response_model=List[ProgressEvent])
async def run_events(run_id: str, ctx: PipelineContext = Depends(get_context)):
    events = ctx.events_for(run_id)
    if not events:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No progress recorded for run: {run_id}",
        )
    return events


@router.get("/history", response_model=HistorySnapshot)
async def list_history(ctx: PipelineContext = Depends(get_context)):
    """All recorded runs, most recent first."""
    return ctx.store.snapshot()


@router.get("/history/{run_id}", response_model=PipelineRun)
async def get_history_entry(run_id: str, ctx: PipelineContext = Depends(get_context)):
    run = ctx.store.get(run_id)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run not found: {run_id}",
        )
    return run


@router.delete("/history", response_model=ClearResponse)
async def clear_history(ctx: PipelineContext = Depends(get_context)):
    cleared = len(ctx.store)
    ctx.store.clear()
    return ClearResponse(cleared=cleared)


@router.get("/report", response_class=PlainTextResponse)
async def verification_report(ctx: PipelineContext = Depends(get_context)):
    """Markdown verification report over the current history."""
    return PlainTextResponse(build_report(ctx.store.list()), media_type="text/markdown")


@router.get("/compiler", response_model=CompilerInfo)
def compiler_info(ctx: PipelineContext = Depends(get_context)):
    """Configured compiler backend and its version string."""
    described: Dict[str, str] = ctx.coordinator.compiler.describe()
    return CompilerInfo(backend=ctx.settings.COMPILER_BACKEND, **described)


@router.get("/info")
async def pipeline_info(ctx: PipelineContext = Depends(get_context)):
    profile = ctx.coordinator.profile
    return {
        "package_name": PACKAGE_NAME,
        "pipeline_version": PIPELINE_VERSION,
        "schema_version": SCHEMA_VERSION,
        "profile_id": profile.profile_id,
        "match_threshold": profile.match_threshold,
        "history_limit": profile.history_limit,
        "active_runs": ctx.coordinator.active_runs(),
    }
