"""FastAPI dependency helpers."""

from __future__ import annotations

from fastapi import Request

from app.context import PipelineContext


def get_context(request: Request) -> PipelineContext:
    return request.app.state.ctx  # type: ignore[attr-defined]
