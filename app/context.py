"""Shared application context attached to the FastAPI app."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, Dict, List

import httpx

from decomp_pipeline.core.events import ProgressBus
from decomp_pipeline.core.store import ResultStore
from decomp_pipeline.io.schema import ProgressEvent
from decomp_pipeline.runner import PipelineCoordinator
from decomp_pipeline.stages import (
    BinaryVerifier,
    CodeGenerator,
    Compiler,
    ElfTextVerifier,
    GccCompiler,
    HeuristicVerifier,
    LLMCodeGenerator,
    ObjdiffVerifier,
    StructuralCompiler,
    TemplateCodeGenerator,
)

from app.config import Settings, validate_settings

logger = logging.getLogger(__name__)

EVENTS_PER_RUN = 20
TRACKED_RUNS = 200


@dataclass
class PipelineContext:
    """Runtime dependencies kept on ``app.state`` for easy access."""

    settings: Settings
    coordinator: PipelineCoordinator
    http_client: httpx.AsyncClient | None = None
    events: Dict[str, Deque[ProgressEvent]] = field(
        default_factory=lambda: defaultdict(lambda: deque(maxlen=EVENTS_PER_RUN))
    )
    _unsubscribe: Callable[[], None] | None = None

    @property
    def store(self) -> ResultStore:
        return self.coordinator.store

    def record_event(self, event: ProgressEvent) -> None:
        if event.run_id not in self.events and len(self.events) >= TRACKED_RUNS:
            self.events.pop(next(iter(self.events)))
        self.events[event.run_id].append(event)

    def events_for(self, run_id: str) -> List[ProgressEvent]:
        return list(self.events.get(run_id, ()))

    async def close(self) -> None:
        """Release external resources."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        if self.http_client is not None:
            await self.http_client.aclose()


def build_generator(settings: Settings, client: httpx.AsyncClient | None) -> CodeGenerator:
    if settings.GENERATOR_BACKEND == "openrouter":
        return LLMCodeGenerator(
            api_key=settings.OPENROUTER_API_KEY or "",
            model=settings.LLM_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            timeout=float(settings.STAGE_TIMEOUT),
            client=client,
        )
    return TemplateCodeGenerator()


def build_compiler(settings: Settings) -> Compiler:
    if settings.COMPILER_BACKEND == "gcc":
        return GccCompiler(
            compiler_path=settings.COMPILER_PATH,
            cflags=settings.compiler_flags,
            timeout=float(settings.STAGE_TIMEOUT),
            workspace_dir=Path(settings.BUILD_WORKSPACE) if settings.BUILD_WORKSPACE else None,
        )
    return StructuralCompiler()


def build_verifier(settings: Settings) -> BinaryVerifier:
    profile = settings.profile
    if settings.VERIFIER_BACKEND == "elf":
        return ElfTextVerifier(
            assembler_path=settings.COMPILER_PATH,
            timeout=float(settings.STAGE_TIMEOUT),
            profile=profile,
        )
    if settings.VERIFIER_BACKEND == "objdiff":
        return ObjdiffVerifier(
            objdiff_path=settings.OBJDIFF_PATH,
            assembler_path=settings.COMPILER_PATH,
            timeout=float(settings.STAGE_TIMEOUT),
            profile=profile,
        )
    return HeuristicVerifier(profile=profile)


def build_context(settings: Settings) -> PipelineContext:
    """Wire backends from *settings* into a ready coordinator."""
    problems = validate_settings(settings)
    if problems:
        raise ValueError("Invalid configuration: " + "; ".join(problems))

    client = None
    if settings.GENERATOR_BACKEND == "openrouter":
        client = httpx.AsyncClient(timeout=float(settings.STAGE_TIMEOUT))

    coordinator = PipelineCoordinator(
        generator=build_generator(settings, client),
        compiler=build_compiler(settings),
        verifier=build_verifier(settings),
        store=ResultStore(max_entries=settings.HISTORY_LIMIT),
        bus=ProgressBus(),
        profile=settings.profile,
    )
    ctx = PipelineContext(settings=settings, coordinator=coordinator, http_client=client)
    ctx._unsubscribe = coordinator.bus.subscribe(ctx.record_event)

    logger.info(
        "Pipeline ready: generator=%s compiler=%s verifier=%s history=%d",
        settings.GENERATOR_BACKEND, settings.COMPILER_BACKEND,
        settings.VERIFIER_BACKEND, settings.HISTORY_LIMIT,
    )
    return ctx
