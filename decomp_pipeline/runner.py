"""
Pipeline runner — generate → compile → verify for one fragment.

``PipelineCoordinator`` sequences the three stage backends, turns their
outputs into a single ``PipelineRun``, records it in the ``ResultStore``
and publishes progress on the ``ProgressBus``.  It can be driven from the
API, from the CLI below, or programmatically::

    coordinator = PipelineCoordinator(
        TemplateCodeGenerator(), StructuralCompiler(), HeuristicVerifier(),
        store=ResultStore(),
    )
    run = asyncio.run(coordinator.run(Fragment.from_text(asm)))

Per run the state machine is strictly linear::

    idle → generating → compiling → verifying → completed
                 ↘           ↘            ↘
                             failed

Each stage is attempted once.  A stage error aborts the run with
``PipelineError(stage, cause)`` and nothing is recorded.  Cancellation is
checked on entry to every stage.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import threading
import time
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from decomp_pipeline.core.events import ProgressBus
from decomp_pipeline.core.store import ResultStore
from decomp_pipeline.errors import PipelineError, RunCancelled
from decomp_pipeline.io.report import write_outputs
from decomp_pipeline.io.schema import (
    CompilationOutcome,
    Fragment,
    GeneratedSource,
    PipelineRun,
    ProgressEvent,
    RunState,
    Stage,
    VerificationVerdict,
)
from decomp_pipeline.policy.profile import PipelineProfile
from decomp_pipeline.policy.verdict import derive_status
from decomp_pipeline.stages.base import BinaryVerifier, CodeGenerator, Compiler

logger = logging.getLogger(__name__)

COMPLETED = "completed"
FAILED = "failed"
TRACKED_STATES = 1000

# (stage, percent on entry, message)
_FULL_PLAN: Tuple[Tuple[Stage, int, str], ...] = (
    (Stage.GENERATE, 0, "Generating C code..."),
    (Stage.COMPILE, 30, "Compiling C code..."),
    (Stage.VERIFY, 60, "Verifying decompilation..."),
)
_VERIFY_ONLY_PLAN: Tuple[Tuple[Stage, int, str], ...] = (
    (Stage.COMPILE, 0, "Compiling C code..."),
    (Stage.VERIFY, 50, "Comparing objects..."),
)

_STATE_FOR_STAGE = {
    Stage.GENERATE: RunState.GENERATING,
    Stage.COMPILE: RunState.COMPILING,
    Stage.VERIFY: RunState.VERIFYING,
}


class PipelineCoordinator:
    """
    Orchestrates one generate → compile → verify run per call.

    Parameters
    ----------
    generator, compiler, verifier
        Stage backends satisfying the protocols in ``stages.base``.
    store : ResultStore
        History that receives every completed run.
    bus : ProgressBus, optional
        Progress channel; a private one is created when omitted.
    profile : PipelineProfile, optional
        Defaults to ``PipelineProfile.v0()``.
    """

    def __init__(
        self,
        generator: CodeGenerator,
        compiler: Compiler,
        verifier: BinaryVerifier,
        store: ResultStore,
        bus: Optional[ProgressBus] = None,
        profile: Optional[PipelineProfile] = None,
    ):
        self.generator = generator
        self.compiler = compiler
        self.verifier = verifier
        self.store = store
        self.bus = bus or ProgressBus()
        self.profile = profile or PipelineProfile.v0()

        self._cancel: Dict[str, asyncio.Event] = {}
        self._states: Dict[str, RunState] = {}
        self._lock = threading.Lock()
        self._last_stamp = 0

    # -----------------------------------------------------------------
    # Public operations
    # -----------------------------------------------------------------

    async def run(self, fragment: Fragment, *, run_id: Optional[str] = None) -> PipelineRun:
        """Decompile *fragment* end to end and record the result."""
        return await self._execute(
            fragment,
            run_id,
            _FULL_PLAN,
            produce=lambda: self.generator.generate(fragment),
        )

    async def verify_source(
        self,
        fragment: Fragment,
        source: str,
        *,
        run_id: Optional[str] = None,
    ) -> PipelineRun:
        """Compile and verify an existing candidate against *fragment*."""
        return await self._execute(fragment, run_id, _VERIFY_ONLY_PLAN, given_source=source)

    async def refine(
        self,
        fragment: Fragment,
        previous: PipelineRun,
        *,
        run_id: Optional[str] = None,
    ) -> PipelineRun:
        """
        Ask the generator to improve *previous* using its discrepancies, then
        compile and verify the result as a new run.  Never called
        automatically; retrying is always the caller's decision.
        """
        return await self._execute(
            fragment,
            run_id,
            _FULL_PLAN,
            produce=lambda: self.generator.refine(
                fragment, previous.candidate_source, previous.discrepancies or [],
            ),
        )

    def cancel(self, run_id: str) -> bool:
        """Request cancellation; takes effect at the next stage boundary."""
        with self._lock:
            event = self._cancel.get(run_id)
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested for %s", run_id)
        return True

    def active_runs(self) -> List[str]:
        with self._lock:
            return list(self._cancel)

    def state(self, run_id: str) -> Optional[RunState]:
        with self._lock:
            return self._states.get(run_id)

    def new_run_id(self) -> str:
        """Unique id whose lexicographic order follows creation order."""
        with self._lock:
            stamp = max(time.time_ns(), self._last_stamp + 1)
            self._last_stamp = stamp
        return f"decomp_{stamp:020d}_{uuid.uuid4().hex[:6]}"

    # -----------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------

    async def _execute(
        self,
        fragment: Fragment,
        run_id: Optional[str],
        plan: Tuple[Tuple[Stage, int, str], ...],
        *,
        produce: Optional[Callable[[], Awaitable[GeneratedSource]]] = None,
        given_source: Optional[str] = None,
    ) -> PipelineRun:
        run_id = run_id or self.new_run_id()
        self._register(run_id)
        entry = {stage: (pct, msg) for stage, pct, msg in plan}
        logger.info("=== Run %s for %s ===", run_id, fragment.identifier)

        try:
            # ── Stage 1: generate ────────────────────────────────────
            confidence: Optional[float] = None
            if produce is not None:
                self._enter(run_id, Stage.GENERATE, *entry[Stage.GENERATE])
                generated = await self._attempt(Stage.GENERATE, produce())
                source = generated.source
                confidence = generated.confidence
            else:
                source = given_source or ""

            # ── Stage 2: compile ─────────────────────────────────────
            self._enter(run_id, Stage.COMPILE, *entry[Stage.COMPILE])
            outcome: CompilationOutcome = await self._attempt(
                Stage.COMPILE, self.compiler.compile(source),
            )
            if not outcome.success:
                logger.warning("Candidate for %s did not compile: %s",
                               fragment.identifier, "; ".join(outcome.errors))

            # ── Stage 3: verify ──────────────────────────────────────
            try:
                self._enter(run_id, Stage.VERIFY, *entry[Stage.VERIFY])
                verdict: VerificationVerdict = await self._attempt(
                    Stage.VERIFY, self.verifier.verify(fragment, source, outcome),
                )
            finally:
                self.compiler.release(outcome)

            record = self._assemble(run_id, fragment, source, confidence, outcome, verdict)
            self.store.append(record)
            self._set_state(run_id, RunState.COMPLETED)
            self._publish(run_id, COMPLETED, 100,
                          f"Decompilation {record.status.value} "
                          f"({record.match_percentage}% match)")
            return record

        except PipelineError as exc:
            self._set_state(run_id, RunState.FAILED)
            if isinstance(exc, RunCancelled):
                logger.info("%s", exc)
            else:
                logger.error("Run %s failed at %s stage: %s", run_id, exc.stage, exc.cause)
            self._publish(run_id, FAILED, 100, str(exc))
            raise
        finally:
            with self._lock:
                self._cancel.pop(run_id, None)

    async def _attempt(self, stage: Stage, pending: Awaitable):
        """Await one stage call, wrapping any failure in ``PipelineError``."""
        try:
            return await pending
        except Exception as exc:
            raise PipelineError(stage.value, exc) from exc

    def _assemble(
        self,
        run_id: str,
        fragment: Fragment,
        source: str,
        confidence: Optional[float],
        outcome: CompilationOutcome,
        verdict: VerificationVerdict,
    ) -> PipelineRun:
        status = derive_status(outcome, verdict)
        logger.info("Run %s: status=%s match=%d%% discrepancies=%d",
                    run_id, status.value, verdict.match_percentage,
                    len(verdict.discrepancies))
        return PipelineRun(
            id=run_id,
            fragment_identifier=fragment.identifier,
            source_fragment=fragment.text,
            candidate_source=source,
            status=status,
            match_percentage=verdict.match_percentage,
            discrepancies=list(verdict.discrepancies),
            confidence=confidence,
            compile_errors=list(outcome.errors),
            compile_warnings=list(outcome.warnings),
            detailed_diff=verdict.detailed_diff,
        )

    # -----------------------------------------------------------------
    # Bookkeeping
    # -----------------------------------------------------------------

    def _register(self, run_id: str) -> None:
        with self._lock:
            if run_id in self._cancel:
                raise ValueError(f"run {run_id} is already in progress")
            if run_id in self._states or self.store.get(run_id) is not None:
                raise ValueError(f"run id {run_id} has already been used")
            self._cancel[run_id] = asyncio.Event()
            while len(self._states) >= TRACKED_STATES:
                self._states.pop(next(iter(self._states)))
            self._states[run_id] = RunState.IDLE

    def _set_state(self, run_id: str, state: RunState) -> None:
        with self._lock:
            self._states[run_id] = state

    def _enter(self, run_id: str, stage: Stage, percent: int, message: str) -> None:
        """Stage boundary: honour cancellation, then announce the stage."""
        with self._lock:
            event = self._cancel.get(run_id)
        if event is not None and event.is_set():
            raise RunCancelled(stage.value, run_id)
        self._set_state(run_id, _STATE_FOR_STAGE[stage])
        self._publish(run_id, stage.value, percent, message)

    def _publish(self, run_id: str, stage: str, percent: int, message: str) -> None:
        self.bus.publish(ProgressEvent(
            run_id=run_id, stage=stage, percent_complete=percent, message=message,
        ))


# ── CLI ──────────────────────────────────────────────────────────────────────

def _build_coordinator(args: argparse.Namespace) -> PipelineCoordinator:
    from decomp_pipeline.stages.compiler import GccCompiler, StructuralCompiler
    from decomp_pipeline.stages.generator import LLMCodeGenerator, TemplateCodeGenerator
    from decomp_pipeline.stages.verifier import ElfTextVerifier, HeuristicVerifier

    if args.generator == "llm":
        generator = LLMCodeGenerator(api_key=args.api_key or "", model=args.model)
    else:
        generator = TemplateCodeGenerator()

    if args.backend == "gcc":
        compiler = GccCompiler(compiler_path=args.cc)
        verifier = ElfTextVerifier(assembler_path=args.cc)
    else:
        compiler = StructuralCompiler()
        verifier = HeuristicVerifier()

    return PipelineCoordinator(generator, compiler, verifier, store=ResultStore())


def main():
    """CLI entry point for the decompilation pipeline."""
    parser = argparse.ArgumentParser(
        description="decomp_pipeline — assembly → C → compile → verify",
    )
    parser.add_argument("fragment", type=Path, help="Assembly file to decompile")
    parser.add_argument("--identifier", default=None,
                        help="Function name (default: inferred from the fragment)")
    parser.add_argument("--verify-source", type=Path, default=None,
                        help="Verify this C file instead of generating one")
    parser.add_argument("--generator", choices=["template", "llm"], default="template")
    parser.add_argument("--model", default="openai/gpt-4o-mini")
    parser.add_argument("--api-key", default=os.environ.get("OPENROUTER_API_KEY"),
                        help="OpenRouter key (default: $OPENROUTER_API_KEY)")
    parser.add_argument("--backend", choices=["local", "gcc"], default="local",
                        help="local: structural compile + heuristic verify; "
                             "gcc: real compile + ELF .text comparison")
    parser.add_argument("--cc", default="gcc", help="Compiler/assembler driver")
    parser.add_argument("--output", type=Path, default=None,
                        help="Write history JSON and a Markdown report here")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.fragment.exists():
        logger.error("File not found: %s", args.fragment)
        sys.exit(1)
    if args.generator == "llm" and not args.api_key:
        logger.error("--generator llm needs --api-key or OPENROUTER_API_KEY")
        sys.exit(1)

    try:
        fragment = Fragment.from_text(args.fragment.read_text(), args.identifier)
    except ValueError as exc:
        logger.error("Invalid fragment: %s", exc)
        sys.exit(1)
    coordinator = _build_coordinator(args)

    try:
        if args.verify_source:
            if not args.verify_source.exists():
                logger.error("File not found: %s", args.verify_source)
                sys.exit(1)
            run = asyncio.run(coordinator.verify_source(
                fragment, args.verify_source.read_text(),
            ))
        else:
            run = asyncio.run(coordinator.run(fragment))
    except PipelineError as exc:
        print(f"✗ Decompilation failed at the {exc.stage} stage: {exc.cause or exc}")
        sys.exit(2)

    print(f"Function: {run.fragment_identifier}")
    print(f"Status:   {run.status.value}")
    print(f"Match:    {run.match_percentage}%")
    if run.discrepancies:
        print("Discrepancies:")
        for d in run.discrepancies:
            print(f"  - {d}")
    for err in run.compile_errors:
        print(f"  error: {err}")
    print()
    print(run.candidate_source)

    if args.output:
        out = write_outputs(coordinator.store.snapshot(), args.output)
        print(f"Report written to {out}")


if __name__ == "__main__":
    main()
