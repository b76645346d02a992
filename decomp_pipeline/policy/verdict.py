"""
Verdict logic for the decompilation pipeline.

Every verifier backend produces a raw score and a list of discrepancy
categories; ``finalize_verdict`` turns them into a contract-conforming
``VerificationVerdict``:

  - a perfect match (100, nothing listed) is the only way to reach 100;
  - any imperfection scores strictly below the match threshold and names
    at least one discrepancy category;
  - success requires the score to *exceed* the threshold, so a score equal
    to the threshold fails.

``derive_status`` folds a compilation outcome and a verdict into the run
status recorded in the history.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional, Sequence

from decomp_pipeline.io.schema import (
    CompilationOutcome,
    RunStatus,
    VerificationVerdict,
)
from decomp_pipeline.policy.profile import PipelineProfile

logger = logging.getLogger(__name__)

PERFECT_SCORE = 100


# ── Enums ────────────────────────────────────────────────────────────────────

class Discrepancy(str, Enum):
    COMPILATION_FAILED = "compilation failed"
    INVALID_STRUCTURE = "invalid structure"
    STACK_FRAME = "stack frame"
    REGISTER_ALLOCATION = "register allocation"
    INSTRUCTION_ORDERING = "instruction ordering"
    INSTRUCTION_ENCODING = "instruction encoding"
    CODE_SIZE = "code size"
    MISSING_SYMBOL = "missing symbol"
    UNCLASSIFIED = "unclassified difference"


# ── Verdict construction ─────────────────────────────────────────────────────

def is_success(match_percentage: int, profile: PipelineProfile) -> bool:
    """Strictly above the threshold; ties fail."""
    return match_percentage > profile.match_threshold


def compilation_failed_verdict() -> VerificationVerdict:
    """Short-circuit verdict for candidates that did not compile."""
    return VerificationVerdict(
        success=False,
        match_percentage=0,
        discrepancies=[Discrepancy.COMPILATION_FAILED.value],
    )


def finalize_verdict(
    score: float,
    discrepancies: Sequence[str],
    profile: PipelineProfile,
    detailed_diff: Optional[str] = None,
) -> VerificationVerdict:
    """
    Normalise a backend's raw score into a ``VerificationVerdict``.

    Parameters
    ----------
    score : float
        Raw similarity in [0, 100]; out-of-range values are clamped.
    discrepancies : Sequence[str]
        Named discrepancy categories reported by the backend.
    profile : PipelineProfile
        Active profile (for the threshold).
    detailed_diff : str, optional
        Backend-specific diff text, passed through unchanged.
    """
    pct = int(round(max(0.0, min(float(score), float(PERFECT_SCORE)))))

    # Keep order, drop duplicates
    reasons: List[str] = []
    for d in discrepancies:
        if d and d not in reasons:
            reasons.append(d)

    imperfect = pct < PERFECT_SCORE or bool(reasons)
    if imperfect:
        if not reasons:
            reasons.append(Discrepancy.UNCLASSIFIED.value)
        ceiling = max(profile.match_threshold - 1, 0)
        if pct > ceiling:
            logger.debug("Capping imperfect score %d to %d", pct, ceiling)
            pct = ceiling

    return VerificationVerdict(
        success=is_success(pct, profile),
        match_percentage=pct,
        discrepancies=reasons,
        detailed_diff=detailed_diff,
    )


# ── Run status ───────────────────────────────────────────────────────────────

def derive_status(
    outcome: CompilationOutcome,
    verdict: VerificationVerdict,
) -> RunStatus:
    """
    Run-level status.

    ``error`` when the candidate did not compile, ``warning`` when it
    compiled but verification did not succeed, ``success`` otherwise.
    """
    if not outcome.success:
        return RunStatus.ERROR
    if not verdict.success:
        return RunStatus.WARNING
    return RunStatus.SUCCESS
