"""
Verification backends: (fragment, candidate, outcome) → ``VerificationVerdict``.

Every backend short-circuits on a failed compilation without touching its
comparison backend, and routes its raw score through
``policy.verdict.finalize_verdict`` so the threshold and discrepancy rules
hold regardless of how the score was computed.

HeuristicVerifier
    Offline stand-in driven by a scoring callable.  The default scorer is
    a placeholder, not a binary comparison.

ElfTextVerifier
    Assembles the fragment, then compares the ``.text`` bytes of the
    reference object and the compiled candidate with pyelftools.

ObjdiffVerifier
    Delegates the comparison to an external objdiff-style tool and parses
    its match percentage.
"""
from __future__ import annotations

import difflib
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from decomp_pipeline.core.fragment import PLACEHOLDER_IDENTIFIER
from decomp_pipeline.core.structure import has_function_body
from decomp_pipeline.core.toolchain import ToolMissing, ToolTimeout, run_tool
from decomp_pipeline.errors import VerificationError
from decomp_pipeline.io.schema import (
    CompilationOutcome,
    Fragment,
    VerificationVerdict,
)
from decomp_pipeline.policy.profile import PipelineProfile
from decomp_pipeline.policy.verdict import (
    PERFECT_SCORE,
    Discrepancy,
    compilation_failed_verdict,
    finalize_verdict,
)

logger = logging.getLogger(__name__)

Scorer = Callable[[Fragment, str], Tuple[float, List[str]]]


# =============================================================================
# Heuristic (offline) backend
# =============================================================================

def placeholder_scorer(fragment: Fragment, source: str) -> Tuple[float, List[str]]:
    """
    Stand-in score used when no comparison tool is configured.

    Fragments that name their function score 85, anonymous ones 60.  Both
    report the usual codegen differences so the result reads as a warning.
    """
    named = fragment.identifier != PLACEHOLDER_IDENTIFIER
    score = 85 if named else 60
    return score, [
        Discrepancy.STACK_FRAME.value,
        Discrepancy.REGISTER_ALLOCATION.value,
        Discrepancy.INSTRUCTION_ORDERING.value,
    ]


class HeuristicVerifier:
    """Scores candidates with a pluggable callable instead of a diff tool."""

    def __init__(
        self,
        scorer: Optional[Scorer] = None,
        profile: Optional[PipelineProfile] = None,
    ):
        self.scorer = scorer or placeholder_scorer
        self.profile = profile or PipelineProfile.v0()

    async def verify(
        self,
        fragment: Fragment,
        source: str,
        outcome: CompilationOutcome,
    ) -> VerificationVerdict:
        if not outcome.success:
            return compilation_failed_verdict()

        if not has_function_body(source):
            return finalize_verdict(
                10,
                [Discrepancy.INVALID_STRUCTURE.value],
                self.profile,
                detailed_diff="candidate lacks a function body",
            )

        score, discrepancies = self.scorer(fragment, source)
        verdict = finalize_verdict(score, discrepancies, self.profile)
        logger.info("Verified %s (heuristic): %d%% success=%s",
                    fragment.identifier, verdict.match_percentage, verdict.success)
        return verdict


# =============================================================================
# Shared helpers for toolchain-backed verifiers
# =============================================================================

async def assemble_reference(
    fragment: Fragment,
    workdir: Path,
    assembler_path: str = "gcc",
    asflags: Sequence[str] = (),
    timeout: float = 60.0,
) -> Path:
    """Assemble *fragment* into ``workdir/reference.o``."""
    asm_path = workdir / "reference.s"
    obj_path = workdir / "reference.o"
    text = fragment.text if fragment.text.endswith("\n") else fragment.text + "\n"
    asm_path.write_text(text, encoding="utf-8")

    cmd = [assembler_path, *asflags, "-c", "-x", "assembler", str(asm_path), "-o", str(obj_path)]
    try:
        result = await run_tool(cmd, cwd=workdir, timeout=timeout)
    except (ToolMissing, ToolTimeout) as exc:
        raise VerificationError(f"assembler unavailable: {exc}") from exc

    if result.returncode != 0 or not obj_path.exists():
        detail = result.stderr.strip().splitlines()[-1:] or [f"exit code {result.returncode}"]
        raise VerificationError(f"reference fragment did not assemble: {detail[0]}")
    return obj_path


def read_text_bytes(path: Path, symbol: Optional[str] = None) -> Tuple[bytes, bool]:
    """
    Return the code bytes of *symbol* (or the whole ``.text``) in *path*.

    The second element tells whether *symbol* was found; when it is not,
    the full ``.text`` section is returned.
    """
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            text = elf.get_section_by_name(".text")
            if text is None:
                return b"", False
            data = text.data()

            if symbol:
                symtab = elf.get_section_by_name(".symtab")
                if symtab is not None:
                    text_index = _section_index(elf, ".text")
                    for sym in symtab.iter_symbols():
                        if (sym.name == symbol and sym["st_shndx"] == text_index
                                and sym["st_size"] > 0):
                            start = sym["st_value"]
                            return data[start:start + sym["st_size"]], True
            return data, False
    except (ELFError, OSError) as exc:
        raise VerificationError(f"cannot read object {path.name}: {exc}") from exc


def _section_index(elf: ELFFile, name: str) -> Optional[int]:
    for idx, section in enumerate(elf.iter_sections()):
        if section.name == name:
            return idx
    return None


def classify_differences(reference: bytes, candidate: bytes, prologue_len: int = 8) -> List[str]:
    """Name the kinds of difference between two code byte strings."""
    if reference == candidate:
        return []
    found: List[str] = []
    if len(reference) != len(candidate):
        found.append(Discrepancy.CODE_SIZE.value)
    if reference[:prologue_len] != candidate[:prologue_len]:
        found.append(Discrepancy.STACK_FRAME.value)
    if sorted(reference) == sorted(candidate):
        found.append(Discrepancy.INSTRUCTION_ORDERING.value)
    else:
        found.append(Discrepancy.INSTRUCTION_ENCODING.value)
    return found


def byte_similarity(reference: bytes, candidate: bytes) -> float:
    if not reference and not candidate:
        return float(PERFECT_SCORE)
    matcher = difflib.SequenceMatcher(None, reference, candidate, autojunk=False)
    return matcher.ratio() * PERFECT_SCORE


def hex_diff(reference: bytes, candidate: bytes, width: int = 4) -> str:
    """Unified diff of two byte strings, *width* bytes per line."""
    def _lines(data: bytes) -> List[str]:
        return [f"{off:08x}: {data[off:off + width].hex()}"
                for off in range(0, len(data), width)]

    return "\n".join(difflib.unified_diff(
        _lines(reference), _lines(candidate),
        fromfile="original.o", tofile="candidate.o", lineterm="",
    ))


# =============================================================================
# ELF .text comparison backend
# =============================================================================

class ElfTextVerifier:
    """
    Byte-level comparison of the assembled fragment and the candidate object.

    Parameters
    ----------
    assembler_path : str
        Driver used to assemble the fragment (``gcc -x assembler``).
    asflags : sequence of str
        Extra flags for the assembler driver.
    timeout : float
        Assembler timeout in seconds.
    """

    def __init__(
        self,
        assembler_path: str = "gcc",
        asflags: Sequence[str] = (),
        timeout: float = 60.0,
        profile: Optional[PipelineProfile] = None,
    ):
        self.assembler_path = assembler_path
        self.asflags = list(asflags)
        self.timeout = timeout
        self.profile = profile or PipelineProfile.v0()

    async def verify(
        self,
        fragment: Fragment,
        source: str,
        outcome: CompilationOutcome,
    ) -> VerificationVerdict:
        if not outcome.success:
            return compilation_failed_verdict()

        artifact = Path(outcome.artifact_ref) if outcome.artifact_ref else None
        if artifact is None or not artifact.is_file():
            raise VerificationError("compiled artifact is not an object file on disk")

        workdir = Path(tempfile.mkdtemp(prefix="decomp_verify_"))
        try:
            ref_obj = await assemble_reference(
                fragment, workdir, self.assembler_path, self.asflags, self.timeout,
            )
            ref_bytes, _ = read_text_bytes(ref_obj, fragment.identifier)
            cand_bytes, found = read_text_bytes(artifact, fragment.identifier)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        discrepancies = classify_differences(ref_bytes, cand_bytes)
        if not found:
            discrepancies.insert(0, Discrepancy.MISSING_SYMBOL.value)
        score = byte_similarity(ref_bytes, cand_bytes)
        diff = hex_diff(ref_bytes, cand_bytes) if discrepancies else None

        verdict = finalize_verdict(score, discrepancies, self.profile, detailed_diff=diff)
        logger.info("Verified %s (elf .text, %d vs %d bytes): %d%%",
                    fragment.identifier, len(ref_bytes), len(cand_bytes),
                    verdict.match_percentage)
        return verdict


# =============================================================================
# objdiff backend
# =============================================================================

_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_IDENTICAL = re.compile(r"(?<!not )(?<!non-)\bidentical\b", re.IGNORECASE)
_CATEGORY_HINTS = (
    (re.compile(r"stack", re.IGNORECASE), Discrepancy.STACK_FRAME),
    (re.compile(r"regist", re.IGNORECASE), Discrepancy.REGISTER_ALLOCATION),
    (re.compile(r"order|reloc", re.IGNORECASE), Discrepancy.INSTRUCTION_ORDERING),
    (re.compile(r"size", re.IGNORECASE), Discrepancy.CODE_SIZE),
)


def parse_objdiff_output(output: str) -> Tuple[float, List[str]]:
    """Match score and discrepancy categories from objdiff text output."""
    m = _PERCENT.search(output)
    if m:
        score = float(m.group(1))
    elif _IDENTICAL.search(output):
        return float(PERFECT_SCORE), []
    else:
        score = 0.0
    if score >= PERFECT_SCORE:
        return float(PERFECT_SCORE), []
    categories = [cat.value for pat, cat in _CATEGORY_HINTS if pat.search(output)]
    return score, categories


class ObjdiffVerifier:
    """Compare the assembled fragment and the candidate with objdiff."""

    def __init__(
        self,
        objdiff_path: str = "objdiff",
        extra_args: Sequence[str] = (),
        assembler_path: str = "gcc",
        timeout: float = 60.0,
        profile: Optional[PipelineProfile] = None,
    ):
        self.objdiff_path = objdiff_path
        self.extra_args = list(extra_args)
        self.assembler_path = assembler_path
        self.timeout = timeout
        self.profile = profile or PipelineProfile.v0()

    async def verify(
        self,
        fragment: Fragment,
        source: str,
        outcome: CompilationOutcome,
    ) -> VerificationVerdict:
        if not outcome.success:
            return compilation_failed_verdict()
        if not outcome.artifact_ref:
            raise VerificationError("no compiled artifact to compare")

        workdir = Path(tempfile.mkdtemp(prefix="decomp_objdiff_"))
        try:
            ref_obj = await assemble_reference(
                fragment, workdir, self.assembler_path, timeout=self.timeout,
            )
            cmd = [self.objdiff_path, *self.extra_args, str(ref_obj), outcome.artifact_ref]
            try:
                result = await run_tool(cmd, cwd=workdir, timeout=self.timeout)
            except (ToolMissing, ToolTimeout) as exc:
                raise VerificationError(f"objdiff unavailable: {exc}") from exc
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        if result.returncode != 0 and not _PERCENT.search(result.stdout):
            raise VerificationError(
                f"objdiff exited with code {result.returncode}: {result.stderr.strip()[:200]}"
            )

        score, categories = parse_objdiff_output(result.stdout)
        verdict = finalize_verdict(score, categories, self.profile,
                                   detailed_diff=result.stdout or None)
        logger.info("Verified %s (objdiff): %d%%", fragment.identifier, verdict.match_percentage)
        return verdict
