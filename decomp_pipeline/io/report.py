"""
Report — render and persist the verification history.

build_report() turns a sequence of PipelineRun records into a Markdown
summary (counts, success rate, per-run issues).  write_outputs() lays the
history down on disk:

    <output_dir>/pipeline_history.json
    <output_dir>/verification_report.md
"""
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from decomp_pipeline.io.schema import HistorySnapshot, PipelineRun, RunStatus

REPORT_TITLE = "# Decompilation Verification Report"


def build_report(
    runs: Sequence[PipelineRun],
    generated_at: Optional[datetime] = None,
) -> str:
    """
    Markdown report over *runs* (in the order given).

    Runs whose status is not ``success`` are listed individually with their
    match percentage and discrepancies.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    successful = [r for r in runs if r.status == RunStatus.SUCCESS]
    warnings = [r for r in runs if r.status == RunStatus.WARNING]
    errors = [r for r in runs if r.status == RunStatus.ERROR]
    rate = (len(successful) / len(runs) * 100) if runs else 0.0

    lines = [
        REPORT_TITLE,
        "",
        f"Generated: {generated_at.isoformat()}",
        "",
        "## Summary",
        f"- Total functions: {len(runs)}",
        f"- Successful verifications: {len(successful)}",
        f"- Partial matches (warning): {len(warnings)}",
        f"- Failed verifications (error): {len(errors)}",
        f"- Success rate: {rate:.1f}%",
        "",
    ]

    failed = [r for r in runs if r.status != RunStatus.SUCCESS]
    if failed:
        lines += ["## Failed Verifications", ""]
        for index, run in enumerate(failed, start=1):
            lines.append(f"### Function {index}: {run.fragment_identifier}")
            lines.append(f"- Run: {run.id}")
            lines.append(f"- Status: {run.status.value}")
            lines.append(f"- Match percentage: {run.match_percentage or 0}%")
            if run.discrepancies:
                lines.append("- Issues:")
                lines += [f"  - {d}" for d in run.discrepancies]
            if run.compile_errors:
                lines.append("- Compiler errors:")
                lines += [f"  - {e}" for e in run.compile_errors]
            lines.append("")

    return "\n".join(lines)


def write_outputs(snapshot: HistorySnapshot, output_dir: Path) -> Path:
    """
    Write the history JSON and the Markdown report into *output_dir*.

    Creates *output_dir* if it does not exist.
    Returns the output directory path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    history_path = output_dir / "pipeline_history.json"
    history_path.write_text(
        json.dumps(
            snapshot.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )

    report_path = output_dir / "verification_report.md"
    report_path.write_text(build_report(snapshot.runs) + "\n")

    return output_dir
