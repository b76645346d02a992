"""
Prompt template loader and renderer for decompilation requests.

Templates live in ``decomp_pipeline/llm/prompt_templates/<template_id>.txt``
and use ``{{ placeholder }}``-style substitution.

Supported placeholders:

- ``{{ assembly }}``       — the fragment text (always required)
- ``{{ function_name }}``  — inferred fragment identifier
- ``{{ candidate }}``      — previous candidate C (refinement only)
- ``{{ discrepancies }}``  — verifier discrepancy list (refinement only)
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

_TEMPLATES_DIR = Path(__file__).parent / "prompt_templates"

DECOMPILE_TEMPLATE = "decompile_c_v1"
REFINE_TEMPLATE = "refine_c_v1"


def load_template(template_id: str) -> str:
    """Load a prompt template by ID.

    Raises
    ------
    FileNotFoundError
        If the template file does not exist.
    """
    path = _TEMPLATES_DIR / f"{template_id}.txt"
    if not path.exists():
        raise FileNotFoundError(
            f"Prompt template not found: {path}  "
            f"(available: {[p.stem for p in _TEMPLATES_DIR.glob('*.txt')]})"
        )
    return path.read_text(encoding="utf-8")


def render_prompt(
    template: str,
    assembly: str,
    function_name: str,
    *,
    candidate: Optional[str] = None,
    discrepancies: Optional[Sequence[str]] = None,
) -> str:
    result = template.replace("{{ assembly }}", assembly)
    result = result.replace("{{ function_name }}", function_name)
    result = result.replace("{{ candidate }}", candidate or "(no previous candidate)")
    if discrepancies:
        listed = "\n".join(f"- {d}" for d in discrepancies)
    else:
        listed = "(none reported)"
    return result.replace("{{ discrepancies }}", listed)
