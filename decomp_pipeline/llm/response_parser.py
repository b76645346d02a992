"""
Response parser for LLM decompilation replies.

Extracts the candidate C source and a self-reported confidence from a
free-form completion.  Handles the usual failure modes:

1. ```c fenced block → take the first C-tagged fence
2. Untagged fence → take the first fence
3. No fence at all → treat the whole reply as code if it looks like C
4. Missing / malformed confidence → fall back to a default

Usage::

    from decomp_pipeline.llm.response_parser import parse_code_response

    parsed = parse_code_response("```c\\nint f(void) { return 0; }\\n```\\nconfidence: 0.7")
    assert parsed.code.startswith("int f")
    assert parsed.confidence == 0.7
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_CONFIDENCE = 0.5

_C_FENCE = re.compile(r"```(?:c|C|cpp|c\+\+)\s*\n(.*?)\n?\s*```", re.DOTALL)
_ANY_FENCE = re.compile(r"```[^\n]*\n(.*?)\n?\s*```", re.DOTALL)
_CONFIDENCE = re.compile(r"confidence\s*[:=]\s*([0-9]*\.?[0-9]+)", re.IGNORECASE)
_LOOKS_LIKE_C = re.compile(r"\b(?:int|void|char|long|short|unsigned|struct|static)\b[^;{]*\(")


@dataclass
class ParsedCode:
    """Result of parsing one LLM reply."""
    code: str                          # extracted C, "" if none found
    confidence: float
    from_fence: bool                   # True if code came from a fenced block
    raw_text: str = ""
    parse_error: Optional[str] = None


def _extract_fenced(text: str) -> Optional[str]:
    for pat in (_C_FENCE, _ANY_FENCE):
        m = pat.search(text)
        if m:
            return m.group(1).strip()
    return None


def _extract_confidence(text: str) -> Optional[float]:
    m = _CONFIDENCE.search(text)
    if not m:
        return None
    try:
        value = float(m.group(1))
    except ValueError:
        return None
    return max(0.0, min(1.0, value))


def parse_code_response(text: str, default_confidence: float = DEFAULT_CONFIDENCE) -> ParsedCode:
    """Extract candidate C and confidence from *text*."""
    raw = text or ""
    confidence = _extract_confidence(raw)
    if confidence is None:
        confidence = default_confidence

    fenced = _extract_fenced(raw)
    if fenced:
        return ParsedCode(code=fenced, confidence=confidence, from_fence=True, raw_text=raw)

    # No fence: accept the reply only if it plausibly is C on its own
    body = _CONFIDENCE.sub("", raw).strip()
    if body and _LOOKS_LIKE_C.search(body) and "{" in body:
        return ParsedCode(code=body, confidence=confidence, from_fence=False, raw_text=raw)

    return ParsedCode(
        code="",
        confidence=confidence,
        from_fence=False,
        raw_text=raw,
        parse_error="no C code found in reply",
    )
