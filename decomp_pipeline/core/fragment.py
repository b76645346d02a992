"""
Fragment identifier inference.

The identifier is taken from the first line that carries either a
``.fn name`` directive or a ``name:`` label in the first column.  Lines
are scanned in order; the first hit of either pattern wins.
"""
from __future__ import annotations

import re
from typing import Optional

PLACEHOLDER_IDENTIFIER = "decompiled_function"

IDENTIFIER_PATTERN = r"[A-Za-z_][A-Za-z0-9_]*"

_IDENTIFIER = re.compile(IDENTIFIER_PATTERN)
_DIRECTIVE = re.compile(rf"\.fn\s+({IDENTIFIER_PATTERN})")
_LABEL = re.compile(rf"({IDENTIFIER_PATTERN}):")


def match_identifier(line: str) -> Optional[str]:
    """Return the identifier declared on *line*, or None."""
    m = _DIRECTIVE.search(line)
    if m:
        return m.group(1)
    m = _LABEL.match(line)
    if m:
        return m.group(1)
    return None


def extract_identifier(text: str, default: str = PLACEHOLDER_IDENTIFIER) -> str:
    """Infer the function name of an assembly fragment."""
    for line in text.splitlines():
        name = match_identifier(line)
        if name:
            return name
    return default


def is_identifier(name: str) -> bool:
    """True when *name* can be used verbatim as a C function name."""
    return _IDENTIFIER.fullmatch(name) is not None


def is_blank(text: str) -> bool:
    return not text or not text.strip()
