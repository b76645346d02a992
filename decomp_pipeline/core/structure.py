"""
Cheap structural checks on candidate C source.

Runs before any external toolchain is touched.  Only bracket balance is
checked; string and character literals are not special-cased.
"""
from __future__ import annotations

from typing import Dict, List

_PAIRS: Dict[str, str] = {"}": "{", ")": "(", "]": "["}
_OPENERS = set(_PAIRS.values())


def delimiter_counts(source: str) -> Dict[str, int]:
    """Net open count per delimiter kind (``{``, ``(``, ``[``)."""
    counts = {opener: 0 for opener in _OPENERS}
    for ch in source:
        if ch in _OPENERS:
            counts[ch] += 1
        elif ch in _PAIRS:
            counts[_PAIRS[ch]] -= 1
    return counts


def is_balanced(source: str) -> bool:
    """True when every ``{}``, ``()`` and ``[]`` is closed in order."""
    stack: List[str] = []
    for ch in source:
        if ch in _OPENERS:
            stack.append(ch)
        elif ch in _PAIRS:
            if not stack or stack[-1] != _PAIRS[ch]:
                return False
            stack.pop()
    return not stack


def has_function_body(source: str) -> bool:
    return "{" in source and "}" in source


def has_include(source: str) -> bool:
    return "#include" in source


def has_main(source: str) -> bool:
    return "int main" in source or "void main" in source
