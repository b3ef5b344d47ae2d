"""
Final sweep: normalization of bracket and whitespace artifacts left behind by
machine translation or by repeated rule application.

final_sweep() is idempotent: it repeats the normalization pass until the
text stops changing.
"""

import re
from typing import Callable, List, Tuple, Union

from .config import get_sweep_max_passes

Replacement = Union[str, Callable[[re.Match], str]]


def _collapse_inside(open_char: str, close_char: str) -> Callable[[re.Match], str]:
    def _repl(match: re.Match) -> str:
        inner = " ".join(match.group(1).split())
        return f"{open_char}{inner}{close_char}"
    return _repl


# Applied in order; one pass of the sweep.
_SWEEP_STEPS: List[Tuple[re.Pattern, Replacement]] = [
    # Line endings and invisible characters
    (re.compile(r"\r\n?"), "\n"),
    (re.compile(r"[\u200b-\u200d\ufeff]"), ""),

    # Full-width brackets, parentheses and colon to ASCII
    (re.compile(r"[【［〔]"), "["),
    (re.compile(r"[】］〕]"), "]"),
    (re.compile(r"（"), "("),
    (re.compile(r"）"), ")"),
    (re.compile(r"："), ":"),

    # Whitespace before a closing bracket, then inside bracket pairs
    (re.compile(r"\s+\]"), "]"),
    (re.compile(r"\[([^\]]*)\]"), _collapse_inside("[", "]")),
    (re.compile(r"\(([^)]*)\)"), _collapse_inside("(", ")")),
    (re.compile(r"\[\s+"), "["),
    (re.compile(r"\s*\)"), ")"),
    (re.compile(r"\(\s*"), "("),

    # Spacing around brackets
    (re.compile(r"\](?=[^\s.,;:!?\])])"), "] "),
    (re.compile(r"(?<=[^\s\[(])\["), " ["),

    # Doubled brackets: [[x]], [ [x] ]
    (re.compile(r"\[\s*\[+"), "["),
    (re.compile(r"\]\s*\]+"), "]"),
    (re.compile(r"\(\s*\(+"), "("),
    (re.compile(r"\)\s*\)+"), ")"),

    # Horizontal whitespace runs and paragraph breaks
    (re.compile(r"[ \t]{2,}"), " "),
    (re.compile(r"\n{3,}"), "\n\n"),

    # "Name:\n\n[line]" -> "Name: [line]"
    (re.compile(r":\s*\n+\s*\["), ": ["),
]


def normalize_pass(text: str) -> str:
    """One normalization pass over text."""
    for pattern, replacement in _SWEEP_STEPS:
        text = pattern.sub(replacement, text)
    return text.strip()


def final_sweep(text: str, max_passes: int = None) -> str:
    """Normalize text until it reaches a fixed point.

    Always the last step of rule-set application, for titles and bodies alike.
    """
    if not text:
        return ""

    if max_passes is None:
        max_passes = get_sweep_max_passes()

    cleaned = normalize_pass(text)
    for _ in range(max(max_passes, 1) - 1):
        again = normalize_pass(cleaned)
        if again == cleaned:
            break
        cleaned = again
    return cleaned
