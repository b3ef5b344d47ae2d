"""
Rule engine: applies correction rules to translated text.

Every function here is pure. A rule that cannot be applied (bad regex,
missing fields) leaves the text unchanged and the rest of the rule set
still runs.
"""

import re
from typing import Iterable, Optional

from .schema import CorrectionRule, ReplaceRule, WrapRule, RegexRule
from .sweep import final_sweep
from ..util.logging import logger

# $$, $&, $1..$99 and $<name>, the reference forms the rule editor stores
_DOLLAR_REFERENCE = re.compile(r"\$(\$|&|\d{1,2}|<[A-Za-z_]\w*>)")


def to_python_template(replacement: str, group_count: Optional[int] = None) -> str:
    """Translate $-style group references into a re.sub template.

    With group_count, numbered references follow the rule editor's reading:
    $10 with fewer than ten groups is $1 then a literal "0", and a reference
    to a group that does not exist stays literal text. Python-style
    references (\\1, \\g<name>) pass through unchanged.
    """
    def _convert(match: re.Match) -> str:
        ref = match.group(1)
        if ref == "$":
            return "$"
        if ref == "&":
            return r"\g<0>"
        if ref.startswith("<"):
            return rf"\g{ref}"
        if group_count is None:
            return rf"\g<{ref}>"
        if 1 <= int(ref) <= group_count:
            return rf"\g<{int(ref)}>"
        if len(ref) == 2 and 1 <= int(ref[0]) <= group_count:
            return rf"\g<{ref[0]}>{ref[1]}"
        return match.group(0)

    return _DOLLAR_REFERENCE.sub(_convert, replacement)


def safe_replace(text: str, from_text: str, to_text: str) -> str:
    """Literal replacement of every non-overlapping occurrence."""
    if not from_text:
        return text
    return text.replace(from_text, to_text or "")


def safe_wrap(text: str, target: str, open_mark: str, close_mark: str) -> str:
    """Surround every occurrence of target with open_mark/close_mark.

    Occurrences already directly bounded by open_mark and close_mark are
    left alone, so applying the same wrap twice changes nothing.
    """
    if not target or not open_mark or not close_mark:
        return text
    if open_mark == close_mark or open_mark in target or close_mark in target:
        return text

    def _wrap(match: re.Match) -> str:
        start, end = match.span()
        already_open = text[max(0, start - len(open_mark)):start] == open_mark
        already_closed = text[end:end + len(close_mark)] == close_mark
        if already_open and already_closed:
            return match.group(0)
        return f"{open_mark}{match.group(0)}{close_mark}"

    return re.sub(re.escape(target), _wrap, text)


def regex_replace(text: str, pattern: str, replacement: str) -> str:
    """Replace every match of pattern. Raises re.error on a bad pattern or template."""
    if not pattern:
        return text
    compiled = re.compile(pattern)
    return compiled.sub(to_python_template(replacement or "", compiled.groups), text)


def apply_rule(text: str, rule: CorrectionRule) -> str:
    """Apply one rule. Never raises for a rule of a known kind."""
    if not text or rule is None:
        return text

    try:
        if isinstance(rule, ReplaceRule):
            return safe_replace(text, rule.from_text, rule.to_text)
        if isinstance(rule, WrapRule):
            return safe_wrap(text, rule.target, rule.open_mark, rule.close_mark)
        if isinstance(rule, RegexRule):
            return regex_replace(text, rule.pattern, rule.replacement)
    except re.error as e:
        logger.log_rule_failure(rule.kind, rule.id, str(e))
        return text

    logger.warning(f"Unsupported rule type {type(rule).__name__}, skipped")
    return text


def apply_rules(text: str, rules: Iterable[CorrectionRule]) -> str:
    """Apply rules in order, each one seeing the previous one's output."""
    for rule in rules:
        text = apply_rule(text, rule)
    return text


def apply_rule_set(text: str, rules: Iterable[CorrectionRule]) -> str:
    """Apply rules in order, then the final sweep."""
    return final_sweep(apply_rules(text or "", rules))
