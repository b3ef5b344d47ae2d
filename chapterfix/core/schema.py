"""
Domain records for rules, chapters and the undo snapshot.
"""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional, Union

from .errors import RuleValidationError

RULE_KINDS = ("replace", "wrap", "regex")
CHAPTER_STATUSES = ("draft", "translated", "reviewing")


@dataclass
class ReplaceRule:
    from_text: str
    to_text: str = ""
    id: Optional[int] = None
    workspace_id: Optional[str] = None
    created_at: Optional[datetime] = None

    kind = "replace"


@dataclass
class WrapRule:
    target: str
    open_mark: str
    close_mark: str
    id: Optional[int] = None
    workspace_id: Optional[str] = None
    created_at: Optional[datetime] = None

    kind = "wrap"


@dataclass
class RegexRule:
    pattern: str
    replacement: str = ""
    id: Optional[int] = None
    workspace_id: Optional[str] = None
    created_at: Optional[datetime] = None

    kind = "regex"


CorrectionRule = Union[ReplaceRule, WrapRule, RegexRule]


def rule_to_dict(rule: CorrectionRule) -> Dict:
    """Serialize a rule for export or API responses."""
    data = asdict(rule)
    data["kind"] = rule.kind
    if rule.created_at is not None:
        data["created_at"] = rule.created_at.isoformat()
    return data


def rule_from_dict(data: Dict) -> CorrectionRule:
    """Build a rule from an exported record.

    Records without a kind are legacy replace rules written as
    {original, replacement}.
    """
    kind = data.get("kind") or data.get("type")
    created_at = data.get("created_at")
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at)
    common = {
        "id": data.get("id"),
        "workspace_id": data.get("workspace_id"),
        "created_at": created_at,
    }

    if kind == "wrap":
        return WrapRule(
            target=data.get("target") or "",
            open_mark=data.get("open_mark") or data.get("open") or "",
            close_mark=data.get("close_mark") or data.get("close") or "",
            **common
        )
    if kind == "regex":
        return RegexRule(
            pattern=data.get("pattern") or "",
            replacement=data.get("replacement") or data.get("replace") or "",
            **common
        )
    if kind in (None, "replace"):
        return ReplaceRule(
            from_text=data.get("from_text") or data.get("from") or data.get("original") or "",
            to_text=data.get("to_text") or data.get("to") or data.get("replacement") or "",
            **common
        )
    raise ValueError(f"Unknown rule kind: {kind}")


def validate_rule(rule: CorrectionRule) -> None:
    """Check the fields meaningful for the rule's kind. Raises RuleValidationError."""
    if isinstance(rule, ReplaceRule):
        if not rule.from_text:
            raise RuleValidationError("replace rule needs a non-empty text to find")
    elif isinstance(rule, WrapRule):
        if not rule.target:
            raise RuleValidationError("wrap rule needs a non-empty target")
        if not rule.open_mark or not rule.close_mark:
            raise RuleValidationError("wrap rule needs both opening and closing marks")
        if rule.open_mark == rule.close_mark:
            raise RuleValidationError("wrap rule opening and closing marks must differ")
        if rule.open_mark in rule.target or rule.close_mark in rule.target:
            raise RuleValidationError("wrap target must not contain its own marks")
    elif isinstance(rule, RegexRule):
        if not rule.pattern:
            raise RuleValidationError("regex rule needs a pattern")
        try:
            re.compile(rule.pattern)
        except re.error as exc:
            raise RuleValidationError(f"Invalid regex pattern {rule.pattern!r}: {exc}") from exc
    else:
        raise RuleValidationError(f"Unsupported rule type: {type(rule).__name__}")


@dataclass
class Chapter:
    id: int
    workspace_id: str
    order: int
    title: str
    content_original: str = ""
    title_translated: Optional[str] = None
    content_translated: Optional[str] = None
    status: str = "draft"
    updated_at: Optional[datetime] = None


@dataclass
class SnapshotItem:
    chapter_id: int
    title: Optional[str]
    content: str

    def to_dict(self) -> Dict:
        return {"chapter_id": self.chapter_id, "before": {"title": self.title, "content": self.content}}

    @classmethod
    def from_dict(cls, data: Dict) -> 'SnapshotItem':
        before = data.get("before") or {}
        return cls(
            chapter_id=data["chapter_id"],
            title=before.get("title"),
            content=before.get("content", "")
        )


@dataclass
class HistoryEntry:
    id: int
    workspace_id: str
    action_type: str
    summary: str
    timestamp: datetime
    affected_count: int
    snapshot: List[SnapshotItem] = field(default_factory=list)


@dataclass
class BatchResult:
    """Outcome of a batch run, for toast/notification display."""
    status: str  # applied, no_changes, nothing_to_do
    affected_count: int = 0
    affected_titles: List[str] = field(default_factory=list)
    overflow_count: int = 0
    eligible_count: int = 0
    history_id: Optional[int] = None
    message: str = ""


@dataclass
class UndoResult:
    status: str  # restored, partial
    entry_id: int
    restored_count: int = 0
    missing_chapter_ids: List[int] = field(default_factory=list)
    message: str = ""
