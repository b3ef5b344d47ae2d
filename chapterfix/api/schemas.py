"""
Request and response models for the correction API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..core.schema import (
    RULE_KINDS,
    CHAPTER_STATUSES,
    CorrectionRule,
    rule_from_dict,
)


class RuleRequest(BaseModel):
    """A rule as submitted by the rule editor.

    Only the fields belonging to `kind` are read; per-kind checks happen in
    the rule store so the API and the CLI reject the same things.
    """
    kind: str = "replace"
    from_text: Optional[str] = None
    to_text: Optional[str] = None
    target: Optional[str] = None
    open_mark: Optional[str] = None
    close_mark: Optional[str] = None
    pattern: Optional[str] = None
    replacement: Optional[str] = None

    @field_validator('kind')
    @classmethod
    def kind_must_be_valid(cls, v):
        if v not in RULE_KINDS:
            raise ValueError(f'kind must be one of: {list(RULE_KINDS)}')
        return v

    def to_rule(self) -> CorrectionRule:
        return rule_from_dict(self.model_dump())


class RuleResponse(BaseModel):
    id: int
    workspace_id: str
    kind: str
    created_at: Optional[datetime] = None
    from_text: Optional[str] = None
    to_text: Optional[str] = None
    target: Optional[str] = None
    open_mark: Optional[str] = None
    close_mark: Optional[str] = None
    pattern: Optional[str] = None
    replacement: Optional[str] = None


class RuleListResponse(BaseModel):
    rules: List[RuleResponse]


class RuleImportRequest(BaseModel):
    rules: List[Dict[str, Any]]


class RuleImportResponse(BaseModel):
    added: int
    skipped: int


class ChapterCreateRequest(BaseModel):
    order: int
    title: str
    content_original: str = ""
    title_translated: Optional[str] = None
    content_translated: Optional[str] = None
    status: str = "draft"

    @field_validator('title')
    @classmethod
    def title_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('title cannot be empty')
        return v

    @field_validator('status')
    @classmethod
    def status_must_be_valid(cls, v):
        if v not in CHAPTER_STATUSES:
            raise ValueError(f'status must be one of: {list(CHAPTER_STATUSES)}')
        return v


class ChapterResponse(BaseModel):
    id: int
    workspace_id: str
    order: int
    title: str
    content_original: str
    title_translated: Optional[str] = None
    content_translated: Optional[str] = None
    status: str
    updated_at: Optional[datetime] = None


class ChapterListResponse(BaseModel):
    chapters: List[ChapterResponse]


class TranslationUpdateRequest(BaseModel):
    title_translated: Optional[str] = None
    content_translated: Optional[str] = None
    status: str = "translated"

    @field_validator('status')
    @classmethod
    def status_must_be_valid(cls, v):
        if v not in CHAPTER_STATUSES:
            raise ValueError(f'status must be one of: {list(CHAPTER_STATUSES)}')
        return v


class BatchRequest(BaseModel):
    """Chapter selection for a batch run. Both empty means every translated chapter.

    rules replaces the workspace's stored rule set for this one run.
    """
    chapter_ids: Optional[List[int]] = None
    range: Optional[str] = None
    rules: Optional[List[RuleRequest]] = None


class BatchResponse(BaseModel):
    status: str  # applied, no_changes, nothing_to_do
    affected_count: int
    affected_titles: List[str]
    overflow_count: int
    eligible_count: int
    history_id: Optional[int] = None
    message: str


class HistoryEntryResponse(BaseModel):
    id: int
    workspace_id: str
    action_type: str
    summary: str
    timestamp: datetime
    affected_count: int


class HistoryResponse(BaseModel):
    entries: List[HistoryEntryResponse]  # zero or one


class UndoResponse(BaseModel):
    status: str  # restored, partial
    entry_id: int
    restored_count: int
    missing_chapter_ids: List[int]
    message: str


class ClearHistoryResponse(BaseModel):
    removed: int


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    chapter_count: int
