"""
HTTP surface for the correction engine: rules, chapters, batch runs and undo.

Run with:
    uvicorn chapterfix.api.main:app --port 8000
    python -m chapterfix.api.main
"""

from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .schemas import (
    RuleRequest,
    RuleResponse,
    RuleListResponse,
    RuleImportRequest,
    RuleImportResponse,
    ChapterCreateRequest,
    ChapterResponse,
    ChapterListResponse,
    TranslationUpdateRequest,
    BatchRequest,
    BatchResponse,
    HistoryEntryResponse,
    HistoryResponse,
    UndoResponse,
    ClearHistoryResponse,
    HealthResponse,
)
from ..core import dao
from ..core.batch import run_batch, repair_brackets, select_chapters_by_range
from ..core.undo import undo, list_history, clear_history
from ..core.db import init_db, health_check
from ..core.errors import (
    RuleValidationError,
    ChapterNotFoundError,
    HistoryNotFoundError,
    BatchCorrectionError,
    UndoError,
)
from ..core.schema import rule_to_dict, validate_rule
from ..core.config import VERSION, debug_enabled, get_cors_origins
from ..util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Chapterfix API",
    version=VERSION,
    description="Batch corrections with single-step undo for translated chapters",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _rule_response(rule) -> RuleResponse:
    return RuleResponse(**rule_to_dict(rule))


def _chapter_response(chapter) -> ChapterResponse:
    return ChapterResponse(**asdict(chapter))


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        chapter_count=dao.get_chapter_count()
    )


# Rules

@app.get("/workspaces/{workspace_id}/rules/export")
def export_rules_endpoint(workspace_id: str):
    return {"workspace_id": workspace_id, "rules": dao.export_rules(workspace_id)}


@app.post("/workspaces/{workspace_id}/rules/import", response_model=RuleImportResponse)
def import_rules_endpoint(workspace_id: str, request: RuleImportRequest):
    added = dao.import_rules(workspace_id, request.rules)
    return RuleImportResponse(added=added, skipped=len(request.rules) - added)


@app.get("/workspaces/{workspace_id}/rules", response_model=RuleListResponse)
def list_rules_endpoint(workspace_id: str, q: str = ""):
    """Rules in application order, optionally filtered by q."""
    rules = dao.search_rules(workspace_id, q) if q else dao.list_rules(workspace_id)
    return RuleListResponse(rules=[_rule_response(r) for r in rules])


@app.post("/workspaces/{workspace_id}/rules", response_model=RuleResponse, status_code=201)
def add_rule_endpoint(workspace_id: str, request: RuleRequest):
    try:
        rule = dao.add_rule(workspace_id, request.to_rule())
    except RuleValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _rule_response(rule)


@app.get("/rules/{rule_id}", response_model=RuleResponse)
def get_rule_endpoint(rule_id: int):
    rule = dao.get_rule(rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return _rule_response(rule)


@app.put("/rules/{rule_id}", response_model=RuleResponse)
def update_rule_endpoint(rule_id: int, request: RuleRequest):
    try:
        rule = dao.update_rule(rule_id, request.to_rule())
    except RuleValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return _rule_response(rule)


@app.delete("/rules/{rule_id}")
def delete_rule_endpoint(rule_id: int):
    if not dao.delete_rule(rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return {"success": True, "rule_id": rule_id}


# Chapters

@app.get("/workspaces/{workspace_id}/chapters", response_model=ChapterListResponse)
def list_chapters_endpoint(workspace_id: str, translated_only: bool = False):
    if translated_only:
        chapters = dao.list_translated_chapters(workspace_id)
    else:
        chapters = dao.list_chapters(workspace_id)
    return ChapterListResponse(chapters=[_chapter_response(c) for c in chapters])


@app.post("/workspaces/{workspace_id}/chapters", response_model=ChapterResponse, status_code=201)
def add_chapter_endpoint(workspace_id: str, request: ChapterCreateRequest):
    chapter = dao.add_chapter(
        workspace_id,
        order=request.order,
        title=request.title,
        content_original=request.content_original,
        title_translated=request.title_translated,
        content_translated=request.content_translated,
        status=request.status
    )
    return _chapter_response(chapter)


@app.get("/chapters/{chapter_id}", response_model=ChapterResponse)
def get_chapter_endpoint(chapter_id: int):
    chapter = dao.get_chapter(chapter_id)
    if not chapter:
        raise HTTPException(status_code=404, detail="Chapter not found")
    return _chapter_response(chapter)


@app.put("/chapters/{chapter_id}/translation", response_model=ChapterResponse)
def save_translation_endpoint(chapter_id: int, request: TranslationUpdateRequest):
    try:
        chapter = dao.save_translation(
            chapter_id,
            request.title_translated,
            request.content_translated,
            status=request.status
        )
    except ChapterNotFoundError:
        raise HTTPException(status_code=404, detail="Chapter not found")
    return _chapter_response(chapter)


# Batch runs

def _selected_chapter_ids(workspace_id: str, request: BatchRequest):
    if request.range:
        ids = select_chapters_by_range(workspace_id, request.range)
        if request.chapter_ids is not None:
            wanted = set(request.chapter_ids)
            ids = [i for i in ids if i in wanted]
        return ids
    return request.chapter_ids


@app.post("/workspaces/{workspace_id}/batch", response_model=BatchResponse)
def run_batch_endpoint(workspace_id: str, request: BatchRequest = None):
    """Apply the workspace's rules, or the rules in the body, to its translated chapters."""
    request = request or BatchRequest()

    rules = None
    if request.rules is not None:
        rules = [r.to_rule() for r in request.rules]
        try:
            for rule in rules:
                validate_rule(rule)
        except RuleValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))

    try:
        result = run_batch(workspace_id, rules=rules, chapter_ids=_selected_chapter_ids(workspace_id, request))
    except BatchCorrectionError as e:
        logger.error(f"Batch endpoint failed: {e}")
        raise HTTPException(status_code=500, detail="Batch correction failed; no chapters were changed")
    return BatchResponse(**asdict(result))


@app.post("/workspaces/{workspace_id}/repair-brackets", response_model=BatchResponse)
def repair_brackets_endpoint(workspace_id: str, request: BatchRequest = None):
    """Run the bracket/whitespace sweep alone over translated chapters."""
    request = request or BatchRequest()
    try:
        result = repair_brackets(workspace_id, chapter_ids=_selected_chapter_ids(workspace_id, request))
    except BatchCorrectionError as e:
        logger.error(f"Bracket repair endpoint failed: {e}")
        raise HTTPException(status_code=500, detail="Bracket repair failed; no chapters were changed")
    return BatchResponse(**asdict(result))


# History and undo

@app.get("/workspaces/{workspace_id}/history", response_model=HistoryResponse)
def history_endpoint(workspace_id: str):
    entry = list_history(workspace_id)
    entries = []
    if entry:
        entries.append(HistoryEntryResponse(
            id=entry.id,
            workspace_id=entry.workspace_id,
            action_type=entry.action_type,
            summary=entry.summary,
            timestamp=entry.timestamp,
            affected_count=entry.affected_count
        ))
    return HistoryResponse(entries=entries)


@app.post("/history/{entry_id}/undo", response_model=UndoResponse)
def undo_endpoint(entry_id: int):
    try:
        result = undo(entry_id)
    except HistoryNotFoundError:
        raise HTTPException(status_code=404, detail="History entry not found")
    except UndoError as e:
        logger.error(f"Undo endpoint failed: {e}")
        raise HTTPException(status_code=500, detail="Undo failed; no chapters were changed")
    return UndoResponse(**asdict(result))


@app.delete("/workspaces/{workspace_id}/history", response_model=ClearHistoryResponse)
def clear_history_endpoint(workspace_id: str):
    return ClearHistoryResponse(removed=clear_history(workspace_id))


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Chapterfix API server on http://127.0.0.1:8000")
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level="info")
