"""
Batch correction coordinator.

Applies a workspace's rule set to many chapters at once. Chapter rewrites and
the rotation of the workspace's single history entry happen in one
transaction: either every changed chapter is written together with its undo
snapshot, or nothing is.
"""

import sqlite3
import threading
import weakref
from typing import Callable, Iterable, List, Optional, Set, Tuple

from . import dao
from .config import ACTION_BATCH_CORRECTION, ACTION_BRACKET_REPAIR, get_summary_preview_titles
from .db import UnitOfWork
from .errors import BatchCorrectionError, ChapterNotFoundError
from .rule_engine import apply_rule, apply_rule_set
from .schema import BatchResult, Chapter, CorrectionRule, SnapshotItem
from .sweep import final_sweep
from ..util.logging import logger

# One writer per workspace for batch runs and undo; a lock lives while some caller holds it
_workspace_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def workspace_lock(workspace_id: str) -> threading.Lock:
    """Lock serializing history-changing operations on a workspace."""
    with _registry_lock:
        lock = _workspace_locks.get(workspace_id)
        if lock is None:
            lock = threading.Lock()
            _workspace_locks[workspace_id] = lock
        return lock


# (chapter, new title, new content)
ChapterChange = Tuple[Chapter, Optional[str], str]


def display_title(chapter: Chapter, new_title: Optional[str] = None) -> str:
    """Title shown in summaries: the corrected translated title when there is one."""
    return new_title or chapter.title_translated or chapter.title


def preview_titles(titles: List[str], limit: int = None) -> Tuple[List[str], int]:
    """First few titles and how many were left out."""
    if limit is None:
        limit = get_summary_preview_titles()
    shown = titles[:limit]
    return shown, len(titles) - len(shown)


def format_title_preview(titles: List[str], limit: int = None) -> str:
    shown, overflow = preview_titles(titles, limit)
    text = ", ".join(shown)
    if overflow > 0:
        text += f" (+{overflow} more)"
    return text


def compute_changes(chapters: Iterable[Chapter], transform: Callable[[str], str]) -> List[ChapterChange]:
    """Run transform over each chapter's translated title and body; keep the ones that differ."""
    changes = []
    for chapter in chapters:
        old_title = chapter.title_translated
        old_content = chapter.content_translated or ""

        new_title = transform(old_title) if old_title else old_title
        new_content = transform(old_content)

        if new_title != old_title or new_content != old_content:
            changes.append((chapter, new_title, new_content))
    return changes


def capture_snapshot(changes: Iterable[ChapterChange]) -> List[SnapshotItem]:
    """Before-state of every chapter about to be rewritten."""
    return [
        SnapshotItem(chapter_id=chapter.id, title=chapter.title_translated, content=chapter.content_translated or "")
        for chapter, _, _ in changes
    ]


def _eligible_chapters(cursor: sqlite3.Cursor, workspace_id: str,
                       chapter_ids: Optional[Iterable[int]]) -> List[Chapter]:
    chapters = dao.fetch_chapters(cursor, workspace_id, chapter_ids)
    return [c for c in chapters if c.content_translated]


def _run(workspace_id: str, action_type: str, chapter_ids: Optional[Iterable[int]],
         load_rules: Optional[Callable[[sqlite3.Cursor], List[CorrectionRule]]],
         make_transform: Callable[[List[CorrectionRule]], Callable[[str], str]]) -> BatchResult:
    rules: List[CorrectionRule] = []

    with workspace_lock(workspace_id):
        try:
            with UnitOfWork() as uow:
                cursor = uow.cursor()

                if load_rules is not None:
                    rules = load_rules(cursor)
                    if not rules:
                        logger.log_batch_run(workspace_id, action_type, "nothing_to_do")
                        return BatchResult(status="nothing_to_do", message="No correction rules to apply.")

                chapters = _eligible_chapters(cursor, workspace_id, chapter_ids)
                if not chapters:
                    logger.log_batch_run(workspace_id, action_type, "nothing_to_do", rules_count=len(rules))
                    return BatchResult(status="nothing_to_do", message="No translated chapters to correct.")

                changes = compute_changes(chapters, make_transform(rules))
                if not changes:
                    logger.log_batch_run(workspace_id, action_type, "no_changes",
                                         rules_count=len(rules), eligible_count=len(chapters))
                    return BatchResult(status="no_changes", eligible_count=len(chapters),
                                       message="No changes needed.")

                snapshot = capture_snapshot(changes)
                titles = [display_title(chapter, new_title) for chapter, new_title, _ in changes]
                summary = _summary(action_type, len(rules), titles)

                # Clear the slot, rewrite chapters, then fill the slot again
                dao.delete_history_for_workspace(cursor, workspace_id)
                for chapter, new_title, new_content in changes:
                    dao.write_chapter_translation(cursor, chapter.id, new_title, new_content)
                history_id = dao.insert_history(cursor, workspace_id, action_type, summary, snapshot)

                uow.commit()

        except sqlite3.Error as e:
            logger.log_batch_run(workspace_id, action_type, "failed", rules_count=len(rules),
                                 details={"error": str(e)[:100]})
            raise BatchCorrectionError(f"Batch correction failed for workspace '{workspace_id}': {e}") from e

    shown, overflow = preview_titles(titles)
    logger.log_batch_run(workspace_id, action_type, "success", rules_count=len(rules),
                         eligible_count=len(chapters), affected_count=len(changes),
                         details={"history_id": history_id})

    return BatchResult(
        status="applied",
        affected_count=len(changes),
        affected_titles=shown,
        overflow_count=overflow,
        eligible_count=len(chapters),
        history_id=history_id,
        message=f"Updated {len(changes)} chapters: {format_title_preview(titles)}"
    )


def _summary(action_type: str, rules_count: int, titles: List[str]) -> str:
    if action_type == ACTION_BRACKET_REPAIR:
        head = f"Repaired brackets in {len(titles)} chapters"
    else:
        head = f"Applied {rules_count} correction rules to {len(titles)} chapters"
    return f"{head}: {format_title_preview(titles)}"


def run_batch(workspace_id: str, rules: Optional[List[CorrectionRule]] = None,
              chapter_ids: Optional[Iterable[int]] = None) -> BatchResult:
    """Apply a rule set to the selected chapters of a workspace.

    rules defaults to the workspace's stored rules in creation order;
    chapter_ids defaults to every chapter with translated content. Chapters
    outside the workspace or without a translation are ignored.

    Raises BatchCorrectionError if storage fails; nothing is written then.
    """
    def load_rules(cursor: sqlite3.Cursor) -> List[CorrectionRule]:
        if rules is not None:
            return list(rules)
        return dao.fetch_rules(cursor, workspace_id)

    def make_transform(rule_list: List[CorrectionRule]) -> Callable[[str], str]:
        return lambda text: apply_rule_set(text, rule_list)

    return _run(workspace_id, ACTION_BATCH_CORRECTION, chapter_ids, load_rules, make_transform)


def repair_brackets(workspace_id: str, chapter_ids: Optional[Iterable[int]] = None) -> BatchResult:
    """Run only the final sweep over translated chapters, with undo like a batch run."""
    return _run(workspace_id, ACTION_BRACKET_REPAIR, chapter_ids, None, lambda rule_list: final_sweep)


def apply_rule_to_chapter(chapter_id: int, rule: CorrectionRule) -> Tuple[CorrectionRule, bool]:
    """Save a rule from the chapter editor and apply it to that chapter's body right away.

    Returns the stored rule and whether the chapter changed. No sweep and no
    history entry; the workspace batch run covers the rest of the book.
    """
    chapter = dao.get_chapter(chapter_id)
    if chapter is None:
        raise ChapterNotFoundError(f"Chapter {chapter_id} not found")

    stored = dao.add_rule(chapter.workspace_id, rule)

    content = chapter.content_translated or ""
    new_content = apply_rule(content, stored)
    if new_content == content:
        logger.info(f"Rule {stored.id} found nothing to change in chapter {chapter_id}")
        return stored, False

    with UnitOfWork() as uow:
        dao.write_chapter_translation(uow.cursor(), chapter_id, chapter.title_translated, new_content)
        uow.commit()

    logger.log_rule_operation("applied_to_chapter", chapter.workspace_id, stored.id, stored.kind)
    return stored, True


def parse_range_string(range_str: str) -> Set[int]:
    """Parse "1-5, 10, 15-20" into a set of chapter orders. Unparseable parts are ignored."""
    orders: Set[int] = set()
    if not range_str or not range_str.strip():
        return orders

    for part in (p.strip() for p in range_str.split(",")):
        if not part:
            continue
        if "-" in part:
            start_str, _, end_str = part.partition("-")
            try:
                start, end = int(start_str.strip()), int(end_str.strip())
            except ValueError:
                continue
            orders.update(range(min(start, end), max(start, end) + 1))
        else:
            try:
                orders.add(int(part))
            except ValueError:
                continue
    return orders


def select_chapters_by_range(workspace_id: str, range_str: str) -> List[int]:
    """Ids of the workspace's chapters whose order falls in range_str."""
    orders = parse_range_string(range_str)
    return [c.id for c in dao.list_chapters(workspace_id) if c.order in orders]
