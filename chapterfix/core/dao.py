"""
Data access for correction rules, chapters and the single-slot history.

Functions taking a cursor run inside a caller's UnitOfWork and never commit;
the others open their own connection.
"""

import json
import sqlite3
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Any

from .db import get_db, UnitOfWork
from .schema import (
    CorrectionRule,
    ReplaceRule,
    WrapRule,
    RegexRule,
    Chapter,
    HistoryEntry,
    SnapshotItem,
    CHAPTER_STATUSES,
    rule_from_dict,
    rule_to_dict,
    validate_rule,
)
from .errors import ChapterNotFoundError
from ..util.logging import logger

_RULE_COLUMNS = "id, workspace_id, kind, created_at, from_text, to_text, target, open_mark, close_mark, pattern, replacement"
_CHAPTER_COLUMNS = ("id, workspace_id, chapter_order, title, content_original, title_translated, "
                    "content_translated, status, updated_at")
_HISTORY_COLUMNS = "id, workspace_id, action_type, summary, timestamp, affected_count, snapshot"


def _parse_ts(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Rule store
# ---------------------------------------------------------------------------

def _row_to_rule(row) -> CorrectionRule:
    (rule_id, workspace_id, kind, created_at, from_text, to_text,
     target, open_mark, close_mark, pattern, replacement) = row
    return rule_from_dict({
        "id": rule_id,
        "workspace_id": workspace_id,
        "kind": kind,
        "created_at": _parse_ts(created_at),
        "from_text": from_text,
        "to_text": to_text,
        "target": target,
        "open_mark": open_mark,
        "close_mark": close_mark,
        "pattern": pattern,
        "replacement": replacement,
    })


def _rule_columns(rule: CorrectionRule) -> Dict[str, Any]:
    """Column values for a rule; fields of other kinds are NULL."""
    values = {
        "kind": rule.kind,
        "from_text": None,
        "to_text": None,
        "target": None,
        "open_mark": None,
        "close_mark": None,
        "pattern": None,
        "replacement": None,
    }
    if isinstance(rule, ReplaceRule):
        values.update(from_text=rule.from_text, to_text=rule.to_text or "")
    elif isinstance(rule, WrapRule):
        values.update(target=rule.target, open_mark=rule.open_mark, close_mark=rule.close_mark)
    elif isinstance(rule, RegexRule):
        values.update(pattern=rule.pattern, replacement=rule.replacement or "")
    return values


def add_rule(workspace_id: str, rule: CorrectionRule) -> CorrectionRule:
    """Validate and store a rule for a workspace. Returns the stored rule."""
    validate_rule(rule)
    values = _rule_columns(rule)
    created_at = datetime.now()

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            """INSERT INTO corrections (workspace_id, kind, created_at, from_text, to_text,
                                        target, open_mark, close_mark, pattern, replacement)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (workspace_id, values["kind"], created_at.isoformat(), values["from_text"], values["to_text"],
             values["target"], values["open_mark"], values["close_mark"], values["pattern"], values["replacement"])
        )
        conn.commit()
        rule_id = cursor.lastrowid

    logger.log_rule_operation("added", workspace_id, rule_id, rule.kind)
    return get_rule(rule_id)


def get_rule(rule_id: int) -> Optional[CorrectionRule]:
    """Get a rule by id."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_RULE_COLUMNS} FROM corrections WHERE id = ?", (rule_id,))
            row = cursor.fetchone()
            return _row_to_rule(row) if row else None
    except Exception as e:
        logger.error(f"Failed to get rule {rule_id}: {e}")
        return None


def fetch_rules(cursor: sqlite3.Cursor, workspace_id: str) -> List[CorrectionRule]:
    """Rules of a workspace in stored (creation) order."""
    cursor.execute(
        f"SELECT {_RULE_COLUMNS} FROM corrections WHERE workspace_id = ? ORDER BY id",
        (workspace_id,)
    )
    return [_row_to_rule(row) for row in cursor.fetchall()]


def list_rules(workspace_id: str) -> List[CorrectionRule]:
    """List a workspace's rules in the order they are applied."""
    try:
        if not workspace_id or not workspace_id.strip():
            return []
        with get_db() as conn:
            return fetch_rules(conn.cursor(), workspace_id.strip())
    except Exception as e:
        logger.error(f"Failed to list rules for workspace '{workspace_id}': {e}")
        return []


def search_rules(workspace_id: str, query: str) -> List[CorrectionRule]:
    """Rules with any text field containing query, case-insensitively."""
    rules = list_rules(workspace_id)
    needle = (query or "").strip().lower()
    if not needle:
        return rules

    def _haystack(rule: CorrectionRule) -> str:
        data = rule_to_dict(rule)
        return " ".join(str(data.get(k) or "") for k in
                        ("from_text", "to_text", "target", "open_mark", "close_mark", "pattern", "replacement"))

    return [r for r in rules if needle in _haystack(r).lower()]


def update_rule(rule_id: int, rule: CorrectionRule) -> Optional[CorrectionRule]:
    """Replace a rule's mutable fields (and kind). Identity and workspace are kept."""
    validate_rule(rule)
    existing = get_rule(rule_id)
    if existing is None:
        return None

    values = _rule_columns(rule)
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            """UPDATE corrections SET kind = ?, from_text = ?, to_text = ?, target = ?, open_mark = ?,
                      close_mark = ?, pattern = ?, replacement = ?
               WHERE id = ?""",
            (values["kind"], values["from_text"], values["to_text"], values["target"], values["open_mark"],
             values["close_mark"], values["pattern"], values["replacement"], rule_id)
        )
        conn.commit()

    logger.log_rule_operation("updated", existing.workspace_id, rule_id, rule.kind)
    return get_rule(rule_id)


def delete_rule(rule_id: int) -> bool:
    """Delete a rule. Returns False when it did not exist."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT workspace_id FROM corrections WHERE id = ?", (rule_id,))
        row = cursor.fetchone()
        if not row:
            return False
        cursor.execute("DELETE FROM corrections WHERE id = ?", (rule_id,))
        conn.commit()

    logger.log_rule_operation("deleted", row[0], rule_id)
    return True


def _rule_key(rule: CorrectionRule):
    if isinstance(rule, ReplaceRule):
        return ("replace", rule.from_text)
    if isinstance(rule, WrapRule):
        return ("wrap", rule.target)
    return ("regex", rule.pattern)


def export_rules(workspace_id: str) -> List[Dict[str, Any]]:
    """Rules as JSON-compatible records, without store identity."""
    records = []
    for rule in list_rules(workspace_id):
        data = rule_to_dict(rule)
        data.pop("id", None)
        data.pop("workspace_id", None)
        records.append(data)
    return records


def import_rules(workspace_id: str, records: Iterable[Dict[str, Any]]) -> int:
    """Merge exported records into a workspace, skipping ones already present.

    Invalid records are skipped with a warning. Returns the number added.
    """
    known = {_rule_key(r) for r in list_rules(workspace_id)}
    added = 0

    for record in records:
        if not isinstance(record, dict):
            logger.warning(f"Skipping non-object rule record during import: {record!r:.60}")
            continue
        try:
            rule = rule_from_dict(record)
            validate_rule(rule)
        except ValueError as e:
            logger.warning(f"Skipping invalid rule record during import: {e}")
            continue

        key = _rule_key(rule)
        if key in known:
            continue

        rule.id = None
        rule.created_at = None
        add_rule(workspace_id, rule)
        known.add(key)
        added += 1

    logger.log_operation("rules.imported", "success", {"workspace_id": workspace_id, "added": added})
    return added


# ---------------------------------------------------------------------------
# Document (chapter) store
# ---------------------------------------------------------------------------

def _row_to_chapter(row) -> Chapter:
    (chapter_id, workspace_id, order, title, content_original,
     title_translated, content_translated, status, updated_at) = row
    return Chapter(
        id=chapter_id,
        workspace_id=workspace_id,
        order=order,
        title=title,
        content_original=content_original or "",
        title_translated=title_translated,
        content_translated=content_translated,
        status=status or "draft",
        updated_at=_parse_ts(updated_at)
    )


def add_chapter(workspace_id: str, order: int, title: str, content_original: str = "",
                title_translated: Optional[str] = None, content_translated: Optional[str] = None,
                status: str = "draft") -> Chapter:
    """Store a chapter; used by the import flow."""
    if status not in CHAPTER_STATUSES:
        raise ValueError(f"status must be one of: {list(CHAPTER_STATUSES)}")

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            """INSERT INTO chapters (workspace_id, chapter_order, title, content_original,
                                     title_translated, content_translated, status, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (workspace_id, order, title, content_original, title_translated, content_translated,
             status, datetime.now().isoformat())
        )
        conn.commit()
        chapter_id = cursor.lastrowid

    return get_chapter(chapter_id)


def get_chapter(chapter_id: int) -> Optional[Chapter]:
    """Get a chapter by id."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_CHAPTER_COLUMNS} FROM chapters WHERE id = ?", (chapter_id,))
            row = cursor.fetchone()
            return _row_to_chapter(row) if row else None
    except Exception as e:
        logger.error(f"Failed to get chapter {chapter_id}: {e}")
        return None


def fetch_chapters(cursor: sqlite3.Cursor, workspace_id: str,
                   chapter_ids: Optional[Iterable[int]] = None) -> List[Chapter]:
    """Chapters of a workspace ordered by chapter order, optionally restricted to ids."""
    query = f"SELECT {_CHAPTER_COLUMNS} FROM chapters WHERE workspace_id = ?"
    params: List[Any] = [workspace_id]

    if chapter_ids is not None:
        ids = sorted(set(chapter_ids))
        if not ids:
            return []
        query += f" AND id IN ({','.join('?' for _ in ids)})"
        params.extend(ids)

    cursor.execute(query + " ORDER BY chapter_order, id", params)
    return [_row_to_chapter(row) for row in cursor.fetchall()]


def list_chapters(workspace_id: str) -> List[Chapter]:
    """List a workspace's chapters by order."""
    try:
        with get_db() as conn:
            return fetch_chapters(conn.cursor(), workspace_id)
    except Exception as e:
        logger.error(f"Failed to list chapters for workspace '{workspace_id}': {e}")
        return []


def list_translated_chapters(workspace_id: str) -> List[Chapter]:
    """Chapters with non-empty translated content."""
    return [c for c in list_chapters(workspace_id) if c.content_translated]


def write_chapter_translation(cursor: sqlite3.Cursor, chapter_id: int, title_translated: Optional[str],
                              content_translated: Optional[str]) -> bool:
    """Overwrite a chapter's translated title and body. Returns False if the chapter is gone."""
    cursor.execute(
        "UPDATE chapters SET title_translated = ?, content_translated = ?, updated_at = ? WHERE id = ?",
        (title_translated, content_translated, datetime.now().isoformat(), chapter_id)
    )
    return cursor.rowcount > 0


def save_translation(chapter_id: int, title_translated: Optional[str], content_translated: Optional[str],
                     status: str = "translated") -> Chapter:
    """Write path of the translation/editor flow."""
    if status not in CHAPTER_STATUSES:
        raise ValueError(f"status must be one of: {list(CHAPTER_STATUSES)}")

    with UnitOfWork() as uow:
        cursor = uow.cursor()
        if not write_chapter_translation(cursor, chapter_id, title_translated, content_translated):
            raise ChapterNotFoundError(f"Chapter {chapter_id} not found")
        cursor.execute("UPDATE chapters SET status = ? WHERE id = ?", (status, chapter_id))
        uow.commit()

    return get_chapter(chapter_id)


def clear_translation(chapter_id: int) -> bool:
    """Drop a chapter's translation and put it back to draft."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            """UPDATE chapters SET title_translated = NULL, content_translated = NULL,
                      status = 'draft', updated_at = ? WHERE id = ?""",
            (datetime.now().isoformat(), chapter_id)
        )
        conn.commit()
        return cursor.rowcount > 0


def delete_chapter(chapter_id: int) -> bool:
    """Delete a chapter."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM chapters WHERE id = ?", (chapter_id,))
        conn.commit()
        return cursor.rowcount > 0


def get_chapter_count(workspace_id: str = None) -> int:
    """Count chapters for a workspace or all workspaces."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            if workspace_id and workspace_id.strip():
                cursor.execute("SELECT COUNT(*) FROM chapters WHERE workspace_id = ?", (workspace_id.strip(),))
            else:
                cursor.execute("SELECT COUNT(*) FROM chapters")
            result = cursor.fetchone()
            return result[0] if result else 0
    except Exception as e:
        logger.error(f"Failed to get chapter count: {e}")
        return 0


# ---------------------------------------------------------------------------
# History store (one row per workspace)
# ---------------------------------------------------------------------------

def _row_to_history(row) -> HistoryEntry:
    entry_id, workspace_id, action_type, summary, timestamp, affected_count, snapshot = row
    items = [SnapshotItem.from_dict(item) for item in json.loads(snapshot or "[]")]
    return HistoryEntry(
        id=entry_id,
        workspace_id=workspace_id,
        action_type=action_type,
        summary=summary or "",
        timestamp=_parse_ts(timestamp),
        affected_count=affected_count,
        snapshot=items
    )


def fetch_history_entry(cursor: sqlite3.Cursor, entry_id: int) -> Optional[HistoryEntry]:
    cursor.execute(f"SELECT {_HISTORY_COLUMNS} FROM history WHERE id = ?", (entry_id,))
    row = cursor.fetchone()
    return _row_to_history(row) if row else None


def get_history(workspace_id: str) -> Optional[HistoryEntry]:
    """The workspace's history entry, if any."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_HISTORY_COLUMNS} FROM history WHERE workspace_id = ? ORDER BY id DESC LIMIT 1",
                (workspace_id,)
            )
            row = cursor.fetchone()
            return _row_to_history(row) if row else None
    except Exception as e:
        logger.error(f"Failed to get history for workspace '{workspace_id}': {e}")
        return None


def get_history_entry(entry_id: int) -> Optional[HistoryEntry]:
    """Get a history entry by id."""
    try:
        with get_db() as conn:
            return fetch_history_entry(conn.cursor(), entry_id)
    except Exception as e:
        logger.error(f"Failed to get history entry {entry_id}: {e}")
        return None


def delete_history_for_workspace(cursor: sqlite3.Cursor, workspace_id: str) -> int:
    cursor.execute("DELETE FROM history WHERE workspace_id = ?", (workspace_id,))
    return cursor.rowcount


def insert_history(cursor: sqlite3.Cursor, workspace_id: str, action_type: str, summary: str,
                   snapshot: List[SnapshotItem]) -> int:
    """Insert a history row. The unique index rejects a second row for the workspace."""
    cursor.execute(
        """INSERT INTO history (workspace_id, action_type, summary, timestamp, affected_count, snapshot)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (workspace_id, action_type, summary, datetime.now().isoformat(), len(snapshot),
         json.dumps([item.to_dict() for item in snapshot], ensure_ascii=False))
    )
    return cursor.lastrowid


def delete_history_entry(cursor: sqlite3.Cursor, entry_id: int) -> bool:
    cursor.execute("DELETE FROM history WHERE id = ?", (entry_id,))
    return cursor.rowcount > 0


def clear_history(workspace_id: str) -> int:
    """Empty the workspace's history slot. Returns rows removed."""
    with UnitOfWork() as uow:
        removed = delete_history_for_workspace(uow.cursor(), workspace_id)
        uow.commit()
    return removed


def delete_workspace_data(workspace_id: str) -> Dict[str, int]:
    """Remove chapters, rules and history of a workspace in one transaction."""
    with UnitOfWork() as uow:
        cursor = uow.cursor()
        counts = {}
        for table in ("chapters", "corrections", "history"):
            cursor.execute(f"DELETE FROM {table} WHERE workspace_id = ?", (workspace_id,))
            counts[table] = cursor.rowcount
        uow.commit()

    logger.log_operation("workspace.delete", "success", {"workspace_id": workspace_id, **counts})
    return counts
