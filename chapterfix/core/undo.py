"""
History panel operations: read the workspace's single undo slot and consume it.
"""

import sqlite3
from typing import Optional

from . import dao
from .batch import workspace_lock
from .db import UnitOfWork
from .errors import HistoryNotFoundError, UndoError
from .schema import HistoryEntry, UndoResult
from ..util.logging import logger


def list_history(workspace_id: str) -> Optional[HistoryEntry]:
    """The workspace's undoable entry, or None."""
    return dao.get_history(workspace_id)


def undo(entry_id: int) -> UndoResult:
    """Restore every chapter in the entry's snapshot and delete the entry.

    All-or-nothing in one transaction. Chapters deleted since the batch ran
    are skipped and reported in missing_chapter_ids (status "partial").
    Raises HistoryNotFoundError for an unknown entry and UndoError if
    storage fails.
    """
    entry = dao.get_history_entry(entry_id)
    if entry is None:
        raise HistoryNotFoundError(f"History entry {entry_id} not found")

    with workspace_lock(entry.workspace_id):
        try:
            with UnitOfWork() as uow:
                cursor = uow.cursor()

                # Re-read under the write lock; a batch may have rotated it out
                entry = dao.fetch_history_entry(cursor, entry_id)
                if entry is None:
                    raise HistoryNotFoundError(f"History entry {entry_id} not found")

                restored = 0
                missing = []
                for item in entry.snapshot:
                    if dao.write_chapter_translation(cursor, item.chapter_id, item.title, item.content):
                        restored += 1
                    else:
                        missing.append(item.chapter_id)

                dao.delete_history_entry(cursor, entry_id)
                uow.commit()

        except sqlite3.Error as e:
            logger.log_undo(entry_id, entry.workspace_id, 0, status="failed")
            raise UndoError(f"Undo of history entry {entry_id} failed: {e}") from e

    if missing:
        logger.log_undo(entry_id, entry.workspace_id, restored, missing, status="partial")
        return UndoResult(
            status="partial",
            entry_id=entry_id,
            restored_count=restored,
            missing_chapter_ids=missing,
            message=f"Restored {restored} chapters; {len(missing)} no longer exist."
        )

    logger.log_undo(entry_id, entry.workspace_id, restored)
    return UndoResult(
        status="restored",
        entry_id=entry_id,
        restored_count=restored,
        message=f"Restored {restored} chapters."
    )


def clear_history(workspace_id: str) -> int:
    """Drop the workspace's undo slot without restoring anything."""
    with workspace_lock(workspace_id):
        removed = dao.clear_history(workspace_id)
    logger.log_operation("history.clear", "success", {"workspace_id": workspace_id, "removed": removed})
    return removed
