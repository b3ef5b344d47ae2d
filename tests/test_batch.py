"""
Batch correction runs: change detection, history rotation and atomicity.
"""

import gc
import sqlite3
from unittest.mock import patch

import pytest

from chapterfix.core import batch, dao
from chapterfix.core.batch import (
    run_batch,
    repair_brackets,
    apply_rule_to_chapter,
    parse_range_string,
    select_chapters_by_range,
    preview_titles,
    format_title_preview,
    workspace_lock,
)
from chapterfix.core.errors import BatchCorrectionError, ChapterNotFoundError
from chapterfix.core.schema import ReplaceRule, RegexRule, WrapRule


def _chapter(workspace, order, content, title_translated=None):
    return dao.add_chapter(
        workspace,
        order=order,
        title=f"Chapter {order}",
        content_original="原文",
        title_translated=title_translated or f"Chương {order}",
        content_translated=content,
        status="translated"
    )


class TestBatchRun:
    """Applying a workspace's rules to its chapters."""

    def test_concrete_scenario(self, workspace):
        """Only the chapter containing the source text is rewritten."""
        ch1 = _chapter(workspace, 1, "Hắn rút Thiên Linh Kiếm ra.")
        ch2 = _chapter(workspace, 2, "Trời đã tối.")
        dao.add_rule(workspace, ReplaceRule(from_text="Thiên Linh Kiếm", to_text="Thiên Minh Kiếm"))

        result = run_batch(workspace)

        assert result.status == "applied"
        assert result.affected_count == 1
        assert result.affected_titles == ["Chương 1"]
        assert dao.get_chapter(ch1.id).content_translated == "Hắn rút Thiên Minh Kiếm ra."
        assert dao.get_chapter(ch2.id).content_translated == "Trời đã tối."

        entry = dao.get_history(workspace)
        assert entry.id == result.history_id
        assert entry.affected_count == 1
        assert entry.action_type == "batch_correction"
        assert [item.chapter_id for item in entry.snapshot] == [ch1.id]
        assert entry.snapshot[0].content == "Hắn rút Thiên Linh Kiếm ra."

    def test_no_rules(self, workspace):
        _chapter(workspace, 1, "text")
        result = run_batch(workspace)
        assert result.status == "nothing_to_do"
        assert dao.get_history(workspace) is None

    def test_no_translated_chapters(self, workspace):
        dao.add_chapter(workspace, order=1, title="Chapter 1", content_original="原文")
        dao.add_rule(workspace, ReplaceRule(from_text="a", to_text="b"))
        result = run_batch(workspace)
        assert result.status == "nothing_to_do"

    def test_no_changes_writes_no_history(self, workspace):
        ch = _chapter(workspace, 1, "Trời đã tối.")
        dao.add_rule(workspace, ReplaceRule(from_text="Thiên Linh Kiếm", to_text="Thiên Minh Kiếm"))

        result = run_batch(workspace)

        assert result.status == "no_changes"
        assert result.eligible_count == 1
        assert dao.get_history(workspace) is None
        assert dao.get_chapter(ch.id).content_translated == "Trời đã tối."

    def test_no_changes_keeps_previous_history(self, workspace):
        _chapter(workspace, 1, "Thiên Linh Kiếm")
        dao.add_rule(workspace, ReplaceRule(from_text="Thiên Linh Kiếm", to_text="Thiên Minh Kiếm"))
        first = run_batch(workspace)

        second = run_batch(workspace)

        assert second.status == "no_changes"
        assert dao.get_history(workspace).id == first.history_id

    def test_translated_title_is_corrected(self, workspace):
        ch = _chapter(workspace, 1, "Nội dung.", title_translated="Thiên Linh Kiếm xuất thế")
        dao.add_rule(workspace, ReplaceRule(from_text="Thiên Linh Kiếm", to_text="Thiên Minh Kiếm"))

        result = run_batch(workspace)

        stored = dao.get_chapter(ch.id)
        assert stored.title_translated == "Thiên Minh Kiếm xuất thế"
        assert stored.title == "Chapter 1"
        assert stored.status == "translated"
        assert dao.get_history(workspace).snapshot[0].title == "Thiên Linh Kiếm xuất thế"
        assert result.affected_titles == ["Thiên Minh Kiếm xuất thế"]

    def test_explicit_rules_override_stored_rules(self, workspace):
        ch = _chapter(workspace, 1, "X")
        dao.add_rule(workspace, ReplaceRule(from_text="X", to_text="stored"))

        run_batch(workspace, rules=[ReplaceRule(from_text="X", to_text="Y"), ReplaceRule(from_text="Y", to_text="Z")])

        assert dao.get_chapter(ch.id).content_translated == "Z"

    def test_chapter_selection(self, workspace):
        ch1 = _chapter(workspace, 1, "a")
        ch2 = _chapter(workspace, 2, "a")
        other = _chapter("ws-other", 1, "a")
        dao.add_rule(workspace, ReplaceRule(from_text="a", to_text="b"))

        result = run_batch(workspace, chapter_ids=[ch2.id, other.id])

        assert result.affected_count == 1
        assert dao.get_chapter(ch1.id).content_translated == "a"
        assert dao.get_chapter(ch2.id).content_translated == "b"
        assert dao.get_chapter(other.id).content_translated == "a"

    def test_bad_regex_does_not_stop_batch(self, workspace):
        ch = _chapter(workspace, 1, "aaa")
        rules = [RegexRule(pattern="(", replacement="x"), ReplaceRule(from_text="a", to_text="b")]

        result = run_batch(workspace, rules=rules)

        assert result.status == "applied"
        assert dao.get_chapter(ch.id).content_translated == "bbb"

    def test_summary_lists_first_titles(self, workspace):
        for order in range(1, 6):
            _chapter(workspace, order, "a")
        dao.add_rule(workspace, ReplaceRule(from_text="a", to_text="b"))

        result = run_batch(workspace)

        assert result.affected_count == 5
        assert result.affected_titles == ["Chương 1", "Chương 2", "Chương 3"]
        assert result.overflow_count == 2
        assert "(+2 more)" in result.message
        assert dao.get_history(workspace).summary.startswith("Applied 1 correction rules to 5 chapters")


class TestHistoryRotation:
    """A workspace keeps exactly one history entry."""

    def test_second_run_replaces_entry(self, workspace):
        ch = _chapter(workspace, 1, "A")
        first = run_batch(workspace, rules=[ReplaceRule(from_text="A", to_text="B")])
        second = run_batch(workspace, rules=[ReplaceRule(from_text="B", to_text="C")])

        assert first.history_id != second.history_id
        assert dao.get_history_entry(first.history_id) is None

        entry = dao.get_history(workspace)
        assert entry.id == second.history_id
        assert entry.snapshot[0].content == "B"
        assert dao.get_chapter(ch.id).content_translated == "C"

    def test_workspaces_rotate_independently(self, workspace):
        _chapter(workspace, 1, "A")
        _chapter("ws-other", 1, "A")
        rules = [ReplaceRule(from_text="A", to_text="B")]

        mine = run_batch(workspace, rules=rules)
        theirs = run_batch("ws-other", rules=rules)

        assert dao.get_history(workspace).id == mine.history_id
        assert dao.get_history("ws-other").id == theirs.history_id


class TestAtomicity:
    """Storage failures leave chapters and history as they were."""

    def test_failed_history_insert_rolls_back(self, workspace):
        ch = _chapter(workspace, 1, "A")
        first = run_batch(workspace, rules=[ReplaceRule(from_text="A", to_text="B")])

        with patch("chapterfix.core.dao.insert_history", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(BatchCorrectionError):
                run_batch(workspace, rules=[ReplaceRule(from_text="B", to_text="C")])

        assert dao.get_chapter(ch.id).content_translated == "B"
        entry = dao.get_history(workspace)
        assert entry.id == first.history_id
        assert entry.snapshot[0].content == "A"

    def test_failed_chapter_write_rolls_back(self, workspace):
        ch1 = _chapter(workspace, 1, "A")
        ch2 = _chapter(workspace, 2, "A")
        real_write = dao.write_chapter_translation
        calls = []

        def failing_write(cursor, chapter_id, title, content):
            calls.append(chapter_id)
            if len(calls) == 2:
                raise sqlite3.OperationalError("database is locked")
            return real_write(cursor, chapter_id, title, content)

        with patch("chapterfix.core.dao.write_chapter_translation", side_effect=failing_write):
            with pytest.raises(BatchCorrectionError):
                run_batch(workspace, rules=[ReplaceRule(from_text="A", to_text="B")])

        assert dao.get_chapter(ch1.id).content_translated == "A"
        assert dao.get_chapter(ch2.id).content_translated == "A"
        assert dao.get_history(workspace) is None


class TestRepairBrackets:

    def test_sweep_only_batch(self, workspace):
        ch = _chapter(workspace, 1, "Hắn nói:\n\n[[Đi thôi]]")
        clean = _chapter(workspace, 2, "[Đi thôi]")

        result = repair_brackets(workspace)

        assert result.status == "applied"
        assert result.affected_count == 1
        assert dao.get_chapter(ch.id).content_translated == "Hắn nói: [Đi thôi]"
        assert dao.get_chapter(clean.id).content_translated == "[Đi thôi]"

        entry = dao.get_history(workspace)
        assert entry.action_type == "bracket_repair"
        assert entry.summary.startswith("Repaired brackets in 1 chapters")

    def test_already_clean(self, workspace):
        _chapter(workspace, 1, "[Đi thôi]")
        assert repair_brackets(workspace).status == "no_changes"


class TestApplyRuleToChapter:

    def test_saves_rule_and_rewrites_chapter(self, workspace):
        ch = _chapter(workspace, 1, "Lâm  Phong  gặp Lâm  Phong")
        other = _chapter(workspace, 2, "Lâm  Phong")

        stored, changed = apply_rule_to_chapter(ch.id, WrapRule(target="Lâm  Phong", open_mark="[", close_mark="]"))

        assert changed is True
        assert stored.id is not None
        assert dao.get_chapter(ch.id).content_translated == "[Lâm  Phong]  gặp [Lâm  Phong]"
        assert dao.get_chapter(other.id).content_translated == "Lâm  Phong"
        assert [r.id for r in dao.list_rules(workspace)] == [stored.id]
        assert dao.get_history(workspace) is None

    def test_nothing_to_change(self, workspace):
        ch = _chapter(workspace, 1, "text")
        stored, changed = apply_rule_to_chapter(ch.id, ReplaceRule(from_text="missing", to_text="x"))
        assert changed is False
        assert dao.get_rule(stored.id) is not None

    def test_unknown_chapter(self, workspace):
        with pytest.raises(ChapterNotFoundError):
            apply_rule_to_chapter(999, ReplaceRule(from_text="a", to_text="b"))


class TestRanges:

    def test_parse_range_string(self):
        assert parse_range_string("1-3, 5, 9-7, x, ") == {1, 2, 3, 5, 7, 8, 9}
        assert parse_range_string("") == set()
        assert parse_range_string("a-b") == set()

    def test_select_chapters_by_range(self, workspace):
        chapters = [_chapter(workspace, order, "a") for order in range(1, 6)]
        selected = select_chapters_by_range(workspace, "2-3,5")
        assert selected == [chapters[1].id, chapters[2].id, chapters[4].id]

    def test_preview_titles(self):
        assert preview_titles(["a", "b"], 3) == (["a", "b"], 0)
        assert preview_titles(["a", "b", "c", "d"], 3) == (["a", "b", "c"], 1)
        assert format_title_preview(["a", "b", "c", "d"], 2) == "a, b (+2 more)"


class TestWorkspaceLocks:

    def test_same_lock_while_in_use(self):
        lock = workspace_lock("ws-a")
        assert workspace_lock("ws-a") is lock
        assert workspace_lock("ws-b") is not lock

    def test_released_locks_are_dropped(self):
        lock = workspace_lock("ws-gone")
        assert "ws-gone" in batch._workspace_locks

        del lock
        gc.collect()

        assert "ws-gone" not in batch._workspace_locks
