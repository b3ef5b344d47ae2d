"""
Operations utilities - CLI tools for managing correction rules, running
batch corrections and undoing them.
"""

import argparse
import json
import sys
from pathlib import Path

# Allow running from a source checkout without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from chapterfix.core import dao
from chapterfix.core.batch import run_batch, repair_brackets, select_chapters_by_range
from chapterfix.core.undo import undo, list_history
from chapterfix.core.db import init_db
from chapterfix.core.errors import (
    RuleValidationError,
    HistoryNotFoundError,
    BatchCorrectionError,
    UndoError,
)
from chapterfix.core.schema import ReplaceRule, WrapRule, RegexRule
from chapterfix.util.logging import logger


def _describe_rule(rule) -> str:
    if isinstance(rule, ReplaceRule):
        return f"replace  {rule.from_text!r} -> {rule.to_text!r}"
    if isinstance(rule, WrapRule):
        return f"wrap     {rule.target!r} in {rule.open_mark}{rule.close_mark}"
    return f"regex    /{rule.pattern}/ -> {rule.replacement!r}"


def _print_batch_result(result):
    if result.status == "applied":
        print(f"✅ {result.message}")
        print(f"   History entry: {result.history_id} (undo with: undo {result.history_id})")
    else:
        print(f"ℹ️  {result.message}")


def _chapter_ids(args):
    if getattr(args, "range", None):
        return select_chapters_by_range(args.workspace, args.range)
    return None


def list_rules_command(args):
    """CLI command for listing a workspace's rules in application order."""
    rules = dao.search_rules(args.workspace, args.query) if args.query else dao.list_rules(args.workspace)
    if not rules:
        print(f"No rules for workspace '{args.workspace}'")
        return

    print(f"📋 {len(rules)} rules for workspace '{args.workspace}'")
    for rule in rules:
        print(f"   [{rule.id}] {_describe_rule(rule)}")


def add_rule_command(args):
    """CLI command for adding a rule."""
    if args.kind == "wrap":
        rule = WrapRule(target=args.text, open_mark=args.open_mark or "", close_mark=args.close_mark or "")
    elif args.kind == "regex":
        rule = RegexRule(pattern=args.text, replacement=args.to or "")
    else:
        rule = ReplaceRule(from_text=args.text, to_text=args.to or "")

    try:
        stored = dao.add_rule(args.workspace, rule)
    except RuleValidationError as e:
        print(f"❌ Invalid rule: {e}")
        sys.exit(1)

    print(f"✅ Added rule {stored.id}: {_describe_rule(stored)}")


def batch_command(args):
    """CLI command for applying the workspace's rules to its translated chapters."""
    try:
        result = run_batch(args.workspace, chapter_ids=_chapter_ids(args))
    except BatchCorrectionError as e:
        print(f"❌ Batch correction failed, no chapters were changed: {e}")
        logger.error(f"CLI batch failed: {e}")
        sys.exit(1)

    _print_batch_result(result)


def repair_brackets_command(args):
    """CLI command for running only the bracket/whitespace sweep."""
    try:
        result = repair_brackets(args.workspace, chapter_ids=_chapter_ids(args))
    except BatchCorrectionError as e:
        print(f"❌ Bracket repair failed, no chapters were changed: {e}")
        logger.error(f"CLI bracket repair failed: {e}")
        sys.exit(1)

    _print_batch_result(result)


def history_command(args):
    """CLI command for showing the undoable entry of a workspace."""
    entry = list_history(args.workspace)
    if not entry:
        print(f"No undoable action for workspace '{args.workspace}'")
        return

    if args.json:
        print(json.dumps({
            "id": entry.id,
            "action_type": entry.action_type,
            "summary": entry.summary,
            "timestamp": entry.timestamp,
            "affected_count": entry.affected_count,
        }, indent=2, default=str, ensure_ascii=False))
    else:
        print(f"🕘 [{entry.id}] {entry.action_type} at {entry.timestamp}")
        print(f"   {entry.summary}")


def undo_command(args):
    """CLI command for undoing a history entry."""
    try:
        result = undo(args.entry_id)
    except HistoryNotFoundError:
        print(f"❌ History entry {args.entry_id} not found")
        sys.exit(1)
    except UndoError as e:
        print(f"❌ Undo failed, no chapters were changed: {e}")
        logger.error(f"CLI undo failed: {e}")
        sys.exit(1)

    if result.status == "partial":
        print(f"⚠️  {result.message}")
        print(f"   Missing chapters: {', '.join(str(i) for i in result.missing_chapter_ids)}")
    else:
        print(f"✅ {result.message}")


def export_rules_command(args):
    """CLI command for writing a workspace's rules to a JSON file."""
    records = dao.export_rules(args.workspace)
    Path(args.output).write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
    print(f"✅ Exported {len(records)} rules to {args.output}")


def import_rules_command(args):
    """CLI command for merging rules from a JSON file."""
    try:
        records = json.loads(Path(args.input).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f"❌ Could not read {args.input}: {e}")
        sys.exit(1)

    if not isinstance(records, list):
        print("❌ Expected a JSON list of rule records")
        sys.exit(1)

    added = dao.import_rules(args.workspace, records)
    print(f"✅ Imported {added} rules ({len(records) - added} skipped)")


def main(argv=None):
    """Main CLI entry point for operations utilities."""
    parser = argparse.ArgumentParser(
        description="Chapterfix Operations CLI Utilities",
        prog="python scripts/ops_util.py"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    rules_parser = subparsers.add_parser("rules", help="List correction rules")
    rules_parser.add_argument("workspace", help="Workspace id")
    rules_parser.add_argument("--query", default="", help="Only rules containing this text")
    rules_parser.set_defaults(func=list_rules_command)

    add_parser = subparsers.add_parser("add-rule", help="Add a correction rule")
    add_parser.add_argument("workspace", help="Workspace id")
    add_parser.add_argument("text", help="Text to find (replace), target (wrap) or pattern (regex)")
    add_parser.add_argument("--kind", choices=["replace", "wrap", "regex"], default="replace")
    add_parser.add_argument("--to", help="Replacement text (replace, regex)")
    add_parser.add_argument("--open-mark", help="Opening mark (wrap)")
    add_parser.add_argument("--close-mark", help="Closing mark (wrap)")
    add_parser.set_defaults(func=add_rule_command)

    batch_parser = subparsers.add_parser("batch", help="Apply rules to translated chapters")
    batch_parser.add_argument("workspace", help="Workspace id")
    batch_parser.add_argument("--range", help="Chapter orders, e.g. '1-5, 10'")
    batch_parser.set_defaults(func=batch_command)

    repair_parser = subparsers.add_parser("repair-brackets", help="Normalize brackets and whitespace only")
    repair_parser.add_argument("workspace", help="Workspace id")
    repair_parser.add_argument("--range", help="Chapter orders, e.g. '1-5, 10'")
    repair_parser.set_defaults(func=repair_brackets_command)

    history_parser = subparsers.add_parser("history", help="Show the undoable action")
    history_parser.add_argument("workspace", help="Workspace id")
    history_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    history_parser.set_defaults(func=history_command)

    undo_parser = subparsers.add_parser("undo", help="Undo a batch run")
    undo_parser.add_argument("entry_id", type=int, help="History entry id")
    undo_parser.set_defaults(func=undo_command)

    export_parser = subparsers.add_parser("export-rules", help="Export rules to JSON")
    export_parser.add_argument("workspace", help="Workspace id")
    export_parser.add_argument("output", help="Output file")
    export_parser.set_defaults(func=export_rules_command)

    import_parser = subparsers.add_parser("import-rules", help="Import rules from JSON")
    import_parser.add_argument("workspace", help="Workspace id")
    import_parser.add_argument("input", help="Input file")
    import_parser.set_defaults(func=import_rules_command)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    init_db()
    args.func(args)


if __name__ == "__main__":
    main()
