"""
Structured logging for rule edits, batch corrections and undo.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for correction operations."""

    def __init__(self, name: str = "chapterfix"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("partial", "skipped"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_rule_operation(self, operation: str, workspace_id: str, rule_id: int = None,
                           kind: str = None, status: str = "success"):
        """Log a rule store operation."""
        details = {"workspace_id": workspace_id}
        if rule_id is not None:
            details["rule_id"] = rule_id
        if kind:
            details["kind"] = kind

        self.log_operation(f"rules.{operation}", status, details)

    def log_rule_failure(self, kind: str, rule_id: Any, error: str):
        """Log a single rule that degraded to a no-op."""
        details = {
            "kind": kind,
            "rule_id": rule_id,
            "error": error[:100] if error else ""
        }
        self.log_operation("rules.apply", "skipped", details)

    def log_batch_run(self, workspace_id: str, action_type: str, status: str,
                      rules_count: int = 0, eligible_count: int = 0, affected_count: int = 0,
                      details: Dict[str, Any] = None):
        """Log a batch correction run."""
        log_details = {
            "workspace_id": workspace_id,
            "action_type": action_type,
            "rules_count": rules_count,
            "eligible_count": eligible_count,
            "affected_count": affected_count
        }
        if details:
            log_details.update(details)

        self.log_operation("batch.run", status, log_details)

    def log_undo(self, entry_id: int, workspace_id: str, restored: int,
                 missing: List[int] = None, status: str = "success"):
        """Log an undo of a history entry."""
        log_details = {
            "entry_id": entry_id,
            "workspace_id": workspace_id,
            "restored": restored
        }
        if missing:
            log_details["missing_chapter_ids"] = missing

        self.log_operation("history.undo", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
