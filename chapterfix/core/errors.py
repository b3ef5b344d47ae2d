"""Exceptions raised by the correction engine."""


class RuleValidationError(ValueError):
    """A rule's fields are not valid for its kind."""
    pass


class ChapterNotFoundError(Exception):
    """Referenced chapter does not exist."""
    pass


class HistoryNotFoundError(Exception):
    """Referenced history entry does not exist (already undone or rotated out)."""
    pass


class BatchCorrectionError(Exception):
    """A batch run failed in storage; nothing was written."""
    pass


class UndoError(Exception):
    """An undo failed in storage; nothing was restored."""
    pass
