from __future__ import annotations


class TabkeepError(Exception):
    """Base class for every error raised by tabkeep."""


class StoreError(TabkeepError):
    """A bookmark, tab or settings store call failed."""


class NotFoundError(TabkeepError):
    """A folder could not be located and the caller did not allow creating it."""


class ValidationError(TabkeepError):
    """A settings or stats value cannot be accepted."""


class PartialReconciliationError(StoreError):
    """A reconciliation failed after some creates/deletes were already applied.

    The folder is left as the completed steps produced it; nothing is rolled back.
    """

    def __init__(self, message: str, *, folder_id: str, created: int = 0, deleted: int = 0):
        super().__init__(message)
        self.folder_id = folder_id
        self.created = created
        self.deleted = deleted
