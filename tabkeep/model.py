from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Union


@dataclass(frozen=True)
class Tab:
    id: int
    url: str
    title: str = ""
    pinned: bool = False
    window_id: Optional[int] = None


@dataclass
class Window:
    id: int
    title: Optional[str] = None
    focused: bool = False
    tabs: List[Tab] = field(default_factory=list)

    @property
    def folder_name(self) -> str:
        return (self.title or "").strip() or f"Window[{self.id}]"


@dataclass(frozen=True)
class Folder:
    id: str
    parent_id: Optional[str]
    title: str


@dataclass(frozen=True)
class Leaf:
    id: str
    parent_id: Optional[str]
    title: str
    url: str


BookmarkNode = Union[Folder, Leaf]


@dataclass(frozen=True)
class FolderRef:
    """A folder identity resolved for the duration of one operation."""

    id: str
    name: str


@dataclass(frozen=True)
class Policy:
    overwrite: bool = False
    save_pinned: bool = False
    remember_last: bool = True
    close_tabs_after_save: bool = False


@dataclass
class ReconcileResult:
    created: int = 0
    deleted: int = 0
    kept: int = 0
    saved: int = 0
    skipped: bool = False

    def __add__(self, other: "ReconcileResult") -> "ReconcileResult":
        return ReconcileResult(
            created=self.created + other.created,
            deleted=self.deleted + other.deleted,
            kept=self.kept + other.kept,
            saved=self.saved + other.saved,
            skipped=self.skipped and other.skipped,
        )
