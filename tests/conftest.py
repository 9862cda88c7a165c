import sys
from datetime import datetime
from pathlib import Path

import pytest

# Allow `import tabkeep` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from tabkeep.bookmarks import MemoryBookmarkStore  # noqa: E402
from tabkeep.kvstore import MemoryKeyValueStore  # noqa: E402
from tabkeep.model import Tab  # noqa: E402


@pytest.fixture
def store():
    return MemoryBookmarkStore()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def fixed_now():
    return datetime(2024, 3, 15, 9, 30, 5)


def tab(tid: int, url: str, title: str = "", *, pinned: bool = False, window_id: int = 1) -> Tab:
    return Tab(id=tid, url=url, title=title or url, pinned=pinned, window_id=window_id)
