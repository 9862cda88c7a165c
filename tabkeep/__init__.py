"""tabkeep: snapshot open browser tabs into bookmark folders, manually or on a timer."""

from pathlib import Path


def _read_version() -> str:
    p = Path(__file__).resolve().parents[1] / "VERSION"
    try:
        return p.read_text(encoding="utf-8").strip()
    except Exception:
        # Installed wheels do not ship VERSION next to the package.
        return "1.0.0"


__version__ = _read_version()
