from __future__ import annotations

"""Path utilities.

CONTRACT
- Inputs: strings (filenames) or paths
- Outputs:
  - safe_filename() returns sanitized string (no path separators)
  - ensure_dir() creates directory tree
  - template_path() locates bundled resources
  - dedupe_paths() keeps first occurrence order
- Invariants:
  - safe_filename removes dangerous chars `[^A-Za-z0-9_.-]`
- Failure:
  - None
"""

import importlib.resources
import re
from collections.abc import Iterable
from pathlib import Path

_SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def template_path(template_name: str) -> Path:
    resource = importlib.resources.files("kiln.templates").joinpath(template_name)
    return Path(str(resource))


def safe_filename(name: str, *, default: str = "item") -> str:
    cleaned = _SAFE_FILENAME_RE.sub("_", name).strip("._-")
    return cleaned or default


def dedupe_paths(paths: Iterable[Path | str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for p in paths:
        s = str(p)
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out
