from __future__ import annotations

"""ID generation and validation.

CONTRACT
- Inputs: Run IDs, tool/component names
- Outputs (required):
  - new_run_id() returns time-sortable string
  - validate_run_id() / validate_name() return the validated value or raise
- Invariants:
  - Run IDs match `[A-Za-z0-9][A-Za-z0-9_.-]{0,63}`
  - Tool and component names match `[A-Za-z0-9][A-Za-z0-9_-]{0,31}`
- Failure:
  - Raises ValueError on invalid IDs
"""

import datetime
import random
import re
import string

_RUN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,31}$")


def new_run_id() -> str:
    # YYYYMMDD_HHMMSS_<rand4>
    ts = datetime.datetime.now(datetime.UTC).strftime("%Y%m%d_%H%M%S")
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(4))
    return f"{ts}_{suffix}"


def validate_run_id(run_id: str) -> str:
    if not _RUN_ID_RE.fullmatch(run_id):
        raise ValueError(
            "Invalid run id. Use 1-64 chars: letters/digits, plus '._-'. Must start with a letter "
            "or digit."
        )
    return run_id


def validate_name(name: str) -> str:
    if not _NAME_RE.fullmatch(name):
        raise ValueError(
            f"Invalid name {name!r}. Use 1-32 chars: letters/digits, plus '_-'. Must start with "
            "a letter or digit."
        )
    return name


def env_key(name: str, suffix: str) -> str:
    """`ffmpeg`, `VERSION` -> `FFMPEG_VERSION`."""
    return f"{name.upper().replace('-', '_')}_{suffix}"
