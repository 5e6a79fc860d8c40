from __future__ import annotations

"""Platform environment directory.

CONTRACT
- Inputs: env dir path (one file per variable; file name is the variable name)
- Outputs (required):
  - dict[name, value] of the variables found, trailing newline removed
  - Settings: env dir values layered over the process environment
- Invariants:
  - Never mutates os.environ
  - Ignores names that would break the build toolchain (PATH, LD_PRELOAD, ...)
  - Missing or None env dir yields an empty mapping
- Failure:
  - Raises EnvDirError if a variable file cannot be read
  - Files that are not UTF-8 text are skipped with a warning
"""

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .errors import EnvDirError

BLOCKED_NAMES = re.compile(r"^(PATH|GIT_DIR|CPATH|CPPATH|LD_PRELOAD|LIBRARY_PATH|LD_LIBRARY_PATH)$")
_VALID_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def load_env_dir(env_dir: Path | None) -> dict[str, str]:
    if env_dir is None or not env_dir.is_dir():
        return {}
    values: dict[str, str] = {}
    for entry in sorted(env_dir.iterdir()):
        name = entry.name
        if not entry.is_file() or not _VALID_NAME.match(name) or BLOCKED_NAMES.match(name):
            continue
        try:
            raw = entry.read_bytes()
        except OSError as e:
            raise EnvDirError(f"Cannot read env dir variable {name}: {e}") from e
        try:
            values[name] = raw.decode("utf-8").rstrip("\n")
        except UnicodeDecodeError:
            logger.warning(f"Ignoring env dir variable {name}: value is not UTF-8 text")
    return values


@dataclass(frozen=True)
class Settings(Mapping[str, str]):
    """Read-only view: env dir values take precedence over the process environment."""

    env_dir_values: dict[str, str] = field(default_factory=dict)
    process_env: dict[str, str] = field(default_factory=dict)

    def __getitem__(self, key: str) -> str:
        if key in self.env_dir_values:
            return self.env_dir_values[key]
        return self.process_env[key]

    def __iter__(self) -> Iterator[str]:
        yield from self.env_dir_values
        for k in self.process_env:
            if k not in self.env_dir_values:
                yield k

    def __len__(self) -> int:
        return len(set(self.env_dir_values) | set(self.process_env))


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Print variables loaded from an env dir")
    parser.add_argument("env_dir", help="Path to env dir")
    args = parser.parse_args()

    for k, v in load_env_dir(Path(args.env_dir)).items():
        print(f"{k}={v}")
