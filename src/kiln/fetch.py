from __future__ import annotations

"""Retrying source fetcher.

CONTRACT
- Inputs: URL, destination file
- Outputs (required):
  - FetchResult(url, path, attempts, bytes)
- Invariants:
  - Transfer is done by `curl -sSfL` with a connect timeout
  - Only curl exit 56 (failure receiving network data) is retried,
    at most `max_retries` times beyond the first attempt
  - The destination is removed before every attempt, so a retry never appends
    to a partial download
- Failure:
  - Raises FetchError on any other non-zero exit, or when retries are exhausted
"""

import time
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .errors import FetchError
from .util.paths import safe_filename
from .util.redaction import Redactor
from .util.shell import run_cmd

TRANSIENT_EXIT_CODES = frozenset({56})
DEFAULT_MAX_RETRIES = 3
DEFAULT_CONNECT_TIMEOUT_S = 10


@dataclass(frozen=True)
class FetchResult:
    url: str
    path: Path
    attempts: int
    bytes: int


@dataclass
class Fetcher:
    log_dir: Path | None = None
    max_retries: int = DEFAULT_MAX_RETRIES
    connect_timeout_s: int = DEFAULT_CONNECT_TIMEOUT_S
    retry_delay_s: float = 0.0
    redactor: Redactor = field(default_factory=Redactor)

    def command(self, url: str, dest: Path) -> list[str]:
        return [
            "curl",
            "-sSfL",
            "--connect-timeout",
            str(self.connect_timeout_s),
            "-o",
            str(dest),
            url,
        ]

    def fetch(self, url: str, dest: Path) -> FetchResult:
        dest.parent.mkdir(parents=True, exist_ok=True)
        log_dir = self.log_dir or dest.parent
        stem = safe_filename(dest.name, default="download")
        shown = self.redactor.redact(url)

        attempts = 0
        while True:
            attempts += 1
            dest.unlink(missing_ok=True)
            res = run_cmd(
                cmd=self.command(url, dest),
                cwd=dest.parent,
                stdout_path=log_dir / f"fetch_{stem}.stdout.log",
                stderr_path=log_dir / f"fetch_{stem}.stderr.log",
            )
            if res.returncode == 0:
                size = dest.stat().st_size if dest.exists() else 0
                return FetchResult(url=url, path=dest, attempts=attempts, bytes=size)

            transient = res.returncode in TRANSIENT_EXIT_CODES
            if not transient or attempts > self.max_retries:
                dest.unlink(missing_ok=True)
                raise FetchError(
                    shown,
                    attempts,
                    res.returncode,
                    self.redactor.redact(res.stderr_tail(5)),
                )
            logger.warning(
                f"Transient failure fetching {shown} (curl exit {res.returncode}); "
                f"retry {attempts}/{self.max_retries}"
            )
            if self.retry_delay_s:
                time.sleep(self.retry_delay_s)


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Fetch a URL with transient-failure retry")
    parser.add_argument("url", help="URL to fetch")
    parser.add_argument("dest", help="Destination file")
    args = parser.parse_args()

    try:
        r = Fetcher().fetch(args.url, Path(args.dest))
        print(f"Fetched {r.bytes} bytes in {r.attempts} attempt(s)")
    except FetchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
