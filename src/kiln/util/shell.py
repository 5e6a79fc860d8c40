from __future__ import annotations

"""Shell command execution.

CONTRACT
- Inputs: Command (str or argv list), cwd, env overlay, timeout
- Outputs (required):
  - CmdResult(returncode, stdout_path, stderr_path, elapsed_s, byte counts)
- Invariants:
  - Writes stdout/stderr to the given files (temp files when omitted)
  - Respects timeout_s (returncode 124 if exceeded)
- Failure:
  - Returns CmdResult with exit code (does NOT raise on non-zero exit)
"""

import os
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path


def which(cmd: str, path: str | None = None) -> str | None:
    search = path if path is not None else os.environ.get("PATH", "")
    for p in search.split(os.pathsep):
        if not p:
            continue
        candidate = Path(p) / cmd
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


@dataclass(frozen=True)
class CmdResult:
    cmd: str
    returncode: int
    stdout_path: Path
    stderr_path: Path
    elapsed_s: float
    stdout_bytes: int
    stderr_bytes: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self, lines: int = 20) -> str:
        if not self.stderr_path.exists():
            return ""
        text = self.stderr_path.read_text(encoding="utf-8", errors="replace")
        return "\n".join(text.splitlines()[-lines:])


def _temp_log(prefix: str) -> Path:
    tf = tempfile.NamedTemporaryFile(delete=False, prefix=prefix)
    tf.close()
    return Path(tf.name)


def run_cmd(
    cmd: str | list[str],
    cwd: Path,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    env: dict[str, str] | None = None,
    timeout_s: float | None = None,
) -> CmdResult:
    """Run a command and store stdout/stderr to files.

    CONTRACT:
    - Accepts cmd as str (run with shell=True) or list[str] (run with shell=False).
    - `env` is overlaid on the current process environment.
    - Never raises for non-zero exit; caller inspects return code.
    - Records duration and output size.
    """
    if stdout_path is None:
        stdout_path = _temp_log("kiln_stdout_")
    if stderr_path is None:
        stderr_path = _temp_log("kiln_stderr_")

    stdout_path.parent.mkdir(parents=True, exist_ok=True)
    stderr_path.parent.mkdir(parents=True, exist_ok=True)

    use_shell = isinstance(cmd, str)

    start_t = time.time()
    with (
        stdout_path.open("w", encoding="utf-8") as out_f,
        stderr_path.open("w", encoding="utf-8") as err_f,
    ):
        try:
            p = subprocess.run(
                cmd,
                cwd=str(cwd),
                shell=use_shell,
                env=(os.environ | env) if env else None,
                stdout=out_f,
                stderr=err_f,
                timeout=timeout_s,
                text=True,
            )
            rc = p.returncode
        except subprocess.TimeoutExpired:
            rc = 124
            err_f.write("\nTimeout expired.\n")
        except OSError as e:
            # Missing executable or unusable cwd.
            rc = 127 if isinstance(e, FileNotFoundError) else 1
            err_f.write(f"\nException: {e}\n")

    end_t = time.time()

    out_b = stdout_path.stat().st_size if stdout_path.exists() else 0
    err_b = stderr_path.stat().st_size if stderr_path.exists() else 0

    return CmdResult(
        cmd=cmd if isinstance(cmd, str) else " ".join(cmd),
        returncode=rc,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        elapsed_s=end_t - start_t,
        stdout_bytes=out_b,
        stderr_bytes=err_b,
    )


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Run shell commands with captured output")
    parser.add_argument("--cmd", required=True, help="Command to run")
    parser.add_argument("--cwd", default=".", help="Working directory")
    parser.add_argument("--timeout", type=int, default=10, help="Timeout in seconds")
    args = parser.parse_args()

    res = run_cmd(cmd=args.cmd, cwd=Path(args.cwd), timeout_s=args.timeout)
    print(f"Exit code: {res.returncode}")
    print(f"Stdout: {res.stdout_path.read_text(encoding='utf-8')}")
    print(f"Stderr: {res.stderr_path.read_text(encoding='utf-8')}")
    sys.exit(res.returncode)
