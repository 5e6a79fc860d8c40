from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .schemas import RunStatus


@dataclass(frozen=True)
class RunStore:
    """Per-run bookkeeping directory.

    CONTRACT
    - Inputs: Run directory path (<cache_dir>/.kiln/runs/<run_id>)
    - Outputs:
      - RUN_STATUS.json, events.jsonl, logs/<step>.{stdout,stderr}.log
    - Invariants:
      - Enforces path safety (prevents traversal outside run_dir)
      - Ensures parent directories exist on write
    - Failure:
      - Raises ValueError on unsafe path access
    """
    run_dir: Path

    def ensure(self) -> None:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        (self.run_dir / "logs").mkdir(exist_ok=True)

    def path(self, *parts: str) -> Path:
        p = self.run_dir.joinpath(*parts)
        base = self.run_dir.resolve(strict=False)
        try:
            p.resolve(strict=False).relative_to(base)
        except ValueError as exc:
            raise ValueError(f"Refusing to access path outside run_dir: {p}") from exc
        return p

    def log_dir(self) -> Path:
        return self.path("logs")

    def write_json(self, rel: str, data: Any) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return p

    def read_json(self, rel: str) -> Any:
        p = self.path(rel)
        return json.loads(p.read_text(encoding="utf-8"))

    def write_status(self, status: RunStatus) -> Path:
        return self.write_json("RUN_STATUS.json", status.model_dump())

    def read_status(self) -> RunStatus | None:
        p = self.path("RUN_STATUS.json")
        if not p.exists():
            return None
        return RunStatus(**self.read_json("RUN_STATUS.json"))
