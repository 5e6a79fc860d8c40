from __future__ import annotations

"""Run and cache record schemas.

CONTRACT
- Inputs: Pydantic models
- Outputs:
  - Validated JSON-serializable objects (RUN_STATUS.json, <cache>/<tool>.json)
- Invariants:
  - All schemas have schema_version int field
- Failure:
  - Raises ValidationError on schema mismatch
"""

import datetime
from typing import Literal

from pydantic import BaseModel, Field


def _now() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat(timespec="seconds")


class ToolOutcome(BaseModel):
    schema_version: int = 1
    tool: str
    version: str
    source: Literal["cache", "build"]
    prefix: str
    elapsed_s: float = 0.0


class RunStatus(BaseModel):
    schema_version: int = 1
    run_id: str
    status: Literal["RUNNING", "OK", "FAIL"]
    message: str = ""
    tools: list[ToolOutcome] = Field(default_factory=list)
    failed_tool: str | None = None


class CacheRecord(BaseModel):
    schema_version: int = 1
    tool: str
    version: str
    components: dict[str, str] = Field(default_factory=dict)
    created_at: str = Field(default_factory=_now)

    def matches(self, components: dict[str, str]) -> bool:
        return self.components == components
