from __future__ import annotations

"""Environment health checks.

CONTRACT
- Inputs: optional cache dir
- Outputs (required):
  - DoctorReport (ok=bool, items=[(name, status, details)])
- Invariants:
  - Checks: curl, make, C compiler, perl, recipes file, cache dir writability
  - Does not modify system state beyond creating the cache dir if asked to check it
- Failure:
  - Returns DoctorReport with ok=False if critical checks fail (curl, make, cc, recipes)
"""

import os
from dataclasses import dataclass
from pathlib import Path

from .config import load_recipes
from .errors import RecipeError
from .graph import plan
from .util.shell import which


@dataclass(frozen=True)
class DoctorItem:
    name: str
    status: str
    details: str


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    items: list[DoctorItem]


def doctor_report(cache_dir: Path | None = None, recipes_file: Path | None = None) -> DoctorReport:
    items: list[DoctorItem] = []
    ok = True

    # 1. Critical binaries
    for binary, why in (("curl", "source downloads"), ("make", "native builds")):
        found = which(binary)
        if found:
            items.append(DoctorItem(binary, "OK", found))
        else:
            ok = False
            items.append(DoctorItem(binary, "FAIL", f"{binary} not found in PATH ({why})"))

    cc = which("cc") or which("gcc") or which("clang")
    if cc:
        items.append(DoctorItem("c compiler", "OK", cc))
    else:
        ok = False
        items.append(DoctorItem("c compiler", "FAIL", "no cc/gcc/clang in PATH"))

    perl = which("perl")
    if perl:
        items.append(DoctorItem("perl", "OK", perl))
    else:
        items.append(DoctorItem("perl", "WARN", "perl not found; OpenSSL configure needs it"))

    # 2. Recipes
    try:
        plans = plan(load_recipes(recipes_file))
        order = ", ".join(tp.tool.name for tp in plans)
        items.append(DoctorItem("recipes", "OK", f"build order: {order}"))
    except RecipeError as e:
        ok = False
        items.append(DoctorItem("recipes", "FAIL", str(e)))

    # 3. Cache dir
    if cache_dir is not None:
        if cache_dir.exists() and not os.access(cache_dir, os.W_OK):
            items.append(DoctorItem("cache dir", "WARN", f"{cache_dir} is not writable"))
        else:
            items.append(DoctorItem("cache dir", "OK", str(cache_dir)))

    return DoctorReport(ok=ok, items=items)
