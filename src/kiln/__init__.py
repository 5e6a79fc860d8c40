"""kiln package.

Simple API for buildpack scripts:

    import kiln

    # Provision git, unzip and ffmpeg into /tmp/build/vendor
    result = kiln.compile("/tmp/build", "/tmp/cache", "/tmp/env")
"""

import os
from pathlib import Path
from typing import Optional

from .config import CompileConfig
from .orchestrator import ProvisionResult, provision
from .util.ids import new_run_id

__version__ = "0.1.0"


def compile(
    build_dir: str | Path,
    cache_dir: str | Path,
    env_dir: Optional[str | Path] = None,
    *,
    export_file: Optional[str | Path] = None,
    run_id: Optional[str] = None,
) -> dict:
    """Run the compile phase. Raises KilnError on failure.

    Returns:
        dict with keys: status, run_dir, tools, profile_script, export_file
    """
    cfg = CompileConfig(
        build_dir=Path(build_dir).resolve(),
        cache_dir=Path(cache_dir).resolve(),
        env_dir=Path(env_dir).resolve() if env_dir else None,
        run_id=run_id or new_run_id(),
        export_file=Path(export_file) if export_file else None,
        environ=dict(os.environ),
    )
    result = provision(cfg)
    return {
        "status": result.status,
        "run_dir": str(result.run_dir),
        "tools": {t.tool: t.source for t in result.tools},
        "profile_script": str(result.profile_script) if result.profile_script else None,
        "export_file": str(result.export_file) if result.export_file else None,
    }


__all__ = [
    "compile",
    "CompileConfig",
    "ProvisionResult",
    "provision",
    "__version__",
]
