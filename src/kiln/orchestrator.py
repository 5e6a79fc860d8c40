from __future__ import annotations

"""Orchestrator for compile runs.

CONTRACT
- Inputs: CompileConfig (build/cache/env dirs, recipes, export file)
- Outputs (required):
  - ProvisionResult (status, run_dir, per-tool outcomes, written files)
  - <build_dir>/vendor/<tool> for every tool
  - <build_dir>/.profile.d/kiln.sh and the export manifest (success only)
  - <cache_dir>/.kiln/runs/<run_id>/RUN_STATUS.json, events.jsonl, logs/
- Invariants:
  - Tools are provisioned one at a time in dependency order
  - A cached tool is restored and never rebuilt, unless <TOOL>_REBUILD is set,
    in which case its cache entry is removed before the build
  - All component sources of a tool are fetched before any of them is built
  - The cache is populated only after a fully successful build of that tool
  - Environment outputs are written only after every tool succeeded
- Failure:
  - Any KilnError marks the run FAIL, is reported under the active step and
    re-raised; nothing after the failing tool runs
"""

import shutil
import tempfile
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from loguru import logger

from .builder import Builder, BuildResult
from .cache import ArchiveCache
from .config import CompileConfig, Recipes, apply_version_overrides, load_recipes, rebuild_requested
from .envdir import Settings, load_env_dir
from .environment import EnvironmentAccumulator, render
from .errors import CacheIOError, KilnError
from .fetch import Fetcher, FetchResult
from .graph import ToolPlan, plan
from .runs.schemas import CacheRecord, RunStatus, ToolOutcome
from .runs.store import RunStore
from .util.events import EventLog
from .util.output import BuildpackConsole
from .util.paths import ensure_dir, safe_filename


class SourceFetcher(Protocol):
    def fetch(self, url: str, dest: Path) -> FetchResult: ...


class ToolBuilder(Protocol):
    def build(
        self,
        plan: ToolPlan,
        sources: Mapping[str, Path],
        prefix: Path,
        work_dir: Path,
        external: Mapping[str, Path] | None = None,
    ) -> BuildResult: ...


@dataclass(frozen=True)
class ProvisionResult:
    status: str
    run_dir: Path
    tools: list[ToolOutcome] = field(default_factory=list)
    profile_script: Path | None = None
    export_file: Path | None = None


def _archive_name(url: str, component: str) -> str:
    tail = url.rstrip("/").rsplit("/", 1)[-1]
    return f"{component}-{safe_filename(tail, default='source.tar')}"


@dataclass
class Provisioner:
    cfg: CompileConfig
    recipes: Recipes
    settings: Mapping[str, str]
    store: RunStore
    cache: ArchiveCache
    fetcher: SourceFetcher
    builder: ToolBuilder
    out: BuildpackConsole
    events: EventLog
    work_dir: Path

    def _fetch_sources(self, tool_plan: ToolPlan) -> dict[str, Path]:
        sources = {}
        for comp in tool_plan.components:
            url = comp.source_url()
            self.out.info(f"Fetching {comp.name} {comp.version}")
            dest = self.work_dir / "downloads" / _archive_name(url, comp.name)
            res = self.fetcher.fetch(url, dest)
            self.events.emit(stage=tool_plan.tool.name, action="fetch", component=comp.name,
                             attempts=res.attempts, bytes=res.bytes)
            sources[comp.name] = res.path
        return sources

    def _external_prefixes(self, tool_plan: ToolPlan) -> dict[str, Path]:
        owner = self.recipes.owner()
        external = {}
        for deps in tool_plan.dependencies.values():
            for d in deps:
                if owner[d] != tool_plan.tool.name:
                    external[d] = self.cfg.prefix(owner[d])
        return external

    def _reset_prefix(self, prefix: Path) -> None:
        if not prefix.exists():
            return
        try:
            shutil.rmtree(prefix)
        except OSError as e:
            raise CacheIOError(prefix.name, "reset", f"cannot remove {prefix}: {e}") from e

    def provision_tool(self, tool_plan: ToolPlan) -> ToolOutcome:
        tool = tool_plan.tool
        prefix = self.cfg.prefix(tool.name)
        start = time.time()
        self.out.topic(f"Installing {tool.name} {tool.version}")

        with self.cache.locked(tool.name):
            if rebuild_requested(tool.name, self.settings) and self.cache.has(tool.name):
                self.out.info(f"Rebuild requested; clearing cached {tool.name}")
                self.cache.invalidate(tool.name)
                self.events.emit(stage=tool.name, action="invalidate")

            if self.cache.has(tool.name):
                record = self.cache.record(tool.name)
                wanted = tool.component_versions()
                if record is not None and not record.matches(wanted):
                    logger.warning(
                        f"Cached {tool.name} was built from {record.components}, "
                        f"requested {wanted}; using cached copy (set "
                        f"{tool.name.upper()}_REBUILD=1 to rebuild)"
                    )
                self.cache.restore(tool.name, prefix)
                self.out.info("Restored from cache")
                self.events.emit(stage=tool.name, action="restore", prefix=prefix)
                source = "cache"
            else:
                sources = self._fetch_sources(tool_plan)
                self._reset_prefix(prefix)
                result = self.builder.build(
                    tool_plan,
                    sources,
                    prefix,
                    self.work_dir / tool.name,
                    external=self._external_prefixes(tool_plan),
                )
                self.events.emit(stage=tool.name, action="build",
                                 components=list(result.components), elapsed_s=result.elapsed_s)
                self.cache.store(
                    tool.name,
                    prefix,
                    CacheRecord(tool=tool.name, version=tool.version,
                                components=tool.component_versions()),
                )
                self.out.info(f"Cached {tool.name}")
                self.events.emit(stage=tool.name, action="store")
                source = "build"

        return ToolOutcome(
            tool=tool.name,
            version=tool.version,
            source=source,
            prefix=str(prefix),
            elapsed_s=round(time.time() - start, 3),
        )

    def write_environment(self, acc: EnvironmentAccumulator) -> tuple[Path, Path]:
        rendered = render(acc, self.cfg.environ)
        profile = self.cfg.profile_script()
        ensure_dir(profile.parent)
        profile.write_text(rendered.runtime_script, encoding="utf-8")
        export_file = self.cfg.resolved_export_file()
        ensure_dir(export_file.parent)
        export_file.write_text(rendered.export_manifest, encoding="utf-8")
        return profile, export_file


def provision(
    cfg: CompileConfig,
    *,
    fetcher: SourceFetcher | None = None,
    builder: ToolBuilder | None = None,
    out: BuildpackConsole | None = None,
) -> ProvisionResult:
    store = RunStore(cfg.run_dir())
    store.ensure()
    events = EventLog(store.path("events.jsonl"), run_id=cfg.run_id)
    out = out or BuildpackConsole()
    status = RunStatus(run_id=cfg.run_id, status="RUNNING", message="starting")
    store.write_status(status)

    work_dir = Path(tempfile.mkdtemp(prefix="kiln-"))
    current: str | None = None
    try:
        settings = Settings(
            env_dir_values=load_env_dir(cfg.env_dir), process_env=dict(cfg.environ)
        )
        recipes = apply_version_overrides(load_recipes(cfg.recipes_file), settings)
        plans = plan(recipes)
        p = Provisioner(
            cfg=cfg,
            recipes=recipes,
            settings=settings,
            store=store,
            cache=ArchiveCache(cfg.cache_dir),
            fetcher=fetcher or Fetcher(log_dir=store.log_dir()),
            builder=builder or Builder(
                log_dir=store.log_dir(),
                jobs=cfg.resolved_jobs(),
                base_env=dict(cfg.environ),
                report=out.info,
            ),
            out=out,
            events=events,
            work_dir=work_dir,
        )
        events.emit(stage="plan", tools=[tp.tool.name for tp in plans])

        acc = EnvironmentAccumulator()
        for tool_plan in plans:
            current = tool_plan.tool.name
            outcome = p.provision_tool(tool_plan)
            status.tools.append(outcome)
            store.write_status(status)
            acc.add_tool(tool_plan.tool, cfg.prefix(tool_plan.tool.name))
        current = None

        profile, export_file = p.write_environment(acc)
        out.topic("Writing environment")
        out.info(f"Runtime script: {profile.relative_to(cfg.build_dir)}")
        out.info(f"Export manifest: {export_file}")
        events.emit(stage="environment", action="write", profile=profile, export=export_file)

        status.status = "OK"
        status.message = f"provisioned {len(plans)} tool(s)"
        store.write_status(status)
        return ProvisionResult(
            status="OK",
            run_dir=store.run_dir,
            tools=list(status.tools),
            profile_script=profile,
            export_file=export_file,
        )
    except KilnError as e:
        out.error(str(e))
        status.status = "FAIL"
        status.message = str(e).splitlines()[0]
        status.failed_tool = current
        store.write_status(status)
        events.emit(stage=current or "plan", action="fail", error=type(e).__name__,
                    message=status.message)
        raise
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
