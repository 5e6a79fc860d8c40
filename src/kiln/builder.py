from __future__ import annotations

"""Artifact builder.

CONTRACT
- Inputs: ToolPlan (components in build order), fetched source archives,
  install prefix, scratch work directory
- Outputs (required):
  - Installed tree at `prefix` with the tool's strip globs removed
  - logs/<component>.<step>.{stdout,stderr}.log per native step
  - BuildResult(tool, prefix, components, elapsed_s)
- Invariants:
  - Components are built strictly in plan order, one at a time
  - Build-only components install into a scratch prefix that is never shipped
  - Compiler/linker flags for dependencies come from BuildContext, not string
    concatenation at call sites
  - Stripping runs once, after the last component is installed
- Failure:
  - Raises ExtractError on unreadable/truncated archives
  - Raises BuildError on any non-zero configure/build/install exit
  - Raises RecipeError when an argument template cannot be expanded
"""

import os
import shutil
import tarfile
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .config import ComponentSpec
from .errors import BuildError, ExtractError, RecipeError
from .graph import ToolPlan
from .util.paths import dedupe_paths, ensure_dir
from .util.shell import run_cmd

STEPS = ("configure", "build", "install")


@dataclass(frozen=True)
class BuildContext:
    component: ComponentSpec
    prefix: Path
    deps: Mapping[str, Path]
    jobs: int

    def render(self, arg: str) -> str:
        try:
            return arg.format(
                prefix=self.prefix,
                jobs=self.jobs,
                version=self.component.version,
                deps={name: str(p) for name, p in self.deps.items()},
            )
        except (KeyError, IndexError, AttributeError, ValueError) as e:
            raise RecipeError(
                f"Cannot expand {arg!r} for {self.component.name}: {type(e).__name__} {e}"
            ) from e

    def command(self, step: str) -> list[str] | None:
        template = getattr(self.component, step)
        if template is None:
            return None
        return [self.render(a) for a in template]

    def dep_prefixes(self) -> list[Path]:
        return [Path(p) for p in dedupe_paths(self.deps.values())]

    def env(self, base: Mapping[str, str]) -> dict[str, str]:
        prefixes = self.dep_prefixes()
        includes = [f"-I{p / 'include'}" for p in prefixes]
        libdirs = [p / "lib" for p in prefixes]
        ldflags = [f"-L{d}" for d in libdirs] + [f"-Wl,-rpath,{d}" for d in libdirs]

        def joined(name: str, values: list[str], sep: str) -> str:
            existing = base.get(name, "")
            return sep.join(v for v in [*values, existing] if v)

        return {
            "PATH": joined("PATH", dedupe_paths(p / "bin" for p in prefixes), os.pathsep),
            "CPPFLAGS": joined("CPPFLAGS", includes, " "),
            "LDFLAGS": joined("LDFLAGS", ldflags, " "),
            "LD_LIBRARY_PATH": joined("LD_LIBRARY_PATH", dedupe_paths(libdirs), os.pathsep),
            "PKG_CONFIG_PATH": joined(
                "PKG_CONFIG_PATH", dedupe_paths(d / "pkgconfig" for d in libdirs), os.pathsep
            ),
        }


@dataclass(frozen=True)
class BuildResult:
    tool: str
    prefix: Path
    components: tuple[str, ...]
    elapsed_s: float


def extract(archive: Path, dest: Path, expected_dir: str | None = None) -> Path:
    """Unpack `archive` into `dest` and return the source directory."""
    ensure_dir(dest)
    try:
        with tarfile.open(archive, mode="r:*") as tf:
            tf.extractall(dest, filter="data")
    except (tarfile.TarError, EOFError, OSError, ValueError) as e:
        raise ExtractError(archive.name, str(e)) from e

    if expected_dir:
        src = dest / expected_dir
        if src.is_dir():
            return src
    top = [p for p in dest.iterdir() if p.is_dir()]
    if len(top) == 1:
        return top[0]
    raise ExtractError(
        archive.name,
        f"expected a single top-level directory ({expected_dir or 'any'}), found "
        f"{sorted(p.name for p in dest.iterdir())}",
    )


def strip_tree(prefix: Path, patterns: tuple[str, ...]) -> list[Path]:
    removed = []
    for pattern in patterns:
        for p in sorted(prefix.glob(pattern)):
            if p.is_symlink() or p.is_file():
                p.unlink()
            elif p.is_dir():
                shutil.rmtree(p)
            else:
                continue
            removed.append(p)
    return removed


@dataclass
class Builder:
    log_dir: Path
    jobs: int = field(default_factory=lambda: os.cpu_count() or 1)
    base_env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    report: Callable[[str], None] = lambda msg: None

    def _run_step(self, ctx: BuildContext, step: str, cwd: Path) -> None:
        cmd = ctx.command(step)
        if cmd is None:
            return
        name = ctx.component.name
        res = run_cmd(
            cmd=cmd,
            cwd=cwd,
            stdout_path=self.log_dir / f"{name}.{step}.stdout.log",
            stderr_path=self.log_dir / f"{name}.{step}.stderr.log",
            env=ctx.env(self.base_env),
        )
        logger.debug(f"{name} {step}: rc={res.returncode} in {res.elapsed_s:.1f}s")
        if res.returncode != 0:
            raise BuildError(name, step, res.returncode, res.stderr_tail())

    def build(
        self,
        plan: ToolPlan,
        sources: Mapping[str, Path],
        prefix: Path,
        work_dir: Path,
        external: Mapping[str, Path] | None = None,
    ) -> BuildResult:
        """Build every component of `plan` into `prefix`.

        `external` maps dependencies owned by other, already provisioned tools to
        their install prefixes.
        """
        start = time.time()
        ensure_dir(self.log_dir)
        ensure_dir(prefix)
        prefixes: dict[str, Path] = dict(external or {})
        built = []
        for comp in plan.components:
            comp_prefix = work_dir / "build-only" / comp.name if comp.build_only else prefix
            prefixes[comp.name] = comp_prefix
            deps = {d: prefixes[d] for d in plan.dependencies.get(comp.name, ())}
            ctx = BuildContext(component=comp, prefix=comp_prefix, deps=deps, jobs=self.jobs)

            self.report(f"Building {comp.name} {comp.version}")
            src = extract(
                sources[comp.name], work_dir / "src" / comp.name, comp.source_dir_name()
            )
            for step in STEPS:
                self._run_step(ctx, step, src)
            built.append(comp.name)

        patterns = tuple(p for c in plan.components if not c.build_only for p in c.strip)
        removed = strip_tree(prefix, patterns)
        logger.debug(f"Stripped {len(removed)} path(s) from {prefix}")
        return BuildResult(
            tool=plan.tool.name,
            prefix=prefix,
            components=tuple(built),
            elapsed_s=time.time() - start,
        )
