from __future__ import annotations

"""Environment emitter.

CONTRACT
- Inputs: EnvironmentAccumulator (tools in provisioning order with their
  build-time prefixes), base environment for the export manifest
- Outputs (required):
  - runtime_script: sourced by the app at startup; `$HOME/vendor/<tool>` paths
  - export_manifest: `export KEY=value` lines for PATH and GIT_* using the
    build-time absolute prefixes
- Invariants:
  - Contributions are emitted in accumulation order; each PATH line prepends,
    so a later tool shadows an earlier one
  - render() is pure: same accumulator + same base env -> identical text
- Failure:
  - None (pure string rendering)
"""

import os
import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Literal

from .config import ToolSpec

RUNTIME_ROOT = "$HOME/vendor"
EXPORT_FILTER = re.compile(r"^(PATH|GIT_.*)$")

Kind = Literal["path", "library_path", "var"]


@dataclass(frozen=True)
class Contribution:
    tool: str
    kind: Kind
    name: str
    relative: str

    def runtime_value(self, runtime_root: str = RUNTIME_ROOT) -> str:
        if self.relative.startswith("/"):
            return self.relative
        return str(PurePosixPath(runtime_root) / self.tool / self.relative)

    def build_value(self, prefix: Path) -> str:
        if self.relative.startswith("/"):
            return self.relative
        return str(prefix / self.relative)


def contributions_for(tool: ToolSpec) -> list[Contribution]:
    out = [Contribution(tool.name, "path", "PATH", rel) for rel in tool.path]
    out += [
        Contribution(tool.name, "library_path", "LD_LIBRARY_PATH", rel)
        for rel in tool.library_path
    ]
    out += [Contribution(tool.name, "var", name, rel) for name, rel in tool.env.items()]
    return out


@dataclass
class EnvironmentAccumulator:
    contributions: list[Contribution] = field(default_factory=list)
    prefixes: dict[str, Path] = field(default_factory=dict)

    def add_tool(self, tool: ToolSpec, prefix: Path) -> None:
        if tool.name in self.prefixes:
            raise ValueError(f"Tool {tool.name} already contributed")
        self.prefixes[tool.name] = prefix
        self.contributions.extend(contributions_for(tool))

    def tools(self) -> list[str]:
        return list(self.prefixes)


@dataclass(frozen=True)
class Rendered:
    runtime_script: str
    export_manifest: str


def _runtime_line(c: Contribution, runtime_root: str) -> str:
    value = c.runtime_value(runtime_root)
    if c.kind == "path":
        return f'export PATH="{value}:$PATH"'
    if c.kind == "library_path":
        return f'export LD_LIBRARY_PATH="{value}${{LD_LIBRARY_PATH:+:$LD_LIBRARY_PATH}}"'
    return f'export {c.name}="{value}"'


def render_runtime_script(acc: EnvironmentAccumulator, runtime_root: str = RUNTIME_ROOT) -> str:
    lines = ["# Generated by kiln; sourced at application start."]
    current = None
    for c in acc.contributions:
        if c.tool != current:
            lines.append(f"# {c.tool}")
            current = c.tool
        lines.append(_runtime_line(c, runtime_root))
    return "\n".join(lines) + "\n"


def build_environment(acc: EnvironmentAccumulator, base_env: Mapping[str, str]) -> dict[str, str]:
    """The environment a later build phase sees once every tool is on PATH."""
    env = dict(base_env)
    for c in acc.contributions:
        value = c.build_value(acc.prefixes[c.tool])
        if c.kind == "var":
            env[c.name] = value
            continue
        existing = env.get(c.name, "")
        env[c.name] = value + (os.pathsep + existing if existing else "")
    return env


def render_export_manifest(acc: EnvironmentAccumulator, base_env: Mapping[str, str]) -> str:
    env = build_environment(acc, base_env)
    lines = [
        f"export {k}={shlex.quote(v)}" for k, v in sorted(env.items()) if EXPORT_FILTER.match(k)
    ]
    return "\n".join(lines) + "\n"


def render(
    acc: EnvironmentAccumulator,
    base_env: Mapping[str, str],
    runtime_root: str = RUNTIME_ROOT,
) -> Rendered:
    return Rendered(
        runtime_script=render_runtime_script(acc, runtime_root),
        export_manifest=render_export_manifest(acc, base_env),
    )
