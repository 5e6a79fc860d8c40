from __future__ import annotations

"""Configuration models.

CONTRACT
- Inputs: YAML recipe file (recipes.yaml) and a variable lookup (env dir + process env)
- Outputs (required):
  - Validated Recipes, ToolSpec, ComponentSpec objects
  - CompileConfig describing one compile invocation
- Invariants:
  - Tool and component names match `[A-Za-z0-9][A-Za-z0-9_-]{0,31}`
  - Component names are unique across all tools
  - Version overrides only replace `version`; nothing else is configurable from env
- Failure:
  - Raises RecipeError on invalid schema, names or duplicate components
  - Raises RecipeError on an unknown placeholder or a {deps[x]} that is not a dependency
"""

import os
import re
import string
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import RecipeError
from .util.ids import env_key, validate_name
from .util.paths import template_path

DEFAULT_CONFIGURE = ("./configure", "--prefix={prefix}")
DEFAULT_BUILD = ("make", "-j{jobs}")
DEFAULT_INSTALL = ("make", "install")

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ComponentSpec:
    name: str
    version: str
    url: str
    archive_dir: str | None = None
    depends_on: tuple[str, ...] = ()
    configure: tuple[str, ...] | None = DEFAULT_CONFIGURE
    build: tuple[str, ...] = DEFAULT_BUILD
    install: tuple[str, ...] = DEFAULT_INSTALL
    strip: tuple[str, ...] = ()
    build_only: bool = False

    def source_url(self) -> str:
        return self.url.format(version=self.version)

    def source_dir_name(self) -> str | None:
        if self.archive_dir is None:
            return None
        return self.archive_dir.format(version=self.version)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    components: tuple[ComponentSpec, ...]
    path: tuple[str, ...] = ("bin",)
    library_path: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    def primary(self) -> ComponentSpec:
        for c in self.components:
            if c.name == self.name:
                return c
        return self.components[-1]

    @property
    def version(self) -> str:
        return self.primary().version

    def component_versions(self) -> dict[str, str]:
        return {c.name: c.version for c in self.components}


@dataclass(frozen=True)
class Recipes:
    tools: tuple[ToolSpec, ...]

    def tool(self, name: str) -> ToolSpec:
        for t in self.tools:
            if t.name == name:
                return t
        raise KeyError(name)

    def components(self) -> dict[str, ComponentSpec]:
        return {c.name: c for t in self.tools for c in t.components}

    def owner(self) -> dict[str, str]:
        """Component name -> tool name."""
        return {c.name: t.name for t in self.tools for c in t.components}


_COMMAND = {"type": "array", "items": {"type": "string"}, "minItems": 1}
_NAME = {"type": "string", "pattern": "^[A-Za-z0-9][A-Za-z0-9_-]{0,31}$"}

RECIPES_SCHEMA = {
    "type": "object",
    "properties": {
        "tools": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {
                    "name": _NAME,
                    "path": {"type": "array", "items": {"type": "string"}},
                    "library_path": {"type": "array", "items": {"type": "string"}},
                    "env": {"type": "object", "additionalProperties": {"type": "string"}},
                    "components": {
                        "type": "array",
                        "minItems": 1,
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": _NAME,
                                "version": {"type": ["string", "number"]},
                                "url": {"type": "string"},
                                "archive_dir": {"type": ["string", "null"]},
                                "depends_on": {"type": "array", "items": _NAME},
                                "configure": {"oneOf": [_COMMAND, {"type": "null"}]},
                                "build": _COMMAND,
                                "install": _COMMAND,
                                "strip": {"type": "array", "items": {"type": "string"}},
                                "build_only": {"type": "boolean"},
                            },
                            "required": ["name", "version", "url"],
                        },
                    },
                },
                "required": ["name", "components"],
            },
        }
    },
    "required": ["tools"],
}


def _component_from_raw(raw: dict[str, Any]) -> ComponentSpec:
    configure = raw.get("configure", list(DEFAULT_CONFIGURE))
    return ComponentSpec(
        name=validate_name(str(raw["name"])),
        version=str(raw["version"]),
        url=str(raw["url"]),
        archive_dir=raw.get("archive_dir"),
        depends_on=tuple(str(d) for d in raw.get("depends_on", []) or []),
        configure=tuple(configure) if configure is not None else None,
        build=tuple(raw.get("build", DEFAULT_BUILD)),
        install=tuple(raw.get("install", DEFAULT_INSTALL)),
        strip=tuple(raw.get("strip", []) or []),
        build_only=bool(raw.get("build_only", False)),
    )


_FORMATTER = string.Formatter()
_DEPS_FIELD = re.compile(r"^deps\[([^\]]+)\]$")
ARG_FIELDS = frozenset({"prefix", "jobs", "version"})


def _placeholders(template: str, where: str) -> list[str]:
    try:
        return [f for _, f, _, _ in _FORMATTER.parse(template) if f is not None]
    except ValueError as e:
        raise RecipeError(f"Malformed placeholder in {where}: {template!r} ({e})") from e


def _check_placeholders(comp: ComponentSpec, reachable: set[str]) -> None:
    """Only {prefix} {jobs} {version} and {deps[<dependency>]} may appear in commands."""
    for attr in ("url", "archive_dir"):
        template = getattr(comp, attr)
        if template is None:
            continue
        for f in _placeholders(template, f"{comp.name}.{attr}"):
            if f != "version":
                raise RecipeError(f"Unknown placeholder {{{f}}} in {comp.name}.{attr}")

    for step in ("configure", "build", "install"):
        for arg in getattr(comp, step) or ():
            for f in _placeholders(arg, f"{comp.name}.{step}"):
                if f in ARG_FIELDS:
                    continue
                m = _DEPS_FIELD.match(f)
                if m is None:
                    raise RecipeError(f"Unknown placeholder {{{f}}} in {comp.name}.{step}")
                if m.group(1) not in reachable:
                    raise RecipeError(
                        f"{comp.name}.{step} uses {{{f}}} but {comp.name} does not depend on "
                        f"{m.group(1)}"
                    )


def _reachable(name: str, comps: Mapping[str, ComponentSpec]) -> set[str]:
    seen: set[str] = set()
    stack = list(comps[name].depends_on)
    while stack:
        d = stack.pop()
        if d in seen or d not in comps:
            continue
        seen.add(d)
        stack.extend(comps[d].depends_on)
    return seen


def parse_recipes(data: Mapping[str, Any]) -> Recipes:
    import jsonschema  # lazy import

    try:
        jsonschema.validate(instance=data, schema=RECIPES_SCHEMA)
    except jsonschema.ValidationError as e:
        raise RecipeError(f"Invalid recipes schema: {e.message}") from e

    tools: list[ToolSpec] = []
    seen: set[str] = set()
    for t in data["tools"]:
        try:
            components = tuple(_component_from_raw(c) for c in t["components"])
            name = validate_name(str(t["name"]))
        except ValueError as e:
            raise RecipeError(str(e)) from e
        for c in components:
            if c.name in seen:
                raise RecipeError(f"Duplicate component name: {c.name}")
            seen.add(c.name)
        if all(c.build_only for c in components):
            raise RecipeError(f"Tool {name} has no shipped components")
        tools.append(
            ToolSpec(
                name=name,
                components=components,
                path=tuple(t.get("path", ["bin"]) or []),
                library_path=tuple(t.get("library_path", []) or []),
                env=dict(t.get("env", {}) or {}),
            )
        )
    names = [t.name for t in tools]
    if len(set(names)) != len(names):
        raise RecipeError(f"Duplicate tool names in {names}")
    recipes = Recipes(tools=tuple(tools))
    comps = recipes.components()
    for name, comp in comps.items():
        _check_placeholders(comp, _reachable(name, comps))
    return recipes


def load_recipes(path: Path | None = None) -> Recipes:
    """Load a recipe file; the bundled `recipes.yaml` when `path` is None."""
    path = path or template_path("recipes.yaml")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise RecipeError(f"Cannot read recipes file {path}: {e}") from e
    return parse_recipes(data)


def apply_version_overrides(recipes: Recipes, lookup: Mapping[str, str]) -> Recipes:
    """Replace component versions with `<COMPONENT>_VERSION` values from `lookup`."""
    tools = []
    for t in recipes.tools:
        comps = []
        for c in t.components:
            override = lookup.get(env_key(c.name, "VERSION"))
            comps.append(replace(c, version=override) if override else c)
        tools.append(replace(t, components=tuple(comps)))
    return Recipes(tools=tuple(tools))


def rebuild_requested(tool: str, lookup: Mapping[str, str]) -> bool:
    return lookup.get(env_key(tool, "REBUILD"), "").strip().lower() in _TRUTHY


def default_export_file() -> Path:
    """`<buildpack dir>/export`, where the buildpack dir holds `bin/compile`."""
    bp_dir = os.environ.get("BUILDPACK_DIR")
    if bp_dir:
        return Path(bp_dir) / "export"
    return Path(sys.argv[0]).resolve().parent.parent / "export"


@dataclass(frozen=True)
class CompileConfig:
    build_dir: Path
    cache_dir: Path
    env_dir: Path | None
    run_id: str
    recipes_file: Path | None = None
    export_file: Path | None = None
    jobs: int | None = None
    environ: dict[str, str] = field(default_factory=dict)

    def vendor_dir(self) -> Path:
        return self.build_dir / "vendor"

    def prefix(self, tool: str) -> Path:
        return self.vendor_dir() / tool

    def profile_script(self) -> Path:
        return self.build_dir / ".profile.d" / "kiln.sh"

    def run_dir(self) -> Path:
        return self.cache_dir / ".kiln" / "runs" / self.run_id

    def resolved_export_file(self) -> Path:
        return self.export_file or default_export_file()

    def resolved_jobs(self) -> int:
        return self.jobs or os.cpu_count() or 1
