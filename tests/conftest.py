import io
from pathlib import Path

import pytest
from rich.console import Console

from kiln.builder import BuildResult
from kiln.config import CompileConfig
from kiln.fetch import FetchResult
from kiln.errors import FetchError
from kiln.util.output import BuildpackConsole


class FakeFetcher:
    """Writes a placeholder archive instead of downloading; fails for chosen components."""

    def __init__(self, fail_for=(), returncode=22):
        self.fail_for = set(fail_for)
        self.returncode = returncode
        self.calls = []

    def fetch(self, url, dest):
        self.calls.append(url)
        if any(f"/{name}-" in url or f"/{name}/" in url for name in self.fail_for):
            raise FetchError(url, 1, self.returncode, "The requested URL returned error: 404")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"archive")
        return FetchResult(url=url, path=dest, attempts=1, bytes=7)


class FakeBuilder:
    """Installs one executable per shipped component into the prefix."""

    def __init__(self):
        self.built = []
        self.tools = []

    def build(self, plan, sources, prefix, work_dir, external=None):
        self.tools.append(plan.tool.name)
        for comp in plan.components:
            assert comp.name in sources
            self.built.append(comp.name)
            if comp.build_only:
                continue
            bin_dir = prefix / "bin"
            bin_dir.mkdir(parents=True, exist_ok=True)
            exe = bin_dir / comp.name
            exe.write_text(f"#!/bin/sh\necho {comp.name} {comp.version}\n")
            exe.chmod(0o755)
        return BuildResult(
            tool=plan.tool.name,
            prefix=prefix,
            components=tuple(c.name for c in plan.components),
            elapsed_s=0.0,
        )


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def fake_builder():
    return FakeBuilder()


@pytest.fixture
def quiet_console():
    return BuildpackConsole(console=Console(file=io.StringIO(), highlight=False, width=200))


@pytest.fixture
def compile_dirs(tmp_path):
    build = tmp_path / "build"
    cache = tmp_path / "cache"
    env = tmp_path / "env"
    for d in (build, cache, env):
        d.mkdir()
    return build, cache, env


@pytest.fixture
def make_config(compile_dirs, tmp_path):
    build, cache, env = compile_dirs

    def _make(run_id="run1", **kwargs):
        kwargs.setdefault("environ", {"PATH": "/usr/bin:/bin", "HOME": str(tmp_path)})
        return CompileConfig(
            build_dir=build,
            cache_dir=cache,
            env_dir=env,
            run_id=run_id,
            export_file=tmp_path / "buildpack" / "export",
            jobs=2,
            **kwargs,
        )

    return _make


def seed_cache_entry(cache_dir: Path, tool: str) -> Path:
    entry = cache_dir / tool / "bin"
    entry.mkdir(parents=True)
    exe = entry / tool
    exe.write_text(f"#!/bin/sh\necho cached {tool}\n")
    exe.chmod(0o755)
    return cache_dir / tool
