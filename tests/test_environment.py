from pathlib import Path

import pytest

from kiln.config import load_recipes
from kiln.environment import (
    Contribution,
    EnvironmentAccumulator,
    build_environment,
    render,
)


@pytest.fixture
def accumulator(tmp_path):
    recipes = load_recipes()
    acc = EnvironmentAccumulator()
    for name in ("git", "unzip", "ffmpeg"):
        acc.add_tool(recipes.tool(name), tmp_path / "build" / "vendor" / name)
    return acc


BASE_ENV = {"PATH": "/usr/bin:/bin", "HOME": "/root", "GIT_AUTHOR_NAME": "ci", "LANG": "C"}


def test_runtime_script_path_order(accumulator):
    script = render(accumulator, BASE_ENV).runtime_script
    path_lines = [line for line in script.splitlines() if line.startswith("export PATH=")]

    assert path_lines == [
        'export PATH="$HOME/vendor/git/bin:$PATH"',
        'export PATH="$HOME/vendor/unzip/bin:$PATH"',
        'export PATH="$HOME/vendor/ffmpeg/bin:$PATH"',
    ]


def test_runtime_script_named_variables(accumulator):
    script = render(accumulator, BASE_ENV).runtime_script

    assert 'export GIT_EXEC_PATH="$HOME/vendor/git/libexec/git-core"' in script
    assert 'export GIT_TEMPLATE_DIR="$HOME/vendor/git/share/git-core/templates"' in script
    assert (
        'export LD_LIBRARY_PATH="$HOME/vendor/ffmpeg/lib${LD_LIBRARY_PATH:+:$LD_LIBRARY_PATH}"'
        in script
    )
    # Runtime script never leaks build-time paths.
    assert "/build/vendor" not in script


def test_export_manifest_uses_build_paths(accumulator, tmp_path):
    manifest = render(accumulator, BASE_ENV).export_manifest
    vendor = tmp_path / "build" / "vendor"
    lines = manifest.splitlines()

    assert [line.split("=", 1)[0] for line in lines] == [
        "export GIT_AUTHOR_NAME",
        "export GIT_EXEC_PATH",
        "export GIT_TEMPLATE_DIR",
        "export PATH",
    ]
    path_line = lines[-1]
    assert path_line == (
        f"export PATH={vendor}/ffmpeg/bin:{vendor}/unzip/bin:{vendor}/git/bin:/usr/bin:/bin"
    )
    assert f"export GIT_EXEC_PATH={vendor}/git/libexec/git-core" in lines
    assert "LD_LIBRARY_PATH" not in manifest
    assert "$HOME" not in manifest


def test_export_manifest_quotes_values(tmp_path):
    acc = EnvironmentAccumulator()
    acc.add_tool(load_recipes().tool("unzip"), tmp_path / "my build" / "vendor" / "unzip")

    manifest = render(acc, {"PATH": "/bin"}).export_manifest

    assert manifest == f"export PATH='{tmp_path}/my build/vendor/unzip/bin:/bin'\n"


def test_render_is_deterministic(accumulator):
    first = render(accumulator, dict(BASE_ENV))
    second = render(accumulator, dict(reversed(list(BASE_ENV.items()))))

    assert first == second
    assert render(accumulator, BASE_ENV) == first


def test_build_environment_does_not_mutate_base(accumulator):
    base = dict(BASE_ENV)
    env = build_environment(accumulator, base)

    assert base == BASE_ENV
    assert env["PATH"].endswith(":/usr/bin:/bin")


def test_empty_base_path(tmp_path):
    acc = EnvironmentAccumulator()
    acc.add_tool(load_recipes().tool("unzip"), tmp_path / "u")

    env = build_environment(acc, {})

    assert env["PATH"] == str(tmp_path / "u" / "bin")


def test_tool_contributes_once(tmp_path):
    acc = EnvironmentAccumulator()
    tool = load_recipes().tool("git")
    acc.add_tool(tool, tmp_path / "git")
    with pytest.raises(ValueError):
        acc.add_tool(tool, tmp_path / "git")


def test_absolute_contribution_values_kept():
    c = Contribution(tool="git", kind="var", name="GIT_SSL_CAINFO",
                     relative="/etc/ssl/certs/ca-certificates.crt")

    assert c.runtime_value() == "/etc/ssl/certs/ca-certificates.crt"
    assert c.build_value(Path("/tmp/x")) == "/etc/ssl/certs/ca-certificates.crt"
