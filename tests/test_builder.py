import io
import tarfile
from pathlib import Path

import pytest

from kiln.builder import BuildContext, Builder, extract, strip_tree
from kiln.config import ComponentSpec, ToolSpec, parse_recipes
from kiln.errors import BuildError, ExtractError, RecipeError
from kiln.graph import ToolPlan, plan


def _make_tarball(path: Path, top: str, files: dict[str, str]) -> Path:
    with tarfile.open(path, "w:gz") as tf:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            info.mode = 0o755
            tf.addfile(info, io.BytesIO(data))
    return path


def _sh(script):
    return ["sh", "-c", script]


def _recipes(**overrides):
    lib = {
        "name": "libt", "version": "1.0", "url": "https://example.com/libt-{version}.tar.gz",
        "archive_dir": "libt-{version}",
        "configure": _sh("echo configured > configured.txt"),
        "build": _sh("test -f configured.txt && mkdir -p out && echo lib > out/libt.so"),
        "install": _sh(
            "mkdir -p {prefix}/lib {prefix}/include && cp out/libt.so {prefix}/lib/ "
            "&& touch {prefix}/lib/libt.a {prefix}/include/t.h"
        ),
        "strip": ["include", "lib/*.a"],
    }
    helper = {
        "name": "gen", "version": "0.1", "url": "https://example.com/gen.tar.gz",
        "build_only": True,
        "configure": None,
        "build": _sh("true"),
        "install": _sh("mkdir -p {prefix}/bin && printf '#!/bin/sh\\necho generated\\n' > "
                       "{prefix}/bin/gen && chmod +x {prefix}/bin/gen"),
    }
    app = {
        "name": "app", "version": "2.0", "url": "https://example.com/app-{version}.tar.gz",
        "archive_dir": "app-{version}",
        "depends_on": ["libt", "gen"],
        "configure": None,
        "build": _sh("gen > gen.txt && echo \"$CPPFLAGS\" > flags.txt && echo -j{jobs} >> flags.txt"),
        "install": _sh("mkdir -p {prefix}/bin && cp gen.txt {prefix}/bin/app "
                       "&& cp flags.txt {prefix}/flags.txt && echo {deps[libt]} > {prefix}/libt_prefix"),
        "strip": ["flags.txt"],
    }
    app.update(overrides)
    return parse_recipes({"tools": [{"name": "app", "components": [lib, helper, app]}]})


@pytest.fixture
def sources(tmp_path):
    d = tmp_path / "downloads"
    d.mkdir()
    return {
        "libt": _make_tarball(d / "libt.tar.gz", "libt-1.0", {"README": "lib"}),
        "gen": _make_tarball(d / "gen.tar.gz", "gen-0.1", {"README": "gen"}),
        "app": _make_tarball(d / "app.tar.gz", "app-2.0", {"README": "app"}),
    }


def test_build_installs_in_order_and_strips(tmp_path, sources):
    (tool_plan,) = plan(_recipes())
    prefix = tmp_path / "vendor" / "app"
    reported = []
    builder = Builder(log_dir=tmp_path / "logs", jobs=3, base_env={"PATH": "/usr/bin:/bin"},
                      report=reported.append)

    result = builder.build(tool_plan, sources, prefix, tmp_path / "work")

    assert result.components == ("libt", "gen", "app")
    assert reported == ["Building libt 1.0", "Building gen 0.1", "Building app 2.0"]
    assert (prefix / "lib" / "libt.so").exists()
    assert not (prefix / "lib" / "libt.a").exists()
    assert not (prefix / "include").exists()
    assert not (prefix / "flags.txt").exists()
    # Build-only helper was on PATH for app but is not shipped.
    assert (prefix / "bin" / "app").read_text().strip() == "generated"
    assert not (prefix / "bin" / "gen").exists()
    assert (prefix / "libt_prefix").read_text().strip() == str(prefix)
    assert (tmp_path / "logs" / "app.build.stdout.log").exists()


def test_build_passes_dependency_flags(tmp_path, sources):
    (tool_plan,) = plan(_recipes(strip=[]))
    prefix = tmp_path / "vendor" / "app"

    Builder(log_dir=tmp_path / "logs", jobs=4, base_env={"PATH": "/usr/bin:/bin"}).build(
        tool_plan, sources, prefix, tmp_path / "work"
    )

    flags = (prefix / "flags.txt").read_text()
    assert f"-I{prefix / 'include'}" in flags
    assert "-j4" in flags


def test_build_failure_raises_with_step(tmp_path, sources):
    (tool_plan,) = plan(_recipes(build=_sh("echo boom >&2; exit 3")))

    with pytest.raises(BuildError) as exc:
        Builder(log_dir=tmp_path / "logs", base_env={"PATH": "/usr/bin:/bin"}).build(
            tool_plan, sources, tmp_path / "vendor" / "app", tmp_path / "work"
        )

    assert exc.value.component == "app"
    assert exc.value.step == "build"
    assert exc.value.returncode == 3
    assert "boom" in str(exc.value)


def test_missing_configure_script_is_build_error(tmp_path, sources):
    (tool_plan,) = plan(_recipes(configure=["./configure", "--prefix={prefix}"]))

    with pytest.raises(BuildError, match="configure failed for app"):
        Builder(log_dir=tmp_path / "logs", base_env={"PATH": "/usr/bin:/bin"}).build(
            tool_plan, sources, tmp_path / "vendor" / "app", tmp_path / "work"
        )


def test_extract_truncated_archive(tmp_path):
    good = _make_tarball(tmp_path / "good.tar.gz", "pkg-1", {"a": "x" * 5000})
    bad = tmp_path / "bad.tar.gz"
    bad.write_bytes(good.read_bytes()[:40])

    with pytest.raises(ExtractError):
        extract(bad, tmp_path / "out")


def test_extract_not_an_archive(tmp_path):
    junk = tmp_path / "junk.tar.gz"
    junk.write_text("<html>404</html>")

    with pytest.raises(ExtractError, match="junk.tar.gz"):
        extract(junk, tmp_path / "out")


def test_extract_finds_single_top_dir(tmp_path):
    archive = _make_tarball(tmp_path / "x.tar.gz", "unexpected-name", {"f": "1"})

    src = extract(archive, tmp_path / "out", "expected-name")

    assert src == tmp_path / "out" / "unexpected-name"


def test_extract_ambiguous_layout(tmp_path):
    archive = tmp_path / "two.tar.gz"
    with tarfile.open(archive, "w:gz") as tf:
        for top in ("a", "b"):
            info = tarfile.TarInfo(f"{top}/f")
            tf.addfile(info, io.BytesIO(b""))

    with pytest.raises(ExtractError, match="single top-level"):
        extract(archive, tmp_path / "out")


def test_strip_tree(tmp_path):
    (tmp_path / "include" / "sub").mkdir(parents=True)
    (tmp_path / "lib").mkdir()
    (tmp_path / "lib" / "a.a").write_text("")
    (tmp_path / "lib" / "a.so").write_text("")

    removed = strip_tree(tmp_path, ("include", "lib/*.a", "share/man"))

    assert sorted(p.name for p in removed) == ["a.a", "include"]
    assert (tmp_path / "lib" / "a.so").exists()


def test_build_context_render_and_env(tmp_path):
    recipes = _recipes()
    comp = recipes.components()["app"]
    dep = tmp_path / "deps" / "libt"
    ctx = BuildContext(component=comp, prefix=tmp_path / "p", deps={"libt": dep}, jobs=8)

    assert ctx.render("--with-libt={deps[libt]}") == f"--with-libt={dep}"
    assert ctx.render("{prefix}/v{version} -j{jobs}") == f"{tmp_path / 'p'}/v2.0 -j8"
    assert ctx.command("configure") is None

    env = ctx.env({"PATH": "/bin", "LDFLAGS": "-static-libgcc"})
    assert env["PATH"] == f"{dep / 'bin'}:/bin"
    assert env["CPPFLAGS"] == f"-I{dep / 'include'}"
    assert env["LDFLAGS"] == f"-L{dep / 'lib'} -Wl,-rpath,{dep / 'lib'} -static-libgcc"
    assert env["PKG_CONFIG_PATH"] == str(dep / "lib" / "pkgconfig")


def test_render_failure_is_recipe_error(tmp_path):
    comp = ComponentSpec(name="foo", version="1", url="https://example.com/foo.tgz",
                         configure=("./configure", "--with-bar={deps[bar]}"))
    ctx = BuildContext(component=comp, prefix=tmp_path / "p", deps={}, jobs=1)

    with pytest.raises(RecipeError, match="--with-bar"):
        ctx.command("configure")


def test_unexpandable_recipe_fails_build_before_running(tmp_path):
    comp = ComponentSpec(name="foo", version="1", url="https://example.com/foo.tgz",
                         archive_dir="foo-1", configure=("sh", "-c", "touch ran {cc}"))
    tool_plan = ToolPlan(tool=ToolSpec(name="foo", components=(comp,)), components=(comp,),
                         dependencies={"foo": ()})
    sources = {"foo": _make_tarball(tmp_path / "foo.tar.gz", "foo-1", {"README": "foo"})}

    with pytest.raises(RecipeError):
        Builder(log_dir=tmp_path / "logs", base_env={"PATH": "/usr/bin:/bin"}).build(
            tool_plan, sources, tmp_path / "vendor" / "foo", tmp_path / "work"
        )

    assert not (tmp_path / "work" / "src" / "foo" / "foo-1" / "ran").exists()


def test_extract_rejects_members_outside_destination(tmp_path):
    archive = tmp_path / "evil.tar.gz"
    with tarfile.open(archive, "w:gz") as tf:
        data = b"owned"
        info = tarfile.TarInfo("../escaped.txt")
        info.size = len(data)
        tf.addfile(info, io.BytesIO(data))

    with pytest.raises(ExtractError, match="evil.tar.gz"):
        extract(archive, tmp_path / "out")

    assert not (tmp_path / "escaped.txt").exists()
