import os
import stat
import sys

import pytest

from toolrun.errors import UnknownShellError, UnsupportedPlatformError
from toolrun.platform import (
    RuntimeContext,
    detect_platform,
    executable_suffixes,
    find_executable,
    validate_platform,
)


@pytest.mark.parametrize("value, expected", [
    ("linux", "linux"),
    ("darwin", "macos"),
    ("win32", "windows"),
    ("cygwin", "windows"),
])
def test_detect_platform(value, expected):
    assert detect_platform(value) == expected


def test_detect_platform_rejects_unknown():
    with pytest.raises(UnsupportedPlatformError):
        detect_platform("sunos5")


def test_validate_platform():
    assert validate_platform(" MacOS ") == "macos"
    with pytest.raises(UnsupportedPlatformError):
        validate_platform("beos")


def test_runtime_context_normalizes_and_validates():
    context = RuntimeContext(platform="Linux", shell="BASH")
    assert (context.platform, context.shell) == ("linux", "bash")
    assert context.dialect.name == "bash"
    assert context.with_shell("zsh").shell == "zsh"
    with pytest.raises(UnknownShellError):
        RuntimeContext(platform="linux", shell="ksh")
    with pytest.raises(UnsupportedPlatformError):
        RuntimeContext(platform="plan9", shell="bash")


def test_runtime_context_is_frozen():
    context = RuntimeContext(platform="linux", shell="bash")
    with pytest.raises(AttributeError):
        context.shell = "zsh"


def test_runtime_context_from_environment():
    context = RuntimeContext.from_environment({"SHELL": "/bin/zsh"}, platform="macos",
                                              register_path="/reg", timeout=5)
    assert (context.platform, context.shell, context.register_path, context.timeout) == (
        "macos", "zsh", "/reg", 5,
    )
    windows = RuntimeContext.from_environment({"PSModulePath": "x"}, platform="windows")
    assert windows.shell == "powershell"
    with pytest.raises(UnknownShellError):
        RuntimeContext.from_environment({}, platform="linux")


def test_executable_suffixes():
    assert executable_suffixes("linux") == [""]
    assert executable_suffixes("windows", {"PATHEXT": ".EXE;.BAT"}) == ["", ".exe", ".bat"]
    assert ".cmd" in executable_suffixes("windows", {})


def make_executable(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permission bits")
def test_find_executable_search_order(tmp_path):
    extra = make_executable(tmp_path / "extra" / "mytool")
    on_path = make_executable(tmp_path / "bin" / "mytool")
    env = {"PATH": str(on_path.parent)}
    assert find_executable("mytool", platform="linux", env=env) == str(on_path)
    assert find_executable("mytool", [str(extra.parent)], platform="linux", env=env) == str(extra)


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permission bits")
def test_find_executable_globs_and_misses(tmp_path):
    target = make_executable(tmp_path / "opt" / "tool-2.1" / "bin" / "tool")
    (tmp_path / "opt" / "tool-2.1" / "bin" / "plain").write_text("not executable")
    env = {"PATH": ""}
    pattern = str(tmp_path / "opt" / "tool-*" / "bin")
    assert find_executable("tool", [pattern], platform="linux", env=env) == str(target)
    assert find_executable("tool", [str(target)], platform="linux", env=env) == str(target)
    assert find_executable("plain", [pattern], platform="linux", env=env) is None
    assert find_executable("absent", [pattern], platform="linux", env=env) is None


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permission bits")
def test_find_executable_with_directory_component(tmp_path):
    target = make_executable(tmp_path / "run.sh")
    assert find_executable(str(target), platform="linux") == os.path.abspath(str(target))
    assert find_executable(str(tmp_path / "nope.sh"), platform="linux") is None
