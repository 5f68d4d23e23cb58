"""Shared pytest fixtures for toolrun tests."""
from __future__ import annotations

import os
import pathlib
import sys
from typing import Any, Callable, Dict, Optional

import pytest
import yaml

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from toolrun.config import RunnerConfig, reset_config  # noqa: E402
from toolrun.metrics import MetricsManager  # noqa: E402
from toolrun.platform import RuntimeContext  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep TOOLRUN_* variables from the developer's shell out of every test."""
    for name in list(os.environ):
        if name.startswith("TOOLRUN_"):
            monkeypatch.delenv(name, raising=False)
    reset_config()
    MetricsManager.reset_for_testing()
    yield
    reset_config()
    MetricsManager.reset_for_testing()


@pytest.fixture
def bash_context(tmp_path: pathlib.Path) -> RuntimeContext:
    return RuntimeContext(platform="linux", shell="bash", register_path=str(tmp_path), timeout=10.0)


@pytest.fixture
def runner_config(tmp_path: pathlib.Path) -> RunnerConfig:
    """Config with prometheus export off, so tests never touch the default registry."""
    path = tmp_path / "toolrun.yaml"
    path.write_text(yaml.safe_dump({"metrics": {"enabled": True, "prometheus_enabled": False}}))
    return RunnerConfig(str(path))


@pytest.fixture
def make_register(tmp_path: pathlib.Path) -> Callable[..., pathlib.Path]:
    """Write tool definitions into ``<tmp_path>/register/tools/<tool>/[<variant>/]<version>.yaml``."""
    root = tmp_path / "register"

    def _write(tool: str, data: Dict[str, Any], version: str = "1.0",
               variant: Optional[str] = None) -> pathlib.Path:
        directory = root / "tools" / tool
        if variant:
            directory = directory / variant
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{version}.yaml"
        path.write_text(yaml.safe_dump(data))
        return root

    (root / "tools").mkdir(parents=True, exist_ok=True)
    _write.root = root  # type: ignore[attr-defined]
    return _write


@pytest.fixture
def echo_tool() -> Callable[..., Dict[str, Any]]:
    """Definition factory for a tool wrapping ``echo`` on POSIX shells."""
    return _echo_tool


def _echo_tool(name: str = "echoer", **overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "name": name,
        "version": "1.0",
        "implements": "print@1",
        "aliases": ["say"],
        "profiles": [{
            "name": "posix",
            "platforms": ["linux", "macos"],
            "shells": ["bash", "sh", "zsh"],
            "executable_name": "echo",
            "commands": [{
                "name": "say",
                "flags": [{"name": "no_newline", "cli": "-n", "position_constraint": "prefix"}],
                "arguments": [{"name": "words", "type": "string", "variadic": True,
                               "required": True, "position": 1}],
                "env_vars": [{"name": "ECHO_MODE", "env_var": "mode"}],
            }],
        }],
    }
    data.update(overrides)
    return data
