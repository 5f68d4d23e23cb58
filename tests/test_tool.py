import shutil
import sys

import pytest

from toolrun.errors import (
    CommandNotFoundError,
    ExecutableNotFoundError,
    ToolNotFoundError,
    ValidationError,
)
from toolrun.platform import RuntimeContext
from toolrun.tool import Tool, ToolRunner

posix_only = pytest.mark.skipif(
    sys.platform.startswith("win") or shutil.which("bash") is None,
    reason="requires a POSIX system with bash",
)

SHENV = {
    "name": "shenv",
    "version": "2.0",
    "implements": "script",
    "profiles": [
        {
            "name": "windows",
            "platforms": ["windows"],
            "executable_name": "cmd",
            "commands": [{"name": "show"}],
        },
        {
            "name": "posix",
            "platforms": ["linux", "macos"],
            "executable_name": "sh",
            "exit_codes": {"standard": {"4": "profile four", "5": "profile five"}},
            "commands": [{
                "name": "show",
                "timeout": 7,
                "flags": [{"name": "command_mode", "cli": "-c",
                           "position_constraint": "prefix", "default": True}],
                "arguments": [{"name": "script", "required": True, "position": 1}],
                "env_vars": [
                    {"name": "GREETING", "env_var": "greeting"},
                    {"name": "FIXED", "value": "yes"},
                ],
                "exit_codes": {"custom": {"4": "custom four"}},
            }],
        },
    ],
}


@pytest.fixture
def register(make_register, echo_tool):
    make_register("echoer", echo_tool())
    make_register("shenv", SHENV, version="2.0")
    make_register("ghost", {
        "aliases": ["boo"],
        "profiles": [{"executable_name": "definitely-not-installed-toolrun",
                      "commands": [{"name": "haunt"}]}],
    })
    return make_register.root


@pytest.fixture
def runner(register, runner_config):
    context = RuntimeContext(platform="linux", shell="bash", register_path=str(register), timeout=20)
    return ToolRunner(context, config=runner_config)


def test_resolution_order(runner):
    assert runner.get("echoer").tool_name == "echoer"
    assert runner.get("say").tool_name == "echoer"
    assert runner.get("print").tool_name == "echoer"
    assert runner.get("script").tool_name == "shenv"
    assert runner.get("boo").tool_name == "ghost"


def test_unknown_tool(runner, caplog):
    with caplog.at_level("ERROR", logger="toolrun.tool"):
        with pytest.raises(ToolNotFoundError):
            runner.get("nothing-like-this")
    assert "tool.not_found name=nothing-like-this" in caplog.text


def test_tools_are_cached(runner):
    first = runner.get("shenv")
    assert runner.get("script") is first
    assert runner.stats()["tool_cache"]["size"] == 1
    runner.clear_cache()
    assert runner.get("shenv") is not first


def test_set_register_path_drops_cached_tools(runner, tmp_path):
    runner.get("shenv")
    runner.set_register_path(str(tmp_path / "elsewhere"))
    with pytest.raises(ToolNotFoundError):
        runner.get("shenv")


def test_profile_selection(runner):
    tool = runner.get("shenv")
    assert tool.profile.name == "posix"
    windows = Tool(tool.definition, RuntimeContext(platform="windows", shell="cmd"))
    assert windows.profile.name == "windows"
    echo_on_windows = Tool(runner.get("echoer").definition, RuntimeContext(platform="windows", shell="cmd"))
    assert echo_on_windows.profile is None
    with pytest.raises(CommandNotFoundError):
        echo_on_windows.command("say")


def test_command_lookup(runner):
    tool = runner.get("shenv")
    assert tool.command("show").timeout == 7
    assert tool.command_names() == ["show"]
    with pytest.raises(CommandNotFoundError):
        tool.command("hide")


def test_options_for_returns_fresh_values_with_shared_descriptors(runner):
    tool = runner.get("echoer")
    first = tool.options_for("say")
    first.words = ["a"]
    second = tool.options_for("say")
    assert second.words is None
    assert second._descriptors is first._descriptors
    assert runner.stats()["options_cache"]["size"] == 1


def test_compile(runner):
    tool = runner.get("echoer")
    assert tool.compile("say", {"words": ["hi", "there"], "no_newline": True}) == ["-n", "hi", "there"]


def test_missing_executable(runner):
    with pytest.raises(ExecutableNotFoundError):
        runner.get("ghost").execute("haunt")


def test_required_arguments_checked_for_options(runner):
    tool = runner.get("echoer")
    with pytest.raises(ValidationError, match="words"):
        tool.execute("say", tool.options_for("say"))


@posix_only
def test_execute_with_mapping(runner):
    result = runner.get("say").execute("say", {"words": ["hello", "world"], "no_newline": True})
    assert result.stdout == "hello world"
    assert result.command_info.tool_name == "echoer"
    assert result.command_info.command_name == "say"
    assert result.command_info.arguments == ("-n", "hello", "world")


@posix_only
def test_execute_with_options(runner):
    tool = runner.get("echoer")
    opts = tool.options_for("say")
    opts.words = "single"
    assert tool.execute("say", opts).stdout == "single\n"


@posix_only
def test_declared_env_vars_and_command_timeout(runner):
    tool = runner.get("shenv")
    result = tool.execute("show", {"script": 'echo "$GREETING $FIXED"', "greeting": "hi"})
    assert result.stdout == "hi yes\n"
    assert result.metadata.timeout == 7.0

    result = tool.execute("show", {"script": 'echo "$GREETING"', "greeting": "hi"},
                          env={"GREETING": "caller"})
    assert result.stdout == "caller\n"


@posix_only
def test_exit_code_meaning_from_command(runner):
    result = runner.get("shenv").execute("show", {"script": "exit 4"}, allow_failure=True)
    assert result.status == 4
    assert result.exit_code_meaning == "custom four"


@posix_only
def test_explicit_timeout_and_executable(runner):
    tool = runner.get("shenv")
    result = tool.execute("show", {"script": "echo $0"}, executable=shutil.which("sh"), timeout=3)
    assert result.metadata.timeout == 3.0
    assert result.success


@posix_only
def test_executions_are_recorded(runner):
    runner.execute("shenv", "show", {"script": "true"})
    assert runner.metrics.get_tool_stats("shenv")["execution_count"] == 1
