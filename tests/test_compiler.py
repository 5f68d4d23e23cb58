from datetime import datetime

import pytest

from toolrun.compiler import ArgumentCompiler, build_env_vars, resolve_delimiter
from toolrun.errors import ValidationError
from toolrun.models import CommandDefinition, OptionDefinition
from toolrun.shells import get_dialect


def command(**data) -> CommandDefinition:
    data.setdefault("name", "cmd")
    return CommandDefinition.model_validate(data)


@pytest.fixture
def compiler():
    return ArgumentCompiler()


def test_canonical_order_ignores_declaration_order(compiler):
    definition = command(
        subcommand="build",
        arguments=[
            {"name": "output", "type": "file", "position": "last"},
            {"name": "third", "position": 3},
            {"name": "loose"},
            {"name": "first", "position": 1},
        ],
        post_options=[{"name": "tag", "cli": "--tag"}],
        flags=[
            {"name": "verbose", "cli": "-v"},
            {"name": "quiet", "cli": "-q", "position_constraint": "prefix"},
        ],
        options=[{"name": "level", "cli": "-l", "type": "integer"}],
    )
    params = {
        "output": "out.txt", "third": "c", "loose": "z", "first": "a",
        "tag": "x", "verbose": True, "quiet": True, "level": "3",
    }
    assert compiler.compile(definition, params) == [
        "build", "-q", "-l", "3", "-v", "a", "c", "z", "--tag=x", "out.txt",
    ]


def test_prefix_flag_option_last_file(compiler):
    definition = command(
        flags=[{"name": "flag", "cli": "-f", "position_constraint": "prefix"}],
        options=[{"name": "opt", "cli": "-o", "delimiter": "space"}],
        arguments=[{"name": "file", "type": "file", "position": "last"}],
    )
    tokens = compiler.compile(definition, {"flag": True, "opt": "v", "file": "out.txt"})
    assert tokens == ["-f", "-o", "v", "out.txt"]


def test_absent_and_none_parameters_are_skipped(compiler):
    definition = command(
        options=[{"name": "opt", "cli": "--opt"}],
        arguments=[{"name": "arg", "position": 1}],
        flags=[{"name": "flag", "cli": "-x"}],
    )
    assert compiler.compile(definition, {"opt": None}) == []
    assert compiler.compile(definition) == []


def test_flag_default_and_string_values(compiler):
    definition = command(flags=[
        {"name": "on", "cli": "--on", "default": True},
        {"name": "off", "cli": "--off"},
    ])
    assert compiler.compile(definition, {}) == ["--on"]
    assert compiler.compile(definition, {"on": "no", "off": "yes"}) == ["--off"]
    with pytest.raises(ValidationError):
        compiler.compile(definition, {"off": "perhaps"})


@pytest.mark.parametrize("cli, delimiter, expected", [
    ("--size", "auto", ["--size=10"]),
    ("-size", "auto", ["-size", "10"]),
    ("/size", "auto", ["/size:10"]),
    ("size", "auto", ["size=10"]),
    ("--size", "space", ["--size", "10"]),
    ("-s", "none", ["-s10"]),
    ("-s", "colon", ["-s:10"]),
    ("-s", "equals", ["-s=10"]),
])
def test_option_delimiters(compiler, cli, delimiter, expected):
    definition = command(options=[{"name": "size", "cli": cli, "delimiter": delimiter}])
    assert compiler.compile(definition, {"size": 10}) == expected


def test_legacy_format_maps_to_delimiter():
    option = OptionDefinition.model_validate({"name": "o", "cli": "/o", "format": "slash_colon"})
    assert option.delimiter == "colon"
    assert resolve_delimiter(option) == "colon"


def test_boolean_option_emits_bare_switch(compiler):
    definition = command(options=[{"name": "strip", "cli": "--strip", "type": "boolean"}])
    assert compiler.compile(definition, {"strip": "yes"}) == ["--strip"]
    assert compiler.compile(definition, {"strip": False}) == []


def test_array_option_joined_with_separator(compiler):
    definition = command(options=[
        {"name": "ports", "cli": "-p", "type": "array", "of": "integer", "delimiter": "space"},
        {"name": "tags", "cli": "--tags", "type": "array", "separator": ";"},
    ])
    tokens = compiler.compile(definition, {"ports": ["80", 443], "tags": ["a", "b"]})
    assert tokens == ["-p", "80,443", "--tags=a;b"]


def test_hash_option(compiler):
    definition = command(options=[{"name": "define", "cli": "-D", "type": "hash", "delimiter": "none"}])
    assert compiler.compile(definition, {"define": {"a": 1, "b": 2}}) == ["-Da=1,b=2"]


def test_option_validation_error_propagates(compiler):
    definition = command(options=[{"name": "level", "cli": "-l", "type": "integer", "range": [1, 5]}])
    with pytest.raises(ValidationError, match="out of range"):
        compiler.compile(definition, {"level": 9})


def test_variadic_argument_expands(compiler):
    definition = command(arguments=[
        {"name": "inputs", "type": "integer", "variadic": True, "position": 1, "range": [0, 10]},
    ])
    assert compiler.compile(definition, {"inputs": ["1", 2, "3"]}) == ["1", "2", "3"]
    assert compiler.compile(definition, {"inputs": "7"}) == ["7"]
    with pytest.raises(ValidationError, match="out of range"):
        compiler.compile(definition, {"inputs": ["1", "11"]})


def test_variadic_count_constraints_apply_to_element_count(compiler):
    definition = command(arguments=[
        {"name": "pair", "type": "array", "of": "integer", "variadic": True, "position": 1, "size": 2},
    ])
    assert compiler.compile(definition, {"pair": ["1", "2"]}) == ["1", "2"]
    with pytest.raises(ValidationError, match="expected 2"):
        compiler.compile(definition, {"pair": ["1", "2", "3"]})

    definition = command(arguments=[
        {"name": "inputs", "type": "integer", "variadic": True, "position": 1, "min": 2, "max": 3},
    ])
    assert compiler.compile(definition, {"inputs": ["1", "5"]}) == ["1", "5"]
    with pytest.raises(ValidationError, match="minimum is 2"):
        compiler.compile(definition, {"inputs": "9"})
    with pytest.raises(ValidationError, match="maximum is 3"):
        compiler.compile(definition, {"inputs": [1, 2, 3, 4]})


def test_variadic_array_argument_uses_element_type(compiler):
    definition = command(arguments=[
        {"name": "files", "type": "array", "of": "file", "variadic": True, "position": 1},
    ])
    tokens = compiler.compile(definition, {"files": ["a/b.txt", "c.txt"]}, dialect=get_dialect("cmd"))
    assert tokens == ["a\\b.txt", "c.txt"]


def test_file_paths_use_dialect_format(compiler):
    definition = command(arguments=[{"name": "path", "type": "file", "position": 1}])
    assert compiler.compile(definition, {"path": "a/b"}, dialect=get_dialect("cmd")) == ["a\\b"]
    assert compiler.compile(definition, {"path": "a/b"}, dialect=get_dialect("bash")) == ["a/b"]


def test_value_stringification(compiler):
    definition = command(arguments=[
        {"name": "when", "type": "datetime", "position": 1},
        {"name": "flag", "type": "boolean", "position": 2},
    ])
    tokens = compiler.compile(definition, {"when": datetime(2024, 5, 6, 7, 8, 9), "flag": "on"})
    assert tokens == ["2024-05-06T07:08:09", "true"]


def test_platform_restricted_options_and_flags(compiler):
    definition = command(
        options=[{"name": "win", "cli": "/w", "platforms": "windows"}],
        flags=[{"name": "color", "cli": "--color", "platforms": ["linux"], "default": True}],
    )
    params = {"win": "1"}
    assert compiler.compile(definition, params, platform="linux") == ["--color"]
    assert compiler.compile(definition, params, platform="windows") == ["/w:1"]
    assert compiler.compile(definition, params) == ["/w:1", "--color"]


def test_more_than_one_last_argument_rejected():
    with pytest.raises(ValueError):
        command(arguments=[
            {"name": "a", "position": "last"},
            {"name": "b", "position": "last"},
        ])


def test_build_env_vars():
    definition = command(env_vars=[
        {"name": "FIXED", "value": "1"},
        {"name": "FROM_PARAM", "env_var": "level"},
        {"name": "EMPTY", "env_var": "blank"},
        {"name": "ABSENT", "env_var": "missing"},
        {"name": "BOOL", "env_var": "debug"},
        {"name": "WIN_ONLY", "value": "x", "platforms": ["windows"]},
    ])
    env = build_env_vars(definition, {"level": 3, "blank": "", "debug": True}, platform="linux")
    assert env == {"FIXED": "1", "FROM_PARAM": "3", "EMPTY": "", "BOOL": "true"}
