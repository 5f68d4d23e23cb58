"""
Compile a CommandDefinition and a parameter map into argument tokens.

Token order is fixed, independent of declaration order:

    subcommand, prefix flags, options, normal flags,
    positional arguments (ascending position, unpositioned last),
    post-options, the "last" argument

Absent or None parameters are skipped; required arguments are checked by
CommandOptions, not here.

Usage:
    from toolrun.compiler import ArgumentCompiler

    tokens = ArgumentCompiler().compile(definition, {"quality": 90, "output": "out.png"})
"""
import logging
from collections.abc import Mapping as MappingABC
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .models import (
    ArgumentDefinition, CommandDefinition, FlagDefinition, OptionDefinition,
)
from .shells import ShellAdapter
from .validation import TypeValidator

log = logging.getLogger(__name__)


def resolve_delimiter(option: OptionDefinition) -> str:
    """Explicit delimiter, or one inferred from the CLI prefix when ``auto``."""
    if option.delimiter != "auto":
        return option.delimiter
    cli = option.cli
    if cli.startswith("--"):
        return "equals"
    if cli.startswith("-"):
        return "space"
    if cli.startswith("/"):
        return "colon"
    return "equals"


class ArgumentCompiler:
    """Turns definitions plus parameters into an ordered token list."""

    def __init__(self, validator: Optional[TypeValidator] = None):
        self.validator = validator or TypeValidator()

    def compile(self, definition: CommandDefinition, params: Optional[Mapping[str, Any]] = None,
                dialect: Optional[ShellAdapter] = None,
                platform: Optional[str] = None) -> List[str]:
        """
        Build the argument tokens for ``definition``.

        Args:
            definition: Command to compile
            params: Parameter values keyed by argument/option/flag name
            dialect: When given, file values go through ``dialect.format_path``
            platform: When given, platform-restricted options for other platforms are skipped

        Returns:
            Tokens, without the executable

        Raises:
            ValidationError: Propagated unchanged from TypeValidator
        """
        params = dict(params or {})
        tokens: List[str] = []

        if definition.subcommand:
            tokens.append(definition.subcommand)

        for flag in definition.prefix_flags:
            tokens.extend(self._format_flag(flag, params, platform))

        for option in definition.options:
            tokens.extend(self._format_option(option, params, dialect, platform))

        for flag in definition.normal_flags:
            tokens.extend(self._format_flag(flag, params, platform))

        for argument in definition.regular_arguments:
            tokens.extend(self._format_argument(argument, params, dialect))

        for option in definition.post_options:
            tokens.extend(self._format_option(option, params, dialect, platform))

        last = definition.last_argument
        if last is not None:
            tokens.extend(self._format_argument(last, params, dialect))

        log.debug("compiler.compiled command=%s tokens=%d", definition.name, len(tokens))
        return tokens

    def _format_flag(self, flag: FlagDefinition, params: Dict[str, Any],
                     platform: Optional[str]) -> List[str]:
        if platform and flag.platforms and platform not in flag.platforms:
            return []
        value = params.get(flag.name)
        if value is None:
            value = flag.default
        if self.validator.validate(value, "boolean"):
            return [flag.cli]
        return []

    def _format_option(self, option: OptionDefinition, params: Dict[str, Any],
                       dialect: Optional[ShellAdapter], platform: Optional[str]) -> List[str]:
        if platform and not option.applies_to(platform):
            return []
        value = params.get(option.name)
        if value is None:
            return []

        validated = self.validator.validate(value, option.type, option.constraints())
        if option.is_boolean:
            return [option.cli] if validated else []

        if isinstance(validated, list):
            element_type = option.of or "string"
            text = option.separator.join(
                self._stringify(item, element_type, dialect) for item in validated
            )
        elif isinstance(validated, dict):
            text = option.separator.join(f"{k}={v}" for k, v in validated.items())
        else:
            text = self._stringify(validated, option.type, dialect)

        delimiter = resolve_delimiter(option)
        if delimiter == "space":
            return [option.cli, text]
        if delimiter == "none":
            return [f"{option.cli}{text}"]
        if delimiter == "colon":
            return [f"{option.cli}:{text}"]
        return [f"{option.cli}={text}"]

    def _format_argument(self, argument: ArgumentDefinition, params: Dict[str, Any],
                         dialect: Optional[ShellAdapter]) -> List[str]:
        value = params.get(argument.name)
        if value is None:
            return []

        if argument.variadic:
            element_type = argument.type if argument.type != "array" else (argument.of or "string")
            validated = self.validator.validate_variadic(value, argument.type, argument.constraints(),
                                                         argument.of)
            return [self._stringify(item, element_type, dialect) for item in validated]

        validated = self.validator.validate(value, argument.type, argument.constraints())
        if isinstance(validated, list):
            element_type = argument.of or "string"
            return [self._stringify(item, element_type, dialect) for item in validated]
        return [self._stringify(validated, argument.type, dialect)]

    @staticmethod
    def _stringify(value: Any, type_name: str, dialect: Optional[ShellAdapter]) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, MappingABC):
            return ",".join(f"{k}={v}" for k, v in value.items())
        text = str(value)
        if type_name == "file" and dialect is not None:
            return dialect.format_path(text)
        return text


def build_env_vars(definition: CommandDefinition, params: Optional[Mapping[str, Any]] = None,
                   platform: Optional[str] = None) -> Dict[str, str]:
    """
    Environment variables declared by ``definition``.

    Entries restricted to other platforms are skipped, as are entries whose
    parameter is absent. An empty string is a real value and is kept.
    """
    params = params or {}
    env: Dict[str, str] = {}
    for env_var in definition.env_vars:
        if platform and not env_var.applies_to(platform):
            continue
        if env_var.value is not None:
            env[env_var.name] = env_var.value
            continue
        if env_var.env_var is None:
            continue
        value = params.get(env_var.env_var)
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        env[env_var.name] = str(value)
    return env
