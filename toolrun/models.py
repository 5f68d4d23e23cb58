"""
Definition models consumed by the compiler and the executor.

All models are frozen pydantic models: a definition is built once (usually by
``Model.model_validate(mapping)`` on data produced by a definition loader) and
never mutated afterwards.

Usage:
    from toolrun.models import CommandDefinition

    command = CommandDefinition.model_validate({
        "name": "convert",
        "arguments": [{"name": "inputs", "type": "file", "variadic": True, "position": 1},
                      {"name": "output", "type": "file", "position": "last"}],
        "options": [{"name": "resize", "cli": "-resize", "delimiter": "space"}],
    })
"""
import math
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

TypeName = Literal[
    "file", "string", "integer", "float", "symbol",
    "boolean", "uri", "datetime", "hash", "array",
]
Delimiter = Literal["equals", "space", "colon", "none", "auto"]

VALID_TYPES: Tuple[str, ...] = (
    "file", "string", "integer", "float", "symbol",
    "boolean", "uri", "datetime", "hash", "array",
)

# Option formats used by older definitions, mapped onto delimiters.
_LEGACY_FORMATS = {
    "double_dash_equals": "equals",
    "single_dash_equals": "equals",
    "double_dash_space": "space",
    "single_dash_space": "space",
    "slash_space": "space",
    "slash_colon": "colon",
}

# Keys copied out of a definition into the constraint mapping given to
# TypeValidator.
_CONSTRAINT_KEYS = (
    "pattern", "min", "max", "range", "values", "size", "of",
    "keys", "allow_empty", "require_existing",
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


def _platform_list(value: Any) -> Any:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return value


class _Constrained(_Frozen):
    """Fields shared by anything that carries a value type and constraints."""
    type: TypeName = "string"
    pattern: Optional[str] = None
    min: Optional[Union[int, float]] = None
    max: Optional[Union[int, float]] = None
    range: Optional[Tuple[Union[int, float], Union[int, float]]] = None
    values: Optional[Tuple[Any, ...]] = None
    size: Optional[Union[int, Tuple[int, ...]]] = None
    of: Optional[TypeName] = None
    keys: Optional[Tuple[str, ...]] = None
    allow_empty: bool = False
    require_existing: bool = False

    def constraints(self) -> Dict[str, Any]:
        """Constraint mapping in the shape TypeValidator expects."""
        data = {}
        for key in _CONSTRAINT_KEYS:
            value = getattr(self, key)
            if value is not None and value is not False:
                data[key] = value
        return data


class ArgumentDefinition(_Constrained):
    """A positional argument.

    ``position`` is an integer, the string ``"last"``, the string ``"first"``
    or ``None`` (unpositioned, sorted after every positioned argument).
    """
    name: str
    position: Optional[Union[int, str]] = None
    variadic: bool = False
    required: bool = False
    description: Optional[str] = None

    @field_validator("position", mode="before")
    @classmethod
    def _normalize_position(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            if v.isdigit():
                return int(v)
            if v not in ("last", "first"):
                raise ValueError(f"Invalid argument position: {v!r}")
        return v

    @property
    def is_last(self) -> bool:
        return self.position == "last"

    @property
    def numeric_position(self) -> float:
        if self.position is None:
            return math.inf
        if self.position == "first":
            return 0
        if self.position == "last":
            return math.inf
        return self.position


class OptionDefinition(_Constrained):
    """A valued option such as ``--quality=90`` or ``-resize 50%``."""
    name: str
    cli: str
    delimiter: Delimiter = Field(default="auto", validation_alias=AliasChoices("delimiter", "format"))
    separator: str = ","
    description: Optional[str] = None
    platforms: Tuple[str, ...] = ()

    @field_validator("delimiter", mode="before")
    @classmethod
    def _map_legacy_format(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _LEGACY_FORMATS.get(v, v)
        return v

    @field_validator("platforms", mode="before")
    @classmethod
    def _listify_platforms(cls, v: Any) -> Any:
        return _platform_list(v)

    @property
    def is_boolean(self) -> bool:
        return self.type == "boolean"

    def applies_to(self, platform: str) -> bool:
        return not self.platforms or platform in self.platforms


class FlagDefinition(_Frozen):
    """A valueless switch. Prefix flags precede every option."""
    name: str
    cli: str
    default: bool = False
    position_constraint: Literal["prefix", "normal"] = "normal"
    description: Optional[str] = None
    platforms: Tuple[str, ...] = ()

    @field_validator("position_constraint", mode="before")
    @classmethod
    def _default_constraint(cls, v: Any) -> Any:
        return "normal" if v is None else v

    @field_validator("platforms", mode="before")
    @classmethod
    def _listify_platforms(cls, v: Any) -> Any:
        return _platform_list(v)

    @property
    def is_prefix(self) -> bool:
        return self.position_constraint == "prefix"


class EnvVarDefinition(_Frozen):
    """Environment variable set for a command.

    The value is either fixed (``value``) or taken from the parameter named by
    ``env_var``.
    """
    name: str
    value: Optional[str] = None
    env_var: Optional[str] = None
    platforms: Tuple[str, ...] = ()

    @field_validator("platforms", mode="before")
    @classmethod
    def _listify_platforms(cls, v: Any) -> Any:
        return _platform_list(v)

    def applies_to(self, platform: Optional[str]) -> bool:
        return not self.platforms or platform in self.platforms


class ExitCodes(_Frozen):
    """Meaning of non-zero exit codes; custom entries win over standard ones."""
    standard: Dict[str, str] = Field(default_factory=dict)
    custom: Dict[str, str] = Field(default_factory=dict)

    @field_validator("standard", "custom", mode="before")
    @classmethod
    def _stringify_keys(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    def meaning(self, code: int) -> Optional[str]:
        key = str(code)
        return self.custom.get(key) or self.standard.get(key)

    def is_defined(self, code: int) -> bool:
        return self.meaning(code) is not None

    def all_codes(self) -> Dict[str, str]:
        merged = dict(self.standard)
        merged.update(self.custom)
        return merged


class CommandDefinition(_Frozen):
    """One invocable operation of an external executable."""
    name: str
    description: Optional[str] = None
    subcommand: Optional[str] = None
    arguments: Tuple[ArgumentDefinition, ...] = ()
    options: Tuple[OptionDefinition, ...] = ()
    flags: Tuple[FlagDefinition, ...] = ()
    post_options: Tuple[OptionDefinition, ...] = ()
    env_vars: Tuple[EnvVarDefinition, ...] = ()
    timeout: Optional[float] = None
    exit_codes: Optional[ExitCodes] = None

    @field_validator("arguments", "options", "flags", "post_options", "env_vars", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return () if v is None else v

    @model_validator(mode="after")
    def _single_last_argument(self) -> "CommandDefinition":
        last = [a.name for a in self.arguments if a.is_last]
        if len(last) > 1:
            raise ValueError(
                f"Command {self.name!r} declares more than one 'last' argument: {', '.join(last)}"
            )
        return self

    @property
    def last_argument(self) -> Optional[ArgumentDefinition]:
        for arg in self.arguments:
            if arg.is_last:
                return arg
        return None

    @property
    def regular_arguments(self) -> List[ArgumentDefinition]:
        """Non-"last" arguments in ascending position order."""
        return sorted(
            (a for a in self.arguments if not a.is_last),
            key=lambda a: a.numeric_position,
        )

    @property
    def prefix_flags(self) -> List[FlagDefinition]:
        return [f for f in self.flags if f.is_prefix]

    @property
    def normal_flags(self) -> List[FlagDefinition]:
        return [f for f in self.flags if not f.is_prefix]

    def argument(self, name: str) -> Optional[ArgumentDefinition]:
        return next((a for a in self.arguments if a.name == name), None)

    def option(self, name: str) -> Optional[OptionDefinition]:
        return next((o for o in (*self.options, *self.post_options) if o.name == name), None)

    def flag(self, name: str) -> Optional[FlagDefinition]:
        return next((f for f in self.flags if f.name == name), None)

    def parameter_names(self) -> List[str]:
        names = [a.name for a in self.arguments]
        names += [o.name for o in self.options]
        names += [f.name for f in self.flags]
        names += [o.name for o in self.post_options]
        return names


class PlatformProfile(_Frozen):
    """Commands of a tool for a set of platforms and shells.

    Empty ``platforms`` or ``shells`` means the profile applies everywhere.
    """
    name: Optional[str] = None
    platforms: Tuple[str, ...] = ()
    shells: Tuple[str, ...] = ()
    executable_name: Optional[str] = None
    commands: Tuple[CommandDefinition, ...] = ()
    exit_codes: Optional[ExitCodes] = None

    @field_validator("platforms", "shells", "commands", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        return _platform_list(v)

    @property
    def universal(self) -> bool:
        return not self.platforms and not self.shells

    def supports_platform(self, platform: str) -> bool:
        return not self.platforms or platform in self.platforms

    def supports_shell(self, shell: str) -> bool:
        return not self.shells or shell in self.shells

    def compatible(self, platform: str, shell: str) -> bool:
        return self.supports_platform(platform) and self.supports_shell(shell)

    def command(self, name: str) -> Optional[CommandDefinition]:
        return next((c for c in self.commands if c.name == name), None)

    def command_names(self) -> List[str]:
        return [c.name for c in self.commands]


class ToolDefinition(_Frozen):
    """A tool with one or more platform profiles."""
    name: str
    version: Optional[str] = None
    display_name: Optional[str] = None
    implements: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()
    search_paths: Tuple[str, ...] = ()
    profiles: Tuple[PlatformProfile, ...] = ()

    @field_validator("implements", "aliases", "search_paths", "profiles", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        return _platform_list(v)

    @field_validator("version", mode="before")
    @classmethod
    def _stringify_version(cls, v: Any) -> Any:
        return None if v is None else str(v)

    def profile_for(self, platform: str, shell: str) -> Optional[PlatformProfile]:
        for profile in self.profiles:
            if profile.compatible(platform, shell):
                return profile
        return None

    def is_compatible(self, platform: str, shell: str) -> bool:
        return self.profile_for(platform, shell) is not None


class ToolMetadata(_Frozen):
    """Top-level facts about a tool, read without building its profiles."""
    name: str
    tool_name: str
    version: Optional[str] = None
    display_name: Optional[str] = None
    implements: Optional[str] = None
    implements_version: Optional[str] = None
    aliases: Tuple[str, ...] = ()
    description: Optional[str] = None
    homepage: Optional[str] = None
    register_path: Optional[str] = None
    default_command: Optional[str] = None

    @staticmethod
    def parse_implements(value: Any) -> Tuple[Optional[str], Optional[str]]:
        """Split ``"ping@1.0"`` into ``("ping", "1.0")``."""
        if value is None:
            return None, None
        if isinstance(value, (list, tuple)):
            if not value:
                return None, None
            value = value[0]
        text = str(value)
        if "@" in text:
            interface, version = text.split("@", 1)
            return interface, version
        return text, None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any], tool_name: str,
                     register_path: Optional[str] = None) -> "ToolMetadata":
        interface, interface_version = cls.parse_implements(data.get("implements"))
        return cls(
            name=str(data.get("name") or tool_name),
            tool_name=tool_name,
            version=None if data.get("version") is None else str(data["version"]),
            display_name=data.get("display_name"),
            implements=interface,
            implements_version=interface_version,
            aliases=tuple(str(a) for a in (data.get("aliases") or ())),
            description=data.get("description"),
            homepage=data.get("homepage"),
            register_path=register_path,
            default_command=data.get("default_command") or interface or tool_name,
        )

    def implements_interface(self, interface: str, version: Optional[str] = None) -> bool:
        if self.implements != interface:
            return False
        return version is None or self.implements_version == version

    def __str__(self) -> str:
        return f"{self.display_name or self.name} v{self.version}"
