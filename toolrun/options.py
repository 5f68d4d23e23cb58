"""
Generic per-command parameter holder.

One ``CommandOptions`` class serves every command: a descriptor table built
from the CommandDefinition decides which attribute names exist and how values
assigned to them are validated.

Usage:
    opts = tool.options_for("convert")
    opts.inputs = ["a.png", "b.png"]
    opts.quality = "90"          # coerced to 90
    opts.strip = True
    opts.validate_required()
    tokens = opts.to_args()
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from .compiler import ArgumentCompiler
from .errors import ValidationError
from .models import ArgumentDefinition, CommandDefinition, FlagDefinition, OptionDefinition
from .shells import ShellAdapter, get_dialect
from .validation import TypeValidator

log = logging.getLogger(__name__)

Definition = Union[ArgumentDefinition, OptionDefinition, FlagDefinition]


@dataclass(frozen=True)
class ParameterDescriptor:
    name: str
    kind: str  # "argument", "option", "post_option" or "flag"
    definition: Definition


def build_descriptors(definition: CommandDefinition) -> Dict[str, ParameterDescriptor]:
    """Descriptor table for ``definition``; later declarations never shadow earlier ones."""
    table: Dict[str, ParameterDescriptor] = {}
    groups = (
        ("argument", definition.arguments),
        ("option", definition.options),
        ("flag", definition.flags),
        ("post_option", definition.post_options),
    )
    for kind, items in groups:
        for item in items:
            table.setdefault(item.name, ParameterDescriptor(item.name, kind, item))
    return table


class CommandOptions:
    """Validated parameter values for one CommandDefinition."""

    def __init__(self, definition: CommandDefinition,
                 descriptors: Optional[Dict[str, ParameterDescriptor]] = None,
                 validator: Optional[TypeValidator] = None,
                 values: Optional[Mapping[str, Any]] = None):
        object.__setattr__(self, "_definition", definition)
        object.__setattr__(self, "_descriptors", descriptors or build_descriptors(definition))
        object.__setattr__(self, "_validator", validator or TypeValidator())
        object.__setattr__(self, "_values", {})
        for name, value in (values or {}).items():
            setattr(self, name, value)

    @property
    def definition(self) -> CommandDefinition:
        return self._definition

    def parameter_names(self) -> List[str]:
        return list(self._descriptors)

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal attribute lookup fails.
        if name.startswith("_"):
            raise AttributeError(name)
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise AttributeError(f"{self._definition.name!r} has no parameter {name!r}")
        if name in self._values:
            return self._values[name]
        if descriptor.kind == "flag":
            return descriptor.definition.default
        return None

    def __setattr__(self, name: str, value: Any) -> None:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise AttributeError(f"{self._definition.name!r} has no parameter {name!r}")
        if value is None:
            self._values.pop(name, None)
            return
        self._values[name] = self._coerce(descriptor, value)

    def __delattr__(self, name: str) -> None:
        if name not in self._descriptors:
            raise AttributeError(name)
        self._values.pop(name, None)

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def set(self, **values: Any) -> "CommandOptions":
        for name, value in values.items():
            setattr(self, name, value)
        return self

    def _coerce(self, descriptor: ParameterDescriptor, value: Any) -> Any:
        definition = descriptor.definition
        if descriptor.kind == "flag":
            return self._validator.validate(value, "boolean")

        constraints = definition.constraints()
        if descriptor.kind == "argument" and definition.variadic:
            return self._validator.validate_variadic(value, definition.type, constraints, definition.of)
        return self._validator.validate(value, definition.type, constraints)

    def validate_required(self) -> None:
        """
        Raises:
            ValidationError: Listing every required argument without a value
        """
        missing = [
            arg.name for arg in self._definition.arguments
            if arg.required and self._values.get(arg.name) is None
        ]
        if missing:
            raise ValidationError(
                f"Missing required arguments for {self._definition.name!r}: {', '.join(missing)}"
            )

    def to_params(self) -> Dict[str, Any]:
        return dict(self._values)

    def to_args(self, dialect: Optional[ShellAdapter] = None,
                platform: Optional[str] = None) -> List[str]:
        return ArgumentCompiler(self._validator).compile(
            self._definition, self._values, dialect=dialect, platform=platform
        )

    def to_shell(self, dialect: Union[str, ShellAdapter], executable: Optional[str] = None,
                 platform: Optional[str] = None) -> str:
        """Command string quoted for ``dialect``; arguments only when no executable is given."""
        adapter = get_dialect(dialect)
        args = self.to_args(adapter, platform)
        if executable:
            return adapter.join(executable, *args)
        return " ".join(adapter.quote(arg) for arg in args)

    def __repr__(self) -> str:
        values = ", ".join(f"{k}={v!r}" for k, v in self._values.items())
        return f"CommandOptions({self._definition.name}: {values})"
