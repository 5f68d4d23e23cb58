"""
Type validation and coercion for parameter values.

``validate(value, type_name, constraints)`` is pure and deterministic: it
returns the coerced value or raises ValidationError naming the violated
constraint. Re-validating a value it returned yields the same value.

Supported types: file, string, integer, float, symbol, boolean, uri,
datetime, hash, array.

Constraint keys (all optional):
    pattern           regex a string must match (re.search)
    min / max         numeric bounds, or element-count bounds for arrays
    range             inclusive (low, high) pair for numbers
    values            enumerated values for symbols
    size              exact element count, or a collection of allowed counts
    of                element type for arrays
    keys              permitted keys for hashes
    allow_empty       permit "" for strings
    require_existing  file must exist on disk
"""
import logging
import math
import os
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

from .errors import ValidationError
from .models import VALID_TYPES

log = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off", ""})
_URI_FORBIDDEN = re.compile(r"[\s<>\"{}|\\^`]")
_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")

# Array-level constraints that must not leak into element validation.
_ARRAY_ONLY_KEYS = ("min", "max", "size", "of")


class TypeValidator:
    """Validates and coerces values against declared types."""

    def __init__(self):
        self._validators: Dict[str, Callable[[Any, Dict[str, Any]], Any]] = {
            "file": self._validate_file,
            "string": self._validate_string,
            "integer": self._validate_integer,
            "float": self._validate_float,
            "symbol": self._validate_symbol,
            "boolean": self._validate_boolean,
            "uri": self._validate_uri,
            "datetime": self._validate_datetime,
            "hash": self._validate_hash,
            "array": self._validate_array,
        }

    @staticmethod
    def is_valid_type(type_name: str) -> bool:
        return type_name in VALID_TYPES

    def validate(self, value: Any, type_name: Optional[str] = "string",
                 constraints: Optional[Mapping] = None) -> Any:
        """
        Validate ``value`` against ``type_name``.

        Args:
            value: Raw value (string, number, sequence, mapping...)
            type_name: One of VALID_TYPES; None means string
            constraints: Optional constraint mapping

        Returns:
            The coerced value

        Raises:
            ValidationError: If the type is unknown or a constraint fails
        """
        type_name = type_name or "string"
        validator = self._validators.get(type_name)
        if validator is None:
            raise ValidationError(f"Unknown type: {type_name}")
        return validator(value, dict(constraints or {}))

    def validate_variadic(self, value: Any, type_name: Optional[str],
                          constraints: Optional[Mapping] = None,
                          element_type: Optional[str] = None) -> List[Any]:
        """
        Validate a variadic value as an array.

        Count bounds (min, max, size) apply to the number of elements; every
        element is validated against the element type, which is ``of`` for
        array-typed definitions and the declared type otherwise.
        """
        if type_name == "array":
            element_type = element_type or "string"
        else:
            element_type = type_name or "string"
        return self.validate(value, "array", {**dict(constraints or {}), "of": element_type})

    # Scalars

    def _validate_file(self, value: Any, constraints: Dict[str, Any]) -> str:
        path = os.fspath(value) if isinstance(value, os.PathLike) else str(value)
        if not path:
            raise ValidationError("File path cannot be empty")
        if constraints.get("require_existing") and not os.path.exists(path):
            raise ValidationError(f"File not found: {path}")
        return path

    def _validate_string(self, value: Any, constraints: Dict[str, Any]) -> str:
        text = str(value)
        if not text and not constraints.get("allow_empty"):
            raise ValidationError("String cannot be empty")
        pattern = constraints.get("pattern")
        if pattern and re.search(pattern, text) is None:
            raise ValidationError(f"String does not match required pattern: {pattern}")
        return text

    def _validate_integer(self, value: Any, constraints: Dict[str, Any]) -> int:
        if isinstance(value, bool):
            raise ValidationError(f"Invalid integer: {value!r}")
        try:
            if isinstance(value, float):
                if not value.is_integer():
                    raise ValueError("fractional value")
                number = int(value)
            elif isinstance(value, str):
                number = int(value.strip())
            else:
                number = int(value)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError(f"Invalid integer: {value!r}")
        self._check_bounds("Integer", number, constraints)
        return number

    def _validate_float(self, value: Any, constraints: Dict[str, Any]) -> float:
        if isinstance(value, bool):
            raise ValidationError(f"Invalid float: {value!r}")
        try:
            number = float(value.strip() if isinstance(value, str) else value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid float: {value!r}")
        if math.isnan(number):
            raise ValidationError(f"Invalid float: {value!r}")
        self._check_bounds("Float", number, constraints)
        return number

    def _check_bounds(self, label: str, number, constraints: Dict[str, Any]) -> None:
        bounds = constraints.get("range")
        if bounds is not None:
            low, high = bounds
            if number < low or number > high:
                raise ValidationError(f"{label} {number} out of range [{low}, {high}]")
        minimum = constraints.get("min")
        if minimum is not None and number < minimum:
            raise ValidationError(f"{label} {number} below minimum {minimum}")
        maximum = constraints.get("max")
        if maximum is not None and number > maximum:
            raise ValidationError(f"{label} {number} above maximum {maximum}")

    def _validate_symbol(self, value: Any, constraints: Dict[str, Any]) -> str:
        token = str(value).strip().lower()
        if not token:
            raise ValidationError("Symbol cannot be empty")
        allowed = constraints.get("values")
        if allowed:
            normalized = {str(v).strip().lower() for v in allowed}
            if token not in normalized:
                raise ValidationError(
                    f"Invalid symbol: {token!r}. Valid values: {list(allowed)!r}"
                )
        return token

    def _validate_boolean(self, value: Any, constraints: Dict[str, Any]) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        raise ValidationError(f"Invalid boolean: {value!r}")

    def _validate_uri(self, value: Any, constraints: Dict[str, Any]) -> str:
        text = str(value)
        if not text:
            raise ValidationError("URI cannot be empty")
        if _URI_FORBIDDEN.search(text):
            raise ValidationError(f"Invalid URI: {text}")
        try:
            parts = urlsplit(text)
        except ValueError as e:
            raise ValidationError(f"Invalid URI: {text} - {e}")
        if parts.scheme and not _SCHEME_PATTERN.match(parts.scheme):
            raise ValidationError(f"Invalid URI scheme: {text}")
        if not (parts.scheme or parts.netloc or parts.path):
            raise ValidationError(f"Invalid URI: {text}")
        return text

    def _validate_datetime(self, value: Any, constraints: Dict[str, Any]) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return datetime.fromtimestamp(value, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as e:
                raise ValidationError(f"Invalid datetime: {value!r} - {e}")
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid datetime: {value!r} - {e}")

    # Containers

    def _validate_hash(self, value: Any, constraints: Dict[str, Any]) -> Dict[Any, Any]:
        if not isinstance(value, Mapping):
            raise ValidationError(f"Hash expected, got {type(value).__name__}: {value!r}")
        permitted = constraints.get("keys")
        if permitted:
            unknown = [k for k in value if k not in permitted]
            if unknown:
                raise ValidationError(
                    f"Unknown hash keys: {unknown!r}. Valid keys: {list(permitted)!r}"
                )
        return dict(value)

    def _validate_array(self, value: Any, constraints: Dict[str, Any]) -> List[Any]:
        items = list(value) if isinstance(value, (list, tuple)) else [value]
        count = len(items)

        minimum = constraints.get("min")
        if minimum is not None and count < minimum:
            raise ValidationError(f"Array has {count} elements, minimum is {minimum}")
        maximum = constraints.get("max")
        if maximum is not None and count > maximum:
            raise ValidationError(f"Array has {count} elements, maximum is {maximum}")

        size = constraints.get("size")
        if isinstance(size, int) and not isinstance(size, bool):
            if count != size:
                raise ValidationError(f"Array has {count} elements, expected {size}")
        elif size is not None and count not in size:
            raise ValidationError(f"Array has {count} elements, expected one of: {list(size)!r}")

        element_type = constraints.get("of")
        if element_type:
            element_constraints = {
                k: v for k, v in constraints.items() if k not in _ARRAY_ONLY_KEYS
            }
            items = [self.validate(item, element_type, element_constraints) for item in items]

        log.debug("validation.array count=%d element_type=%s", count, element_type)
        return items


_default_validator = TypeValidator()


def validate(value: Any, type_name: Optional[str] = "string",
             constraints: Optional[Mapping] = None) -> Any:
    """Validate with the shared module-level TypeValidator."""
    return _default_validator.validate(value, type_name, constraints)
