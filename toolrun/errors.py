"""
Error types for toolrun.

Every exception raised to callers derives from ToolrunError and can be turned
into an ErrorContext for structured logging.

Usage:
    from toolrun.errors import ExecutionError, ValidationError

    try:
        result = tool.execute("convert", params)
    except ExecutionError as e:
        log.error("run failed status=%s", e.status)
"""
import builtins
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorType(Enum):
    """Error categories used in ErrorContext."""
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    EXECUTION_ERROR = "execution_error"
    CONFIGURATION_ERROR = "configuration_error"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Error context with recovery suggestions and metadata."""
    error_type: ErrorType
    message: str
    recovery_suggestion: str
    timestamp: datetime
    tool_name: str
    target: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "recovery_suggestion": self.recovery_suggestion,
            "timestamp": self.timestamp.isoformat(),
            "tool_name": self.tool_name,
            "target": self.target,
            "metadata": self.metadata,
        }


class ToolrunError(Exception):
    """Base class for all toolrun errors."""
    error_type: ErrorType = ErrorType.UNKNOWN

    @property
    def suggestions(self) -> List[str]:
        return []

    def context_metadata(self) -> Dict[str, Any]:
        return {"exception_type": type(self).__name__}

    def to_context(self, tool_name: str = "", target: str = "") -> ErrorContext:
        suggestions = self.suggestions
        return ErrorContext(
            error_type=self.error_type,
            message=str(self),
            recovery_suggestion="; ".join(suggestions) if suggestions else "Check tool logs",
            timestamp=datetime.now(),
            tool_name=tool_name,
            target=target,
            metadata=self.context_metadata(),
        )


class ValidationError(ToolrunError):
    """A value violated its declared type or constraints."""
    error_type = ErrorType.VALIDATION_ERROR

    @property
    def suggestions(self) -> List[str]:
        return [
            "Check the parameter type against the command definition",
            "Verify value is within the allowed range",
            "Ensure value is in the allowed values list",
        ]


class ExecutionError(ToolrunError):
    """A process exited with a non-zero status the caller did not allow."""
    error_type = ErrorType.EXECUTION_ERROR

    def __init__(self, message: str, command: str = "", stdout: str = "",
                 stderr: str = "", status: int = 1, result: Any = None):
        super().__init__(message)
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.status = status
        self.result = result

    @property
    def suggestions(self) -> List[str]:
        return [
            "Check the exit status and stderr of the command",
            "Verify parameters are correct",
        ]

    def context_metadata(self) -> Dict[str, Any]:
        meta = super().context_metadata()
        meta.update({"command": self.command, "status": self.status})
        return meta


class ExecutionTimeoutError(ToolrunError, builtins.TimeoutError):
    """The process did not finish before its wall-clock timeout."""
    error_type = ErrorType.TIMEOUT

    def __init__(self, message: str, timeout: Optional[float] = None, command: str = ""):
        super().__init__(message)
        self.timeout = timeout
        self.command = command

    @property
    def suggestions(self) -> List[str]:
        return [
            "Increase the timeout parameter",
            "Check the TOOLRUN_TIMEOUT environment variable",
            "Verify the tool is not waiting for input",
        ]

    def context_metadata(self) -> Dict[str, Any]:
        meta = super().context_metadata()
        meta.update({"command": self.command, "timeout": self.timeout})
        return meta


class ConfigurationError(ToolrunError):
    error_type = ErrorType.CONFIGURATION_ERROR


class UnknownShellError(ConfigurationError):
    """The shell dialect could not be determined or is not supported."""

    @property
    def suggestions(self) -> List[str]:
        return [
            "Supported shells: bash, zsh, fish, sh, dash, tcsh, powershell, cmd",
            "Set the shell explicitly with TOOLRUN_SHELL",
        ]


class UnsupportedPlatformError(ConfigurationError):
    """The operating system could not be mapped to a supported platform."""

    @property
    def suggestions(self) -> List[str]:
        return [
            "Supported platforms: linux, macos, windows",
            "Set the platform explicitly with TOOLRUN_PLATFORM",
        ]


class NotFoundError(ToolrunError):
    error_type = ErrorType.NOT_FOUND


class ToolNotFoundError(NotFoundError):
    @property
    def suggestions(self) -> List[str]:
        return [
            "Check tool name spelling",
            "Verify the register path is correct",
        ]


class CommandNotFoundError(NotFoundError):
    @property
    def suggestions(self) -> List[str]:
        return ["List the tool's commands with Tool.command_names()"]


class ExecutableNotFoundError(NotFoundError):
    @property
    def suggestions(self) -> List[str]:
        return [
            "Install the tool or add its directory to PATH",
            "Configure search_paths in the tool definition",
        ]


class DefinitionLoadError(ToolrunError):
    """A tool definition file could not be read or parsed."""
