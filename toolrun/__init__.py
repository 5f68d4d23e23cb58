"""
toolrun: compile declarative command definitions into shell invocations and run them.
"""
from .cache import BoundedCache
from .compiler import ArgumentCompiler, build_env_vars
from .config import RunnerConfig, configure_logging, get_config, reset_config
from .errors import (
    CommandNotFoundError,
    ConfigurationError,
    DefinitionLoadError,
    ErrorContext,
    ErrorType,
    ExecutableNotFoundError,
    ExecutionError,
    ExecutionTimeoutError,
    ToolNotFoundError,
    ToolrunError,
    UnknownShellError,
    UnsupportedPlatformError,
    ValidationError,
)
from .executor import ExecutionResult, ProcessExecutor
from .models import CommandDefinition, ToolDefinition
from .options import CommandOptions
from .platform import RuntimeContext, detect_platform, find_executable
from .shells import detect_shell, get_dialect
from .tool import Tool, ToolRunner
from .tool_index import ToolResolutionIndex
from .validation import TypeValidator

__version__ = "0.1.0"

__all__ = [
    "ArgumentCompiler",
    "BoundedCache",
    "CommandDefinition",
    "CommandNotFoundError",
    "CommandOptions",
    "ConfigurationError",
    "DefinitionLoadError",
    "ErrorContext",
    "ErrorType",
    "ExecutableNotFoundError",
    "ExecutionError",
    "ExecutionResult",
    "ExecutionTimeoutError",
    "ProcessExecutor",
    "RunnerConfig",
    "RuntimeContext",
    "Tool",
    "ToolDefinition",
    "ToolNotFoundError",
    "ToolResolutionIndex",
    "ToolRunner",
    "ToolrunError",
    "TypeValidator",
    "UnknownShellError",
    "UnsupportedPlatformError",
    "ValidationError",
    "build_env_vars",
    "configure_logging",
    "detect_platform",
    "detect_shell",
    "find_executable",
    "get_config",
    "get_dialect",
    "reset_config",
]
