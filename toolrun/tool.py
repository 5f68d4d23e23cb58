"""
Tool facade: resolve a tool from the register, then compile and run its commands.

Usage:
    from toolrun import ToolRunner

    runner = ToolRunner()
    convert = runner.get("convert")            # tool name, alias or interface
    result = convert.execute("resize", {"input": "a.png", "output": "b.png", "size": "50%"})
    print(result.stdout)

    opts = convert.options_for("resize")
    opts.input = "a.png"
    opts.output = "b.png"
    opts.validate_required()
    convert.execute("resize", opts)
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from .cache import BoundedCache
from .compiler import ArgumentCompiler, build_env_vars
from .config import RunnerConfig, get_config
from .errors import CommandNotFoundError, ExecutableNotFoundError, ToolNotFoundError
from .executor import ExecutionResult, ProcessExecutor, StdinSource
from .metrics import MetricsManager
from .models import CommandDefinition, PlatformProfile, ToolDefinition
from .options import CommandOptions, build_descriptors
from .platform import RuntimeContext, find_executable
from .tool_index import ToolResolutionIndex
from .validation import TypeValidator

log = logging.getLogger(__name__)

Params = Union[Mapping[str, Any], CommandOptions, None]


class Tool:
    """
    A resolved tool bound to a runtime context.

    Args:
        definition: Parsed tool definition
        context: Platform and shell the tool runs under
        executor: Runs compiled commands
        tool_name: Register directory name, defaults to the definition name
        options_cache: Shared cache of parameter descriptor tables
    """

    def __init__(self, definition: ToolDefinition, context: RuntimeContext,
                 executor: Optional[ProcessExecutor] = None, tool_name: Optional[str] = None,
                 options_cache: Optional[BoundedCache] = None,
                 validator: Optional[TypeValidator] = None):
        self.definition = definition
        self.context = context
        self.executor = executor or ProcessExecutor(context)
        self.tool_name = tool_name or definition.name
        self.validator = validator or TypeValidator()
        self.compiler = ArgumentCompiler(self.validator)
        self._options_cache = options_cache or BoundedCache(max_size=100)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def version(self) -> Optional[str]:
        return self.definition.version

    @property
    def profile(self) -> Optional[PlatformProfile]:
        """First profile compatible with the context's platform and shell."""
        return self.definition.profile_for(self.context.platform, self.context.shell)

    def command_names(self) -> List[str]:
        profile = self.profile
        return profile.command_names() if profile else []

    def command(self, name: str) -> CommandDefinition:
        """
        Raises:
            CommandNotFoundError: No compatible profile, or no such command in it
        """
        profile = self.profile
        if profile is None:
            raise CommandNotFoundError(
                f"Tool {self.name!r} has no profile for platform={self.context.platform} "
                f"shell={self.context.shell}"
            )
        command = profile.command(name)
        if command is None:
            raise CommandNotFoundError(f"Command {name!r} not found in tool {self.name!r}")
        return command

    def options_for(self, command: str) -> CommandOptions:
        """Fresh, empty parameter holder for ``command``."""
        definition = self.command(command)
        key = "-".join(str(part) for part in (
            self.tool_name, self.version, command, self.context.platform, self.context.shell,
        ))
        descriptors = self._options_cache.get_or_set(key, lambda: build_descriptors(definition))
        return CommandOptions(definition, descriptors=descriptors, validator=self.validator)

    def compile(self, command: str, params: Params = None) -> List[str]:
        definition = self.command(command)
        return self.compiler.compile(definition, self._params(params),
                                     dialect=self.context.dialect,
                                     platform=self.context.platform)

    def resolve_executable(self) -> str:
        """
        Raises:
            ExecutableNotFoundError: Not in the tool's search paths nor on PATH
        """
        profile = self.profile
        name = (profile.executable_name if profile else None) or self.name
        path = find_executable(name, self.definition.search_paths, platform=self.context.platform)
        if path is None:
            raise ExecutableNotFoundError(f"Executable {name!r} for tool {self.name!r} not found")
        return path

    def execute(self, command: str, params: Params = None, *,
                executable: Optional[str] = None, env: Optional[Mapping[str, str]] = None,
                cwd: Optional[str] = None, timeout: Optional[float] = None,
                stdin: Optional[StdinSource] = None,
                allow_failure: bool = False) -> ExecutionResult:
        """
        Compile ``command`` with ``params`` and run it.

        Raises:
            CommandNotFoundError, ValidationError, ExecutableNotFoundError,
            ExecutionError, ExecutionTimeoutError
        """
        definition = self.command(command)
        values = self._params(params)
        if isinstance(params, CommandOptions):
            params.validate_required()

        args = self.compiler.compile(definition, values, dialect=self.context.dialect,
                                     platform=self.context.platform)
        merged_env: Dict[str, str] = build_env_vars(definition, values, self.context.platform)
        merged_env.update(env or {})

        if timeout is None:
            timeout = definition.timeout or self.context.timeout
        profile = self.profile
        exit_codes = definition.exit_codes or (profile.exit_codes if profile else None)

        log.debug("tool.execute tool=%s command=%s args=%d", self.name, command, len(args))
        return self.executor.execute(
            executable or self.resolve_executable(), args,
            env=merged_env, cwd=cwd, timeout=timeout, dialect=self.context.dialect,
            stdin=stdin, allow_failure=allow_failure,
            tool_name=self.name, command_name=definition.name, exit_codes=exit_codes,
        )

    @staticmethod
    def _params(params: Params) -> Dict[str, Any]:
        if params is None:
            return {}
        if isinstance(params, CommandOptions):
            return params.to_params()
        return dict(params)

    def __repr__(self) -> str:
        return (f"Tool(name={self.name!r}, version={self.version!r}, "
                f"platform={self.context.platform}, shell={self.context.shell})")


class ToolRunner:
    """
    Resolves tools by name, alias or interface and caches the results.

    Args:
        context: Runtime context; built from ``config`` when omitted
        config: Configuration; the shared ``get_config()`` instance when omitted
        index: Resolution index; built over ``context.register_path`` when omitted
        executor: Process executor shared by every resolved tool
        metrics: Metrics sink; ``MetricsManager.get()`` when metrics are enabled
    """

    def __init__(self, context: Optional[RuntimeContext] = None,
                 config: Optional[RunnerConfig] = None,
                 index: Optional[ToolResolutionIndex] = None,
                 executor: Optional[ProcessExecutor] = None,
                 metrics: Optional[MetricsManager] = None):
        self.config = config or get_config()
        self.context = context or RuntimeContext.from_config(self.config)

        if metrics is None and self.config.metrics.enabled:
            metrics = MetricsManager.get(prometheus_enabled=self.config.metrics.prometheus_enabled)
        self.metrics = metrics

        self.index = index or ToolResolutionIndex(
            self.context.register_path, platform=self.context.platform, shell=self.context.shell,
        )
        self.executor = executor or ProcessExecutor(
            self.context,
            metrics=self.metrics,
            max_output_bytes=self.config.execution.max_output_bytes,
            kill_on_timeout=self.config.execution.kill_on_timeout,
        )
        self.validator = TypeValidator()

        cache = self.config.cache
        self._tools = BoundedCache(max_size=cache.tool_cache_size, ttl=cache.tool_cache_ttl,
                                   thread_safe=cache.thread_safe)
        self._options = BoundedCache(max_size=cache.options_cache_size, ttl=cache.options_cache_ttl,
                                     thread_safe=cache.thread_safe)

    def set_register_path(self, path: Optional[str]) -> None:
        """Point at another register and drop every cached tool."""
        self.index.set_register_path(path)
        self._tools.clear()
        self._options.clear()

    def resolve_name(self, name: str) -> Optional[str]:
        """Tool directory name for ``name``: exact match, then alias, then interface."""
        if name in self.index.tool_names():
            return name
        tool_name = self.index.find_by_alias(name, self.context.platform, self.context.shell)
        if tool_name:
            return tool_name
        metadata = self.index.find_by_interface(name)
        return metadata.tool_name if metadata else None

    def get(self, name: str) -> Tool:
        """
        Raises:
            ToolNotFoundError: No tool, alias or interface matches ``name``
            DefinitionLoadError: The matching definition cannot be parsed
        """
        tool_name = self.resolve_name(name)
        definition = self.index.load_definition(tool_name) if tool_name else None
        if definition is None:
            error = ToolNotFoundError(f"Tool not found: {name}")
            log.error("tool.not_found name=%s register=%s", name, self.index.register_path,
                      extra={"error_context": error.to_context(name).to_dict()})
            raise error

        key = f"{tool_name}-{self.context.platform}-{self.context.shell}-{definition.version}"
        tool = self._tools.get(key)
        if tool is None:
            tool = self._tools.set(key, Tool(
                definition, self.context, executor=self.executor, tool_name=tool_name,
                options_cache=self._options, validator=self.validator,
            ))
            log.debug("tool.resolved name=%s tool=%s key=%s", name, tool_name, key)
        return tool

    def execute(self, name: str, command: str, params: Params = None, **options) -> ExecutionResult:
        return self.get(name).execute(command, params, **options)

    def list_tools(self) -> List[str]:
        return self.index.tool_names()

    def clear_cache(self) -> None:
        self._tools.clear()
        self._options.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "context": {
                "platform": self.context.platform,
                "shell": self.context.shell,
                "register_path": self.context.register_path,
                "timeout": self.context.timeout,
            },
            "tool_cache": self._tools.stats(),
            "options_cache": self._options.stats(),
            "index": self.index.stats(),
        }
