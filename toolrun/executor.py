"""
Process execution with timeout, environment composition and status
normalization.

Commands always run through the dialect's own interpreter
(``bash -c <string>``, ``cmd /c <string>``, ``powershell -NoProfile -Command
<string>``), with every token quoted by that dialect. Execution is async
internally: stdin is fed while stdout and stderr are drained concurrently, so
a child filling one pipe never deadlocks against a parent writing another.
``ProcessExecutor.execute`` is the blocking entry point.

Environment layers, later wins:
    ambient process environment (minus dialect exclusions such as DISPLAY)
    dialect headless variables
    caller overrides (including declared command environment variables)

Status normalization:
    normal exit        -> exit code
    killed by signal N -> 128 + N
    stopped by signal N -> 128 + N
    anything else      -> 1

asyncio waits without WUNTRACED, so a stopped child never surfaces through
``returncode``; ``status_from_wait`` covers raw ``os.wait``/``os.waitpid``
statuses, where a stop is visible.

On timeout the child's whole process group is killed (process tree on
Windows) and ExecutionTimeoutError is raised.
"""
import asyncio
import contextlib
import json
import logging
import os
import re
import signal
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import IO, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import psutil
from pydantic import BaseModel, ConfigDict

from .errors import ExecutableNotFoundError, ExecutionError, ExecutionTimeoutError
from .metrics import MetricsManager
from .models import ExitCodes
from .platform import DEFAULT_TIMEOUT, RuntimeContext
from .shells import ShellAdapter, get_dialect

log = logging.getLogger(__name__)

StdinSource = Union[str, bytes, IO]

_CHUNK_SIZE = 64 * 1024


def normalize_status(returncode: Optional[int]) -> int:
    """Map an asyncio/subprocess return code to a single integer status."""
    if returncode is None:
        return 1
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def status_from_wait(wait_status: int) -> int:
    """
    Map a raw ``os.wait``/``os.waitpid`` status to a single integer status.

    For callers that reap children themselves (e.g. with ``os.WUNTRACED``);
    the executor uses ``normalize_status`` on asyncio return codes.
    """
    if os.WIFEXITED(wait_status):
        return os.WEXITSTATUS(wait_status)
    if os.WIFSIGNALED(wait_status):
        return 128 + os.WTERMSIG(wait_status)
    if os.WIFSTOPPED(wait_status):
        return 128 + os.WSTOPSIG(wait_status)
    return 1


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "N/A"
    if seconds < 1:
        return f"{round(seconds * 1000, 2)}ms"
    if seconds < 60:
        return f"{round(seconds, 3)}s"
    return f"{int(seconds // 60)}m{round(seconds % 60, 1)}s"


def _contains(text: str, pattern: Union[str, "re.Pattern"]) -> bool:
    if isinstance(pattern, re.Pattern):
        return pattern.search(text) is not None
    return pattern in text


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class CommandInfo(_Frozen):
    """What was run."""
    executable: str
    arguments: Tuple[str, ...] = ()
    full_command: str
    shell: str
    tool_name: Optional[str] = None
    command_name: Optional[str] = None

    @property
    def executable_name(self) -> str:
        return os.path.basename(self.executable)

    @property
    def argument_count(self) -> int:
        return len(self.arguments)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["arguments"] = list(self.arguments)
        data["executable_name"] = self.executable_name
        data["argument_count"] = self.argument_count
        return data


class Output(_Frozen):
    """Captured output and exit status."""
    stdout: str = ""
    stderr: str = ""
    exit_status: int = 0
    truncated_stdout: bool = False
    truncated_stderr: bool = False

    @property
    def success(self) -> bool:
        return self.exit_status == 0

    @property
    def failure(self) -> bool:
        return not self.success

    @property
    def stripped_stdout(self) -> str:
        return self.stdout.strip()

    @property
    def stripped_stderr(self) -> str:
        return self.stderr.strip()

    @property
    def stdout_lines(self) -> List[str]:
        return self.stdout.splitlines()

    @property
    def stderr_lines(self) -> List[str]:
        return self.stderr.splitlines()

    def stdout_contains(self, pattern) -> bool:
        return _contains(self.stdout, pattern)

    def stderr_contains(self, pattern) -> bool:
        return _contains(self.stderr, pattern)

    @property
    def stdout_empty(self) -> bool:
        return not self.stdout.strip()

    @property
    def stderr_empty(self) -> bool:
        return not self.stderr.strip()

    @property
    def stdout_length(self) -> int:
        return len(self.stdout)

    @property
    def stderr_length(self) -> int:
        return len(self.stderr)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data.update(success=self.success, stdout_lines=self.stdout_lines,
                    stderr_lines=self.stderr_lines)
        return data


class ExecutionMetadata(_Frozen):
    """Timing of one execution."""
    started_at: datetime
    finished_at: datetime
    duration: float
    timeout: Optional[float] = None

    @property
    def duration_seconds(self) -> float:
        return self.duration

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000

    @property
    def timed_out(self) -> bool:
        return self.timeout is not None and self.duration > self.timeout

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration": self.duration,
            "duration_ms": self.duration_ms,
            "formatted_duration": self.formatted_duration,
            "timeout": self.timeout,
            "timed_out": self.timed_out,
        }


class ExecutionResult(_Frozen):
    """Immutable outcome of a finished process."""
    command_info: CommandInfo
    output: Output
    metadata: ExecutionMetadata
    exit_code_meaning: Optional[str] = None

    @property
    def command(self) -> str:
        return self.command_info.full_command

    @property
    def status(self) -> int:
        return self.output.exit_status

    @property
    def exit_code(self) -> int:
        return self.output.exit_status

    @property
    def success(self) -> bool:
        return self.output.success

    @property
    def failure(self) -> bool:
        return self.output.failure

    @property
    def stdout(self) -> str:
        return self.output.stdout

    @property
    def stderr(self) -> str:
        return self.output.stderr

    @property
    def stdout_lines(self) -> List[str]:
        return self.output.stdout_lines

    @property
    def stderr_lines(self) -> List[str]:
        return self.output.stderr_lines

    def stdout_contains(self, pattern) -> bool:
        return self.output.stdout_contains(pattern)

    def stderr_contains(self, pattern) -> bool:
        return self.output.stderr_contains(pattern)

    @property
    def started_at(self) -> datetime:
        return self.metadata.started_at

    @property
    def finished_at(self) -> datetime:
        return self.metadata.finished_at

    @property
    def duration(self) -> float:
        return self.metadata.duration

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command_info.to_dict(),
            "output": self.output.to_dict(),
            "metadata": self.metadata.to_dict(),
            "success": self.success,
            "status": self.status,
            "exit_code_meaning": self.exit_code_meaning,
        }

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), default=str, **kwargs)

    def __str__(self) -> str:
        duration = self.metadata.formatted_duration
        if self.success:
            return f"Success: {self.command} ({duration})"
        return f"Failed: {self.command} (exit: {self.status}, {duration})"


@dataclass
class ExecutionRequest:
    """Everything needed to spawn one process."""
    executable: str
    args: Tuple[str, ...]
    env: Dict[str, str]
    dialect: ShellAdapter
    timeout: float
    cwd: Optional[str] = None
    stdin: Optional[StdinSource] = None
    allow_failure: bool = False
    tool_name: Optional[str] = None
    command_name: Optional[str] = None
    exit_codes: Optional[ExitCodes] = None
    command_string: str = field(init=False)

    def __post_init__(self):
        self.command_string = self.dialect.join(self.executable, *self.args)

    @property
    def metric_name(self) -> str:
        return self.tool_name or os.path.basename(self.executable)


class ProcessExecutor:
    """
    Runs commands through a shell dialect.

    Args:
        context: Platform and shell defaults; detected when omitted
        metrics: Sink receiving every execution (success, failure, timeout)
        max_output_bytes: Per-stream capture limit, 0 for unlimited
        kill_on_timeout: Kill the whole process group on timeout; when false
            only the direct child is killed
    """

    def __init__(self, context: Optional[RuntimeContext] = None,
                 metrics: Optional[MetricsManager] = None,
                 max_output_bytes: int = 0, kill_on_timeout: bool = True):
        self.context = context or RuntimeContext.from_environment()
        self.metrics = metrics
        self.max_output_bytes = max_output_bytes
        self.kill_on_timeout = kill_on_timeout

    def compose_environment(self, dialect: ShellAdapter,
                            overrides: Optional[Mapping[str, str]] = None,
                            ambient: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        overrides = dialect.format_environment(overrides or {})
        env = dict(os.environ if ambient is None else ambient)
        for name in dialect.ambient_exclusions:
            env.pop(name, None)
        env.update(dialect.headless_environment(self.context.platform))
        env.update(overrides)
        return env

    def build_request(self, executable: str, args: Sequence[Any] = (), *,
                      env: Optional[Mapping[str, str]] = None, cwd: Optional[str] = None,
                      timeout: Optional[float] = None,
                      dialect: Union[str, ShellAdapter, None] = None,
                      stdin: Optional[StdinSource] = None, allow_failure: bool = False,
                      tool_name: Optional[str] = None, command_name: Optional[str] = None,
                      exit_codes: Optional[ExitCodes] = None) -> ExecutionRequest:
        adapter = get_dialect(dialect or self.context.shell)
        return ExecutionRequest(
            executable=str(executable),
            args=tuple(str(a) for a in args),
            env=self.compose_environment(adapter, env),
            dialect=adapter,
            timeout=float(timeout if timeout is not None else (self.context.timeout or DEFAULT_TIMEOUT)),
            cwd=cwd,
            stdin=stdin,
            allow_failure=allow_failure,
            tool_name=tool_name,
            command_name=command_name,
            exit_codes=exit_codes,
        )

    def execute(self, executable: str, args: Sequence[Any] = (), **options) -> ExecutionResult:
        """
        Run ``executable`` with ``args`` and block until it finishes.

        Keyword options: env, cwd, timeout, dialect, stdin, allow_failure,
        tool_name, command_name, exit_codes.

        Returns:
            ExecutionResult

        Raises:
            ExecutionError: Non-zero status without ``allow_failure``
            ExecutionTimeoutError: Timeout elapsed; the process was killed
            ExecutableNotFoundError: The dialect's interpreter is not on PATH
        """
        return asyncio.run(self.run(executable, args, **options))

    async def run(self, executable: str, args: Sequence[Any] = (), **options) -> ExecutionResult:
        """Async variant of ``execute``."""
        request = self.build_request(executable, args, **options)
        return await self.run_request(request)

    async def run_request(self, request: ExecutionRequest) -> ExecutionResult:
        interpreter = request.dialect.interpreter_path()
        if interpreter is None:
            raise ExecutableNotFoundError(
                f"Shell interpreter not found on PATH: {request.dialect.executable}"
            )
        argv = request.dialect.interpreter_argv(request.command_string, interpreter)
        tool_metrics = self.metrics.get_tool_metrics(request.metric_name) if self.metrics else None

        log.info("executor.start command=%s shell=%s timeout=%.1f",
                 request.command_string, request.dialect.name, request.timeout)

        started_at = datetime.now()
        start = time.perf_counter()
        if tool_metrics:
            tool_metrics.increment_active()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if request.stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=request.env,
                cwd=request.cwd,
                start_new_session=self.context.platform != "windows",
            )
            try:
                _, (out, trunc_out), (err, trunc_err), returncode = await asyncio.wait_for(
                    asyncio.gather(
                        self._feed_stdin(proc, request.stdin),
                        self._drain(proc.stdout),
                        self._drain(proc.stderr),
                        proc.wait(),
                    ),
                    timeout=request.timeout,
                )
            except asyncio.TimeoutError:
                await self._kill(proc)
                duration = time.perf_counter() - start
                if self.metrics:
                    self.metrics.record_execution(request.metric_name, success=False,
                                                  execution_time=duration, timed_out=True,
                                                  error_type="timeout")
                error = ExecutionTimeoutError(
                    f"Command timed out after {request.timeout}s: {request.command_string}",
                    timeout=request.timeout, command=request.command_string,
                )
                log.error("executor.timeout command=%s timeout=%.1f",
                          request.command_string, request.timeout,
                          extra={"error_context": error.to_context(request.metric_name).to_dict()})
                raise error
        finally:
            if tool_metrics:
                tool_metrics.decrement_active()

        duration = time.perf_counter() - start
        status = normalize_status(returncode)
        result = ExecutionResult(
            command_info=CommandInfo(
                executable=request.executable,
                arguments=request.args,
                full_command=request.command_string,
                shell=request.dialect.name,
                tool_name=request.tool_name,
                command_name=request.command_name,
            ),
            output=Output(
                stdout=out.decode("utf-8", errors="replace"),
                stderr=err.decode("utf-8", errors="replace"),
                exit_status=status,
                truncated_stdout=trunc_out,
                truncated_stderr=trunc_err,
            ),
            metadata=ExecutionMetadata(
                started_at=started_at,
                finished_at=datetime.now(),
                duration=duration,
                timeout=request.timeout,
            ),
            exit_code_meaning=request.exit_codes.meaning(status) if request.exit_codes and status else None,
        )

        log.info("executor.end command=%s status=%d duration=%s",
                 request.metric_name,
                 status, result.metadata.formatted_duration)
        if self.metrics:
            self.metrics.record_execution(request.metric_name, success=result.success,
                                          execution_time=duration,
                                          error_type=None if result.success else "execution_error")

        if status != 0 and not request.allow_failure:
            meaning = f" ({result.exit_code_meaning})" if result.exit_code_meaning else ""
            error = ExecutionError(
                f"Command failed with exit status {status}{meaning}: {request.command_string}",
                command=request.command_string, stdout=result.stdout, stderr=result.stderr,
                status=status, result=result,
            )
            log.error("executor.failed command=%s status=%d", request.command_string, status,
                      extra={"error_context": error.to_context(request.metric_name).to_dict()})
            raise error
        return result

    async def _feed_stdin(self, proc: asyncio.subprocess.Process,
                          source: Optional[StdinSource]) -> None:
        if source is None or proc.stdin is None:
            return
        try:
            if isinstance(source, (str, bytes)):
                proc.stdin.write(source.encode("utf-8") if isinstance(source, str) else source)
                await proc.stdin.drain()
            else:
                # Blocking reads stay off the event loop.
                loop = asyncio.get_running_loop()
                reader = ThreadPoolExecutor(max_workers=1, thread_name_prefix="toolrun-stdin")
                try:
                    while True:
                        chunk = await loop.run_in_executor(reader, source.read, _CHUNK_SIZE)
                        if not chunk:
                            break
                        proc.stdin.write(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
                        await proc.stdin.drain()
                finally:
                    reader.shutdown(wait=False)
        except (BrokenPipeError, ConnectionResetError):
            # Child closed stdin before reading everything (e.g. head).
            log.debug("executor.stdin_closed_early pid=%s", proc.pid)
        finally:
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                proc.stdin.close()
                await proc.stdin.wait_closed()

    async def _drain(self, stream: asyncio.StreamReader) -> Tuple[bytes, bool]:
        limit = self.max_output_bytes
        chunks: List[bytes] = []
        size = 0
        truncated = False
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                break
            if limit and size + len(chunk) > limit:
                # Keep draining so the child never blocks on a full pipe.
                chunk = chunk[:max(0, limit - size)]
                truncated = True
            size += len(chunk)
            if chunk:
                chunks.append(chunk)
        return b"".join(chunks), truncated

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError, psutil.NoSuchProcess):
            if self.context.platform == "windows":
                if self.kill_on_timeout:
                    for child in psutil.Process(proc.pid).children(recursive=True):
                        with contextlib.suppress(psutil.NoSuchProcess):
                            child.kill()
                proc.kill()
            elif self.kill_on_timeout:
                os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
            else:
                proc.kill()
        with contextlib.suppress(ProcessLookupError):
            await proc.wait()
        log.warning("executor.killed pid=%s group=%s", proc.pid, self.kill_on_timeout)
