"""
Platform detection, runtime context and executable lookup.

Detection is explicit: an operating system or shell that cannot be mapped to a
supported value raises instead of falling back to a guess.
"""
import glob
import logging
import os
import sys
from dataclasses import dataclass, replace
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .errors import UnsupportedPlatformError
from .shells import ShellAdapter, detect_shell, get_dialect

log = logging.getLogger(__name__)

VALID_PLATFORMS = ("linux", "macos", "windows")
DEFAULT_TIMEOUT = 90.0
_DEFAULT_PATHEXT = ".COM;.EXE;.BAT;.CMD"


def detect_platform(sys_platform: Optional[str] = None) -> str:
    """
    Map ``sys.platform`` to ``linux``, ``macos`` or ``windows``.

    Raises:
        UnsupportedPlatformError: For any other operating system
    """
    value = (sys_platform or sys.platform).lower()
    if value.startswith(("win32", "cygwin", "msys")) or "mingw" in value:
        return "windows"
    if value.startswith("darwin"):
        return "macos"
    if value.startswith("linux"):
        return "linux"
    raise UnsupportedPlatformError(
        f"Unable to detect platform. Host OS: {value}. "
        f"Supported platforms: {', '.join(VALID_PLATFORMS)}"
    )


def validate_platform(name: str) -> str:
    key = str(name).strip().lower()
    if key not in VALID_PLATFORMS:
        raise UnsupportedPlatformError(
            f"Unsupported platform: {name!r}. Supported platforms: {', '.join(VALID_PLATFORMS)}"
        )
    return key


@dataclass(frozen=True)
class RuntimeContext:
    """
    Platform, shell and defaults threaded explicitly through the runner.

    Attributes:
        platform: One of VALID_PLATFORMS
        shell: Dialect name, see toolrun.shells.VALID_DIALECTS
        register_path: Directory holding tool definitions
        timeout: Default execution timeout in seconds
    """
    platform: str
    shell: str
    register_path: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        object.__setattr__(self, "platform", validate_platform(self.platform))
        object.__setattr__(self, "shell", get_dialect(self.shell).name)

    @property
    def dialect(self) -> ShellAdapter:
        return get_dialect(self.shell)

    @classmethod
    def from_environment(cls, env: Optional[Mapping[str, str]] = None, *,
                         platform: Optional[str] = None, shell: Optional[str] = None,
                         register_path: Optional[str] = None,
                         timeout: float = DEFAULT_TIMEOUT) -> "RuntimeContext":
        """Detect anything not given explicitly."""
        env = os.environ if env is None else env
        platform = platform or detect_platform()
        shell = shell or detect_shell(platform, env)
        context = cls(platform=platform, shell=shell,
                      register_path=register_path, timeout=timeout)
        log.debug("runtime.context platform=%s shell=%s register=%s",
                  context.platform, context.shell, context.register_path)
        return context

    @classmethod
    def from_config(cls, config: Any, env: Optional[Mapping[str, str]] = None) -> "RuntimeContext":
        """Build from a RunnerConfig, detecting platform and shell when unset."""
        return cls.from_environment(
            env,
            platform=config.execution.platform,
            shell=config.execution.shell,
            register_path=config.index.register_path,
            timeout=config.execution.default_timeout,
        )

    def with_shell(self, shell: str) -> "RuntimeContext":
        return replace(self, shell=shell)


def executable_suffixes(platform: str, env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Suffixes tried when looking up a command; ``[""]`` outside Windows."""
    if platform != "windows":
        return [""]
    env = os.environ if env is None else env
    pathext = env.get("PATHEXT") or _DEFAULT_PATHEXT
    return [""] + [ext.lower() for ext in pathext.split(";") if ext]


def _expand(paths: Iterable[str]) -> List[str]:
    expanded = []
    for path in paths:
        path = os.path.expanduser(os.path.expandvars(path))
        if glob.has_magic(path):
            expanded.extend(sorted(glob.glob(path)))
        else:
            expanded.append(path)
    return expanded


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def find_executable(command: str, additional_paths: Sequence[str] = (),
                    platform: Optional[str] = None,
                    env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Find ``command`` in ``additional_paths`` (glob patterns allowed) and PATH.

    Additional paths are searched first. On Windows each ``PATHEXT`` suffix is
    tried. Returns the absolute path, or None.
    """
    env = os.environ if env is None else env
    platform = platform or detect_platform()

    if os.path.dirname(command):
        return os.path.abspath(command) if _is_executable(command) else None

    suffixes = executable_suffixes(platform, env)
    names = {(command + suffix).lower() for suffix in suffixes}

    # Glob patterns in search paths may match the executable itself.
    directories = []
    for path in _expand(additional_paths):
        if os.path.isfile(path):
            if os.path.basename(path).lower() in names and _is_executable(path):
                return os.path.abspath(path)
            continue
        directories.append(path)
    directories += [p for p in (env.get("PATH") or "").split(os.pathsep) if p]

    for directory in directories:
        for suffix in suffixes:
            candidate = os.path.join(directory, command + suffix)
            if _is_executable(candidate):
                log.debug("executable.found command=%s path=%s", command, candidate)
                return os.path.abspath(candidate)
    return None
