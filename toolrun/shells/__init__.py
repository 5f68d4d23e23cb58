"""
Shell dialect registry and detection.

Usage:
    from toolrun.shells import get_dialect

    bash = get_dialect("bash")
    bash.join("/usr/bin/convert", "in file.png", "out.png")
    # "'/usr/bin/convert' 'in file.png' 'out.png'"
"""
import logging
import os
from typing import Dict, List, Mapping, Optional, Tuple, Type, Union

from ..errors import UnknownShellError
from .base import ShellAdapter
from .posix import BashShell, DashShell, FishShell, PosixShell, ShShell, TcshShell, ZshShell
from .windows import CmdShell, PowerShell

log = logging.getLogger(__name__)

_DIALECT_CLASSES: Dict[str, Type[ShellAdapter]] = {
    cls.name: cls
    for cls in (BashShell, ZshShell, FishShell, ShShell, DashShell, TcshShell, PowerShell, CmdShell)
}
_INSTANCES: Dict[str, ShellAdapter] = {name: cls() for name, cls in _DIALECT_CLASSES.items()}

VALID_DIALECTS: Tuple[str, ...] = tuple(_DIALECT_CLASSES)

_UNIX_DIALECTS = ("bash", "zsh", "fish", "sh", "dash", "tcsh")
_WINDOWS_DIALECTS = ("powershell", "cmd", "bash")


def get_dialect(name: Union[str, ShellAdapter]) -> ShellAdapter:
    """
    Return the dialect registered under ``name``.

    Raises:
        UnknownShellError: If no dialect has that name
    """
    if isinstance(name, ShellAdapter):
        return name
    key = str(name).strip().lower()
    try:
        return _INSTANCES[key]
    except KeyError:
        raise UnknownShellError(
            f"Unknown shell: {name!r}. Valid shells: {', '.join(VALID_DIALECTS)}"
        ) from None


def is_valid_dialect(name: str) -> bool:
    return str(name).strip().lower() in _INSTANCES


def dialects_for_platform(platform: str) -> List[str]:
    if platform == "windows":
        return list(_WINDOWS_DIALECTS)
    return list(_UNIX_DIALECTS)


def is_available(name: Union[str, ShellAdapter]) -> bool:
    """True when the dialect's interpreter can be found on PATH."""
    return get_dialect(name).is_available()


def available_dialects() -> List[str]:
    return [name for name in VALID_DIALECTS if _INSTANCES[name].is_available()]


def detect_shell(platform: str, env: Optional[Mapping[str, str]] = None) -> str:
    """
    Detect the active shell dialect from environment variables.

    Windows: ``PSModulePath`` means PowerShell, MSYS/MinGW/WSL markers mean
    bash, otherwise cmd. Elsewhere the basename of ``$SHELL`` must name a known
    dialect.

    Raises:
        UnknownShellError: If ``$SHELL`` is unset or names an unknown shell
    """
    env = os.environ if env is None else env

    if platform == "windows":
        if env.get("PSModulePath"):
            return "powershell"
        if env.get("MSYSTEM") or env.get("MINGW_PREFIX") or env.get("WSL_DISTRO"):
            return "bash"
        return "cmd"

    shell_env = env.get("SHELL")
    if not shell_env:
        raise UnknownShellError(
            "Unable to detect shell: SHELL environment variable not set. "
            "Configure the shell explicitly."
        )
    basename = os.path.basename(shell_env.rstrip("/"))
    if basename.endswith(".exe"):
        basename = basename[:-4]
    if basename in _UNIX_DIALECTS:
        log.debug("shell.detected shell=%s source=%s", basename, shell_env)
        return basename
    raise UnknownShellError(
        f"Unable to detect shell: unknown shell in SHELL: {shell_env}. "
        f"Valid shells: {', '.join(VALID_DIALECTS)}"
    )


__all__ = [
    "ShellAdapter", "PosixShell", "BashShell", "ZshShell", "FishShell", "ShShell",
    "DashShell", "TcshShell", "CmdShell", "PowerShell", "VALID_DIALECTS",
    "get_dialect", "is_valid_dialect", "dialects_for_platform", "is_available",
    "available_dialects", "detect_shell",
]
