"""
POSIX-family dialects: bash, zsh, fish, sh, dash and tcsh.

All of them share one quoting algorithm. The string is wrapped in single
quotes and each embedded single quote becomes ``'\\''`` (close the quote,
emit an escaped quote, reopen). Nothing else is escaped: ``$``, backticks,
``|``, ``;`` and the like are literal inside single quotes.
"""
from typing import Dict, Optional

from .base import ShellAdapter

_MACOS_HEADLESS = {
    "NSAppleEventsSuppressStartupAlert": "true",
    "NSUIElement": "1",
    "GDK_BACKEND": "x11",
}


class PosixShell(ShellAdapter):
    platforms = ("linux", "macos")
    ambient_exclusions = ("DISPLAY",)

    def escape(self, string: str) -> str:
        return str(string).replace("'", "'\\''")

    def quote(self, string: str) -> str:
        return f"'{self.escape(string)}'"

    def env_var(self, name: str) -> str:
        return f"${name}"


class BashShell(PosixShell):
    name = "bash"
    executable = "bash"

    def headless_environment(self, platform: Optional[str] = None) -> Dict[str, str]:
        if platform == "macos":
            return dict(_MACOS_HEADLESS)
        return {}


class ZshShell(PosixShell):
    name = "zsh"
    executable = "zsh"


class FishShell(PosixShell):
    name = "fish"
    executable = "fish"


class ShShell(PosixShell):
    name = "sh"
    executable = "sh"


class DashShell(PosixShell):
    name = "dash"
    executable = "dash"


class TcshShell(PosixShell):
    name = "tcsh"
    executable = "tcsh"
