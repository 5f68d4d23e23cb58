"""
Windows dialects: cmd and PowerShell.
"""
import re
from typing import ClassVar, Tuple

from .base import ShellAdapter

_CMD_SPECIAL = re.compile(r"[%^<>&|]")
_CMD_WHITESPACE = re.compile(r"[ \t]")
_PS_SPECIAL = re.compile(r"[`\"$]")


class CmdShell(ShellAdapter):
    """cmd.exe: caret escaping, double quotes around whitespace."""
    name = "cmd"
    executable = "cmd"
    platforms = ("windows",)
    command_flag: ClassVar[Tuple[str, ...]] = ("/c",)

    def escape(self, string: str) -> str:
        return _CMD_SPECIAL.sub(lambda m: "^" + m.group(0), str(string))

    def quote(self, string: str) -> str:
        text = str(string)
        if not text:
            return '""'
        if _CMD_WHITESPACE.search(text):
            return '"' + text.replace('"', '""') + '"'
        return self.escape(text)

    def format_path(self, path: str) -> str:
        return str(path).replace("/", "\\")

    def env_var(self, name: str) -> str:
        return f"%{name}%"


class PowerShell(ShellAdapter):
    """PowerShell: single-quoted literals, embedded quotes doubled."""
    name = "powershell"
    executable = "powershell"
    platforms = ("windows",)
    command_flag: ClassVar[Tuple[str, ...]] = ("-NoProfile", "-Command")

    def escape(self, string: str) -> str:
        """Backtick-escape for double-quoted (expandable) strings."""
        return _PS_SPECIAL.sub(lambda m: "`" + m.group(0), str(string))

    def quote(self, string: str) -> str:
        return "'" + str(string).replace("'", "''") + "'"

    def join(self, executable: str, *args: str) -> str:
        # A quoted executable is a string expression; the call operator runs it.
        return "& " + super().join(executable, *args)

    def env_var(self, name: str) -> str:
        return f"$ENV:{name}"
