"""
Base class for shell dialects.

A dialect knows how to quote literal tokens for its interpreter, how to
reference environment variables, how to join an executable and its arguments
into one command string, and how to invoke its own interpreter on that string.
Dialects never evaluate shell syntax.
"""
import re
import shutil
from abc import ABC, abstractmethod
from typing import ClassVar, Dict, List, Mapping, Optional, Tuple

# Empty strings, whitespace and shell special characters need quoting.
_NEEDS_QUOTING = re.compile(r"[\s&*()\[\]{}|;<>?`~!@%\"'$\\#=^]")


class ShellAdapter(ABC):
    """
    Quoting and invocation rules of one shell dialect.

    Subclasses must define:
    - name: Dialect identifier (``bash``, ``cmd``...)
    - executable: Interpreter binary looked up on PATH
    - platforms: Platforms the dialect runs on
    """

    name: ClassVar[str]
    executable: ClassVar[str]
    platforms: ClassVar[Tuple[str, ...]] = ()
    command_flag: ClassVar[Tuple[str, ...]] = ("-c",)
    # Ambient variables removed before the process environment is composed.
    ambient_exclusions: ClassVar[Tuple[str, ...]] = ()

    @abstractmethod
    def escape(self, string: str) -> str:
        """Escape ``string`` for use inside this dialect's quotes."""

    @abstractmethod
    def quote(self, string: str) -> str:
        """Quote ``string`` so the interpreter reads it as one literal token."""

    @abstractmethod
    def env_var(self, name: str) -> str:
        """Reference to environment variable ``name``."""

    def needs_quoting(self, string: str) -> bool:
        text = str(string)
        return not text or _NEEDS_QUOTING.search(text) is not None

    def format_path(self, path: str) -> str:
        return str(path)

    def join(self, executable: str, *args: str) -> str:
        """Quote every token and join with single spaces."""
        return " ".join(self.quote(token) for token in (executable, *args))

    def format_environment(self, env: Mapping[str, str]) -> Dict[str, str]:
        """Normalize an environment mapping to string keys and values."""
        return {str(k): "" if v is None else str(v) for k, v in env.items()}

    def headless_environment(self, platform: Optional[str] = None) -> Dict[str, str]:
        """Variables that suppress interactive UI side effects."""
        return {}

    def interpreter_path(self) -> Optional[str]:
        return shutil.which(self.executable)

    def is_available(self) -> bool:
        return self.interpreter_path() is not None

    def interpreter_argv(self, command: str, interpreter: Optional[str] = None) -> List[str]:
        """Argument vector running ``command`` through this dialect's interpreter."""
        return [interpreter or self.executable, *self.command_flag, command]

    def supports_platform(self, platform: str) -> bool:
        return not self.platforms or platform in self.platforms

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
