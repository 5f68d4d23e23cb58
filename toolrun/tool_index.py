"""
Interface and alias index over a tool register.

Register layout:

    <register_path>/tools/<tool_name>/<version>.yaml
    <register_path>/tools/<tool_name>/<variant>/<version>.yaml   (variant "default" preferred)

The index maps interface names and aliases to tool names. It is built lazily
and rebuilt only when the register fingerprint (tools directory mtime plus
definition file count) changes. Rebuilds happen under a lock and swap the
maps in one assignment, so concurrent readers never see a half-built index.
"""
import glob
import logging
import os
import re
import threading
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import DefinitionLoadError
from .models import ToolDefinition, ToolMetadata

log = logging.getLogger(__name__)

_DIGITS = re.compile(r"(\d+)")


def _natural_key(path: str) -> List[Any]:
    name = os.path.basename(path)
    return [int(part) if part.isdigit() else part for part in _DIGITS.split(name)]


def read_yaml(path: str) -> Dict[str, Any]:
    """
    Raises:
        DefinitionLoadError: Unreadable file, invalid YAML, or not a mapping
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise DefinitionLoadError(f"Failed to read tool definition {path}: {e}") from e
    if not isinstance(data, dict):
        raise DefinitionLoadError(f"Tool definition {path} is not a mapping")
    return data


class ToolResolutionIndex:
    """
    Resolves interface names and aliases to tool names.

    Args:
        register_path: Register root directory (holding ``tools/``)
        platform: Platform used to break alias ties
        shell: Shell dialect used to break alias ties
    """

    def __init__(self, register_path: Optional[str] = None,
                 platform: Optional[str] = None, shell: Optional[str] = None):
        self._register_path = register_path
        self.platform = platform
        self.shell = shell
        self._lock = threading.RLock()
        self._interfaces: Dict[str, List[str]] = {}
        self._aliases: Dict[str, List[str]] = {}
        self._definitions: Dict[str, ToolDefinition] = {}
        self._fingerprint: Optional[str] = None
        self._built = False

    @property
    def register_path(self) -> Optional[str]:
        return self._register_path

    def set_register_path(self, path: Optional[str]) -> None:
        """Point at another register; the index is rebuilt on next use."""
        with self._lock:
            if path == self._register_path:
                return
            self._register_path = path
            self._reset()

    def _reset(self) -> None:
        self._interfaces = {}
        self._aliases = {}
        self._definitions = {}
        self._fingerprint = None
        self._built = False

    @property
    def tools_dir(self) -> Optional[str]:
        if not self._register_path:
            return None
        return os.path.join(self._register_path, "tools")

    # Fingerprint

    def _yaml_files(self, tool_dir: str) -> List[str]:
        files = []
        for variant_dir in sorted(d for d in glob.glob(os.path.join(tool_dir, "*")) if os.path.isdir(d)):
            files.extend(sorted(glob.glob(os.path.join(variant_dir, "*.yaml")), key=_natural_key))
        if not files:
            files = sorted(glob.glob(os.path.join(tool_dir, "*.yaml")), key=_natural_key)
        return files

    def fingerprint(self) -> str:
        tools_dir = self.tools_dir
        if tools_dir is None:
            return "empty"
        if not os.path.isdir(tools_dir):
            return "no-tools-dir"
        mtime = os.stat(tools_dir).st_mtime_ns
        count = len(glob.glob(os.path.join(tools_dir, "*", "*.yaml")))
        count += len(glob.glob(os.path.join(tools_dir, "*", "*", "*.yaml")))
        return f"{mtime}-{count}"

    def stale(self) -> bool:
        with self._lock:
            return not self._built or self._fingerprint != self.fingerprint()

    # Build

    def _ensure_built(self) -> None:
        with self._lock:
            if self.stale():
                self._build()

    def _build(self) -> None:
        interfaces: Dict[str, List[str]] = {}
        aliases: Dict[str, List[str]] = {}
        tools_dir = self.tools_dir

        if tools_dir and os.path.isdir(tools_dir):
            tool_dirs = sorted(d for d in glob.glob(os.path.join(tools_dir, "*")) if os.path.isdir(d))
            for tool_dir in tool_dirs:
                tool_name = os.path.basename(tool_dir)
                for path in self._yaml_files(tool_dir):
                    try:
                        data = read_yaml(path)
                    except DefinitionLoadError as e:
                        log.warning("tool_index.parse_failed tool=%s error=%s", tool_name, str(e))
                        continue
                    implements = data.get("implements") or []
                    if not isinstance(implements, list):
                        implements = [implements]
                    for value in implements:
                        interface, _ = ToolMetadata.parse_implements(value)
                        if not interface:
                            continue
                        owners = interfaces.setdefault(interface, [])
                        if tool_name not in owners:
                            owners.append(tool_name)
                    for alias in data.get("aliases") or []:
                        owners = aliases.setdefault(str(alias), [])
                        if tool_name not in owners:
                            owners.append(tool_name)

        self._interfaces, self._aliases = interfaces, aliases
        self._definitions = {}
        self._fingerprint = self.fingerprint()
        self._built = True
        log.info("tool_index.rebuilt interfaces=%d aliases=%d register=%s",
                 len(interfaces), len(aliases), self._register_path)

    # Loading

    def tool_names(self) -> List[str]:
        tools_dir = self.tools_dir
        if not tools_dir or not os.path.isdir(tools_dir):
            return []
        return sorted(
            os.path.basename(d) for d in glob.glob(os.path.join(tools_dir, "*")) if os.path.isdir(d)
        )

    def definition_path(self, tool_name: str) -> Optional[str]:
        """Latest definition file for ``tool_name``; the "default" variant wins."""
        tools_dir = self.tools_dir
        if not tools_dir:
            return None
        tool_dir = os.path.join(tools_dir, tool_name)
        if not os.path.isdir(tool_dir):
            return None
        default_files = sorted(glob.glob(os.path.join(tool_dir, "default", "*.yaml")), key=_natural_key)
        if default_files:
            return default_files[-1]
        files = self._yaml_files(tool_dir)
        return files[-1] if files else None

    def load_data(self, tool_name: str) -> Optional[Dict[str, Any]]:
        path = self.definition_path(tool_name)
        return None if path is None else read_yaml(path)

    def load_definition(self, tool_name: str) -> Optional[ToolDefinition]:
        """
        Parsed definition of ``tool_name``, or None when it has no file.

        Raises:
            DefinitionLoadError: The file exists but cannot be parsed
        """
        with self._lock:
            cached = self._definitions.get(tool_name)
        if cached is not None:
            return cached
        data = self.load_data(tool_name)
        if data is None:
            return None
        data.setdefault("name", tool_name)
        try:
            definition = ToolDefinition.model_validate(data)
        except PydanticValidationError as e:
            raise DefinitionLoadError(f"Invalid tool definition for {tool_name}: {e}") from e
        with self._lock:
            self._definitions[tool_name] = definition
        return definition

    def load_metadata(self, tool_name: str) -> Optional[ToolMetadata]:
        data = self.load_data(tool_name)
        if data is None:
            return None
        return ToolMetadata.from_mapping(data, tool_name=tool_name, register_path=self._register_path)

    # Lookups

    def find_by_interface(self, interface: str) -> Optional[ToolMetadata]:
        """Metadata of the first candidate implementing ``interface`` that loads."""
        self._ensure_built()
        for tool_name in list(self._interfaces.get(interface, ())):
            try:
                metadata = self.load_metadata(tool_name)
            except DefinitionLoadError as e:
                log.warning("tool_index.candidate_skipped tool=%s error=%s", tool_name, str(e))
                continue
            if metadata is not None:
                return metadata
        return None

    def find_all_by_interface(self, interface: str) -> List[str]:
        self._ensure_built()
        return list(self._interfaces.get(interface, ()))

    def find_by_alias(self, alias: str, platform: Optional[str] = None,
                      shell: Optional[str] = None) -> Optional[str]:
        """
        Tool owning ``alias``.

        When several tools share the alias, the first one with a profile
        compatible with the platform and shell wins; otherwise the first.
        """
        self._ensure_built()
        candidates = list(self._aliases.get(alias, ()))
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]
        platform = platform or self.platform
        shell = shell or self.shell
        for tool_name in candidates:
            if self.tool_compatible(tool_name, platform, shell):
                return tool_name
        return candidates[0]

    def tool_compatible(self, tool_name: str, platform: Optional[str],
                        shell: Optional[str]) -> bool:
        try:
            definition = self.load_definition(tool_name)
        except DefinitionLoadError as e:
            log.warning("tool_index.compatibility_unknown tool=%s error=%s", tool_name, str(e))
            return False
        if definition is None:
            return False
        return any(
            (not p.platforms or platform in p.platforms) and (not p.shells or shell in p.shells)
            for p in definition.profiles
        )

    def all_tools(self) -> Dict[str, List[str]]:
        """Interface name to tool names."""
        self._ensure_built()
        return {k: list(v) for k, v in self._interfaces.items()}

    def all_aliases(self) -> Dict[str, List[str]]:
        self._ensure_built()
        return {k: list(v) for k, v in self._aliases.items()}

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "register_path": self._register_path,
                "built": self._built,
                "interfaces": len(self._interfaces),
                "aliases": len(self._aliases),
                "fingerprint": self._fingerprint,
            }
