"""
Configuration management for toolrun.

Layered configuration, later sources win:
    1. Default values
    2. Configuration file (JSON or YAML)
    3. Environment variables (TOOLRUN_*)

Usage:
    from toolrun.config import get_config, configure_logging, reset_config

    config = get_config()
    configure_logging(config)
    print(config.execution.default_timeout)

    # Reload after the file changed on disk
    config.reload_config()

    # Testing
    reset_config()
    config = get_config(force_new=True)
"""
import json
import logging
import logging.handlers
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigurationError
from .platform import DEFAULT_TIMEOUT, validate_platform
from .shells import get_dialect

log = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@dataclass
class ExecutionConfig:
    """Process execution defaults."""
    default_timeout: float = DEFAULT_TIMEOUT
    shell: Optional[str] = None
    platform: Optional[str] = None
    max_output_bytes: int = 0
    kill_on_timeout: bool = True


@dataclass
class CacheConfig:
    """Sizes and lifetimes of the tool and options caches."""
    tool_cache_size: int = 50
    tool_cache_ttl: float = 3600.0
    options_cache_size: int = 100
    options_cache_ttl: float = 3600.0
    thread_safe: bool = True


@dataclass
class IndexConfig:
    register_path: Optional[str] = None


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = _LOG_FORMAT
    file_path: Optional[str] = None
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class MetricsConfig:
    enabled: bool = True
    prometheus_enabled: bool = True


_SECTIONS = {
    "execution": ExecutionConfig,
    "cache": CacheConfig,
    "index": IndexConfig,
    "logging": LoggingConfig,
    "metrics": MetricsConfig,
}

_ENV_MAPPINGS = {
    "TOOLRUN_TIMEOUT": ("execution", "default_timeout"),
    "TOOLRUN_SHELL": ("execution", "shell"),
    "TOOLRUN_PLATFORM": ("execution", "platform"),
    "TOOLRUN_MAX_OUTPUT_BYTES": ("execution", "max_output_bytes"),
    "TOOLRUN_KILL_ON_TIMEOUT": ("execution", "kill_on_timeout"),
    "TOOLRUN_TOOL_CACHE_SIZE": ("cache", "tool_cache_size"),
    "TOOLRUN_TOOL_CACHE_TTL": ("cache", "tool_cache_ttl"),
    "TOOLRUN_OPTIONS_CACHE_SIZE": ("cache", "options_cache_size"),
    "TOOLRUN_OPTIONS_CACHE_TTL": ("cache", "options_cache_ttl"),
    "TOOLRUN_CACHE_THREAD_SAFE": ("cache", "thread_safe"),
    "TOOLRUN_REGISTER": ("index", "register_path"),
    "TOOLRUN_LOG_LEVEL": ("logging", "level"),
    "TOOLRUN_LOG_FILE": ("logging", "file_path"),
    "TOOLRUN_LOG_MAX_FILE_SIZE": ("logging", "max_file_size"),
    "TOOLRUN_LOG_BACKUP_COUNT": ("logging", "backup_count"),
    "TOOLRUN_METRICS_ENABLED": ("metrics", "enabled"),
    "TOOLRUN_PROMETHEUS_ENABLED": ("metrics", "prometheus_enabled"),
}

_INT_FIELDS = {
    "max_output_bytes", "tool_cache_size", "options_cache_size",
    "max_file_size", "backup_count",
}
_FLOAT_FIELDS = {"default_timeout", "tool_cache_ttl", "options_cache_ttl"}
_BOOL_FIELDS = {"kill_on_timeout", "thread_safe", "enabled", "prometheus_enabled"}


class RunnerConfig:
    """
    toolrun configuration with validation and reload support.

    Numeric values outside their valid range are clamped (and logged).
    Unknown shell or platform names raise ConfigurationError.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.last_modified: Optional[float] = None
        self._config_data: Dict[str, Any] = {}
        self._lock = threading.RLock()

        self.execution = ExecutionConfig()
        self.cache = CacheConfig()
        self.index = IndexConfig()
        self.logging = LoggingConfig()
        self.metrics = MetricsConfig()

        self.load_config()

    def load_config(self):
        """
        Load defaults, file and environment, then validate and apply.

        Raises:
            ConfigurationError: Invalid shell or platform name
        """
        with self._lock:
            config_data = self._get_defaults()

            if self.config_path and os.path.exists(self.config_path):
                file_data = self._load_from_file(self.config_path)
                config_data = self._deep_merge(config_data, file_data)
                log.info("config.loaded_from_file path=%s", self.config_path)

            env_data = self._load_from_environment()
            if env_data:
                config_data = self._deep_merge(config_data, env_data)
                log.info("config.loaded_from_environment keys=%d",
                         sum(len(v) for v in env_data.values()))

            self._validate_config(config_data)
            self._apply_config(config_data)

            if self.config_path and os.path.exists(self.config_path):
                self.last_modified = os.path.getmtime(self.config_path)

            log.debug("config.loaded_successfully sections=%d", len(config_data))

    def _get_defaults(self) -> Dict[str, Any]:
        return {name: asdict(cls()) for name, cls in _SECTIONS.items()}

    def _load_from_file(self, config_path: str) -> Dict[str, Any]:
        """Load a JSON or YAML file; parse failures are logged and ignored."""
        file_path = Path(config_path)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                if file_path.suffix.lower() in (".yaml", ".yml"):
                    data = yaml.safe_load(f) or {}
                else:
                    data = json.load(f) or {}
        except yaml.YAMLError as e:
            log.error("config.yaml_parse_failed path=%s error=%s", config_path, str(e))
            return {}
        except json.JSONDecodeError as e:
            log.error("config.json_parse_failed path=%s error=%s", config_path, str(e))
            return {}
        except OSError as e:
            log.error("config.file_load_failed path=%s error=%s", config_path, str(e))
            return {}

        if not isinstance(data, dict):
            log.error("config.file_not_mapping path=%s", config_path)
            return {}
        log.debug("config.file_loaded path=%s format=%s keys=%d",
                  config_path, file_path.suffix, len(data))
        return data

    def _load_from_environment(self) -> Dict[str, Any]:
        config: Dict[str, Dict[str, Any]] = {}
        for env_var, (section, key) in _ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            try:
                if key in _INT_FIELDS:
                    converted: Any = int(value)
                elif key in _FLOAT_FIELDS:
                    converted = float(value)
                elif key in _BOOL_FIELDS:
                    converted = value.lower() in ("true", "1", "yes", "on")
                else:
                    converted = value
            except (ValueError, TypeError) as e:
                log.warning("config.env_parse_failed env_var=%s value=%s error=%s",
                            env_var, value, str(e))
                continue
            config.setdefault(section, {})[key] = converted
            log.debug("config.env_loaded env_var=%s section=%s key=%s", env_var, section, key)
        return config

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        result = base.copy()
        for key, value in override.items():
            if isinstance(result.get(key), dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _validate_config(self, config_data: Dict[str, Any]):
        validators = {
            "execution": self._validate_execution_config,
            "cache": self._validate_cache_config,
            "logging": self._validate_logging_config,
        }
        for section, validator in validators.items():
            if section in config_data:
                validator(config_data[section])

    def _clamp(self, config: Dict, section: str, key: str, cast, min_val, max_val):
        if key not in config or config[key] is None:
            return
        original = cast(config[key])
        clamped = max(min_val, min(max_val, original))
        config[key] = clamped
        if original != clamped:
            log.warning(
                "config.value_clamped section=%s key=%s original=%s clamped=%s valid_range=[%s,%s]",
                section, key, original, clamped, min_val, max_val
            )

    def _validate_execution_config(self, config: Dict):
        self._clamp(config, "execution", "default_timeout", float, 1.0, 86400.0)
        self._clamp(config, "execution", "max_output_bytes", int, 0, 1073741824)

        # Explicit only: an unknown name is an error, never replaced by a guess.
        if config.get("shell"):
            config["shell"] = get_dialect(config["shell"]).name
        if config.get("platform"):
            config["platform"] = validate_platform(config["platform"])

    def _validate_cache_config(self, config: Dict):
        self._clamp(config, "cache", "tool_cache_size", int, 1, 10000)
        self._clamp(config, "cache", "options_cache_size", int, 1, 10000)
        self._clamp(config, "cache", "tool_cache_ttl", float, 1.0, 604800.0)
        self._clamp(config, "cache", "options_cache_ttl", float, 1.0, 604800.0)

    def _validate_logging_config(self, config: Dict):
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if "level" in config:
            level = str(config["level"]).upper()
            if level not in valid_levels:
                log.warning("config.invalid_log_level level=%s using_default=INFO", level)
                level = "INFO"
            config["level"] = level
        self._clamp(config, "logging", "max_file_size", int, 1024, 104857600)
        self._clamp(config, "logging", "backup_count", int, 0, 100)

    def _apply_config(self, config_data: Dict[str, Any]):
        for section_name in _SECTIONS:
            section_obj = getattr(self, section_name)
            for key, value in (config_data.get(section_name) or {}).items():
                if hasattr(section_obj, key):
                    setattr(section_obj, key, value)
                else:
                    log.warning("config.unknown_key section=%s key=%s", section_name, key)
        self._config_data = config_data

    def check_for_changes(self) -> bool:
        if not self.config_path or not os.path.exists(self.config_path):
            return False
        try:
            current_mtime = os.path.getmtime(self.config_path)
        except OSError as e:
            log.warning("config.check_failed path=%s error=%s", self.config_path, str(e))
            return False
        if current_mtime != self.last_modified:
            log.info("config.file_changed path=%s", self.config_path)
            return True
        return False

    def reload_config(self) -> bool:
        """
        Reload when the file changed; the previous values are restored on failure.

        Returns:
            True if a reload happened and succeeded
        """
        with self._lock:
            if not self.check_for_changes():
                return False
            backup = self.to_dict()
            try:
                self.load_config()
            except ConfigurationError as e:
                log.error("config.reload_failed error=%s reverting", str(e))
                self._apply_config(backup)
                return False
            log.info("config.reloaded_successfully")
            return True

    def to_dict(self) -> Dict[str, Any]:
        return {name: asdict(getattr(self, name)) for name in _SECTIONS}

    def save_config(self, file_path: Optional[str] = None):
        save_path = file_path or self.config_path
        if not save_path:
            raise ValueError("No config file path specified")
        path = Path(save_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False, indent=2)
            else:
                json.dump(self.to_dict(), f, indent=2)
        log.info("config.saved_successfully path=%s", save_path)

    def get_section(self, section_name: str) -> Any:
        return getattr(self, section_name, None) if section_name in _SECTIONS else None

    def get_value(self, section_name: str, key: str, default=None):
        section = self.get_section(section_name)
        if section is not None and hasattr(section, key):
            return getattr(section, key)
        return default

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def __repr__(self) -> str:
        return f"RunnerConfig(path={self.config_path})"


def configure_logging(config: Union[RunnerConfig, LoggingConfig, None] = None,
                      logger: Optional[logging.Logger] = None) -> logging.Logger:
    """
    Install a stream handler, plus a rotating file handler when
    ``logging.file_path`` is set, on ``logger`` (the ``toolrun`` logger by default).
    """
    settings = config.logging if isinstance(config, RunnerConfig) else (config or LoggingConfig())
    target = logger or logging.getLogger("toolrun")
    level = getattr(logging, settings.level.upper(), logging.INFO)
    formatter = logging.Formatter(settings.format)

    for handler in list(target.handlers):
        if getattr(handler, "_toolrun_handler", False):
            target.removeHandler(handler)
            handler.close()

    handlers = [logging.StreamHandler()]
    if settings.file_path:
        Path(settings.file_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            settings.file_path,
            maxBytes=settings.max_file_size,
            backupCount=settings.backup_count,
            encoding="utf-8",
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._toolrun_handler = True
        target.addHandler(handler)

    target.setLevel(level)
    log.info("logging.configured level=%s file=%s", settings.level, settings.file_path)
    return target


_config_instance: Optional[RunnerConfig] = None
_config_lock = threading.Lock()


def get_config(config_path: Optional[str] = None, force_new: bool = False) -> RunnerConfig:
    """
    Shared configuration instance.

    Args:
        config_path: Configuration file; defaults to $TOOLRUN_CONFIG_FILE
        force_new: Build a fresh instance (for testing)
    """
    global _config_instance

    with _config_lock:
        if force_new or _config_instance is None:
            config_path = config_path or os.getenv("TOOLRUN_CONFIG_FILE")
            _config_instance = RunnerConfig(config_path)
            log.info("config.instance_created path=%s", config_path)
        return _config_instance


def reset_config():
    """Drop the shared instance (for testing)."""
    global _config_instance
    with _config_lock:
        _config_instance = None
        log.debug("config.instance_reset")
