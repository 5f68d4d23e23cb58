import json
import logging
import logging.handlers
import os

import pytest
import yaml

from toolrun.config import LoggingConfig, RunnerConfig, configure_logging, get_config, reset_config
from toolrun.errors import ConfigurationError, UnknownShellError, UnsupportedPlatformError
from toolrun.platform import RuntimeContext


def test_defaults():
    config = RunnerConfig()
    assert config.execution.default_timeout == 90.0
    assert config.execution.shell is None
    assert config.execution.kill_on_timeout is True
    assert config.cache.tool_cache_size == 50
    assert config.cache.options_cache_size == 100
    assert config.index.register_path is None
    assert config.metrics.enabled is True


def test_yaml_file_then_environment(tmp_path, monkeypatch):
    path = tmp_path / "toolrun.yaml"
    path.write_text(yaml.safe_dump({
        "execution": {"default_timeout": 30, "shell": "zsh"},
        "cache": {"tool_cache_size": 5},
    }))
    monkeypatch.setenv("TOOLRUN_TIMEOUT", "45")
    monkeypatch.setenv("TOOLRUN_REGISTER", "/srv/register")
    monkeypatch.setenv("TOOLRUN_KILL_ON_TIMEOUT", "no")

    config = RunnerConfig(str(path))
    assert config.execution.default_timeout == 45.0
    assert config.execution.shell == "zsh"
    assert config.execution.kill_on_timeout is False
    assert config.cache.tool_cache_size == 5
    assert config.index.register_path == "/srv/register"


def test_json_file(tmp_path):
    path = tmp_path / "toolrun.json"
    path.write_text(json.dumps({"logging": {"level": "debug"}}))
    assert RunnerConfig(str(path)).logging.level == "DEBUG"


def test_unparseable_file_is_ignored(tmp_path, caplog):
    path = tmp_path / "broken.yaml"
    path.write_text("execution: [unclosed\n")
    with caplog.at_level(logging.ERROR, logger="toolrun.config"):
        config = RunnerConfig(str(path))
    assert config.execution.default_timeout == 90.0
    assert "config.yaml_parse_failed" in caplog.text


def test_bad_environment_value_is_skipped(monkeypatch):
    monkeypatch.setenv("TOOLRUN_TOOL_CACHE_SIZE", "lots")
    assert RunnerConfig().cache.tool_cache_size == 50


def test_values_are_clamped_and_logged(monkeypatch, caplog):
    monkeypatch.setenv("TOOLRUN_TIMEOUT", "0")
    monkeypatch.setenv("TOOLRUN_TOOL_CACHE_SIZE", "0")
    with caplog.at_level(logging.WARNING, logger="toolrun.config"):
        config = RunnerConfig()
    assert config.execution.default_timeout == 1.0
    assert config.cache.tool_cache_size == 1
    assert "config.value_clamped section=execution key=default_timeout" in caplog.text


def test_invalid_log_level_falls_back_to_info(monkeypatch):
    monkeypatch.setenv("TOOLRUN_LOG_LEVEL", "chatty")
    assert RunnerConfig().logging.level == "INFO"


def test_unknown_shell_is_an_error(monkeypatch):
    monkeypatch.setenv("TOOLRUN_SHELL", "ksh")
    with pytest.raises(UnknownShellError):
        RunnerConfig()


def test_unknown_platform_is_an_error(monkeypatch):
    monkeypatch.setenv("TOOLRUN_PLATFORM", "solaris")
    with pytest.raises(UnsupportedPlatformError):
        RunnerConfig()
    assert issubclass(UnsupportedPlatformError, ConfigurationError)


def test_reload_and_rollback(tmp_path):
    path = tmp_path / "toolrun.yaml"
    path.write_text(yaml.safe_dump({"execution": {"default_timeout": 30}}))
    config = RunnerConfig(str(path))
    assert not config.check_for_changes()
    assert not config.reload_config()

    path.write_text(yaml.safe_dump({"execution": {"default_timeout": 60}}))
    os.utime(path, (config.last_modified + 5, config.last_modified + 5))
    assert config.reload_config()
    assert config.execution.default_timeout == 60.0

    path.write_text(yaml.safe_dump({"execution": {"default_timeout": 10, "shell": "ksh"}}))
    os.utime(path, (config.last_modified + 5, config.last_modified + 5))
    assert not config.reload_config()
    assert config.execution.default_timeout == 60.0
    assert config.execution.shell is None


def test_save_and_load_round_trip(tmp_path):
    config = RunnerConfig()
    config.execution.default_timeout = 12.0
    target = tmp_path / "nested" / "saved.yaml"
    config.save_config(str(target))
    assert RunnerConfig(str(target)).execution.default_timeout == 12.0
    with pytest.raises(ValueError):
        RunnerConfig().save_config()


def test_section_accessors():
    config = RunnerConfig()
    assert config.get_section("cache") is config.cache
    assert config.get_section("bogus") is None
    assert config.get_value("execution", "default_timeout") == 90.0
    assert config.get_value("execution", "missing", "dflt") == "dflt"
    assert set(config.to_dict()) == {"execution", "cache", "index", "logging", "metrics"}


def test_get_config_is_shared_and_resettable(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text(yaml.safe_dump({"index": {"register_path": "/from/file"}}))
    monkeypatch.setenv("TOOLRUN_CONFIG_FILE", str(path))
    first = get_config()
    assert get_config() is first
    assert first.index.register_path == "/from/file"
    reset_config()
    assert get_config() is not first
    assert get_config(force_new=True).config_path == str(path)


def test_runtime_context_from_config(monkeypatch):
    monkeypatch.setenv("TOOLRUN_SHELL", "dash")
    monkeypatch.setenv("TOOLRUN_PLATFORM", "linux")
    monkeypatch.setenv("TOOLRUN_TIMEOUT", "15")
    context = RuntimeContext.from_config(RunnerConfig())
    assert (context.platform, context.shell, context.timeout) == ("linux", "dash", 15.0)


def test_configure_logging_installs_handlers_once(tmp_path):
    logger = logging.getLogger("toolrun.test_configure")
    settings = LoggingConfig(level="DEBUG", file_path=str(tmp_path / "logs" / "toolrun.log"))
    try:
        configure_logging(settings, logger=logger)
        configure_logging(settings, logger=logger)
        ours = [h for h in logger.handlers if getattr(h, "_toolrun_handler", False)]
        assert len(ours) == 2
        assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in ours)
        assert logger.level == logging.DEBUG
        logger.debug("file.message")
        for handler in ours:
            handler.flush()
        assert "file.message" in (tmp_path / "logs" / "toolrun.log").read_text()
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
