"""Unit tests for the configuration module."""

import json
import logging
import logging.handlers

import pytest
import yaml

from actionflow import BatchFlow, BatchNode, Flow, Node, RetryPolicy
from actionflow.config import (
    ConfigManager,
    EngineConfig,
    apply_logging_config,
    create_config_template,
    get_config,
    reset_config,
)
from actionflow.errors import ConfigurationError


class TestDefaults:
    """Test default configuration values."""

    def test_defaults(self):
        config = ConfigManager(environ={}).load()
        assert config.logging.level == "INFO"
        assert config.logging.format == "human"
        assert config.retry.max_retries == 1
        assert config.retry.wait_millis == 0
        assert config.flow.max_steps is None
        assert config.batch.fail_fast is True
        assert config.batch.collect_actions is False
        assert config.batch.max_concurrency == 8

    def test_load_is_cached(self):
        manager = ConfigManager(environ={})
        assert manager.load() is manager.load()

    def test_to_dict(self):
        data = EngineConfig().to_dict()
        assert set(data) == {"logging", "retry", "flow", "batch"}
        assert data["batch"]["max_concurrency"] == 8


class TestEnvironmentOverrides:
    """Test ACTIONFLOW_* environment variables."""

    def test_overrides(self):
        environ = {
            "ACTIONFLOW_LOG_LEVEL": "DEBUG",
            "ACTIONFLOW_LOG_FORMAT": "json",
            "ACTIONFLOW_MAX_RETRIES": "3",
            "ACTIONFLOW_WAIT_MILLIS": "250",
            "ACTIONFLOW_MAX_STEPS": "100",
            "ACTIONFLOW_FAIL_FAST": "false",
            "ACTIONFLOW_COLLECT_ACTIONS": "yes",
            "ACTIONFLOW_MAX_CONCURRENCY": "4",
        }
        config = ConfigManager(environ=environ).load()
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.retry.max_retries == 3
        assert config.retry.wait_millis == 250
        assert config.flow.max_steps == 100
        assert config.batch.fail_fast is False
        assert config.batch.collect_actions is True
        assert config.batch.max_concurrency == 4

    @pytest.mark.parametrize("value", ["", "none", "None"])
    def test_max_steps_can_be_disabled(self, value):
        config = ConfigManager(environ={"ACTIONFLOW_MAX_STEPS": value}).load()
        assert config.flow.max_steps is None

    def test_non_integer_value(self):
        with pytest.raises(ConfigurationError) as excinfo:
            ConfigManager(environ={"ACTIONFLOW_MAX_RETRIES": "many"}).load()
        assert excinfo.value.config_key == "MAX_RETRIES"

    @pytest.mark.parametrize("name,value", [
        ("ACTIONFLOW_LOG_LEVEL", "LOUD"),
        ("ACTIONFLOW_LOG_FORMAT", "xml"),
        ("ACTIONFLOW_MAX_RETRIES", "0"),
        ("ACTIONFLOW_WAIT_MILLIS", "-1"),
        ("ACTIONFLOW_MAX_STEPS", "0"),
        ("ACTIONFLOW_MAX_CONCURRENCY", "0"),
    ])
    def test_invalid_values(self, name, value):
        with pytest.raises(ConfigurationError):
            ConfigManager(environ={name: value}).load()

    def test_get_config_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("ACTIONFLOW_MAX_RETRIES", "5")
        assert get_config().retry.max_retries == 5

    def test_get_config_is_cached(self):
        assert get_config() is get_config()


class TestConfigFiles:
    """Test loading YAML and JSON configuration files."""

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("retry:\n  max_retries: 2\nbatch:\n  fail_fast: false\n")
        config = ConfigManager(str(path), environ={}).load()
        assert config.retry.max_retries == 2
        assert config.retry.wait_millis == 0
        assert config.batch.fail_fast is False

    def test_json_file(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"flow": {"max_steps": 50}}))
        config = ConfigManager(str(path), environ={}).load()
        assert config.flow.max_steps == 50

    def test_environment_wins_over_file(self, tmp_path):
        path = tmp_path / "engine.yml"
        path.write_text("retry:\n  max_retries: 2\n")
        config = ConfigManager(str(path), environ={"ACTIONFLOW_MAX_RETRIES": "6"}).load()
        assert config.retry.max_retries == 6

    def test_missing_file_uses_defaults(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            config = ConfigManager(str(tmp_path / "absent.yaml"), environ={}).load()
        assert config.retry.max_retries == 1
        assert any("Config file not found" in r.getMessage() for r in caplog.records)

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert ConfigManager(str(path), environ={}).load().batch.max_concurrency == 8

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "engine.toml"
        path.write_text("[retry]\n")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            ConfigManager(str(path), environ={}).load()

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Failed to load"):
            ConfigManager(str(path), environ={}).load()

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigManager(str(path), environ={}).load()

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("retry:\n  attempts: 2\n")
        with pytest.raises(ConfigurationError, match="Unknown configuration key"):
            ConfigManager(str(path), environ={}).load()

    @pytest.mark.parametrize("content,key", [
        ({"retry": {"max_retries": "3"}}, "retry.max_retries"),
        ({"retry": {"max_retries": True}}, "retry.max_retries"),
        ({"retry": {"wait_millis": "fast"}}, "retry.wait_millis"),
        ({"flow": {"max_steps": 2.5}}, "flow.max_steps"),
        ({"batch": {"collect_actions": "false"}}, "batch.collect_actions"),
        ({"batch": {"fail_fast": 0}}, "batch.fail_fast"),
        ({"batch": {"max_concurrency": [4]}}, "batch.max_concurrency"),
        ({"logging": {"level": 10}}, "logging.level"),
    ])
    def test_wrong_value_types(self, tmp_path, content, key):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps(content))
        with pytest.raises(ConfigurationError, match="Invalid type") as excinfo:
            ConfigManager(str(path), environ={}).load()
        assert excinfo.value.config_key == key

    def test_float_wait_is_accepted(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("retry:\n  wait_millis: 12.5\n")
        assert ConfigManager(str(path), environ={}).load().retry.wait_millis == 12.5

    def test_template_round_trip(self, tmp_path):
        path = tmp_path / "template.yaml"
        create_config_template(str(path))

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        assert data == EngineConfig().to_dict()
        assert ConfigManager(str(path), environ={}).load() == EngineConfig()


class TestApplyLoggingConfig:
    """Test wiring configuration into the logging system."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_level_and_file_handler(self, tmp_path):
        config = ConfigManager(environ={
            "ACTIONFLOW_LOG_LEVEL": "WARNING",
            "ACTIONFLOW_LOG_FILE": str(tmp_path / "engine.log"),
        }).load()

        apply_logging_config(config)

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)


class TestEngineDefaults:
    """Test that engine classes take unset options from the configuration."""

    def test_builtin_defaults(self):
        node = BatchNode()
        flow = BatchFlow()
        assert (node.max_retries, node.wait_millis, node.fail_fast) == (1, 0, True)
        assert flow.max_steps is None
        assert flow.collect_actions is False

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("ACTIONFLOW_MAX_RETRIES", "3")
        monkeypatch.setenv("ACTIONFLOW_WAIT_MILLIS", "40")
        monkeypatch.setenv("ACTIONFLOW_MAX_STEPS", "25")
        monkeypatch.setenv("ACTIONFLOW_FAIL_FAST", "false")
        monkeypatch.setenv("ACTIONFLOW_COLLECT_ACTIONS", "true")

        node = BatchNode()
        flow = BatchFlow()

        assert node.retry_policy == RetryPolicy(3, 40)
        assert node.fail_fast is False
        assert flow.max_steps == 25
        assert flow.collect_actions is True

    def test_explicit_arguments_win(self, monkeypatch):
        monkeypatch.setenv("ACTIONFLOW_MAX_RETRIES", "3")
        monkeypatch.setenv("ACTIONFLOW_MAX_STEPS", "25")
        assert Node(max_retries=2).max_retries == 2
        assert Node(wait_millis=5).max_retries == 3
        assert Flow(max_steps=4).max_steps == 4

    def test_config_file_reaches_engine_classes(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "retry:\n  max_retries: 4\n  wait_millis: 15\n"
            "flow:\n  max_steps: 30\n"
            "batch:\n  fail_fast: false\n  collect_actions: true\n"
        )

        assert get_config(str(path)).retry.max_retries == 4

        node = BatchNode()
        flow = BatchFlow()
        assert node.retry_policy == RetryPolicy(4, 15)
        assert node.fail_fast is False
        assert flow.max_steps == 30
        assert flow.collect_actions is True
        assert get_config() is get_config(str(path))

    def test_config_file_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "engine.yaml"
        path.write_text("retry:\n  max_retries: 7\n")
        monkeypatch.setenv("ACTIONFLOW_CONFIG_FILE", str(path))

        assert Node().max_retries == 7

    def test_reset_forgets_active_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("retry:\n  max_retries: 4\n")
        get_config(str(path))

        reset_config()

        assert Node().max_retries == 1
