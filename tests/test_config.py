"""Tests for the config hierarchy."""

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from kmem.core.config import (
    KmemConfig,
    _convert_env_value,
    _deep_merge,
    _extract_env_config,
    _find_config_file,
    load_config,
)


class TestConvertEnvValue:
    def test_numbers(self):
        assert _convert_env_value("100") == 100
        assert _convert_env_value("0.85") == 0.85
        assert _convert_env_value("0") == 0

    def test_booleans(self):
        for value in ["true", "YES", "on"]:
            assert _convert_env_value(value) is True
        for value in ["false", "No", "OFF"]:
            assert _convert_env_value(value) is False

    def test_list(self):
        assert _convert_env_value("a, ,b") == ["a", "b"]

    def test_string_passthrough(self):
        assert _convert_env_value("sqlite") == "sqlite"
        assert _convert_env_value("") == ""


class TestExtractEnvConfig:
    def test_maps_sections(self, monkeypatch):
        monkeypatch.setenv("KMEM_STORAGE_BACKEND", "sqlite")
        monkeypatch.setenv("KMEM_DEFAULTS_DUPLICATE_THRESHOLD", "0.9")
        monkeypatch.setenv("KMEM_LOGGING_ENABLED", "false")

        assert _extract_env_config() == {
            "storage": {"backend": "sqlite"},
            "defaults": {"duplicate_threshold": 0.9},
            "logging": {"enabled": False},
        }

    def test_ignores_unknown_sections(self, monkeypatch):
        monkeypatch.setenv("KMEM_SOMETHING_ELSE", "1")
        monkeypatch.setenv("KMEM_", "x")
        assert _extract_env_config() == {}

    def test_string_fields_not_converted(self, monkeypatch):
        monkeypatch.setenv("KMEM_DEFAULTS_USER_ID", "007")
        monkeypatch.setenv("KMEM_DEFAULTS_WORKSPACE_ID", "1.50")
        monkeypatch.setenv("KMEM_STORAGE_PATH", "/data/a,b")
        assert _extract_env_config() == {
            "defaults": {"user_id": "007", "workspace_id": "1.50"},
            "storage": {"path": "/data/a,b"},
        }


class TestDeepMerge:
    def test_nested(self):
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        _deep_merge(base, {"a": {"b": 10}, "e": 5})
        assert base == {"a": {"b": 10, "c": 2}, "d": 3, "e": 5}


class TestKmemConfig:
    def test_defaults(self):
        config = KmemConfig()
        assert config.storage.backend == "file"
        assert config.storage.path == Path("~/.kmem").expanduser()
        assert config.defaults.workspace_id == "default"
        assert config.defaults.user_id is None
        assert config.defaults.relation_strength == 0.8
        assert config.defaults.duplicate_threshold == 0.8
        assert config.matching.strategy == "weighted"
        assert config.logging.enabled is True
        assert config.log_db_path == config.storage.path / "logs.db"

    def test_frozen(self):
        config = KmemConfig()
        with pytest.raises(PydanticValidationError):
            config.storage.backend = "sqlite"

    @pytest.mark.parametrize(
        "data",
        [
            {"storage": {"backend": "s3"}},
            {"defaults": {"duplicate_threshold": 1.5}},
            {"defaults": {"workspace_id": "bad/id"}},
            {"matching": {"strategy": "magic"}},
        ],
    )
    def test_rejects_invalid(self, data):
        with pytest.raises(PydanticValidationError):
            KmemConfig.from_dict(data)

    def test_relative_paths_resolved_against_yaml(self, tmp_path):
        config_file = tmp_path / "kmem.yaml"
        config_file.write_text("storage:\n  path: data\nlogging:\n  db_path: logs/ops.db\n")

        config = KmemConfig.from_yaml(config_file)
        assert config.storage.path == tmp_path / "data"
        assert config.log_db_path == tmp_path / "logs" / "ops.db"

    def test_numeric_user_id_from_env(self, monkeypatch):
        monkeypatch.setenv("KMEM_DEFAULTS_USER_ID", "42")
        assert load_config().defaults.user_id == "42"

    @pytest.mark.parametrize("user_id", ["007", "alice,bob", "true"])
    def test_user_id_from_env_kept_verbatim(self, monkeypatch, user_id):
        monkeypatch.setenv("KMEM_DEFAULTS_USER_ID", user_id)
        assert load_config().defaults.user_id == user_id

    def test_user_id_from_yaml_int(self, tmp_path):
        config_file = tmp_path / "kmem.yaml"
        config_file.write_text("defaults:\n  user_id: 42\n")
        assert KmemConfig.from_yaml(config_file).defaults.user_id == "42"


class TestLoadConfig:
    def test_hierarchy(self, tmp_path, monkeypatch):
        config_file = tmp_path / "kmem.yaml"
        config_file.write_text(
            "storage:\n  backend: sqlite\n"
            "defaults:\n  workspace_id: from-yaml\n  user_id: yaml-user\n"
        )
        monkeypatch.setenv("KMEM_DEFAULTS_WORKSPACE_ID", "from-env")

        config = load_config(
            config_file,
            cli_overrides={"defaults": {"user_id": "cli-user"}},
        )

        assert config.storage.backend == "sqlite"
        assert config.defaults.workspace_id == "from-env"
        assert config.defaults.user_id == "cli-user"

    def test_use_env_false(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KMEM_STORAGE_BACKEND", "memory")
        assert load_config(tmp_path / "missing.yaml", use_env=False).storage.backend == "file"

    def test_find_config_file_in_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert _find_config_file() is None
        (tmp_path / "kmem.yaml").write_text("{}\n")
        assert _find_config_file() == Path("kmem.yaml")

    def test_empty_yaml(self, tmp_path):
        config_file = tmp_path / "kmem.yaml"
        config_file.write_text("")
        assert load_config(config_file).storage.backend == "file"
