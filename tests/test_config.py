"""
Tests for configuration parsing (module_audit/config.py).
"""

import json
from unittest.mock import patch

import pytest

from module_audit.config import (
    Config,
    LoggingConfig,
    Preferences,
    _load_json,
    _load_yaml,
    load_config,
    load_config_data,
    load_config_file,
    merge_config_data,
    validate_config,
)


VALID_YAML = """\
version: 1
backend: pip
exclude:
  - setuptools
  - Pip
preferences:
  timeout_seconds: 30
  python: /opt/venv/bin/python
  index_url: https://mirror.example.com/pypi/
logging:
  level: DEBUG
  file: /tmp/module-audit.log
"""


@pytest.fixture
def write_config(tmp_path):
    def _write(name: str, content: str) -> str:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return str(path)
    return _write


class TestPreferences:
    """Tests for Preferences dataclass."""

    def test_defaults(self):
        prefs = Preferences()
        assert prefs.timeout_seconds is None
        assert prefs.pwsh == "pwsh"
        assert prefs.repository == "PSGallery"
        assert prefs.scope == "CurrentUser"
        assert prefs.python is None
        assert prefs.index_url == "https://pypi.org/pypi"

    @pytest.mark.parametrize("timeout", [0, 3601, -5])
    def test_invalid_timeout(self, timeout):
        with pytest.raises(ValueError, match="timeout_seconds"):
            Preferences(timeout_seconds=timeout)

    def test_invalid_scope(self):
        with pytest.raises(ValueError, match="scope"):
            Preferences(scope="Machine")

    def test_empty_repository(self):
        with pytest.raises(ValueError):
            Preferences(repository="")

    def test_from_dict_strips_trailing_slash(self):
        prefs = Preferences.from_dict({"index_url": "https://pypi.org/pypi/"})
        assert prefs.index_url == "https://pypi.org/pypi"

    def test_immutable(self):
        prefs = Preferences()
        with pytest.raises(AttributeError):
            prefs.pwsh = "powershell"


class TestLoggingConfig:
    """Tests for LoggingConfig dataclass."""

    def test_defaults(self):
        assert LoggingConfig().level == "INFO"
        assert LoggingConfig().file is None

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="log level"):
            LoggingConfig(level="LOUD")

    def test_level_case_insensitive(self):
        assert LoggingConfig.from_dict({"level": "debug"}).level == "debug"


class TestConfig:
    """Tests for Config dataclass."""

    def test_defaults(self):
        config = Config()
        assert config.version == 1
        assert config.backend == "psgallery"
        assert config.exclude == ()

    def test_unsupported_version(self):
        with pytest.raises(ValueError, match="version"):
            Config(version=2)

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="backend"):
            Config(backend="npm")

    def test_from_dict(self):
        config = Config.from_dict({
            "backend": "pip",
            "exclude": ["pip", "setuptools"],
            "preferences": {"timeout_seconds": 10},
        }, source="x.yml")
        assert config.backend == "pip"
        assert config.exclude == ("pip", "setuptools")
        assert config.preferences.timeout_seconds == 10
        assert config.source == "x.yml"

    def test_from_dict_null_sections(self):
        config = Config.from_dict({"exclude": None, "preferences": None, "logging": None})
        assert config.exclude == ()
        assert config.preferences == Preferences()

    def test_from_dict_null_values_use_defaults(self):
        config = Config.from_dict({
            "backend": None,
            "preferences": {"pwsh": None, "index_url": None, "scope": None},
            "logging": {"level": None},
        })
        assert config.backend == "psgallery"
        assert config.preferences.pwsh == "pwsh"
        assert config.preferences.index_url == "https://pypi.org/pypi"
        assert config.preferences.scope == "CurrentUser"
        assert config.logging.level == "INFO"

    def test_from_dict_exclude_string_rejected(self):
        with pytest.raises(ValueError, match="exclude must be a list"):
            Config.from_dict({"exclude": "Pester"})

    @pytest.mark.parametrize("exclude", [[None], [""], [["nested"]], [42]])
    def test_from_dict_exclude_bad_entries(self, exclude):
        with pytest.raises(ValueError, match="exclude entries"):
            Config.from_dict({"exclude": exclude})

    @pytest.mark.parametrize("data,key", [
        ({"preferences": {"pwsh": 7}}, "pwsh"),
        ({"preferences": {"index_url": ["https://pypi.org/pypi"]}}, "index_url"),
        ({"preferences": {"timeout_seconds": "30"}}, "timeout_seconds"),
        ({"preferences": {"timeout_seconds": True}}, "timeout_seconds"),
        ({"preferences": "fast"}, "preferences"),
        ({"logging": ["DEBUG"]}, "logging"),
        ({"backend": ["pip"]}, "backend"),
    ])
    def test_from_dict_wrong_types(self, data, key):
        with pytest.raises(ValueError, match=key):
            Config.from_dict(data)

    def test_empty_pwsh_rejected(self):
        with pytest.raises(ValueError, match="pwsh"):
            Config.from_dict({"preferences": {"pwsh": ""}})


class TestMergeConfigData:
    """Tests for merging raw config mappings."""

    def test_high_wins_even_with_default_values(self):
        high = {"backend": "psgallery", "preferences": {"scope": "CurrentUser"}}
        low = {"backend": "pip", "preferences": {"scope": "AllUsers", "timeout_seconds": 60}}
        merged = merge_config_data(high, low)

        assert merged["backend"] == "psgallery"
        assert merged["preferences"] == {"scope": "CurrentUser", "timeout_seconds": 60}

    def test_missing_and_null_keys_fall_through(self):
        high = {"preferences": {"repository": "Internal", "pwsh": None}, "logging": None}
        low = {
            "backend": "pip",
            "preferences": {"pwsh": "powershell.exe"},
            "logging": {"level": "DEBUG", "file": "/tmp/low.log"},
        }
        merged = merge_config_data(high, low)

        assert merged["backend"] == "pip"
        assert merged["preferences"] == {"pwsh": "powershell.exe", "repository": "Internal"}
        assert merged["logging"] == {"level": "DEBUG", "file": "/tmp/low.log"}

    def test_exclude_lists_joined(self):
        merged = merge_config_data({"exclude": ["a"]}, {"exclude": ["b", "a"]})
        assert merged["exclude"] == ["a", "b"]

    def test_inputs_unchanged(self):
        high = {"preferences": {"scope": "AllUsers"}}
        low = {"preferences": {"pwsh": "pwsh"}}
        merge_config_data(high, low)
        assert low == {"preferences": {"pwsh": "pwsh"}}


class TestFileLoading:
    """Tests for YAML/JSON file loading."""

    def test_load_yaml(self, write_config):
        data = _load_yaml(write_config("c.yml", VALID_YAML))
        assert data["backend"] == "pip"

    def test_load_yaml_empty_file(self, write_config):
        assert _load_yaml(write_config("c.yml", "")) == {}

    def test_load_yaml_invalid(self, write_config):
        assert _load_yaml(write_config("c.yml", "backend: [unclosed")) is None

    def test_load_json(self, write_config):
        data = _load_json(write_config("c.json", json.dumps({"backend": "pip"})))
        assert data == {"backend": "pip"}

    def test_load_json_invalid(self, write_config):
        assert _load_json(write_config("c.json", "{not json")) is None

    def test_load_config_file(self, write_config):
        path = write_config("c.yml", VALID_YAML)
        config = load_config_file(path)

        assert config.backend == "pip"
        assert config.exclude == ("setuptools", "Pip")
        assert config.preferences.timeout_seconds == 30
        assert config.preferences.python == "/opt/venv/bin/python"
        assert config.preferences.index_url == "https://mirror.example.com/pypi"
        assert config.logging.level == "DEBUG"
        assert config.source == path

    def test_load_config_file_json(self, write_config):
        config = load_config_file(write_config("c.json", json.dumps({"exclude": ["Pester"]})))
        assert config.exclude == ("Pester",)

    def test_load_config_file_missing(self, tmp_path):
        assert load_config_file(str(tmp_path / "missing.yml")) is None

    def test_load_config_file_validation_error(self, write_config):
        assert load_config_file(write_config("c.yml", "version: 3\n")) is None

    def test_load_config_data_returns_raw_mapping(self, write_config):
        data = load_config_data(write_config("c.yml", "preferences:\n  scope: CurrentUser\n"))
        assert data == {"preferences": {"scope": "CurrentUser"}}

    def test_null_index_url_uses_default(self, write_config):
        config = load_config_file(write_config("c.yml", "backend: pip\npreferences:\n  index_url:\n  pwsh:\n"))
        assert config.preferences.index_url == "https://pypi.org/pypi"
        assert config.preferences.pwsh == "pwsh"

    def test_exclude_string_is_invalid(self, write_config):
        assert load_config_file(write_config("c.yml", "exclude: Pester\n")) is None


class TestLoadConfig:
    """Tests for multi-source config loading."""

    def test_defaults_when_nothing_found(self, tmp_path):
        with patch("module_audit.config.CONFIG_LOCATIONS", [str(tmp_path / "none.yml")]):
            assert load_config() == Config()

    def test_custom_path_missing_raises(self, tmp_path):
        with patch("module_audit.config.CONFIG_LOCATIONS", []):
            with pytest.raises(ValueError, match="Could not load config"):
                load_config(str(tmp_path / "missing.yml"))

    def test_custom_path_overrides_project(self, write_config):
        custom = write_config("custom.yml", "backend: pip\n")
        project = write_config("project.yml", "exclude: [Pester]\npreferences:\n  timeout_seconds: 20\n")

        with patch("module_audit.config.CONFIG_LOCATIONS", [project]):
            config = load_config(custom)

        assert config.backend == "pip"
        assert config.exclude == ("Pester",)
        assert config.preferences.timeout_seconds == 20
        assert config.source == custom

    def test_project_over_user(self, write_config):
        project = write_config("project.yml", "preferences:\n  repository: Internal\n")
        user = write_config("user.yml", "preferences:\n  repository: PSGallery\n  scope: AllUsers\n")

        with patch("module_audit.config.CONFIG_LOCATIONS", [project, user]):
            config = load_config()

        assert config.preferences.repository == "Internal"
        assert config.preferences.scope == "AllUsers"

    def test_custom_default_values_beat_project(self, write_config):
        custom = write_config("custom.yml", "backend: psgallery\npreferences:\n  scope: CurrentUser\n")
        project = write_config("project.yml", "backend: pip\npreferences:\n  scope: AllUsers\n  timeout_seconds: 45\n")

        with patch("module_audit.config.CONFIG_LOCATIONS", [project]):
            config = load_config(custom)

        assert (config.backend, config.preferences.scope) == ("psgallery", "CurrentUser")
        assert config.preferences.timeout_seconds == 45

    def test_invalid_project_file_is_skipped(self, write_config):
        project = write_config("project.yml", "exclude: Pester\n")
        user = write_config("user.yml", "exclude: [PSReadLine]\n")

        with patch("module_audit.config.CONFIG_LOCATIONS", [project, user]):
            config = load_config()

        assert config.exclude == ("PSReadLine",)
        assert config.source == user

    def test_custom_path_with_wrong_types_raises(self, write_config):
        custom = write_config("custom.yml", "preferences:\n  timeout_seconds: soon\n")
        with patch("module_audit.config.CONFIG_LOCATIONS", []):
            with pytest.raises(ValueError, match="Could not load config"):
                load_config(custom)


class TestValidateConfig:
    """Tests for validate_config warnings."""

    def test_clean_config(self):
        assert validate_config(Config()) == []

    def test_duplicate_excludes(self):
        warnings = validate_config(Config(exclude=("Pester", "pester")))
        assert any("Duplicate" in w for w in warnings)

    def test_plain_http_index(self):
        config = Config(backend="pip", preferences=Preferences(index_url="http://mirror.local/pypi"))
        assert any("HTTPS" in w for w in validate_config(config))

    def test_all_users_scope(self):
        config = Config(preferences=Preferences(scope="AllUsers"))
        assert any("elevated" in w for w in validate_config(config))
