"""
Tests for orgmaint.config and orgmaint.exit_codes
"""
import json
import logging

import pytest
import toml
import yaml

from orgmaint.config import (
    apply_env_overrides,
    get_config_path,
    get_default_config,
    get_registries_dir,
    load_config,
    merge_configs,
    save_config,
    set_log_level,
)
from orgmaint.exit_codes import (
    API_ERROR,
    CONFIG_ERROR,
    DATA_ERROR,
    GENERAL_ERROR,
    NETWORK_ERROR,
    NO_REPOS_FOUND,
    PARTIAL_SUCCESS,
    APIError,
    CommandError,
    ConfigError,
    NoReposFoundError,
    PartialSuccessError,
    get_exit_code_for_exception,
)


# ============================================================================
# Defaults and paths
# ============================================================================

class TestDefaults:
    """Default configuration structure."""

    def test_sections_present(self):
        config = get_default_config()
        for section in ("general", "github", "git", "julia", "formatting", "version_checks", "logging"):
            assert section in config

    def test_julia_defaults(self):
        config = get_default_config()
        assert config["julia"]["executable"] == "julia"
        assert config["julia"]["registry"] == "General"
        assert config["julia"]["juliaup"] is False

    def test_agent_timeout_default(self):
        assert get_default_config()["version_checks"]["agent_timeout_minutes"] == 60

    def test_default_is_fresh_copy(self):
        a = get_default_config()
        a["github"]["org"] = "Changed"
        assert get_default_config()["github"]["org"] == "SciML"


class TestConfigPath:
    """Config file discovery."""

    def test_env_var_wins(self, tmp_path, monkeypatch):
        target = tmp_path / "custom.yaml"
        monkeypatch.setenv("ORGMAINT_CONFIG", str(target))
        assert get_config_path() == target

    def test_env_var_returned_even_when_missing(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ORGMAINT_CONFIG", str(tmp_path / "nope" / "config.toml"))
        assert get_config_path().name == "config.toml"
        assert not get_config_path().exists()

    def test_home_directory_fallback(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ORGMAINT_CONFIG")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_config_path() == tmp_path / ".orgmaint" / "config.json"

    def test_home_directory_existing_toml(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ORGMAINT_CONFIG")
        monkeypatch.setenv("HOME", str(tmp_path))
        config_dir = tmp_path / ".orgmaint"
        config_dir.mkdir()
        (config_dir / "config.toml").write_text('[github]\norg = "JuliaDiff"\n')
        assert get_config_path() == config_dir / "config.toml"


# ============================================================================
# Loading and saving
# ============================================================================

class TestLoadSave:
    """Round trips through the supported file formats."""

    def test_load_without_file_gives_defaults(self):
        assert load_config() == get_default_config()

    @pytest.mark.parametrize("suffix", [".json", ".toml", ".yaml"])
    def test_save_then_load(self, tmp_path, monkeypatch, suffix):
        path = tmp_path / f"config{suffix}"
        monkeypatch.setenv("ORGMAINT_CONFIG", str(path))
        config = get_default_config()
        config["github"]["org"] = "JuliaDiff"
        save_config(config)

        assert path.exists()
        assert load_config()["github"]["org"] == "JuliaDiff"

    def test_partial_file_merges_with_defaults(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"julia": {"test_timeout_minutes": 90}}))
        monkeypatch.setenv("ORGMAINT_CONFIG", str(path))

        config = load_config()
        assert config["julia"]["test_timeout_minutes"] == 90
        assert config["julia"]["executable"] == "julia"

    def test_toml_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text(toml.dumps({"formatting": {"style": "blue"}}))
        monkeypatch.setenv("ORGMAINT_CONFIG", str(path))
        assert load_config()["formatting"]["style"] == "blue"

    def test_malformed_file_falls_back_to_defaults(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text("{ not json")
        monkeypatch.setenv("ORGMAINT_CONFIG", str(path))
        assert load_config() == get_default_config()


class TestMerge:
    def test_nested_merge(self):
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        merged = merge_configs(base, {"a": {"c": 20}, "e": 5})
        assert merged == {"a": {"b": 1, "c": 20}, "d": 3, "e": 5}

    def test_scalar_replaces_dict(self):
        assert merge_configs({"a": {"b": 1}}, {"a": 7}) == {"a": 7}


# ============================================================================
# Environment overrides
# ============================================================================

class TestEnvOverrides:
    """ORGMAINT_SECTION_KEY variables."""

    def test_multi_word_key(self, monkeypatch):
        monkeypatch.setenv("ORGMAINT_JULIA_TEST_TIMEOUT_MINUTES", "60")
        config = apply_env_overrides(get_default_config())
        assert config["julia"]["test_timeout_minutes"] == 60

    def test_boolean_value(self, monkeypatch):
        monkeypatch.setenv("ORGMAINT_JULIA_JULIAUP", "yes")
        assert apply_env_overrides(get_default_config())["julia"]["juliaup"] is True

    def test_string_value(self, monkeypatch):
        monkeypatch.setenv("ORGMAINT_GITHUB_ORG", "JuliaDiff")
        assert load_config()["github"]["org"] == "JuliaDiff"

    def test_nested_section(self, monkeypatch):
        monkeypatch.setenv("ORGMAINT_GITHUB_RATE_LIMIT_MAX_RETRIES", "7")
        config = apply_env_overrides(get_default_config())
        assert config["github"]["rate_limit"]["max_retries"] == 7

    def test_unknown_key_ignored(self, monkeypatch):
        monkeypatch.setenv("ORGMAINT_NOT_A_SECTION", "1")
        assert apply_env_overrides(get_default_config()) == get_default_config()

    def test_config_path_variable_not_treated_as_override(self):
        # ORGMAINT_CONFIG is set by the autouse fixture
        assert "config" not in apply_env_overrides(get_default_config())


class TestHelpers:
    def test_registries_dir_expands_user(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        config = get_default_config()
        assert get_registries_dir(config) == tmp_path / ".julia" / "registries"

    def test_set_log_level_by_name(self):
        root = logging.getLogger()
        previous = root.level
        try:
            set_log_level("debug")
            assert root.level == logging.DEBUG
            set_log_level(logging.WARNING)
            assert root.level == logging.WARNING
        finally:
            root.setLevel(previous)


# ============================================================================
# Exit codes
# ============================================================================

class TestExitCodes:
    """Mapping exceptions to process exit codes."""

    def test_command_error_carries_code(self):
        assert get_exit_code_for_exception(CommandError("x", 42)) == 42

    def test_subclasses(self):
        assert get_exit_code_for_exception(NoReposFoundError()) == NO_REPOS_FOUND
        assert get_exit_code_for_exception(APIError("gh failed")) == API_ERROR
        assert get_exit_code_for_exception(ConfigError("bad")) == CONFIG_ERROR

    def test_partial_success_counts(self):
        err = PartialSuccessError("some failed", succeeded=3, failed=1)
        assert err.exit_code == PARTIAL_SUCCESS
        assert (err.succeeded, err.failed) == (3, 1)

    def test_builtin_exceptions(self):
        assert get_exit_code_for_exception(ValueError("v")) == DATA_ERROR
        assert get_exit_code_for_exception(ConnectionError()) == NETWORK_ERROR
        assert get_exit_code_for_exception(RuntimeError("r")) == GENERAL_ERROR

    def test_json_decode_error(self):
        try:
            json.loads("{")
        except json.JSONDecodeError as e:
            assert get_exit_code_for_exception(e) == DATA_ERROR
