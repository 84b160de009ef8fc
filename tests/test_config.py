"""Test configuration management."""

import pytest
from aliaslog.utils.config import ConfigManager
from aliaslog.utils.exceptions import ConfigurationError


def test_config_manager_initialization(config_manager):
    """Test ConfigManager initialization."""
    assert config_manager.config_dir.name == "config"


def test_supported_extensions(config_manager):
    """Test log extensions and the browse-only extras."""
    assert config_manager.get_supported_extensions() == [".log", ".txt", ".out", ".err"]
    assert ".json" in config_manager.get_supported_extensions(include_browse=True)


def test_sections(config_manager):
    """Test section accessors."""
    assert config_manager.get_aggregation_config()["max_workers"] == 4
    assert config_manager.get_watcher_config()["max_retries"] == 3
    assert config_manager.get_discovery_config()["large_file_warning_mb"] == 50
    assert config_manager.get_section("nonexistent") == {}


def test_classification_rules(config_manager):
    """Test the rule table and solutions load."""
    rules = config_manager.get_classification_rules()
    assert rules[0]["category"] == "Network Issues"
    assert "actions" in config_manager.get_solutions()["Memory Issues"]


def test_invalid_config_file():
    """Test handling of missing config files."""
    config_manager = ConfigManager("nonexistent")
    with pytest.raises(FileNotFoundError):
        _ = config_manager.settings


def test_invalid_yaml(tmp_path):
    """Test handling of malformed YAML."""
    (tmp_path / "settings.yaml").write_text("discovery: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        _ = ConfigManager(str(tmp_path)).settings


def test_reload(tmp_path):
    """Test reload picks up edits."""
    settings = tmp_path / "settings.yaml"
    settings.write_text("watcher:\n  max_retries: 3\n", encoding="utf-8")
    config_manager = ConfigManager(str(tmp_path))
    assert config_manager.get_watcher_config()["max_retries"] == 3

    settings.write_text("watcher:\n  max_retries: 5\n", encoding="utf-8")
    assert config_manager.get_watcher_config()["max_retries"] == 3
    config_manager.reload()
    assert config_manager.get_watcher_config()["max_retries"] == 5
