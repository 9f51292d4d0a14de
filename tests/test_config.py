"""
Tests for sievekit configuration loading.
"""

import logging

import pytest

from sievekit import config as config_module
from sievekit.config import SieveConfig, get_config, write_default_config


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """No SIEVEKIT_* variables and no home config leak into the tests."""
    for name in ("SIEVEKIT_INDENT", "SIEVEKIT_NEWLINE", "SIEVEKIT_MAX_DEPTH",
                 "SIEVEKIT_CHARSET", "SIEVEKIT_SERVER_CAPABILITIES"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "CONFIG_SEARCH_PATHS", [])
    monkeypatch.setattr(config_module, "_config", None)


class TestDefaults:
    """Configuration without a file."""

    def test_defaults(self):
        config = SieveConfig()
        assert config.config_path is None
        assert config.indent == "    "
        assert config.newline == "\n"
        assert config.max_depth == 64
        assert config.charset == "utf-8"
        assert config.server_capabilities is None

    def test_missing_explicit_file(self, tmp_path):
        config = SieveConfig(tmp_path / "nope.yaml")
        assert config.config_path is None
        assert config.max_depth == 64

    def test_format_options(self):
        options = SieveConfig().format_options()
        assert options.indent == "    "
        assert options.newline == "\n"
        assert options.multiline_threshold == 1024
        assert options.include_comments

    def test_registry_unseeded(self):
        assert SieveConfig().registry().server_capabilities is None


class TestYamlFile:
    """Loading values with PyYAML."""

    def test_load(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "indent: tab\n"
            "newline: crlf\n"
            "multiline_threshold: 80\n"
            "include_comments: false\n"
            "max_depth: 16\n"
            "server_capabilities:\n"
            "  - fileinto\n"
            "  - vacation\n",
            encoding="utf-8",
        )
        config = SieveConfig(path)
        assert config.config_path == path
        assert config.indent == "\t"
        assert config.newline == "\r\n"
        assert config.max_depth == 16
        assert config.server_capabilities == ["fileinto", "vacation"]
        options = config.format_options()
        assert options.multiline_threshold == 80
        assert not options.include_comments
        assert config.registry().server_capabilities == ["fileinto", "vacation"]

    def test_invalid_yaml_falls_back(self, tmp_path, caplog):
        path = tmp_path / "broken.yaml"
        path.write_text("indent: [unclosed\n", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="sievekit.config"):
            config = SieveConfig(path)
        assert config.config_path is None
        assert config.indent == "    "
        assert "Failed to load config" in caplog.text

    def test_non_mapping_ignored(self, tmp_path, caplog):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="sievekit.config"):
            config = SieveConfig(path)
        assert config.config_path is None
        assert "must be a mapping" in caplog.text

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("indent: wide\nnewline: cr\n", encoding="utf-8")
        config = SieveConfig(path)
        with pytest.raises(ValueError):
            config.indent
        with pytest.raises(ValueError):
            config.newline

    def test_write_default_config(self, tmp_path):
        path = write_default_config(tmp_path / "sub" / "config.yaml")
        assert path.exists()
        config = SieveConfig(path)
        assert config.config_path == path
        assert config.indent == "    "
        assert config.newline == "\n"
        assert config.max_depth == 64
        assert config.server_capabilities is None


class TestEnvironment:
    """SIEVEKIT_* overrides win over the file."""

    def test_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("max_depth: 16\n", encoding="utf-8")
        monkeypatch.setenv("SIEVEKIT_MAX_DEPTH", "8")
        monkeypatch.setenv("SIEVEKIT_INDENT", "2")
        monkeypatch.setenv("SIEVEKIT_NEWLINE", "CRLF")
        monkeypatch.setenv("SIEVEKIT_CHARSET", "latin-1")
        monkeypatch.setenv("SIEVEKIT_SERVER_CAPABILITIES", "fileinto, vacation imap4flags")
        config = SieveConfig(path)
        assert config.max_depth == 8
        assert config.indent == "  "
        assert config.newline == "\r\n"
        assert config.charset == "latin-1"
        assert config.server_capabilities == ["fileinto", "vacation", "imap4flags"]


class TestGlobalConfig:
    """Lazily loaded shared instance."""

    def test_get_config_cached(self):
        first = get_config()
        assert get_config() is first

    def test_explicit_path_reloads(self, tmp_path):
        first = get_config()
        path = tmp_path / "config.yaml"
        path.write_text("charset: latin-1\n", encoding="utf-8")
        second = get_config(path)
        assert second is not first
        assert second.charset == "latin-1"
        assert get_config() is second

    def test_to_dict(self):
        data = get_config().to_dict()
        assert data["max_depth"] == 64
        assert data["config_file"] is None
