"""
sievekit Configuration

Loads configuration from a YAML file or environment variables.
Controls formatting defaults, the nesting limit, the script charset and
the capabilities the target server is known to support.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from sievekit.capabilities import CapabilityRegistry
from sievekit.parser.parser import DEFAULT_MAX_DEPTH
from sievekit.tools.format import FormatOptions

logger = logging.getLogger(__name__)


# Default configuration file locations (checked in order)
CONFIG_SEARCH_PATHS = [
    Path.home() / ".sievekit" / "config.yaml",
]


DEFAULT_CONFIG = {
    # Formatting
    "indent": 4,                    # spaces per level, or "tab"
    "newline": "lf",                # "lf" or "crlf"
    "multiline_threshold": 1024,    # longer strings are written as text:
    "include_comments": True,

    # Parsing
    "max_depth": DEFAULT_MAX_DEPTH,
    "charset": "utf-8",

    # Capabilities advertised by the server (None = assume all)
    "server_capabilities": None,
}

NEWLINES = {
    "lf": "\n",
    "crlf": "\r\n",
    "\n": "\n",
    "\r\n": "\r\n",
}


class SieveConfig:
    """Configuration for parsing, validating and formatting scripts."""

    def __init__(self, config_path: Optional[Path] = None):
        self._config: Dict[str, Any] = dict(DEFAULT_CONFIG)
        self._config_path: Optional[Path] = None

        # Load from file if found
        self._load_config(config_path)

        # Override with environment variables
        self._apply_env_overrides()

    def _load_config(self, explicit_path: Optional[Path] = None) -> None:
        """Load configuration from YAML file."""
        search_paths = [Path(explicit_path)] if explicit_path else CONFIG_SEARCH_PATHS

        for config_path in search_paths:
            if config_path and config_path.exists():
                try:
                    with open(config_path, 'r', encoding='utf-8') as f:
                        user_config = yaml.safe_load(f) or {}
                except (OSError, yaml.YAMLError) as e:
                    logger.warning("Failed to load config from %s: %s", config_path, e)
                    continue
                if not isinstance(user_config, dict):
                    logger.warning("Ignoring config %s: top level must be a mapping", config_path)
                    continue
                self._config.update(user_config)
                self._config_path = config_path
                return

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        env_mappings = {
            "SIEVEKIT_INDENT": "indent",
            "SIEVEKIT_NEWLINE": "newline",
            "SIEVEKIT_MAX_DEPTH": "max_depth",
            "SIEVEKIT_CHARSET": "charset",
            "SIEVEKIT_SERVER_CAPABILITIES": "server_capabilities",
        }

        for env_var, config_key in env_mappings.items():
            if env_var in os.environ:
                self._config[config_key] = os.environ[env_var]

    @property
    def config_path(self) -> Optional[Path]:
        """Path to loaded config file, or None if using defaults."""
        return self._config_path

    @property
    def indent(self) -> str:
        """One level of indentation."""
        value = self._config.get("indent", 4)
        if isinstance(value, str):
            if value.lower() in ("tab", "\t"):
                return "\t"
            if not value.strip().isdigit():
                raise ValueError(f"Invalid indent setting {value!r}")
            value = int(value)
        return " " * int(value)

    @property
    def newline(self) -> str:
        value = str(self._config.get("newline", "lf"))
        key = value if value in NEWLINES else value.lower()
        if key not in NEWLINES:
            raise ValueError(f"Invalid newline setting {value!r} (use 'lf' or 'crlf')")
        return NEWLINES[key]

    @property
    def multiline_threshold(self) -> int:
        return int(self._config.get("multiline_threshold", 1024))

    @property
    def max_depth(self) -> int:
        """Maximum nesting depth of blocks and tests."""
        return int(self._config.get("max_depth", DEFAULT_MAX_DEPTH))

    @property
    def charset(self) -> str:
        """Character encoding of script files."""
        return str(self._config.get("charset", "utf-8"))

    @property
    def server_capabilities(self) -> Optional[List[str]]:
        """Capabilities the server supports, or None when not configured."""
        value = self._config.get("server_capabilities")
        if value is None:
            return None
        if isinstance(value, str):
            return [name for name in value.replace(",", " ").split() if name]
        return [str(name) for name in value]

    def format_options(self) -> FormatOptions:
        """FormatOptions built from this configuration."""
        return FormatOptions(
            indent=self.indent,
            newline=self.newline,
            multiline_threshold=self.multiline_threshold,
            include_comments=bool(self._config.get("include_comments", True)),
        )

    def registry(self) -> CapabilityRegistry:
        """Capability registry seeded with the configured server capabilities."""
        return CapabilityRegistry(server_capabilities=self.server_capabilities)

    def to_dict(self) -> Dict[str, Any]:
        """Export current configuration as dict."""
        return {
            "indent": self.indent,
            "newline": self.newline,
            "multiline_threshold": self.multiline_threshold,
            "max_depth": self.max_depth,
            "charset": self.charset,
            "server_capabilities": self.server_capabilities,
            "config_file": str(self._config_path) if self._config_path else None,
        }


# Global config instance (lazy-loaded)
_config: Optional[SieveConfig] = None


def get_config(config_path: Optional[Path] = None) -> SieveConfig:
    """Get the global config instance, loading if needed."""
    global _config
    if _config is None or config_path is not None:
        _config = SieveConfig(config_path)
    return _config


def write_default_config(path: Optional[Path] = None) -> Path:
    """
    Write a default configuration file.

    Returns the path where config was written.
    """
    if path is None:
        path = Path.home() / ".sievekit" / "config.yaml"

    path.parent.mkdir(parents=True, exist_ok=True)

    config_content = """# sievekit configuration
#
# Any setting here can also be overridden with a SIEVEKIT_* environment variable.

# Formatting
indent: 4                    # spaces per nesting level, or "tab"
newline: lf                  # lf or crlf
multiline_threshold: 1024    # strings longer than this use text: form
include_comments: true

# Parsing
max_depth: 64
charset: utf-8

# Capabilities the server advertises (leave unset to allow everything)
# server_capabilities:
#   - fileinto
#   - vacation
#   - imap4flags
"""

    with open(path, 'w', encoding='utf-8') as f:
        f.write(config_content)

    return path
