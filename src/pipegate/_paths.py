"""Centralized path resolution for the pipegate package.

This is the ONLY module that touches __file__ or computes package-internal
directory paths. Every other module imports from here.
"""

from pathlib import Path

_PACKAGE_DIR = Path(__file__).resolve().parent


def config_dir() -> Path:
    """Return the packaged config/ directory path."""
    return _PACKAGE_DIR / "config"


def defaults_path() -> Path:
    """Return the path to config/defaults.yaml."""
    return config_dir() / "defaults.yaml"


def rules_path() -> Path:
    """Return the path to config/rules.yaml."""
    return config_dir() / "rules.yaml"


def theme_path() -> Path:
    """Return the path to config/theme.yaml."""
    return config_dir() / "theme.yaml"
