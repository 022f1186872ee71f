"""yaml_loader — unified YAML loading for Pipegate configuration files.

Wraps PyYAML's ``safe_load`` behind a single entry point shared by the config
layer (defaults and rule catalog), the theme and the engine's conventions
loader.  Workflow documents themselves are NOT loaded here: they go through
``lib.parser``, which keeps line information that ``safe_load`` throws away.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

import yaml


def load_yaml(path: Union[str, Path]) -> Optional[Any]:
    """Load a YAML file and return its contents.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML contents, or None if the file is empty.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
    """
    with open(path, "r", encoding="utf-8") as fh:
        return yaml.safe_load(fh)
