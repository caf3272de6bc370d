"""Project-level configuration and scaffolding."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


CONFIG_FILENAME = "sheetcalc.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "error_marker": "#ERR",
    "max_rows": 1000,
    "max_cols": 200,
    "display_precision": 10,
    "logging_enabled": True,
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
}

DEFAULT_CONFIG_YAML = """\
# sheetcalc project config
error_marker: "#ERR"
max_rows: 1000
max_cols: 200
display_precision: 10
logging_enabled: true
logging_fsync: false
"""

DEMO_SHEET = """\
# sheetcalc sheet v1
name: main
rows: 6
cols: 3
cells:
  A1: Price
  B1: 10
  A2: Qty
  B2: 5
  A3: Subtotal
  B3: "=B1 * B2"
  A4: Tax
  B4: "=ROUND(B3 * 0.0825, 2)"
  A5: Total
  B5: "=SUM(B3:B4)"
  A6: Large order
  B6: "=IF(B5 >= 50, 1, 0)"
"""


def load_project_config(project_dir: Path) -> dict[str, Any]:
    """Load project configuration from ``sheetcalc.yaml``, with defaults.

    Args:
        project_dir: Root of the sheetcalc project.

    Returns:
        Merged configuration dict.

    Raises:
        ValueError: If the config file is not valid YAML or not a mapping.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = Path(project_dir) / CONFIG_FILENAME
    if config_path.exists():
        try:
            user_config = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"{config_path} is not valid YAML: {exc}") from exc
        if not isinstance(user_config, dict):
            raise ValueError(f"{config_path} must contain a mapping")
        config.update(user_config)
    return config


def scaffold_project(directory: Path) -> Path:
    """Create a new project with a default config and a demo sheet.

    Args:
        directory: Target directory (created if missing).

    Returns:
        The project directory.

    Raises:
        FileExistsError: If a config file already exists there.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    config_path = directory / CONFIG_FILENAME
    if config_path.exists():
        raise FileExistsError(f"Project already exists: {config_path}")

    config_path.write_text(DEFAULT_CONFIG_YAML)
    sheets_dir = directory / "sheets"
    sheets_dir.mkdir(exist_ok=True)
    (sheets_dir / "main.yaml").write_text(DEMO_SHEET)
    (directory / "logs").mkdir(exist_ok=True)
    return directory
