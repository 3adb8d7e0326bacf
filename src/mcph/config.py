# Per-invocation context for mcph
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import tomli

# ABOUTME: State directory name under the user's home
STATE_DIR_NAME = ".mcp-helper"

# ABOUTME: Optional TOML overrides file inside the state directory
CONFIG_FILE_NAME = "config.toml"

# ABOUTME: Number of backups kept per file name
DEFAULT_MAX_BACKUPS = 10


@dataclass(frozen=True)
class HelperContext:
    """Every path and tunable used by one mcph invocation.

    ABOUTME: Built once by load_context() and passed to each store constructor
    ABOUTME: Replaces module-level home-directory globals
    """
    home: Path
    project_dir: Path
    settings_path: Path
    project_env_path: Path
    state_dir: Path
    backup_dir: Path
    catalog_dir: Path
    user_cards_dir: Path
    status_path: Path
    status_backup_dir: Path
    max_backups: int = DEFAULT_MAX_BACKUPS
    status_weights: dict[str, float] | None = field(default=None)


def get_config_path(home: Path | None = None) -> Path:
    """Return the path to the optional mcph TOML config.

    ABOUTME: Returns ~/.mcp-helper/config.toml
    ABOUTME: File may not exist; defaults apply when it is missing
    """
    return (home or Path.home()) / STATE_DIR_NAME / CONFIG_FILE_NAME


def default_context(home: Path | None = None, project_dir: Path | None = None) -> HelperContext:
    """Build a context from built-in defaults only."""
    home = home or Path.home()
    project_dir = project_dir or Path.cwd()
    state_dir = home / STATE_DIR_NAME

    return HelperContext(
        home=home,
        project_dir=project_dir,
        settings_path=home / ".claude.json",
        project_env_path=project_dir / ".env",
        state_dir=state_dir,
        backup_dir=state_dir / "backups",
        catalog_dir=state_dir / "catalog",
        user_cards_dir=state_dir / "custom-servers",
        status_path=project_dir / "PROJECT_STATUS.json",
        status_backup_dir=state_dir / "status-backups",
    )


def load_context(
    home: Path | None = None,
    project_dir: Path | None = None,
    config_path: Path | None = None,
) -> HelperContext:
    """Build the invocation context, applying TOML overrides if present.

    ABOUTME: Uses tomli to parse ~/.mcp-helper/config.toml
    ABOUTME: Relative paths in [paths] resolve against the state directory
    ABOUTME: Fail-fast on TOML syntax errors with a clear message

    Args:
        home: Home directory (defaults to Path.home())
        project_dir: Project directory (defaults to the current directory)
        config_path: Explicit TOML path (defaults to get_config_path(home))

    Returns:
        HelperContext with defaults and overrides applied

    Raises:
        ValueError: If the TOML file is invalid or has wrongly typed values

    Example config.toml:
        [paths]
        catalog_dir = "/opt/mcp-helper/catalog"
        settings_path = "~/.claude.json"

        [backups]
        keep = 20

        [status.weights]
        core_functionality = 0.4
        testing = 0.2
    """
    context = default_context(home, project_dir)
    path = config_path if config_path is not None else get_config_path(context.home)

    if not path.exists():
        return context

    try:
        with open(path, "rb") as f:
            data = tomli.load(f)
    except tomli.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    return _apply_overrides(context, data, path)


_PATH_KEYS = (
    "settings_path",
    "project_env_path",
    "backup_dir",
    "catalog_dir",
    "user_cards_dir",
    "status_path",
    "status_backup_dir",
)


def _apply_overrides(context: HelperContext, data: dict[str, Any], source: Path) -> HelperContext:
    changes: dict[str, Any] = {}

    paths = data.get("paths", {})
    for key in _PATH_KEYS:
        if key in paths:
            value = Path(str(paths[key])).expanduser()
            if not value.is_absolute():
                value = context.state_dir / value
            changes[key] = value

    backups = data.get("backups", {})
    if "keep" in backups:
        keep = backups["keep"]
        if not isinstance(keep, int) or isinstance(keep, bool) or keep < 1:
            raise ValueError(f"{source}: [backups] keep must be a positive integer, got {keep!r}")
        changes["max_backups"] = keep

    weights = data.get("status", {}).get("weights")
    if weights is not None:
        table: dict[str, float] = {}
        for key, value in weights.items():
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ValueError(
                    f"{source}: [status.weights] {key} must be a non-negative number, got {value!r}"
                )
            table[key] = float(value)
        changes["status_weights"] = table

    return replace(context, **changes)
