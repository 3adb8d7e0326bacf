# ABOUTME: Backup utilities for settings, env and status files.
# ABOUTME: Handles timestamped backups with automatic retention cleanup (keep last 10 per file name).
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

# ABOUTME: Default number of backups kept per source file name
MAX_BACKUPS_PER_FILE = 10

# ABOUTME: Filesystem-safe ISO-8601 stamp, e.g. 2026-10-19T14-30-22-123456Z
TIMESTAMP_PATTERN = r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z"


def backup_timestamp(now: datetime | None = None) -> str:
    """Return a UTC ISO-8601 timestamp with ':' and '.' replaced by '-'.

    Examples:
        >>> backup_timestamp(datetime(2026, 10, 19, 14, 30, 22, 123456, tzinfo=timezone.utc))
        '2026-10-19T14-30-22-123456Z'
    """
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    iso = moment.replace(tzinfo=None).isoformat(timespec="microseconds")
    return iso.replace(":", "-").replace(".", "-") + "Z"


def create_backup(
    source_path: Path,
    backup_dir: Path,
    max_backups: int = MAX_BACKUPS_PER_FILE,
    now: datetime | None = None,
) -> Path:
    """Create a timestamped backup of a file.

    ABOUTME: Backup format: {filename}.{timestamp}
    ABOUTME: Uses shutil.copy2() to preserve file metadata
    ABOUTME: Prunes older backups of the same file name afterwards

    Args:
        source_path: Path to file to backup
        backup_dir: Directory where backup should be created
        max_backups: Backups of this file name to keep
        now: Override for the current time

    Returns:
        Path to created backup file

    Raises:
        FileNotFoundError: If source_path doesn't exist
        OSError: If backup creation fails

    Examples:
        >>> backup_path = create_backup(Path("~/.claude.json").expanduser(), backup_dir)
        >>> backup_path.name
        '.claude.json.2026-10-19T14-30-22-123456Z'
    """
    if not source_path.exists():
        raise FileNotFoundError(f"Source file not found: {source_path}")

    backup_dir.mkdir(parents=True, exist_ok=True)

    backup_path = backup_dir / f"{source_path.name}.{backup_timestamp(now)}"
    shutil.copy2(source_path, backup_path)

    cleanup_old_backups(backup_dir, source_path.name, max_backups)

    return backup_path


def list_backups(backup_dir: Path, filename: str) -> list[Path]:
    """Return backups of filename, newest first.

    ABOUTME: Only names of the exact form {filename}.{timestamp} are matched
    ABOUTME: Sorting by name is chronological because the stamp is zero-padded
    """
    if not backup_dir.exists():
        return []

    pattern = re.compile(rf"^{re.escape(filename)}\.{TIMESTAMP_PATTERN}$")
    backups = [
        path for path in backup_dir.iterdir()
        if path.is_file() and pattern.match(path.name)
    ]
    backups.sort(key=lambda path: path.name, reverse=True)
    return backups


def latest_backup(backup_dir: Path, filename: str) -> Path | None:
    """Most recent backup of filename, or None."""
    backups = list_backups(backup_dir, filename)
    return backups[0] if backups else None


def cleanup_old_backups(
    backup_dir: Path,
    filename: str,
    max_backups: int = MAX_BACKUPS_PER_FILE,
) -> list[Path]:
    """Remove old backup files, keeping only the most recent for filename.

    ABOUTME: Sorts by name descending (newest first)
    ABOUTME: Logs warnings on errors but does not raise exceptions

    Args:
        backup_dir: Directory containing backup files
        filename: Source file name whose backups are pruned
        max_backups: Maximum backups to keep (default 10)

    Returns:
        List of paths that were deleted
    """
    deleted_files: list[Path] = []

    try:
        backups = list_backups(backup_dir, filename)
    except OSError as e:
        logger.warning(f"Failed to list backups in {backup_dir}: {e}")
        return deleted_files

    for file_path in backups[max_backups:]:
        try:
            file_path.unlink()
            deleted_files.append(file_path)
            logger.debug(f"Deleted old backup: {file_path}")
        except OSError as e:
            logger.warning(f"Failed to delete old backup {file_path}: {e}")

    return deleted_files


def backup_before_write(
    target: Path,
    backup_dir: Path,
    max_backups: int = MAX_BACKUPS_PER_FILE,
) -> Path | None:
    """Back up target if it exists, never raising.

    ABOUTME: A failed backup is logged and must not block the following write
    ABOUTME: Returns None when there was nothing to back up or the copy failed
    """
    if not target.exists():
        return None

    try:
        return create_backup(target, backup_dir, max_backups)
    except OSError as e:
        logger.warning(f"Failed to back up {target}: {e}")
        return None


def restore_backup(backup_path: Path, target: Path) -> None:
    """Copy a backup over target.

    Raises:
        FileNotFoundError: If backup_path doesn't exist
    """
    if not backup_path.exists():
        raise FileNotFoundError(f"Backup not found: {backup_path}")
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(backup_path, target)
