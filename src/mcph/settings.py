# Global settings and project env file storage
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from mcph.config import HelperContext
from mcph.models import (
    ConfiguredInstance,
    ReadError,
    ReadErrorKind,
    ReadResult,
    Scope,
    SettingsDocument,
)
from mcph.utils.backup import backup_before_write, latest_backup, restore_backup
from mcph.utils.env import find_placeholders, format_env_file, parse_env_file
from mcph.utils.files import atomic_write, read_json_file, write_json_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstanceSummary:
    """One configured instance as shown by list commands."""
    id: str
    scope: Scope
    entry: dict
    has_project_overrides: bool


class SettingsStore:
    """Reads and writes ~/.claude.json and the project .env file.

    ABOUTME: Every write backs up the current file first, then replaces it atomically
    ABOUTME: Reads degrade to an empty document; read_result() exposes why
    ABOUTME: Backup and prune failures are logged, write failures raise
    """

    def __init__(self, context: HelperContext) -> None:
        self._context = context

    @property
    def settings_path(self) -> Path:
        return self._context.settings_path

    @property
    def env_path(self) -> Path:
        return self._context.project_env_path

    # Settings document

    def read_result(self) -> ReadResult[SettingsDocument]:
        """Read the settings document, reporting absent and corrupt files.

        Returns:
            ReadResult whose document is the empty default when error is set
        """
        path = self.settings_path
        if not path.exists():
            return ReadResult(
                SettingsDocument(),
                ReadError(ReadErrorKind.ABSENT, f"Settings file not found: {path}"),
            )

        try:
            data = read_json_file(path)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            return ReadResult(SettingsDocument(), ReadError(ReadErrorKind.CORRUPT, str(e)))

        servers = data.get("mcpServers")
        if servers is not None and not isinstance(servers, dict):
            return ReadResult(
                SettingsDocument(),
                ReadError(ReadErrorKind.CORRUPT, f"'mcpServers' in {path} is not an object"),
            )

        return ReadResult(SettingsDocument.from_dict(data))

    def read(self) -> SettingsDocument:
        """Read the settings document, falling back to an empty one.

        ABOUTME: Never raises; a corrupt file is logged as a warning
        """
        result = self.read_result()
        if result.error is not None and result.error.kind is ReadErrorKind.CORRUPT:
            logger.warning(f"Using empty settings: {result.error.message}")
        return result.document

    def write(self, document: SettingsDocument) -> Path | None:
        """Back up the current settings file, then replace it.

        Returns:
            Path of the backup taken, or None if none was made

        Raises:
            OSError: If the settings file cannot be written
        """
        backup = backup_before_write(
            self.settings_path, self._context.backup_dir, self._context.max_backups
        )
        write_json_file(self.settings_path, document.to_dict())
        return backup

    def latest_backup(self) -> Path | None:
        return latest_backup(self._context.backup_dir, self.settings_path.name)

    def restore_latest(self) -> Path:
        """Restore the settings file from its most recent backup.

        Raises:
            FileNotFoundError: If no backup exists
        """
        backup = self.latest_backup()
        if backup is None:
            raise FileNotFoundError(f"No backups found for {self.settings_path.name}")
        restore_backup(backup, self.settings_path)
        return backup

    # Configured instances

    def get_instance(self, instance_id: str) -> ConfiguredInstance | None:
        """Configured instance by id, or None if absent."""
        entry = self.read().instances.get(instance_id)
        if entry is None:
            return None
        project_env = self.read_project_variables()
        scope = Scope.PROJECT if _has_overrides(entry, project_env) else Scope.GLOBAL
        return ConfiguredInstance.from_entry(instance_id, entry, scope=scope)

    def add_instance(self, instance_id: str, instance: ConfiguredInstance) -> None:
        """Insert or replace an instance in the settings document.

        Raises:
            OSError: If the settings file cannot be written
        """
        document = self.read()
        document.instances[instance_id] = instance.to_entry()
        self.write(document)

    def remove_instance(self, instance_id: str) -> bool:
        """Remove an instance from the settings document.

        ABOUTME: Leaves the project env file untouched; other servers may share its variables

        Returns:
            True if the instance was found and removed
        """
        document = self.read()
        if instance_id not in document.instances:
            return False

        del document.instances[instance_id]
        self.write(document)
        return True

    def list_instances(self) -> list[InstanceSummary]:
        """All configured instances with their detected scope."""
        project_env = self.read_project_variables()
        summaries: list[InstanceSummary] = []
        for instance_id, entry in self.read().instances.items():
            overrides = _has_overrides(entry, project_env)
            summaries.append(InstanceSummary(
                id=instance_id,
                scope=Scope.PROJECT if overrides else Scope.GLOBAL,
                entry=entry,
                has_project_overrides=overrides,
            ))
        return summaries

    # Project variables

    def read_project_variables(self) -> dict[str, str]:
        """Parse the project env file into a mapping.

        ABOUTME: Missing or unreadable file -> empty mapping (logged)
        """
        path = self.env_path
        if not path.exists():
            return {}

        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read project env file {path}: {e}")
            return {}

        return parse_env_file(content)

    def write_project_variables(self, variables: Mapping[str, str], merge: bool = True) -> Path | None:
        """Write variables as export KEY="value" lines.

        ABOUTME: With merge=True new values are layered over the existing file
        ABOUTME: Backs up the existing file first

        Returns:
            Path of the backup taken, or None

        Raises:
            OSError: If the env file cannot be written
        """
        merged: dict[str, str] = self.read_project_variables() if merge else {}
        merged.update(variables)

        backup = backup_before_write(
            self.env_path, self._context.backup_dir, self._context.max_backups
        )
        atomic_write(self.env_path, format_env_file(merged))
        return backup

    def resolve_variables(self, names: Iterable[str]) -> dict[str, str]:
        """Look up values for names in the project env file, then the process env.

        ABOUTME: Names with no non-empty value anywhere are omitted
        """
        project_env = self.read_project_variables()
        resolved: dict[str, str] = {}
        for name in names:
            value = project_env.get(name) or os.environ.get(name)
            if value:
                resolved[name] = value
        return resolved


def _has_overrides(entry: Mapping, project_env: Mapping[str, str]) -> bool:
    """True when a placeholder referenced by entry is defined in the project env."""
    values: list[str] = []
    for key in ("command", "url"):
        if isinstance(entry.get(key), str):
            values.append(entry[key])
    values.extend(str(arg) for arg in entry.get("args") or [])
    for key in ("env", "headers"):
        values.extend(str(value) for value in (entry.get(key) or {}).values())

    return any(
        project_env.get(name)
        for value in values
        for name in find_placeholders(value)
    )
