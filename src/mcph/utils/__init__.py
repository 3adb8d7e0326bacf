# ABOUTME: Utility modules for mcph
# ABOUTME: Exports backup, file, placeholder and validation helpers

from mcph.utils.backup import (
    backup_before_write,
    cleanup_old_backups,
    create_backup,
    latest_backup,
    list_backups,
    restore_backup,
)
from mcph.utils.env import format_env_file, parse_env_file, substitute_placeholders
from mcph.utils.files import atomic_write, read_json_file, write_json_file
from mcph.utils.validation import (
    FoundationServer,
    MinimumServersCheck,
    ValidationError,
    VariableCheck,
    validate_card_data,
    validate_instance_reference,
    validate_minimum_servers,
    validate_variables,
)

__all__ = [
    "backup_before_write",
    "cleanup_old_backups",
    "create_backup",
    "latest_backup",
    "list_backups",
    "restore_backup",
    "format_env_file",
    "parse_env_file",
    "substitute_placeholders",
    "atomic_write",
    "read_json_file",
    "write_json_file",
    "FoundationServer",
    "MinimumServersCheck",
    "ValidationError",
    "VariableCheck",
    "validate_card_data",
    "validate_instance_reference",
    "validate_minimum_servers",
    "validate_variables",
]
