# mcph - MCP server configuration helper
# ABOUTME: Version information
__version__ = "0.1.0"

# ABOUTME: Export core data models
# ABOUTME: Export context loading and the stores built from it
from mcph.cards import RecordStore
from mcph.config import HelperContext, get_config_path, load_context
from mcph.models import (
    ConfiguredInstance,
    DeploymentKind,
    NotFoundError,
    Scope,
    ServerCard,
    SettingsDocument,
    StatusDocument,
    TransitionError,
)
from mcph.settings import SettingsStore
from mcph.status import StatusStore

# ABOUTME: Export utility functions
from mcph.utils import ValidationError, create_backup, validate_variables

__all__ = [
    "__version__",
    "ConfiguredInstance",
    "DeploymentKind",
    "NotFoundError",
    "Scope",
    "ServerCard",
    "SettingsDocument",
    "StatusDocument",
    "TransitionError",
    "HelperContext",
    "get_config_path",
    "load_context",
    "RecordStore",
    "SettingsStore",
    "StatusStore",
    "ValidationError",
    "create_backup",
    "validate_variables",
]
