# ABOUTME: Validation utilities for server cards, provided variables and instances
# ABOUTME: Every check reports all problems at once instead of stopping at the first
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mcph.models import DeclaredVariable, RecordStatus, ServerCard

if TYPE_CHECKING:
    from mcph.cards import RecordStore

RATING_FIELDS = ("aiAgentRating", "humanVerificationRating")
RATING_MIN = 1
RATING_MAX = 5

# ABOUTME: deploy fields substituted as text when a card is materialized
DEPLOY_STRING_FIELDS = ("command", "image", "package", "url")


@dataclass(frozen=True)
class ValidationError:
    """Represents a validation error or warning.

    ABOUTME: Uses frozen dataclass for immutability
    ABOUTME: Severity level distinguishes between blocking errors and warnings
    """
    subject: str
    message: str
    severity: str = "error"  # 'error' or 'warning'


@dataclass(frozen=True)
class VariableCheck:
    """Result of checking provided values against a card's declared variables."""
    valid: bool
    missing: list[DeclaredVariable] = field(default_factory=list)

    @property
    def missing_names(self) -> list[str]:
        return [var.name for var in self.missing]


def validate_variables(card: ServerCard, provided: Mapping[str, str | None]) -> VariableCheck:
    """Check that every required variable has a non-empty value.

    ABOUTME: A variable without an explicit required flag counts as required
    ABOUTME: Collects every missing variable, in declaration order

    Args:
        card: Card whose declared variables are checked
        provided: Variable name -> value

    Returns:
        VariableCheck with valid flag and missing variables

    Examples:
        >>> check = validate_variables(card, {})
        >>> check.valid, check.missing_names
        (False, ['GITHUB_TOKEN', 'GITHUB_ORG'])
    """
    missing = [
        var for var in card.variables
        if var.is_required and not provided.get(var.name)
    ]
    return VariableCheck(valid=not missing, missing=missing)


def _is_rating(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and RATING_MIN <= value <= RATING_MAX


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def validate_card_data(data: Any, source: str = "") -> list[ValidationError]:
    """Validate raw card content against the card schema.

    ABOUTME: Required: id, name, deploy.kind (unknown kinds are allowed)
    ABOUTME: Ratings are optional but must be integers 1-5 when present
    ABOUTME: Returns list of all validation errors (empty if valid)

    Args:
        data: Parsed JSON/YAML content
        source: File name or id used as the error subject

    Returns:
        List of ValidationError instances
    """
    if not isinstance(data, dict):
        return [ValidationError(source, "Card must be a mapping")]

    subject = str(data.get("id") or source)
    errors: list[ValidationError] = []

    for key in ("id", "name"):
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(ValidationError(subject, f"Missing required '{key}' field"))

    deploy = data.get("deploy")
    if not isinstance(deploy, dict):
        errors.append(ValidationError(subject, "Missing required 'deploy' section"))
    else:
        kind = deploy.get("kind")
        if not isinstance(kind, str) or not kind.strip():
            errors.append(ValidationError(subject, "Missing required 'deploy.kind' field"))
        for key in DEPLOY_STRING_FIELDS:
            if deploy.get(key) is not None and not isinstance(deploy[key], str):
                errors.append(ValidationError(subject, f"'deploy.{key}' must be a string"))
        if "args" in deploy:
            args = deploy["args"]
            if not isinstance(args, list):
                errors.append(ValidationError(subject, "'deploy.args' must be a list"))
            elif not all(_is_scalar(arg) for arg in args):
                errors.append(ValidationError(subject, "'deploy.args' entries must be strings or numbers"))
        if "headers" in deploy:
            headers = deploy["headers"]
            if not isinstance(headers, dict):
                errors.append(ValidationError(subject, "'deploy.headers' must be a mapping"))
            elif not all(isinstance(value, str) for value in headers.values()):
                errors.append(ValidationError(subject, "'deploy.headers' values must be strings"))

    usefulness = data.get("agenticUsefulness")
    if usefulness is not None:
        if not isinstance(usefulness, dict):
            errors.append(ValidationError(subject, "'agenticUsefulness' must be a mapping"))
        else:
            for rating_field in RATING_FIELDS:
                if rating_field in usefulness and not _is_rating(usefulness[rating_field]):
                    errors.append(ValidationError(
                        subject,
                        f"'{rating_field}' must be an integer between {RATING_MIN} and {RATING_MAX}, "
                        f"got {usefulness[rating_field]!r}",
                    ))

    status = data.get("status", RecordStatus.ACTIVE.value)
    if not isinstance(status, str) or status not in {member.value for member in RecordStatus}:
        errors.append(ValidationError(subject, f"Invalid status '{status}'. Must be 'active' or 'deprecated'."))

    env_schema = data.get("envSchema")
    if env_schema is not None:
        if not isinstance(env_schema, list):
            errors.append(ValidationError(subject, "'envSchema' must be a list"))
        else:
            for index, entry in enumerate(env_schema):
                if not isinstance(entry, dict) or not isinstance(entry.get("name"), str) or not entry["name"]:
                    errors.append(ValidationError(subject, f"envSchema[{index}] is missing 'name'"))
                elif "required" in entry and not isinstance(entry["required"], bool):
                    errors.append(ValidationError(subject, f"envSchema[{index}].required must be a boolean"))

    tags = data.get("tags")
    if tags is not None and not isinstance(tags, list):
        errors.append(ValidationError(subject, "'tags' must be a list"))

    return errors


def validate_instance_reference(
    instance_id: str,
    record_id: str,
    store: "RecordStore",
) -> ValidationError | None:
    """Check that a configured instance points at a known card.

    ABOUTME: A dangling reference is a validation error, never an exception
    """
    if store.get(record_id) is None:
        return ValidationError(
            subject=instance_id,
            message=f"Instance '{instance_id}' references unknown server card '{record_id}'",
        )
    return None


@dataclass(frozen=True)
class FoundationServer:
    """A server that should be configured before custom servers are added.

    ABOUTME: Configuring any of the alternatives counts as configuring this server
    """
    id: str
    rationale: str = ""
    alternatives: tuple[str, ...] = ()

    def is_satisfied_by(self, configured_ids: Iterable[str]) -> bool:
        configured = set(configured_ids)
        return self.id in configured or any(alt in configured for alt in self.alternatives)


# ABOUTME: Foundation servers gating custom server additions
REQUIRED_FOUNDATION_SERVERS = (
    FoundationServer("serena", "Analyzes custom server code structure"),
    FoundationServer("sequentialthinking", "Plans the integration approach"),
    FoundationServer("context7", "Fetches documentation"),
)

RECOMMENDED_FOUNDATION_SERVERS = (
    FoundationServer("memory", "Remembers setup decisions across sessions"),
    FoundationServer("github-official", "Looks up the custom server's repository", alternatives=("github", "gitlab")),
)


@dataclass(frozen=True)
class MinimumServersCheck:
    """Result of checking configured servers against the foundation set."""
    valid: bool
    missing_required: list[FoundationServer] = field(default_factory=list)
    missing_recommended: list[FoundationServer] = field(default_factory=list)


def validate_minimum_servers(
    configured_ids: Iterable[str],
    required: Iterable[FoundationServer] = REQUIRED_FOUNDATION_SERVERS,
    recommended: Iterable[FoundationServer] = RECOMMENDED_FOUNDATION_SERVERS,
) -> MinimumServersCheck:
    """Check that the foundation servers are configured.

    ABOUTME: Only missing required servers make the check invalid
    ABOUTME: Missing recommended servers are reported for display

    Args:
        configured_ids: Ids of configured instances
        required: Servers that must be present (or one of their alternatives)
        recommended: Servers that should be present

    Returns:
        MinimumServersCheck with valid flag and the missing servers, in table order

    Examples:
        >>> check = validate_minimum_servers(["serena", "memory"])
        >>> check.valid, [server.id for server in check.missing_required]
        (False, ['sequentialthinking', 'context7'])
    """
    configured = set(configured_ids)
    missing_required = [server for server in required if not server.is_satisfied_by(configured)]
    missing_recommended = [server for server in recommended if not server.is_satisfied_by(configured)]
    return MinimumServersCheck(
        valid=not missing_required,
        missing_required=missing_required,
        missing_recommended=missing_recommended,
    )
