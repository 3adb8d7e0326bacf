# Core data models for mcph
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

# ABOUTME: Matches ${VAR_NAME} placeholders in card templates and settings entries
PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

T = TypeVar("T")


class NotFoundError(LookupError):
    """Raised when a record, instance, feature or todo id is unknown."""


class TransitionError(ValueError):
    """Raised when a todo is moved backwards through its lifecycle."""


class DeploymentKind(Enum):
    """How a server card is launched.

    ABOUTME: Closed set of deployment strategies, one merge handler per member
    ABOUTME: UNKNOWN is the explicit fallback for kinds added by newer catalogs
    """
    CONTAINER = "container"
    PACKAGE_RUNNER = "package-runner"
    NATIVE_BINARY = "native-binary"
    HTTP_ENDPOINT = "http-endpoint"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "DeploymentKind":
        """Map a card's kind string (including legacy spellings) to a member."""
        if not value:
            return cls.UNKNOWN
        normalized = str(value).strip().lower()
        return _KIND_ALIASES.get(normalized, cls.UNKNOWN)


_KIND_ALIASES: dict[str, DeploymentKind] = {
    "container": DeploymentKind.CONTAINER,
    "docker": DeploymentKind.CONTAINER,
    "package-runner": DeploymentKind.PACKAGE_RUNNER,
    "npx": DeploymentKind.PACKAGE_RUNNER,
    "native-binary": DeploymentKind.NATIVE_BINARY,
    "native": DeploymentKind.NATIVE_BINARY,
    "http-endpoint": DeploymentKind.HTTP_ENDPOINT,
    "http": DeploymentKind.HTTP_ENDPOINT,
    "sse": DeploymentKind.HTTP_ENDPOINT,
}


class RecordStatus(Enum):
    ACTIVE = "active"
    DEPRECATED = "deprecated"


class Scope(Enum):
    GLOBAL = "global"
    PROJECT = "project"


class TodoState(Enum):
    """Lifecycle of a status todo: pending -> active -> done."""
    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"

    @property
    def rank(self) -> int:
        return _TODO_ORDER.index(self)

    @classmethod
    def parse(cls, value: str) -> "TodoState":
        """Accept canonical names plus the legacy bucket spellings."""
        normalized = str(value).strip().lower()
        if normalized in _TODO_ALIASES:
            return _TODO_ALIASES[normalized]
        raise ValueError(f"Unknown todo state '{value}'. Must be pending, active or done.")


_TODO_ORDER = [TodoState.PENDING, TodoState.ACTIVE, TodoState.DONE]

_TODO_ALIASES: dict[str, TodoState] = {
    "pending": TodoState.PENDING,
    "active": TodoState.ACTIVE,
    "in_progress": TodoState.ACTIVE,
    "in-progress": TodoState.ACTIVE,
    "done": TodoState.DONE,
    "completed": TodoState.DONE,
    "completed_today": TodoState.DONE,
}


@dataclass(frozen=True)
class DeclaredVariable:
    """A configuration input a card says it needs.

    ABOUTME: required is kept as declared (None when the card omits it)
    ABOUTME: is_required treats anything but an explicit False as required
    """
    name: str
    description: str = ""
    required: bool | None = None
    example: str | None = None

    @property
    def is_required(self) -> bool:
        return self.required is not False


@dataclass(frozen=True)
class DeploymentSpec:
    """Command template for launching a card's server."""
    command: str | None = None
    args: tuple[str, ...] = ()
    image: str | None = None
    package: str | None = None
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ServerCard:
    """Immutable descriptive record for one MCP server.

    ABOUTME: Loaded once from a JSON/YAML card file and never mutated
    ABOUTME: rating_a is the AI agent rating, rating_b the human verification rating
    """
    id: str
    name: str
    deployment_kind: DeploymentKind
    deployment: DeploymentSpec = field(default_factory=DeploymentSpec)
    description: str = ""
    variables: tuple[DeclaredVariable, ...] = ()
    rating_a: int | None = None
    rating_b: int | None = None
    status: RecordStatus = RecordStatus.ACTIVE
    tags: tuple[str, ...] = ()
    custom: bool = False

    @property
    def required_variables(self) -> list[DeclaredVariable]:
        return [var for var in self.variables if var.is_required]

    @property
    def optional_variables(self) -> list[DeclaredVariable]:
        return [var for var in self.variables if not var.is_required]

    @property
    def variable_names(self) -> list[str]:
        return [var.name for var in self.variables]

    @classmethod
    def from_dict(cls, data: dict[str, Any], custom: bool = False) -> "ServerCard":
        """Build a card from its on-disk mapping.

        ABOUTME: Assumes data already passed validate_card_data()
        ABOUTME: A native card whose command is a URL becomes an http endpoint

        Args:
            data: Parsed JSON/YAML card content
            custom: True when loaded from the user override directory

        Returns:
            ServerCard instance
        """
        deploy = data.get("deploy") or {}
        kind = DeploymentKind.parse(deploy.get("kind"))
        command = deploy.get("command")
        url = deploy.get("url")

        if kind is DeploymentKind.NATIVE_BINARY and str(command or "").startswith("http"):
            kind = DeploymentKind.HTTP_ENDPOINT
            url = url or command
            command = None

        deployment = DeploymentSpec(
            command=command,
            args=tuple(str(arg) for arg in deploy.get("args") or []),
            image=deploy.get("image"),
            package=deploy.get("package"),
            url=url,
            headers={str(k): str(v) for k, v in (deploy.get("headers") or {}).items()},
        )

        variables = tuple(
            DeclaredVariable(
                name=str(entry["name"]),
                description=str(entry.get("description", "")),
                required=entry.get("required"),
                example=entry.get("example"),
            )
            for entry in data.get("envSchema") or []
        )

        usefulness = data.get("agenticUsefulness") or {}

        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            deployment_kind=kind,
            deployment=deployment,
            description=str(data.get("description", "")),
            variables=variables,
            rating_a=usefulness.get("aiAgentRating"),
            rating_b=usefulness.get("humanVerificationRating"),
            status=RecordStatus(data.get("status", RecordStatus.ACTIVE.value)),
            tags=tuple(str(tag) for tag in data.get("tags") or []),
            custom=custom or bool(data.get("custom", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk card format (inverse of from_dict)."""
        deploy: dict[str, Any] = {"kind": self.deployment_kind.value}
        if self.deployment.command:
            deploy["command"] = self.deployment.command
        if self.deployment.args:
            deploy["args"] = list(self.deployment.args)
        if self.deployment.image:
            deploy["image"] = self.deployment.image
        if self.deployment.package:
            deploy["package"] = self.deployment.package
        if self.deployment.url:
            deploy["url"] = self.deployment.url
        if self.deployment.headers:
            deploy["headers"] = dict(self.deployment.headers)

        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "deploy": deploy,
        }

        if self.variables:
            env_schema = []
            for var in self.variables:
                entry: dict[str, Any] = {"name": var.name, "description": var.description}
                if var.required is not None:
                    entry["required"] = var.required
                if var.example is not None:
                    entry["example"] = var.example
                env_schema.append(entry)
            result["envSchema"] = env_schema

        usefulness: dict[str, int] = {}
        if self.rating_a is not None:
            usefulness["aiAgentRating"] = self.rating_a
        if self.rating_b is not None:
            usefulness["humanVerificationRating"] = self.rating_b
        if usefulness:
            result["agenticUsefulness"] = usefulness

        if self.tags:
            result["tags"] = list(self.tags)
        if self.custom:
            result["custom"] = True

        return result


@dataclass(frozen=True)
class ConfiguredInstance:
    """Runnable configuration materialized from a card.

    ABOUTME: record_id is a weak reference, resolved through the RecordStore
    ABOUTME: Unresolved ${VAR} placeholders mark a partial configuration
    """
    record_id: str
    scope: Scope = Scope.GLOBAL
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    provided_variables: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_http(self) -> bool:
        return self.url is not None and self.command is None

    def unresolved_placeholders(self) -> list[str]:
        """Names of ${VAR} placeholders still present, in first-seen order."""
        values: list[str] = []
        if self.command:
            values.append(self.command)
        values.extend(self.args)
        values.extend(self.env.values())
        if self.url:
            values.append(self.url)
        values.extend(self.headers.values())

        names: list[str] = []
        for value in values:
            for match in PLACEHOLDER_PATTERN.finditer(value):
                if match.group(1) not in names:
                    names.append(match.group(1))
        return names

    @property
    def needs_configuration(self) -> bool:
        return bool(self.unresolved_placeholders())

    def to_entry(self) -> dict[str, Any]:
        """Convert to a settings-file entry (mcpServers value)."""
        entry: dict[str, Any] = {}
        if self.is_http:
            entry["url"] = self.url
            if self.headers:
                entry["headers"] = dict(self.headers)
        else:
            entry["command"] = self.command
            entry["args"] = list(self.args)
            if self.env:
                entry["env"] = dict(self.env)
        if self.metadata:
            entry["metadata"] = dict(self.metadata)
        return entry

    @classmethod
    def from_entry(
        cls,
        instance_id: str,
        entry: dict[str, Any],
        scope: Scope = Scope.GLOBAL,
    ) -> "ConfiguredInstance":
        """Parse a settings-file entry back into an instance.

        ABOUTME: Provided variables are not stored in settings; they start empty
        """
        return cls(
            record_id=instance_id,
            scope=scope,
            command=entry.get("command"),
            args=[str(arg) for arg in entry.get("args") or []],
            env={str(k): str(v) for k, v in (entry.get("env") or {}).items()},
            url=entry.get("url"),
            headers={str(k): str(v) for k, v in (entry.get("headers") or {}).items()},
            metadata=dict(entry.get("metadata") or {}),
        )


@dataclass
class SettingsDocument:
    """Global settings file contents.

    ABOUTME: instances maps instance id to its raw settings entry (mcpServers)
    ABOUTME: extra preserves every other top-level key of the settings file
    """
    instances: dict[str, dict[str, Any]] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SettingsDocument":
        extra = {key: value for key, value in data.items() if key != "mcpServers"}
        return cls(instances=dict(data.get("mcpServers") or {}), extra=extra)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data["mcpServers"] = self.instances
        return data


@dataclass
class Feature:
    """A tracked work area with its own completion percentage."""
    key: str
    name: str
    completion: int = 0
    notes: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class TodoItem:
    id: str
    text: str
    state: TodoState = TodoState.PENDING


@dataclass
class StatusDocument:
    """Project status document (PROJECT_STATUS.json).

    ABOUTME: overall_completion is derived; StatusStore recomputes it on every write
    ABOUTME: todos use the canonical flat shape, legacy buckets are migrated on read
    """
    project: str
    overall_completion: int = 0
    last_updated: str = ""
    features: dict[str, Feature] = field(default_factory=dict)
    todos: list[TodoItem] = field(default_factory=list)
    critical_notes: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


class ReadErrorKind(Enum):
    ABSENT = "absent"
    CORRUPT = "corrupt"


@dataclass(frozen=True)
class ReadError:
    """Why a document could not be read."""
    kind: ReadErrorKind
    message: str


@dataclass(frozen=True)
class ReadResult(Generic[T]):
    """Outcome of reading a document from disk.

    ABOUTME: document holds the parsed value, or the default when error is set
    ABOUTME: Callers decide whether to coalesce or to act on the error kind
    """
    document: T
    error: ReadError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
