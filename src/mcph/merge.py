# Materialization of server cards into settings entries
import copy
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from mcph.models import PLACEHOLDER_PATTERN, ConfiguredInstance, DeploymentKind, Scope, ServerCard
from mcph.utils.env import find_placeholders, substitute_placeholders

# ABOUTME: metadata.source value marking entries this tool wrote
SOURCE_TAG = "mcp-helper"

MANUAL_CONFIGURATION_MESSAGE = "Custom server - manual configuration required"

MERGE_STRATEGIES = ("add", "preserve", "overwrite", "merge")


@dataclass(frozen=True)
class LaunchSpec:
    """Resolved launch fields produced by a deployment handler."""
    command: str | None = None
    args: list[str] = field(default_factory=list)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Reconciliation:
    """Recomputed instance plus the human-readable change list."""
    instance: ConfiguredInstance
    changes: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def _substitute_all(values: list[str] | tuple[str, ...], provided: Mapping[str, str]) -> list[str]:
    return [substitute_placeholders(value, provided) for value in values]


def _manual_launch(card: ServerCard, provided: Mapping[str, str]) -> LaunchSpec:
    return LaunchSpec(command="echo", args=[MANUAL_CONFIGURATION_MESSAGE])


def _container_launch(card: ServerCard, provided: Mapping[str, str]) -> LaunchSpec:
    """docker run -i --rm, one -e per declared variable, image, static args."""
    deployment = card.deployment
    command = deployment.command or "docker"
    static_args = _substitute_all(deployment.args, provided)

    if not deployment.image:
        return LaunchSpec(command=command, args=static_args)

    args = ["run", "-i", "--rm"]
    for var in card.variables:
        args.extend(["-e", var.name])
    args.append(substitute_placeholders(deployment.image, provided))
    args.extend(static_args)
    return LaunchSpec(command=command, args=args)


def _package_runner_launch(card: ServerCard, provided: Mapping[str, str]) -> LaunchSpec:
    deployment = card.deployment
    command = deployment.command or "npx"
    static_args = _substitute_all(deployment.args, provided)

    if not deployment.package:
        return LaunchSpec(command=command, args=static_args)

    package = substitute_placeholders(deployment.package, provided)
    return LaunchSpec(command=command, args=["-y", package, *static_args])


def _native_launch(card: ServerCard, provided: Mapping[str, str]) -> LaunchSpec:
    if not card.deployment.command:
        return _manual_launch(card, provided)
    return LaunchSpec(
        command=substitute_placeholders(card.deployment.command, provided),
        args=_substitute_all(card.deployment.args, provided),
    )


def _http_launch(card: ServerCard, provided: Mapping[str, str]) -> LaunchSpec:
    if not card.deployment.url:
        return _manual_launch(card, provided)
    return LaunchSpec(
        url=substitute_placeholders(card.deployment.url, provided),
        headers={
            name: substitute_placeholders(value, provided)
            for name, value in card.deployment.headers.items()
        },
    )


_HANDLERS: dict[DeploymentKind, Callable[[ServerCard, Mapping[str, str]], LaunchSpec]] = {
    DeploymentKind.CONTAINER: _container_launch,
    DeploymentKind.PACKAGE_RUNNER: _package_runner_launch,
    DeploymentKind.NATIVE_BINARY: _native_launch,
    DeploymentKind.HTTP_ENDPOINT: _http_launch,
    DeploymentKind.UNKNOWN: _manual_launch,
}


def _utc_timestamp(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")


def materialize(
    card: ServerCard,
    provided: Mapping[str, str | None],
    scope: Scope = Scope.GLOBAL,
    now: datetime | None = None,
) -> ConfiguredInstance:
    """Build a runnable instance from a card and variable values.

    ABOUTME: Only non-empty provided values are substituted
    ABOUTME: Unresolved ${VAR} placeholders stay in place (partial configuration)
    ABOUTME: Non-http instances get one env entry per declared variable

    Args:
        card: Card to materialize
        provided: Variable name -> value
        scope: Where the instance's variables live
        now: Timestamp override for metadata.updatedAt

    Returns:
        ConfiguredInstance for the card's deployment kind

    Examples:
        >>> instance = materialize(github_card, {"GITHUB_TOKEN": "abc"})
        >>> instance.command, instance.env
        ('docker', {'GITHUB_TOKEN': 'abc'})
    """
    values = {name: value for name, value in provided.items() if value}
    launch = _HANDLERS[card.deployment_kind](card, values)

    env: dict[str, str] = {}
    if launch.url is None:
        env = {var.name: values.get(var.name) or f"${{{var.name}}}" for var in card.variables}

    return ConfiguredInstance(
        record_id=card.id,
        scope=scope,
        command=launch.command,
        args=list(launch.args),
        env=env,
        url=launch.url,
        headers=dict(launch.headers),
        provided_variables=values,
        metadata={"source": SOURCE_TAG, "updatedAt": _utc_timestamp(now)},
    )


def _diff_mapping(label: str, old: Mapping[str, str], new: Mapping[str, str]) -> list[str]:
    lines = [f"+ {label}.{name}" for name in new if name not in old]
    lines.extend(f"- {label}.{name}" for name in old if name not in new)
    lines.extend(
        f"~ {label}.{name}" for name in new
        if name in old and old[name] != new[name]
    )
    return lines


def _template_pattern(template: str) -> re.Pattern[str] | None:
    """Regex matching template with each ${VAR} captured as a named group."""
    parts: list[str] = []
    seen: set[str] = set()
    position = 0
    for match in PLACEHOLDER_PATTERN.finditer(template):
        parts.append(re.escape(template[position:match.start()]))
        name = match.group(1)
        if name in seen:
            parts.append(f"(?P={name})")
        else:
            parts.append(f"(?P<{name}>.+?)")
            seen.add(name)
        position = match.end()

    if not seen:
        return None
    parts.append(re.escape(template[position:]))
    return re.compile("".join(parts), re.DOTALL)


def extract_values(template: str, resolved: str) -> dict[str, str]:
    """Recover variable values by matching a resolved string against its template.

    ABOUTME: Values that are still ${VAR} placeholders are not recovered
    ABOUTME: A resolved string that doesn't fit the template yields nothing

    Examples:
        >>> extract_values("Bearer ${TOKEN}", "Bearer abc")
        {'TOKEN': 'abc'}
        >>> extract_values("Bearer ${TOKEN}", "Bearer ${TOKEN}")
        {}
    """
    pattern = _template_pattern(template)
    if pattern is None:
        return {}
    match = pattern.fullmatch(resolved)
    if match is None:
        return {}
    return {
        name: value for name, value in match.groupdict().items()
        if value and not find_placeholders(value)
    }


def _recover_values(existing: ConfiguredInstance, card: ServerCard) -> dict[str, str]:
    """Values baked into an existing entry, found by lining it up with the card's template."""
    template = materialize(card, {}, scope=existing.scope)

    pairs: list[tuple[str, str]] = []
    for label in ("command", "url"):
        template_value = getattr(template, label)
        existing_value = getattr(existing, label)
        if template_value and existing_value:
            pairs.append((template_value, existing_value))
    if len(template.args) == len(existing.args):
        pairs.extend(zip(template.args, existing.args))
    for template_map, existing_map in ((template.env, existing.env), (template.headers, existing.headers)):
        pairs.extend(
            (value, existing_map[name]) for name, value in template_map.items()
            if name in existing_map
        )

    recovered: dict[str, str] = {}
    for template_value, existing_value in pairs:
        for name, value in extract_values(template_value, existing_value).items():
            recovered.setdefault(name, value)
    return recovered


def reconcile(
    existing: ConfiguredInstance,
    card: ServerCard,
    now: datetime | None = None,
) -> Reconciliation:
    """Recompute an instance from the latest card.

    ABOUTME: Keeps provided values whose names are still declared, including values
    ABOUTME: recovered from the existing entry's command, args, env, url and headers
    ABOUTME: changes is empty when the recomputed instance matches the existing one

    Returns:
        Reconciliation with the new instance and diff lines such as
        "~ command: 'npx' -> 'docker'", "+ env.X" or "- variable Z no longer declared"
    """
    declared = set(card.variable_names)

    preserved: dict[str, str] = {
        name: value for name, value in existing.provided_variables.items()
        if name in declared and value
    }
    for name, value in _recover_values(existing, card).items():
        if name in declared:
            preserved.setdefault(name, value)

    resolved_env = {
        name: value for name, value in existing.env.items()
        if value and not find_placeholders(value)
    }

    instance = materialize(card, preserved, scope=existing.scope, now=now)

    changes: list[str] = []
    for label in ("command", "url"):
        old_value = getattr(existing, label)
        new_value = getattr(instance, label)
        if old_value != new_value:
            changes.append(f"~ {label}: {old_value!r} -> {new_value!r}")
    if existing.args != instance.args:
        changes.append(f"~ args: {existing.args!r} -> {instance.args!r}")

    changes.extend(_diff_mapping("env", existing.env, instance.env))
    changes.extend(_diff_mapping("headers", existing.headers, instance.headers))

    dropped: list[str] = []
    for name in [*existing.provided_variables, *resolved_env]:
        if name not in declared and name not in dropped:
            dropped.append(name)
    changes.extend(f"- variable {name} no longer declared" for name in dropped)

    return Reconciliation(instance=instance, changes=changes)


def _deep_merge(target: Mapping[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    result = copy.deepcopy(dict(target))
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def suggest_strategy(existing: Mapping[str, Any] | None) -> str:
    """Pick a merge strategy for writing over an existing settings entry.

    ABOUTME: Absent -> add; written by this tool -> overwrite; hand-written -> preserve
    """
    if existing is None:
        return "add"
    metadata = existing.get("metadata") or {}
    if isinstance(metadata, Mapping) and metadata.get("source") == SOURCE_TAG:
        return "overwrite"
    return "preserve"


def merge_entry(
    existing: Mapping[str, Any] | None,
    new: Mapping[str, Any],
    strategy: str = "preserve",
) -> dict[str, Any]:
    """Combine an existing settings entry with a newly materialized one.

    ABOUTME: preserve keeps existing, overwrite takes new, merge deep-merges with new winning
    ABOUTME: Any strategy applied to a missing entry yields the new one

    Raises:
        ValueError: If strategy is not a known strategy name
    """
    if strategy not in MERGE_STRATEGIES:
        raise ValueError(
            f"Unknown merge strategy '{strategy}'. Must be one of: {', '.join(MERGE_STRATEGIES)}"
        )

    if existing is None or strategy in ("add", "overwrite"):
        return copy.deepcopy(dict(new))
    if strategy == "preserve":
        return copy.deepcopy(dict(existing))
    return _deep_merge(existing, new)
