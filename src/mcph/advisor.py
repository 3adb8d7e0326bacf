# Scoring, ranking and project-based recommendation of server cards
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from mcph.models import ConfiguredInstance, ServerCard, SettingsDocument

logger = logging.getLogger(__name__)

RATING_A_WEIGHT = 1.2
RATING_B_WEIGHT = 0.8

# ABOUTME: Always recommended, regardless of project type
BASELINE_RECORD_IDS = ("serena", "sequentialthinking", "memory")

CONFLICTING_PAIRS = (
    ("playwright", "puppeteer"),
    ("notion", "confluence"),
)

# package.json dependency -> tag
NODE_DEPENDENCY_TAGS = {
    "react": "react",
    "react-dom": "react",
    "vue": "vue",
    "@angular/core": "angular",
    "next": "nextjs",
    "express": "express",
    "typescript": "typescript",
    "jest": "testing",
    "cypress": "e2e",
    "playwright": "e2e",
    "@playwright/test": "e2e",
    "puppeteer": "e2e",
}

# substring of a Python requirement line -> tag
PYTHON_REQUIREMENT_TAGS = {
    "django": "django",
    "flask": "flask",
    "fastapi": "fastapi",
    "pandas": "data-science",
    "numpy": "data-science",
    "pytest": "testing",
    "sqlalchemy": "database",
    "psycopg": "database",
}

# marker file -> tag
MARKER_FILE_TAGS = {
    "go.mod": "go",
    "Cargo.toml": "rust",
    "pom.xml": "java",
    "tsconfig.json": "typescript",
    "Dockerfile": "docker",
    "docker-compose.yml": "docker",
    "docker-compose.yaml": "docker",
    "README.md": "documentation",
}

PYTHON_MARKER_FILES = ("requirements.txt", "pyproject.toml", "Pipfile", "setup.py")

# ABOUTME: Above this many configured servers, suggest trimming the list
MAX_CONFIGURED_SERVERS = 10

# (present, missing, kind, message)
COMPLEMENTARY_SERVERS = (
    ("github-official", "serena", "add_complementary",
     "Add serena for better code navigation alongside GitHub"),
    ("memory", "sequentialthinking", "enhance_planning",
     "Add sequentialthinking to complement memory for better task planning"),
)


@dataclass(frozen=True)
class ConfigurationWarning:
    """A problem found in the current settings document.

    ABOUTME: kind is one of missing_env, potential_conflict, deprecated
    """
    kind: str
    message: str
    servers: tuple[str, ...] = ()
    variable: str | None = None


@dataclass(frozen=True)
class Suggestion:
    """An optional improvement to the configured server set."""
    kind: str
    message: str
    servers: tuple[str, ...] = ()


def score(card: ServerCard) -> float:
    """Weighted usefulness score; a missing rating counts as 0.

    Examples:
        >>> score(ServerCard(id="x", name="x", deployment_kind=DeploymentKind.UNKNOWN,
        ...                  rating_a=5, rating_b=3))
        8.4
    """
    return (card.rating_a or 0) * RATING_A_WEIGHT + (card.rating_b or 0) * RATING_B_WEIGHT


def rank(cards: Iterable[ServerCard], configured_ids: Iterable[str] = ()) -> list[ServerCard]:
    """Unconfigured cards by descending score.

    ABOUTME: Ties keep their input order (sorted() is stable)
    """
    configured = set(configured_ids)
    candidates = [card for card in cards if card.id not in configured]
    return sorted(candidates, key=score, reverse=True)


def recommend_for_project(detected_tags: Iterable[str], cards: Iterable[ServerCard]) -> list[ServerCard]:
    """Cards matching the project's tags, then the baseline set.

    ABOUTME: The baseline cards are always included, without duplicates
    ABOUTME: Baseline ids missing from cards are skipped
    """
    tags = set(detected_tags)
    card_list = list(cards)

    recommended = [card for card in card_list if tags.intersection(card.tags)]
    seen = {card.id for card in recommended}

    by_id = {card.id: card for card in card_list}
    for record_id in BASELINE_RECORD_IDS:
        card = by_id.get(record_id)
        if card is not None and record_id not in seen:
            recommended.append(card)
            seen.add(record_id)

    return recommended


def _node_tags(package_json: Path) -> set[str]:
    tags = {"javascript"}
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {package_json}: {e}")
        return tags

    if not isinstance(data, dict):
        return tags

    dependencies: list[str] = []
    for section in ("dependencies", "devDependencies"):
        value = data.get(section)
        if isinstance(value, dict):
            dependencies.extend(value)

    for dependency in dependencies:
        tag = NODE_DEPENDENCY_TAGS.get(dependency)
        if tag:
            tags.add(tag)
    return tags


def _python_tags(project_dir: Path) -> set[str]:
    tags = {"python"}
    for name in PYTHON_MARKER_FILES:
        path = project_dir / name
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8").lower()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {path}: {e}")
            continue
        for needle, tag in PYTHON_REQUIREMENT_TAGS.items():
            if needle in content:
                tags.add(tag)
    return tags


def detect_project_tags(project_dir: Path) -> set[str]:
    """Detect languages, frameworks and tools from marker files.

    ABOUTME: Looks at package.json, Python requirement files, Dockerfile,
    ABOUTME: CI workflows, README and .git; unreadable files are skipped

    Examples:
        >>> sorted(detect_project_tags(Path("my-django-app")))
        ['django', 'git', 'python']
    """
    tags: set[str] = set()
    if not project_dir.is_dir():
        return tags

    if (project_dir / ".git").exists():
        tags.add("git")

    package_json = project_dir / "package.json"
    if package_json.is_file():
        tags |= _node_tags(package_json)

    if any((project_dir / name).is_file() for name in PYTHON_MARKER_FILES):
        tags |= _python_tags(project_dir)

    for name, tag in MARKER_FILE_TAGS.items():
        if (project_dir / name).is_file():
            tags.add(tag)

    if (project_dir / ".github" / "workflows").is_dir():
        tags.add("ci")

    return tags


def find_configuration_warnings(
    document: SettingsDocument,
    environment: Mapping[str, str],
) -> list[ConfigurationWarning]:
    """Report unresolved variables, conflicting servers and deprecated entries."""
    warnings: list[ConfigurationWarning] = []
    instances = document.instances

    for instance_id, entry in instances.items():
        if not isinstance(entry, dict):
            continue
        instance = ConfiguredInstance.from_entry(instance_id, entry)
        for name in instance.unresolved_placeholders():
            if not environment.get(name):
                warnings.append(ConfigurationWarning(
                    kind="missing_env",
                    message=f"Missing environment variable: {name} for {instance_id}",
                    servers=(instance_id,),
                    variable=name,
                ))

    for first, second in CONFLICTING_PAIRS:
        if first in instances and second in instances:
            warnings.append(ConfigurationWarning(
                kind="potential_conflict",
                message=f"Both {first} and {second} configured - consider using only one",
                servers=(first, second),
            ))

    for instance_id, entry in instances.items():
        if isinstance(entry, dict) and entry.get("deprecated"):
            warnings.append(ConfigurationWarning(
                kind="deprecated",
                message=f"Server {instance_id} is using deprecated configuration",
                servers=(instance_id,),
            ))

    return warnings


def suggest_optimizations(document: SettingsDocument) -> list[Suggestion]:
    """Suggest trimming a long server list and adding complementary servers.

    ABOUTME: reduce_servers first, then complementary pairs in table order

    Examples:
        >>> [s.kind for s in suggest_optimizations(SettingsDocument(instances={"memory": {}}))]
        ['enhance_planning']
    """
    suggestions: list[Suggestion] = []
    configured = document.instances

    if len(configured) > MAX_CONFIGURED_SERVERS:
        suggestions.append(Suggestion(
            kind="reduce_servers",
            message=f"{len(configured)} servers configured - consider removing unused servers "
                    f"to improve startup time",
        ))

    for present, missing, kind, message in COMPLEMENTARY_SERVERS:
        if present in configured and missing not in configured:
            suggestions.append(Suggestion(kind=kind, message=message, servers=(missing,)))

    return suggestions
