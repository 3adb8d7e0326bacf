# Project status document: completion roll-up, todos and Markdown report
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mcph.config import HelperContext
from mcph.models import (
    Feature,
    NotFoundError,
    ReadError,
    ReadErrorKind,
    ReadResult,
    StatusDocument,
    TodoItem,
    TodoState,
    TransitionError,
)
from mcph.utils.backup import backup_before_write
from mcph.utils.files import atomic_write, read_json_file, write_json_file

logger = logging.getLogger(__name__)

STATUS_SECTION = "Project Status"

LEGACY_TODO_BUCKETS = ("pending", "in_progress", "completed_today")

_KNOWN_KEYS = ("project", "overall_completion", "last_updated", "features", "todos", "critical_notes")
_FEATURE_KEYS = ("name", "completion", "notes")


def _utc_now(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def recompute_overall(
    features: Mapping[str, Feature],
    weight_table: Mapping[str, float] | None = None,
) -> int:
    """Roll feature completions up into one percentage.

    ABOUTME: Without a weight table: arithmetic mean
    ABOUTME: With one: features missing from the table split 1 - (sum of present
    ABOUTME: table weights) equally, or get 0 when that budget is not positive
    ABOUTME: Rounded half up; no features or no weight -> 0

    Args:
        features: Feature key -> Feature
        weight_table: Optional feature key -> weight

    Returns:
        Overall completion percentage

    Examples:
        >>> features = {"a": Feature("a", "A", 100), "b": Feature("b", "B", 0)}
        >>> recompute_overall(features, {"a": 0.4})
        40
    """
    if not features:
        return 0

    if weight_table is None:
        mean = sum(feature.completion for feature in features.values()) / len(features)
        return _round_half_up(mean)

    known = {key: float(weight) for key, weight in weight_table.items() if key in features}
    unweighted = [key for key in features if key not in known]
    budget = 1.0 - sum(known.values())
    share = budget / len(unweighted) if unweighted and budget > 0 else 0.0

    weighted_sum = 0.0
    total_weight = 0.0
    for key, feature in features.items():
        weight = known.get(key, share)
        weighted_sum += feature.completion * weight
        total_weight += weight

    if total_weight <= 0:
        return 0
    return _round_half_up(weighted_sum / total_weight)


def _todo_from_dict(item: Any, index: int, default_state: TodoState) -> TodoItem:
    if isinstance(item, str):
        return TodoItem(id=str(index + 1), text=item, state=default_state)
    if not isinstance(item, dict):
        raise ValueError(f"Todo entry {index} must be an object or string")

    state = default_state
    if item.get("status"):
        state = TodoState.parse(item["status"])

    todo_id = item.get("id")
    text = item.get("text") or item.get("content") or item.get("description") or ""
    return TodoItem(
        id=str(todo_id) if todo_id is not None else str(index + 1),
        text=str(text),
        state=state,
    )


def migrate_todos(raw: Any) -> list[TodoItem]:
    """Convert either todo shape into the canonical flat list.

    ABOUTME: Flat list: items carry their own status (default pending)
    ABOUTME: Legacy buckets: pending / in_progress / completed_today
    ABOUTME: Items without an id are numbered by position

    Raises:
        ValueError: If raw is neither shape or an item state is unknown
    """
    if raw is None:
        return []

    if isinstance(raw, list):
        return [_todo_from_dict(item, index, TodoState.PENDING) for index, item in enumerate(raw)]

    if isinstance(raw, dict):
        todos: list[TodoItem] = []
        for bucket in LEGACY_TODO_BUCKETS:
            items = raw.get(bucket) or []
            if not isinstance(items, list):
                raise ValueError(f"Todo bucket '{bucket}' must be a list")
            for item in items:
                todos.append(_todo_from_dict(item, len(todos), TodoState.parse(bucket)))
        return todos

    raise ValueError("'todos' must be a list or an object of buckets")


def _feature_from_dict(key: str, data: Any) -> Feature:
    if not isinstance(data, dict):
        raise ValueError(f"Feature '{key}' must be an object")
    try:
        completion = int(data.get("completion", 0) or 0)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Feature '{key}' has a non-numeric completion") from e

    return Feature(
        key=key,
        name=str(data.get("name") or key),
        completion=completion,
        notes=str(data.get("notes") or ""),
        extra={k: v for k, v in data.items() if k not in _FEATURE_KEYS},
    )


def status_from_dict(data: Mapping[str, Any], default_project: str = "") -> StatusDocument:
    """Parse a status mapping, migrating legacy todos.

    Raises:
        ValueError: If a section has the wrong shape
    """
    features_raw = data.get("features") or {}
    if not isinstance(features_raw, dict):
        raise ValueError("'features' must be an object")

    notes = data.get("critical_notes") or []
    if not isinstance(notes, list):
        raise ValueError("'critical_notes' must be a list")

    return StatusDocument(
        project=str(data.get("project") or default_project),
        overall_completion=int(data.get("overall_completion") or 0),
        last_updated=str(data.get("last_updated") or ""),
        features={key: _feature_from_dict(key, value) for key, value in features_raw.items()},
        todos=migrate_todos(data.get("todos")),
        critical_notes=[str(note) for note in notes],
        extra={key: value for key, value in data.items() if key not in _KNOWN_KEYS},
    )


def status_to_dict(document: StatusDocument) -> dict[str, Any]:
    features: dict[str, Any] = {}
    for key, feature in document.features.items():
        entry: dict[str, Any] = {"name": feature.name, "completion": feature.completion}
        if feature.notes:
            entry["notes"] = feature.notes
        entry.update(feature.extra)
        features[key] = entry

    data: dict[str, Any] = {
        "project": document.project,
        "overall_completion": document.overall_completion,
        "last_updated": document.last_updated,
        "features": features,
        "todos": [
            {"id": todo.id, "text": todo.text, "status": todo.state.value}
            for todo in document.todos
        ],
        "critical_notes": list(document.critical_notes),
    }
    data.update(document.extra)
    return data


def apply_update(
    document: StatusDocument,
    patch: Mapping[str, Any],
    weight_table: Mapping[str, float] | None = None,
    now: datetime | None = None,
) -> StatusDocument:
    """Shallow-merge patch into document and return the refreshed copy.

    ABOUTME: overall_completion in patch is ignored and recomputed from features
    ABOUTME: last_updated is stamped with the current UTC time

    Raises:
        ValueError: If the merged document is malformed
    """
    merged = status_to_dict(document)
    merged.update({key: value for key, value in patch.items() if key != "overall_completion"})

    updated = status_from_dict(merged, default_project=document.project)
    return replace(
        updated,
        overall_completion=recompute_overall(updated.features, weight_table),
        last_updated=_utc_now(now),
    )


def _render_body(document: StatusDocument, level: int) -> str:
    heading = "#" * level
    lines = [
        f"**Overall Completion:** {document.overall_completion}%",
        f"**Last Updated:** {document.last_updated or 'never'}",
        "",
        f"{heading} Features",
        "",
    ]

    if document.features:
        lines.append("| Feature | Completion | Notes |")
        lines.append("|---------|------------|-------|")
        for feature in document.features.values():
            lines.append(f"| {feature.name} | {feature.completion}% | {feature.notes} |")
    else:
        lines.append("No features tracked.")

    lines.extend(["", f"{heading} Todos", ""])
    if document.todos:
        for state in (TodoState.ACTIVE, TodoState.PENDING, TodoState.DONE):
            for todo in document.todos:
                if todo.state is state:
                    box = "x" if state is TodoState.DONE else " "
                    lines.append(f"- [{box}] {todo.text} (`{todo.id}`, {state.value})")
    else:
        lines.append("No todos.")

    if document.critical_notes:
        lines.extend(["", f"{heading} Critical Notes", ""])
        lines.extend(f"- {note}" for note in document.critical_notes)

    return "\n".join(lines) + "\n"


def render_report(document: StatusDocument) -> str:
    """Render the status document as a Markdown report."""
    return f"# {STATUS_SECTION}: {document.project}\n\n" + _render_body(document, level=2)


def update_markdown_section(text: str, section: str, content: str) -> str:
    """Replace the body of a '## section' heading, or append the section.

    ABOUTME: The section ends at the next level-2 heading or end of file
    ABOUTME: Deeper headings (###) inside the section are part of its body
    """
    block = f"## {section}\n\n{content.rstrip()}\n"
    heading = re.compile(rf"^## {re.escape(section)}[ \t]*$", re.MULTILINE)
    match = heading.search(text)

    if match is None:
        if not text.strip():
            return block
        return text.rstrip("\n") + "\n\n" + block

    following = re.compile(r"^## ", re.MULTILINE).search(text, match.end())
    if following is None:
        return text[:match.start()] + block
    return text[:match.start()] + block + "\n" + text[following.start():]


class StatusStore:
    """Reads and writes PROJECT_STATUS.json with backup-then-write.

    ABOUTME: Every write recomputes overall_completion and stamps last_updated
    ABOUTME: Reads migrate legacy todo buckets into the flat list
    """

    def __init__(self, context: HelperContext) -> None:
        self._context = context

    @property
    def path(self) -> Path:
        return self._context.status_path

    def default_document(self) -> StatusDocument:
        return StatusDocument(project=self._context.project_dir.name, last_updated=_utc_now())

    def read_result(self) -> ReadResult[StatusDocument]:
        if not self.path.exists():
            return ReadResult(
                self.default_document(),
                ReadError(ReadErrorKind.ABSENT, f"Status file not found: {self.path}"),
            )
        try:
            data = read_json_file(self.path)
            document = status_from_dict(data, default_project=self._context.project_dir.name)
        except (OSError, UnicodeDecodeError, TypeError, ValueError) as e:
            return ReadResult(self.default_document(), ReadError(ReadErrorKind.CORRUPT, str(e)))
        return ReadResult(document)

    def read(self) -> StatusDocument:
        result = self.read_result()
        if result.error is not None and result.error.kind is ReadErrorKind.CORRUPT:
            logger.warning(f"Using default status: {result.error.message}")
        return result.document

    def write(self, document: StatusDocument, now: datetime | None = None) -> StatusDocument:
        """Persist the document after recomputing its derived fields.

        Returns:
            The document as written

        Raises:
            OSError: If the status file cannot be written
        """
        final = replace(
            document,
            overall_completion=recompute_overall(document.features, self._context.status_weights),
            last_updated=_utc_now(now),
        )
        backup_before_write(self.path, self._context.status_backup_dir, self._context.max_backups)
        write_json_file(self.path, status_to_dict(final))
        return final

    def update(self, patch: Mapping[str, Any]) -> StatusDocument:
        document = apply_update(self.read(), patch, self._context.status_weights)
        return self.write(document)

    def set_feature_completion(self, key: str, completion: int) -> StatusDocument:
        """Set one feature's completion percentage.

        Raises:
            ValueError: If completion is outside 0-100
            NotFoundError: If the feature does not exist
        """
        if not 0 <= completion <= 100:
            raise ValueError(f"Completion must be between 0 and 100, got {completion}")

        document = self.read()
        feature = document.features.get(key)
        if feature is None:
            raise NotFoundError(f"Feature '{key}' not found")

        feature.completion = completion
        return self.write(document)

    def add_feature(self, key: str, name: str | None = None, completion: int = 0, notes: str = "") -> StatusDocument:
        """Start tracking a new feature.

        Raises:
            ValueError: If the key already exists or completion is outside 0-100
        """
        if not 0 <= completion <= 100:
            raise ValueError(f"Completion must be between 0 and 100, got {completion}")

        document = self.read()
        if key in document.features:
            raise ValueError(f"Feature '{key}' already exists")

        document.features[key] = Feature(key=key, name=name or key, completion=completion, notes=notes)
        return self.write(document)

    def add_todo(self, text: str, todo_id: str | None = None) -> TodoItem:
        """Append a pending todo; ids default to the next free number.

        Raises:
            ValueError: If todo_id is already used
        """
        document = self.read()
        used = {todo.id for todo in document.todos}
        if todo_id is None:
            number = len(document.todos) + 1
            while str(number) in used:
                number += 1
            todo_id = str(number)
        elif todo_id in used:
            raise ValueError(f"Todo '{todo_id}' already exists")

        todo = TodoItem(id=todo_id, text=text)
        document.todos.append(todo)
        self.write(document)
        return todo

    def update_todo(self, todo_id: str, state: TodoState) -> TodoItem:
        """Move a todo forward through pending -> active -> done.

        ABOUTME: Skipping ahead is allowed; the same state is a no-op
        ABOUTME: An unknown id is created as pending, then transitioned

        Raises:
            TransitionError: If state is earlier than the todo's current state
        """
        document = self.read()
        todo = next((item for item in document.todos if item.id == todo_id), None)

        if todo is None:
            todo = TodoItem(id=todo_id, text=f"Task {todo_id}")
            document.todos.append(todo)
            logger.info(f"Created todo '{todo_id}' before updating it")
        elif state.rank < todo.state.rank:
            raise TransitionError(
                f"Todo '{todo_id}' cannot move from {todo.state.value} back to {state.value}"
            )
        elif state is todo.state:
            return todo

        todo.state = state
        self.write(document)
        return todo

    def add_note(self, note: str) -> StatusDocument:
        document = self.read()
        document.critical_notes.append(note)
        return self.write(document)

    def sync_markdown(self, path: Path) -> Path:
        """Regenerate the Project Status section of a Markdown file.

        ABOUTME: Creates the file when missing; backs up an existing one first
        """
        document = self.read()
        text = path.read_text(encoding="utf-8") if path.exists() else ""
        updated = update_markdown_section(text, STATUS_SECTION, _render_body(document, level=3))

        backup_before_write(path, self._context.status_backup_dir, self._context.max_backups)
        atomic_write(path, updated)
        return path
