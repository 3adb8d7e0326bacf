# ABOUTME: Shared fixtures for mcph tests
# ABOUTME: Builds an isolated home/project context and writes sample server cards
import json
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from mcph.config import HelperContext, default_context


@pytest.fixture
def context(tmp_path: Path) -> HelperContext:
    """Context rooted in tmp_path with empty home and project directories."""
    home = tmp_path / "home"
    project = tmp_path / "project"
    home.mkdir()
    project.mkdir()
    return default_context(home=home, project_dir=project)


@pytest.fixture
def write_card() -> Callable[..., Path]:
    """Return a helper that writes a card mapping as JSON or YAML."""

    def _write(directory: Path, data: dict[str, Any], filename: str | None = None) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / (filename or f"{data['id']}.json")
        if path.suffix in (".yaml", ".yml"):
            path.write_text(yaml.safe_dump(data), encoding="utf-8")
        else:
            path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


def container_card(**overrides: Any) -> dict[str, Any]:
    card = {
        "id": "github-official",
        "name": "GitHub Official",
        "description": "GitHub repositories and issues",
        "deploy": {"kind": "container", "image": "ghcr.io/github/github-mcp-server"},
        "envSchema": [
            {"name": "MCPH_TEST_TOKEN", "description": "Access token", "required": True},
            {"name": "MCPH_TEST_ORG", "description": "Organization"},
        ],
        "agenticUsefulness": {"aiAgentRating": 5, "humanVerificationRating": 3},
        "tags": ["git"],
    }
    card.update(overrides)
    return card


def package_card(**overrides: Any) -> dict[str, Any]:
    card = {
        "id": "memory",
        "name": "Memory",
        "description": "Knowledge graph memory",
        "deploy": {"kind": "npx", "package": "@modelcontextprotocol/server-memory"},
        "agenticUsefulness": {"aiAgentRating": 3, "humanVerificationRating": 5},
    }
    card.update(overrides)
    return card


@pytest.fixture
def sample_cards() -> dict[str, Callable[..., dict[str, Any]]]:
    """Factories for typical card mappings, keyed by deployment style."""
    return {"container": container_card, "package": package_card}
