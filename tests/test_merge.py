# ABOUTME: Tests for materializing cards into instances and reconciling updates
# ABOUTME: Covers every deployment kind, partial configuration and merge strategies
from datetime import datetime, timezone

import pytest

from mcph.merge import (
    MANUAL_CONFIGURATION_MESSAGE,
    SOURCE_TAG,
    extract_values,
    materialize,
    merge_entry,
    reconcile,
    suggest_strategy,
)
from mcph.models import ConfiguredInstance, Scope, ServerCard

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


def card(deploy: dict, variables: list[str] | None = None, card_id: str = "server") -> ServerCard:
    return ServerCard.from_dict({
        "id": card_id,
        "name": card_id.title(),
        "deploy": deploy,
        "envSchema": [{"name": name} for name in variables or []],
    })


class TestMaterializeContainer:
    """Tests for container cards."""

    def test_image_layout(self):
        """Test docker run args with one -e per declared variable."""
        github = card(
            {"kind": "container", "image": "ghcr.io/github/server:${TAG}", "args": ["--toolsets", "all"]},
            ["TOKEN", "TAG"],
        )

        instance = materialize(github, {"TOKEN": "abc", "TAG": "v1"}, now=NOW)

        assert instance.command == "docker"
        assert instance.args == [
            "run", "-i", "--rm", "-e", "TOKEN", "-e", "TAG",
            "ghcr.io/github/server:v1", "--toolsets", "all",
        ]
        assert instance.env == {"TOKEN": "abc", "TAG": "v1"}
        assert instance.metadata == {"source": SOURCE_TAG, "updatedAt": "2026-10-19T09:30:00Z"}

    def test_without_image_uses_card_args(self):
        """Test that a card with no image keeps its args verbatim."""
        compose = card({"kind": "docker", "command": "docker", "args": ["compose", "run", "${SERVICE}"]}, ["SERVICE"])

        instance = materialize(compose, {"SERVICE": "mcp"})

        assert instance.command == "docker"
        assert instance.args == ["compose", "run", "mcp"]

    def test_partial_configuration_keeps_placeholders(self):
        """Test that missing values stay as placeholders."""
        github = card({"kind": "container", "image": "img"}, ["TOKEN"])

        instance = materialize(github, {"TOKEN": ""})

        assert instance.env == {"TOKEN": "${TOKEN}"}
        assert instance.unresolved_placeholders() == ["TOKEN"]
        assert instance.provided_variables == {}


class TestMaterializeOtherKinds:
    """Tests for package-runner, native, http and unknown cards."""

    def test_package_runner(self):
        """Test npx -y package layout."""
        memory = card({"kind": "npx", "package": "@mcp/memory", "args": ["--path", "${DB}"]}, ["DB"])

        instance = materialize(memory, {"DB": "/tmp/db"})

        assert instance.command == "npx"
        assert instance.args == ["-y", "@mcp/memory", "--path", "/tmp/db"]
        assert instance.env == {"DB": "/tmp/db"}

    def test_native_binary(self):
        """Test that native commands are substituted verbatim."""
        native = card({"kind": "native-binary", "command": "${BIN_DIR}/serena", "args": ["--port", "${PORT}"]},
                      ["BIN_DIR", "PORT"])

        instance = materialize(native, {"BIN_DIR": "/opt"})

        assert instance.command == "/opt/serena"
        assert instance.args == ["--port", "${PORT}"]
        assert instance.env == {"BIN_DIR": "/opt", "PORT": "${PORT}"}

    def test_http_endpoint(self):
        """Test url and headers with no command or env."""
        remote = card({
            "kind": "http",
            "url": "https://mcp.example.com/${ORG}",
            "headers": {"Authorization": "Bearer ${TOKEN}"},
        }, ["ORG", "TOKEN"])

        instance = materialize(remote, {"ORG": "acme"})

        assert instance.is_http is True
        assert instance.command is None
        assert instance.url == "https://mcp.example.com/acme"
        assert instance.headers == {"Authorization": "Bearer ${TOKEN}"}
        assert instance.env == {}
        assert "command" not in instance.to_entry()

    def test_unknown_kind(self):
        """Test the manual configuration fallback."""
        instance = materialize(card({"kind": "wasm"}), {})

        assert instance.command == "echo"
        assert instance.args == [MANUAL_CONFIGURATION_MESSAGE]

    def test_native_without_command_falls_back(self):
        """Test that a native card with no command needs manual configuration."""
        instance = materialize(card({"kind": "native"}), {})
        assert instance.command == "echo"

    def test_scope_is_recorded(self):
        """Test that the requested scope is kept on the instance."""
        instance = materialize(card({"kind": "npx", "package": "p"}), {}, scope=Scope.PROJECT)
        assert instance.scope is Scope.PROJECT


class TestReconcile:
    """Tests for reconcile function."""

    def test_unchanged_card_has_no_changes(self):
        """Test that reconciling against the same card reports nothing."""
        memory = card({"kind": "npx", "package": "@mcp/memory"}, ["DB"])
        existing = materialize(memory, {"DB": "/tmp/db"})

        result = reconcile(existing, memory)

        assert result.changes == []
        assert result.changed is False
        assert result.instance.env == {"DB": "/tmp/db"}

    def test_change_lines(self):
        """Test command, env and dropped-variable diff lines."""
        old_card = card({"kind": "npx", "package": "@mcp/server"}, ["A", "Z"])
        new_card = card({"kind": "container", "image": "ghcr.io/mcp/server"}, ["A", "X"])
        existing = materialize(old_card, {"A": "1", "Z": "z"})

        result = reconcile(existing, new_card, now=NOW)

        assert "~ command: 'npx' -> 'docker'" in result.changes
        assert "+ env.X" in result.changes
        assert "- env.Z" in result.changes
        assert "- variable Z no longer declared" in result.changes
        assert result.instance.env == {"A": "1", "X": "${X}"}
        assert result.instance.provided_variables == {"A": "1"}

    def test_preserves_resolved_env_from_settings_entry(self):
        """Test that values stored in a settings entry survive reconciliation."""
        updated = card({"kind": "npx", "package": "@mcp/server", "args": ["--verbose"]}, ["A"])
        existing = ConfiguredInstance.from_entry("server", {
            "command": "npx",
            "args": ["-y", "@mcp/server"],
            "env": {"A": "kept", "OLD": "${OLD}"},
        })

        result = reconcile(existing, updated)

        assert result.instance.env == {"A": "kept"}
        assert "~ args: ['-y', '@mcp/server'] -> ['-y', '@mcp/server', '--verbose']" in result.changes
        assert "- env.OLD" in result.changes
        assert not any(line.startswith("- variable") for line in result.changes)

    def test_http_values_survive_unchanged_card(self):
        """Test that credentials baked into url and headers are kept."""
        remote = card(
            {"kind": "http", "url": "https://${REGION}.example.com/mcp", "headers": {"Authorization": "Bearer ${TOKEN}"}},
            ["TOKEN", "REGION"],
        )
        existing = ConfiguredInstance.from_entry(
            "remote", materialize(remote, {"TOKEN": "secret", "REGION": "eu"}).to_entry()
        )

        result = reconcile(existing, remote)

        assert result.changes == []
        assert result.instance.url == "https://eu.example.com/mcp"
        assert result.instance.headers == {"Authorization": "Bearer secret"}

    def test_http_values_carried_into_new_headers(self):
        """Test that a recovered value fills a header the new card adds."""
        old_card = card({"kind": "http", "url": "https://api.example.com/${TOKEN}"}, ["TOKEN"])
        new_card = card(
            {"kind": "http", "url": "https://api.example.com/${TOKEN}", "headers": {"X-Token": "${TOKEN}"}},
            ["TOKEN"],
        )
        existing = ConfiguredInstance.from_entry("remote", materialize(old_card, {"TOKEN": "abc"}).to_entry())

        result = reconcile(existing, new_card)

        assert result.changes == ["+ headers.X-Token"]
        assert result.instance.headers == {"X-Token": "abc"}

    def test_package_args_values_recovered(self):
        """Test that values substituted into args are recovered."""
        fs = card({"kind": "npx", "package": "@mcp/fs", "args": ["--root=${ROOT}"]}, ["ROOT"])
        existing = ConfiguredInstance.from_entry("fs", {
            "command": "npx",
            "args": ["-y", "@mcp/fs", "--root=/srv/data"],
            "env": {"ROOT": "${ROOT}"},
        })

        result = reconcile(existing, fs)

        assert result.instance.args == ["-y", "@mcp/fs", "--root=/srv/data"]
        assert result.instance.env == {"ROOT": "/srv/data"}


class TestExtractValues:
    """Tests for extract_values function."""

    def test_recovers_named_values(self):
        """Test matching literal text around several placeholders."""
        assert extract_values("https://${HOST}:${PORT}/mcp", "https://example.com:8080/mcp") == {
            "HOST": "example.com",
            "PORT": "8080",
        }

    def test_mismatch_and_placeholders(self):
        """Test that non-matching or unresolved strings recover nothing."""
        assert extract_values("Bearer ${TOKEN}", "Basic abc") == {}
        assert extract_values("Bearer ${TOKEN}", "Bearer ${TOKEN}") == {}
        assert extract_values("static", "static") == {}

    def test_repeated_placeholder_must_agree(self):
        """Test that a placeholder used twice must resolve to the same value."""
        assert extract_values("${A}-${A}", "x-x") == {"A": "x"}
        assert extract_values("${A}-${A}", "x-y") == {}


class TestMergeEntry:
    """Tests for merge_entry and suggest_strategy."""

    existing = {"command": "node", "args": ["server.js"], "env": {"A": "1", "B": "2"}, "note": "mine"}
    new = {"command": "npx", "args": ["-y", "pkg"], "env": {"B": "3"}}

    def test_preserve(self):
        """Test that preserve keeps the existing entry."""
        assert merge_entry(self.existing, self.new, "preserve") == self.existing

    def test_overwrite(self):
        """Test that overwrite takes the new entry."""
        assert merge_entry(self.existing, self.new, "overwrite") == self.new

    def test_deep_merge_new_wins(self):
        """Test that merge combines nested mappings with new values winning."""
        merged = merge_entry(self.existing, self.new, "merge")

        assert merged == {
            "command": "npx",
            "args": ["-y", "pkg"],
            "env": {"A": "1", "B": "3"},
            "note": "mine",
        }
        assert self.existing["env"] == {"A": "1", "B": "2"}

    def test_missing_existing(self):
        """Test that any strategy on a missing entry yields the new one."""
        assert merge_entry(None, self.new, "preserve") == self.new

    def test_unknown_strategy(self):
        """Test that unknown strategies raise ValueError."""
        with pytest.raises(ValueError, match="Unknown merge strategy"):
            merge_entry(self.existing, self.new, "replace-all")

    def test_suggest_strategy(self):
        """Test suggestions for absent, tool-written and hand-written entries."""
        assert suggest_strategy(None) == "add"
        assert suggest_strategy({"command": "x", "metadata": {"source": SOURCE_TAG}}) == "overwrite"
        assert suggest_strategy({"command": "x"}) == "preserve"
