# ABOUTME: Tests for SettingsStore
# ABOUTME: Covers degraded reads, backup-then-write, instances and project variables
import json
import logging

import pytest

from mcph.models import ConfiguredInstance, ReadErrorKind, Scope, SettingsDocument
from mcph.settings import SettingsStore
from mcph.utils.backup import list_backups


@pytest.fixture
def store(context) -> SettingsStore:
    return SettingsStore(context)


def write_settings(store: SettingsStore, data: dict) -> None:
    store.settings_path.write_text(json.dumps(data))


class TestRead:
    """Tests for reading the settings document."""

    def test_missing_file_is_empty_document(self, store):
        """Test that a missing settings file reads as no instances."""
        result = store.read_result()

        assert result.error.kind is ReadErrorKind.ABSENT
        assert result.ok is False
        assert store.read().instances == {}

    def test_corrupt_file_degrades_with_warning(self, store, caplog):
        """Test that invalid JSON is reported as corrupt and coalesced."""
        store.settings_path.write_text("{oops")

        assert store.read_result().error.kind is ReadErrorKind.CORRUPT
        with caplog.at_level(logging.WARNING):
            assert store.read().instances == {}
        assert "Using empty settings" in caplog.text

    def test_servers_not_an_object(self, store):
        """Test that a non-object mcpServers is corrupt."""
        write_settings(store, {"mcpServers": ["memory"]})
        assert store.read_result().error.kind is ReadErrorKind.CORRUPT

    def test_reads_instances_and_extra(self, store):
        """Test a normal read."""
        write_settings(store, {"theme": "dark", "mcpServers": {"memory": {"command": "npx"}}})

        result = store.read_result()

        assert result.ok is True
        assert result.document.instances == {"memory": {"command": "npx"}}
        assert result.document.extra == {"theme": "dark"}


class TestWrite:
    """Tests for backup-then-write."""

    def test_preserves_other_keys(self, store):
        """Test that unrelated settings keys survive a write."""
        write_settings(store, {"theme": "dark", "mcpServers": {}})
        document = store.read()
        document.instances["memory"] = {"command": "npx", "args": []}

        store.write(document)

        data = json.loads(store.settings_path.read_text())
        assert data == {"theme": "dark", "mcpServers": {"memory": {"command": "npx", "args": []}}}
        assert store.settings_path.read_text().endswith("\n")

    def test_backs_up_previous_file(self, store, context):
        """Test that the old file is copied to the backup directory first."""
        write_settings(store, {"mcpServers": {"old": {}}})

        backup = store.write(SettingsDocument())

        assert backup is not None
        assert backup.parent == context.backup_dir
        assert json.loads(backup.read_text()) == {"mcpServers": {"old": {}}}
        assert store.latest_backup() == backup

    def test_first_write_has_no_backup(self, store):
        """Test that writing a new file creates no backup."""
        assert store.write(SettingsDocument()) is None
        assert store.settings_path.exists()

    def test_backups_pruned_to_ten(self, store, context):
        """Test that exactly the 10 newest backups remain after 15 writes."""
        for i in range(15):
            store.write(SettingsDocument(instances={f"s{i}": {"command": "echo"}}))

        remaining = list_backups(context.backup_dir, ".claude.json")
        assert len(remaining) == 10
        saved = [next(iter(json.loads(path.read_text())["mcpServers"])) for path in remaining]
        assert saved == [f"s{i}" for i in range(13, 3, -1)]

    def test_write_failure_raises(self, store):
        """Test that an unwritable target raises OSError."""
        store.settings_path.mkdir()
        with pytest.raises(OSError):
            store.write(SettingsDocument())

    def test_restore_latest(self, store):
        """Test restoring the previous settings from backup."""
        write_settings(store, {"mcpServers": {"keep": {}}})
        store.write(SettingsDocument())

        store.restore_latest()

        assert store.read().instances == {"keep": {}}

    def test_restore_without_backups(self, store):
        """Test that restoring with no backups raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            store.restore_latest()


class TestInstances:
    """Tests for instance operations."""

    def test_add_get_remove(self, store):
        """Test the instance lifecycle."""
        instance = ConfiguredInstance(record_id="memory", command="npx", args=["-y", "pkg"])

        store.add_instance("memory", instance)
        loaded = store.get_instance("memory")

        assert loaded.command == "npx"
        assert loaded.args == ["-y", "pkg"]
        assert store.remove_instance("memory") is True
        assert store.get_instance("memory") is None
        assert store.remove_instance("memory") is False

    def test_remove_leaves_env_file_unchanged(self, store):
        """Test that removing an instance never touches the project env file."""
        store.add_instance("github", ConfiguredInstance(
            record_id="github", command="docker", env={"TOKEN": "${TOKEN}"},
        ))
        store.write_project_variables({"TOKEN": "secret"})
        before = store.env_path.read_bytes()

        assert store.remove_instance("github") is True

        assert store.env_path.read_bytes() == before

    def test_list_instances_detects_project_scope(self, store):
        """Test that placeholders defined in the project env mean project scope."""
        store.add_instance("github", ConfiguredInstance(
            record_id="github", command="docker", env={"TOKEN": "${TOKEN}"},
        ))
        store.add_instance("memory", ConfiguredInstance(record_id="memory", command="npx"))
        store.write_project_variables({"TOKEN": "secret"})

        summaries = {summary.id: summary for summary in store.list_instances()}

        assert summaries["github"].scope is Scope.PROJECT
        assert summaries["github"].has_project_overrides is True
        assert summaries["memory"].scope is Scope.GLOBAL
        assert store.get_instance("github").scope is Scope.PROJECT


class TestProjectVariables:
    """Tests for the project env file."""

    def test_missing_file(self, store):
        """Test that a missing env file reads as empty."""
        assert store.read_project_variables() == {}

    def test_round_trip(self, store):
        """Test that written variables read back unchanged."""
        store.write_project_variables({"API_KEY": "abc", "URL": "https://x.test/?q=1"})

        assert store.env_path.read_text() == 'export API_KEY="abc"\nexport URL="https://x.test/?q=1"\n'
        assert store.read_project_variables() == {"API_KEY": "abc", "URL": "https://x.test/?q=1"}

    def test_merge_layers_over_existing(self, store):
        """Test that merge keeps existing keys and overrides repeated ones."""
        store.env_path.write_text("# existing\nA=1\nB=2\n")

        store.write_project_variables({"B": "3", "C": "4"})

        assert store.read_project_variables() == {"A": "1", "B": "3", "C": "4"}

    def test_replace_without_merge(self, store):
        """Test that merge=False replaces the file contents."""
        store.env_path.write_text("A=1\n")

        backup = store.write_project_variables({"B": "2"}, merge=False)

        assert store.read_project_variables() == {"B": "2"}
        assert backup is not None
        assert backup.read_text() == "A=1\n"

    def test_resolve_variables(self, store, monkeypatch):
        """Test that the project env wins over the process environment."""
        monkeypatch.setenv("MCPH_SHARED", "from-process")
        monkeypatch.setenv("MCPH_PROCESS_ONLY", "process")
        monkeypatch.delenv("MCPH_NOWHERE", raising=False)
        store.write_project_variables({"MCPH_SHARED": "from-project"})

        resolved = store.resolve_variables(["MCPH_SHARED", "MCPH_PROCESS_ONLY", "MCPH_NOWHERE"])

        assert resolved == {"MCPH_SHARED": "from-project", "MCPH_PROCESS_ONLY": "process"}
