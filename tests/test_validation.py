# ABOUTME: Tests for validation utilities
# ABOUTME: Covers required variables, card schema checks and instance references
import pytest

from mcph.cards import RecordStore
from mcph.models import ServerCard
from mcph.utils.validation import (
    REQUIRED_FOUNDATION_SERVERS,
    FoundationServer,
    validate_card_data,
    validate_instance_reference,
    validate_minimum_servers,
    validate_variables,
)


def make_card(env_schema):
    return ServerCard.from_dict({
        "id": "github",
        "name": "GitHub",
        "deploy": {"kind": "container", "image": "ghcr.io/github/server"},
        "envSchema": env_schema,
    })


def valid_card_data(**overrides):
    data = {
        "id": "memory",
        "name": "Memory",
        "deploy": {"kind": "npx", "package": "@mcp/memory"},
        "agenticUsefulness": {"aiAgentRating": 4, "humanVerificationRating": 2},
    }
    data.update(overrides)
    return data


class TestValidateVariables:
    """Tests for validate_variables function."""

    def test_reports_every_missing_variable(self):
        """Test that all missing required variables are reported in order."""
        card = make_card([
            {"name": "TOKEN", "required": True},
            {"name": "ORG"},
        ])

        check = validate_variables(card, {})

        assert check.valid is False
        assert check.missing_names == ["TOKEN", "ORG"]

    def test_optional_variables_are_not_required(self):
        """Test that required=False variables may be missing."""
        card = make_card([{"name": "TOKEN"}, {"name": "DEBUG", "required": False}])

        check = validate_variables(card, {"TOKEN": "abc"})

        assert check.valid is True
        assert check.missing == []

    def test_empty_value_counts_as_missing(self):
        """Test that empty strings and None do not satisfy a requirement."""
        card = make_card([{"name": "A"}, {"name": "B"}])
        assert validate_variables(card, {"A": "", "B": None}).missing_names == ["A", "B"]

    def test_card_without_variables(self):
        """Test that a card with no declared variables always passes."""
        assert validate_variables(make_card([]), {}).valid is True


class TestValidateCardData:
    """Tests for validate_card_data function."""

    def test_valid_card(self):
        """Test that a well-formed card has no errors."""
        assert validate_card_data(valid_card_data()) == []

    def test_unknown_kind_is_allowed(self):
        """Test that kinds outside the known set still validate."""
        assert validate_card_data(valid_card_data(deploy={"kind": "wasm"})) == []

    def test_missing_required_fields(self):
        """Test that id, name and deploy.kind are required."""
        errors = validate_card_data({"deploy": {}}, source="broken.json")
        messages = [error.message for error in errors]

        assert "Missing required 'id' field" in messages
        assert "Missing required 'name' field" in messages
        assert "Missing required 'deploy.kind' field" in messages
        assert all(error.subject == "broken.json" for error in errors)

    def test_missing_deploy_section(self):
        """Test that a card without deploy is rejected."""
        data = valid_card_data()
        del data["deploy"]
        assert [e.message for e in validate_card_data(data)] == ["Missing required 'deploy' section"]

    @pytest.mark.parametrize("rating", [0, 6, "5", True, 4.5])
    def test_invalid_ratings(self, rating):
        """Test that ratings must be integers from 1 to 5."""
        data = valid_card_data(agenticUsefulness={"aiAgentRating": rating})
        errors = validate_card_data(data)
        assert len(errors) == 1
        assert "aiAgentRating" in errors[0].message

    def test_ratings_are_optional(self):
        """Test that a card without ratings is valid."""
        data = valid_card_data()
        del data["agenticUsefulness"]
        assert validate_card_data(data) == []

    def test_invalid_status(self):
        """Test that status must be active or deprecated."""
        errors = validate_card_data(valid_card_data(status="retired"))
        assert "Invalid status" in errors[0].message

    @pytest.mark.parametrize("status", [["active"], {"state": "active"}, 1])
    def test_non_string_status(self, status):
        """Test that a list, mapping or number status is an error, not a crash."""
        errors = validate_card_data(valid_card_data(status=status))
        assert [error.message for error in errors] == [f"Invalid status '{status}'. Must be 'active' or 'deprecated'."]

    @pytest.mark.parametrize("field", ["command", "image", "package", "url"])
    def test_deploy_fields_must_be_strings(self, field):
        """Test that templated deploy fields must be text."""
        data = valid_card_data(deploy={"kind": "native", field: ["node", "server.js"]})
        assert [error.message for error in validate_card_data(data)] == [f"'deploy.{field}' must be a string"]

    def test_deploy_args_and_headers_types(self):
        """Test that args entries are scalars and header values are strings."""
        data = valid_card_data(deploy={
            "kind": "http",
            "url": "https://mcp.example.com",
            "args": ["--port", 8080, {"nested": True}],
            "headers": {"Authorization": ["Bearer", "x"]},
        })
        assert [error.message for error in validate_card_data(data)] == [
            "'deploy.args' entries must be strings or numbers",
            "'deploy.headers' values must be strings",
        ]

    def test_numeric_args_are_allowed(self):
        """Test that numbers in args are accepted."""
        assert validate_card_data(valid_card_data(deploy={"kind": "npx", "package": "pkg", "args": ["--port", 8080]})) == []

    def test_env_schema_checks(self):
        """Test envSchema entry validation."""
        data = valid_card_data(envSchema=[{"description": "no name"}, {"name": "A", "required": "yes"}])
        messages = [error.message for error in validate_card_data(data)]
        assert messages == [
            "envSchema[0] is missing 'name'",
            "envSchema[1].required must be a boolean",
        ]

    def test_non_mapping(self):
        """Test that non-mapping content is rejected."""
        errors = validate_card_data(["not", "a", "card"], source="list.yaml")
        assert errors[0].message == "Card must be a mapping"


class TestValidateInstanceReference:
    """Tests for validate_instance_reference function."""

    def test_known_record(self, tmp_path, write_card):
        """Test that a reference to a loaded card is valid."""
        write_card(tmp_path, valid_card_data())
        store = RecordStore()
        store.load_all(tmp_path)

        assert validate_instance_reference("memory", "memory", store) is None

    def test_dangling_reference(self):
        """Test that an unknown record id is a validation error."""
        error = validate_instance_reference("old-server", "old-server", RecordStore())

        assert error is not None
        assert error.subject == "old-server"
        assert "unknown server card" in error.message


class TestValidateMinimumServers:
    """Tests for validate_minimum_servers function."""

    def test_nothing_configured(self):
        """Test that every foundation server is reported missing."""
        check = validate_minimum_servers([])

        assert check.valid is False
        assert [server.id for server in check.missing_required] == ["serena", "sequentialthinking", "context7"]
        assert [server.id for server in check.missing_recommended] == ["memory", "github-official"]

    def test_required_present(self):
        """Test that only required servers decide validity."""
        check = validate_minimum_servers(["serena", "sequentialthinking", "context7"])

        assert check.valid is True
        assert check.missing_required == []
        assert [server.id for server in check.missing_recommended] == ["memory", "github-official"]

    def test_alternatives_count(self):
        """Test that a configured alternative satisfies a server."""
        required = [FoundationServer("github-official", alternatives=("gitlab",))]

        assert validate_minimum_servers(["gitlab"], required=required, recommended=[]).valid is True
        assert validate_minimum_servers(["bitbucket"], required=required, recommended=[]).valid is False

    def test_default_required_table(self):
        """Test the built-in required set."""
        assert [server.id for server in REQUIRED_FOUNDATION_SERVERS] == ["serena", "sequentialthinking", "context7"]
