# Placeholder substitution and project env file codec
import re
from collections.abc import Mapping

from mcph.models import PLACEHOLDER_PATTERN


def substitute_placeholders(value: str, values: Mapping[str, str]) -> str:
    """Replace ${VAR} placeholders with values from a mapping.

    ABOUTME: Empty or missing values leave the placeholder intact
    ABOUTME: A surviving placeholder signals the instance needs more configuration

    Examples:
        >>> substitute_placeholders("--token=${TOKEN}", {"TOKEN": "abc"})
        '--token=abc'
        >>> substitute_placeholders("--token=${TOKEN}", {})
        '--token=${TOKEN}'
    """
    def replace_var(match: re.Match[str]) -> str:
        replacement = values.get(match.group(1))
        return replacement if replacement else match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace_var, value)


def find_placeholders(value: str) -> list[str]:
    """Names referenced as ${VAR} in value, in order of appearance."""
    return [match.group(1) for match in PLACEHOLDER_PATTERN.finditer(value)]


def parse_env_file(content: str) -> dict[str, str]:
    """Parse a project env file into a mapping.

    ABOUTME: Accepts KEY=value with an optional leading 'export '
    ABOUTME: Skips blank lines and '#' comments; strips one pair of matching quotes
    ABOUTME: Later lines win when a key repeats

    Examples:
        >>> parse_env_file('# tokens\\nexport API_KEY="abc"\\nDEBUG=1\\n')
        {'API_KEY': 'abc', 'DEBUG': '1'}
    """
    result: dict[str, str] = {}

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        result[key] = value

    return result


def format_env_file(variables: Mapping[str, str]) -> str:
    """Render variables as export KEY="value" lines.

    Examples:
        >>> format_env_file({"API_KEY": "abc"})
        'export API_KEY="abc"\\n'
    """
    return "".join(f'export {key}="{value}"\n' for key, value in variables.items())
