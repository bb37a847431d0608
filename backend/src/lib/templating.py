"""
Email template variable substitution.

Templates use ``{{variable}}`` placeholders (whitespace inside the braces is
allowed, dotted names too). Variables without a value are stripped.
"""
import re
from typing import Dict, Iterable, List, Mapping, Optional


PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([\w\.]+)\s*\}\}")


def parse_template(template: Optional[str], variables: Optional[Mapping[str, object]] = None) -> str:
    """
    Replace ``{{name}}`` placeholders with values from ``variables``.

    Args:
        template: Template string
        variables: Mapping of variable name to value

    Returns:
        Rendered string; unresolved placeholders are removed

    Example:
        >>> parse_template("Hi {{ name }}{{missing}}!", {"name": "Ana"})
        'Hi Ana!'
    """
    if not template:
        return ""

    values = variables or {}

    def replace(match: re.Match) -> str:
        value = values.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def extract_variables(template: Optional[str]) -> List[str]:
    """Return placeholder names in order of first appearance."""
    if not template:
        return []

    names: List[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(template):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def generate_test_email(template: str, variables: Iterable[str]) -> str:
    """Render a template with ``[Sample <name>]`` for every given variable."""
    sample: Dict[str, str] = {name: f"[Sample {name}]" for name in variables}
    return parse_template(template, sample)
