"""Rendering of PowerShell command lines.

Arguments are substituted textually into the command line, never transport
encoded. Every string is wrapped in single quotes with embedded single quotes
doubled, which is the only escaping PowerShell applies inside such literals.
"""

from typing import Any, Mapping


def escape_single_quotes(value: str) -> str:
    """Double embedded single quotes."""
    return value.replace("'", "''")


def quote(value: str) -> str:
    return "'" + escape_single_quotes(value) + "'"


def format_argument(value: Any) -> str:
    """Render one parameter value as a PowerShell literal."""
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, int):
        return str(value)
    if value is None:
        return "''"
    if isinstance(value, (list, tuple)):
        return "@(" + ",".join(quote(str(v)) for v in value) + ")"
    return quote(str(value))


def format_command(function: str, params: Mapping[str, Any]) -> str:
    """Render ``Function -Param value ...``."""
    parts = [function]
    for name, value in params.items():
        parts.append(f"-{name} {format_argument(value)}")
    return " ".join(parts)
