"""
Interactive input - lets the model ask the user for values.

The registered tool is only a placeholder that carries the schema; the
engine intercepts calls to it and hands the parsed field requests to an
interactive collaborator.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Union

from .base import Tool, ToolResult

INTERACTIVE_TOOL_NAME = "interactive"

InteractiveType = Literal["blank", "select"]


@dataclass
class FieldRequest:
    """One value the model wants from the user."""

    name: str
    interactive_type: InteractiveType = "blank"
    interactive_hint: str = ""
    options: list[str] = field(default_factory=list)
    sensitive: bool = False


InteractiveHandler = Callable[
    [list[FieldRequest]],
    Union[dict[str, str], Awaitable[dict[str, str]]],
]


def parse_field_requests(arguments: dict[str, Any]) -> list[FieldRequest] | None:
    """Parse the ``fields`` array of an interactive call.

    Returns None when the arguments carry no ``fields`` array. The type
    defaults to ``blank`` and becomes ``select`` when options are given; the
    hint defaults to the field name.
    """
    raw_fields = arguments.get("fields")
    if not isinstance(raw_fields, list):
        return None

    requests = []
    for raw in raw_fields:
        if not isinstance(raw, dict):
            continue
        name = raw.get("name") if isinstance(raw.get("name"), str) else ""
        kind = raw.get("interactive_type") if isinstance(raw.get("interactive_type"), str) else ""
        hint = raw.get("interactive_hint") if isinstance(raw.get("interactive_hint"), str) else ""
        options = [o for o in raw.get("options") or [] if isinstance(o, str)]

        if kind not in ("blank", "select"):
            kind = "blank"
        if kind == "blank" and options:
            kind = "select"

        requests.append(FieldRequest(
            name=name,
            interactive_type=kind,
            interactive_hint=hint or name,
            options=options,
            sensitive=raw.get("sensitive") is True,
        ))
    return requests


FIELDS_SCHEMA = {
    "type": "object",
    "properties": {
        "fields": {
            "type": "array",
            "description": "List of fields to collect from the user",
            "items": {
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Field identifier (used as key in result)",
                    },
                    "type": {
                        "type": "string",
                        "description": "Must be 'interactive_input'",
                        "enum": ["interactive_input"],
                    },
                    "interactive_type": {
                        "type": "string",
                        "description": "'blank' for free text, 'select' for choosing from options",
                        "enum": ["blank", "select"],
                    },
                    "interactive_hint": {
                        "type": "string",
                        "description": "Prompt text shown to the user",
                    },
                    "options": {
                        "type": "array",
                        "description": "Available choices (required for 'select')",
                        "items": {"type": "string"},
                    },
                    "sensitive": {
                        "type": "boolean",
                        "description": "Whether this is sensitive data like a password",
                    },
                },
                "required": ["name", "type", "interactive_type", "interactive_hint"],
            },
        },
    },
    "required": ["fields"],
}


async def _placeholder_handler(**kwargs: Any) -> ToolResult:
    return ToolResult(success=True, output="interactive input collected")


def create_interactive_tool() -> Tool:
    return Tool(
        name=INTERACTIVE_TOOL_NAME,
        description=(
            "Collect user input interactively. Use this when you need information from the "
            "user instead of asking in text: passwords, passphrases, credentials, choices. "
            "Before write operations, dangerous operations or system modifications, get "
            'confirmation with options ["yes", "no", "trust"] and only proceed on "yes" or '
            '"trust". Several fields may be requested at once. Returns a JSON object of the '
            "collected values."
        ),
        parameters=[],
        handler=_placeholder_handler,
        schema=FIELDS_SCHEMA,
    )
