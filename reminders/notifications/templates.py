"""Message template loading and rendering."""

from pathlib import Path

import yaml


_templates: dict | None = None

TEMPLATES_PATH = Path(__file__).parent / "messages.yaml"


def load_templates() -> dict:
    """
    Load message templates from YAML file.

    Caches templates after first load.
    """
    global _templates
    if _templates is not None:
        return _templates

    with open(TEMPLATES_PATH, encoding="utf-8") as f:
        _templates = yaml.safe_load(f)

    return _templates


def render_message(template: str, context: dict) -> str:
    """
    Render a message template with context variables.

    Raises:
        KeyError: If a required variable is missing from context
    """
    return template.format(**context)


def get_message(message_type: str, part: str, context: dict) -> str:
    """
    Get and render one part of a message.

    Args:
        message_type: e.g., "appointment_reminder", "appointment_confirmation"
        part: "email_subject", "email_body" or "summary"
        context: Variables to substitute

    Returns:
        Rendered message string
    """
    templates = load_templates()
    template = templates[message_type][part]
    return render_message(template, context).strip()
