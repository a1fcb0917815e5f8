"""Persona configuration loader."""

from pathlib import Path
from typing import Any

import yaml


_DEFAULT_PATH = Path(__file__).parent / "persona.yaml"

_FALLBACK_PROMPT = "You are a supportive wellbeing companion."


def load_persona(path: Path | None = None) -> dict[str, Any]:
    """Load persona configuration from YAML file.

    Args:
        path: Optional path to persona YAML file.
              Defaults to persona.yaml in this directory.

    Returns:
        Dictionary with persona configuration.

    Raises:
        FileNotFoundError: If the persona file does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
    """
    config_path = path or _DEFAULT_PATH

    if not config_path.exists():
        raise FileNotFoundError(f"Persona file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        config: dict[str, Any] = yaml.safe_load(f)

    return config


def get_system_prompt(persona: dict[str, Any] | None = None) -> str:
    """Build the system instruction sent ahead of every remote request.

    Args:
        persona: Pre-loaded persona dict. Loads default if None.

    Returns:
        Persona, safety protocol and behavior rules as one string.
    """
    if persona is None:
        persona = load_persona()

    sections = [
        persona.get("system_prompt", _FALLBACK_PROMPT).strip(),
        persona.get("safety_protocol", "").strip(),
        persona.get("behavior_rules", "").strip(),
    ]
    return "\n\n".join(section for section in sections if section)

