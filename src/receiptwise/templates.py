"""Jinja2 prompt templates shipped with the package."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

PROMPTS_DIR = Path(__file__).parent / "prompts"


def prompt_environment(prompts_dir: str | Path | None = None) -> Environment:
    """Create the Jinja2 environment used to render prompts.

    Args:
        prompts_dir: Directory containing the templates (default: bundled prompts)
    """
    return Environment(
        loader=FileSystemLoader(str(prompts_dir or PROMPTS_DIR)),
        autoescape=select_autoescape(),
        trim_blocks=True,
        lstrip_blocks=True,
    )
