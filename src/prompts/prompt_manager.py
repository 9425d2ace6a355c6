"""
prompt_manager.py

This module provides the PromptManager class for managing and rendering Jinja2 templates
used to generate the system instructions of the restaurant AI waiter.
It supports loading templates from a specified directory and rendering them with
dynamic context, such as the restaurant name, menu snapshot and language.

"""

import os
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from utils.ml_logging import get_logger

logger = get_logger(__name__)

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "ja": "Japanese",
    "zh": "Chinese",
    "ko": "Korean",
}


def language_name(code: str) -> str:
    """Map a language code (``en``, ``es-MX``) to a display name for the prompt."""
    if not code:
        return "English"
    return LANGUAGE_NAMES.get(code.split("-")[0].lower(), code)


class PromptManager:
    def __init__(self, template_dir: str = "templates"):
        """
        Initialize the PromptManager with the given template directory.

        Args:
            template_dir (str): The directory containing the Jinja2 templates.
        """
        current_dir = os.path.dirname(os.path.abspath(__file__))
        template_path = os.path.join(current_dir, template_dir)

        # Plain-text prompts: no HTML escaping of menu names
        self.env = Environment(
            loader=FileSystemLoader(searchpath=template_path),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

        templates = self.env.list_templates()
        logger.info(f"Templates found: {templates}")

    def get_prompt(self, template_name: str, **kwargs) -> str:
        """
        Render a template with the given context.

        Args:
            template_name (str): The name of the template file.
            **kwargs: The context variables to render the template with.

        Returns:
            str: The rendered template as a string.
        """
        try:
            template = self.env.get_template(template_name)
            return template.render(**kwargs)
        except Exception as e:
            raise ValueError(f"Error rendering template '{template_name}': {e}")

    def create_waiter_instructions(
        self, config: Any, template_name: str = "waiter_system.jinja"
    ) -> str:
        """
        Render the waiter system instructions for one session.

        Args:
            config: Session configuration exposing ``restaurant_name``,
                ``language``, ``menu`` and ``table_id``.
            template_name (str): Template to render.

        Returns:
            str: Rendered instruction text.
        """
        return self.get_prompt(
            template_name,
            restaurant_name=config.restaurant_name or "our restaurant",
            language=language_name(config.language),
            menu=config.menu,
            table_id=config.table_id,
        )
