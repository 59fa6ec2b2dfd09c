"""Template loader for Jinja2-based context rendering.

Templates ship inside the package (``reviewgate/context/templates``); a
different directory can be supplied to override them.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

if TYPE_CHECKING:
    from jinja2 import Template

DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


class TemplateLoader:
    """Loads and caches the Jinja2 templates used for agent context.

    Attributes:
        template_dir: Directory the templates are loaded from.
        env: Jinja2 Environment with caching enabled.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        self.template_dir = template_dir or DEFAULT_TEMPLATE_DIR

        # Contexts are plain text and Markdown, never HTML.
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            cache_size=50,
            auto_reload=False,
        )

    def load_template(self, template_name: str) -> Template:
        """Load a template by name.

        Raises:
            jinja2.TemplateNotFound: If the template does not exist.
        """
        return self.env.get_template(template_name)

    def list_templates(self) -> list[str]:
        return sorted(self.env.list_templates())

    def template_exists(self, template_name: str) -> bool:
        try:
            self.env.get_template(template_name)
            return True
        except TemplateNotFound:
            return False
