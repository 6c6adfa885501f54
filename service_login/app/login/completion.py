"""
Completion pages for popup-initiated browser logins.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from shared.errors import BadInputError

TEMPLATES = {
    "postMessage": "postmessage.html",
    "iframe": "iframe.html",
}


class CompletionRenderer:
    """Renders the page that hands a login result back to the opener window."""

    def __init__(self, template_dir: Optional[Path] = None):
        template_dir = template_dir or Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def render(
        self,
        completion_type: str,
        origin: str,
        oauth: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> str:
        template_name = TEMPLATES.get(completion_type)
        if template_name is None:
            raise BadInputError(f"Unknown completion type: {completion_type}")

        template = self.jinja_env.get_template(template_name)
        return template.render(origin=origin, oauth=oauth, error=error)
