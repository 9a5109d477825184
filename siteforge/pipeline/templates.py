"""Project templates and runtime file templates."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from siteforge.models.project import is_valid_project_id
from siteforge.utils.logging import get_logger

logger = get_logger("pipeline.templates")

DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

DEFAULT_TEMPLATE = "basic"
FALLBACK_TEMPLATE = "empty"
COMPOSE_TEMPLATE = "compose/docker-compose.yml.j2"

# Used when the templates directory has no empty.json
EMPTY_PROJECT: dict[str, Any] = {
    "id": FALLBACK_TEMPLATE,
    "name": "Empty Project",
    "version": "1.0.0",
    "description": "",
    "metadata": {},
    "pages": [],
}


class TemplateStore:
    """
    Read-only access to the templates directory.

    Layout::

        projects/<template_id>.json   starting documents for CREATE
        compose/docker-compose.yml.j2 runtime topology rendered by DEPLOY
    """

    def __init__(self, templates_dir: Optional[Path] = None) -> None:
        """
        Initialize the store.

        Args:
            templates_dir: Templates root (defaults to the packaged templates)
        """
        self.templates_dir = Path(templates_dir) if templates_dir else DEFAULT_TEMPLATES_DIR
        self.projects_dir = self.templates_dir / "projects"
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def read_project_template(self, template_id: str) -> Optional[dict[str, Any]]:
        """
        Read a project template.

        Returns:
            Template document, or None if it is missing or unreadable
        """
        if not is_valid_project_id(template_id):
            logger.warning("template_id_invalid", template=template_id)
            return None

        path = self.projects_dir / f"{template_id}.json"
        if not path.exists():
            logger.info("template_not_found", template=template_id, path=str(path))
            return None

        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("template_unreadable", template=template_id, error=str(e))
            return None

        if not isinstance(document, dict):
            logger.warning("template_not_an_object", template=template_id)
            return None

        logger.debug("template_loaded", template=template_id)
        return document

    def empty_template(self) -> dict[str, Any]:
        """The fallback document for unknown or missing templates."""
        return self.read_project_template(FALLBACK_TEMPLATE) or json.loads(json.dumps(EMPTY_PROJECT))

    def list_templates(self) -> list[dict[str, Any]]:
        """Describe every project template available."""
        if not self.projects_dir.exists():
            return []

        templates = []
        for path in sorted(self.projects_dir.glob("*.json")):
            document = self.read_project_template(path.stem)
            if document is None:
                continue
            templates.append({
                "id": path.stem,
                "name": document.get("name", path.stem),
                "version": document.get("version", "1.0.0"),
                "description": document.get("description", ""),
                "pages": len(document.get("pages") or []),
            })
        return templates

    def compose_source(self) -> str:
        """Raw source of the compose template."""
        source, _, _ = self.env.loader.get_source(self.env, COMPOSE_TEMPLATE)
        return source

    def render_string(self, source: str, variables: dict[str, Any]) -> str:
        return self.env.from_string(source).render(**variables)
