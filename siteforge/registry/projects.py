"""Project registry: one JSON document per project."""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Optional

from siteforge.errors import PersistenceError, ProjectNotFoundError, ValidationError
from siteforge.models.project import Project, is_valid_project_id
from siteforge.utils.atomic import AtomicWriteError, atomic_write_json
from siteforge.utils.logging import get_logger

logger = get_logger("registry.projects")

PROJECT_FILE = "project.json"


class ProjectRegistry:
    """
    Sole writer of project documents.

    Layout: ``<data_dir>/projects/<project_id>/project.json``.
    """

    def __init__(self, data_dir: Path) -> None:
        """
        Initialize the registry.

        Args:
            data_dir: Root data directory
        """
        self.data_dir = Path(data_dir)
        self.projects_dir = self.data_dir / "projects"

    def project_dir(self, project_id: str) -> Path:
        if not is_valid_project_id(project_id):
            raise ValidationError(
                f"Invalid project id: {project_id!r}",
                errors=["id must match ^[a-z0-9-]+$"],
                project_id=project_id,
            )
        return self.projects_dir / project_id

    def path_for(self, project_id: str) -> Path:
        return self.project_dir(project_id) / PROJECT_FILE

    def exists(self, project_id: str) -> bool:
        return self.path_for(project_id).exists()

    def get(self, project_id: str) -> Optional[Project]:
        """Load a project, or None if it does not exist."""
        path = self.path_for(project_id)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Project.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error("project_load_failed", project_id=project_id, error=str(e))
            raise PersistenceError(
                f"Cannot read project document {path}: {e}",
                project_id=project_id,
            ) from e

    def load(self, project_id: str) -> Project:
        """
        Load a project.

        Raises:
            ProjectNotFoundError: If no document exists
        """
        project = self.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def save(self, project: Project) -> Path:
        """Atomically write the project document."""
        path = self.path_for(project.id)
        try:
            atomic_write_json(path, project.to_dict())
        except AtomicWriteError as e:
            raise PersistenceError(str(e), project_id=project.id) from e

        logger.info(
            "project_saved",
            project_id=project.id,
            state=project.state.name,
            path=str(path),
        )
        return path

    def delete(self, project_id: str) -> bool:
        """Remove the project document and its directory."""
        directory = self.project_dir(project_id)
        if not directory.exists():
            return False

        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise PersistenceError(
                f"Cannot delete project {project_id}: {e}",
                project_id=project_id,
            ) from e

        logger.info("project_deleted", project_id=project_id)
        return True

    def list_ids(self) -> list[str]:
        if not self.projects_dir.exists():
            return []
        return sorted(
            child.name
            for child in self.projects_dir.iterdir()
            if child.is_dir() and (child / PROJECT_FILE).exists()
        )
