"""Unit tests for the project registry and atomic writes."""

import json

import pytest

from siteforge.errors import PersistenceError, ProjectNotFoundError, ValidationError
from siteforge.lifecycle.states import ProjectState
from siteforge.models.project import Project, default_home_page
from siteforge.utils.atomic import AtomicWriteError, atomic_write_json, atomic_write_text


def project(project_id="site-1", state=ProjectState.DRAFT):
    return Project(id=project_id, name="Site", state=state, pages=[default_home_page()])


class TestProjectRegistry:
    """Tests for ProjectRegistry."""

    def test_save_and_load(self, registry):
        path = registry.save(project())

        assert path == registry.data_dir / "projects" / "site-1" / "project.json"
        loaded = registry.load("site-1")
        assert loaded.state == ProjectState.DRAFT
        assert loaded.pages[0].id == "home"

    def test_get_missing_returns_none(self, registry):
        assert registry.get("ghost") is None

    def test_load_missing_raises(self, registry):
        with pytest.raises(ProjectNotFoundError):
            registry.load("ghost")

    def test_invalid_id_never_touches_disk(self, registry):
        """Ids that could escape the data directory are rejected."""
        with pytest.raises(ValidationError):
            registry.get("../etc")

    def test_corrupt_document(self, registry):
        path = registry.path_for("site-1")
        path.parent.mkdir(parents=True)
        path.write_text("{broken")

        with pytest.raises(PersistenceError):
            registry.get("site-1")

    def test_delete(self, registry):
        registry.save(project())
        assert registry.delete("site-1")
        assert not registry.exists("site-1")
        assert not registry.delete("site-1")

    def test_list_ids_sorted(self, registry):
        for project_id in ("b-site", "a-site"):
            registry.save(project(project_id))
        assert registry.list_ids() == ["a-site", "b-site"]

    def test_save_overwrites_atomically(self, registry):
        """No temp files are left next to the document."""
        registry.save(project())
        registry.save(project(state=ProjectState.BUILT))

        directory = registry.project_dir("site-1")
        assert [p.name for p in directory.iterdir()] == ["project.json"]
        assert json.loads(registry.path_for("site-1").read_text())["state"] == "BUILT"


class TestAtomicWrite:
    """Tests for atomic file helpers."""

    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "a" / "b" / "doc.json"
        atomic_write_json(target, {"ok": True})
        assert json.loads(target.read_text()) == {"ok": True}

    def test_failed_write_keeps_original(self, tmp_path):
        target = tmp_path / "doc.json"
        atomic_write_text(target, "original")

        circular = {}
        circular["self"] = circular
        with pytest.raises(AtomicWriteError):
            atomic_write_json(target, circular)

        assert target.read_text() == "original"
        assert [p.name for p in tmp_path.iterdir()] == ["doc.json"]
