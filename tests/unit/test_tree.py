"""Unit tests for the project document model and tree visitors."""

from datetime import datetime, timezone

from siteforge.lifecycle.states import ProjectState
from siteforge.models.project import BuildInfo, DeploymentRecord, Project
from siteforge.models.runtime import ServiceSpec
from siteforge.models.tree import duplicate_ids, find_element, iter_elements, summarize_usage
from siteforge.pipeline.templates import TemplateStore


def project_from_template(template_id):
    document = TemplateStore().read_project_template(template_id)
    return Project.from_dict({**document, "id": "site-1", "state": "DRAFT"})


class TestProjectDocument:
    """Tests for Project serialization."""

    def test_round_trip_keeps_unknown_keys(self):
        """Keys the model does not know survive load and save."""
        data = {
            "id": "site-1",
            "name": "Site",
            "state": "DRAFT",
            "pages": [
                {
                    "id": "home",
                    "name": "Home",
                    "path": "/",
                    "layout": {
                        "columns": 12,
                        "sections": [
                            {
                                "id": "hero",
                                "background": "#fff",
                                "divs": [
                                    {
                                        "id": "body",
                                        "style": {"gap": 4},
                                        "components": [
                                            {"id": "t", "type": "h", "tag": "h2", "content": "Hi"}
                                        ],
                                    }
                                ],
                            }
                        ],
                    },
                }
            ],
        }

        saved = Project.from_dict(data).to_dict()
        page = saved["pages"][0]

        assert page["path"] == "/"
        assert page["layout"]["columns"] == 12
        section = page["layout"]["sections"][0]
        assert section["background"] == "#fff"
        assert section["divs"][0]["style"] == {"gap": 4}
        assert section["divs"][0]["components"][0] == {
            "id": "t", "type": "h", "tag": "h2", "content": "Hi",
        }
        assert section["lists"] == []
        assert section["forms"] == []

    def test_build_and_deployment_use_camel_case(self):
        stamp = datetime(2026, 1, 1, tzinfo=timezone.utc)
        project = Project(
            id="site-1",
            name="Site",
            state=ProjectState.OFFLINE,
            last_modified=stamp,
            build=BuildInfo(build_id="b1", built_at=stamp),
            deployment=DeploymentRecord(
                network="n",
                volume="v",
                services=[ServiceSpec("app", "c", "node:20-alpine", 3000, host_port=4100)],
                deployed_at=stamp,
            ),
        )

        data = project.to_dict()

        assert data["state"] == "OFFLINE"
        assert data["lastModified"] == "2026-01-01T00:00:00+00:00"
        assert data["build"]["buildId"] == "b1"
        assert data["deployment"]["deployedAt"] == "2026-01-01T00:00:00+00:00"

        loaded = Project.from_dict(data)
        assert loaded.deployment.ports == [4100]
        assert loaded.build.built_at == stamp

    def test_evolve_is_deep(self):
        project = Project(id="site-1", name="Site", metadata={"tags": ["a"]})
        copy = project.evolve(name="Other")
        copy.metadata["tags"].append("b")

        assert project.name == "Site"
        assert project.metadata == {"tags": ["a"]}


class TestTreeVisitors:
    """Tests for tree traversal helpers."""

    def test_basic_template_usage(self):
        usage = summarize_usage(project_from_template("basic"))
        assert usage.components == ["a", "button", "h", "p"]
        assert usage.containers == ["div"]
        assert usage.element_count == 7

    def test_landing_template_usage(self):
        usage = summarize_usage(project_from_template("landing"))
        assert usage.components == ["h", "image", "video"]
        assert usage.containers == ["div", "form", "list"]
        assert usage.element_count == 6

    def test_empty_project_usage(self):
        usage = summarize_usage(Project(id="site-1", name="Site"))
        assert usage.components == []
        assert usage.element_count == 0

    def test_find_element_reports_path(self):
        element = find_element(project_from_template("basic"), "hero-cta")
        assert element.kind == "component"
        assert element.path == ("home", "hero", "hero-body", "hero-cta")
        assert element.depth == 4

    def test_find_missing_element(self):
        assert find_element(project_from_template("basic"), "nope") is None

    def test_document_order(self):
        kinds = [e.kind for e in iter_elements(project_from_template("basic"))][:4]
        assert kinds == ["page", "section", "container", "component"]

    def test_duplicate_ids(self):
        project = project_from_template("basic")
        project.pages[0].sections[1].id = "header"
        assert duplicate_ids(project) == ["header"]
