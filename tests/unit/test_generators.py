"""Unit tests for resource loading and artifact generation."""

from datetime import datetime, timezone

import pytest
import yaml

from siteforge.config.settings import RuntimeConfig
from siteforge.errors import ValidationError
from siteforge.lifecycle.states import Action, ProjectState
from siteforge.models.artifacts import DeploymentArtifact, StartPlan, UpdatePlan
from siteforge.models.project import BuildInfo, DeploymentRecord, Project, default_home_page
from siteforge.models.runtime import PROJECT_LABEL, ServiceSpec
from siteforge.pipeline.generators import (
    ArtifactGenerator,
    bump_version,
    port_variable,
    title_from_id,
)
from siteforge.pipeline.loaders import LoadedContext, ResourceLoader
from siteforge.pipeline.templates import TemplateStore

NOW = datetime(2026, 2, 3, 4, 5, 6, tzinfo=timezone.utc)


def context(action, project=None, project_id="site-1", **fields):
    return LoadedContext(action=action, project_id=project_id, now=NOW, project=project, **fields)


def built_project(state=ProjectState.BUILT, **fields):
    return Project(
        id="site-1",
        name="Site One",
        state=state,
        pages=[default_home_page()],
        build=BuildInfo(build_id="site-1-b1", built_at=NOW, targets=["app-visitor", "app-admin"]),
        **fields,
    )


def deployed_project(state=ProjectState.OFFLINE, ports=(4100,)):
    services = [
        ServiceSpec(
            name=f"svc-{i}",
            container_name=f"siteforge-site-1-svc-{i}",
            image="node:20-alpine",
            container_port=3000,
            host_port=port,
        )
        for i, port in enumerate(ports)
    ]
    return built_project(
        state=state,
        deployment=DeploymentRecord(network="net", volume="vol", services=services),
    )


class TestHelpers:
    """Tests for naming and version helpers."""

    @pytest.mark.parametrize("value,expected", [
        ("my-site", "My Site"),
        ("site-1", "Site 1"),
        ("a--b", "A B"),
        ("solo", "Solo"),
    ])
    def test_title_from_id(self, value, expected):
        assert title_from_id(value) == expected

    def test_bump_version(self):
        assert bump_version("1.0.0") == "1.0.1"
        assert bump_version("2.3.9-beta") == "2.3.10"

    def test_bump_invalid_version(self):
        with pytest.raises(ValidationError):
            bump_version("latest")

    def test_port_variable(self):
        assert port_variable("app-visitor") == "SITEFORGE_APP_VISITOR_PORT"


class TestResourceLoader:
    """Tests for ResourceLoader."""

    @pytest.mark.asyncio
    async def test_create_defaults_to_basic_template(self):
        loaded = await ResourceLoader(TemplateStore(), clock=lambda: NOW).load(
            Action.CREATE, "site-1"
        )
        assert loaded.template_id == "basic"
        assert not loaded.fallback_used
        assert loaded.now == NOW

    @pytest.mark.asyncio
    async def test_unknown_template_falls_back(self):
        loaded = await ResourceLoader(TemplateStore()).load(
            Action.CREATE, "site-1", {"template": "portfolio"}
        )
        assert loaded.template_id == "empty"
        assert loaded.requested_template == "portfolio"
        assert loaded.fallback_used

    @pytest.mark.asyncio
    async def test_deploy_loads_compose_source(self):
        loaded = await ResourceLoader(TemplateStore()).load(
            Action.DEPLOY, "site-1", project=built_project()
        )
        assert "{{ network }}" in loaded.compose_source
        assert loaded.runtime_status is None


class TestDocumentGenerators:
    """Tests for CREATE, EDIT, BUILD and REVERT."""

    def test_create_from_template(self):
        template = TemplateStore().read_project_template("basic")
        artifact = ArtifactGenerator().generate(
            Action.CREATE,
            context(Action.CREATE, template_id="basic", template_document=template),
            {"name": "  My Site  ", "metadata": {"owner": "ops"}},
        )

        project = artifact.project
        assert project.name == "My Site"
        assert project.state == ProjectState.VOID
        assert project.created == NOW
        assert project.template.id == "basic"
        assert project.template.name == "Basic Site"
        assert project.metadata == {"category": "starter", "owner": "ops"}
        assert [p.id for p in project.pages] == ["home"]
        assert artifact.changes == ["created"]

    def test_create_fallback_records_requested_template(self):
        artifact = ArtifactGenerator().generate(
            Action.CREATE,
            context(
                Action.CREATE,
                template_id="empty",
                requested_template="portfolio",
                template_document=TemplateStore().empty_template(),
                fallback_used=True,
            ),
        )
        project = artifact.project
        assert project.name == "Site 1"
        assert project.template.fallback
        assert project.metadata["requestedTemplate"] == "portfolio"
        assert [p.id for p in project.pages] == ["home"]

    def test_create_rejects_bad_id(self):
        with pytest.raises(ValidationError):
            ArtifactGenerator().generate(Action.CREATE, context(Action.CREATE, project_id="Site 1"))

    def test_edit_leaves_loaded_project_untouched(self):
        """Generators work on a copy of the loaded document."""
        original = built_project(state=ProjectState.DRAFT)
        artifact = ArtifactGenerator().generate(
            Action.EDIT, context(Action.EDIT, original), {"name": "Renamed"}
        )
        assert artifact.project.name == "Renamed"
        assert original.name == "Site One"
        assert artifact.changes == ["name"]

    def test_edit_pages_must_be_list(self):
        with pytest.raises(ValidationError, match="pages must be a list"):
            ArtifactGenerator().generate(
                Action.EDIT,
                context(Action.EDIT, built_project(state=ProjectState.DRAFT)),
                {"pages": {"id": "home"}},
            )

    def test_build_manifest(self):
        draft = Project(id="site-1", name="Site", state=ProjectState.DRAFT, pages=[default_home_page()])
        artifact = ArtifactGenerator().generate(
            Action.BUILD, context(Action.BUILD, draft), {"production": False}
        )
        build = artifact.project.build
        assert build.build_id == "site-1-20260203040506"
        assert build.targets == ["app-visitor"]
        assert build.production is False
        assert build.minify is False
        assert artifact.project.state == ProjectState.DRAFT

    def test_revert_remembers_build(self):
        artifact = ArtifactGenerator().generate(Action.REVERT, context(Action.REVERT, built_project()))
        assert artifact.project.build is None
        assert artifact.project.metadata["lastRevertedBuild"] == "site-1-b1"


class TestRuntimeGenerators:
    """Tests for DEPLOY, START, STOP, UPDATE and DELETE."""

    def test_deploy_one_service_per_target(self):
        artifact = ArtifactGenerator().generate(
            Action.DEPLOY, context(Action.DEPLOY, built_project()), {"image": "node:22-alpine"}
        )

        assert isinstance(artifact, DeploymentArtifact)
        assert artifact.port_count == 2
        assert artifact.spec.network == "siteforge-site-1-net"
        assert artifact.spec.volume == "siteforge-site-1-data"
        first = artifact.spec.services[0]
        assert first.container_name == "siteforge-site-1-app-visitor"
        assert first.image == "node:22-alpine"
        assert first.host_port is None
        assert first.labels == {PROJECT_LABEL: "site-1"}
        assert first.environment["SITEFORGE_BUILD"] == "site-1-b1"
        assert artifact.project.deployment.deployed_at == NOW

    def test_deploy_renders_compose(self):
        artifact = ArtifactGenerator().generate(Action.DEPLOY, context(Action.DEPLOY, built_project()))

        compose = yaml.safe_load(artifact.compose)

        assert compose["name"] == "site-1"
        service = compose["services"]["app-admin"]
        assert service["container_name"] == "siteforge-site-1-app-admin"
        assert service["ports"] == ["${SITEFORGE_APP_ADMIN_PORT}:3000"]
        assert service["environment"]["NODE_ENV"] == "production"
        assert compose["networks"]["siteforge-site-1-net"]["name"] == "siteforge-site-1-net"
        assert "siteforge-site-1-data" in compose["volumes"]

    def test_deploy_requires_build(self):
        project = built_project()
        project.build = None
        with pytest.raises(ValidationError, match="no build manifest"):
            ArtifactGenerator().generate(Action.DEPLOY, context(Action.DEPLOY, project))

    def test_start_drops_ports_no_longer_owned(self):
        """Recorded ports the project released become preferences only."""
        plan = ArtifactGenerator(RuntimeConfig(health_path="/health")).generate(
            Action.START, context(Action.START, deployed_project(), owned_ports=[])
        )
        assert isinstance(plan, StartPlan)
        assert plan.spec.host_ports == []
        assert plan.preferred_ports == [4100]
        assert plan.health_path == "/health"

    def test_start_keeps_owned_ports(self):
        plan = ArtifactGenerator().generate(
            Action.START, context(Action.START, deployed_project(), owned_ports=[4100])
        )
        assert plan.spec.host_ports == [4100]

    def test_start_requires_deployment(self):
        with pytest.raises(ValidationError, match="no deployment record"):
            ArtifactGenerator().generate(Action.START, context(Action.START, built_project()))

    def test_stop_releases_recorded_and_owned_ports(self):
        plan = ArtifactGenerator().generate(
            Action.STOP,
            context(Action.STOP, deployed_project(ProjectState.ONLINE), owned_ports=[4100, 4101]),
        )
        assert plan.ports == [4100, 4101]
        assert plan.spec.container_names == ["siteforge-site-1-svc-0"]

    def test_update_online(self):
        plan = ArtifactGenerator().generate(
            Action.UPDATE,
            context(Action.UPDATE, deployed_project(ProjectState.ONLINE), owned_ports=[4100]),
            {"image": "node:22-alpine", "strategy": "recreate"},
        )
        assert isinstance(plan, UpdatePlan)
        assert plan.restart
        assert plan.previous_version == "1.0.0"
        assert plan.next_version == "1.0.1"
        assert plan.previous.images == ["node:20-alpine"]
        assert plan.images == ["node:22-alpine"]
        assert plan.project.version == "1.0.1"
        assert plan.project.deployment.strategy == "recreate"
        assert plan.project.deployment.updated_at == NOW

    def test_update_offline_does_not_restart(self):
        plan = ArtifactGenerator().generate(
            Action.UPDATE, context(Action.UPDATE, deployed_project()), {"version": "3.0.0"}
        )
        assert not plan.restart
        assert plan.strategy == "rolling"
        assert plan.next_version == "3.0.0"

    def test_update_unknown_strategy(self):
        with pytest.raises(ValidationError, match="Unknown update strategy"):
            ArtifactGenerator().generate(
                Action.UPDATE, context(Action.UPDATE, deployed_project()), {"strategy": "canary"}
            )

    def test_delete_draft_has_no_spec(self):
        plan = ArtifactGenerator().generate(
            Action.DELETE, context(Action.DELETE, built_project(state=ProjectState.DRAFT))
        )
        assert plan.spec is None
        assert plan.ports == []
        assert not plan.was_running

    def test_delete_online(self):
        plan = ArtifactGenerator().generate(
            Action.DELETE,
            context(Action.DELETE, deployed_project(ProjectState.ONLINE), owned_ports=[4102]),
        )
        assert plan.was_running
        assert plan.ports == [4100, 4102]
