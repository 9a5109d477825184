"""Unit tests for template and deployment validation."""

import pytest

from siteforge.errors import ResourceConflictError
from siteforge.models.runtime import DeploymentSpec, ServiceSpec
from siteforge.pipeline.templates import TemplateStore
from siteforge.registry.allocations import AllocationLedger, ResourceKind
from siteforge.validation.runtime import DeploymentValidator
from siteforge.validation.template import TemplateValidator


def service(name="app-visitor", host_port=None, image="node:20-alpine", container_name=None):
    return ServiceSpec(
        name=name,
        container_name=container_name or f"siteforge-site-1-{name}",
        image=image,
        container_port=3000,
        host_port=host_port,
    )


def spec(*services):
    return DeploymentSpec(
        project_id="site-1",
        network="siteforge-site-1-net",
        volume="siteforge-site-1-data",
        services=tuple(services or [service()]),
    )


class TestTemplateValidator:
    """Tests for TemplateValidator."""

    def test_valid_template(self):
        report = TemplateValidator().validate(
            "name: {{ project_id }}", {"project_id": "site-1"}, required_vars=["project_id"]
        )
        assert report.valid
        assert report.referenced_vars == ["project_id"]

    def test_syntax_error(self):
        """Unclosed blocks are reported with a line number."""
        report = TemplateValidator().validate(
            "{% for s in services %}\n{{ s }}", {"services": []}, name="compose"
        )
        assert not report.valid
        assert report.errors[0].startswith("compose:")

    def test_unknown_filter(self):
        report = TemplateValidator().validate("{{ name | shout }}", {"name": "x"})
        assert not report.valid

    def test_missing_variable(self):
        report = TemplateValidator().validate("{{ network }}-{{ volume }}", {"network": "n"})
        assert not report.valid
        assert report.missing_vars == ["volume"]
        assert report.errors == ["<template>: variable 'volume' is not provided"]

    def test_unused_required_variable_is_warning(self):
        report = TemplateValidator().validate(
            "{{ network }}", {"network": "n", "volume": "v"}, required_vars=["network", "volume"]
        )
        assert report.valid
        assert report.unused_vars == ["volume"]
        assert report.warnings == ["<template>: required variable 'volume' is never used"]

    def test_packaged_compose_template_is_valid(self):
        """The shipped compose template uses exactly the deploy variables."""
        source = TemplateStore().compose_source()
        report = TemplateValidator().validate(
            source,
            {
                "project_id": "site-1",
                "project_name": "Site",
                "build_id": "b1",
                "network": "n",
                "volume": "v",
                "mount_path": "/app/content",
                "services": [],
            },
            required_vars=["project_id", "services", "network", "volume"],
        )
        assert report.valid, report.errors
        assert report.warnings == []


class TestDeploymentValidator:
    """Tests for DeploymentValidator."""

    def test_valid_spec(self):
        assert DeploymentValidator().validate(spec()).valid

    def test_requires_a_service(self):
        report = DeploymentValidator().validate(
            DeploymentSpec("site-1", "net", "data", services=())
        )
        assert "Deployment must define at least one service" in report.errors

    def test_bad_image_reference(self):
        report = DeploymentValidator().validate(spec(service(image="Not An Image")))
        assert any("is not a valid image reference" in e for e in report.errors)

    def test_duplicate_host_port(self):
        report = DeploymentValidator().validate(
            spec(service("a", host_port=4100), service("b", host_port=4100))
        )
        assert "Host port 4100 is bound by 2 services" in report.errors

    def test_duplicate_container_name(self):
        report = DeploymentValidator().validate(
            spec(service("a", container_name="same"), service("b", container_name="same"))
        )
        assert 'Container name "same" is used by 2 services' in report.errors

    def test_host_port_out_of_range(self):
        report = DeploymentValidator().validate(spec(service(host_port=70000)))
        assert not report.valid

    def test_collision_with_other_project(self):
        """Resources owned by another project are rejected."""
        ledger = AllocationLedger()
        ledger.claim("other", ResourceKind.NETWORK, "siteforge-site-1-net")

        with pytest.raises(ResourceConflictError) as exc_info:
            DeploymentValidator(ledger).check_collisions("site-1", spec())

        assert exc_info.value.owner == "other"
        assert exc_info.value.kind == "network"

    def test_own_resources_do_not_collide(self):
        ledger = AllocationLedger()
        ledger.claim("site-1", ResourceKind.PORT, 4100)
        DeploymentValidator(ledger).check_collisions("site-1", spec(service(host_port=4100)))

    def test_port_collision(self):
        ledger = AllocationLedger()
        ledger.claim("other", ResourceKind.PORT, 4100)
        with pytest.raises(ResourceConflictError, match="port '4100'"):
            DeploymentValidator(ledger).check_collisions("site-1", spec(service(host_port=4100)))
