"""Jinja2 template validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, meta

from siteforge.utils.logging import get_logger

logger = get_logger("validation.template")


@dataclass
class TemplateReport:
    """Outcome of checking one template against its variables."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    referenced_vars: list[str] = field(default_factory=list)
    missing_vars: list[str] = field(default_factory=list)
    unused_vars: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "referenced_vars": list(self.referenced_vars),
            "missing_vars": list(self.missing_vars),
            "unused_vars": list(self.unused_vars),
        }


def make_environment() -> Environment:
    """Environment used to render and check runtime templates."""
    return Environment(
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


class TemplateValidator:
    """
    Checks a template before it is rendered.

    Reports syntax errors (including unclosed blocks and unknown filters),
    variables the template references but the caller does not supply, and
    required variables the template never uses.
    """

    def __init__(self, environment: Optional[Environment] = None) -> None:
        self.environment = environment or make_environment()

    def validate(
        self,
        source: str,
        variables: Optional[Mapping[str, Any]] = None,
        required_vars: Iterable[str] = (),
        name: str = "<template>",
    ) -> TemplateReport:
        """
        Validate template source.

        Args:
            source: Template text
            variables: Values that will be passed at render time
            required_vars: Variables the template must reference
            name: Template name used in messages

        Returns:
            TemplateReport
        """
        report = TemplateReport()
        supplied = set(variables or {})

        try:
            ast = self.environment.parse(source, name=name)
            # Compiling resolves filters and tests, which parse alone does not
            self.environment.from_string(source)
        except TemplateSyntaxError as e:
            report.valid = False
            report.errors.append(f"{name}:{e.lineno}: {e.message}")
            logger.debug("template_invalid", template=name, error=e.message)
            return report

        referenced = meta.find_undeclared_variables(ast)
        report.referenced_vars = sorted(referenced)
        report.missing_vars = sorted(referenced - supplied)
        report.unused_vars = sorted(set(required_vars) - referenced)

        for var in report.missing_vars:
            report.errors.append(f"{name}: variable '{var}' is not provided")
        for var in report.unused_vars:
            report.warnings.append(f"{name}: required variable '{var}' is never used")

        report.valid = not report.errors
        logger.debug(
            "template_validated",
            template=name,
            valid=report.valid,
            missing=report.missing_vars,
        )
        return report
