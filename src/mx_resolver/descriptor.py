"""Load a YAML project descriptor into a `Pom` and repository settings."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mx_resolver.config import MAVEN_CENTRAL, ProxyConfig, RepositoryConfig, ResolverContext, UpdatePolicy
from mx_resolver.exceptions import DescriptorError
from mx_resolver.models import Dependency
from mx_resolver.pom import Pom
from mx_resolver.scope import SOLVED_SCOPES, Scope


logger = logging.getLogger(__name__)


def _parse(coordinates: str, what: str) -> Dependency:
    try:
        return Dependency.parse(coordinates)
    except ValueError as exc:
        raise DescriptorError(f"Invalid {what} {coordinates!r}: {exc}") from exc


def parse_dependency_entry(entry: str) -> tuple[Scope, Dependency]:
    """Parse `"<scope> <coordinates> [options]"`.

    A missing scope keyword means compile. `system` entries are file paths.

    Raises:
        DescriptorError: If the coordinates are malformed.
    """
    keyword, _, rest = entry.strip().partition(" ")
    scope = Scope.from_string(keyword)
    if scope is None:
        scope, rest = Scope.default(), entry.strip()
    rest = rest.strip()
    if scope is Scope.SYSTEM:
        return scope, Dependency.system(rest)
    return scope, _parse(rest, "dependency")


class DependencyOverride(BaseModel):
    """Dependencies that replace the published POM of one coordinate.

    `scope` names the solve scopes the override applies to; empty means all.
    """

    dependencies: list[str] = Field(default_factory=list)
    scope: list[str] = Field(default_factory=list)

    @field_validator("scope", mode="before")
    @classmethod
    def _scope_list(cls, value: Any) -> Any:
        return [value] if isinstance(value, str) else value


class ProjectDescriptor(BaseModel):
    """A project's build descriptor."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    group_id: str = Field(alias="groupId")
    artifact_id: str = Field(alias="artifactId")
    version: str = "0.0.0-SNAPSHOT"
    packaging: str = "jar"
    name: str | None = None
    description: str | None = None
    url: str | None = None
    parent: str | None = None
    properties: dict[str, str] = Field(default_factory=dict)
    repositories: list[RepositoryConfig] = Field(default_factory=list)
    proxies: list[ProxyConfig] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    dependency_management: list[str] = Field(default_factory=list, alias="dependencyManagement")
    exclusions: list[str] = Field(default_factory=list)
    dependency_overrides: dict[str, DependencyOverride] = Field(default_factory=dict, alias="dependencyOverrides")
    update_policy: str | None = Field(default=None, alias="updatePolicy")

    path: Path | None = Field(default=None, exclude=True)

    @field_validator("version", mode="before")
    @classmethod
    def _version_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value

    @field_validator("properties", mode="before")
    @classmethod
    def _property_text(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    def to_pom(self, context: ResolverContext | None = None) -> Pom:
        """Build the project's `Pom`.

        Raises:
            DescriptorError: If the parent or a dependency entry is malformed.
        """
        pom = Pom(
            self.group_id,
            self.artifact_id,
            self.version,
            external_properties=context.properties if context else None,
            strict_properties=context.strict_properties if context else False,
        )
        pom.packaging = self.packaging
        pom.name = self.name
        pom.description = self.description
        pom.url = self.url
        pom.path = self.path
        for key, value in self.properties.items():
            pom.set_property(key, value)

        if self.parent:
            parent = _parse(self.parent, "parent")
            pom.parent_group_id = parent.group_id
            pom.parent_artifact_id = parent.artifact_id
            pom.parent_version = parent.version

        pom.exclusions.update(self.exclusions)

        for entry in self.dependency_management:
            scope, dep = parse_dependency_entry(entry)
            pom.add_managed_dependency(dep, None if scope.is_default else scope)

        for entry in self.dependencies:
            scope, dep = parse_dependency_entry(entry)
            pom.add_dependency(dep, scope)

        pom.resolve_properties()
        return pom

    def overrides(self) -> dict[tuple[Scope, str], Pom]:
        """Dependency lists that replace the published POM of a coordinate in some scopes.

        Raises:
            DescriptorError: If a coordinate, entry or scope name is malformed.
        """
        result: dict[tuple[Scope, str], Pom] = {}
        for coordinates, definition in self.dependency_overrides.items():
            target = _parse(coordinates, "override")
            if not target.version:
                raise DescriptorError(f"dependencyOverrides entry {coordinates} must specify a version")
            override = Pom(target.group_id, target.artifact_id, target.version)
            for entry in definition.dependencies:
                scope, dep = parse_dependency_entry(entry)
                override.add_dependency(dep, scope)

            scopes: list[Scope] = []
            for name in definition.scope:
                scope = Scope.from_string(name)
                if scope is None:
                    raise DescriptorError(f"Unknown scope {name!r} in override for {coordinates}")
                scopes.append(scope)
            for scope in scopes or SOLVED_SCOPES:
                result[(scope, target.coordinates)] = override
        return result

    def apply(self, context: ResolverContext) -> ResolverContext:
        """Return a copy of `context` with this descriptor's repositories, proxies and overrides."""
        repositories = [*self.repositories, *context.repositories] or [MAVEN_CENTRAL]
        overrides = {**context.overrides, **self.overrides()}
        changes: dict[str, Any] = {
            "repositories": repositories,
            "proxies": [*self.proxies, *context.proxies],
            "overrides": overrides,
        }
        if self.update_policy:
            changes["update_policy"] = UpdatePolicy.parse(self.update_policy)
        return dataclasses.replace(context, **changes)


def load_descriptor(path: str | Path) -> ProjectDescriptor:
    """Read a YAML project descriptor.

    Raises:
        DescriptorError: If the file is missing, not YAML, or invalid.
    """
    descriptor_path = Path(path)
    if not descriptor_path.is_file():
        raise DescriptorError(f"Project descriptor not found: {descriptor_path}")
    try:
        data = yaml.safe_load(descriptor_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise DescriptorError(f"Failed to parse {descriptor_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise DescriptorError(f"{descriptor_path} must contain a mapping")
    try:
        descriptor = ProjectDescriptor.model_validate(data)
    except ValidationError as exc:
        raise DescriptorError(f"Invalid project descriptor {descriptor_path}: {exc}") from exc
    descriptor.path = descriptor_path.resolve()
    logger.debug("loaded %s", descriptor_path)
    return descriptor
