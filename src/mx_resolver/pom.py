"""In-memory project object model with property substitution and inheritance."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping
from pathlib import Path

from lxml import etree
from requests.structures import CaseInsensitiveDict

from mx_resolver.exceptions import PropertyResolutionError
from mx_resolver.models import POM, Dependency, License, Person
from mx_resolver.scope import Scope


logger = logging.getLogger(__name__)

_PROPERTY_RE = re.compile(r"\$\{([a-zA-Z0-9\-_.]+)\}")

_MAVEN_NS = "http://maven.apache.org/POM/4.0.0"
_XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
_SCHEMA_LOCATION = f"{_MAVEN_NS} http://maven.apache.org/maven-v4_0_0.xsd"

_PROJECT_ACCESSORS: dict[str, Callable[["Pom"], str | None]] = {
    "groupid": lambda p: p.group_id,
    "artifactid": lambda p: p.artifact_id,
    "version": lambda p: p.version,
    "classifier": lambda p: p.classifier,
    "packaging": lambda p: p.packaging,
    "name": lambda p: p.name,
    "description": lambda p: p.description,
    "url": lambda p: p.url,
    "organization": lambda p: p.organization,
    "organization.name": lambda p: p.organization,
    "issuesurl": lambda p: p.issues_url,
}

_PARENT_ACCESSORS: dict[str, Callable[["Pom"], str | None]] = {
    "groupid": lambda p: p.parent_group_id,
    "artifactid": lambda p: p.parent_artifact_id,
    "version": lambda p: p.parent_version,
}


def _non_destructive_copy(source: Mapping, target: dict | CaseInsensitiveDict) -> None:
    for key, value in source.items():
        if key not in target:
            target[key] = value


class Pom:
    """A Maven project descriptor.

    Properties are looked up case-insensitively. Dependencies are kept per
    declared scope in declaration order.
    """

    def __init__(
        self,
        group_id: str = "",
        artifact_id: str = "",
        version: str = "",
        *,
        external_properties: Mapping[str, str] | None = None,
        strict_properties: bool = False,
    ) -> None:
        self.group_id = group_id
        self.artifact_id = artifact_id
        self.version = version
        self.classifier: str | None = None
        self.packaging = "jar"
        self.name: str | None = None
        self.description: str | None = None
        self.url: str | None = None
        self.organization: str | None = None
        self.issues_url: str | None = None

        self.parent_group_id: str | None = None
        self.parent_artifact_id: str | None = None
        self.parent_version: str | None = None

        self.licenses: list[License] = []
        self.developers: list[Person] = []

        self.properties: CaseInsensitiveDict = CaseInsensitiveDict()
        self.external_properties: CaseInsensitiveDict = CaseInsensitiveDict(external_properties or {})
        self.strict_properties = strict_properties

        self.managed_versions: dict[str, str] = {}
        self.managed_scopes: dict[str, Scope] = {}
        self.dependencies: dict[Scope, list[Dependency]] = {}
        self.exclusions: set[str] = set()
        # import-scoped dependencyManagement entries, whether or not they were cached
        self.imports: list[Dependency] = []

        # Set by the reader: file this POM was read from.
        self.path: Path | None = None

    # identity

    @property
    def management_id(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"

    @property
    def coordinates(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.version}"

    @property
    def is_snapshot(self) -> bool:
        return "-SNAPSHOT" in (self.version or "")

    def is_pom(self) -> bool:
        return (self.packaging or "").lower() == POM

    def is_jar(self) -> bool:
        return not self.packaging or self.packaging.lower() == "jar"

    def is_war(self) -> bool:
        return (self.packaging or "").lower() == "war"

    def as_dependency(self) -> Dependency:
        return Dependency(
            group_id=self.group_id,
            artifact_id=self.artifact_id,
            version=self.version,
            classifier=self.classifier,
            type=POM,
        )

    # properties

    def set_property(self, key: str, value: str | None) -> None:
        if key and value is not None:
            self.properties[key] = value.strip()

    def resolve_property(self, key: str) -> str:
        """Resolve a single property name.

        Precedence: explicit properties, `project.*`/`pom.*`/`parent.*`
        fields, `env.*` environment variables, then external (process)
        properties.

        Args:
            key: Property name without the `${}` wrapper.

        Raises:
            PropertyResolutionError: In strict mode, when the key cannot be resolved.

        Returns:
            The resolved value, or the key itself when unresolved.
        """
        return self._resolve(key, frozenset())

    def substitute(self, value: str | None) -> str | None:
        """Replace every `${key}` token in `value`."""
        if not value or "${" not in value:
            return value
        return self._substitute(value, frozenset())

    def _substitute(self, value: str, visiting: frozenset[str]) -> str:
        return _PROPERTY_RE.sub(lambda m: self._resolve(m.group(1), visiting), value)

    def _resolve(self, key: str, visiting: frozenset[str]) -> str:
        lookup = key.lower()
        if lookup in visiting:
            return self._unresolved(key, f"circular property reference ${{{key}}} in {self.coordinates}")
        raw = self._lookup(key)
        if raw is None:
            return self._unresolved(key, f"property ${{{key}}} not resolved in {self.coordinates}")
        return self._substitute(raw, visiting | {lookup})

    def _lookup(self, key: str) -> str | None:
        if key in self.properties:
            return self.properties[key]

        lower = key.lower()
        for prefix in ("project.", "pom."):
            if lower.startswith(prefix):
                getter = _PROJECT_ACCESSORS.get(lower[len(prefix):])
                if getter is not None and getter(self):
                    return getter(self)
        if lower.startswith("parent."):
            getter = _PARENT_ACCESSORS.get(lower[len("parent."):])
            if getter is not None and getter(self):
                return getter(self)
        if lower.startswith("env."):
            value = os.environ.get(key[len("env."):])
            if value is not None:
                return value
        if key in self.external_properties:
            return self.external_properties[key]
        return None

    def _unresolved(self, key: str, message: str) -> str:
        if self.strict_properties:
            raise PropertyResolutionError(message)
        logger.warning(message)
        return key

    def resolve_properties(self) -> None:
        """Substitute properties in the descriptive fields."""
        self.group_id = self.substitute(self.group_id) or ""
        self.version = self.substitute(self.version) or ""
        self.name = self.substitute(self.name)
        self.description = self.substitute(self.description)
        self.organization = self.substitute(self.organization)
        self.url = self.substitute(self.url)
        self.issues_url = self.substitute(self.issues_url)

    # dependency management

    def add_managed_dependency(self, dep: Dependency, scope: Scope | None = None) -> None:
        """Record the version (and optionally scope) default for a group:artifact."""
        group_id = self.substitute(dep.group_id) or ""
        version = self.substitute(dep.version) or ""
        managed = dep.copy_with(group_id=group_id, version=version)
        if managed.management_id == self.management_id:
            logger.warning("ignoring circular managed dependency %s", managed.management_id)
            return
        self.managed_versions[managed.management_id] = version
        if scope is not None:
            self.managed_scopes[managed.management_id] = scope

    def managed_version(self, dep: Dependency) -> str | None:
        return self.managed_versions.get(dep.management_id)

    def managed_scope(self, dep: Dependency) -> Scope | None:
        return self.managed_scopes.get(dep.management_id)

    def import_managed_dependencies(self, pom: "Pom") -> None:
        _non_destructive_copy(pom.managed_versions, self.managed_versions)
        _non_destructive_copy(pom.managed_scopes, self.managed_scopes)

    # dependencies

    def add_dependency(self, dep: Dependency, scope: Scope | None = None) -> bool:
        """Add a declared dependency.

        Group and version go through property substitution, with the managed
        version used when none is declared. Self dependencies, duplicates and
        POM-excluded dependencies are rejected.

        Args:
            dep: Declared dependency; it is copied, never mutated.
            scope: Declared scope, None to fall back to the managed scope or compile.

        Returns:
            True if the dependency was added.
        """
        dep = dep.copy_with()
        if dep.is_maven_object:
            dep.group_id = self.substitute(dep.group_id) or ""
            dep.artifact_id = self.substitute(dep.artifact_id) or ""
            if not dep.version:
                dep.version = self.managed_version(dep) or ""
            dep.version = self.substitute(dep.version) or ""
            dep.classifier = self.substitute(dep.classifier)
            if not dep.type:
                dep.type = "jar"
            if dep.management_id == self.management_id:
                logger.warning("ignoring circular dependency %s", dep.management_id)
                return False
        elif dep.path:
            dep.path = self.substitute(dep.path)

        if self.has_dependency(dep) or self.excludes(dep):
            return False

        if scope is None:
            scope = self.managed_scope(dep) or Scope.default()
        dep.scope = scope
        self.dependencies.setdefault(scope, []).append(dep)
        return True

    def has_dependency(self, dep: Dependency) -> bool:
        """Return True if a dependency with the same mediation id is declared in any scope."""
        return any(d.mediation_id == dep.mediation_id for deps in self.dependencies.values() for d in deps)

    def has_dependencies(self) -> bool:
        return any(self.dependencies.values())

    def get_scopes(self) -> list[Scope]:
        return list(self.dependencies)

    def remove_scope(self, scope: Scope) -> list[Dependency]:
        return self.dependencies.pop(scope, [])

    def get_dependencies(self, scope: Scope, ring: int = 0) -> list[Dependency]:
        """Return the dependencies visible on `scope`'s classpath at `ring`.

        Ring 0 applies the classpath rule to the declared scope. Deeper rings
        first map the declared scope through the transitivity table, and skip
        optional dependencies.

        Returns:
            Ring-stamped copies, de-duplicated in declaration order.
        """
        found: dict[Dependency, Dependency] = {}
        for declared, deps in self.dependencies.items():
            if ring == 0:
                include = scope.include_on_classpath(declared)
            else:
                include = scope.include_on_classpath(scope.transitive_scope(declared))
            if not include:
                continue
            for dep in deps:
                if ring > 0 and dep.optional:
                    continue
                if dep not in found:
                    found[dep] = dep.copy_with(ring=ring)
        return list(found.values())

    def get_all_dependencies(self) -> list[Dependency]:
        seen: dict[Dependency, Dependency] = {}
        for deps in self.dependencies.values():
            for dep in deps:
                seen.setdefault(dep, dep)
        return list(seen.values())

    def excludes(self, dep: Dependency) -> bool:
        """Check the POM-level exclusion set."""
        return bool(self.exclusions & {dep.mediation_id, dep.management_id, dep.group_id})

    # parent

    def has_parent_dependency(self) -> bool:
        return bool(self.parent_artifact_id)

    def get_parent_dependency(self) -> Dependency:
        return Dependency(
            group_id=self.parent_group_id or "",
            artifact_id=self.parent_artifact_id or "",
            version=self.parent_version or "",
            type=POM,
        )

    def inherit(self, parent: "Pom") -> None:
        """Merge `parent` into this POM; values already present here win."""
        _non_destructive_copy(parent.managed_versions, self.managed_versions)
        _non_destructive_copy(parent.managed_scopes, self.managed_scopes)
        _non_destructive_copy(parent.properties, self.properties)

        if not self.group_id:
            self.group_id = parent.group_id
        if not self.version:
            self.version = parent.version
        if not self.name:
            self.name = parent.name
        if not self.description:
            self.description = parent.description
        if not self.organization:
            self.organization = parent.organization
        if not self.url:
            self.url = parent.url
        if not self.issues_url:
            self.issues_url = parent.issues_url

        self.licenses.extend(lic for lic in parent.licenses if lic not in self.licenses)
        self.developers.extend(dev for dev in parent.developers if dev not in self.developers)

    # serialization

    def to_xml(self) -> str:
        """Render this POM as a Maven 4.0.0 project descriptor."""
        nsmap = {None: _MAVEN_NS, "xsi": _XSI_NS}
        project = etree.Element(f"{{{_MAVEN_NS}}}project", nsmap=nsmap)
        project.set(f"{{{_XSI_NS}}}schemaLocation", _SCHEMA_LOCATION)

        def sub(parent: etree._Element, tag: str, value: str | None = None) -> etree._Element:
            node = etree.SubElement(parent, f"{{{_MAVEN_NS}}}{tag}")
            if value is not None:
                node.text = value
            return node

        sub(project, "modelVersion", "4.0.0")

        if self.has_parent_dependency():
            parent = sub(project, "parent")
            sub(parent, "groupId", self.parent_group_id)
            sub(parent, "artifactId", self.parent_artifact_id)
            sub(parent, "version", self.parent_version)

        project.append(etree.Comment(" project metadata "))
        sub(project, "groupId", self.group_id)
        sub(project, "artifactId", self.artifact_id)
        sub(project, "version", self.version)
        sub(project, "packaging", self.packaging or "jar")
        for tag, value in (("name", self.name), ("description", self.description), ("url", self.url)):
            if value:
                sub(project, tag, value)
        if self.organization:
            sub(sub(project, "organization"), "name", self.organization)
        if self.issues_url:
            sub(sub(project, "issueManagement"), "url", self.issues_url)

        if self.licenses:
            licenses = sub(project, "licenses")
            for lic in self.licenses:
                node = sub(licenses, "license")
                sub(node, "name", lic.name)
                if lic.url:
                    sub(node, "url", lic.url)

        if self.developers:
            developers = sub(project, "developers")
            for dev in self.developers:
                node = sub(developers, "developer")
                for tag, value in (("id", dev.id), ("name", dev.name), ("email", dev.email), ("organization", dev.organization)):
                    if value:
                        sub(node, tag, value)

        exported = {k: v for k, v in self.properties.items() if not k.lower().startswith("project.")}
        if exported:
            properties = sub(project, "properties")
            for key in sorted(exported, key=str.lower):
                sub(properties, key, exported[key])

        if self.managed_versions:
            management = sub(sub(project, "dependencyManagement"), "dependencies")
            for management_id, version in self.managed_versions.items():
                group_id, _, artifact_id = management_id.partition(":")
                node = sub(management, "dependency")
                sub(node, "groupId", group_id)
                sub(node, "artifactId", artifact_id)
                sub(node, "version", version)
                scope = self.managed_scopes.get(management_id)
                if scope is not None and scope.is_maven_scope and not scope.is_default:
                    sub(node, "scope", scope.value)

        maven_deps = [
            (scope, dep)
            for scope, deps in self.dependencies.items()
            if scope.is_maven_scope
            for dep in deps
            if dep.is_maven_object or scope is Scope.SYSTEM
        ]
        if maven_deps:
            dependencies = sub(project, "dependencies")
            current: Scope | None = None
            for scope, dep in maven_deps:
                if scope is not current:
                    dependencies.append(etree.Comment(f" {scope.value} dependencies "))
                    current = scope
                node = sub(dependencies, "dependency")
                sub(node, "groupId", dep.group_id)
                sub(node, "artifactId", dep.artifact_id)
                sub(node, "version", dep.version)
                if dep.type != "jar":
                    sub(node, "type", dep.type)
                if dep.classifier:
                    sub(node, "classifier", dep.classifier)
                if not scope.is_default:
                    sub(node, "scope", scope.value)
                if scope is Scope.SYSTEM and dep.path:
                    sub(node, "systemPath", dep.path)
                if dep.optional:
                    sub(node, "optional", "true")
                exclusions = sorted(dep.exclusions)
                if not dep.is_transitive:
                    exclusions = ["*:*"]
                if exclusions:
                    excl_root = sub(node, "exclusions")
                    for exclusion in exclusions:
                        group_id, _, artifact_id = exclusion.partition(":")
                        excl = sub(excl_root, "exclusion")
                        sub(excl, "groupId", group_id)
                        if artifact_id:
                            sub(excl, "artifactId", artifact_id)

        return etree.tostring(project, pretty_print=True, xml_declaration=True, encoding="UTF-8").decode("utf-8")

    def __repr__(self) -> str:
        return f"Pom({self.coordinates})"

