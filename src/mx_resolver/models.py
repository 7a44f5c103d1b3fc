"""Pydantic models for Maven coordinates and dependencies."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from mx_resolver.scope import Scope


RELEASE = "RELEASE"
LATEST = "LATEST"
SNAPSHOT = "SNAPSHOT"
POM = "pom"
JAR = "jar"

# Maven packaging types whose primary artifact is not named after the packaging.
_PACKAGING_EXTENSIONS: dict[str, str] = {
    "bundle": "jar",
    "ejb": "jar",
    "ejb-client": "jar",
    "maven-plugin": "jar",
    "eclipse-plugin": "jar",
    "eclipse-feature": "jar",
    "eclipse-test-plugin": "jar",
    "java-source": "jar",
    "javadoc": "jar",
    "test-jar": "jar",
    "orbit": "jar",
    "hk2-jar": "jar",
}


def extension_for(packaging: str | None) -> str:
    """Map a Maven packaging/type to the file extension of its artifact."""
    if not packaging:
        return JAR
    return _PACKAGING_EXTENSIONS.get(packaging, packaging)


class DependencyKind(str, Enum):
    """What a dependency points at."""

    MAVEN = "maven"
    SYSTEM = "system"


class Dependency(BaseModel):
    """A Maven coordinate plus the resolution state attached to it.

    Two dependencies are equal when their detailed coordinates
    (`group:artifact:version:classifier:type`) match.
    """

    group_id: str = ""
    artifact_id: str = ""
    version: str = ""
    classifier: str | None = None
    type: str = JAR
    revision: str | None = None
    scope: Scope | None = None
    optional: bool = False
    resolve_dependencies: bool = True
    exclusions: set[str] = Field(default_factory=set)
    ring: int = 0
    origin: str | None = None
    kind: DependencyKind = DependencyKind.MAVEN
    path: str | None = None

    @classmethod
    def parse(cls, definition: str) -> "Dependency":
        """Parse a declaration like `g:a:v[:classifier[:type]][@ext] [optional] [-excl]`.

        Args:
            definition: Dependency declaration string.

        Raises:
            ValueError: If fewer than two coordinate parts are present.

        Returns:
            A new Dependency.
        """
        tokens = definition.replace(",", " ").split()
        if not tokens:
            raise ValueError("Empty dependency definition")

        coordinates = tokens[0]
        dep_type = JAR
        resolve = True
        if "@" in coordinates:
            coordinates, _, dep_type = coordinates.partition("@")
            resolve = False

        parts = coordinates.split(":")
        if len(parts) < 2:
            raise ValueError(f"Illegal dependency definition: {definition!r}")

        group_id = parts[0].replace("/", ".")
        artifact_id = parts[1]
        version = parts[2] if len(parts) > 2 else ""
        classifier = parts[3] or None if len(parts) > 3 else None
        if len(parts) > 4 and parts[4]:
            dep_type = parts[4]

        optional = False
        exclusions: set[str] = set()
        for token in tokens[1:]:
            if token in ("-", "!"):
                continue
            if token.lower() == "optional":
                optional = True
            elif token[0] in "-!":
                exclusions.add(token[1:])

        return cls(
            group_id=group_id,
            artifact_id=artifact_id,
            version=version,
            classifier=classifier,
            type=dep_type,
            optional=optional,
            resolve_dependencies=resolve,
            exclusions=exclusions,
        )

    @classmethod
    def system(cls, path: str | Path) -> "Dependency":
        """Create a dependency on a file that is never fetched or solved."""
        p = Path(path)
        return cls(
            group_id="system",
            artifact_id=p.stem,
            version="0",
            type=p.suffix.lstrip(".") or JAR,
            scope=Scope.SYSTEM,
            resolve_dependencies=False,
            kind=DependencyKind.SYSTEM,
            path=str(path),
        )

    @property
    def extension(self) -> str:
        return extension_for(self.type)

    @property
    def is_snapshot(self) -> bool:
        return "-SNAPSHOT" in self.version

    @property
    def is_meta_version(self) -> bool:
        return self.is_snapshot or self.version in (RELEASE, LATEST)

    @property
    def is_transitive(self) -> bool:
        return self.resolve_dependencies

    @property
    def is_pom(self) -> bool:
        return self.type == POM

    @property
    def is_maven_object(self) -> bool:
        return self.kind is DependencyKind.MAVEN

    @property
    def effective_revision(self) -> str:
        return self.revision or self.version

    @property
    def management_id(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"

    @property
    def mediation_id(self) -> str:
        parts = [self.group_id, self.artifact_id]
        if self.classifier:
            parts.append(self.classifier)
        parts.append(self.type)
        return ":".join(parts)

    @property
    def coordinates(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.version}"

    @property
    def detailed_coordinates(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.version}:{self.classifier or ''}:{self.type}"

    def excludes(self, other: "Dependency") -> bool:
        """Return True if `other` matches one of this dependency's exclusion patterns."""
        if not self.exclusions:
            return False
        return bool(
            self.exclusions
            & {other.mediation_id, other.management_id, other.group_id, "*:*", "*"}
        )

    def copy_with(self, **changes: object) -> "Dependency":
        """Return a deep copy with the given fields replaced."""
        return self.model_copy(update=changes, deep=True)

    def pom_dependency(self) -> "Dependency":
        """Return the coordinate of this dependency's POM."""
        return self.copy_with(classifier=None, type=POM)

    def sources_dependency(self) -> "Dependency":
        return self.copy_with(classifier="sources", type=JAR)

    def javadoc_dependency(self) -> "Dependency":
        return self.copy_with(classifier="javadoc", type=JAR)

    def label(self) -> str:
        """Return a user-facing label for the dependency.

        Returns:
            A formatted string including coordinates, ring and flags.
        """
        if self.kind is DependencyKind.SYSTEM:
            parts = [f"{self.path}"]
        else:
            parts = [self.coordinates]
            if self.classifier:
                parts[0] += f":{self.classifier}"
            if self.revision and self.revision != self.version:
                parts.append(f"({self.revision})")
        if self.scope:
            parts.append(f"(scope={self.scope.value})")
        if self.optional:
            parts.append("(optional)")
        return " ".join(parts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Dependency):
            return NotImplemented
        return self.detailed_coordinates == other.detailed_coordinates

    def __hash__(self) -> int:
        return hash(self.detailed_coordinates)

    def __str__(self) -> str:
        return f"{self.detailed_coordinates} ({self.ring})"


class License(BaseModel):
    """A `<license>` entry of a POM."""

    name: str
    url: str | None = None


class Person(BaseModel):
    """A `<developer>` entry of a POM."""

    id: str | None = None
    name: str | None = None
    email: str | None = None
    organization: str | None = None
