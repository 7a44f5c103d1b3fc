"""Dependency scopes and their classpath / transitivity rules."""

from __future__ import annotations

from enum import Enum


class Scope(str, Enum):
    """Usage context of a dependency."""

    COMPILE = "compile"
    PROVIDED = "provided"
    RUNTIME = "runtime"
    TEST = "test"
    SYSTEM = "system"
    IMPORT = "import"
    ASSIMILATE = "assimilate"
    BUILD = "build"
    SITE = "site"

    @classmethod
    def default(cls) -> "Scope":
        return cls.COMPILE

    @classmethod
    def from_string(cls, value: str | None) -> "Scope | None":
        """Parse a scope name case-insensitively.

        Args:
            value: Scope keyword such as 'compile' or 'TEST'.

        Returns:
            The matching scope, or None for blank/unknown names.
        """
        if not value:
            return None
        key = value.strip().lower()
        for scope in cls:
            if scope.value == key:
                return scope
        return None

    @property
    def is_default(self) -> bool:
        return self is Scope.COMPILE

    @property
    def is_maven_scope(self) -> bool:
        """Whether this scope can be written into a Maven POM."""
        return self not in (Scope.ASSIMILATE, Scope.BUILD, Scope.SITE)

    @property
    def is_valid_source_scope(self) -> bool:
        return self in (Scope.COMPILE, Scope.TEST, Scope.SITE)

    def include_on_classpath(self, dependency_scope: "Scope | None") -> bool:
        """Return True if a dependency of `dependency_scope` belongs on this scope's classpath.

        Args:
            dependency_scope: Effective scope of the dependency (None when the
                dependency does not propagate).

        Returns:
            Whether the dependency is visible on this classpath.
        """
        if dependency_scope is None:
            return False
        if self is Scope.SITE:
            return False
        if self is Scope.BUILD:
            return dependency_scope is Scope.BUILD
        if dependency_scope in (Scope.COMPILE, Scope.SYSTEM):
            return True
        if self is Scope.COMPILE:
            return dependency_scope is Scope.PROVIDED
        if self is Scope.PROVIDED:
            return dependency_scope is Scope.PROVIDED
        if self is Scope.RUNTIME:
            return dependency_scope is Scope.RUNTIME
        if self is Scope.TEST:
            return dependency_scope not in (Scope.SITE, Scope.BUILD)
        return False

    def transitive_scope(self, transitive: "Scope | None") -> "Scope | None":
        """Map the declared scope of a transitive dependency through this scope.

        `self` is the scope under which the parent dependency was declared.
        Only compile and runtime dependencies propagate.

        Returns:
            Effective scope of the transitive dependency, or None.
        """
        if transitive not in (Scope.COMPILE, Scope.RUNTIME):
            return None
        if self is Scope.COMPILE:
            return transitive
        if self is Scope.BUILD:
            return Scope.BUILD if transitive is Scope.COMPILE else None
        if self in (Scope.PROVIDED, Scope.RUNTIME, Scope.TEST):
            return self
        return None


# Scopes whose artifacts are retrieved and solved by a full resolution.
SOLVED_SCOPES: tuple[Scope, ...] = (Scope.COMPILE, Scope.RUNTIME, Scope.TEST, Scope.BUILD)
