"""Per-artifact side-data: provenance, freshness and cached solutions."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from mx_resolver.metadata import EPOCH
from mx_resolver.models import Dependency
from mx_resolver.scope import Scope


# Bump when the solution format or the solving rules change.
SOLUTION_VERSION = 1


class MoxieData(BaseModel):
    """Side-data persisted next to an artifact version in the cache.

    `last_solved` holds the modification time (ns) of the POM or project
    descriptor the cached solution was computed from.
    """

    group_id: str = ""
    artifact_id: str = ""
    version: str = ""
    revision: str | None = None
    origin: str | None = None
    release: str | None = None
    latest: str | None = None

    last_downloaded: datetime = EPOCH
    last_checked: datetime = EPOCH
    last_updated: datetime = EPOCH
    last_solved: int = 0

    solution_version: int = 0
    dependencies: dict[Scope, list[Dependency]] = Field(default_factory=dict)

    @field_validator("last_downloaded", "last_checked", "last_updated")
    @classmethod
    def _seconds_precision(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.replace(microsecond=0)

    @classmethod
    def for_dependency(cls, dependency: Dependency) -> "MoxieData":
        return cls(
            group_id=dependency.group_id,
            artifact_id=dependency.artifact_id,
            version=dependency.version,
            revision=dependency.revision,
        )

    def is_refresh_required(self) -> bool:
        """True when the remote copy changed after the local download."""
        return self.last_updated > self.last_downloaded

    def is_valid_solution(self) -> bool:
        return self.solution_version == SOLUTION_VERSION

    def has_solution(self, source_mtime_ns: int) -> bool:
        """True when a current-format solution exists for a source with this mtime."""
        return self.is_valid_solution() and bool(self.dependencies) and self.last_solved == source_mtime_ns

    def get_dependencies(self, scope: Scope) -> list[Dependency]:
        return [d.copy_with() for d in self.dependencies.get(scope, [])]

    def set_dependencies(self, scope: Scope, dependencies: list[Dependency]) -> None:
        self.dependencies[scope] = [d.copy_with() for d in dependencies]
        self.solution_version = SOLUTION_VERSION

    def clear_solution(self) -> None:
        self.dependencies.clear()
        self.last_solved = 0
