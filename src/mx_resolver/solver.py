"""Transitive dependency solver.

For each scope the solver walks the project's dependency graph depth-first,
maps scopes through the transitivity table, applies exclusions and then
mediates duplicates so that the nearest declaration of each
`group:artifact[:classifier]:type` wins.

Per-dependency transitive lists and per-project solutions are memoized in the
cache's side-data, keyed by the modification time of the POM (or project
descriptor) they were computed from.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import requests

from mx_resolver.cache import ArtifactCache, KeyedLocks
from mx_resolver.config import ResolverContext
from mx_resolver.exceptions import MxError, ResolutionError
from mx_resolver.metadata import resolve_meta_version
from mx_resolver.models import JAR, POM, Dependency, DependencyKind
from mx_resolver.parser import PomReader
from mx_resolver.pom import Pom
from mx_resolver.repository import RemoteRepository
from mx_resolver.scope import SOLVED_SCOPES, Scope


logger = logging.getLogger(__name__)


def mediate(candidates: Iterable[Dependency]) -> list[Dependency]:
    """Keep one dependency per mediation id: the smallest ring, first seen on ties.

    The result keeps the order in which each mediation id was first seen.
    """
    winners: dict[str, Dependency] = {}
    for dep in candidates:
        current = winners.get(dep.mediation_id)
        if current is None or dep.ring < current.ring:
            winners[dep.mediation_id] = dep
    return list(winners.values())


class Solver:
    """Resolves and retrieves the dependencies of one project.

    Args:
        context: Resolver context.
        pom: The project's POM (from a descriptor or a pom.xml).
        cache: Artifact cache; built from the context by default.
        repositories: Remote repositories; built from the context by default.
        descriptor_path: File whose modification time keys the project solution.
        session: HTTP session shared by the default repositories.
    """

    def __init__(
        self,
        context: ResolverContext,
        pom: Pom,
        *,
        cache: ArtifactCache | None = None,
        repositories: list[RemoteRepository] | None = None,
        descriptor_path: Path | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.context = context
        self.pom = pom
        self.cache = cache or ArtifactCache(context.root, context.maven_cache)
        if repositories is None:
            session = session or requests.Session()
            repositories = [RemoteRepository(r, context, session) for r in context.repositories]
        self.repositories = repositories
        self.reader = PomReader(
            self.cache,
            properties=context.properties,
            strict_properties=context.strict_properties,
        )
        self.descriptor_path = descriptor_path or pom.path
        self.failures: list[ResolutionError] = []

        self._locks = KeyedLocks()
        self._prepared = False
        self._solutions: dict[Scope, list[Dependency]] = {}
        self._edges: dict[Scope, list[tuple[str, str]]] = {}
        self._transitive: dict[tuple[Scope, str], list[Dependency]] = {}
        self._poms: dict[str, Pom | None] = {}
        self._versions: dict[str, Dependency] = {}

    # orchestration

    def resolve(self) -> bool:
        """Solve and retrieve every scope of the project.

        A cached project solution for the unchanged descriptor is reused;
        its POMs and artifacts are still checked for presence.

        Raises:
            ResolutionError: If a required dependency is unavailable and
                `fail_fast` is set.
            ChecksumMismatchError: If a download is corrupt.

        Returns:
            True if the solution was computed, False if a cached one was reused.
        """
        if self._read_project_solution():
            for scope in SOLVED_SCOPES:
                self._retrieve_all(scope, self._solutions[scope])
            return False

        for scope in SOLVED_SCOPES:
            self._retrieve_all(scope, self.solve(scope))
        self._cache_project_solution()
        return True

    def _prepare(self) -> None:
        """Apply import and assimilate scopes to the project POM once."""
        with self._locks("prepare"):
            if self._prepared:
                return
            self._import_dependency_management()
            self._assimilate_dependencies()
            self._prepared = True

    def _import_dependency_management(self) -> None:
        imports = self.pom.remove_scope(Scope.IMPORT)
        for dep in imports:
            imported = self.load_pom(dep)
            if imported is None:
                logger.warning("failed to import dependency management from %s", dep.coordinates)
                continue
            logger.debug("importing dependency management from %s", dep.coordinates)
            self.pom.import_managed_dependencies(imported)
        if imports:
            for deps in self.pom.dependencies.values():
                for dep in deps:
                    if dep.is_maven_object and not dep.version:
                        dep.version = self.pom.managed_version(dep) or ""

    def _assimilate_dependencies(self) -> None:
        for dep in self.pom.remove_scope(Scope.ASSIMILATE):
            assimilated = self.load_pom(dep)
            if assimilated is None:
                logger.warning("failed to assimilate %s", dep.coordinates)
                continue
            logger.debug("assimilating dependencies of %s", dep.coordinates)
            for scope in assimilated.get_scopes():
                for child in assimilated.dependencies[scope]:
                    self.pom.add_dependency(child, scope)

    # solving

    def solve(self, scope: Scope) -> list[Dependency]:
        """Return the mediated dependency set of `scope`.

        The result is memoized for the lifetime of this solver.
        """
        with self._locks(f"scope:{scope.value}"):
            if scope not in self._solutions:
                self._prepare()
                edges: list[tuple[str, str]] = []
                candidates: list[Dependency] = []
                root = self.pom.management_id
                for dep in self.pom.get_dependencies(scope, 0):
                    dep = self.resolve_version(dep)
                    candidates.append(dep)
                    edges.append((self.pom.coordinates, dep.coordinates))
                    candidates.extend(self._solve_transitive(scope, dep, edges, frozenset({root})))
                self._solutions[scope] = mediate(candidates)
                self._edges[scope] = edges
                logger.debug("solved %s scope: %d dependencies", scope.value, len(self._solutions[scope]))
            return [dep.copy_with() for dep in self._solutions[scope]]

    def _solve_transitive(
        self,
        scope: Scope,
        dep: Dependency,
        edges: list[tuple[str, str]],
        resolving: frozenset[str],
    ) -> list[Dependency]:
        if not dep.is_maven_object or not dep.is_transitive:
            return []
        if dep.management_id in resolving:
            logger.debug("dependency cycle through %s", dep.coordinates)
            return []

        resolving = resolving | {dep.management_id}
        found: list[Dependency] = []
        for child in self._transitive_dependencies(scope, dep):
            if dep.excludes(child) or self.pom.excludes(child):
                continue
            child.exclusions.update(dep.exclusions)
            child = self.resolve_version(child)
            edges.append((dep.coordinates, child.coordinates))
            found.append(child)
            found.extend(self._solve_transitive(scope, child, edges, resolving))
        return found

    def _transitive_dependencies(self, scope: Scope, dep: Dependency) -> list[Dependency]:
        """Direct dependencies of `dep` visible in `scope`, stamped with ring `dep.ring + 1`."""
        override = self.context.overrides.get((scope, dep.coordinates))
        if override is not None:
            if scope is Scope.BUILD:
                logger.debug("using override for %s in %s scope", dep.coordinates, scope.value)
            else:
                logger.info("using override for %s in %s scope", dep.coordinates, scope.value)
            return override.get_dependencies(scope, dep.ring + 1)

        key = (scope, dep.coordinates)
        with self._locks(f"solve:{scope.value}:{dep.coordinates}"):
            relative = self._transitive.get(key)
            if relative is None:
                relative = self._read_solution(scope, dep)
                if relative is None:
                    pom = self.load_pom(dep)
                    relative = pom.get_dependencies(scope, 1) if pom is not None else []
                    if pom is not None:
                        self._cache_solution(scope, dep, pom, relative)
                self._transitive[key] = relative
        return [d.copy_with(ring=d.ring + dep.ring) for d in relative]

    # memoized solutions

    def _read_solution(self, scope: Scope, dep: Dependency) -> list[Dependency] | None:
        if not self.context.cache_solutions or dep.is_snapshot:
            return None
        pom_path = self.cache.get_artifact(dep.pom_dependency(), POM)
        if pom_path is None:
            return None
        data = self.cache.read_moxie_data(dep)
        if not data.has_solution(pom_path.stat().st_mtime_ns) or scope not in data.dependencies:
            return None
        logger.debug("reusing %s solution of %s", scope.value, dep.coordinates)
        return data.get_dependencies(scope)

    def _cache_solution(self, scope: Scope, dep: Dependency, pom: Pom, relative: list[Dependency]) -> None:
        if not self.context.cache_solutions or dep.is_snapshot or pom.path is None:
            return
        mtime = pom.path.stat().st_mtime_ns
        with self.cache.update_moxie_data(dep) as data:
            if data.last_solved != mtime:
                data.clear_solution()
                data.last_solved = mtime
            data.set_dependencies(scope, relative)

    def _project_key(self) -> Dependency:
        return self.pom.as_dependency()

    def _read_project_solution(self) -> bool:
        if not self.context.cache_solutions or self.descriptor_path is None:
            return False
        path = Path(self.descriptor_path)
        if not path.is_file():
            return False
        data = self.cache.read_moxie_data(self._project_key())
        if not data.has_solution(path.stat().st_mtime_ns):
            return False
        if any(scope not in data.dependencies for scope in SOLVED_SCOPES):
            return False
        with self._locks("prepare"):
            for scope in SOLVED_SCOPES:
                self._solutions[scope] = data.get_dependencies(scope)
        logger.debug("reusing project solution of %s", self.pom.coordinates)
        return True

    def _cache_project_solution(self) -> None:
        if not self.context.cache_solutions or self.descriptor_path is None:
            return
        path = Path(self.descriptor_path)
        if not path.is_file():
            return
        if any(dep.is_snapshot for scope in SOLVED_SCOPES for dep in self._solutions.get(scope, [])):
            logger.debug("not caching project solution of %s: it contains snapshots", self.pom.coordinates)
            return
        with self.cache.update_moxie_data(self._project_key()) as data:
            data.clear_solution()
            data.last_solved = path.stat().st_mtime_ns
            for scope in SOLVED_SCOPES:
                data.set_dependencies(scope, self._solutions[scope])

    # versions and POMs

    def resolve_version(self, dep: Dependency) -> Dependency:
        """Resolve RELEASE, LATEST and SNAPSHOT versions against repository metadata."""
        if not dep.is_maven_object or not dep.is_meta_version:
            return dep
        key = dep.coordinates
        with self._locks(f"version:{key}"):
            resolved = self._versions.get(key)
            if resolved is None:
                if self._metadata_update_required(dep):
                    self._download_metadata(dep)
                resolved = resolve_meta_version(dep, self.cache.read_metadata(dep))
                if resolved is dep:
                    logger.warning("could not resolve %s from repository metadata", dep.coordinates)
                self._versions[key] = resolved
        return dep.copy_with(version=resolved.version, revision=resolved.revision)

    def _metadata_update_required(self, dep: Dependency) -> bool:
        if self.context.offline:
            return False
        if self.context.update_metadata or self.cache.get_metadata(dep) is None:
            return True
        last_checked = self.cache.read_moxie_data(dep).last_checked
        return self.context.update_policy.is_update_required(last_checked)

    def _download_metadata(self, dep: Dependency) -> None:
        for repository in self._repositories_for(dep):
            repository.download_metadata(self.cache, dep)
        with self.cache.update_moxie_data(dep) as data:
            data.last_checked = datetime.now(timezone.utc)

    def load_pom(self, dep: Dependency) -> Pom | None:
        """Retrieve and parse `dep`'s POM, including its parents and imports.

        Malformed or unavailable POMs are reported and yield None.
        """
        dep = self.resolve_version(dep)
        key = dep.coordinates
        with self._locks(f"pom:{key}"):
            if key in self._poms:
                return self._poms[key]
            pom: Pom | None = None
            path = self.retrieve_pom(dep)
            if path is not None:
                try:
                    pom = self.reader.read_pom_file(path)
                    if self._retrieve_ancestors(pom):
                        pom = self.reader.read_pom_file(path)
                except MxError as exc:
                    logger.warning("skipping dependencies of %s: %s", dep.coordinates, exc)
                    pom = None
            else:
                logger.warning("no POM found for %s, its dependencies are not resolved", dep.coordinates)
            self._poms[key] = pom
            return pom

    def _retrieve_ancestors(self, pom: Pom) -> bool:
        """Download missing parent and imported POMs; True if any was fetched."""
        fetched = False
        seen: set[str] = set()
        pending = [pom]
        while pending:
            current = pending.pop()
            needed = list(current.imports)
            if current.has_parent_dependency():
                needed.append(current.get_parent_dependency())
            for dep in needed:
                if dep.management_id in seen:
                    continue
                seen.add(dep.management_id)
                path = self.cache.get_artifact(dep, POM)
                if path is None:
                    path = self.retrieve_pom(dep)
                    if path is None:
                        logger.warning("POM %s of %s is unavailable", dep.coordinates, pom.coordinates)
                        continue
                    fetched = True
                pending.append(self.reader.read_pom_file(path))
        return fetched

    def retrieve_pom(self, dep: Dependency) -> Path | None:
        """Return the cached POM of `dep`, downloading it when missing or stale."""
        if not dep.is_maven_object:
            return None
        pom_dep = dep.pom_dependency()
        path = self.cache.get_artifact(pom_dep, POM)
        if path is None or self._refresh_required(dep):
            path = self._download(pom_dep, POM) or path
        if path is not None:
            self._check_origin(dep)
        return path

    def _refresh_required(self, dep: Dependency) -> bool:
        return dep.is_snapshot and not self.context.offline and self.cache.read_moxie_data(dep).is_refresh_required()

    def _check_origin(self, dep: Dependency) -> None:
        origin = self.cache.read_moxie_data(dep).origin
        if origin and self.repositories and origin not in {r.url for r in self.repositories}:
            logger.warning("%s was retrieved from %s which is not a configured repository", dep.coordinates, origin)

    # artifacts

    def retrieve_artifact(self, dep: Dependency) -> Path | None:
        """Return the cached artifact of `dep`, downloading it when missing or stale."""
        if dep.kind is DependencyKind.SYSTEM:
            path = Path(dep.path or "")
            return path if path.is_file() else None

        if dep.is_pom:
            path = self.retrieve_pom(dep)
            self._purge(dep)
            return path

        ext = dep.extension
        path = self.cache.get_artifact(dep, ext)
        if path is None or self._refresh_required(dep):
            path = self._download(dep, ext) or path

        if path is not None and self.context.fetch_sources and not dep.classifier:
            for extra in (dep.sources_dependency(), dep.javadoc_dependency()):
                if self.cache.get_artifact(extra, JAR) is None:
                    self._download(extra, JAR)

        self._purge(dep)
        return path

    def _retrieve_all(self, scope: Scope, deps: list[Dependency]) -> None:
        if self.context.parallel_downloads > 1 and len(deps) > 1:
            with ThreadPoolExecutor(max_workers=self.context.parallel_downloads) as pool:
                for _ in pool.map(lambda d: self._retrieve(scope, d), deps):
                    pass
        else:
            for dep in deps:
                self._retrieve(scope, dep)

    def _retrieve(self, scope: Scope, dep: Dependency) -> Path | None:
        pom = self.load_pom(dep) if dep.is_maven_object else None
        path = self.retrieve_artifact(dep)
        if path is None and not dep.optional and not (pom is not None and pom.is_pom()):
            error = ResolutionError(dep, scope)
            if self.context.fail_fast:
                raise error
            logger.error(str(error))
            self.failures.append(error)
        return path

    def _purge(self, dep: Dependency) -> None:
        if not dep.is_snapshot:
            return
        repository = self._origin_repository(dep)
        if repository is None:
            return
        policy = repository.config.purge_policy
        self.cache.purge_snapshots(dep, policy.retention_count, policy.purge_after_days)

    def purge(self) -> list[Path]:
        """Apply snapshot purge policies to every solved snapshot dependency."""
        deleted: list[Path] = []
        for scope in SOLVED_SCOPES:
            for dep in self.solve(scope):
                repository = self._origin_repository(dep)
                if dep.is_snapshot and repository is not None:
                    policy = repository.config.purge_policy
                    deleted.extend(self.cache.purge_snapshots(dep, policy.retention_count, policy.purge_after_days))
        return deleted

    # repositories

    def _origin_repository(self, dep: Dependency) -> RemoteRepository | None:
        origin = self.cache.read_moxie_data(dep).origin
        for repository in self.repositories:
            if repository.url == origin:
                return repository
        return self.repositories[0] if self.repositories else None

    def _repositories_for(self, dep: Dependency) -> list[RemoteRepository]:
        """Repositories to try for `dep`: its origin first, then affinity matches, then the rest."""
        allowed = [r for r in self.repositories if r.allows(dep)]
        origin = dep.origin or self.cache.read_moxie_data(dep).origin

        def rank(repository: RemoteRepository) -> int:
            if origin and repository.url == origin.rstrip("/"):
                return 0
            return 1 if repository.is_source(dep) else 2

        return sorted(allowed, key=rank)

    def _download(self, dep: Dependency, ext: str) -> Path | None:
        if self.context.offline:
            logger.debug("offline: not downloading %s", dep.coordinates)
            return None
        for repository in self._repositories_for(dep):
            path = repository.download(self.cache, dep, ext)
            if path is not None:
                return path
        return None

    # consumers

    def get_classpath(self, scope: Scope) -> list[Path]:
        """Files of the solved `scope`, retrieving any that are missing."""
        paths: list[Path] = []
        for dep in self.solve(scope):
            if dep.is_pom:
                continue
            path = self._retrieve(scope, dep)
            if path is not None:
                paths.append(path)
        return paths

    def solve_dependencies(self, scope: Scope, *deps: Dependency) -> list[Path]:
        """Solve an ad-hoc list of dependencies (e.g. a tool's classpath) with this solver's cache."""
        pom = Pom(
            "mx-resolver",
            "adhoc",
            "0",
            external_properties=self.context.properties,
            strict_properties=self.context.strict_properties,
        )
        for dep in deps:
            pom.add_dependency(dep, scope)
        solver = Solver(self.context, pom, cache=self.cache, repositories=self.repositories)
        return solver.get_classpath(scope)

    def edges(self, scope: Scope) -> list[tuple[str, str]]:
        """Parent -> child links seen while solving `scope`.

        A solution reused from the project cache carries no links; its
        dependencies are then linked directly to the project.
        """
        solution = self.solve(scope)
        if scope in self._edges:
            return list(self._edges[scope])
        return [(self.pom.coordinates, dep.coordinates) for dep in solution]
