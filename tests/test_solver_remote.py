from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import REPO_URL, FakeSession, dependency_xml, publish
from mx_resolver.cache import ArtifactCache, url_to_folder
from mx_resolver.config import RepositoryConfig, ResolverContext, UpdatePolicy
from mx_resolver.metadata import Metadata
from mx_resolver.models import Dependency
from mx_resolver.pom import Pom
from mx_resolver.repository import RemoteRepository
from mx_resolver.scope import Scope
from mx_resolver.solver import Solver


MIRROR_URL = "https://mirror.example.org/m2"
CORP_URL = "https://maven.corp.example.com/releases"


@pytest.fixture
def online(context: ResolverContext) -> ResolverContext:
    context.offline = False
    return context


def _repositories(context: ResolverContext, session: FakeSession, *configs: RepositoryConfig) -> list[RemoteRepository]:
    return [RemoteRepository(config, context, session) for config in configs]


def _solver(context: ResolverContext, cache: ArtifactCache, session: FakeSession, *coordinates: str) -> Solver:
    pom = Pom("com.acme", "app", "1.0")
    for c in coordinates:
        pom.add_dependency(Dependency.parse(c), Scope.COMPILE)
    repositories = _repositories(
        context,
        session,
        RepositoryConfig(id="mirror", url=MIRROR_URL),
        RepositoryConfig(id="central", url=REPO_URL),
    )
    return Solver(context, pom, cache=cache, repositories=repositories)


def _coords(deps: list[Dependency]) -> list[str]:
    return [d.coordinates for d in deps]


def test_download_falls_back_to_the_next_repository(online: ResolverContext, cache: ArtifactCache) -> None:
    session = FakeSession()
    publish(session.files, REPO_URL, "org.lib:lib:1.0", dependency_xml("org.util:util:2.0"))
    publish(session.files, REPO_URL, "org.util:util:2.0")

    classpath = _solver(online, cache, session, "org.lib:lib:1.0").get_classpath(Scope.COMPILE)

    assert [p.name for p in classpath] == ["lib-1.0.jar", "util-2.0.jar"]
    assert all(url_to_folder(REPO_URL) in p.parts for p in classpath)
    assert f"{MIRROR_URL}/org/lib/lib/1.0/lib-1.0.pom" in session.urls("HEAD")
    # once the POM came from central, the jar is requested there first
    assert not any(url.startswith(MIRROR_URL) and url.endswith(".jar") for url in session.urls())
    assert cache.read_moxie_data(Dependency.parse("org.lib:lib:1.0")).origin == REPO_URL


def test_repository_affinity_is_tried_first(online: ResolverContext, cache: ArtifactCache) -> None:
    session = FakeSession()
    publish(session.files, REPO_URL, "org.corp:tool:1.0")
    publish(session.files, CORP_URL, "org.corp:tool:1.0")
    pom = Pom("com.acme", "app", "1.0")
    pom.add_dependency(Dependency.parse("org.corp:tool:1.0"), Scope.COMPILE)
    repositories = _repositories(
        online,
        session,
        RepositoryConfig(id="central", url=REPO_URL),
        RepositoryConfig(id="corp", url=CORP_URL, affinity=["org.corp"]),
    )

    Solver(online, pom, cache=cache, repositories=repositories).get_classpath(Scope.COMPILE)

    assert session.urls()
    assert all(url.startswith(CORP_URL) for url in session.urls())


def test_snapshots_skip_repositories_without_snapshots(online: ResolverContext, cache: ArtifactCache) -> None:
    session = FakeSession()
    repositories = _repositories(
        online,
        session,
        RepositoryConfig(id="releases", url=MIRROR_URL, allowSnapshots=False),
        RepositoryConfig(id="central", url=REPO_URL),
    )
    pom = Pom("com.acme", "app", "1.0")
    pom.add_dependency(Dependency.parse("org.lib:lib:1.0-SNAPSHOT"), Scope.COMPILE)

    Solver(online, pom, cache=cache, repositories=repositories).solve(Scope.COMPILE)

    assert session.urls()
    assert not any(url.startswith(MIRROR_URL) for url in session.urls())


def test_release_is_resolved_from_downloaded_metadata(online: ResolverContext, cache: ArtifactCache) -> None:
    session = FakeSession()
    metadata_url = f"{REPO_URL}/org/lib/lib/maven-metadata.xml"
    session.files[metadata_url] = Metadata(
        group_id="org.lib", artifact_id="lib", versions=["1.0", "2.0"], release="2.0", latest="2.0"
    ).to_xml().encode()
    publish(session.files, REPO_URL, "org.lib:lib:2.0")
    publish(session.files, REPO_URL, "org.lib:lib:3.0")

    assert _coords(_solver(online, cache, session, "org.lib:lib:RELEASE").solve(Scope.COMPILE)) == ["org.lib:lib:2.0"]

    session.files[metadata_url] = Metadata(
        group_id="org.lib", artifact_id="lib", versions=["3.0"], release="3.0", latest="3.0"
    ).to_xml().encode()

    online.update_policy = UpdatePolicy(kind="never")
    assert _coords(_solver(online, cache, session, "org.lib:lib:RELEASE").solve(Scope.COMPILE)) == ["org.lib:lib:2.0"]

    online.update_metadata = True
    assert _coords(_solver(online, cache, session, "org.lib:lib:RELEASE").solve(Scope.COMPILE)) == ["org.lib:lib:3.0"]
    merged = cache.read_metadata(Dependency.parse("org.lib:lib:RELEASE"))
    assert merged is not None
    assert merged.versions == ["1.0", "2.0", "3.0"]


def test_missing_parent_is_fetched_and_the_child_reread(online: ResolverContext, cache: ArtifactCache) -> None:
    session = FakeSession()
    publish(
        session.files,
        REPO_URL,
        "org.lib:parent:1",
        extra="<dependencyManagement><dependencies>"
        + dependency_xml("org.util:util:2.0")
        + "</dependencies></dependencyManagement>",
        packaging="pom",
    )
    publish(
        session.files,
        REPO_URL,
        "org.lib:lib:1.0",
        dependency_xml("org.util:util"),
        extra="<parent><groupId>org.lib</groupId><artifactId>parent</artifactId><version>1</version></parent>",
    )
    publish(session.files, REPO_URL, "org.util:util:2.0")

    solver = _solver(online, cache, session, "org.lib:lib:1.0")

    assert _coords(solver.solve(Scope.COMPILE)) == ["org.lib:lib:1.0", "org.util:util:2.0"]
    assert cache.get_artifact(Dependency.parse("org.lib:parent:1"), "pom") is not None


def test_republished_snapshot_is_downloaded_again(online: ResolverContext, cache: ArtifactCache) -> None:
    revision = "1.0-20240101.100000-1"
    session = FakeSession()
    metadata = Metadata(group_id="org.lib", artifact_id="lib", version="1.0-SNAPSHOT")
    metadata.add_snapshot("20240101.100000", "1")
    session.files[f"{REPO_URL}/org/lib/lib/1.0-SNAPSHOT/maven-metadata.xml"] = metadata.to_xml().encode()
    publish(session.files, REPO_URL, "org.lib:lib:1.0-SNAPSHOT", revision=revision)
    jar_url = f"{REPO_URL}/org/lib/lib/1.0-SNAPSHOT/lib-{revision}.jar"

    [first] = _solver(online, cache, session, "org.lib:lib:1.0-SNAPSHOT").get_classpath(Scope.COMPILE)
    assert first.name == f"lib-{revision}.jar"
    assert first.read_bytes() == b"jar of org.lib:lib:1.0-SNAPSHOT"

    # unchanged remote copy: no new download
    online.update_policy = UpdatePolicy(kind="never")
    _solver(online, cache, session, "org.lib:lib:1.0-SNAPSHOT").get_classpath(Scope.COMPILE)
    assert session.urls("GET").count(jar_url) == 1

    session.files[jar_url] = b"rebuilt"
    with cache.update_moxie_data(Dependency.parse("org.lib:lib:1.0-SNAPSHOT")) as data:
        data.last_updated = datetime.now(timezone.utc) + timedelta(days=1)

    [second] = _solver(online, cache, session, "org.lib:lib:1.0-SNAPSHOT").get_classpath(Scope.COMPILE)
    assert second == first
    assert second.read_bytes() == b"rebuilt"


def test_fetch_sources_downloads_sources_and_javadoc(online: ResolverContext, cache: ArtifactCache) -> None:
    online.fetch_sources = True
    session = FakeSession()
    publish(session.files, REPO_URL, "org.lib:lib:1.0")
    for classifier in ("sources", "javadoc"):
        session.files[f"{REPO_URL}/org/lib/lib/1.0/lib-1.0-{classifier}.jar"] = classifier.encode()

    classpath = _solver(online, cache, session, "org.lib:lib:1.0").get_classpath(Scope.COMPILE)

    assert [p.name for p in classpath] == ["lib-1.0.jar"]
    lib = Dependency.parse("org.lib:lib:1.0")
    sources = cache.get_artifact(lib.sources_dependency(), "jar")
    javadoc = cache.get_artifact(lib.javadoc_dependency(), "jar")
    assert sources is not None and sources.read_bytes() == b"sources"
    assert javadoc is not None and javadoc.read_bytes() == b"javadoc"


def test_parallel_resolve_downloads_every_artifact(online: ResolverContext, cache: ArtifactCache) -> None:
    online.parallel_downloads = 4
    session = FakeSession()
    coordinates = ["org.a:a:1.0", "org.b:b:1.0", "org.c:c:1.0", "org.d:d:1.0"]
    for c in coordinates:
        publish(session.files, REPO_URL, c)

    solver = _solver(online, cache, session, *coordinates)

    assert solver.resolve() is True
    assert solver.failures == []
    for c in coordinates:
        assert cache.get_artifact(Dependency.parse(c), "jar") is not None
