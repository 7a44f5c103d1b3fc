"""Pytest configuration and fixtures for mx-resolver tests."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import requests

from mx_resolver.cache import ArtifactCache
from mx_resolver.config import RepositoryConfig, ResolverContext
from mx_resolver.models import Dependency


REPO_URL = "https://repo.example.org/maven2"


def dependency_xml(
    coordinates: str,
    scope: str | None = None,
    *,
    optional: bool = False,
    exclusions: tuple[str, ...] = (),
    type: str | None = None,
) -> str:
    """Render one `<dependency>` element for inline test POMs."""
    dep = Dependency.parse(coordinates)
    parts = [
        f"<groupId>{dep.group_id}</groupId>",
        f"<artifactId>{dep.artifact_id}</artifactId>",
    ]
    if dep.version:
        parts.append(f"<version>{dep.version}</version>")
    if type:
        parts.append(f"<type>{type}</type>")
    if scope:
        parts.append(f"<scope>{scope}</scope>")
    if optional:
        parts.append("<optional>true</optional>")
    if exclusions:
        parts.append("<exclusions>")
        for exclusion in exclusions:
            group_id, _, artifact_id = exclusion.partition(":")
            parts.append(
                f"<exclusion><groupId>{group_id}</groupId><artifactId>{artifact_id or '*'}</artifactId></exclusion>"
            )
        parts.append("</exclusions>")
    return "<dependency>" + "".join(parts) + "</dependency>"


def pom_xml(coordinates: str, body: str = "", *, packaging: str = "jar") -> str:
    dep = Dependency.parse(coordinates)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0">
  <modelVersion>4.0.0</modelVersion>
  <groupId>{dep.group_id}</groupId>
  <artifactId>{dep.artifact_id}</artifactId>
  <version>{dep.version}</version>
  <packaging>{packaging}</packaging>
  {body}
</project>
"""


def publish(
    files: dict[str, bytes],
    base_url: str,
    coordinates: str,
    *dependencies: str,
    extra: str = "",
    packaging: str = "jar",
    revision: str | None = None,
) -> None:
    """Add a POM (and its jar) to the `files` served by a `FakeSession`."""
    dep = Dependency.parse(coordinates)
    folder = f"{base_url}/{dep.group_id.replace('.', '/')}/{dep.artifact_id}/{dep.version}"
    name = f"{dep.artifact_id}-{revision or dep.version}"
    body = extra
    if dependencies:
        body += "<dependencies>" + "".join(dependencies) + "</dependencies>"
    files[f"{folder}/{name}.pom"] = pom_xml(coordinates, body, packaging=packaging).encode("utf-8")
    if packaging != "pom":
        files[f"{folder}/{name}.jar"] = f"jar of {coordinates}".encode("utf-8")


@dataclass
class FakeResponse:
    status_code: int
    content: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


class FakeSession:
    """Serves a dict of URL -> bytes; everything else is a 404."""

    def __init__(self, files: dict[str, bytes] | None = None, *, fail: bool = False) -> None:
        self.files = dict(files or {})
        self.fail = fail
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def _respond(self, method: str, url: str, kwargs: dict[str, Any]) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        if self.fail:
            raise requests.ConnectionError("connection refused")
        if url not in self.files:
            return FakeResponse(404)
        return FakeResponse(200, self.files[url], {"Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT"})

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("GET", url, kwargs)

    def head(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("HEAD", url, kwargs)

    def urls(self, method: str | None = None) -> list[str]:
        return [url for m, url, _ in self.calls if method is None or m == method]


@pytest.fixture
def context(tmp_path: Path) -> ResolverContext:
    """Offline context with an empty cache under tmp_path."""
    return ResolverContext(
        root=tmp_path / "cache",
        maven_cache=None,
        repositories=[RepositoryConfig(id="test", url=REPO_URL)],
        offline=True,
        checksum_retry_wait=0,
    )


@pytest.fixture
def cache(context: ResolverContext) -> ArtifactCache:
    return ArtifactCache(context.root)


@pytest.fixture
def install(cache: ArtifactCache) -> Callable[..., Path]:
    """Put a POM (and its jar) into the local cache layer.

    `install("g:a:v", dependency_xml(...), ...)` wraps the given elements in
    a `<dependencies>` block.
    """

    def _install(
        coordinates: str,
        *dependencies: str,
        extra: str = "",
        packaging: str = "jar",
        jar: bool = True,
    ) -> Path:
        dep = Dependency.parse(coordinates)
        body = extra
        if dependencies:
            body += "<dependencies>" + "".join(dependencies) + "</dependencies>"
        path = cache.write_artifact(
            dep.pom_dependency(), "pom", pom_xml(coordinates, body, packaging=packaging).encode("utf-8")
        )
        if jar and packaging != "pom":
            cache.write_artifact(dep, "jar", f"jar of {coordinates}".encode("utf-8"))
        return path

    return _install
