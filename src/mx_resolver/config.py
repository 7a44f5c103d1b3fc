"""Resolver configuration.

A `ResolverContext` is built once per invocation (from the environment and
the project descriptor) and passed to every component.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

from mx_resolver.pom import Pom
from mx_resolver.scope import Scope


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class PurgePolicy(BaseModel):
    """How many snapshot revisions to keep in the cache."""

    retention_count: int = 1
    purge_after_days: int = 0


class RepositoryConfig(BaseModel):
    """A remote Maven repository definition."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    url: str
    allow_snapshots: bool = Field(default=True, alias="allowSnapshots")
    affinity: list[str] = Field(default_factory=list)
    connect_timeout: float = Field(default=20, alias="connectTimeout")
    read_timeout: float = Field(default=1800, alias="readTimeout")
    username: str | None = None
    password: str | None = None
    revision_retention_count: int = Field(default=1, alias="revisionRetentionCount")
    revision_purge_after_days: int = Field(default=0, alias="revisionPurgeAfterDays")

    @property
    def purge_policy(self) -> PurgePolicy:
        return PurgePolicy(
            retention_count=self.revision_retention_count,
            purge_after_days=self.revision_purge_after_days,
        )


MAVEN_CENTRAL = RepositoryConfig(id="central", url="https://repo1.maven.org/maven2")


class ProxyConfig(BaseModel):
    """An HTTP proxy definition."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = "proxy"
    active: bool = True
    protocol: str = "http"
    host: str
    port: int = 80
    username: str | None = None
    password: str | None = None
    proxy_hosts: list[str] = Field(default_factory=list, alias="proxyHosts")
    non_proxy_hosts: list[str] = Field(default_factory=list, alias="nonProxyHosts")

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    def matches(self, url: str) -> bool:
        """Return True if requests to `url` should go through this proxy.

        The URL scheme must match the proxy protocol. When `proxy_hosts` is
        set only those hosts (or their subdomains) are proxied; hosts in
        `non_proxy_hosts` never are.
        """
        if not self.active or not url.lower().startswith(self.protocol.lower()):
            return False
        host = (urlsplit(url).hostname or "").lower()
        if self.proxy_hosts and not any(_host_matches(host, h) for h in self.proxy_hosts):
            return False
        return not any(_host_matches(host, h) for h in self.non_proxy_hosts)


def _host_matches(host: str, pattern: str) -> bool:
    pattern = pattern.strip().lower().lstrip("*")
    return bool(pattern) and (host == pattern.lstrip(".") or host.endswith(pattern))


@dataclass(frozen=True)
class UpdatePolicy:
    """When cached metadata for meta-versions is refreshed.

    Attributes:
        kind: "always", "never", "daily" or "interval".
        minutes: Interval length, only used by "interval".
    """

    kind: str = "daily"
    minutes: int = 60

    @classmethod
    def parse(cls, value: str | None) -> "UpdatePolicy":
        """Parse 'always', 'never', 'daily', 'interval' or 'interval:N'."""
        if not value:
            return cls()
        kind, _, minutes = value.strip().lower().partition(":")
        if kind not in ("always", "never", "daily", "interval"):
            raise ValueError(f"Unknown update policy: {value}")
        if kind == "interval" and minutes:
            return cls(kind=kind, minutes=int(minutes))
        return cls(kind=kind)

    def is_update_required(self, last_checked: datetime, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if self.kind == "always":
            return True
        if self.kind == "never":
            return False
        if self.kind == "daily":
            return last_checked.astimezone(timezone.utc).date() < now.astimezone(timezone.utc).date()
        return now - last_checked >= timedelta(minutes=self.minutes)

    def __str__(self) -> str:
        return f"interval:{self.minutes}" if self.kind == "interval" else self.kind


@dataclass
class ResolverContext:
    """Everything a resolution needs to know about its environment.

    Attributes:
        root: Cache root holding `local/`, `remote/` and `data/`.
        maven_cache: Upstream Maven repository consulted as a last resort.
        repositories: Remote repositories, in lookup order.
        proxies: HTTP proxies.
        update_policy: Metadata refresh policy for meta-versions.
        offline: Never touch the network.
        update_metadata: Force a metadata refresh for meta-versions.
        enforce_checksums: Fail on SHA-1 mismatch (warn otherwise).
        strict_properties: Raise on unresolved `${...}` properties.
        fail_fast: Raise on the first unresolvable required dependency.
        cache_solutions: Read and write memoized solutions.
        fetch_sources: Also download sources and javadoc artifacts.
        parallel_downloads: Worker threads used to retrieve a scope's artifacts.
        checksum_retry_wait: Seconds to wait before re-checking a mismatched SHA-1.
        properties: External properties for `${...}` substitution.
        overrides: Replacement dependency lists keyed by solve scope and
            `group:artifact:version`.
    """

    root: Path
    maven_cache: Path | None = None
    repositories: list[RepositoryConfig] = field(default_factory=list)
    proxies: list[ProxyConfig] = field(default_factory=list)
    update_policy: UpdatePolicy = field(default_factory=UpdatePolicy)
    offline: bool = False
    update_metadata: bool = False
    enforce_checksums: bool = True
    strict_properties: bool = False
    fail_fast: bool = True
    cache_solutions: bool = True
    fetch_sources: bool = False
    parallel_downloads: int = 1
    checksum_retry_wait: float = 0.5
    properties: dict[str, str] = field(default_factory=dict)
    overrides: dict[tuple[Scope, str], Pom] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "ResolverContext":
        """Create a context from environment variables.

        Environment variables:
            MX_ROOT: Cache root (default: ~/.moxie)
            MX_MAVEN_CACHE: Upstream Maven cache, empty to disable (default: ~/.m2/repository)
            MX_ONLINE: "false" to work offline (default: true)
            MX_UPDATEMETADATA: Force metadata refresh (default: false)
            MX_ENFORCECHECKSUMS: Fail on checksum mismatch (default: true)
            MX_STRICT_PROPERTIES: Raise on unresolved properties (default: false)
            MX_PARALLEL: Download worker threads (default: 1)
            MX_UPDATE_POLICY: always | never | daily | interval[:minutes] (default: daily)
        """
        maven_cache = os.getenv("MX_MAVEN_CACHE")
        if maven_cache is None:
            maven_cache_path: Path | None = Path.home() / ".m2" / "repository"
        else:
            maven_cache_path = Path(maven_cache).expanduser() if maven_cache.strip() else None

        return cls(
            root=Path(os.getenv("MX_ROOT", str(Path.home() / ".moxie"))).expanduser().resolve(),
            maven_cache=maven_cache_path,
            update_policy=UpdatePolicy.parse(os.getenv("MX_UPDATE_POLICY")),
            offline=not _env_bool("MX_ONLINE", True),
            update_metadata=_env_bool("MX_UPDATEMETADATA", False),
            enforce_checksums=_env_bool("MX_ENFORCECHECKSUMS", True),
            strict_properties=_env_bool("MX_STRICT_PROPERTIES", False),
            parallel_downloads=int(os.getenv("MX_PARALLEL", "1")),
        )

    def validate(self) -> None:
        """Validate the configuration.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.parallel_downloads < 1:
            raise ValueError("MX_PARALLEL must be at least 1")
        if self.checksum_retry_wait < 0:
            raise ValueError("checksum_retry_wait must not be negative")
        ids = [r.id for r in self.repositories]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate repository ids: {ids}")

    def find_proxy(self, url: str) -> ProxyConfig | None:
        """Return the first active proxy that matches `url`."""
        for proxy in self.proxies:
            if proxy.matches(url):
                return proxy
        return None
