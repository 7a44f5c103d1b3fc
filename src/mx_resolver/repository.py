"""HTTP client for remote Maven repositories."""

from __future__ import annotations

import base64
import hashlib
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any

import requests

from mx_resolver.cache import ARTIFACT_PATTERN, ArtifactCache, dependency_path
from mx_resolver.config import RepositoryConfig, ResolverContext
from mx_resolver.exceptions import (
    ArtifactNotFoundError,
    ChecksumMismatchError,
    MetadataParseError,
    TransportError,
)
from mx_resolver.metadata import parse_metadata, read_metadata
from mx_resolver.models import LATEST, RELEASE, Dependency


logger = logging.getLogger(__name__)

USER_AGENT = "mx-resolver"

_SHA1_RE = re.compile(r"^[0-9a-fA-F]{40}")


@dataclass
class DownloadData:
    """Bytes fetched from a repository plus the server's Last-Modified."""

    url: str
    content: bytes
    last_modified: datetime | None = None


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class RemoteRepository:
    """Downloads artifacts, checksums and metadata from one repository.

    Args:
        config: Repository definition.
        context: Resolver context (proxies, checksum policy).
        session: HTTP session; a new `requests.Session` by default.
    """

    def __init__(
        self,
        config: RepositoryConfig,
        context: ResolverContext,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.context = context
        self.session = session or requests.Session()

    @property
    def name(self) -> str:
        return self.config.id

    @property
    def url(self) -> str:
        return self.config.url.rstrip("/")

    def __repr__(self) -> str:
        return f"RemoteRepository({self.name}, {self.url})"

    # selection

    def is_source(self, dep: Dependency) -> bool:
        """True if this repository declares an affinity for `dep`'s group."""
        return any(dep.group_id == a or dep.group_id.startswith(f"{a}.") for a in self.config.affinity)

    def allows(self, dep: Dependency) -> bool:
        return self.config.allow_snapshots or not dep.is_snapshot

    # urls

    def artifact_url(self, dep: Dependency, ext: str) -> str:
        return f"{self.url}/{dependency_path(ARTIFACT_PATTERN, dep, ext)}"

    def metadata_url(self, dep: Dependency) -> str:
        relative = ArtifactCache.metadata_relative(dep, "xml")
        return f"{self.url}/{relative}"

    # transport

    def _request_kwargs(self, url: str) -> dict[str, Any]:
        headers = {"User-Agent": USER_AGENT}
        kwargs: dict[str, Any] = {
            "timeout": (self.config.connect_timeout, self.config.read_timeout),
            "headers": headers,
        }
        proxy = self.context.find_proxy(url)
        if proxy is not None:
            kwargs["proxies"] = {"http": proxy.url, "https": proxy.url}
            if proxy.username:
                token = base64.b64encode(f"{proxy.username}:{proxy.password or ''}".encode("utf-8")).decode("ascii")
                headers["Proxy-Authorization"] = f"Basic {token}"
        if self.config.username:
            kwargs["auth"] = (self.config.username, self.config.password or "")
        return kwargs

    def _get(self, url: str) -> DownloadData:
        """GET `url`.

        Raises:
            ArtifactNotFoundError: On HTTP 404 or 400.
            TransportError: On any other failure.
        """
        try:
            response = self.session.get(url, **self._request_kwargs(url))
        except requests.RequestException as exc:
            raise TransportError(f"{url}: {exc}") from exc
        if response.status_code in (400, 404):
            raise ArtifactNotFoundError(url)
        if response.status_code >= 300:
            raise TransportError(f"HTTP {response.status_code} for {url}")
        return DownloadData(
            url=url,
            content=response.content,
            last_modified=_parse_http_date(response.headers.get("Last-Modified")),
        )

    def _probe(self, url: str) -> bool:
        """HEAD `url` to decide whether an unverified download is worth trying."""
        try:
            response = self.session.head(url, allow_redirects=True, **self._request_kwargs(url))
        except requests.RequestException as exc:
            logger.warning("failed to connect to %s: %s", self.name, exc)
            return False
        return response.status_code < 300

    # checksums

    def _fetch_sha1(self, url: str) -> DownloadData | None:
        try:
            data = self._get(f"{url}.sha1")
        except ArtifactNotFoundError:
            return None
        except TransportError as exc:
            logger.warning("failed to get checksum %s.sha1: %s", url, exc)
            return None
        m = _SHA1_RE.match(data.content.decode("utf-8", "replace").strip())
        if m is None:
            return None
        data.content = m.group(0).lower().encode("ascii")
        return data

    def get_sha1(self, cache: ArtifactCache, dep: Dependency, ext: str, *, refresh: bool = False) -> str | None:
        """Expected SHA-1 of `dep`'s artifact, from the cached `.sha1` file or the repository.

        Args:
            cache: Artifact cache holding previously fetched `.sha1` files.
            dep: Coordinate, with `origin` set to this repository.
            ext: Artifact extension.
            refresh: Ignore the cached `.sha1` file.

        Returns:
            Lower-case hex digest, or None if the repository publishes none.
        """
        sha_ext = f"{ext}.sha1"
        cached = cache.locate(dep, sha_ext)
        if not refresh and cached.is_file():
            m = _SHA1_RE.match(cached.read_text(encoding="utf-8").strip())
            if m:
                return m.group(0).lower()
        data = self._fetch_sha1(self.artifact_url(dep, ext))
        if data is None:
            return None
        cache.write_artifact(dep, sha_ext, data.content, data.last_modified)
        return data.content.decode("ascii")

    def _verify(
        self,
        url: str,
        content: bytes,
        expected: str,
        refetch: Callable[[], str | None],
        on_failure: Callable[[], None] | None = None,
    ) -> None:
        calculated = hashlib.sha1(content).hexdigest()
        if calculated == expected:
            return
        # retry once against a freshly fetched .sha1
        time.sleep(self.context.checksum_retry_wait)
        retried = refetch()
        if retried and calculated == retried:
            return
        if on_failure is not None:
            on_failure()
        error = ChecksumMismatchError(url, retried or expected, calculated)
        if self.context.enforce_checksums:
            raise error
        logger.warning(str(error))

    # downloads

    def fetch(self, cache: ArtifactCache, dep: Dependency, ext: str) -> Path | None:
        """Return the cached artifact, downloading it from this repository on a miss."""
        located = dep.copy_with(origin=self.url)
        cached = cache.get_artifact(located, ext)
        if cached is not None:
            logger.debug("%s found in cache at %s", dep.coordinates, cached)
            return cached
        return self.download(cache, dep, ext)

    def download(self, cache: ArtifactCache, dep: Dependency, ext: str) -> Path | None:
        """Download `dep`'s artifact into the cache.

        Returns:
            The cached path, or None if the repository does not have it or
            could not be reached.

        Raises:
            ChecksumMismatchError: If the content does not match its SHA-1.
        """
        dep = dep.copy_with(origin=self.url)
        url = self.artifact_url(dep, ext)
        expected = self.get_sha1(cache, dep, ext)
        if expected is None and not self._probe(url):
            logger.debug("%s not found @ %s", dep.coordinates, self.name)
            return None

        try:
            data = self._get(url)
        except ArtifactNotFoundError:
            logger.debug("%s not found @ %s", dep.coordinates, self.name)
            return None
        except TransportError as exc:
            logger.warning("failed to download %s from %s: %s", dep.coordinates, self.name, exc)
            return None

        if expected is not None:
            self._verify(
                url,
                data.content,
                expected,
                lambda: self.get_sha1(cache, dep, ext, refresh=True),
                lambda: cache.locate(dep, f"{ext}.sha1").unlink(missing_ok=True),
            )

        path = cache.write_artifact(dep, ext, data.content, data.last_modified)
        now = _now()
        with cache.update_moxie_data(dep) as md:
            md.origin = self.url
            md.last_downloaded = now
            md.last_checked = now
            if not dep.is_snapshot and data.last_modified is not None:
                md.last_updated = data.last_modified
        logger.info("downloaded %s from %s", path.name, self.name)
        return path

    def download_metadata(self, cache: ArtifactCache, dep: Dependency) -> Path | None:
        """Download and merge `dep`'s maven-metadata.xml.

        Snapshot metadata updates the version's side-data; artifact metadata
        updates the RELEASE and LATEST pseudo-coordinates.

        Returns:
            The cached metadata path, or None.
        """
        dep = dep.copy_with(origin=self.url)
        url = self.metadata_url(dep)
        expected = self._sha1_text(url)
        if expected is None and not self._probe(url):
            logger.debug("metadata for %s not found @ %s", dep.management_id, self.name)
            return None

        try:
            data = self._get(url)
        except ArtifactNotFoundError:
            logger.debug("metadata for %s not found @ %s", dep.management_id, self.name)
            return None
        except TransportError as exc:
            logger.warning("failed to download metadata for %s from %s: %s", dep.management_id, self.name, exc)
            return None

        if expected is not None:
            self._verify(url, data.content, expected, lambda: self._sha1_text(url))

        try:
            metadata = parse_metadata(data.content)
        except MetadataParseError as exc:
            logger.warning("skipping malformed metadata from %s: %s", self.name, exc)
            return None

        old = read_metadata(cache.metadata_path(dep))
        if old is not None:
            metadata.merge(old)
        path = cache.write_metadata(dep, metadata.to_xml(), data.last_modified)

        now = _now()
        if dep.is_snapshot:
            with cache.update_moxie_data(dep) as md:
                md.origin = self.url
                md.last_checked = now
                md.last_updated = metadata.last_updated
        else:
            for pseudo in (RELEASE, LATEST):
                with cache.update_moxie_data(dep.copy_with(version=pseudo)) as md:
                    md.origin = self.url
                    md.last_checked = now
                    md.last_updated = metadata.last_updated
                    md.release = metadata.release
                    md.latest = metadata.latest
        logger.debug("updated %s from %s", metadata, self.name)
        return path

    def _sha1_text(self, url: str) -> str | None:
        data = self._fetch_sha1(url)
        return data.content.decode("ascii") if data is not None else None
