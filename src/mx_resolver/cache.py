"""Layered artifact cache.

Layout under the cache root:

    local/<group-path>/<artifact>/<version>/<artifact>-<revision>[-<classifier>].<ext>
    remote/<origin-folder>/<group-path>/...
    data/<group-path>/<artifact>/<version>/moxie.json
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from mx_resolver.exceptions import MxError
from mx_resolver.metadata import Metadata, read_metadata
from mx_resolver.models import POM, Dependency
from mx_resolver.moxiedata import MoxieData
from mx_resolver.parser import PomReader


logger = logging.getLogger(__name__)

ARTIFACT_PATTERN = "${groupId}/${artifactId}/${version}/${artifactId}-${revision}${classifier}.${ext}"
METADATA_PATTERN = "${groupId}/${artifactId}/maven-metadata.${ext}"
SNAPSHOT_METADATA_PATTERN = "${groupId}/${artifactId}/${version}/maven-metadata.${ext}"

LOCAL = "local"
REMOTE = "remote"
DATA = "data"
DATA_FILE = "moxie.json"


def url_to_folder(url: str) -> str:
    """Filesystem-safe folder name for a repository URL.

    `https://repo1.maven.org:443/maven2` -> `repo1.maven.org-443_maven2`
    """
    folder = url.split("://", 1)[-1].rstrip("/")
    return folder.replace("/", "_").replace(":", "-")


def dependency_path(pattern: str, dep: Dependency, ext: str, *, dot_group: bool = False) -> str:
    """Expand a path pattern for `dep`.

    Args:
        pattern: Pattern with ${groupId}, ${artifactId}, ${version},
            ${revision}, ${classifier} and ${ext} tokens.
        dep: Coordinate to render.
        ext: File extension, without the dot.
        dot_group: Keep the group in dot form instead of as a path.

    Returns:
        Relative path string using `/` separators.
    """
    group = dep.group_id if dot_group else dep.group_id.replace(".", "/")
    classifier = f"-{dep.classifier}" if dep.classifier and ext != POM else ""
    return (
        pattern.replace("${groupId}", group)
        .replace("${artifactId}", dep.artifact_id)
        .replace("${version}", dep.version)
        .replace("${revision}", dep.effective_revision)
        .replace("${classifier}", classifier)
        .replace("${ext}", ext)
    )


def atomic_write(path: Path, content: bytes, mtime: datetime | None = None) -> Path:
    """Write `content` to a temporary sibling and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")
    try:
        tmp.write_bytes(content)
        if mtime is not None:
            ts = mtime.timestamp()
            os.utime(tmp, (ts, ts))
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
    return path


def atomic_copy(source: Path, path: Path) -> Path:
    """Copy `source` (with its mtime) to a temporary sibling and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")
    try:
        shutil.copy2(source, tmp)
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
    return path


class KeyedLocks:
    """One lock per key, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def __call__(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock


class ArtifactCache:
    """Maps coordinates to files under a cache root.

    Args:
        root: Cache root directory.
        maven_cache: Optional upstream Maven repository (e.g. ~/.m2/repository)
            whose artifacts are copied in on first access.
    """

    def __init__(self, root: Path, maven_cache: Path | None = None) -> None:
        self.root = Path(root)
        self.maven_cache = Path(maven_cache) if maven_cache else None
        self.local_root = self.root / LOCAL
        self.remote_root = self.root / REMOTE
        self.data_root = self.root / DATA
        self.locks = KeyedLocks()

    # paths

    def root_for(self, dep: Dependency) -> Path:
        """Local root for artifacts without origin, else the origin's remote folder."""
        if dep.origin:
            return self.remote_root / url_to_folder(dep.origin)
        return self.local_root

    def locate(self, dep: Dependency, ext: str) -> Path:
        """Canonical cache path of `dep`'s artifact with extension `ext`."""
        return self.root_for(dep) / dependency_path(ARTIFACT_PATTERN, dep, ext)

    def metadata_path(self, dep: Dependency, ext: str = "xml") -> Path:
        """Canonical path of the artifact (or snapshot) metadata document."""
        return self.root_for(dep) / self.metadata_relative(dep, ext)

    def data_path(self, dep: Dependency) -> Path:
        group = dep.group_id.replace(".", "/")
        return self.data_root / group / dep.artifact_id / dep.version / DATA_FILE

    @staticmethod
    def metadata_relative(dep: Dependency, ext: str) -> str:
        pattern = SNAPSHOT_METADATA_PATTERN if dep.is_snapshot else METADATA_PATTERN
        return dependency_path(pattern, dep, ext)

    def _layers(self, canonical_root: Path) -> Iterator[Path]:
        yield canonical_root
        if canonical_root != self.local_root:
            yield self.local_root
        if self.remote_root.is_dir():
            for folder in sorted(self.remote_root.iterdir()):
                if folder.is_dir() and folder != canonical_root:
                    yield folder

    # lookup

    def get_artifact(self, dep: Dependency, ext: str) -> Path | None:
        """Find `dep`'s artifact in any cache layer.

        Lookup order: canonical location, the local root and every remote
        origin folder, then the upstream Maven cache. A hit in the Maven cache
        is copied into the canonical location first.

        Returns:
            Path of the cached file, or None.
        """
        relative = dependency_path(ARTIFACT_PATTERN, dep, ext)
        for layer in self._layers(self.root_for(dep)):
            candidate = layer / relative
            if candidate.is_file():
                return candidate

        if self.maven_cache is None:
            return None
        candidates = [relative]
        if dep.is_snapshot and dep.revision and dep.revision != dep.version:
            # Maven's local repository keeps snapshots under the -SNAPSHOT name
            candidates.append(dependency_path(ARTIFACT_PATTERN, dep.copy_with(revision=None), ext))
        for rel in candidates:
            upstream = self.maven_cache / rel
            if upstream.is_file():
                target = self.locate(dep, ext)
                with self.locks(str(target)):
                    if not target.exists():
                        logger.debug("copying %s from %s", upstream.name, self.maven_cache)
                        atomic_copy(upstream, target)
                return target
        return None

    def get_metadata(self, dep: Dependency, ext: str = "xml") -> Path | None:
        relative = self.metadata_relative(dep, ext)
        for layer in self._layers(self.root_for(dep)):
            candidate = layer / relative
            if candidate.is_file():
                return candidate
        return None

    def read_metadata(self, dep: Dependency) -> Metadata | None:
        path = self.get_metadata(dep)
        return read_metadata(path) if path is not None else None

    # writes

    def write_artifact(self, dep: Dependency, ext: str, content: bytes, mtime: datetime | None = None) -> Path:
        target = self.locate(dep, ext)
        with self.locks(str(target)):
            return atomic_write(target, content, mtime)

    def write_metadata(self, dep: Dependency, content: str | bytes, mtime: datetime | None = None) -> Path:
        target = self.metadata_path(dep)
        data = content.encode("utf-8") if isinstance(content, str) else content
        with self.locks(str(target)):
            return atomic_write(target, data, mtime)

    # side-data

    def read_moxie_data(self, dep: Dependency) -> MoxieData:
        """Read `dep`'s side-data, or a fresh record when none is stored."""
        path = self.data_path(dep)
        if path.is_file():
            try:
                return MoxieData.model_validate_json(path.read_text(encoding="utf-8"))
            except ValueError:
                logger.warning("discarding unreadable side-data %s", path)
        return MoxieData.for_dependency(dep)

    def write_moxie_data(self, dep: Dependency, data: MoxieData) -> Path:
        path = self.data_path(dep)
        with self.locks(str(path)):
            return atomic_write(path, data.model_dump_json(indent=2).encode("utf-8"))

    @contextmanager
    def update_moxie_data(self, dep: Dependency) -> Iterator[MoxieData]:
        """Read-modify-write `dep`'s side-data under its path lock."""
        path = self.data_path(dep)
        with self.locks(str(path)):
            data = self.read_moxie_data(dep)
            yield data
            self.write_moxie_data(dep, data)

    # maintenance

    def purge_snapshots(self, dep: Dependency, retention_count: int, purge_after_days: int) -> list[Path]:
        """Delete cached snapshot revisions outside the retention policy.

        The parent POM's snapshots are purged with the same policy.

        Returns:
            Deleted files.
        """
        return self._purge_snapshots(dep, retention_count, purge_after_days, set())

    def _purge_snapshots(
        self, dep: Dependency, retention_count: int, purge_after_days: int, seen: set[str]
    ) -> list[Path]:
        if not dep.is_snapshot or dep.management_id in seen:
            return []
        seen.add(dep.management_id)

        deleted: list[Path] = []
        path = self.get_metadata(dep)
        metadata = read_metadata(path) if path is not None else None
        if path is not None and metadata is not None:
            removed = metadata.purge_snapshots(retention_count, purge_after_days)
            for revision in removed:
                for stale in path.parent.glob(f"{dep.artifact_id}-{revision}*"):
                    stale.unlink()
                    deleted.append(stale)
            if removed:
                with self.locks(str(path)):
                    atomic_write(path, metadata.to_xml().encode("utf-8"), metadata.last_updated)
                logger.info("purged %d old snapshot(s) of %s", len(removed), dep.coordinates)

        pom_path = self.get_artifact(dep.pom_dependency(), POM)
        if pom_path is not None:
            try:
                pom = PomReader(self).read_pom_file(pom_path)
            except MxError as exc:
                logger.debug("not purging parent of %s: %s", dep.coordinates, exc)
                return deleted
            if pom.has_parent_dependency():
                parent = pom.get_parent_dependency()
                deleted.extend(self._purge_snapshots(parent, retention_count, purge_after_days, seen))
        return deleted
