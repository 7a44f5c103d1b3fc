"""maven-metadata.xml model: parse, merge, purge and serialize."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

from lxml import etree
from pydantic import BaseModel, ConfigDict, Field

from mx_resolver.exceptions import MetadataParseError
from mx_resolver.models import LATEST, RELEASE, SNAPSHOT, Dependency
from mx_resolver.version import ArtifactVersion


logger = logging.getLogger(__name__)

SNAPSHOT_TIMESTAMP = "%Y%m%d.%H%M%S"
VERSION_TIMESTAMP = "%Y%m%d%H%M%S"

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)

_SNAPSHOT_VALUE_RE = re.compile(r"(\d{8}\.\d{6})-(\d+)$")


def parse_timestamp(value: str | None, fmt: str = VERSION_TIMESTAMP) -> datetime | None:
    """Parse a UTC metadata timestamp; malformed values yield None."""
    if not value or value.lower() == "null":
        return None
    try:
        return datetime.strptime(value.strip(), fmt).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def format_timestamp(value: datetime, fmt: str = VERSION_TIMESTAMP) -> str:
    return value.astimezone(timezone.utc).strftime(fmt)


class Snapshot(BaseModel):
    """One deployed snapshot build: `timestamp` is yyyyMMdd.HHmmss (UTC)."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    build_number: str

    def revision(self, version: str) -> str:
        """Concrete revision of `version`, e.g. 1.0-20120618.134509-5."""
        return version.replace(SNAPSHOT, f"{self.timestamp}-{self.build_number}")


class Metadata(BaseModel):
    """A maven-metadata.xml document for an artifact or a snapshot version."""

    group_id: str | None = None
    artifact_id: str | None = None
    version: str | None = None
    latest: str | None = None
    release: str | None = None
    last_updated: datetime = EPOCH
    versions: list[str] = Field(default_factory=list)
    snapshots: list[Snapshot] = Field(default_factory=list)

    @property
    def management_id(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"

    def add_version(self, version: str) -> None:
        self.versions.append(version)

    def add_snapshot(self, timestamp: str, build_number: str) -> None:
        self.snapshots.append(Snapshot(timestamp=timestamp, build_number=build_number))

    def set_last_updated(self, value: str | None) -> None:
        """Set lastUpdated from a yyyyMMddHHmmss string; malformed values are ignored."""
        parsed = parse_timestamp(value)
        if parsed is not None:
            self.last_updated = parsed

    def _snapshot_sort_key(self, snapshot: Snapshot) -> str:
        return snapshot.revision(self.version or SNAPSHOT)

    def merge(self, old: "Metadata") -> None:
        """Merge an older copy of this document into this one.

        Versions and snapshots are unioned and re-sorted; `latest` and
        `release` are recomputed and the later `last_updated` is kept.
        """
        seen: dict[ArtifactVersion, str] = {}
        for version in [*self.versions, *old.versions]:
            seen.setdefault(ArtifactVersion(version), version)
        ordered = sorted(seen)

        self.versions = [seen[v] for v in ordered]
        releases = [v for v in ordered if v.is_release]
        if releases:
            self.release = seen[releases[-1]]
        if ordered:
            self.latest = seen[ordered[-1]]

        snapshots = list(dict.fromkeys([*self.snapshots, *old.snapshots]))
        self.snapshots = sorted(snapshots, key=self._snapshot_sort_key)

        if old.last_updated > self.last_updated:
            self.last_updated = old.last_updated

    def purge_snapshots(
        self,
        retention_count: int,
        purge_after_days: int,
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Drop old snapshot entries and return their revisions.

        The `retention_count` most recent snapshots are always kept. Of the
        rest, those older than `purge_after_days` (UTC midnight cutoff) are
        removed when that is non-zero; otherwise all of them are removed.

        Args:
            retention_count: Number of most recent snapshots to keep.
            purge_after_days: Age threshold in days, 0 disables it.
            now: Reference time, defaults to the current UTC time.

        Returns:
            Revisions whose cached files should be deleted, oldest first.
        """
        retention_count = max(retention_count, 0)
        if len(self.snapshots) <= retention_count:
            return []

        ordered = sorted(self.snapshots, key=self._snapshot_sort_key)
        split = len(ordered) - retention_count
        candidates, kept = ordered[:split], ordered[split:]
        version = self.version or SNAPSHOT

        removed: list[str] = []
        if purge_after_days > 0:
            now = now or datetime.now(timezone.utc)
            threshold = (now - timedelta(days=purge_after_days)).replace(
                hour=0, minute=0, second=0, microsecond=0
            )
            for snapshot in candidates:
                stamp = parse_timestamp(snapshot.timestamp, SNAPSHOT_TIMESTAMP)
                if stamp is not None and stamp < threshold:
                    removed.append(snapshot.revision(version))
                else:
                    kept.append(snapshot)
        else:
            removed = [s.revision(version) for s in candidates]

        self.snapshots = sorted(kept, key=self._snapshot_sort_key)
        return removed

    def snapshot_revision(self) -> str | None:
        """Revision of the most recent snapshot, or None when there are none."""
        if not self.snapshots:
            return None
        latest = sorted(self.snapshots, key=self._snapshot_sort_key)[-1]
        return latest.revision(self.version or SNAPSHOT)

    def last_build_number(self) -> int:
        numbers = [int(s.build_number) for s in self.snapshots if s.build_number.isdigit()]
        return max(numbers, default=0)

    def to_xml(self) -> str:
        """Serialize to maven-metadata.xml text."""
        root = etree.Element("metadata")
        root.append(etree.Comment(" project metadata "))
        _sub_text(root, "groupId", self.group_id)
        _sub_text(root, "artifactId", self.artifact_id)
        _sub_text(root, "version", self.version)

        root.append(etree.Comment(" project versioning "))
        versioning = etree.SubElement(root, "versioning")
        _sub_text(versioning, "latest", self.latest)
        _sub_text(versioning, "release", self.release)

        snapshots = sorted(self.snapshots, key=self._snapshot_sort_key)
        for snapshot in snapshots:
            node = etree.SubElement(versioning, "snapshot")
            _sub_text(node, "timestamp", snapshot.timestamp)
            _sub_text(node, "buildNumber", snapshot.build_number)

        if self.versions:
            versions = etree.SubElement(versioning, "versions")
            for version in self.versions:
                _sub_text(versions, "version", version)

        last_updated = self.last_updated
        if snapshots:
            last_updated = parse_timestamp(snapshots[-1].timestamp, SNAPSHOT_TIMESTAMP) or last_updated
        elif last_updated == EPOCH:
            last_updated = datetime.now(timezone.utc)
        _sub_text(versioning, "lastUpdated", format_timestamp(last_updated))

        return etree.tostring(root, pretty_print=True, xml_declaration=True, encoding="UTF-8").decode("utf-8")

    def __str__(self) -> str:
        return f"maven-metadata.xml ({self.management_id})"


def _sub_text(parent: etree._Element, tag: str, value: str | None) -> None:
    if value:
        etree.SubElement(parent, tag).text = value


def _child_text(node: etree._Element, name: str) -> str | None:
    found = node.xpath(f"./*[local-name()='{name}']")
    if not found:
        return None
    text = (found[0].text or "").strip()
    return text or None


def parse_metadata(content: bytes | str) -> Metadata:
    """Parse maven-metadata.xml content.

    Both the `<snapshot>` element(s) and Maven 3 `<snapshotVersions>` values
    contribute snapshot entries.

    Raises:
        MetadataParseError: If the XML is malformed.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    try:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
        root = etree.fromstring(content, parser=parser)
    except etree.XMLSyntaxError as exc:
        raise MetadataParseError(f"Failed to parse maven-metadata.xml: {exc}") from exc

    metadata = Metadata(
        group_id=_child_text(root, "groupId"),
        artifact_id=_child_text(root, "artifactId"),
        version=_child_text(root, "version"),
    )

    for versioning in root.xpath("./*[local-name()='versioning']"):
        metadata.latest = _child_text(versioning, "latest")
        metadata.release = _child_text(versioning, "release")
        metadata.set_last_updated(_child_text(versioning, "lastUpdated"))

        for node in versioning.xpath("./*[local-name()='snapshot']"):
            timestamp = _child_text(node, "timestamp")
            build_number = _child_text(node, "buildNumber")
            if timestamp and build_number:
                metadata.add_snapshot(timestamp, build_number)

        for value in versioning.xpath(
            "./*[local-name()='snapshotVersions']/*[local-name()='snapshotVersion']/*[local-name()='value']/text()"
        ):
            m = _SNAPSHOT_VALUE_RE.search(str(value).strip())
            if m:
                snapshot = Snapshot(timestamp=m.group(1), build_number=m.group(2))
                if snapshot not in metadata.snapshots:
                    metadata.snapshots.append(snapshot)

        for value in versioning.xpath(
            "./*[local-name()='versions']/*[local-name()='version']/text()"
        ):
            text = str(value).strip()
            if text:
                metadata.add_version(text)

    return metadata


def read_metadata(path: Path) -> Metadata | None:
    """Read a cached maven-metadata.xml, returning None when it does not exist."""
    if not path.exists():
        return None
    return parse_metadata(path.read_bytes())


def resolve_meta_version(dependency: Dependency, metadata: Metadata | None) -> Dependency:
    """Replace a RELEASE/LATEST/SNAPSHOT request with the concrete version.

    RELEASE and LATEST replace the version; a SNAPSHOT keeps its version and
    gets the most recent snapshot revision. Anything else is returned as is.

    Returns:
        A copy of `dependency` (or `dependency` itself when nothing changes).
    """
    if metadata is None or not dependency.is_meta_version:
        return dependency
    if dependency.version == RELEASE and metadata.release:
        return dependency.copy_with(version=metadata.release, revision=metadata.release)
    if dependency.version == LATEST and metadata.latest:
        return dependency.copy_with(version=metadata.latest, revision=metadata.latest)
    if dependency.is_snapshot:
        revision = metadata.snapshot_revision()
        if revision:
            return dependency.copy_with(revision=revision)
    logger.debug("metadata %s did not resolve %s", metadata, dependency.coordinates)
    return dependency
