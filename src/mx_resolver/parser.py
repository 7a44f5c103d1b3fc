"""Parse Maven POM files into `Pom` objects using lxml."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from lxml import etree

from mx_resolver.exceptions import PomModelError, PomNotFoundError, PomParseError
from mx_resolver.models import POM, Dependency, License, Person
from mx_resolver.pom import Pom
from mx_resolver.scope import Scope

if TYPE_CHECKING:
    from mx_resolver.cache import ArtifactCache


logger = logging.getLogger(__name__)


def _text_first(node: etree._Element, xpath_expr: str) -> str | None:
    """Get text of the first matching element using namespace-agnostic XPath.

    Args:
        node: Root element to query under.
        xpath_expr: XPath expression (should use local-name()).

    Returns:
        Text content if found and non-empty, otherwise None.
    """
    found = node.xpath(xpath_expr)
    if not found:
        return None
    first = found[0]
    if isinstance(first, etree._Element):
        text = (first.text or "").strip()
        return text or None
    if isinstance(first, str):
        text = first.strip()
        return text or None
    return None


def _child(node: etree._Element, name: str) -> str | None:
    return _text_first(node, f"./*[local-name()='{name}']")


def _children(node: etree._Element, *path: str) -> list[etree._Element]:
    expr = "/".join(f"*[local-name()='{p}']" for p in path)
    return [n for n in node.xpath(f"./{expr}") if isinstance(n, etree._Element)]


def _bool_text(value: str | None) -> bool | None:
    """Convert Maven boolean-ish text to bool.

    Args:
        value: String like 'true'/'false' or None.

    Returns:
        True/False for recognized values, otherwise None.
    """
    if value is None:
        return None
    v = value.strip().lower()
    if v == "true":
        return True
    if v == "false":
        return False
    return None


def _parse_xml(path: Path) -> etree._Element:
    """Parse an XML file and return its root element.

    Args:
        path: Path to the POM file.

    Raises:
        PomNotFoundError: If the file does not exist.
        PomParseError: If XML cannot be parsed.

    Returns:
        Root XML element.
    """
    if not path.exists():
        raise PomNotFoundError(f"POM not found: {path}")
    try:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
        tree = etree.parse(str(path), parser=parser)
        return tree.getroot()
    except (OSError, etree.XMLSyntaxError) as exc:
        raise PomParseError(f"Failed to parse POM: {path}") from exc


def _read_dependency(node: etree._Element) -> Dependency | None:
    group_id = _child(node, "groupId")
    artifact_id = _child(node, "artifactId")
    if group_id is None or artifact_id is None:
        return None

    exclusions: set[str] = set()
    for excl in _children(node, "exclusions", "exclusion"):
        excl_group = _child(excl, "groupId")
        excl_artifact = _child(excl, "artifactId")
        if not excl_group:
            continue
        exclusions.add(f"{excl_group}:{excl_artifact}" if excl_artifact and excl_artifact != "*" else excl_group)

    return Dependency(
        group_id=group_id,
        artifact_id=artifact_id,
        version=_child(node, "version") or "",
        classifier=_child(node, "classifier"),
        type=_child(node, "type") or "jar",
        optional=_bool_text(_child(node, "optional")) is True,
        exclusions=exclusions,
        path=_child(node, "systemPath"),
    )


class PomReader:
    """Reads POMs from an artifact cache, resolving parent chains.

    Args:
        cache: Cache used to locate parent and imported POMs.
        properties: External (process) properties available to `${...}` tokens.
        strict_properties: Raise instead of warning on unresolved properties.
    """

    def __init__(
        self,
        cache: "ArtifactCache | None" = None,
        *,
        properties: Mapping[str, str] | None = None,
        strict_properties: bool = False,
    ) -> None:
        self.cache = cache
        self.properties = dict(properties or {})
        self.strict_properties = strict_properties

    def read_pom(self, dependency: Dependency) -> Pom:
        """Read the POM of `dependency` from the cache.

        Raises:
            PomNotFoundError: If the POM is not in the cache.
            PomParseError: If it cannot be parsed.
        """
        path = self.cache.get_artifact(dependency, POM) if self.cache is not None else None
        if path is None:
            raise PomNotFoundError(f"POM not found for {dependency.coordinates}")
        return self.read_pom_file(path)

    def read_pom_file(self, path: str | Path) -> Pom:
        """Parse a POM file.

        Element groups are read in dependency order: parent, properties,
        dependencyManagement, dependencies, then descriptive elements.

        Raises:
            PomNotFoundError: If the file does not exist.
            PomParseError: If XML cannot be parsed.
            PomModelError: If `<artifactId>` is missing.
        """
        return self._read(Path(path), frozenset())

    def _read(self, path: Path, chain: frozenset[str]) -> Pom:
        root = _parse_xml(path)
        pom = Pom(external_properties=self.properties, strict_properties=self.strict_properties)
        pom.path = path

        artifact_id = _child(root, "artifactId")
        if artifact_id is None:
            raise PomModelError(f"Missing required <artifactId> in {path}")
        pom.artifact_id = artifact_id
        pom.group_id = _child(root, "groupId") or ""
        pom.version = _child(root, "version") or ""
        pom.packaging = _child(root, "packaging") or "jar"

        for node in _children(root, "parent"):
            pom.parent_group_id = _child(node, "groupId")
            pom.parent_artifact_id = _child(node, "artifactId")
            pom.parent_version = _child(node, "version")
            pom.inherit(self._read_parent(pom, chain | {pom.management_id}))

        for node in _children(root, "properties"):
            for prop in node:
                if isinstance(prop, etree._Element) and isinstance(prop.tag, str):
                    pom.set_property(etree.QName(prop).localname, prop.text or "")

        for node in _children(root, "dependencyManagement", "dependencies", "dependency"):
            dep = _read_dependency(node)
            if dep is None:
                continue
            scope = Scope.from_string(_child(node, "scope"))
            if scope is Scope.IMPORT:
                self._import_management(pom, dep, chain)
            else:
                pom.add_managed_dependency(dep, scope)

        for node in _children(root, "dependencies", "dependency"):
            dep = _read_dependency(node)
            if dep is None:
                continue
            scope = Scope.from_string(_child(node, "scope"))
            if scope is Scope.SYSTEM and dep.path:
                dep = Dependency.system(pom.substitute(dep.path) or dep.path).copy_with(
                    group_id=dep.group_id, artifact_id=dep.artifact_id, version=dep.version
                )
            pom.add_dependency(dep, scope)

        licenses = _children(root, "licenses", "license")
        if licenses:
            pom.licenses = []
            for node in licenses:
                name = _child(node, "name")
                if name:
                    pom.licenses.append(License(name=name, url=_child(node, "url")))

        for node in _children(root, "developers", "developer"):
            pom.developers.append(
                Person(
                    id=_child(node, "id"),
                    name=_child(node, "name"),
                    email=_child(node, "email"),
                    organization=_child(node, "organization"),
                )
            )

        pom.issues_url = _text_first(
            root, "./*[local-name()='issueManagement']/*[local-name()='url']"
        ) or pom.issues_url
        pom.organization = _text_first(
            root, "./*[local-name()='organization']/*[local-name()='name']"
        ) or pom.organization
        pom.name = _child(root, "name") or pom.name
        pom.description = _child(root, "description") or pom.description
        pom.url = _child(root, "url") or pom.url

        pom.resolve_properties()
        return pom

    def _read_parent(self, pom: Pom, chain: frozenset[str]) -> Pom:
        parent_dep = pom.get_parent_dependency()
        placeholder = Pom(
            parent_dep.group_id,
            parent_dep.artifact_id,
            parent_dep.version,
            external_properties=self.properties,
            strict_properties=self.strict_properties,
        )
        if parent_dep.management_id in chain:
            logger.warning("ignoring circular parent %s of %s", parent_dep.coordinates, pom.management_id)
            return placeholder
        path = self.cache.get_artifact(parent_dep, POM) if self.cache is not None else None
        if path is None:
            # parent not materialized yet; the solver retrieves it and re-reads
            logger.debug("parent %s of %s is not cached", parent_dep.coordinates, pom.management_id)
            return placeholder
        return self._read(path, chain)

    def _import_management(self, pom: Pom, dep: Dependency, chain: frozenset[str]) -> None:
        imported = dep.copy_with(
            group_id=pom.substitute(dep.group_id) or "",
            version=pom.substitute(dep.version or pom.managed_version(dep) or "") or "",
            type=POM,
        )
        pom.imports.append(imported)
        if imported.management_id in chain:
            logger.warning("ignoring circular import %s", imported.coordinates)
            return
        path = self.cache.get_artifact(imported, POM) if self.cache is not None else None
        if path is None:
            logger.warning("imported POM %s is not cached", imported.coordinates)
            return
        pom.import_managed_dependencies(self._read(path, chain | {pom.management_id}))


def read_pom_file(path: str | Path, cache: "ArtifactCache | None" = None) -> Pom:
    """Convenience wrapper around `PomReader(cache).read_pom_file(path)`."""
    return PomReader(cache).read_pom_file(path)
