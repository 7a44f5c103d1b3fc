"""Custom exceptions for mx-resolver."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mx_resolver.models import Dependency
    from mx_resolver.scope import Scope


class MxError(Exception):
    """Base exception for mx-resolver."""


class PomNotFoundError(MxError):
    """Raised when a POM file cannot be found."""


class PomParseError(MxError):
    """Raised when a POM file cannot be parsed."""


class PomModelError(MxError):
    """Raised when required Maven model fields are missing or invalid."""


class MetadataParseError(MxError):
    """Raised when a maven-metadata.xml document cannot be parsed."""


class PropertyResolutionError(MxError):
    """Raised in strict mode when a ${property} cannot be resolved."""


class DescriptorError(MxError):
    """Raised when a project descriptor is missing or invalid."""


class ArtifactNotFoundError(MxError):
    """Raised when a repository does not have the requested resource (404/400)."""


class TransportError(MxError):
    """Raised for network failures other than not-found."""


class ChecksumMismatchError(MxError):
    """Raised when downloaded content does not match its published SHA-1."""

    def __init__(self, url: str, expected: str, calculated: str) -> None:
        super().__init__(f"SHA1 checksum mismatch for {url}\ncalculated: {calculated}\nexpected:   {expected}")
        self.url = url
        self.expected = expected
        self.calculated = calculated


class ResolutionError(MxError):
    """Raised when no repository can provide a required dependency."""

    def __init__(self, dependency: "Dependency", scope: "Scope | None" = None) -> None:
        where = f" (required in {scope.value} scope)" if scope is not None else ""
        super().__init__(f"Failed to resolve {dependency.detailed_coordinates}{where}")
        self.dependency = dependency
        self.scope = scope
