"""Container image reference model."""

import re
from dataclasses import dataclass, replace
from typing import Optional

from ..errors import ImageReferenceError


DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"

_LEGACY_REGISTRIES = {"index.docker.io", "registry-1.docker.io"}

_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")
_HOST_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9.-]*[a-zA-Z0-9])?(?::[0-9]+)?$")


@dataclass(frozen=True)
class ImageReference:
    """Normalized form of a container image string."""
    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def name(self) -> str:
        """Registry and repository joined, without tag or digest."""
        return f"{self.registry}/{self.repository}"

    def with_digest(self, digest: str) -> 'ImageReference':
        """Return a copy carrying the given resolved digest."""
        if not _DIGEST_RE.match(digest):
            raise ImageReferenceError(str(self), f"invalid digest '{digest}'")
        return replace(self, digest=digest.lower())

    def __str__(self) -> str:
        value = self.name
        if self.tag:
            value += f":{self.tag}"
        if self.digest:
            value += f"@{self.digest}"
        return value


def _split_registry(remainder: str):
    parts = remainder.split("/", 1)
    first = parts[0]
    if len(parts) == 2 and ("." in first or ":" in first or first == "localhost"):
        registry = first.lower()
        if registry in _LEGACY_REGISTRIES:
            registry = DEFAULT_REGISTRY
        return registry, parts[1]
    return DEFAULT_REGISTRY, remainder


def parse_image_reference(image: str) -> ImageReference:
    """Parse an image string such as ``registry.example.com/prod/app:1.0@sha256:...``.

    Docker Hub shorthand is expanded (``nginx`` becomes ``docker.io/library/nginx``)
    and a missing tag defaults to ``latest`` unless a digest is given.
    """
    if not image or image != image.strip():
        raise ImageReferenceError(image, "empty or surrounded by whitespace")

    remainder = image
    digest = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise ImageReferenceError(image, f"invalid digest '{digest}'")
        digest = digest.lower()

    tag = None
    last_colon = remainder.rfind(":")
    if last_colon > remainder.rfind("/"):
        remainder, tag = remainder[:last_colon], remainder[last_colon + 1:]
        if not _TAG_RE.match(tag):
            raise ImageReferenceError(image, f"invalid tag '{tag}'")

    registry, repository = _split_registry(remainder)
    if not _HOST_RE.match(registry):
        raise ImageReferenceError(image, f"invalid registry '{registry}'")
    if not repository:
        raise ImageReferenceError(image, "missing repository")

    for component in repository.split("/"):
        if not _COMPONENT_RE.match(component):
            raise ImageReferenceError(image, f"invalid repository component '{component}'")

    if registry == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"

    if tag is None and digest is None:
        tag = DEFAULT_TAG

    return ImageReference(registry=registry, repository=repository, tag=tag, digest=digest)


def digest_from_image_id(image_id: Optional[str]) -> Optional[str]:
    """Extract the manifest digest from a container status ``imageID``.

    Runtimes report values like ``docker-pullable://repo@sha256:...`` or
    ``docker.io/library/nginx@sha256:...``. A bare ``sha256:`` value is the
    local image config ID, not a manifest digest, and is not usable.
    """
    if not image_id or "@" not in image_id:
        return None
    digest = image_id.rsplit("@", 1)[1]
    if not _DIGEST_RE.match(digest):
        return None
    return digest.lower()
