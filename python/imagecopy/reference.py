"""
Image reference classification and locator construction.

classify() decides whether an image reference lives on the cluster-local
registry. build_locators() turns a classified reference into source and
destination locators for either transport family:

- direct: a registry reached over the registry protocol, rendered as
  ``docker://host/namespace/repo[:tag|@digest]``
- virtual: an object-storage-backed registry selected with the ``bsl://``
  marker, rendered with the transport's own name as the scheme and no host,
  e.g. ``s3-default://namespace/repo:tag``
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional, Tuple

from imagecopy.error_utils import (
    create_locator_error,
    create_missing_registry_error,
    create_unknown_transport_error,
)

DIRECT_SCHEME = "docker"
VIRTUAL_ROUTE_MARKER = "bsl://"

_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[A-Za-z0-9=_-]+$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_COMPONENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_REPEATED_SLASHES = re.compile(r"/{2,}")


class TransportFamily(Enum):
    DIRECT = "direct"
    VIRTUAL = "virtual"


@dataclass(frozen=True)
class Classification:
    is_local: bool
    relative_path: str = ""


def classify(source_locator: str, internal_registry_path: str) -> Classification:
    """Return whether source_locator is hosted on the internal registry.

    An empty internal_registry_path never matches, which is how copying is
    disabled globally.
    """
    if not internal_registry_path or not source_locator.startswith(internal_registry_path):
        return Classification(is_local=False)
    return Classification(is_local=True, relative_path=source_locator[len(internal_registry_path):])


@dataclass(frozen=True)
class Locator:
    """A fully qualified image location for one transport family"""

    family: TransportFamily
    registry_host: str
    namespace: str
    repo_name: str
    tag: str = ""
    digest: str = ""
    transport: Any = None

    @property
    def scheme(self) -> str:
        if self.family is TransportFamily.VIRTUAL:
            return self.transport.name
        return DIRECT_SCHEME

    @property
    def repository(self) -> str:
        return "/".join(part for part in (self.namespace, self.repo_name) if part)

    @property
    def path(self) -> str:
        """Locator body without scheme or host: namespace/repo[:tag|@digest]."""
        suffix = ""
        if self.digest:
            suffix = f"@{self.digest}"
        elif self.tag:
            suffix = f":{self.tag}"
        return f"{self.repository}{suffix}"

    def untagged(self) -> "Locator":
        return replace(self, tag="", digest="")

    def with_digest(self, digest: str) -> "Locator":
        return replace(self, tag="", digest=digest)

    def __str__(self) -> str:
        body = _collapse(f"{self.registry_host}/{self.path}")
        return f"{self.scheme}://{body}"


def _collapse(body: str) -> str:
    """Collapse repeated slashes left behind by an empty host or path component."""
    return _REPEATED_SLASHES.sub("/", body).lstrip("/")


def _split_path(text: str, path: str) -> Tuple[str, str, str, str]:
    """Split namespace/repo[:tag|@digest] into its parts, validating each one."""
    tag = ""
    digest = ""
    if "@" in path:
        path, digest = path.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise create_locator_error(text, f"malformed digest '{digest}'")
    else:
        last_slash = path.rfind("/")
        colon = path.rfind(":")
        if colon > last_slash:
            path, tag = path[:colon], path[colon + 1:]
            if not _TAG_RE.match(tag):
                raise create_locator_error(text, f"malformed tag '{tag}'")

    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        raise create_locator_error(text, "missing repository name")
    for segment in segments:
        if not _COMPONENT_RE.match(segment):
            raise create_locator_error(text, f"invalid path component '{segment}'")

    namespace = segments[0] if len(segments) > 1 else ""
    repo_name = "/".join(segments[1:]) if len(segments) > 1 else segments[0]
    return namespace, repo_name, tag, digest


def parse_locator(text: str, transports=None) -> Locator:
    """Parse ``scheme://body`` into a Locator.

    ``docker`` selects the direct family; any other scheme must name a
    transport in ``transports`` (a mapping of transport name to handle).
    """
    scheme, sep, body = text.partition("://")
    if not sep or not scheme:
        raise create_locator_error(text, "missing transport scheme")

    body = _collapse(body)
    if scheme == DIRECT_SCHEME:
        host, _, path = body.partition("/")
        if not host or not path:
            raise create_locator_error(text, "direct locators need a registry host and a repository")
        namespace, repo_name, tag, digest = _split_path(text, path)
        return Locator(TransportFamily.DIRECT, host, namespace, repo_name, tag, digest)

    transport = (transports or {}).get(scheme)
    if transport is None:
        raise create_locator_error(text, f"unknown transport '{scheme}'")
    namespace, repo_name, tag, digest = _split_path(text, body)
    return Locator(TransportFamily.VIRTUAL, "", namespace, repo_name, tag, digest, transport)


def _resolve_selector(selector: str, transports) -> Tuple[str, Optional[Any]]:
    """Return (host, transport) for a registry selector.

    A ``bsl://`` selector is a lookup key into ``transports``; anything else
    is a literal registry host.
    """
    if selector.startswith(VIRTUAL_ROUTE_MARKER):
        key = selector[len(VIRTUAL_ROUTE_MARKER):]
        transport = transports.get(key) if transports is not None else None
        if transport is None:
            raise create_unknown_transport_error(key)
        return "", transport
    return selector, None


def _render(host: str, transport, path: str) -> str:
    scheme = transport.name if transport is not None else DIRECT_SCHEME
    return f"{scheme}://{_collapse(f'{host}/{path}')}"


def build_locators(
    relative_path: str,
    dest_namespace: str,
    dest_repo_name: str,
    dest_tag: str,
    source_registry: str,
    destination_registry: str,
    transports=None,
    image_set: str = "",
) -> Tuple[Locator, Locator]:
    """Build (source, destination) locators for a local image.

    Args:
        relative_path: Reference with the internal registry prefix removed, e.g. "/ns/app@sha256:..."
        dest_namespace: Namespace the image lands in
        dest_repo_name: Repository name the image lands in
        dest_tag: Tag to move on the destination, or "" to push untagged
        source_registry: Source registry host or ``bsl://<location>`` selector
        destination_registry: Destination registry host or ``bsl://<location>`` selector
        transports: Mapping-like object resolving a location key to a virtual transport
        image_set: Name used in error messages

    Raises:
        ConfigurationError: a selector is missing or names no transport
        LocatorError: a locator does not parse
    """
    if not source_registry:
        raise create_missing_registry_error("source", image_set or "image stream")
    if not destination_registry:
        raise create_missing_registry_error("destination", image_set or "image stream")

    src_host, src_transport = _resolve_selector(source_registry, transports)
    dest_host, dest_transport = _resolve_selector(destination_registry, transports)

    dest_path = f"{dest_namespace}/{dest_repo_name}"
    if dest_tag:
        dest_path = f"{dest_path}:{dest_tag}"

    by_name = {t.name: t for t in (src_transport, dest_transport) if t is not None}
    source = parse_locator(_render(src_host, src_transport, relative_path), by_name)
    destination = parse_locator(_render(dest_host, dest_transport, dest_path), by_name)
    return source, destination
