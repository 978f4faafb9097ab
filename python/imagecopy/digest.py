"""Manifest digest computation and version-record reconciliation."""

import hashlib
import json
from dataclasses import dataclass

from imagecopy.error_utils import create_digest_error

SCHEMA1_MEDIA_TYPES = (
    "application/vnd.docker.distribution.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v1+prettyjws",
)


def _manifest_document(manifest_bytes: bytes) -> dict:
    try:
        document = json.loads(manifest_bytes)
    except (ValueError, UnicodeDecodeError):
        return {}
    return document if isinstance(document, dict) else {}


def is_schema1(manifest_bytes: bytes) -> bool:
    """True for docker schema1 manifests, signed or not."""
    document = _manifest_document(manifest_bytes)
    if document.get("mediaType") in SCHEMA1_MEDIA_TYPES:
        return True
    return document.get("schemaVersion") == 1


def manifest_digest(manifest_bytes: bytes) -> str:
    """Compute the canonical digest of a manifest.

    Schema2 and OCI manifests are addressed by the sha256 of their exact bytes.
    Signed schema1 manifests would need their JWS signatures stripped first,
    which this engine does not support since legacy formats are disabled.
    """
    if not manifest_bytes:
        raise create_digest_error("manifest is empty")
    if is_schema1(manifest_bytes) and "signatures" in _manifest_document(manifest_bytes):
        raise create_digest_error("signed schema1 manifests are not supported")
    return "sha256:" + hashlib.sha256(manifest_bytes).hexdigest()


@dataclass(frozen=True)
class Reconciliation:
    digest: str
    locator: str
    changed: bool


def reconcile(manifest_bytes: bytes, prior_digest: str, prior_locator: str) -> Reconciliation:
    """Recompute the digest of a copied manifest and the matching locator.

    The digest and the locator's ``@digest`` suffix change together. A
    locator without a suffix pins nothing, so the pair is kept as is.
    """
    new_digest = manifest_digest(manifest_bytes)
    base, sep, _ = prior_locator.partition("@")
    if new_digest == prior_digest or not sep:
        return Reconciliation(digest=prior_digest, locator=prior_locator, changed=False)
    return Reconciliation(digest=new_digest, locator=f"{base}@{new_digest}", changed=True)
