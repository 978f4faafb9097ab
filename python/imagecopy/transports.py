"""
Virtual, object-storage-backed registry transports.

A virtual transport stands in for a network registry when the migration
registry is routed through a backup storage location (``bsl://<location>``).
Images are kept in the location's bucket as one ``oci-archive`` tarball per
manifest digest, plus one small object per tag naming the digest it points
at::

    {prefix}/{namespace}/{repo}/manifests/{digest}.tar
    {prefix}/{namespace}/{repo}/tags/{tag}

The copier never talks to the bucket directly: it asks the transport for a
scoped local reference that skopeo can read from or write to.
"""

import json
import os
import shutil
import tarfile
import tempfile
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from imagecopy.error_utils import create_copy_error, create_digest_error, create_locator_error
from imagecopy.logging_utils import get_logger

logger = get_logger(__name__)


def get_s3_client(region: Optional[str] = None, endpoint_url: Optional[str] = None, max_pool_connections: int = 20):
    """
    Create an S3 client with a larger connection pool.

    Parameters
    ----------
    region : str, optional
        Bucket region.
    endpoint_url : str, optional
        Custom endpoint for S3-compatible object stores.
    max_pool_connections : int, optional
        The maximum number of connections to keep in the pool. The default is 20.

    Returns
    -------
    botocore.client.S3
    """
    config = Config(max_pool_connections=max_pool_connections)
    kwargs = {"config": config}
    if region:
        kwargs["region_name"] = region
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.client("s3", **kwargs)


def archive_manifest_digest(archive_path: str) -> str:
    """Read the manifest digest recorded in an oci-archive's index.json."""
    try:
        with tarfile.open(archive_path, "r") as tar:
            member = tar.extractfile("index.json")
            if member is None:
                raise KeyError("index.json")
            index = json.load(member)
    except (OSError, KeyError, ValueError, tarfile.TarError) as e:
        raise create_digest_error(f"cannot read index.json from {archive_path}: {e}") from e

    manifests = index.get("manifests") or []
    if not manifests or not manifests[0].get("digest"):
        raise create_digest_error(f"no manifest recorded in {archive_path}")
    return manifests[0]["digest"]


class VirtualTransport:
    """A named in-process stand-in for a registry."""

    name = ""

    def source_reference(self, locator):
        """Context manager yielding a skopeo reference holding the image at locator."""
        raise NotImplementedError

    def destination_reference(self, locator):
        """Context manager yielding a skopeo reference to write into; publishes it at locator on clean exit."""
        raise NotImplementedError


class ObjectStorageTransport(VirtualTransport):
    """Virtual registry stored in an S3-compatible bucket."""

    def __init__(self, name: str, bucket: str, prefix: str = "", s3_client=None, staging_dir: Optional[str] = None):
        self.name = name
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.s3_client = s3_client or get_s3_client()
        self.staging_dir = staging_dir

    def _key(self, locator, *parts: str) -> str:
        segments = [self.prefix, locator.repository, *parts]
        return "/".join(segment for segment in segments if segment)

    def _staging_area(self) -> str:
        if self.staging_dir:
            os.makedirs(self.staging_dir, exist_ok=True)
        return tempfile.mkdtemp(prefix=f"{self.name}-", dir=self.staging_dir)

    def resolve_digest(self, locator) -> str:
        """Return the digest locator refers to, following tag objects."""
        if locator.digest:
            return locator.digest
        if not locator.tag:
            raise create_locator_error(str(locator), "object storage locators need a tag or a digest to read")
        key = self._key(locator, "tags", locator.tag)
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read().decode("utf-8").strip()
        except (ClientError, BotoCoreError) as e:
            raise create_copy_error(f"s3://{self.bucket}/{key}", str(locator), e) from e

    @contextmanager
    def source_reference(self, locator) -> Iterator[str]:
        digest = self.resolve_digest(locator)
        key = self._key(locator, "manifests", f"{digest}.tar")
        staging = self._staging_area()
        try:
            archive = os.path.join(staging, "image.tar")
            logger.info(f"Downloading s3://{self.bucket}/{key}")
            try:
                self.s3_client.download_file(self.bucket, key, archive)
            except (ClientError, BotoCoreError) as e:
                raise create_copy_error(f"s3://{self.bucket}/{key}", archive, e) from e
            yield f"oci-archive:{archive}"
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    @contextmanager
    def destination_reference(self, locator) -> Iterator[str]:
        staging = self._staging_area()
        try:
            archive = os.path.join(staging, "image.tar")
            yield f"oci-archive:{archive}"

            digest = archive_manifest_digest(archive)
            key = self._key(locator, "manifests", f"{digest}.tar")
            logger.info(f"Uploading {locator} to s3://{self.bucket}/{key}")
            try:
                self.s3_client.upload_file(archive, self.bucket, key)
                if locator.tag:
                    tag_key = self._key(locator, "tags", locator.tag)
                    self.s3_client.put_object(Bucket=self.bucket, Key=tag_key, Body=digest.encode("utf-8"))
            except (ClientError, BotoCoreError) as e:
                raise create_copy_error(archive, f"s3://{self.bucket}/{key}", e) from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)


class TransportRegistry:
    """Memoizes one virtual transport per backup storage location.

    Safe to share between concurrent orchestration runs.
    """

    def __init__(self, config_manager, s3_client_factory: Optional[Callable[..., object]] = None):
        self.config_manager = config_manager
        self._s3_client_factory = s3_client_factory or get_s3_client
        self._transports: Dict[str, VirtualTransport] = {}
        self._lock = threading.Lock()

    @staticmethod
    def transport_name(location: str) -> str:
        return f"s3-{location}"

    def get(self, location: str) -> Optional[VirtualTransport]:
        """Return the transport for location, or None when it is not configured."""
        with self._lock:
            transport = self._transports.get(location)
            if transport is not None:
                return transport

            settings = self.config_manager.get_virtual_location(location)
            if not settings:
                logger.warning(f"No virtual transport settings for backup storage location '{location}'")
                return None

            s3_client = self._s3_client_factory(
                region=settings.get("region"),
                endpoint_url=settings.get("endpoint_url"),
            )
            transport = ObjectStorageTransport(
                name=self.transport_name(location),
                bucket=settings["bucket"],
                prefix=settings.get("prefix", ""),
                s3_client=s3_client,
                staging_dir=self.config_manager.get_staging_dir(),
            )
            self._transports[location] = transport
            logger.info(f"Registered virtual transport {transport.name} for bucket {transport.bucket}")
            return transport
