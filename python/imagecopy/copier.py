"""
Retryable image copier.

Copies one image (manifest plus referenced blobs) from a source locator to a
destination locator under an accept-anything trust policy, retrying every
transfer failure with linear backoff, and returns the manifest bytes as
stored at the destination.

Waits between attempts block on a threading.Event, so another thread can
cancel a copy, and an optional deadline bounds both the waits and each
skopeo invocation.
"""

import threading
import time
from contextlib import ExitStack
from typing import Callable, Optional

from imagecopy.digest import is_schema1, manifest_digest
from imagecopy.error_utils import (
    ConfigurationError,
    CopyCancelledError,
    DigestError,
    LocatorError,
    create_cancelled_error,
    create_digest_error,
)
from imagecopy.logging_utils import get_logger
from imagecopy.reference import Locator, TransportFamily
from imagecopy.registry_context import RegistryContext
from imagecopy.retry_utils import retry_operation
from imagecopy.skopeo_client import SkopeoClient, trust_policy

logger = get_logger(__name__)

BLOB_UNKNOWN = "blob unknown to registry"

NON_RETRYABLE = (CopyCancelledError, DigestError, LocatorError, ConfigurationError)


class RetryableCopier:
    """Copies images with a bounded, cancellable retry loop."""

    def __init__(
        self,
        skopeo_client: SkopeoClient,
        max_attempts: int = 7,
        backoff_step: float = 5.0,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
        policy_dir: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize RetryableCopier.

        Args:
            skopeo_client: Client performing the actual transfer
            max_attempts: Total attempts per image
            backoff_step: Linear backoff step in seconds
            cancel_event: Setting this event aborts the copy at the next wait or attempt
            deadline: Absolute time, on the clock's scale, after which the copy is abandoned
            policy_dir: Directory for the temporary trust policy file
            clock: Monotonic time source
        """
        self.skopeo_client = skopeo_client
        self.max_attempts = max_attempts
        self.backoff_step = backoff_step
        self.cancel_event = cancel_event or threading.Event()
        self.deadline = deadline
        self.policy_dir = policy_dir
        self._clock = clock

    @classmethod
    def from_config(cls, config_manager, cancel_event: Optional[threading.Event] = None, deadline: Optional[float] = None):
        return cls(
            SkopeoClient(config_manager),
            max_attempts=config_manager.get_max_attempts(),
            backoff_step=config_manager.get_backoff_step(),
            cancel_event=cancel_event,
            deadline=deadline,
            policy_dir=config_manager.get_staging_dir(),
        )

    def _remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def _should_stop(self) -> bool:
        return self.cancel_event.is_set() or self._remaining() == 0.0

    def _wait(self, delay: float) -> bool:
        remaining = self._remaining()
        if remaining is not None and remaining < delay:
            self.cancel_event.wait(remaining)
            return True
        return self.cancel_event.wait(delay)

    @staticmethod
    def _open(stack: ExitStack, locator: Locator, as_source: bool) -> str:
        if locator.family is TransportFamily.VIRTUAL:
            if as_source:
                return stack.enter_context(locator.transport.source_reference(locator))
            return stack.enter_context(locator.transport.destination_reference(locator))
        return str(locator)

    def _source_digest(self, src_ref: str, source_context: Optional[RegistryContext]) -> str:
        """Digest of the manifest a tag-form source currently points at."""
        args = source_context.skopeo_args() if source_context is not None else []
        return manifest_digest(self.skopeo_client.inspect_raw(src_ref, args, timeout=self._remaining()))

    def _attempt(
        self,
        source: Locator,
        destination: Locator,
        source_context: RegistryContext,
        destination_context: RegistryContext,
        policy_path: str,
    ) -> bytes:
        direct_source = source.family is TransportFamily.DIRECT
        direct_dest = destination.family is TransportFamily.DIRECT

        with ExitStack() as stack:
            src_ref = self._open(stack, source, as_source=True)
            dest_ref = self._open(stack, destination, as_source=False)

            # An untagged push to a registry would land on its default tag;
            # push by the source digest instead.
            pin_by_digest = direct_dest and not destination.tag and not destination.digest
            if pin_by_digest:
                pin = source.digest or self._source_digest(src_ref, source_context if direct_source else None)
                dest_ref = str(destination.with_digest(pin))

            digest = self.skopeo_client.copy_image(
                src_ref,
                dest_ref,
                policy_path,
                src_args=source_context.skopeo_args("src") if direct_source else [],
                dest_args=destination_context.skopeo_args("dest") if direct_dest else [],
                preserve_digests=pin_by_digest,
                timeout=self._remaining(),
            )

            manifest_ref = dest_ref
            inspect_args = []
            if direct_dest:
                inspect_args = destination_context.skopeo_args()
                if digest:
                    manifest_ref = str(destination.with_digest(digest))
            manifest = self.skopeo_client.inspect_raw(manifest_ref, inspect_args, timeout=self._remaining())

            if not destination_context.allow_legacy_formats and is_schema1(manifest):
                raise create_digest_error("destination stored a schema1 manifest but legacy formats are disabled",
                                          str(destination))
            return manifest

    def _log_failure(self, source: Locator, attempt: int, error: Exception) -> None:
        details = getattr(error, "details", {}) or {}
        text = f"{error} {details.get('stderr', '')}".lower()
        if BLOB_UNKNOWN in text:
            logger.warning(f"encountered `{BLOB_UNKNOWN}` error for image {source}")
        logger.info(f"attempt #{attempt} copying {source} failed: {getattr(error, 'message', error)}")

    def copy(
        self,
        source: Locator,
        destination: Locator,
        source_context: RegistryContext,
        destination_context: RegistryContext,
    ) -> bytes:
        """Copy source to destination and return the destination manifest bytes.

        Raises:
            CopyError: every attempt failed; the last error is raised
            CopyCancelledError: cancelled or past the deadline
            DigestError: the destination manifest is unacceptable
        """
        logger.info(f"copying image: {source}; will attempt up to {self.max_attempts} times...")
        with trust_policy(self.policy_dir) as policy_path:
            return retry_operation(
                lambda attempt: self._attempt(source, destination, source_context, destination_context, policy_path),
                max_attempts=self.max_attempts,
                backoff_step=self.backoff_step,
                wait=self._wait,
                should_stop=self._should_stop,
                on_stop=lambda attempt: create_cancelled_error(str(source), attempt),
                on_failure=lambda attempt, error: self._log_failure(source, attempt, error),
                non_retryable=NON_RETRYABLE,
                operation_name=f"copy of {source}",
            )
