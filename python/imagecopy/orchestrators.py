"""
Backup and restore orchestration for image streams.

The orchestrators read the registry annotations the migration controller
stamps on each image stream, decide whether any copying is needed, and run
the tag walker with the right registries and contexts for the direction:

- backup: cluster-local registry -> migration registry, digests reconciled
- restore: migration registry -> destination cluster's local registry

The caller's resource dict is never modified. A backup returns a new dict
only when the whole walk succeeded; any error propagates and leaves nothing
half-updated.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from imagecopy.copier import RetryableCopier
from imagecopy.error_utils import create_missing_annotation_error
from imagecopy.logging_utils import get_logger
from imagecopy.models import Direction, ImageVersionSet
from imagecopy.reference import VIRTUAL_ROUTE_MARKER
from imagecopy.registry_context import (
    CredentialProvider,
    KubernetesCredentialProvider,
    internal_context,
    migration_context,
)
from imagecopy.tag_walker import TagWalker, WalkPlan, has_local_images
from imagecopy.transports import TransportRegistry

logger = get_logger(__name__)

BACKUP_REGISTRY_HOSTNAME = "openshift.io/backup-registry-hostname"
RESTORE_REGISTRY_HOSTNAME = "openshift.io/restore-registry-hostname"
MIGRATION_REGISTRY = "openshift.io/migration-registry"
SKIP_IMAGE_COPY = "openshift.io/skip-image-copy"
DISABLE_IMAGE_COPY = "migration.openshift.io/disable-image-copy"


@dataclass
class RestoreResult:
    item: Dict[str, Any]
    skip_restore: bool = True


class _Orchestrator:
    log_prefix = ""

    def __init__(
        self,
        config_manager,
        credentials: Optional[CredentialProvider] = None,
        copier: Optional[RetryableCopier] = None,
        transports: Optional[TransportRegistry] = None,
    ):
        """
        Args:
            config_manager: ConfigManager for copy and virtual transport settings
            credentials: Bearer token source for the internal registry (in-cluster by default)
            copier: Copier to use; built from config_manager when omitted
            transports: Shared per-location transport cache; built from config_manager when omitted
        """
        self.config_manager = config_manager
        self.credentials = credentials or KubernetesCredentialProvider()
        self.copier = copier or RetryableCopier.from_config(config_manager)
        self.transports = transports or TransportRegistry(config_manager)
        self.walker = TagWalker(self.copier, transports=self.transports)

    def _skip_reason(self, annotations: Dict[str, str]) -> Optional[str]:
        if annotations.get(SKIP_IMAGE_COPY):
            return "Not running in OADP/CAM context, skipping copy of image."
        if annotations.get(DISABLE_IMAGE_COPY, "").lower() == "true":
            return "Image copy disabled by annotation, skipping copy of image."
        return None

    def _migration_registry(self, image_set: ImageVersionSet) -> str:
        migration_registry = image_set.annotations.get(MIGRATION_REGISTRY, "")
        if not migration_registry:
            raise create_missing_annotation_error(MIGRATION_REGISTRY, image_set.display_name)
        return migration_registry

    def _virtual_route_unavailable(self, *selectors: str) -> bool:
        routed = any(selector.startswith(VIRTUAL_ROUTE_MARKER) for selector in selectors if selector)
        if routed and not self.config_manager.is_virtual_transport_enabled():
            logger.warning(
                f"{self.log_prefix} migration registry is routed through a backup storage location "
                "but the virtual transport is disabled, leaving resource untouched"
            )
            return True
        return False


class BackupOrchestrator(_Orchestrator):
    """Copies local images of an image stream into the migration registry."""

    log_prefix = "[is-backup]"

    def execute(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"{self.log_prefix} Entering ImageStream backup plugin")
        image_set = ImageVersionSet.from_resource(resource)
        logger.info(f"{self.log_prefix} image: {image_set.display_name}")

        reason = self._skip_reason(image_set.annotations)
        if reason:
            logger.info(reason)
            return resource

        internal_registry = image_set.annotations.get(BACKUP_REGISTRY_HOSTNAME, "")
        migration_registry = self._migration_registry(image_set)
        logger.info(f"{self.log_prefix} internal registry: {internal_registry!r}")

        if self._virtual_route_unavailable(migration_registry):
            return resource

        if not has_local_images(image_set, internal_registry):
            logger.info(f"{self.log_prefix} no local images to copy")
            return resource

        plan = WalkPlan(
            internal_registry_path=internal_registry,
            source_registry=internal_registry,
            destination_registry=migration_registry,
            destination_namespace=image_set.namespace,
            source_context=internal_context(self.credentials) if internal_registry else None,
            destination_context=migration_context(),
            direction=Direction.BACKUP,
        )
        outcome = self.walker.walk(image_set, plan)
        return outcome.image_set.apply_to(resource)


class RestoreOrchestrator(_Orchestrator):
    """Copies images staged in the migration registry into the destination cluster's registry."""

    log_prefix = "[is-restore]"

    def execute(
        self,
        resource: Dict[str, Any],
        resource_from_backup: Optional[Dict[str, Any]] = None,
        namespace_mapping: Optional[Dict[str, str]] = None,
    ) -> RestoreResult:
        """
        Args:
            resource: Item being restored, carrying restore-time annotations
            resource_from_backup: Item exactly as stored in the backup (defaults to resource)
            namespace_mapping: Source namespace -> destination namespace remapping
        """
        logger.info(f"{self.log_prefix} Entering ImageStream restore plugin")
        current = ImageVersionSet.from_resource(resource)
        backed_up = ImageVersionSet.from_resource(resource_from_backup or resource)
        logger.info(f"{self.log_prefix} image: {current.name}")

        reason = self._skip_reason(current.annotations)
        if reason:
            logger.info(reason)
            return RestoreResult(item=resource)

        backup_internal_registry = current.annotations.get(BACKUP_REGISTRY_HOSTNAME, "")
        restore_internal_registry = current.annotations.get(RESTORE_REGISTRY_HOSTNAME, "")
        migration_registry = self._migration_registry(current)
        logger.info(f"{self.log_prefix} backup internal registry: {backup_internal_registry!r}")
        logger.info(f"{self.log_prefix} restore internal registry: {restore_internal_registry!r}")

        if self._virtual_route_unavailable(migration_registry):
            return RestoreResult(item=resource)

        if not has_local_images(backed_up, backup_internal_registry):
            logger.info(f"{self.log_prefix} no local images to copy")
            return RestoreResult(item=resource)

        destination_namespace = backed_up.namespace
        mapped = (namespace_mapping or {}).get(destination_namespace)
        if mapped:
            destination_namespace = mapped

        plan = WalkPlan(
            internal_registry_path=backup_internal_registry,
            source_registry=migration_registry,
            destination_registry=restore_internal_registry,
            destination_namespace=destination_namespace,
            source_context=migration_context(),
            destination_context=internal_context(self.credentials) if restore_internal_registry else None,
            direction=Direction.RESTORE,
        )
        self.walker.walk(backed_up, plan)
        return RestoreResult(item=resource)
