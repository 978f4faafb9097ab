"""
Tag walker: relocates every local image of an image stream.

For each status tag the walker decides whether the destination tag pointer
moves with the copy, then walks the tag's version records from the most
recently appended to the oldest. The first record processed is pushed with
the tag; the older ones are pushed untagged, so the newest image always owns
the tag. In the backup direction each record's digest is reconciled with the
digest the image has in the migration registry.
"""

from dataclasses import dataclass, replace
from typing import List, Optional

from imagecopy.copier import RetryableCopier
from imagecopy.digest import reconcile
from imagecopy.logging_utils import get_logger
from imagecopy.models import (
    CopyOutcome,
    Direction,
    FromKind,
    ImageVersionSet,
    TagHistory,
    TagSpec,
    VersionRecord,
)
from imagecopy.reference import build_locators, classify
from imagecopy.registry_context import RegistryContext

logger = get_logger(__name__)


@dataclass(frozen=True)
class WalkPlan:
    """Everything a walk needs besides the image stream itself."""

    internal_registry_path: str
    source_registry: str
    destination_registry: str
    destination_namespace: str
    source_context: Optional[RegistryContext]
    destination_context: Optional[RegistryContext]
    direction: Direction = Direction.BACKUP

    @property
    def update_digest(self) -> bool:
        return self.direction is Direction.BACKUP


def copies_to_tag(tag_spec: Optional[TagSpec], namespace: str) -> bool:
    """Whether relocating a tag's images should also move the destination tag.

    Only a tag that follows another tag in the same namespace, or has no
    "from" reference at all, moves with the copy.
    """
    if tag_spec is None or tag_spec.from_ref is None:
        return True
    from_ref = tag_spec.from_ref
    return from_ref.kind is FromKind.IMAGE_VERSION_TAG and from_ref.namespace in ("", namespace)


def has_local_images(image_set: ImageVersionSet, internal_registry_path: str) -> bool:
    return any(
        classify(record.source_locator, internal_registry_path).is_local
        for history in image_set.tags
        for record in history.records
    )


class TagWalker:
    """Drives classifier, locator builder, copier and reconciler over an image stream."""

    def __init__(self, copier: RetryableCopier, transports=None):
        self.copier = copier
        self.transports = transports

    def _source_path(self, image_set: ImageVersionSet, record: VersionRecord, relative_path: str,
                     plan: WalkPlan) -> str:
        if plan.direction is Direction.RESTORE:
            # restore reads the copy the backup left in the migration registry
            return f"/{image_set.namespace}/{image_set.name}@{record.content_digest}"
        return relative_path

    def _walk_tag(self, image_set: ImageVersionSet, history: TagHistory, plan: WalkPlan, outcome: CopyOutcome):
        tag_spec = image_set.find_tag_spec(history.tag)
        copy_to_tag = copies_to_tag(tag_spec, image_set.namespace)
        if tag_spec is not None and tag_spec.from_ref is not None:
            logger.info(f"[imagecopy] image tagged: {tag_spec.from_ref.kind.value}, {tag_spec.from_ref.name}")
            if not copy_to_tag:
                logger.info("[imagecopy] not using tag for copy (either out-of-namespace or not a same-namespace tag)")

        records: List[VersionRecord] = list(history.records)
        tag_placed = False
        for index in reversed(range(len(records))):
            record = records[index]
            classification = classify(record.source_locator, plan.internal_registry_path)
            if not classification.is_local:
                continue

            dest_tag = ""
            if copy_to_tag and not tag_placed:
                dest_tag = history.tag
                tag_placed = True
                outcome.any_local_image_copied_by_tag = True
            outcome.any_local_image_copied = True

            source, destination = build_locators(
                self._source_path(image_set, record, classification.relative_path, plan),
                plan.destination_namespace,
                image_set.name,
                dest_tag,
                plan.source_registry,
                plan.destination_registry,
                transports=self.transports,
                image_set=image_set.display_name,
            )
            logger.info(f"[imagecopy] copying from: {source}")
            logger.info(f"[imagecopy] copying to: {destination}")

            manifest = self.copier.copy(source, destination, plan.source_context, plan.destination_context)
            result = reconcile(manifest, record.content_digest, record.source_locator)
            logger.info(f"[imagecopy] src image digest: {record.content_digest}")
            if plan.update_digest and result.changed:
                logger.info(f"[imagecopy] migration registry image digest: {result.digest}")
                records[index] = record.with_digest(result.digest, result.locator)

        return replace(history, records=tuple(records))

    def walk(self, image_set: ImageVersionSet, plan: WalkPlan) -> CopyOutcome:
        """Relocate all local images of image_set.

        Returns a CopyOutcome whose image_set carries any reconciled digests;
        the input set is left untouched. Any error aborts the walk.
        """
        outcome = CopyOutcome(image_set=image_set)
        tags = []
        for history in image_set.tags:
            logger.info(f"[imagecopy] Copying tag: {history.tag}")
            tags.append(self._walk_tag(image_set, history, plan, outcome))

        outcome.image_set = replace(image_set, tags=tags)
        logger.info(f"[imagecopy] copied at least one local image: {outcome.any_local_image_copied}")
        logger.info(f"[imagecopy] copied at least one local image by tag: {outcome.any_local_image_copied_by_tag}")
        return outcome
