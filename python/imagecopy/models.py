"""
Data model for image relocation.

An ImageVersionSet is rebuilt from an ImageStream-shaped dict at the start of
every run, updated in memory by the tag walker, and written back with
apply_to() only when the whole walk succeeded.
"""

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class FromKind(Enum):
    """What a spec tag's "from" reference points at"""

    IMAGE_VERSION_TAG = "ImageStreamTag"
    IMAGE_VERSION_BY_DIGEST = "ImageStreamImage"
    EXTERNAL = "DockerImage"

    @classmethod
    def from_kind(cls, kind: Optional[str]) -> "FromKind":
        for member in cls:
            if member.value == kind:
                return member
        return cls.EXTERNAL


class Direction(Enum):
    BACKUP = "backup"
    RESTORE = "restore"


@dataclass(frozen=True)
class VersionRecord:
    """One pushed image within a tag's history"""

    source_locator: str
    content_digest: str

    def with_digest(self, digest: str, locator: str) -> "VersionRecord":
        return replace(self, content_digest=digest, source_locator=locator)


@dataclass(frozen=True)
class TagHistory:
    tag: str
    records: Tuple[VersionRecord, ...] = ()


@dataclass(frozen=True)
class TagFrom:
    kind: FromKind
    name: str = ""
    namespace: str = ""


@dataclass(frozen=True)
class TagSpec:
    name: str
    from_ref: Optional[TagFrom] = None


@dataclass
class ImageVersionSet:
    """An image stream: named tags, each with a history of image versions"""

    namespace: str
    name: str
    tags: List[TagHistory] = field(default_factory=list)
    tag_specs: Dict[str, TagSpec] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return f"ImageStream {self.namespace}/{self.name}"

    def find_tag_spec(self, tag: str) -> Optional[TagSpec]:
        return self.tag_specs.get(tag)

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "ImageVersionSet":
        """Reconstruct the model from an ImageStream dict."""
        metadata = resource.get("metadata") or {}
        spec = resource.get("spec") or {}
        status = resource.get("status") or {}

        tag_specs = {}
        for spec_tag in spec.get("tags") or []:
            from_ref = None
            raw_from = spec_tag.get("from")
            if raw_from:
                from_ref = TagFrom(
                    kind=FromKind.from_kind(raw_from.get("kind")),
                    name=raw_from.get("name", ""),
                    namespace=raw_from.get("namespace", "") or "",
                )
            tag_specs[spec_tag.get("name", "")] = TagSpec(name=spec_tag.get("name", ""), from_ref=from_ref)

        tags = []
        for status_tag in status.get("tags") or []:
            records = tuple(
                VersionRecord(
                    source_locator=item.get("dockerImageReference", ""),
                    content_digest=item.get("image", ""),
                )
                for item in status_tag.get("items") or []
            )
            tags.append(TagHistory(tag=status_tag.get("tag", ""), records=records))

        return cls(
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            tags=tags,
            tag_specs=tag_specs,
            annotations=dict(metadata.get("annotations") or {}),
        )

    def apply_to(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of resource with this set's version records written into status.tags.

        Only dockerImageReference and image change; every other field passes through.
        """
        updated = copy.deepcopy(resource)
        by_tag = {history.tag: history for history in self.tags}
        for status_tag in (updated.get("status") or {}).get("tags") or []:
            history = by_tag.get(status_tag.get("tag", ""))
            if history is None:
                continue
            items = status_tag.get("items") or []
            for item, record in zip(items, history.records):
                item["dockerImageReference"] = record.source_locator
                item["image"] = record.content_digest
        return updated


@dataclass
class CopyOutcome:
    image_set: ImageVersionSet
    any_local_image_copied: bool = False
    any_local_image_copied_by_tag: bool = False
