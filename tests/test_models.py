"""Unit tests for imagecopy/models.py"""

import sys
from pathlib import Path

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

RESOURCE = {
    "kind": "ImageStream",
    "metadata": {"name": "app", "namespace": "ns", "annotations": {"a": "b"}},
    "spec": {
        "tags": [
            {"name": "latest", "from": {"kind": "ImageStreamTag", "name": "app:v1"}},
            {"name": "pinned", "from": {"kind": "ImageStreamImage", "name": "app@sha256:aaa", "namespace": "other"}},
            {"name": "upstream", "from": {"kind": "DockerImage", "name": "quay.io/ns/app:v1"}},
            {"name": "plain"},
        ]
    },
    "status": {
        "tags": [
            {
                "tag": "latest",
                "items": [
                    {"dockerImageReference": "internal.reg/ns/app@sha256:v0", "image": "sha256:v0", "generation": 1},
                    {"dockerImageReference": "internal.reg/ns/app@sha256:v1", "image": "sha256:v1", "generation": 2},
                ],
            }
        ]
    },
}


class TestFromKind:
    """Tests for FromKind.from_kind"""

    def test_known_kinds(self):
        """Test resource kinds map onto the enum"""
        from imagecopy.models import FromKind

        assert FromKind.from_kind("ImageStreamTag") is FromKind.IMAGE_VERSION_TAG
        assert FromKind.from_kind("ImageStreamImage") is FromKind.IMAGE_VERSION_BY_DIGEST
        assert FromKind.from_kind("DockerImage") is FromKind.EXTERNAL

    def test_unknown_kind_is_external(self):
        """Test anything else is treated as external"""
        from imagecopy.models import FromKind

        assert FromKind.from_kind(None) is FromKind.EXTERNAL
        assert FromKind.from_kind("Something") is FromKind.EXTERNAL


class TestImageVersionSet:
    """Tests for ImageVersionSet"""

    def test_from_resource(self):
        """Test status tags, spec tags and annotations are read"""
        from imagecopy.models import FromKind, ImageVersionSet, VersionRecord

        image_set = ImageVersionSet.from_resource(RESOURCE)

        assert image_set.namespace == "ns"
        assert image_set.name == "app"
        assert image_set.display_name == "ImageStream ns/app"
        assert image_set.annotations == {"a": "b"}
        assert image_set.tags[0].tag == "latest"
        assert image_set.tags[0].records == (
            VersionRecord("internal.reg/ns/app@sha256:v0", "sha256:v0"),
            VersionRecord("internal.reg/ns/app@sha256:v1", "sha256:v1"),
        )
        assert image_set.find_tag_spec("latest").from_ref.kind is FromKind.IMAGE_VERSION_TAG
        assert image_set.find_tag_spec("pinned").from_ref.namespace == "other"
        assert image_set.find_tag_spec("upstream").from_ref.kind is FromKind.EXTERNAL
        assert image_set.find_tag_spec("plain").from_ref is None
        assert image_set.find_tag_spec("missing") is None

    def test_from_empty_resource(self):
        """Test a bare resource produces an empty set"""
        from imagecopy.models import ImageVersionSet

        image_set = ImageVersionSet.from_resource({})
        assert image_set.tags == []
        assert image_set.tag_specs == {}

    def test_apply_to_returns_updated_copy(self):
        """Test apply_to writes records into a copy and keeps other fields"""
        from dataclasses import replace

        from imagecopy.models import ImageVersionSet

        image_set = ImageVersionSet.from_resource(RESOURCE)
        history = image_set.tags[0]
        records = (history.records[0].with_digest("sha256:new", "internal.reg/ns/app@sha256:new"), history.records[1])
        updated_set = replace(image_set, tags=[replace(history, records=records)])

        updated = updated_set.apply_to(RESOURCE)

        items = updated["status"]["tags"][0]["items"]
        assert items[0]["image"] == "sha256:new"
        assert items[0]["dockerImageReference"] == "internal.reg/ns/app@sha256:new"
        assert items[0]["generation"] == 1
        assert items[1]["image"] == "sha256:v1"
        assert RESOURCE["status"]["tags"][0]["items"][0]["image"] == "sha256:v0"
