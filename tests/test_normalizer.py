"""Tests for manifest normalization."""

from datetime import datetime, timezone

import pytest

from registry_scraper.exceptions import (
    ManifestError,
    UnsupportedBySchemaError,
    UnsupportedEncodingError,
)
from registry_scraper.manifest import (
    Config,
    Manifest,
    Platform,
    SchemaKind,
    collapse_layers,
    detect_schema,
    normalize,
    parse_history,
    parse_timestamp,
)
from registry_scraper.utils.digest import EMPTY_GZIP_TAR_DIGEST
from tests.helpers import (
    FakeManifestLoader,
    digest_of,
    history_entry,
    legacy_manifest,
    manifest_list,
    modern_manifest,
)

A, B, C = digest_of("a"), digest_of("b"), digest_of("c")
IMAGE_DIGEST = digest_of("image")


class TestDetectSchema:
    """Encoding detection."""

    def test_legacy(self):
        assert detect_schema(legacy_manifest([A])) is SchemaKind.LEGACY

    def test_modern(self):
        assert detect_schema(modern_manifest([A])) is SchemaKind.MODERN

    def test_oci_manifest_by_content_type(self):
        document = {"schemaVersion": 2, "config": {"digest": A}, "layers": []}
        kind = detect_schema(document, "application/vnd.oci.image.manifest.v1+json")
        assert kind is SchemaKind.MODERN

    def test_list(self):
        assert detect_schema(manifest_list([])) is SchemaKind.LIST
        assert detect_schema(manifest_list([], oci=True)) is SchemaKind.LIST

    def test_unknown(self):
        with pytest.raises(UnsupportedEncodingError):
            detect_schema({"schemaVersion": 3})

    def test_unknown_media_type(self):
        with pytest.raises(UnsupportedEncodingError):
            detect_schema({"mediaType": "application/json"})


class TestLegacy:
    """Schema 1 manifests."""

    def test_layers_reversed_and_empty_dropped(self):
        document = legacy_manifest([A, EMPTY_GZIP_TAR_DIGEST, B, C])
        [platform] = normalize(document, SchemaKind.LEGACY, digest=IMAGE_DIGEST)

        assert platform.architecture == "amd64"
        assert platform.os == "linux"
        assert platform.variant == ""
        assert platform.features == []
        assert platform.digest == IMAGE_DIGEST
        assert platform.is_resolved
        assert [layer.digest for layer in platform.manifest.layers] == [A, B, C]

    def test_history_reversed(self):
        history = [
            history_entry("2018-09-13T10:00:00Z", ["/bin/sh", "-c", "newest"]),
            history_entry("2018-09-12T10:00:00Z", ["/bin/sh", "-c", "oldest"], throwaway=True),
        ]
        [platform] = normalize(
            legacy_manifest([A], history), SchemaKind.LEGACY, digest=IMAGE_DIGEST
        )

        config = platform.manifest.config
        assert config.digest == IMAGE_DIGEST
        assert [entry.created_by for entry in config.history] == [
            "/bin/sh -c oldest",
            "/bin/sh -c newest",
        ]
        assert config.history[0].empty_layer is True
        assert config.created == datetime(2018, 9, 13, 10, 0, tzinfo=timezone.utc)

    def test_media_type_and_size_unsupported(self):
        [platform] = normalize(legacy_manifest([A]), SchemaKind.LEGACY, digest=IMAGE_DIGEST)
        config = platform.manifest.config
        layer = platform.manifest.layers[0]

        with pytest.raises(UnsupportedBySchemaError):
            config.media_type
        with pytest.raises(UnsupportedBySchemaError):
            config.size
        with pytest.raises(UnsupportedBySchemaError):
            layer.media_type
        with pytest.raises(UnsupportedBySchemaError):
            layer.size

    def test_requires_digest(self):
        with pytest.raises(ValueError):
            normalize(legacy_manifest([A]), SchemaKind.LEGACY)

    def test_malformed_history(self):
        document = legacy_manifest([A], [{"v1Compatibility": "{not json"}])
        with pytest.raises(ManifestError):
            normalize(document, SchemaKind.LEGACY, digest=IMAGE_DIGEST)


class TestModern:
    """Schema 2 single-platform manifests."""

    @pytest.mark.asyncio
    async def test_empty_dropped_and_duplicates_collapsed(self):
        document = modern_manifest([A, B, EMPTY_GZIP_TAR_DIGEST, B, C])
        [platform] = normalize(
            document, SchemaKind.MODERN, digest=IMAGE_DIGEST, loader=FakeManifestLoader()
        )

        manifest = await platform.resolve()
        assert [layer.digest for layer in manifest.layers] == [A, B, C]
        assert platform.digest == IMAGE_DIGEST
        assert (platform.architecture, platform.os) == ("amd64", "linux")

    @pytest.mark.asyncio
    async def test_config_resolved_lazily_from_legacy_history(self):
        loader = FakeManifestLoader(
            legacy=legacy_manifest([], [history_entry("2020-01-02T03:04:05Z", ["nginx"])])
        )
        [platform] = normalize(
            modern_manifest([A]), SchemaKind.MODERN, digest=IMAGE_DIGEST, loader=loader
        )

        assert not platform.manifest.is_config_resolved
        with pytest.raises(ManifestError):
            platform.manifest.config
        assert loader.calls["fetch_legacy_manifest"] == 0

        await platform.resolve()
        await platform.resolve()

        config = platform.manifest.config
        assert loader.calls["fetch_legacy_manifest"] == 1
        assert config.digest == digest_of("config")
        assert config.media_type == "application/vnd.docker.container.image.v1+json"
        assert config.size == 1469
        assert config.history[0].created_by == "nginx"
        assert platform.manifest.layers[0].size == 100

    def test_requires_loader(self):
        with pytest.raises(ValueError):
            normalize(modern_manifest([A]), SchemaKind.MODERN, digest=IMAGE_DIGEST)

    def test_missing_config(self):
        document = {"schemaVersion": 2, "layers": []}
        with pytest.raises(ManifestError):
            normalize(document, SchemaKind.MODERN, loader=FakeManifestLoader())


class TestList:
    """Manifest lists resolve each member by its own digest."""

    @pytest.mark.asyncio
    async def test_platforms_from_members(self):
        amd64 = modern_manifest([A, B])
        arm = modern_manifest([A, C])
        amd64_digest, arm_digest = digest_of("amd64"), digest_of("arm")
        loader = FakeManifestLoader(manifests={amd64_digest: amd64, arm_digest: arm})
        document = manifest_list(
            [
                {"digest": amd64_digest, "platform": {"architecture": "amd64", "os": "linux"}},
                {
                    "digest": arm_digest,
                    "platform": {
                        "architecture": "arm",
                        "os": "linux",
                        "variant": "v7",
                        "features": ["sse4"],
                        "os.version": "10.0",
                        "os.features": ["win32k"],
                    },
                },
            ]
        )

        platforms = normalize(document, SchemaKind.LIST, loader=loader)

        assert [p.digest for p in platforms] == [amd64_digest, arm_digest]
        assert not any(p.is_resolved for p in platforms)
        with pytest.raises(ManifestError):
            platforms[0].manifest

        arm_platform = platforms[1]
        assert arm_platform.variant == "v7"
        assert arm_platform.features == ["sse4"]
        assert arm_platform.os_version == "10.0"
        assert arm_platform.os_features == ["win32k"]

        manifest = await arm_platform.resolve()
        assert [layer.digest for layer in manifest.layers] == [A, C]
        assert loader.calls["fetch_manifest"] == 1
        assert not platforms[0].is_resolved

    @pytest.mark.asyncio
    async def test_member_must_be_image_manifest(self):
        nested_digest = digest_of("nested")
        loader = FakeManifestLoader(manifests={nested_digest: manifest_list([])})
        document = manifest_list(
            [{"digest": nested_digest, "platform": {"architecture": "amd64", "os": "linux"}}]
        )

        [platform] = normalize(document, SchemaKind.LIST, loader=loader)
        with pytest.raises(UnsupportedEncodingError):
            await platform.resolve()


class TestMalformed:
    """Manifests of the wrong shape surface as ManifestError."""

    def test_layer_size_not_a_number(self):
        document = modern_manifest([A])
        document["layers"][0]["size"] = None

        with pytest.raises(ManifestError):
            normalize(document, SchemaKind.MODERN, digest=IMAGE_DIGEST, loader=FakeManifestLoader())

    def test_list_member_not_an_object(self):
        document = manifest_list([])
        document["manifests"] = ["sha256:nope"]

        with pytest.raises(ManifestError):
            normalize(document, SchemaKind.LIST, loader=FakeManifestLoader())

    def test_legacy_layer_not_an_object(self):
        document = legacy_manifest([A])
        document["fsLayers"].append("garbage")

        with pytest.raises(ManifestError):
            normalize(document, SchemaKind.LEGACY, digest=IMAGE_DIGEST)

    @pytest.mark.asyncio
    async def test_member_config_size_not_a_number(self):
        member = modern_manifest([A])
        member["config"]["size"] = "big"
        member_digest = digest_of("member")
        loader = FakeManifestLoader(manifests={member_digest: member})
        document = manifest_list(
            [{"digest": member_digest, "platform": {"architecture": "amd64", "os": "linux"}}]
        )

        [platform] = normalize(document, SchemaKind.LIST, loader=loader)
        with pytest.raises(ManifestError):
            await platform.resolve()


class TestHelpers:
    """History, timestamp and layer helpers."""

    def test_parse_timestamp_truncates_nanoseconds(self):
        parsed = parse_timestamp("2018-09-13T10:00:00.123456789Z")
        assert parsed == datetime(2018, 9, 13, 10, 0, 0, 123456, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday", 42])
    def test_parse_timestamp_invalid(self, value):
        assert parse_timestamp(value) is None

    def test_parse_history_missing_fields(self):
        [entry] = parse_history([{"v1Compatibility": "{}"}])
        assert entry.created is None
        assert entry.created_by == ""
        assert entry.empty_layer is False

    def test_collapse_layers(self):
        layers = collapse_layers(
            [{"digest": A}, {"digest": EMPTY_GZIP_TAR_DIGEST}, {"digest": A}, {"digest": B}]
        )
        assert [layer.digest for layer in layers] == [A, B]


class TestModel:
    """Two-phase value objects."""

    def test_platform_needs_manifest_or_loader(self):
        with pytest.raises(ValueError):
            Platform("amd64", "linux")

    def test_manifest_needs_config_or_loader(self):
        with pytest.raises(ValueError):
            Manifest(2, "", [])

    def test_config_created_skips_missing(self):
        # The newest entry carries no timestamp
        history = parse_history([history_entry("2018-01-01T00:00:00Z"), {"v1Compatibility": "{}"}])
        config = Config(digest=A, history=tuple(reversed(history)))
        assert config.created == datetime(2018, 1, 1, tzinfo=timezone.utc)
