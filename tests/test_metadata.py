"""Tests for installation metadata, channel management and metadata bundles."""

import tempfile
import zipfile
from pathlib import Path

import pytest

from strata.errors import ArgumentError, IncompleteBundleError, MetadataParseError, StorageAccessError
from strata.installation.files import (
    CHANNELS_FILE_NAME,
    MANIFEST_FILE_NAME,
    METADATA_DIR,
    PROVISIONING_DIR,
    PROVISIONING_FILE_NAME,
)
from strata.installation.metadata import InstallationMetadata, is_installation
from strata.models.history import SavedStateType
from strata.models.manifest import Channel, ChannelManifest, ManifestCoordinate, ProvisioningConfig, Repository, Stream


def _channel(name: str = "main") -> Channel:
    return Channel(
        name=name,
        repositories=(Repository(id="central", url="/repo"),),
        manifest=ManifestCoordinate(group_id="org.foo", artifact_id=f"{name}-manifest"),
    )


def _create(base: Path, channels: list[Channel] | None = None) -> InstallationMetadata:
    return InstallationMetadata.create(
        base,
        ChannelManifest(name="server", streams=[Stream("org.foo", "bar", "1.0.0")]),
        channels if channels is not None else [_channel()],
        ProvisioningConfig(packages=["org.foo:server-pack::zip"], options={"layout": "flat"}),
    )


# --- Lifecycle Tests ---


def test_create_records_install():
    with tempfile.TemporaryDirectory() as tmpdir:
        with _create(Path(tmpdir)) as metadata:
            assert is_installation(tmpdir)
            revisions = metadata.revisions()
            assert len(revisions) == 1
            assert revisions[0].type == SavedStateType.INSTALL
            assert metadata.find("org.foo", "bar").version == "1.0.0"
            assert metadata.provisioning_config.options == {"layout": "flat"}


def test_create_refuses_existing_metadata():
    with tempfile.TemporaryDirectory() as tmpdir:
        _create(Path(tmpdir)).close()
        with pytest.raises(ArgumentError):
            _create(Path(tmpdir))


def test_create_refuses_metadata_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / METADATA_DIR).write_text("not a directory")
        with pytest.raises(ArgumentError):
            _create(Path(tmpdir))


def test_create_refuses_duplicate_channels():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ArgumentError):
            _create(Path(tmpdir), channels=[_channel(), _channel()])


def test_open_untracked_installation_records_install():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        InstallationMetadata.write_files(
            base,
            ChannelManifest(streams=[Stream("org.foo", "bar", "1.0.0")]),
            [_channel()],
            ProvisioningConfig(),
        )
        with InstallationMetadata.open(base) as metadata:
            assert [r.type for r in metadata.revisions()] == [SavedStateType.INSTALL]
        with InstallationMetadata.open(base) as metadata:
            assert len(metadata.revisions()) == 1


def test_read_has_no_history():
    with tempfile.TemporaryDirectory() as tmpdir:
        _create(Path(tmpdir)).close()
        metadata = InstallationMetadata.read(tmpdir)
        assert metadata.channels[0].name == "main"
        with pytest.raises(StorageAccessError):
            metadata.revisions()


def test_malformed_manifest_reports_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        _create(Path(tmpdir)).close()
        manifest = Path(tmpdir) / METADATA_DIR / MANIFEST_FILE_NAME
        manifest.write_text("streams: [ {groupId: org.foo")

        with pytest.raises(MetadataParseError) as excinfo:
            InstallationMetadata.open(tmpdir)
        assert excinfo.value.path == manifest


@pytest.mark.parametrize("names", [["main", "main"], ["main", ""]])
def test_invalid_channel_file_reports_path(names):
    with tempfile.TemporaryDirectory() as tmpdir:
        _create(Path(tmpdir)).close()
        channels_file = Path(tmpdir) / METADATA_DIR / CHANNELS_FILE_NAME
        channels_file.write_text("".join(f"- name: '{name}'\n  repositories: []\n" for name in names))

        with pytest.raises(MetadataParseError) as excinfo:
            InstallationMetadata.read(tmpdir)
        assert excinfo.value.path == channels_file


# --- Channel Tests ---


def test_add_and_remove_channel():
    with tempfile.TemporaryDirectory() as tmpdir:
        with _create(Path(tmpdir)) as metadata:
            added = metadata.add_channel(_channel("extra"))
            assert added.type == SavedStateType.CONFIG_CHANGE
            assert [c.name for c in InstallationMetadata.read(tmpdir).channels] == ["main", "extra"]

            removed = metadata.remove_channel("main")
            assert removed.type == SavedStateType.CONFIG_CHANGE
            assert [c.name for c in InstallationMetadata.read(tmpdir).channels] == ["extra"]
            assert [r.type for r in metadata.revisions()] == [
                SavedStateType.CONFIG_CHANGE,
                SavedStateType.CONFIG_CHANGE,
                SavedStateType.INSTALL,
            ]


def test_add_existing_channel_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        with _create(Path(tmpdir)) as metadata:
            with pytest.raises(ArgumentError, match="already present"):
                metadata.add_channel(_channel("main"))
            assert len(metadata.revisions()) == 1


def test_remove_unknown_channel_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        with _create(Path(tmpdir)) as metadata:
            with pytest.raises(ArgumentError, match="cannot be found"):
                metadata.remove_channel("nope")


# --- Bundle Tests ---


def test_bundle_round_trip_is_byte_identical():
    with tempfile.TemporaryDirectory() as tmpdir:
        source = Path(tmpdir) / "source"
        with _create(source, channels=[_channel("main"), _channel("extra")]) as metadata:
            bundle = metadata.export_bundle(Path(tmpdir) / "bundle.zip")

        with zipfile.ZipFile(bundle) as zf:
            assert sorted(zf.namelist()) == sorted([MANIFEST_FILE_NAME, CHANNELS_FILE_NAME, PROVISIONING_FILE_NAME])

        target = Path(tmpdir) / "target"
        with InstallationMetadata.import_bundle(bundle) as imported:
            assert imported.manifest == metadata.manifest
            assert imported.channels == metadata.channels
            restored = InstallationMetadata.create(
                target, imported.manifest, imported.channels, imported.provisioning_config
            )
            restored.close()

        for name in (MANIFEST_FILE_NAME, CHANNELS_FILE_NAME):
            assert (target / METADATA_DIR / name).read_bytes() == (source / METADATA_DIR / name).read_bytes()
        provisioning = Path(PROVISIONING_DIR) / PROVISIONING_FILE_NAME
        assert (target / provisioning).read_bytes() == (source / provisioning).read_bytes()


def test_imported_bundle_removes_temporary_tree():
    with tempfile.TemporaryDirectory() as tmpdir:
        with _create(Path(tmpdir) / "source") as metadata:
            bundle = metadata.export_bundle(Path(tmpdir) / "bundle.zip")

        imported = InstallationMetadata.import_bundle(bundle)
        temp_base = imported.base
        assert temp_base.exists()
        imported.close()
        assert not temp_base.exists()


def test_incomplete_bundle():
    with tempfile.TemporaryDirectory() as tmpdir:
        bundle = Path(tmpdir) / "bundle.zip"
        with zipfile.ZipFile(bundle, "w") as zf:
            zf.writestr(MANIFEST_FILE_NAME, "streams: []\n")

        with pytest.raises(IncompleteBundleError) as excinfo:
            InstallationMetadata.import_bundle(bundle)
        assert CHANNELS_FILE_NAME in str(excinfo.value)
        assert PROVISIONING_FILE_NAME in str(excinfo.value)


def test_not_a_bundle():
    with tempfile.TemporaryDirectory() as tmpdir:
        bundle = Path(tmpdir) / "bundle.zip"
        bundle.write_text("plain text")
        with pytest.raises(MetadataParseError):
            InstallationMetadata.import_bundle(bundle)
