"""Installation metadata — the manifest, channels and provisioning config of one installation.

``InstallationMetadata`` mediates every read and write of the metadata files
and exclusively owns the revision store of its installation. Metadata read
from a candidate tree, a reverted tree or an imported bundle has no store.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from pathlib import Path

from strata.errors import ArgumentError, IncompleteBundleError, MetadataParseError, StorageAccessError
from strata.history.git_storage import GitStorage
from strata.installation.files import (
    CHANNELS_FILE_NAME,
    CURRENT_VERSION_FILE,
    MANIFEST_FILE_NAME,
    METADATA_DIR,
    PROVISIONING_DIR,
    PROVISIONING_FILE_NAME,
    ManifestVersionRecord,
    read_channels,
    read_manifest,
    read_provisioning_config,
    write_channels,
    write_manifest,
    write_provisioning_config,
    write_version_record,
)
from strata.models.history import ArtifactChange, ChannelChange, SavedState, SavedStateType
from strata.models.manifest import (
    Artifact,
    Channel,
    ChannelManifest,
    ProvisioningConfig,
    validate_channels,
)

logger = logging.getLogger(__name__)

BUNDLE_ENTRIES = (MANIFEST_FILE_NAME, CHANNELS_FILE_NAME, PROVISIONING_FILE_NAME)


def metadata_dir(installation_dir: str | Path) -> Path:
    return Path(installation_dir) / METADATA_DIR


def provisioning_file(installation_dir: str | Path) -> Path:
    return Path(installation_dir) / PROVISIONING_DIR / PROVISIONING_FILE_NAME


def is_installation(path: str | Path) -> bool:
    """True when ``path`` holds installation metadata."""
    return (metadata_dir(path) / MANIFEST_FILE_NAME).is_file()


class InstallationMetadata:
    """In-memory view of one installation's metadata."""

    def __init__(
        self,
        base: str | Path,
        manifest: ChannelManifest,
        channels: list[Channel],
        provisioning_config: ProvisioningConfig,
        history: GitStorage | None = None,
    ):
        validate_channels(channels)
        self.base = Path(base)
        self.manifest = manifest
        self.channels = list(channels)
        self.provisioning_config = provisioning_config
        self._history = history
        self._temp_root: Path | None = None

        self.manifest_file = metadata_dir(self.base) / MANIFEST_FILE_NAME
        self.channels_file = metadata_dir(self.base) / CHANNELS_FILE_NAME
        self.version_file = metadata_dir(self.base) / CURRENT_VERSION_FILE
        self.provisioning_file = provisioning_file(self.base)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def read(cls, base: str | Path) -> InstallationMetadata:
        """Parse the metadata files under ``base`` without opening a history store."""
        base = Path(base)
        manifest = read_manifest(metadata_dir(base) / MANIFEST_FILE_NAME)
        channels = read_channels(metadata_dir(base) / CHANNELS_FILE_NAME)
        provisioning_config = read_provisioning_config(provisioning_file(base))
        return cls(base, manifest, channels, provisioning_config)

    @classmethod
    def open(cls, base: str | Path) -> InstallationMetadata:
        """Load an installation and its history store.

        An installation that has never been tracked gets its INSTALL
        revision recorded here.
        """
        metadata = cls.read(base)
        history = GitStorage(metadata.base)
        try:
            if not history.is_started():
                history.record()
        except Exception:
            history.close()
            raise
        metadata._history = history
        return metadata

    @classmethod
    def create(
        cls,
        base: str | Path,
        manifest: ChannelManifest,
        channels: list[Channel],
        provisioning_config: ProvisioningConfig,
        version_record: ManifestVersionRecord | None = None,
    ) -> InstallationMetadata:
        """Write fresh metadata files under ``base`` and record the INSTALL revision."""
        validate_channels(channels)
        base = Path(base)
        meta = metadata_dir(base)
        if meta.exists() and not meta.is_dir():
            raise ArgumentError(f"Metadata path '{meta}' is a regular file.")
        for name in (MANIFEST_FILE_NAME, CHANNELS_FILE_NAME):
            if (meta / name).exists():
                raise ArgumentError(f"Metadata file '{meta / name}' already exists.")

        cls.write_files(base, manifest, channels, provisioning_config, version_record)
        return cls.open(base)

    @staticmethod
    def write_files(
        base: str | Path,
        manifest: ChannelManifest,
        channels: list[Channel],
        provisioning_config: ProvisioningConfig,
        version_record: ManifestVersionRecord | None = None,
    ) -> None:
        """Write the metadata files of an installation tree without recording history."""
        write_manifest(manifest, metadata_dir(base) / MANIFEST_FILE_NAME)
        write_channels(channels, metadata_dir(base) / CHANNELS_FILE_NAME)
        write_provisioning_config(provisioning_config, provisioning_file(base))
        if version_record is not None:
            write_version_record(version_record, metadata_dir(base) / CURRENT_VERSION_FILE)

    # ------------------------------------------------------------------
    # Bundle export / import
    # ------------------------------------------------------------------

    def export_bundle(self, location: str | Path) -> Path:
        """Write manifest, channels and provisioning config into a zip archive."""
        location = Path(location)
        sources = {
            MANIFEST_FILE_NAME: self.manifest_file,
            CHANNELS_FILE_NAME: self.channels_file,
            PROVISIONING_FILE_NAME: self.provisioning_file,
        }
        with zipfile.ZipFile(location, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for entry, source in sources.items():
                zf.writestr(entry, source.read_bytes())
        logger.info("Exported metadata of %s to %s", self.base, location)
        return location

    @classmethod
    def import_bundle(cls, location: str | Path) -> InstallationMetadata:
        """Load metadata from a bundle written by ``export_bundle``.

        The entries are unpacked into a temporary installation tree that is
        removed when the returned metadata is closed.
        """
        location = Path(location)
        try:
            with zipfile.ZipFile(location) as zf:
                entries = {name: zf.read(name) for name in BUNDLE_ENTRIES if name in zf.namelist()}
        except (zipfile.BadZipFile, OSError) as e:
            raise MetadataParseError(f"Unable to read metadata bundle [{location}]", location) from e

        missing = [name for name in BUNDLE_ENTRIES if name not in entries]
        if missing:
            raise IncompleteBundleError(
                f"Provided metadata bundle [{location}] is missing one or more entries: {', '.join(missing)}",
                location,
            )

        root = Path(tempfile.mkdtemp(prefix="bundle_"))
        try:
            metadata_dir(root).mkdir()
            provisioning_file(root).parent.mkdir()
            (metadata_dir(root) / MANIFEST_FILE_NAME).write_bytes(entries[MANIFEST_FILE_NAME])
            (metadata_dir(root) / CHANNELS_FILE_NAME).write_bytes(entries[CHANNELS_FILE_NAME])
            provisioning_file(root).write_bytes(entries[PROVISIONING_FILE_NAME])
            metadata = cls.read(root)
        except Exception:
            shutil.rmtree(root, ignore_errors=True)
            raise
        metadata._temp_root = root
        return metadata

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def history(self) -> GitStorage:
        if self._history is None:
            raise StorageAccessError(f"No history store is open for {self.base}", metadata_dir(self.base))
        return self._history

    def artifacts(self) -> list[Artifact]:
        return [Artifact.from_stream(s) for s in self.manifest.streams]

    def find(self, group_id: str, artifact_id: str) -> Artifact | None:
        stream = self.manifest.find(group_id, artifact_id)
        return Artifact.from_stream(stream) if stream else None

    def find_channel(self, name: str) -> Channel | None:
        for channel in self.channels:
            if channel.name == name:
                return channel
        return None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set_manifest(self, manifest: ChannelManifest) -> None:
        self.manifest = manifest

    def set_channels(self, channels: list[Channel]) -> None:
        validate_channels(channels)
        self.channels = list(channels)

    def record_provision(
        self,
        override_channels: bool = False,
        operation: SavedStateType | None = None,
    ) -> SavedState:
        """Write the in-memory manifest (and channels) and commit a revision.

        ``operation`` selects the revision type; by default the store decides
        between INSTALL and UPDATE.
        """
        write_manifest(self.manifest, self.manifest_file)
        if override_channels or not self.channels_file.exists():
            write_channels(self.channels, self.channels_file)
        if operation is None:
            return self.history.record()
        return self.history.record_change(operation)

    def update_channels(self, channels: list[Channel]) -> SavedState:
        """Replace the channel list and record a CONFIG_CHANGE revision."""
        validate_channels(channels)
        previous = self.channels
        self.channels = list(channels)
        try:
            write_channels(self.channels, self.channels_file)
            return self.history.record_config_change()
        except Exception:
            self.channels = previous
            self.history.reset()
            raise

    def add_channel(self, channel: Channel) -> SavedState:
        if self.find_channel(channel.name) is not None:
            raise ArgumentError(f"Channel '{channel.name}' is already present.")
        logger.info("Adding channel %s", channel.name)
        return self.update_channels(self.channels + [channel])

    def remove_channel(self, name: str) -> SavedState:
        if self.find_channel(name) is None:
            raise ArgumentError(f"Channel with name [{name}] cannot be found.")
        logger.info("Removing channel %s", name)
        return self.update_channels([c for c in self.channels if c.name != name])

    # ------------------------------------------------------------------
    # History delegation
    # ------------------------------------------------------------------

    def revisions(self) -> list[SavedState]:
        return self.history.revisions()

    def revert(self, saved_state: SavedState) -> Path:
        return self.history.revert(saved_state)

    def artifact_changes(self, saved_state: SavedState) -> list[ArtifactChange]:
        return self.history.artifact_changes(saved_state)

    def channel_changes(self, saved_state: SavedState) -> list[ChannelChange]:
        return self.history.channel_changes(saved_state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._history is not None:
            try:
                self._history.close()
            except Exception as e:
                # Already-committed state is unaffected by a failed close.
                logger.warning("Unable to close the history store of %s: %s", self.base, e)
            self._history = None
        if self._temp_root is not None:
            shutil.rmtree(self._temp_root, ignore_errors=True)
            self._temp_root = None

    def __enter__(self) -> InstallationMetadata:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
