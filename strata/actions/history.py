"""History action — lists revisions, shows what they changed and reverts to them."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from strata.actions.candidate import ApplyCandidateAction, build_candidate_tree, ensure_empty_dir
from strata.installation.files import (
    CHANNELS_FILE_NAME,
    CURRENT_VERSION_FILE,
    MANIFEST_FILE_NAME,
    read_channels,
    read_manifest,
    read_version_record,
)
from strata.installation.metadata import InstallationMetadata, metadata_dir
from strata.models.history import FileConflict, RevisionDetails, SavedState, SavedStateType
from strata.provisioning.base import ArtifactResolver, ProvisioningEngine, ResolveOptions

logger = logging.getLogger(__name__)


class InstallationHistoryAction:
    def __init__(
        self,
        installation: InstallationMetadata,
        engine: ProvisioningEngine | None = None,
        resolver: ArtifactResolver | None = None,
        options: ResolveOptions | None = None,
    ):
        self.installation = installation
        self.engine = engine
        self.resolver = resolver
        self.options = options or ResolveOptions()

    def revisions(self) -> list[SavedState]:
        logger.info("Listing revisions of %s", self.installation.base)
        return self.installation.revisions()

    def revision_changes(self, saved_state: SavedState) -> RevisionDetails:
        logger.info("Listing changes of revision %s in %s", saved_state.name, self.installation.base)
        return RevisionDetails(
            saved_state=saved_state,
            artifact_changes=self.installation.artifact_changes(saved_state),
            channel_changes=self.installation.channel_changes(saved_state),
        )

    def prepare_revert(self, saved_state: SavedState, candidate_dir: str | Path) -> InstallationMetadata:
        """Build a candidate installation matching ``saved_state``.

        Artifacts are resolved against the reverted channels first and then
        against the repositories of the current channels.
        """
        if self.engine is None or self.resolver is None:
            raise ValueError("Reverting needs a provisioning engine and an artifact resolver")
        candidate_dir = Path(candidate_dir)
        ensure_empty_dir(candidate_dir)
        logger.info("Building revert candidate for %s in %s", saved_state.name, candidate_dir)

        reverted_root = self.installation.revert(saved_state)
        try:
            reverted = metadata_dir(reverted_root)
            manifest = read_manifest(reverted / MANIFEST_FILE_NAME)
            channels = read_channels(reverted / CHANNELS_FILE_NAME)
            version_record = read_version_record(reverted / CURRENT_VERSION_FILE)
        finally:
            shutil.rmtree(reverted_root, ignore_errors=True)

        options = ResolveOptions(
            offline=self.options.offline,
            repositories=self.options.repositories
            + [r for c in self.installation.channels for r in c.repositories],
        )
        return build_candidate_tree(
            candidate_dir,
            manifest,
            channels,
            self.installation.provisioning_config,
            self.engine,
            self.resolver,
            options,
            version_record=version_record,
        )

    def apply_revert(self, candidate_dir: str | Path) -> list[FileConflict]:
        if self.engine is None:
            raise ValueError("Reverting needs a provisioning engine")
        action = ApplyCandidateAction(self.installation, Path(candidate_dir), self.engine)
        return action.apply(SavedStateType.ROLLBACK)
