"""Update action — finds newer stream versions and builds an update candidate."""

from __future__ import annotations

import logging
from pathlib import Path

from strata.actions.candidate import build_candidate_tree, ensure_empty_dir
from strata.installation.metadata import InstallationMetadata
from strata.models.history import ArtifactChange, UpdateSet
from strata.models.manifest import Artifact, Stream
from strata.provisioning.base import ArtifactResolver, ProvisioningEngine, ResolveOptions

logger = logging.getLogger(__name__)


class UpdateAction:
    """Compares an installation's manifest with what its channels currently offer."""

    def __init__(
        self,
        installation: InstallationMetadata,
        engine: ProvisioningEngine,
        resolver: ArtifactResolver,
        options: ResolveOptions | None = None,
    ):
        self.installation = installation
        self.engine = engine
        self.resolver = resolver
        self.options = options or ResolveOptions()

    def find_updates(self) -> UpdateSet:
        """List the streams whose channel version differs from the installed one."""
        logger.info("Checking available updates for %s", self.installation.base)
        latest = self.resolver.latest_versions(self.installation.channels, self.options)

        updates: list[ArtifactChange] = []
        for stream in self.installation.manifest.streams:
            version = latest.get(stream.key)
            if version is None or version == stream.version:
                continue
            updated = Stream(stream.group_id, stream.artifact_id, version)
            updates.append(ArtifactChange.updated(Artifact.from_stream(stream), Artifact.from_stream(updated)))

        logger.info("Found %d updates", len(updates))
        return UpdateSet(artifact_updates=updates)

    def build_update(self, candidate_dir: str | Path) -> bool:
        """Build a full update candidate in ``candidate_dir``.

        Returns False, leaving the directory untouched, when there is nothing
        to update.
        """
        candidate_dir = Path(candidate_dir)
        ensure_empty_dir(candidate_dir)
        update_set = self.find_updates()
        if update_set.is_empty:
            logger.info("Aborting update - no updates found for %s", self.installation.base)
            return False
        self.build_candidate(candidate_dir, update_set)
        return True

    def build_candidate(self, candidate_dir: Path, update_set: UpdateSet) -> InstallationMetadata:
        versions = {change.key: change.new_version for change in update_set.artifact_updates}
        streams = [
            Stream(s.group_id, s.artifact_id, versions.get(s.key, s.version))
            for s in self.installation.manifest.streams
        ]
        manifest = self.installation.manifest.with_streams(streams)
        logger.info("Building update candidate for %s in %s", self.installation.base, candidate_dir)
        return build_candidate_tree(
            candidate_dir,
            manifest,
            self.installation.channels,
            self.installation.provisioning_config,
            self.engine,
            self.resolver,
            self.options,
            version_record=self.resolver.manifest_versions(self.installation.channels, self.options),
        )
