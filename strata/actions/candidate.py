"""Candidate workflow — build, compare, confirm and apply a prospective installation.

A candidate is a complete installation tree built next to the live one. The
live installation is only ever changed by applying a fully built candidate::

    NEW ──build──▶ BUILT ──apply──▶ APPLIED
                     │
                     └──abort──▶ ABORTED

Applying merges the candidate's files into the live tree through the
provisioning engine, then copies the candidate's metadata over the live
metadata and records an UPDATE or ROLLBACK revision. File conflicts reported
by the merge are advisory: they are logged and returned but do not block the
commit.
"""

from __future__ import annotations

import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import Callable

from strata.errors import ArgumentError, InvalidTransitionError
from strata.history.changes import diff_artifacts, diff_channels
from strata.installation.files import CURRENT_VERSION_FILE, ManifestVersionRecord
from strata.installation.metadata import InstallationMetadata, is_installation, metadata_dir
from strata.models.history import CandidateChanges, FileConflict, SavedStateType
from strata.models.manifest import Artifact, Channel, ChannelManifest, ProvisioningConfig
from strata.provisioning.base import ArtifactResolver, ProvisioningEngine, ResolveOptions

logger = logging.getLogger(__name__)

CANDIDATE_OPERATIONS = (SavedStateType.UPDATE, SavedStateType.ROLLBACK)


class CandidateState(Enum):
    NEW = "new"
    BUILT = "built"
    ABORTED = "aborted"
    APPLIED = "applied"


VALID_TRANSITIONS: dict[CandidateState, set[CandidateState]] = {
    CandidateState.NEW: {CandidateState.BUILT},
    CandidateState.BUILT: {CandidateState.ABORTED, CandidateState.APPLIED},
    CandidateState.ABORTED: set(),
    CandidateState.APPLIED: set(),
}


def ensure_empty_dir(path: Path) -> None:
    """Candidates are only ever built into an absent or empty directory."""
    if path.exists():
        if not path.is_dir():
            raise ArgumentError(
                f"Given path '{path}' is a regular file. An empty directory or a non-existing path must be given."
            )
        if any(path.iterdir()):
            raise ArgumentError(f"Can't build a candidate in a non empty directory '{path}'.")


def build_candidate_tree(
    candidate_dir: Path,
    manifest: ChannelManifest,
    channels: list[Channel],
    provisioning_config: ProvisioningConfig,
    engine: ProvisioningEngine,
    resolver: ArtifactResolver,
    options: ResolveOptions,
    version_record: ManifestVersionRecord | None = None,
) -> InstallationMetadata:
    """Resolve every stream of ``manifest`` and provision a full candidate installation."""
    ensure_empty_dir(candidate_dir)
    artifacts = resolver.resolve_all([Artifact.from_stream(s) for s in manifest.streams], channels, options)
    engine.provision(provisioning_config, artifacts, candidate_dir)
    InstallationMetadata.write_files(candidate_dir, manifest, channels, provisioning_config, version_record)
    return InstallationMetadata.read(candidate_dir)


class ApplyCandidateAction:
    """Compares a built candidate with the live installation and applies it."""

    def __init__(self, installation: InstallationMetadata, candidate_dir: Path, engine: ProvisioningEngine):
        self.installation = installation
        self.installation_dir = installation.base
        self.candidate_dir = Path(candidate_dir)
        self.engine = engine

    def verify_candidate(self) -> None:
        if not is_installation(self.candidate_dir):
            raise ArgumentError(
                f"The installation at {self.candidate_dir} is not a valid update for {self.installation_dir}"
            )

    def find_changes(self) -> CandidateChanges:
        """Everything applying the candidate would change, files and metadata alike."""
        self.verify_candidate()
        candidate = InstallationMetadata.read(self.candidate_dir)
        changes = CandidateChanges(
            fs_diff=self.engine.diff(self.installation_dir, self.candidate_dir),
            artifact_changes=diff_artifacts(candidate.manifest.streams, self.installation.manifest.streams),
            channel_changes=diff_channels(candidate.channels, self.installation.channels),
        )
        logger.info("Changed artifacts [%s]", ", ".join(str(c) for c in changes.artifact_changes))
        return changes

    def apply(self, operation: SavedStateType) -> list[FileConflict]:
        """Merge the candidate into the live installation and record ``operation``."""
        if operation not in CANDIDATE_OPERATIONS:
            raise ArgumentError(f"{operation.name} is not a candidate operation")
        self.verify_candidate()
        logger.info("Applying %s candidate from %s", operation.name.lower(), self.candidate_dir)

        candidate = InstallationMetadata.read(self.candidate_dir)
        conflicts = self.engine.merge_into(self.installation_dir, self.candidate_dir)
        if conflicts:
            logger.warning("File conflicts found: [%s]", ", ".join(c.path for c in conflicts))
        else:
            logger.info("No conflicts found.")

        previous = (self.installation.manifest, self.installation.channels, self.installation.provisioning_config)
        try:
            version_file = metadata_dir(self.candidate_dir) / CURRENT_VERSION_FILE
            if version_file.exists():
                shutil.copy2(version_file, metadata_dir(self.installation_dir) / CURRENT_VERSION_FILE)
            self.installation.set_manifest(candidate.manifest)
            self.installation.set_channels(candidate.channels)
            self.installation.provisioning_config = candidate.provisioning_config
            self.installation.record_provision(override_channels=True, operation=operation)
        except Exception:
            # The store is reset to its last revision; the in-memory view follows it.
            self.installation.manifest, self.installation.channels, self.installation.provisioning_config = previous
            self.installation.history.reset()
            raise

        logger.info("%s candidate applied to %s", operation.name.capitalize(), self.installation_dir)
        return conflicts


class CandidateWorkflow:
    """Drives one candidate through the NEW → BUILT → APPLIED/ABORTED state machine."""

    def __init__(
        self,
        installation: InstallationMetadata,
        candidate_dir: Path,
        engine: ProvisioningEngine,
        operation: SavedStateType,
    ):
        if operation not in CANDIDATE_OPERATIONS:
            raise ArgumentError(f"{operation.name} is not a candidate operation")
        self.candidate_dir = Path(candidate_dir)
        self.operation = operation
        self.state = CandidateState.NEW
        self.changes: CandidateChanges | None = None
        self._action = ApplyCandidateAction(installation, self.candidate_dir, engine)

    def _check(self, target: CandidateState) -> None:
        if target not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot move {self.operation.name.lower()} candidate from {self.state.name} to {target.name}"
            )

    def _transition(self, target: CandidateState) -> None:
        self._check(target)
        logger.debug("Candidate %s: %s -> %s", self.candidate_dir, self.state.name, target.name)
        self.state = target

    def build(self, builder: Callable[[Path], object]) -> bool:
        """Run ``builder`` against the candidate directory.

        A builder returning ``False`` signals there is nothing to build; the
        workflow then stays NEW.
        """
        self._check(CandidateState.BUILT)
        if builder(self.candidate_dir) is False:
            return False
        self._action.verify_candidate()
        self._transition(CandidateState.BUILT)
        logger.info("%s candidate generated in %s", self.operation.name.capitalize(), self.candidate_dir)
        return True

    def adopt(self) -> None:
        """Take over a candidate built earlier, e.g. by ``prepare_update``."""
        self._check(CandidateState.BUILT)
        self._action.verify_candidate()
        self._transition(CandidateState.BUILT)
        logger.info("Using %s candidate from %s", self.operation.name.lower(), self.candidate_dir)

    def find_changes(self) -> CandidateChanges:
        if self.state != CandidateState.BUILT:
            raise InvalidTransitionError(f"Cannot compare a candidate in state {self.state.name}")
        self.changes = self._action.find_changes()
        return self.changes

    def confirm(self, yes: bool = False, ask: Callable[[CandidateChanges], bool] | None = None) -> bool:
        """Gate the apply step. Declining aborts the candidate."""
        self._check(CandidateState.APPLIED)
        if yes:
            return True
        accepted = bool(ask(self.changes or CandidateChanges())) if ask is not None else False
        if not accepted:
            self.abort()
        return accepted

    def apply(self) -> list[FileConflict]:
        self._check(CandidateState.APPLIED)
        conflicts = self._action.apply(self.operation)
        self._transition(CandidateState.APPLIED)
        return conflicts

    def abort(self) -> None:
        self._transition(CandidateState.ABORTED)
        logger.info("Discarded %s candidate in %s", self.operation.name.lower(), self.candidate_dir)
