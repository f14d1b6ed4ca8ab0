"""Collaborator contracts consumed by the history engine.

The engine never resolves artifacts or lays out files itself. It drives an
``ArtifactResolver`` to turn coordinates into concrete artifacts and a
``ProvisioningEngine`` to build, compare and merge installation trees.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from strata.errors import ArtifactResolutionError
from strata.installation.files import ManifestVersionRecord
from strata.models.history import FileConflict, FsDiff
from strata.models.manifest import Artifact, Channel, ProvisioningConfig, Repository


@dataclass
class ResolveOptions:
    """Per-invocation resolution settings."""

    offline: bool = False
    repositories: list[Repository] = field(default_factory=list)  # Searched after channel repositories


class ArtifactResolver(ABC):
    """Resolves coordinates to concrete, file-backed artifacts."""

    @abstractmethod
    def resolve(self, artifact: Artifact, channels: list[Channel], options: ResolveOptions) -> Artifact:
        """Return ``artifact`` with its ``file`` set, or raise ``ArtifactResolutionError``."""

    @abstractmethod
    def latest_versions(self, channels: list[Channel], options: ResolveOptions) -> dict[str, str]:
        """Map ``group:artifact`` keys to the newest version the channels offer."""

    def resolve_all(
        self, artifacts: list[Artifact], channels: list[Channel], options: ResolveOptions
    ) -> list[Artifact]:
        """Resolve every artifact, reporting all the missing ones at once."""
        resolved: list[Artifact] = []
        missing: list[str] = []
        for artifact in artifacts:
            try:
                resolved.append(self.resolve(artifact, channels, options))
            except ArtifactResolutionError as e:
                missing.extend(e.missing or [str(artifact)])
        if missing:
            raise ArtifactResolutionError(
                f"Unable to resolve {len(missing)} artifact(s): {', '.join(missing)}", missing=missing
            )
        return resolved

    def manifest_versions(self, channels: list[Channel], options: ResolveOptions) -> ManifestVersionRecord:
        """Describe the channel manifests a resolution was based on."""
        return ManifestVersionRecord()


class ProvisioningEngine(ABC):
    """Lays out, compares and merges installation file trees."""

    @abstractmethod
    def provision(self, config: ProvisioningConfig, artifacts: list[Artifact], target: Path) -> Path:
        """Materialise an installation tree from resolved artifacts into ``target``."""

    @abstractmethod
    def diff(self, live: Path, candidate: Path) -> FsDiff:
        """Structural difference going from ``live`` to ``candidate``."""

    @abstractmethod
    def merge_into(self, live: Path, candidate: Path) -> list[FileConflict]:
        """Bring ``live`` in line with ``candidate``, returning the conflicts met."""
