"""Channel resolver — resolves streams from channel manifests and local repositories.

Channel manifests are manifest YAML files. A channel points at one either by
URL (a path or ``file://`` URL) or by maven coordinate, in which case it is
looked up in the channel's repositories as::

    <repo>/<group/as/path>/<artifactId>/<version>/<artifactId>-<version>-manifest.yaml

Artifacts are looked up with the same layout, named
``<artifactId>-<version>.<extension>``. Only local repositories are supported.
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from urllib.parse import urlparse

from packaging.version import InvalidVersion, Version

from strata.errors import ArtifactResolutionError, MetadataParseError
from strata.installation.files import (
    ManifestVersionRecord,
    MavenManifestVersion,
    UrlManifestVersion,
    read_manifest,
)
from strata.models.manifest import Artifact, Channel, ChannelManifest, ManifestCoordinate, Repository
from strata.provisioning.base import ArtifactResolver, ResolveOptions

logger = logging.getLogger(__name__)

MANIFEST_CLASSIFIER = "manifest"
MANIFEST_EXTENSION = "yaml"

_VERSION_TOKEN = re.compile(r"\d+|[^\d.\-_+]+")


def natural_key(version: str) -> tuple:
    """Order maven style versions (``1.10.0.Final``) by their numeric segments."""
    return tuple(
        (0, int(token), "") if token.isdecimal() else (1, 0, token.lower())
        for token in _VERSION_TOKEN.findall(version)
    )


def sort_versions(versions: list[str] | set[str]) -> list[str]:
    """Return versions sorted ascending.

    PEP 440 ordering is used when every version parses; otherwise all of them
    are compared segment by segment, numbers numerically.
    """
    parsed: list[tuple[Version, str]] = []
    for version in versions:
        try:
            parsed.append((Version(version), version))
        except InvalidVersion:
            return sorted(versions, key=lambda v: (natural_key(v), v))
    parsed.sort()
    return [item for _, item in parsed]


def local_path(url: str, options: ResolveOptions) -> Path:
    """Map a repository or manifest URL to a local path."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(parsed.path)
    if parsed.scheme and len(parsed.scheme) > 1:
        reason = "offline mode is enabled" if options.offline else "only local repositories are supported"
        raise ArtifactResolutionError(f"Unable to reach {url}: {reason}", missing=[url])
    return Path(url)


def _artifact_dir(repo_root: Path, group_id: str, artifact_id: str) -> Path:
    return repo_root.joinpath(*group_id.split(".")) / artifact_id


class ChannelResolver(ArtifactResolver):
    """Resolves against the channel manifests and repositories of an installation."""

    def resolve(self, artifact: Artifact, channels: list[Channel], options: ResolveOptions) -> Artifact:
        for repo_root in self._repository_roots(channels, options):
            candidate = _artifact_dir(repo_root, artifact.group_id, artifact.artifact_id)
            candidate = candidate / artifact.version / artifact.file_name
            if candidate.is_file():
                logger.debug("Resolved %s to %s", artifact, candidate)
                return artifact.with_file(str(candidate))
        raise ArtifactResolutionError(f"Unable to resolve artifact {artifact}", missing=[str(artifact)])

    def latest_versions(self, channels: list[Channel], options: ResolveOptions) -> dict[str, str]:
        offered: dict[str, set[str]] = {}
        for channel in channels:
            manifest, _ = self._channel_manifest(channel, options)
            for stream in manifest.streams:
                offered.setdefault(stream.key, set()).add(stream.version)
        return {key: sort_versions(versions)[-1] for key, versions in offered.items()}

    def manifest_versions(self, channels: list[Channel], options: ResolveOptions) -> ManifestVersionRecord:
        record = ManifestVersionRecord()
        for channel in channels:
            manifest, source = self._channel_manifest(channel, options)
            coordinate = channel.manifest
            if coordinate.is_maven:
                record.maven.append(
                    MavenManifestVersion(
                        id=f"{coordinate.group_id}:{coordinate.artifact_id}",
                        version=source.parent.name,
                        description=manifest.description or manifest.name,
                    )
                )
            else:
                digest = hashlib.sha256(source.read_bytes()).hexdigest()
                record.url.append(
                    UrlManifestVersion(url=coordinate.url, hash=digest, description=manifest.description)
                )
        return record

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _repository_roots(self, channels: list[Channel], options: ResolveOptions) -> list[Path]:
        repositories: list[Repository] = [r for c in channels for r in c.repositories]
        repositories += options.repositories
        return [local_path(r.url, options) for r in repositories]

    def _channel_manifest(self, channel: Channel, options: ResolveOptions) -> tuple[ChannelManifest, Path]:
        coordinate = channel.manifest
        if coordinate is None:
            raise ArtifactResolutionError(f"Invalid channel: Channel '{channel.name}' doesn't reference a manifest.")

        if coordinate.is_maven:
            source = self._find_maven_manifest(channel, coordinate, options)
        else:
            source = local_path(coordinate.url, options)

        if not source.is_file():
            raise ArtifactResolutionError(
                f"Unable to find manifest {coordinate} of channel '{channel.name}'", missing=[str(coordinate)]
            )
        try:
            return read_manifest(source), source
        except MetadataParseError as e:
            raise ArtifactResolutionError(f"Invalid manifest {coordinate} of channel '{channel.name}': {e}") from e

    def _find_maven_manifest(
        self, channel: Channel, coordinate: ManifestCoordinate, options: ResolveOptions
    ) -> Path:
        for repo_root in self._repository_roots([channel], options):
            base = _artifact_dir(repo_root, coordinate.group_id, coordinate.artifact_id)
            if not base.is_dir():
                continue
            version = coordinate.version
            if not version:
                versions = [p.name for p in base.iterdir() if p.is_dir()]
                if not versions:
                    continue
                version = sort_versions(versions)[-1]
            name = f"{coordinate.artifact_id}-{version}-{MANIFEST_CLASSIFIER}.{MANIFEST_EXTENSION}"
            candidate = base / version / name
            if candidate.is_file():
                return candidate
        raise ArtifactResolutionError(
            f"Unable to find manifest {coordinate} of channel '{channel.name}'", missing=[str(coordinate)]
        )
