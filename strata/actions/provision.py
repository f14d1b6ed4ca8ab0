"""Install and restore — provisioning a brand new installation."""

from __future__ import annotations

import logging
from pathlib import Path

from strata.actions.candidate import ensure_empty_dir
from strata.errors import ArgumentError
from strata.installation.metadata import InstallationMetadata
from strata.models.manifest import Artifact, Channel, ChannelManifest, ProvisioningConfig, Stream
from strata.provisioning.base import ArtifactResolver, ProvisioningEngine, ResolveOptions

logger = logging.getLogger(__name__)


def _check_target(installation_dir: Path) -> None:
    try:
        ensure_empty_dir(installation_dir)
    except ArgumentError as e:
        raise ArgumentError(f"Installation dir '{installation_dir}' already exists and is not empty.") from e


def install(
    installation_dir: str | Path,
    channels: list[Channel],
    packages: list[str],
    engine: ProvisioningEngine,
    resolver: ArtifactResolver,
    options: ResolveOptions | None = None,
    name: str = "installation",
) -> InstallationMetadata:
    """Provision every stream the channels offer at its latest version.

    The returned metadata has its history store open; the caller closes it.
    """
    installation_dir = Path(installation_dir).absolute()
    options = options or ResolveOptions()
    _check_target(installation_dir)
    if not channels:
        raise ArgumentError("At least one channel is required to install.")

    latest = resolver.latest_versions(channels, options)
    streams = [Stream(*key.split(":", 1), version) for key, version in sorted(latest.items())]
    manifest = ChannelManifest(name=name, streams=streams)
    config = ProvisioningConfig(packages=list(packages))

    logger.info("Installing %d streams into %s", len(streams), installation_dir)
    artifacts = resolver.resolve_all([Artifact.from_stream(s) for s in streams], channels, options)
    engine.provision(config, artifacts, installation_dir)
    return InstallationMetadata.create(
        installation_dir, manifest, channels, config, resolver.manifest_versions(channels, options)
    )


def restore(
    installation_dir: str | Path,
    bundle: str | Path,
    engine: ProvisioningEngine,
    resolver: ArtifactResolver,
    options: ResolveOptions | None = None,
) -> InstallationMetadata:
    """Recreate an installation from an exported metadata bundle.

    The exact manifest of the bundle is provisioned; no update is attempted.
    """
    installation_dir = Path(installation_dir).absolute()
    options = options or ResolveOptions()
    _check_target(installation_dir)

    with InstallationMetadata.import_bundle(bundle) as imported:
        logger.info("Restoring installation from %s into %s", bundle, installation_dir)
        artifacts = resolver.resolve_all(imported.artifacts(), imported.channels, options)
        engine.provision(imported.provisioning_config, artifacts, installation_dir)
        return InstallationMetadata.create(
            installation_dir, imported.manifest, imported.channels, imported.provisioning_config
        )
