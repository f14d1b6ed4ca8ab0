"""Metadata file layout and YAML (de)serialisation.

Layout of an installation::

    <installation>/
        .installation/              tracked by the revision store
            manifest.yaml           streams pinned to versions
            installer-channels.yaml ordered channel list
            manifest_version.yaml   versions of the channel manifests in use
        .provisioning/
            provisioning.yaml       how the installation was provisioned

Every reader raises ``MetadataParseError`` carrying the offending path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from strata.errors import ArgumentError, MetadataParseError
from strata.models.manifest import (
    Channel,
    ChannelManifest,
    ManifestCoordinate,
    ProvisioningConfig,
    Repository,
    Stream,
    validate_channels,
)

METADATA_DIR = ".installation"
PROVISIONING_DIR = ".provisioning"
MANIFEST_FILE_NAME = "manifest.yaml"
CHANNELS_FILE_NAME = "installer-channels.yaml"
CURRENT_VERSION_FILE = "manifest_version.yaml"
PROVISIONING_FILE_NAME = "provisioning.yaml"

MANIFEST_SCHEMA_VERSION = "1.0.0"
CHANNEL_SCHEMA_VERSION = "2.0.0"


def _load_yaml(path: Path) -> Any:
    try:
        with open(path) as f:
            return yaml.safe_load(f)
    except FileNotFoundError as e:
        raise MetadataParseError(f"Unable to read file at [{path}]", path) from e
    except (OSError, yaml.YAMLError) as e:
        raise MetadataParseError(f"Unable to parse configuration at '{path}': {e}", path) from e


def _dump_yaml(data: Any, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


def read_manifest(path: str | Path) -> ChannelManifest:
    """Load a manifest from a YAML file."""
    path = Path(path)
    data = _load_yaml(path) or {}
    if not isinstance(data, dict):
        raise MetadataParseError(f"Invalid channel manifest definition at '{path}'", path)

    streams = []
    for entry in data.get("streams") or []:
        try:
            streams.append(
                Stream(
                    group_id=str(entry["groupId"]),
                    artifact_id=str(entry["artifactId"]),
                    version=str(entry["version"]),
                )
            )
        except (KeyError, TypeError) as e:
            raise MetadataParseError(f"Invalid stream {entry!r} in '{path}'", path) from e

    try:
        return ChannelManifest(
            name=data.get("name") or "",
            description=data.get("description") or "",
            streams=streams,
            schema_version=str(data.get("schemaVersion", MANIFEST_SCHEMA_VERSION)),
        )
    except ArgumentError as e:
        raise MetadataParseError(f"{e} in '{path}'", path) from e


def manifest_to_dict(manifest: ChannelManifest) -> dict:
    data: dict[str, Any] = {"schemaVersion": manifest.schema_version}
    if manifest.name:
        data["name"] = manifest.name
    if manifest.description:
        data["description"] = manifest.description
    data["streams"] = [
        {"groupId": s.group_id, "artifactId": s.artifact_id, "version": s.version}
        for s in manifest.streams
    ]
    return data


def write_manifest(manifest: ChannelManifest, path: str | Path) -> None:
    _dump_yaml(manifest_to_dict(manifest), Path(path))


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


def _channel_from_dict(data: dict, path: Path) -> Channel:
    if not isinstance(data, dict):
        raise MetadataParseError(f"Invalid channel {data!r} in '{path}'", path)

    repositories = []
    for repo in data.get("repositories") or []:
        try:
            repositories.append(Repository(id=str(repo["id"]), url=str(repo["url"])))
        except (KeyError, TypeError) as e:
            raise MetadataParseError(f"Invalid repository {repo!r} in '{path}'", path) from e

    manifest = None
    manifest_data = data.get("manifest")
    if isinstance(manifest_data, dict):
        maven = manifest_data.get("maven")
        if isinstance(maven, dict):
            manifest = ManifestCoordinate(
                group_id=str(maven.get("groupId", "")),
                artifact_id=str(maven.get("artifactId", "")),
                version=str(maven.get("version") or ""),
            )
        elif manifest_data.get("url"):
            manifest = ManifestCoordinate(url=str(manifest_data["url"]))

    return Channel(
        name=str(data.get("name") or ""),
        description=str(data.get("description") or ""),
        repositories=tuple(repositories),
        manifest=manifest,
        no_stream_strategy=str(data.get("resolve-if-no-stream", "none")),
    )


def channel_to_dict(channel: Channel) -> dict:
    data: dict[str, Any] = {"schemaVersion": CHANNEL_SCHEMA_VERSION, "name": channel.name}
    if channel.description:
        data["description"] = channel.description
    data["repositories"] = [{"id": r.id, "url": r.url} for r in channel.repositories]
    if channel.manifest is not None:
        if channel.manifest.is_maven:
            maven = {"groupId": channel.manifest.group_id, "artifactId": channel.manifest.artifact_id}
            if channel.manifest.version:
                maven["version"] = channel.manifest.version
            data["manifest"] = {"maven": maven}
        else:
            data["manifest"] = {"url": channel.manifest.url}
    data["resolve-if-no-stream"] = channel.no_stream_strategy
    return data


def read_channels(path: str | Path) -> list[Channel]:
    """Load the ordered channel list from the channel configuration file."""
    path = Path(path)
    data = _load_yaml(path) or []
    if not isinstance(data, list):
        raise MetadataParseError(f"Channel configuration at '{path}' must be a list", path)
    channels = [_channel_from_dict(entry, path) for entry in data]
    try:
        validate_channels(channels)
    except ArgumentError as e:
        raise MetadataParseError(f"{e} in '{path}'", path) from e
    return channels


def write_channels(channels: list[Channel], path: str | Path) -> None:
    _dump_yaml([channel_to_dict(c) for c in channels], Path(path))


# ---------------------------------------------------------------------------
# Provisioning configuration
# ---------------------------------------------------------------------------


def read_provisioning_config(path: str | Path) -> ProvisioningConfig:
    path = Path(path)
    data = _load_yaml(path) or {}
    if not isinstance(data, dict):
        raise MetadataParseError(f"Unable to parse server configuration at '{path}'", path)
    packages = data.get("packages") or []
    if not isinstance(packages, list):
        raise MetadataParseError(f"'packages' must be a list in '{path}'", path)
    options = {k: v for k, v in data.items() if k != "packages"}
    return ProvisioningConfig(packages=[str(p) for p in packages], options=options)


def write_provisioning_config(config: ProvisioningConfig, path: str | Path) -> None:
    data: dict[str, Any] = {"packages": list(config.packages)}
    data.update(config.options)
    _dump_yaml(data, Path(path))


# ---------------------------------------------------------------------------
# Manifest version record
# ---------------------------------------------------------------------------


@dataclass
class MavenManifestVersion:
    id: str  # groupId:artifactId of the channel manifest
    version: str
    description: str = ""


@dataclass
class UrlManifestVersion:
    url: str
    hash: str
    description: str = ""


@dataclass
class ManifestVersionRecord:
    """Which channel manifest versions the installation was last built from.

    The record is only consumed to produce human-readable commit summaries.
    """

    maven: list[MavenManifestVersion] = field(default_factory=list)
    url: list[UrlManifestVersion] = field(default_factory=list)

    def summary(self) -> str:
        parts = [f"[{m.id}::{m.version}]" for m in self.maven]
        parts += [f"[{u.url}::{u.hash}]" for u in self.url]
        return " ".join(parts)


def read_version_record(path: str | Path) -> ManifestVersionRecord | None:
    """Load the version record, or None when the installation has none."""
    path = Path(path)
    if not path.exists():
        return None
    data = _load_yaml(path) or {}
    if not isinstance(data, dict):
        raise MetadataParseError(f"Unable to read file at [{path}]", path)
    try:
        return ManifestVersionRecord(
            maven=[
                MavenManifestVersion(
                    id=str(m["id"]), version=str(m["version"]), description=m.get("description") or ""
                )
                for m in data.get("maven") or []
            ],
            url=[
                UrlManifestVersion(
                    url=str(u["url"]), hash=str(u["hash"]), description=u.get("description") or ""
                )
                for u in data.get("url") or []
            ],
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise MetadataParseError(f"Unable to read file at [{path}]", path) from e


def write_version_record(record: ManifestVersionRecord, path: str | Path) -> None:
    data = {
        "maven": [{"id": m.id, "version": m.version, "description": m.description} for m in record.maven],
        "url": [{"url": u.url, "hash": u.hash, "description": u.description} for u in record.url],
    }
    _dump_yaml(data, Path(path))
