"""Installation metadata models — manifest streams, channels and provisioning config.

A manifest pins every artifact stream of an installation to a concrete
version. Channels describe where newer versions may come from. The
provisioning configuration is opaque to the history engine apart from the
list of installed packages, which the self-update guard inspects.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from strata.errors import ArgumentError


@dataclass(frozen=True)
class Stream:
    """A single manifest entry: one artifact pinned to one version."""

    group_id: str
    artifact_id: str
    version: str

    @property
    def key(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"

    def __str__(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.version}"


@dataclass(frozen=True)
class Artifact:
    """A concrete artifact, optionally backed by a resolved file."""

    group_id: str
    artifact_id: str
    version: str
    extension: str = "jar"
    classifier: str = ""
    file: str = ""  # Filesystem path once resolved

    @property
    def key(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"

    @property
    def file_name(self) -> str:
        suffix = f"-{self.classifier}" if self.classifier else ""
        return f"{self.artifact_id}-{self.version}{suffix}.{self.extension}"

    @classmethod
    def from_stream(cls, stream: Stream) -> Artifact:
        return cls(group_id=stream.group_id, artifact_id=stream.artifact_id, version=stream.version)

    def to_stream(self) -> Stream:
        return Stream(group_id=self.group_id, artifact_id=self.artifact_id, version=self.version)

    def with_file(self, path: str) -> Artifact:
        return replace(self, file=path)

    def __str__(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.version}"


@dataclass
class ChannelManifest:
    """The ordered set of streams composing an installation."""

    name: str = ""
    description: str = ""
    streams: list[Stream] = field(default_factory=list)
    schema_version: str = "1.0.0"

    def __post_init__(self):
        seen: set[str] = set()
        for stream in self.streams:
            if stream.key in seen:
                raise ArgumentError(f"Duplicate stream in manifest: {stream.key}")
            seen.add(stream.key)

    def find(self, group_id: str, artifact_id: str) -> Stream | None:
        key = f"{group_id}:{artifact_id}"
        for stream in self.streams:
            if stream.key == key:
                return stream
        return None

    def with_streams(self, streams: list[Stream]) -> ChannelManifest:
        """Return a copy of this manifest listing ``streams`` instead."""
        return ChannelManifest(
            name=self.name,
            description=self.description,
            streams=list(streams),
            schema_version=self.schema_version,
        )


@dataclass(frozen=True)
class Repository:
    """A repository artifacts can be resolved from."""

    id: str
    url: str


@dataclass(frozen=True)
class ManifestCoordinate:
    """Where a channel's manifest lives: a maven coordinate or a plain URL."""

    group_id: str = ""
    artifact_id: str = ""
    version: str = ""
    url: str = ""

    @property
    def is_maven(self) -> bool:
        return bool(self.group_id and self.artifact_id)

    def __str__(self) -> str:
        if self.is_maven:
            gav = f"{self.group_id}:{self.artifact_id}"
            return f"{gav}:{self.version}" if self.version else gav
        return self.url


@dataclass(frozen=True)
class Channel:
    """A named source of resolvable artifact versions."""

    name: str
    description: str = ""
    repositories: tuple[Repository, ...] = ()
    manifest: ManifestCoordinate | None = None
    no_stream_strategy: str = "none"


@dataclass
class ProvisioningConfig:
    """How the installation was provisioned.

    Only ``packages`` is interpreted here; everything else is carried in
    ``options`` and written back untouched.
    """

    packages: list[str] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)


def validate_channels(channels: list[Channel]) -> None:
    """Channel names must be non-empty and unique."""
    names: set[str] = set()
    for channel in channels:
        if not channel.name or not channel.name.strip():
            raise ArgumentError("Channel name cannot be empty.")
        if channel.name in names:
            raise ArgumentError(f"Channel '{channel.name}' is already present.")
        names.add(channel.name)
