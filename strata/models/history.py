"""History models — saved states, computed changes and candidate diffs.

These are value types. None of them hold a reference to the revision store;
they are recomputed on demand and safe to discard.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from strata.models.manifest import Artifact, Channel


class SavedStateType(Enum):
    """The kind of change a revision records."""

    INSTALL = "install"
    UPDATE = "update"
    ROLLBACK = "rollback"
    CONFIG_CHANGE = "config_change"

    @classmethod
    def parse(cls, token: str) -> SavedStateType:
        """Parse a commit message token, ignoring case."""
        return cls[token.strip().upper()]


@dataclass(frozen=True)
class SavedState:
    """One immutable committed snapshot of an installation's metadata."""

    name: str  # Short revision id, stable prefix of the commit hash
    timestamp: datetime | None = None
    type: SavedStateType | None = None
    summary: str = ""

    def short_description(self) -> str:
        kind = self.type.name if self.type else "UNKNOWN"
        when = self.timestamp.isoformat() if self.timestamp else "-"
        text = f"[{self.name}] {when} - {kind.lower()}"
        return f"{text} {self.summary}" if self.summary else text


class ChangeStatus(Enum):
    ADDED = "added"
    REMOVED = "removed"
    UPDATED = "updated"
    MODIFIED = "modified"


@dataclass(frozen=True)
class ArtifactChange:
    """An artifact-level difference between two manifests."""

    status: ChangeStatus
    old: Artifact | None = None
    new: Artifact | None = None

    @classmethod
    def added(cls, artifact: Artifact) -> ArtifactChange:
        return cls(status=ChangeStatus.ADDED, new=artifact)

    @classmethod
    def removed(cls, artifact: Artifact) -> ArtifactChange:
        return cls(status=ChangeStatus.REMOVED, old=artifact)

    @classmethod
    def updated(cls, old: Artifact, new: Artifact) -> ArtifactChange:
        return cls(status=ChangeStatus.UPDATED, old=old, new=new)

    @property
    def key(self) -> str:
        artifact = self.new or self.old
        return artifact.key if artifact else ""

    @property
    def old_version(self) -> str:
        return self.old.version if self.old else ""

    @property
    def new_version(self) -> str:
        return self.new.version if self.new else ""

    def __str__(self) -> str:
        if self.status == ChangeStatus.ADDED:
            return f"{self.key} [] ==> {self.new_version}"
        if self.status == ChangeStatus.REMOVED:
            return f"{self.key} {self.old_version} ==> []"
        return f"{self.key} {self.old_version} ==> {self.new_version}"


@dataclass(frozen=True)
class FieldDiff:
    """A single differing field between two versions of a channel."""

    field: str
    old: str = ""
    new: str = ""


@dataclass(frozen=True)
class ChannelChange:
    """A channel-level difference between two channel configurations."""

    status: ChangeStatus
    old: Channel | None = None
    new: Channel | None = None
    children: tuple[FieldDiff, ...] = ()

    @classmethod
    def added(cls, channel: Channel) -> ChannelChange:
        return cls(status=ChangeStatus.ADDED, new=channel)

    @classmethod
    def removed(cls, channel: Channel) -> ChannelChange:
        return cls(status=ChangeStatus.REMOVED, old=channel)

    @classmethod
    def modified(cls, old: Channel, new: Channel, children: list[FieldDiff]) -> ChannelChange:
        return cls(status=ChangeStatus.MODIFIED, old=old, new=new, children=tuple(children))

    @property
    def name(self) -> str:
        channel = self.new or self.old
        return channel.name if channel else ""


@dataclass
class UpdateSet:
    """The artifact changes a pending update would introduce."""

    artifact_updates: list[ArtifactChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.artifact_updates


@dataclass
class FsDiff:
    """Structural file-system difference reported by the provisioning engine."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)


@dataclass(frozen=True)
class FileConflict:
    """A live file the merge overwrote or removed after backing it up as ``.orig``."""

    path: str
    reason: str = "modified locally"


@dataclass
class CandidateChanges:
    """Everything applying a candidate would change in the live installation."""

    fs_diff: FsDiff = field(default_factory=FsDiff)
    artifact_changes: list[ArtifactChange] = field(default_factory=list)
    channel_changes: list[ChannelChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.fs_diff.is_empty and not self.artifact_changes and not self.channel_changes


@dataclass
class RevisionDetails:
    """What a single revision changed relative to its parent."""

    saved_state: SavedState
    artifact_changes: list[ArtifactChange] = field(default_factory=list)
    channel_changes: list[ChannelChange] = field(default_factory=list)
