"""Change computation between two metadata snapshots.

Both diffs are total: every entry on either side ends up in exactly one
bucket (added, removed, updated/modified) or is equal and not reported.
The base side may be empty, which represents the first revision.

Comparators bind a diff to the tracked file it is computed from, so the
revision store can check the file out at two revisions and hand both trees
to the comparator without knowing what the file contains.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from strata.installation.files import (
    CHANNELS_FILE_NAME,
    MANIFEST_FILE_NAME,
    read_channels,
    read_manifest,
)
from strata.models.history import ArtifactChange, ChannelChange, FieldDiff
from strata.models.manifest import Artifact, Channel, Stream


def _to_map(streams: list[Stream]) -> dict[str, Artifact]:
    return {s.key: Artifact.from_stream(s) for s in streams}


def diff_artifacts(current: list[Stream], base: list[Stream] | None = None) -> list[ArtifactChange]:
    """Compute artifact changes going from ``base`` to ``current``."""
    current_map = _to_map(current)
    base_map = _to_map(base or [])

    changes: list[ArtifactChange] = []
    for key, artifact in current_map.items():
        old = base_map.get(key)
        if old is None:
            changes.append(ArtifactChange.added(artifact))
        elif old.version != artifact.version:
            changes.append(ArtifactChange.updated(old, artifact))

    for key, artifact in base_map.items():
        if key not in current_map:
            changes.append(ArtifactChange.removed(artifact))

    return changes


def _field_diffs(old: Channel, new: Channel) -> list[FieldDiff]:
    diffs = []
    if old.description != new.description:
        diffs.append(FieldDiff("description", old.description, new.description))

    old_repos = {r.id: r.url for r in old.repositories}
    new_repos = {r.id: r.url for r in new.repositories}
    for repo_id in sorted(old_repos.keys() | new_repos.keys()):
        if old_repos.get(repo_id) != new_repos.get(repo_id):
            diffs.append(
                FieldDiff(f"repositories.{repo_id}", old_repos.get(repo_id, ""), new_repos.get(repo_id, ""))
            )

    old_manifest = str(old.manifest) if old.manifest else ""
    new_manifest = str(new.manifest) if new.manifest else ""
    if old_manifest != new_manifest:
        diffs.append(FieldDiff("manifest", old_manifest, new_manifest))

    if old.no_stream_strategy != new.no_stream_strategy:
        diffs.append(FieldDiff("resolve-if-no-stream", old.no_stream_strategy, new.no_stream_strategy))
    return diffs


def diff_channels(current: list[Channel], base: list[Channel] | None = None) -> list[ChannelChange]:
    """Compute channel changes going from ``base`` to ``current``, matched by name."""
    base = base or []
    base_by_name = {c.name: c for c in base}
    current_names = {c.name for c in current}

    changes: list[ChannelChange] = []
    for channel in current:
        old = base_by_name.get(channel.name)
        if old is None:
            changes.append(ChannelChange.added(channel))
            continue
        diffs = _field_diffs(old, channel)
        if diffs:
            changes.append(ChannelChange.modified(old, channel, diffs))

    for channel in base:
        if channel.name not in current_names:
            changes.append(ChannelChange.removed(channel))

    return changes


class SnapshotComparator(ABC):
    """Diffs one tracked file between a changed tree and an optional base tree."""

    file_name: str = ""

    @abstractmethod
    def compare(self, changed: Path, base: Path | None) -> list:
        """Return the changes from ``base`` (None for the first revision) to ``changed``."""


class ArtifactComparator(SnapshotComparator):
    file_name = MANIFEST_FILE_NAME

    def compare(self, changed: Path, base: Path | None) -> list[ArtifactChange]:
        current = read_manifest(changed / self.file_name).streams
        old = read_manifest(base / self.file_name).streams if base is not None else []
        return diff_artifacts(current, old)


class ChannelComparator(SnapshotComparator):
    file_name = CHANNELS_FILE_NAME

    def compare(self, changed: Path, base: Path | None) -> list[ChannelChange]:
        current = read_channels(changed / self.file_name)
        old = read_channels(base / self.file_name) if base is not None else []
        return diff_channels(current, old)
