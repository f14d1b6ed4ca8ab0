"""Revision store — a git repository tracking an installation's metadata directory.

Every change to the manifest or channel configuration is committed as one
revision. The first commit is the INSTALL revision and is backdated to the
creation time of the metadata directory, so history reflects when the
installation was originally created rather than when tracking began.

Commit messages carry the revision type as their first token, followed by an
optional summary of the channel manifest versions in use::

    INSTALL [org.example:product-manifest::1.0.0]
    UPDATE [org.example:product-manifest::1.0.1]
    CONFIG_CHANGE

The live repository is never rewritten in place. Reverting clones it into a
temporary directory and resets the clone, leaving the caller to apply the
reverted tree explicitly.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path

from git import Actor, Repo
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from strata.errors import StorageAccessError
from strata.history.changes import ArtifactComparator, ChannelComparator, SnapshotComparator
from strata.installation.files import (
    CHANNELS_FILE_NAME,
    CURRENT_VERSION_FILE,
    MANIFEST_FILE_NAME,
    METADATA_DIR,
    read_version_record,
)
from strata.models.history import ArtifactChange, ChannelChange, SavedState, SavedStateType
from strata.utils.git_ops import TempTree, checkout_file, clone_to_temp, is_empty_repo

logger = logging.getLogger(__name__)

GIT_HISTORY_USER = "Strata Installer"
REVISION_ID_LENGTH = 8

_GIT_ERRORS = (GitCommandError, BadName, ValueError, OSError)


class GitStorage:
    """Durable, ordered history of one installation's metadata snapshots."""

    def __init__(self, installation_dir: str | Path):
        self.base = Path(installation_dir) / METADATA_DIR
        try:
            self._repo = self._init_git()
        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError, OSError) as e:
            raise StorageAccessError(
                f"Unable to create history storage at [{self.base}]", self.base
            ) from e

    def __enter__(self) -> "GitStorage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self) -> SavedState:
        """Commit the on-disk metadata files as a new revision.

        The first commit of the repository is the INSTALL revision; every
        later call records an UPDATE.
        """
        if self.is_started():
            return self.record_change(SavedStateType.UPDATE)

        files = self._existing(MANIFEST_FILE_NAME, CHANNELS_FILE_NAME, CURRENT_VERSION_FILE)
        return self._commit(
            files,
            SavedStateType.INSTALL,
            summary=self._read_commit_summary(),
            when=self._creation_time(),
        )

    def record_change(self, operation: SavedStateType) -> SavedState:
        """Commit manifest, channels and version record as ``operation``."""
        if not self.is_started():
            raise StorageAccessError(
                f"Cannot record {operation.name} on an empty history store at [{self.base}]", self.base
            )
        files = self._existing(MANIFEST_FILE_NAME, CHANNELS_FILE_NAME, CURRENT_VERSION_FILE)
        return self._commit(files, operation, summary=self._read_commit_summary())

    def record_config_change(self) -> SavedState:
        """Commit only the channel configuration, as a CONFIG_CHANGE revision."""
        if not self.is_started():
            raise StorageAccessError(
                f"Cannot record a configuration change on an empty history store at [{self.base}]",
                self.base,
            )
        return self._commit([CHANNELS_FILE_NAME], SavedStateType.CONFIG_CHANGE)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def revisions(self) -> list[SavedState]:
        """All revisions, newest first."""
        try:
            commits = list(self._repo.iter_commits())
        except _GIT_ERRORS as e:
            raise StorageAccessError(f"Unable to access history store at [{self.base}]", self.base) from e

        history = []
        for commit in commits:
            try:
                history.append(_to_saved_state(commit))
            except KeyError as e:
                raise StorageAccessError(
                    f"Unrecognised revision type in commit {commit.hexsha[:REVISION_ID_LENGTH]}", self.base
                ) from e
        return history

    def is_started(self) -> bool:
        return not is_empty_repo(self._repo)

    def changes_between(self, saved_state: SavedState, comparator: SnapshotComparator) -> list:
        """Diff the comparator's file at ``saved_state`` against its parent revision.

        Both revisions are checked out into throwaway directories which are
        removed before returning, whether the comparison succeeds or not.
        """
        try:
            commit = self._repo.commit(saved_state.name)
        except _GIT_ERRORS as e:
            raise StorageAccessError(
                f"Unable to find revision {saved_state.name} in [{self.base}]", self.base
            ) from e

        logger.debug("Getting details of %s of %s", saved_state.name, self.base)
        changed: TempTree | None = None
        base: TempTree | None = None
        try:
            changed = checkout_file(self._repo, commit.hexsha, comparator.file_name)
            if commit.parents:
                base = checkout_file(self._repo, commit.parents[0].hexsha, comparator.file_name)

            base_path = None
            if base is not None and (base.path / comparator.file_name).exists():
                base_path = base.path
            return comparator.compare(changed.path, base_path)
        except _GIT_ERRORS as e:
            raise StorageAccessError(f"Unable to access history store at [{self.base}]", self.base) from e
        finally:
            if changed is not None:
                changed.cleanup()
            if base is not None:
                base.cleanup()

    def artifact_changes(self, saved_state: SavedState) -> list[ArtifactChange]:
        return self.changes_between(saved_state, ArtifactComparator())

    def channel_changes(self, saved_state: SavedState) -> list[ChannelChange]:
        return self.changes_between(saved_state, ChannelComparator())

    # ------------------------------------------------------------------
    # Reverting
    # ------------------------------------------------------------------

    def revert(self, saved_state: SavedState) -> Path:
        """Check out ``saved_state`` into an isolated temporary tree.

        Returns the root of the tree; the reverted metadata lives in its
        ``.installation`` subdirectory. The caller owns the tree and must
        remove it.
        """
        try:
            tree = clone_to_temp(self.base, prefix="hist", subdir=METADATA_DIR)
        except _GIT_ERRORS as e:
            raise StorageAccessError(f"Unable to access history store at [{self.base}]", self.base) from e

        try:
            clone = Repo(tree.path)
            try:
                clone.head.reset(commit=saved_state.name, index=True, working_tree=True)
            finally:
                clone.close()
        except _GIT_ERRORS as e:
            tree.cleanup()
            raise StorageAccessError(
                f"Unable to revert to {saved_state.name} from [{self.base}]", self.base
            ) from e

        logger.debug("Reverted copy of %s to %s in %s", self.base, saved_state.name, tree.root)
        return tree.root

    def reset(self) -> None:
        """Discard uncommitted edits in the live metadata directory."""
        try:
            self._repo.head.reset(index=True, working_tree=True)
        except _GIT_ERRORS as e:
            raise StorageAccessError(f"Unable to access history store at [{self.base}]", self.base) from e

    def close(self) -> None:
        self._repo.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _init_git(self) -> Repo:
        if (self.base / ".git").exists():
            return Repo(self.base)

        self.base.mkdir(parents=True, exist_ok=True)
        repo = Repo.init(self.base)
        with repo.config_writer() as config:
            config.set_value("commit", "gpgsign", "false")
            config.set_value("user", "name", GIT_HISTORY_USER)
            config.set_value("user", "email", "")
        logger.debug("Initialised history storage at %s", self.base)
        return repo

    def _existing(self, *names: str) -> list[str]:
        return [name for name in names if (self.base / name).exists()]

    def _read_commit_summary(self) -> str:
        record = read_version_record(self.base / CURRENT_VERSION_FILE)
        return record.summary() if record else ""

    def _creation_time(self) -> int:
        stat = os.stat(self.base)
        return int(getattr(stat, "st_birthtime", stat.st_ctime))

    def _next_commit_time(self, when: int | None) -> int:
        # Commit times have one second resolution; keep history strictly ordered.
        timestamp = int(time.time()) if when is None else when
        if self.is_started():
            timestamp = max(timestamp, self._repo.head.commit.committed_date + 1)
        return timestamp

    def _commit(
        self,
        files: list[str],
        commit_type: SavedStateType,
        summary: str = "",
        when: int | None = None,
    ) -> SavedState:
        message = commit_type.name + (f" {summary}" if summary else "")
        date = f"{self._next_commit_time(when)} +0000"
        actor = Actor(GIT_HISTORY_USER, "")
        try:
            self._repo.index.add(files)
            commit = self._repo.index.commit(
                message,
                author=actor,
                committer=actor,
                author_date=date,
                commit_date=date,
            )
        except _GIT_ERRORS as e:
            self._restore_index()
            raise StorageAccessError(f"Unable to access history store at [{self.base}]", self.base) from e

        logger.debug("Recorded %s as %s", message, commit.hexsha[:REVISION_ID_LENGTH])
        return _to_saved_state(commit)

    def _restore_index(self) -> None:
        try:
            if self.is_started():
                self._repo.head.reset(index=True, working_tree=False)
            else:
                self._repo.git.read_tree("--empty")
        except _GIT_ERRORS as e:
            logger.warning("Unable to restore the history index at %s: %s", self.base, e)


def _to_saved_state(commit) -> SavedState:
    message = commit.summary.strip()
    type_token, _, summary = message.partition(" ")
    return SavedState(
        name=commit.hexsha[:REVISION_ID_LENGTH],
        timestamp=datetime.fromtimestamp(commit.committed_date, tz=timezone.utc),
        type=SavedStateType.parse(type_token),
        summary=summary.strip(),
    )
