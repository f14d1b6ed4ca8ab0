"""Tests for the git-backed revision store."""

import os
import shutil
import tempfile
from pathlib import Path

import pytest

from strata.errors import StorageAccessError
from strata.history import git_storage
from strata.history.changes import ArtifactComparator
from strata.history.git_storage import REVISION_ID_LENGTH, GitStorage
from strata.installation.files import (
    CHANNELS_FILE_NAME,
    CURRENT_VERSION_FILE,
    MANIFEST_FILE_NAME,
    METADATA_DIR,
    ManifestVersionRecord,
    MavenManifestVersion,
    read_channels,
    read_manifest,
    write_channels,
    write_manifest,
    write_version_record,
)
from strata.models.history import ChangeStatus, SavedState, SavedStateType
from strata.models.manifest import Channel, ChannelManifest, ManifestCoordinate, Repository, Stream
from strata.utils import git_ops


def _write_metadata(base: Path, version: str = "1.0.0", channels: list[Channel] | None = None) -> None:
    meta = base / METADATA_DIR
    meta.mkdir(parents=True, exist_ok=True)
    write_manifest(ChannelManifest(name="test", streams=[Stream("org.foo", "bar", version)]), meta / MANIFEST_FILE_NAME)
    if channels is None:
        channels = [
            Channel(
                name="main",
                repositories=(Repository(id="central", url="/repo"),),
                manifest=ManifestCoordinate(group_id="org.foo", artifact_id="manifest"),
            )
        ]
    write_channels(channels, meta / CHANNELS_FILE_NAME)


# --- Recording Tests ---


def test_first_revision_is_install():
    with tempfile.TemporaryDirectory() as tmpdir:
        _write_metadata(Path(tmpdir))
        with GitStorage(tmpdir) as storage:
            assert not storage.is_started()
            state = storage.record()

            assert storage.is_started()
            assert state.type == SavedStateType.INSTALL
            assert len(state.name) == REVISION_ID_LENGTH
            assert storage.revisions() == [state]


def test_record_after_install_is_update():
    with tempfile.TemporaryDirectory() as tmpdir:
        _write_metadata(Path(tmpdir))
        with GitStorage(tmpdir) as storage:
            storage.record()
            _write_metadata(Path(tmpdir), version="1.0.1")
            state = storage.record()
            assert state.type == SavedStateType.UPDATE


def test_revisions_strictly_decreasing():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _write_metadata(base)
        with GitStorage(base) as storage:
            storage.record()
            for version in ("1.0.1", "1.0.2", "1.0.3"):
                _write_metadata(base, version=version)
                storage.record_change(SavedStateType.UPDATE)

            revisions = storage.revisions()
            assert len(revisions) == 4
            assert revisions[-1].type == SavedStateType.INSTALL
            times = [r.timestamp for r in revisions]
            assert all(a > b for a, b in zip(times, times[1:]))


def test_record_change_on_empty_store_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        _write_metadata(Path(tmpdir))
        with GitStorage(tmpdir) as storage:
            with pytest.raises(StorageAccessError):
                storage.record_change(SavedStateType.UPDATE)
            with pytest.raises(StorageAccessError):
                storage.record_config_change()


def test_commit_summary_from_version_record():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _write_metadata(base)
        record = ManifestVersionRecord(maven=[MavenManifestVersion(id="org.foo:manifest", version="1.0.0")])
        write_version_record(record, base / METADATA_DIR / CURRENT_VERSION_FILE)

        with GitStorage(base) as storage:
            state = storage.record()
            assert state.summary == "[org.foo:manifest::1.0.0]"
            assert storage.revisions()[0].summary == "[org.foo:manifest::1.0.0]"


def test_config_change_only_commits_channels():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _write_metadata(base)
        with GitStorage(base) as storage:
            storage.record()
            _write_metadata(base, version="9.9.9", channels=[Channel(name="other")])
            state = storage.record_config_change()

            assert state.type == SavedStateType.CONFIG_CHANGE
            assert storage.artifact_changes(state) == []
            changes = storage.channel_changes(state)
            assert {(c.name, c.status) for c in changes} == {
                ("other", ChangeStatus.ADDED),
                ("main", ChangeStatus.REMOVED),
            }



def test_install_is_backdated_to_metadata_creation(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _write_metadata(base)
        future = 4_000_000_000
        monkeypatch.setattr(git_storage.time, "time", lambda: future)

        with GitStorage(base) as storage:
            install = storage.record()
            stat = os.stat(base / METADATA_DIR)
            created = int(getattr(stat, "st_birthtime", stat.st_ctime))
            assert int(install.timestamp.timestamp()) == created

            _write_metadata(base, version="1.0.1")
            update = storage.record_change(SavedStateType.UPDATE)
            assert int(update.timestamp.timestamp()) == future


# --- Reading Tests ---


def test_first_revision_changes_are_all_added():
    with tempfile.TemporaryDirectory() as tmpdir:
        _write_metadata(Path(tmpdir))
        with GitStorage(tmpdir) as storage:
            state = storage.record()
            changes = storage.artifact_changes(state)
            assert [str(c) for c in changes] == ["org.foo:bar [] ==> 1.0.0"]


def test_update_revision_changes():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _write_metadata(base)
        with GitStorage(base) as storage:
            storage.record()
            _write_metadata(base, version="1.0.1")
            state = storage.record_change(SavedStateType.UPDATE)

            changes = storage.artifact_changes(state)
            assert len(changes) == 1
            assert changes[0].status == ChangeStatus.UPDATED
            assert storage.channel_changes(state) == []


def test_unknown_revision():
    with tempfile.TemporaryDirectory() as tmpdir:
        _write_metadata(Path(tmpdir))
        with GitStorage(tmpdir) as storage:
            storage.record()
            with pytest.raises(StorageAccessError):
                storage.artifact_changes(SavedState(name="deadbeef"))
            with pytest.raises(StorageAccessError):
                storage.revert(SavedState(name="deadbeef"))


# --- Revert Tests ---


def test_revert_leaves_live_store_untouched():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _write_metadata(base)
        with GitStorage(base) as storage:
            install = storage.record()
            _write_metadata(base, version="1.0.1")
            storage.record_change(SavedStateType.UPDATE)

            root = storage.revert(install)
            try:
                reverted = read_manifest(root / METADATA_DIR / MANIFEST_FILE_NAME)
                assert reverted.find("org.foo", "bar").version == "1.0.0"
                assert [c.name for c in read_channels(root / METADATA_DIR / CHANNELS_FILE_NAME)] == ["main"]
            finally:
                shutil.rmtree(root, ignore_errors=True)

            live = read_manifest(base / METADATA_DIR / MANIFEST_FILE_NAME)
            assert live.find("org.foo", "bar").version == "1.0.1"
            assert len(storage.revisions()) == 2


def test_reset_discards_uncommitted_edits():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _write_metadata(base)
        with GitStorage(base) as storage:
            storage.record()
            _write_metadata(base, version="6.6.6")
            storage.reset()

            live = read_manifest(base / METADATA_DIR / MANIFEST_FILE_NAME)
            assert live.find("org.foo", "bar").version == "1.0.0"


def test_reopening_keeps_history():
    with tempfile.TemporaryDirectory() as tmpdir:
        _write_metadata(Path(tmpdir))
        with GitStorage(tmpdir) as storage:
            storage.record()
        with GitStorage(tmpdir) as storage:
            assert storage.is_started()
            assert len(storage.revisions()) == 1


class FailingComparator(ArtifactComparator):
    def compare(self, changed, base):
        raise RuntimeError("comparison failed")


def test_changes_between_removes_checkouts_on_failure(monkeypatch):
    created = []
    mkdtemp = tempfile.mkdtemp

    def recording_mkdtemp(*args, **kwargs):
        path = mkdtemp(*args, **kwargs)
        created.append(Path(path))
        return path

    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _write_metadata(base)
        with GitStorage(base) as storage:
            storage.record()
            _write_metadata(base, version="1.0.1")
            state = storage.record_change(SavedStateType.UPDATE)

            monkeypatch.setattr(git_ops.tempfile, "mkdtemp", recording_mkdtemp)
            with pytest.raises(RuntimeError):
                storage.changes_between(state, FailingComparator())

    assert len(created) == 2
    assert not any(path.exists() for path in created)
