"""Shared builders: local artifact repositories, channel manifests and installations."""

from dataclasses import dataclass
from pathlib import Path

import pytest

from strata.actions.provision import install
from strata.installation.files import write_manifest
from strata.models.manifest import Channel, ChannelManifest, ManifestCoordinate, Repository, Stream
from strata.provisioning import ChannelResolver, FileTreeProvisioner


def write_artifact(repo_root: Path, group_id: str, artifact_id: str, version: str, content: bytes | None = None) -> Path:
    """Lay out ``<group/path>/<artifact>/<version>/<artifact>-<version>.jar``."""
    path = repo_root.joinpath(*group_id.split(".")) / artifact_id / version / f"{artifact_id}-{version}.jar"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content if content is not None else f"{group_id}:{artifact_id}:{version}".encode())
    return path


def write_channel_manifest(path: Path, streams: dict[str, str], name: str = "test-manifest") -> Path:
    """Write a channel manifest offering ``{"group:artifact": version}``."""
    manifest = ChannelManifest(
        name=name,
        streams=[Stream(*key.split(":"), version) for key, version in streams.items()],
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    write_manifest(manifest, path)
    return path


def make_channel(repo_root: Path, manifest_path: Path, name: str = "test-channel") -> Channel:
    return Channel(
        name=name,
        repositories=(Repository(id="local", url=str(repo_root)),),
        manifest=ManifestCoordinate(url=str(manifest_path)),
    )


@dataclass
class Server:
    """An installation together with the channel manifest it is subscribed to."""

    dir: Path
    channel_manifest: Path
    channel: Channel

    def offer(self, streams: dict[str, str]) -> None:
        """Publish a new channel manifest version."""
        write_channel_manifest(self.channel_manifest, streams)


@pytest.fixture
def local_repo(tmp_path) -> Path:
    root = tmp_path / "repository"
    write_artifact(root, "org.foo", "bar", "1.0.0")
    write_artifact(root, "org.foo", "bar", "1.0.1")
    write_artifact(root, "org.foo", "baz", "2.0.0")
    write_artifact(root, "org.foo", "baz", "2.1.0")
    return root


@pytest.fixture
def engine() -> FileTreeProvisioner:
    return FileTreeProvisioner()


@pytest.fixture
def resolver() -> ChannelResolver:
    return ChannelResolver()


@pytest.fixture
def make_server(tmp_path, local_repo, engine, resolver):
    def build(
        streams: dict[str, str] | None = None,
        packages: tuple[str, ...] = ("org.foo:server-pack::zip",),
        name: str = "server",
    ) -> Server:
        manifest_path = write_channel_manifest(
            tmp_path / "channels" / f"{name}-manifest.yaml", streams or {"org.foo:bar": "1.0.0"}
        )
        channel = make_channel(local_repo, manifest_path)
        installation_dir = tmp_path / name
        with install(installation_dir, [channel], list(packages), engine, resolver):
            pass
        return Server(dir=installation_dir, channel_manifest=manifest_path, channel=channel)

    return build
