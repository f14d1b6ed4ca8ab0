"""File-tree provisioner — lays resolved artifacts out under ``lib/``.

Every provisioned tree carries ``.provisioning/hashes.yaml``, the sha256 of
each file as installed. Merging uses it to tell user-modified files apart
from files that are still as provisioned: a modified file that the candidate
also changes or removes is reported as a conflict, the user's copy is kept
next to it as ``<file>.orig`` and the candidate's version wins. Files that were
never provisioned belong to the user: they are never removed, and one the
candidate would overwrite is preserved and reported the same way.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path

import yaml

from strata.errors import ProvisioningError
from strata.installation.files import (
    METADATA_DIR,
    PROVISIONING_DIR,
    PROVISIONING_FILE_NAME,
    write_provisioning_config,
)
from strata.models.history import FileConflict, FsDiff
from strata.models.manifest import Artifact, ProvisioningConfig
from strata.provisioning.base import ProvisioningEngine

logger = logging.getLogger(__name__)

LIB_DIR = "lib"
HASHES_FILE_NAME = "hashes.yaml"
CONFLICT_SUFFIX = ".orig"

_EXCLUDED_DIRS = {METADATA_DIR, PROVISIONING_DIR}


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def scan_tree(root: Path) -> dict[str, str]:
    """Map relative posix paths of installed files to their sha256.

    Metadata directories and preserved conflict copies are not part of the tree.
    """
    files: dict[str, str] = {}
    if not root.is_dir():
        return files
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if rel.parts[0] in _EXCLUDED_DIRS or not path.is_file():
            continue
        if path.name.endswith(CONFLICT_SUFFIX):
            continue
        files[rel.as_posix()] = _sha256(path)
    return files


def _read_hashes(root: Path) -> dict[str, str]:
    path = root / PROVISIONING_DIR / HASHES_FILE_NAME
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _write_hashes(root: Path, hashes: dict[str, str]) -> None:
    path = root / PROVISIONING_DIR / HASHES_FILE_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(hashes, f, sort_keys=True)


class FileTreeProvisioner(ProvisioningEngine):
    """Provisions installations as a flat directory of artifact files."""

    def provision(self, config: ProvisioningConfig, artifacts: list[Artifact], target: Path) -> Path:
        target = Path(target)
        logger.debug("Starting provisioning into %s", target)
        try:
            lib = target / LIB_DIR
            lib.mkdir(parents=True, exist_ok=True)
            for artifact in artifacts:
                if not artifact.file:
                    raise ProvisioningError(f"Artifact {artifact} has not been resolved")
                shutil.copy2(artifact.file, lib / artifact.file_name)
            write_provisioning_config(config, target / PROVISIONING_DIR / PROVISIONING_FILE_NAME)
            _write_hashes(target, scan_tree(target))
        except OSError as e:
            raise ProvisioningError(f"Unable to provision into {target}: {e}") from e
        logger.info("Provisioned %d artifacts into %s", len(artifacts), target)
        return target

    def diff(self, live: Path, candidate: Path) -> FsDiff:
        """Files only ever go missing from ``live`` if they were provisioned there.

        Files the user created in the live tree are not part of the
        installation and never show up as removed.
        """
        try:
            recorded = _read_hashes(Path(live))
            live_files = scan_tree(Path(live))
            candidate_files = scan_tree(Path(candidate))
        except (OSError, yaml.YAMLError) as e:
            raise ProvisioningError(f"Unable to compare {live} with {candidate}: {e}") from e

        return FsDiff(
            added=sorted(p for p in candidate_files if p not in live_files),
            removed=sorted(p for p in live_files if p not in candidate_files and p in recorded),
            modified=sorted(
                p for p in candidate_files if p in live_files and candidate_files[p] != live_files[p]
            ),
        )

    def merge_into(self, live: Path, candidate: Path) -> list[FileConflict]:
        live = Path(live)
        candidate = Path(candidate)
        diff = self.diff(live, candidate)
        conflicts: list[FileConflict] = []
        kept: set[str] = set()

        try:
            recorded = _read_hashes(live)
            current = scan_tree(live)
            incoming = scan_tree(candidate)

            for rel in diff.modified + diff.removed:
                expected = recorded.get(rel)
                if expected is None:
                    # A user file sits where the candidate ships one of its own.
                    shutil.copy2(live / rel, live / f"{rel}{CONFLICT_SUFFIX}")
                    conflicts.append(FileConflict(path=rel, reason="not provisioned"))
                    continue
                if current.get(rel) == expected:
                    continue
                if incoming.get(rel) == expected:
                    # Changed locally only; the candidate ships it as provisioned.
                    kept.add(rel)
                    continue
                shutil.copy2(live / rel, live / f"{rel}{CONFLICT_SUFFIX}")
                conflicts.append(FileConflict(path=rel))

            for rel in diff.added + diff.modified:
                if rel in kept:
                    continue
                (live / rel).parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(candidate / rel, live / rel)
            for rel in diff.removed:
                (live / rel).unlink()

            provisioning = live / PROVISIONING_DIR
            provisioning.mkdir(parents=True, exist_ok=True)
            shutil.copy2(candidate / PROVISIONING_DIR / PROVISIONING_FILE_NAME, provisioning / PROVISIONING_FILE_NAME)
            _write_hashes(live, incoming)
        except (OSError, yaml.YAMLError) as e:
            raise ProvisioningError(f"Unable to merge {candidate} into {live}: {e}") from e

        for conflict in conflicts:
            logger.warning("File conflict in %s: %s", conflict.path, conflict.reason)
        return conflicts
