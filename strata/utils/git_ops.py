"""Git operations — temporary clones and single-file checkouts of past revisions."""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from git import Repo

logger = logging.getLogger(__name__)


@dataclass
class TempTree:
    """Tracks a throwaway directory holding a checkout of a past revision.

    Use as a context manager to ensure the directory is removed::

        with checkout_file(repo, "abc123", "manifest.yaml") as tree:
            parse(tree.path / "manifest.yaml")
        # tree.root is deleted here
    """

    root: Path
    """The temporary directory that will be removed on cleanup."""

    path: Path
    """Where the checked-out files live; ``root`` or a subdirectory of it."""

    def __enter__(self) -> "TempTree":
        return self

    def __exit__(self, *exc) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        """Remove the temporary directory, if it still exists."""
        if self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)
            logger.debug("Removed temporary tree %s", self.root)


def clone_to_temp(source: Path, prefix: str = "hist", subdir: str = "") -> TempTree:
    """Clone a local repository into a fresh temporary directory.

    Args:
        source: Path of the repository to clone.
        prefix: Prefix for the temporary directory name.
        subdir: Clone into ``<tmp>/<subdir>`` instead of ``<tmp>`` itself.

    Returns:
        A ``TempTree`` whose ``path`` is the working tree of the clone.
    """
    root = Path(tempfile.mkdtemp(prefix=f"{prefix}_"))
    target = root / subdir if subdir else root
    try:
        clone = Repo.clone_from(str(source), target)
        clone.close()
    except Exception:
        shutil.rmtree(root, ignore_errors=True)
        raise
    logger.debug("Cloned %s into %s", source, target)
    return TempTree(root=root, path=target)


def checkout_file(repo: Repo, rev: str, file_name: str, prefix: str = "hist") -> TempTree:
    """Write ``file_name`` as of ``rev`` into a fresh temporary directory.

    If the file does not exist at ``rev`` the directory is left empty.
    """
    commit = repo.commit(rev)
    root = Path(tempfile.mkdtemp(prefix=f"{prefix}_"))
    tree = TempTree(root=root, path=root)
    try:
        blob = commit.tree / file_name
    except KeyError:
        return tree
    try:
        (tree.root / file_name).write_bytes(blob.data_stream.read())
    except Exception:
        tree.cleanup()
        raise
    return tree


def is_empty_repo(repo: Repo) -> bool:
    """True when the repository has no commit yet."""
    return not repo.head.is_valid()
