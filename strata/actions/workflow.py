"""Update and revert pipelines.

Both pipelines run the same sequence against a live installation::

    open metadata → build candidate → diff → confirm → apply → record

``dry_run`` stops after the diff, a declined confirmation aborts the
candidate, and a candidate built in a temporary directory is always removed
on the way out. The history store is opened once per pipeline and shared by
every step.

An update can also be split in two: ``prepare_update`` builds the candidate
into a directory the caller keeps, and ``apply_candidate`` later diffs,
confirms and applies it.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from strata.actions.candidate import CandidateState, CandidateWorkflow, ensure_empty_dir
from strata.actions.history import InstallationHistoryAction
from strata.actions.self_update import verify_self_update
from strata.actions.update import UpdateAction
from strata.errors import ArgumentError
from strata.installation.metadata import InstallationMetadata, is_installation
from strata.models.history import CandidateChanges, FileConflict, SavedState, SavedStateType, UpdateSet
from strata.provisioning.base import ArtifactResolver, ProvisioningEngine, ResolveOptions

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[CandidateChanges], bool]


@dataclass
class WorkflowResult:
    """Outcome of an update or revert pipeline."""

    state: CandidateState
    changes: CandidateChanges | None = None
    update_set: UpdateSet | None = None
    conflicts: list[FileConflict] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.state == CandidateState.APPLIED


@contextmanager
def candidate_directory(candidate_dir: str | Path | None, prefix: str) -> Iterator[Path]:
    """Yield ``candidate_dir``, or a temporary directory removed afterwards."""
    if candidate_dir is not None:
        yield Path(candidate_dir)
        return
    workdir = Path(tempfile.mkdtemp(prefix=f"{prefix}_"))
    try:
        yield workdir
    finally:
        shutil.rmtree(workdir, ignore_errors=True)
        logger.debug("Removed candidate directory %s", workdir)


def _check_installation(installation_dir: Path, self_update: bool) -> None:
    if self_update:
        verify_self_update(installation_dir)
    elif not is_installation(installation_dir):
        raise ArgumentError(f"Path `{installation_dir}` does not contain an installation provisioned by strata.")


def _finish(
    workflow: CandidateWorkflow,
    confirm: ConfirmCallback | None,
    yes: bool,
    dry_run: bool,
    update_set: UpdateSet | None = None,
) -> WorkflowResult:
    changes = workflow.find_changes()
    result = WorkflowResult(state=workflow.state, changes=changes, update_set=update_set)
    if dry_run:
        logger.info("Dry run - %s candidate not applied", workflow.operation.name.lower())
        return result
    if changes.is_empty:
        logger.info("Nothing to apply - candidate matches the installation")
        return result
    if not workflow.confirm(yes=yes, ask=confirm):
        result.state = workflow.state
        return result
    result.conflicts = workflow.apply()
    result.state = workflow.state
    return result


def perform_update(
    installation_dir: str | Path,
    engine: ProvisioningEngine,
    resolver: ArtifactResolver,
    options: ResolveOptions | None = None,
    confirm: ConfirmCallback | None = None,
    yes: bool = False,
    dry_run: bool = False,
    self_update: bool = False,
    candidate_dir: str | Path | None = None,
) -> WorkflowResult:
    """Update an installation to the latest versions its channels offer."""
    installation_dir = Path(installation_dir).absolute()
    _check_installation(installation_dir, self_update)

    with InstallationMetadata.open(installation_dir) as installation:
        action = UpdateAction(installation, engine, resolver, options)
        update_set = action.find_updates()
        if update_set.is_empty:
            logger.info("No updates found for %s", installation_dir)
            return WorkflowResult(state=CandidateState.NEW, update_set=update_set)

        with candidate_directory(candidate_dir, "strata-update") as workdir:
            workflow = CandidateWorkflow(installation, workdir, engine, SavedStateType.UPDATE)
            workflow.build(lambda target: action.build_candidate(target, update_set))
            return _finish(workflow, confirm, yes, dry_run, update_set)


def perform_revert(
    installation_dir: str | Path,
    revision: str | SavedState,
    engine: ProvisioningEngine,
    resolver: ArtifactResolver,
    options: ResolveOptions | None = None,
    confirm: ConfirmCallback | None = None,
    yes: bool = False,
    dry_run: bool = False,
    candidate_dir: str | Path | None = None,
) -> WorkflowResult:
    """Bring an installation back to the state recorded in ``revision``."""
    installation_dir = Path(installation_dir).absolute()
    _check_installation(installation_dir, self_update=False)
    saved_state = revision if isinstance(revision, SavedState) else SavedState(name=revision)

    with InstallationMetadata.open(installation_dir) as installation:
        action = InstallationHistoryAction(installation, engine, resolver, options)
        with candidate_directory(candidate_dir, "strata-revert") as workdir:
            workflow = CandidateWorkflow(installation, workdir, engine, SavedStateType.ROLLBACK)
            workflow.build(lambda target: action.prepare_revert(saved_state, target))
            return _finish(workflow, confirm, yes, dry_run)


def prepare_update(
    installation_dir: str | Path,
    candidate_dir: str | Path,
    engine: ProvisioningEngine,
    resolver: ArtifactResolver,
    options: ResolveOptions | None = None,
    self_update: bool = False,
) -> UpdateSet:
    """Build an update candidate in ``candidate_dir`` without touching the installation.

    The candidate is left in place for ``apply_candidate``. Nothing is built
    when there are no updates.
    """
    installation_dir = Path(installation_dir).absolute()
    _check_installation(installation_dir, self_update)

    with InstallationMetadata.open(installation_dir) as installation:
        action = UpdateAction(installation, engine, resolver, options)
        ensure_empty_dir(Path(candidate_dir))
        update_set = action.find_updates()
        if update_set.is_empty:
            logger.info("No updates found for %s", installation_dir)
            return update_set
        action.build_candidate(Path(candidate_dir), update_set)
        logger.info("Update candidate for %s prepared in %s", installation_dir, candidate_dir)
        return update_set


def apply_candidate(
    installation_dir: str | Path,
    candidate_dir: str | Path,
    engine: ProvisioningEngine,
    operation: SavedStateType = SavedStateType.UPDATE,
    confirm: ConfirmCallback | None = None,
    yes: bool = False,
    dry_run: bool = False,
    self_update: bool = False,
) -> WorkflowResult:
    """Apply a candidate built earlier to the installation.

    The candidate directory belongs to the caller and is left in place.
    """
    installation_dir = Path(installation_dir).absolute()
    candidate_dir = Path(candidate_dir).absolute()
    _check_installation(installation_dir, self_update)
    if self_update:
        verify_self_update(candidate_dir)

    with InstallationMetadata.open(installation_dir) as installation:
        workflow = CandidateWorkflow(installation, candidate_dir, engine, operation)
        workflow.adopt()
        return _finish(workflow, confirm, yes, dry_run)
