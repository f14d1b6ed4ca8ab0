"""strata CLI — installation history, update and rollback."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from strata import __version__
from strata.errors import ArgumentError, StrataError
from strata.models.history import CandidateChanges, ChangeStatus, SavedState
from strata.models.manifest import Channel, ManifestCoordinate, Repository

console = Console()

EXIT_FAILURE = 1
EXIT_INVALID_ARGUMENTS = 2


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
def main(verbose: bool):
    """strata — installation history, update and rollback.

    Every change to an installation is recorded as a revision. Updates and
    reverts are built as a separate candidate installation first and only
    applied once the changes are confirmed.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@contextmanager
def _errors():
    try:
        yield
    except ArgumentError as e:
        console.print(f"[red]Error:[/] {e}")
        raise click.exceptions.Exit(EXIT_INVALID_ARGUMENTS) from e
    except StrataError as e:
        console.print(f"[red]Error:[/] {e}")
        raise click.exceptions.Exit(EXIT_FAILURE) from e


def _dir_option(**kwargs):
    kwargs.setdefault("default", ".")
    return click.option(
        "--dir", "-d", "directory", envvar="STRATA_DIR", help="Installation directory", **kwargs
    )


def _resolution_options(fn):
    fn = click.option("--offline", is_flag=True, envvar="STRATA_OFFLINE", help="Do not reach remote repositories")(fn)
    fn = click.option(
        "--repositories", "-r", default="", help="Extra repositories, comma separated, as URL or ID::URL"
    )(fn)
    return fn


def parse_repositories(value: str) -> list[Repository]:
    repositories = []
    for i, item in enumerate(v.strip() for v in value.split(",") if v.strip()):
        repo_id, sep, url = item.partition("::")
        if sep:
            repositories.append(Repository(id=repo_id, url=url))
        else:
            repositories.append(Repository(id=f"repo-{i}", url=item))
    return repositories


def parse_manifest(value: str) -> ManifestCoordinate:
    """Accept either ``groupId:artifactId[:version]`` or a manifest URL/path."""
    parts = value.split(":")
    if "/" not in value and 2 <= len(parts) <= 3 and all(parts[:2]):
        version = parts[2] if len(parts) == 3 else ""
        return ManifestCoordinate(group_id=parts[0], artifact_id=parts[1], version=version)
    return ManifestCoordinate(url=value)


def _options(offline: bool, repositories: str):
    from strata.provisioning import ResolveOptions

    return ResolveOptions(offline=offline, repositories=parse_repositories(repositories))


def _collaborators():
    from strata.provisioning import ChannelResolver, FileTreeProvisioner

    return FileTreeProvisioner(), ChannelResolver()


def _print_changes(changes: CandidateChanges) -> None:
    if changes.artifact_changes:
        table = Table(title="Artifact changes")
        table.add_column("Artifact", style="cyan")
        table.add_column("Old version", style="red")
        table.add_column("New version", style="green")
        for change in changes.artifact_changes:
            table.add_row(change.key, change.old_version or "-", change.new_version or "-")
        console.print(table)

    for change in changes.channel_changes:
        console.print(f"  Channel [cyan]{change.name}[/] {change.status.value}")
        for diff in change.children:
            console.print(f"    {diff.field}: {diff.old or '-'} -> {diff.new or '-'}")

    fs = changes.fs_diff
    if not fs.is_empty:
        console.print(
            f"  Files: [green]{len(fs.added)} added[/], "
            f"[yellow]{len(fs.modified)} modified[/], [red]{len(fs.removed)} removed[/]"
        )


def _ask(operation: str):
    def ask(changes: CandidateChanges) -> bool:
        _print_changes(changes)
        return click.confirm(f"Continue with {operation}?", default=False)

    return ask


def _report(result, operation: str, dry_run: bool) -> None:
    from strata.actions.candidate import CandidateState

    if result.changes is None:
        console.print(f"[yellow]No {operation} available.[/]")
        return
    if dry_run:
        _print_changes(result.changes)
        console.print(f"[dim]Dry run: {operation} not applied.[/]")
        return
    if result.state == CandidateState.ABORTED:
        console.print(f"[yellow]{operation.capitalize()} cancelled.[/]")
        return
    if not result.applied:
        console.print("[yellow]Nothing to apply.[/]")
        return
    for conflict in result.conflicts:
        console.print(f"  [yellow]Conflict:[/] {conflict.path} ({conflict.reason}), local copy kept as .orig")
    console.print(f"[green]{operation.capitalize()} applied.[/]")


# ── Install ──────────────────────────────────────────────────────────


@main.command()
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
@click.option("--channels", "-c", "channels_file", required=True, type=click.Path(exists=True, dir_okay=False),
              help="YAML file listing the channels to subscribe to")
@click.option("--package", "-p", "packages", multiple=True, help="Package the installation provides")
@_resolution_options
def install(directory: Path, channels_file: str, packages: tuple, offline: bool, repositories: str):
    """Provision a new installation in DIRECTORY from a list of channels."""
    from strata.actions.provision import install as provision_install
    from strata.installation.files import read_channels

    console.print(f"\n[bold blue]strata[/] — Installing into: {directory}\n")
    engine, resolver = _collaborators()
    with _errors():
        channels = read_channels(channels_file)
        with provision_install(directory, channels, list(packages), engine, resolver,
                               _options(offline, repositories)) as installation:
            console.print(f"[green]Installed {len(installation.manifest.streams)} artifacts.[/]")


# ── Update ───────────────────────────────────────────────────────────


@main.command()
@_dir_option(default=None)
@click.option("--self", "self_update", is_flag=True, help="Update the strata installation itself")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation")
@click.option("--dry-run", is_flag=True, help="Only list the changes")
@click.option("--candidate-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Build the candidate here instead of a temporary directory")
@_resolution_options
def update(directory: str | None, self_update: bool, yes: bool, dry_run: bool, candidate_dir: Path | None,
           offline: bool, repositories: str):
    """Update an installation to the latest versions its channels offer."""
    from strata.actions.workflow import perform_update

    engine, resolver = _collaborators()
    with _errors():
        directory = _update_target(directory, self_update)
        console.print(f"\n[bold blue]strata[/] — Updating: {directory}\n")
        result = perform_update(
            directory,
            engine,
            resolver,
            options=_options(offline, repositories),
            confirm=_ask("update"),
            yes=yes,
            dry_run=dry_run,
            self_update=self_update,
            candidate_dir=candidate_dir,
        )
    if result.update_set is not None and result.update_set.is_empty:
        console.print("[yellow]No updates found.[/]")
        return
    _report(result, "update", dry_run)


def _update_target(directory: str | None, self_update: bool) -> Path:
    from strata.actions.self_update import detect_tool_installation

    if directory is not None:
        return Path(directory)
    return detect_tool_installation() if self_update else Path.cwd()


@main.command(name="prepare-update")
@_dir_option(default=None)
@click.option("--candidate-dir", required=True, type=click.Path(file_okay=False, path_type=Path),
              help="Empty or missing directory to build the candidate in")
@click.option("--self", "self_update", is_flag=True, help="Prepare an update of the strata installation itself")
@_resolution_options
def prepare_update(directory: str | None, candidate_dir: Path, self_update: bool, offline: bool, repositories: str):
    """Build an update candidate to inspect and apply later with apply-update."""
    from strata.actions.workflow import prepare_update as build_update

    engine, resolver = _collaborators()
    with _errors():
        directory = _update_target(directory, self_update)
        console.print(f"\n[bold blue]strata[/] — Preparing update of {directory} in {candidate_dir}\n")
        update_set = build_update(
            directory, candidate_dir, engine, resolver, _options(offline, repositories), self_update=self_update
        )
    if update_set.is_empty:
        console.print("[yellow]No updates found.[/]")
        return
    for change in update_set.artifact_updates:
        console.print(f"  {change}")
    console.print(f"[green]Update candidate prepared in:[/] {candidate_dir}")


@main.command(name="apply-update")
@_dir_option(default=None)
@click.option("--candidate-dir", required=True, type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Candidate built by prepare-update")
@click.option("--self", "self_update", is_flag=True, help="Apply an update of the strata installation itself")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation")
@click.option("--dry-run", is_flag=True, help="Only list the changes")
def apply_update(directory: str | None, candidate_dir: Path, self_update: bool, yes: bool, dry_run: bool):
    """Apply an update candidate built by prepare-update."""
    from strata.actions.workflow import apply_candidate

    engine, _ = _collaborators()
    with _errors():
        directory = _update_target(directory, self_update)
        console.print(f"\n[bold blue]strata[/] — Applying {candidate_dir} to {directory}\n")
        result = apply_candidate(
            directory,
            candidate_dir,
            engine,
            confirm=_ask("update"),
            yes=yes,
            dry_run=dry_run,
            self_update=self_update,
        )
    _report(result, "update", dry_run)


# ── History ──────────────────────────────────────────────────────────


@main.command()
@_dir_option()
@click.option("--revision", default=None, help="Show the changes of a single revision")
def history(directory: str, revision: str | None):
    """List the revisions of an installation, newest first."""
    from strata.actions.history import InstallationHistoryAction
    from strata.installation.metadata import InstallationMetadata

    with _errors():
        with InstallationMetadata.open(directory) as installation:
            action = InstallationHistoryAction(installation)
            if revision:
                details = action.revision_changes(SavedState(name=revision))
                _print_revision(details)
                return
            states = action.revisions()

    table = Table(title=f"History ({len(states)} revisions)")
    table.add_column("Revision", style="cyan")
    table.add_column("Date", style="dim")
    table.add_column("Type")
    table.add_column("Summary")
    for state in states:
        table.add_row(
            state.name,
            state.timestamp.strftime("%Y-%m-%d %H:%M:%S") if state.timestamp else "-",
            state.type.name if state.type else "-",
            state.summary,
        )
    console.print(table)


def _print_revision(details) -> None:
    if not details.artifact_changes and not details.channel_changes:
        console.print(f"[dim]Revision {details.saved_state.name} has no artifact or channel changes.[/]")
        return
    lines = []
    for change in details.artifact_changes:
        colour = {ChangeStatus.ADDED: "green", ChangeStatus.REMOVED: "red"}.get(change.status, "yellow")
        lines.append(f"[{colour}]{change}[/]")
    for change in details.channel_changes:
        lines.append(f"channel [cyan]{change.name}[/] {change.status.value}")
        lines.extend(f"  {d.field}: {d.old or '-'} -> {d.new or '-'}" for d in change.children)
    console.print(Panel("\n".join(lines), title=f"Revision {details.saved_state.name}"))


# ── Revert ───────────────────────────────────────────────────────────


@main.command()
@_dir_option()
@click.option("--revision", required=True, help="Revision to bring the installation back to")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation")
@click.option("--dry-run", is_flag=True, help="Only list the changes")
@_resolution_options
def revert(directory: str, revision: str, yes: bool, dry_run: bool, offline: bool, repositories: str):
    """Revert an installation to an earlier revision."""
    from strata.actions.workflow import perform_revert

    console.print(f"\n[bold blue]strata[/] — Reverting {directory} to {revision}\n")
    engine, resolver = _collaborators()
    with _errors():
        result = perform_revert(
            directory,
            revision,
            engine,
            resolver,
            options=_options(offline, repositories),
            confirm=_ask("revert"),
            yes=yes,
            dry_run=dry_run,
        )
    _report(result, "revert", dry_run)


# ── Channels ─────────────────────────────────────────────────────────


@main.group()
def channel():
    """Manage the channels an installation is subscribed to."""


@channel.command(name="list")
@_dir_option()
def list_channels(directory: str):
    """List subscribed channels."""
    from strata.installation.metadata import InstallationMetadata

    with _errors():
        installation = InstallationMetadata.read(directory)

    if not installation.channels:
        console.print("[yellow]No channels subscribed.[/]")
        return
    table = Table(title="Channels")
    table.add_column("Name", style="cyan")
    table.add_column("Manifest")
    table.add_column("Repositories")
    for ch in installation.channels:
        table.add_row(ch.name, str(ch.manifest or "-"), ", ".join(r.url for r in ch.repositories))
    console.print(table)


@channel.command(name="add")
@_dir_option()
@click.argument("name")
@click.option("--manifest", "-m", required=True, help="Manifest as groupId:artifactId[:version] or URL")
@click.option("--repositories", "-r", required=True, help="Channel repositories, comma separated, as URL or ID::URL")
@click.option("--description", default="", help="Channel description")
def add_channel(directory: str, name: str, manifest: str, repositories: str, description: str):
    """Subscribe the installation to channel NAME."""
    from strata.installation.metadata import InstallationMetadata

    new_channel = Channel(
        name=name,
        description=description,
        repositories=tuple(parse_repositories(repositories)),
        manifest=parse_manifest(manifest),
    )
    with _errors():
        with InstallationMetadata.open(directory) as installation:
            state = installation.add_channel(new_channel)
    console.print(f"[green]Channel '{name}' added[/] (revision {state.name}).")


@channel.command(name="remove")
@_dir_option()
@click.argument("name")
def remove_channel(directory: str, name: str):
    """Unsubscribe the installation from channel NAME."""
    from strata.installation.metadata import InstallationMetadata

    with _errors():
        with InstallationMetadata.open(directory) as installation:
            state = installation.remove_channel(name)
    console.print(f"[green]Channel '{name}' removed[/] (revision {state.name}).")


# ── Export / import ──────────────────────────────────────────────────


@main.command()
@_dir_option()
@click.option("--path", "-o", "bundle", required=True, type=click.Path(dir_okay=False, path_type=Path),
              help="Bundle file to write")
def export(directory: str, bundle: Path):
    """Export the installation metadata into a bundle."""
    from strata.installation.metadata import InstallationMetadata

    with _errors():
        InstallationMetadata.read(directory).export_bundle(bundle)
    console.print(f"[green]Metadata exported to:[/] {bundle}")


@main.command(name="import")
@click.argument("bundle", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
@_resolution_options
def import_bundle(bundle: Path, directory: Path, offline: bool, repositories: str):
    """Recreate an installation in DIRECTORY from an exported BUNDLE."""
    from strata.actions.provision import restore

    console.print(f"\n[bold blue]strata[/] — Restoring {bundle} into {directory}\n")
    engine, resolver = _collaborators()
    with _errors():
        with restore(directory, bundle, engine, resolver, _options(offline, repositories)) as installation:
            console.print(f"[green]Restored {len(installation.manifest.streams)} artifacts.[/]")


if __name__ == "__main__":
    main()
