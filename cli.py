import asyncio
import json
from pathlib import Path

import click

from buildboard_engine.artifact_manager import ArtifactManager
from buildboard_engine.build_executor import BuildExecutor
from buildboard_engine.build_registry import BuildRegistry
from buildboard_engine.config import DATA_ROOT, PROJECTS_FILE
from buildboard_engine.errors import BuildboardError
from buildboard_engine.job import JobDescriptor
from buildboard_engine.logger_setup import logger
from buildboard_engine.models import BuildStatus
from buildboard_engine.project_manager import ProjectManager, parse_project_key
from buildboard_engine.workspace_manager import WorkspaceManager


class Context:
    def __init__(self, data_root: Path, projects_file: Path):
        self.data_root = data_root
        self.projects_file = projects_file

    def project_manager(self) -> ProjectManager:
        return ProjectManager(self.projects_file)

    def resolve(self, project_key: str) -> JobDescriptor:
        """Looks the key up in the projects file, falling back to a bare descriptor."""
        project = self.project_manager().get_project(project_key)
        if project:
            return project
        try:
            author, repo, branch = parse_project_key(project_key)
        except ValueError:
            raise click.BadParameter(f"'{project_key}' is not of the form author/repo:branch")
        return JobDescriptor(author=author, repo=repo, branch=branch)


def run_async(coro):
    try:
        return asyncio.run(coro)
    except BuildboardError as e:
        logger.debug("Command failed", exc_info=True)
        raise click.ClickException(str(e))


@click.group()
@click.option("--data-root", type=click.Path(file_okay=False, path_type=Path), default=DATA_ROOT,
              envvar="BUILDBOARD_DATA_ROOT", show_default=True, help="Directory holding every author/repo/branch.")
@click.option("--projects-file", type=click.Path(dir_okay=False, path_type=Path), default=PROJECTS_FILE,
              envvar="BUILDBOARD_PROJECTS_FILE", show_default=True, help="YAML/JSON map of 'author/repo:branch' keys.")
@click.pass_context
def cli(ctx, data_root: Path, projects_file: Path):
    """buildboard: build history, status pages and badges for CI projects."""
    ctx.obj = Context(data_root, projects_file)


@cli.command("list-projects")
@click.pass_obj
def list_projects(obj: Context):
    """Lists all configured projects."""
    projects = obj.project_manager().list_projects()
    if not projects:
        click.echo("No projects configured.")
        return
    click.echo("Configured projects:")
    for project in projects:
        click.echo(f"- {project.project_key}")
        if project.metadata.get("script"):
            click.echo(f"  Script: {project.metadata['script']}")


@cli.command("run")
@click.argument("project_keys", nargs=-1)
@click.pass_obj
def run(obj: Context, project_keys: tuple):
    """Builds the given projects, or every configured project."""
    if project_keys:
        jobs = [obj.resolve(key) for key in project_keys]
    else:
        jobs = obj.project_manager().list_projects()
    if not jobs:
        click.echo("No projects to build.")
        return

    executor = BuildExecutor(obj.data_root)
    outcome = run_async(executor.run_all(jobs))
    failed = False
    for key, result in outcome.items():
        if isinstance(result, Exception):
            failed = True
            click.echo(f"{key}: ERROR ({result})")
        else:
            click.echo(f"{key}: build #{result.id} {'SUCCESS' if result.success else 'FAILURE'}")
    if failed:
        raise SystemExit(1)


@cli.command("add-build")
@click.argument("job_file", type=click.File("r"))
@click.option("--render/--no-render", default=True, help="Also regenerate index.html and badge.svg.")
@click.pass_obj
def add_build(obj: Context, job_file, render: bool):
    """Records a finished build described by a JSON job file ('-' for stdin)."""
    try:
        job = json.load(job_file)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Job file is not valid JSON: {e}")

    if render:
        ledger = run_async(BuildExecutor(obj.data_root).publish(job))
    else:
        ledger = run_async(BuildRegistry(obj.data_root).add_build(job))
    click.echo(f"Recorded build #{ledger.latest} ({len(ledger)} builds, last successful: {ledger.last_successful})")


@cli.command("list-builds")
@click.argument("project_key")
@click.option("--limit", default=10, type=int, help="Number of recent builds to show.")
@click.pass_obj
def list_builds(obj: Context, project_key: str, limit: int):
    """Lists recent builds of a project branch."""
    job = obj.resolve(project_key)
    records = run_async(BuildRegistry(obj.data_root).list_builds(job, limit=limit))
    if not records:
        click.echo(f"No builds found for '{project_key}'.")
        return

    click.echo(f"Recent builds for '{project_key}':")
    for record in records:
        candidate = record.candidate.value if record.tag is None else f"{record.candidate.value} ({record.tag})"
        sha = (record.sha or "")[:7]
        click.echo(f"  - Build #{record.id} | Status: {record.status.value} | {candidate} | {sha} | {record.date or 'N/A'}")


@cli.command("clear-workspace")
@click.argument("project_key")
@click.pass_obj
def clear_workspace(obj: Context, project_key: str):
    """Deletes the working files of a project branch."""
    job = obj.resolve(project_key)
    run_async(WorkspaceManager(obj.data_root).clear_workspace(job))
    click.echo(f"Workspace of '{project_key}' cleared.")


@cli.command("render")
@click.argument("project_key")
@click.pass_obj
def render(obj: Context, project_key: str):
    """Regenerates index.html and badge.svg from the latest recorded build."""
    job = obj.resolve(project_key)

    async def _render():
        ledger = await BuildRegistry(obj.data_root).load_ledger(job)
        latest = ledger.get(ledger.latest) if ledger.latest is not None else None
        job.success = latest is not None and latest.status is BuildStatus.SUCCESS
        artifacts = ArtifactManager(obj.data_root)
        await artifacts.render_status_page(job)
        await artifacts.render_badge(job)

    run_async(_render())
    click.echo(f"Rendered status page and badge for '{project_key}'.")


if __name__ == '__main__':
    cli()
