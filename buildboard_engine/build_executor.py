import asyncio
import dataclasses
from pathlib import Path
from typing import Dict, Iterable, Optional, Any

from .artifact_manager import ArtifactManager
from .build_registry import BuildRegistry, Ledger
from .job import JobDescriptor, JobLike, coerce_job
from .logger_setup import logger, get_child_logger
from .scm_handler import SCMHandler
from .workspace_manager import WorkspaceManager


class BuildExecutor:
    """Drives one build per project: checkout, run, record, render, reclaim.

    The same branch must not be run twice at once; distinct branches can be
    processed concurrently with ``run_all``.
    """

    def __init__(self, data_root: Path, registry: Optional[BuildRegistry] = None,
                 workspace_manager: Optional[WorkspaceManager] = None,
                 artifact_manager: Optional[ArtifactManager] = None):
        self.data_root = Path(data_root)
        self.registry = registry or BuildRegistry(self.data_root)
        self.workspace_manager = workspace_manager or WorkspaceManager(self.data_root)
        self.artifact_manager = artifact_manager or ArtifactManager(self.data_root)
        self.logger = logger

    async def checkout(self, job: JobDescriptor, workspace: Path) -> JobDescriptor:
        handler = SCMHandler.for_job(job)
        # GitPython blocks, keep it off the event loop
        return await asyncio.to_thread(handler.checkout, job, workspace)

    async def execute(self, job: JobDescriptor, workspace: Path) -> bool:
        """Runs the project's ``script`` in the workspace. No script counts as a successful build."""
        script = job.metadata.get("script")
        build_logger = get_child_logger(job.key)
        if not script:
            build_logger.info("No build script configured, nothing to run.")
            return True

        build_logger.info(f"Running '{script}' in {workspace}")
        process = await asyncio.create_subprocess_shell(
            script,
            cwd=str(workspace),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        while True:
            line = await process.stdout.readline()
            if not line:
                break
            build_logger.debug(line.decode("utf-8", errors="replace").rstrip())
        returncode = await process.wait()
        if returncode != 0:
            build_logger.error(f"Build script exited with code {returncode}")
        return returncode == 0

    async def publish(self, job: JobLike) -> Ledger:
        """Records a finished build and refreshes the branch's page and badge."""
        job = coerce_job(job, compiled=True)
        ledger = await self.registry.add_build(job)
        await self.artifact_manager.render_status_page(job)
        await self.artifact_manager.render_badge(job)
        return ledger

    async def run_project(self, job: JobLike) -> JobDescriptor:
        project = coerce_job(job)
        # The project source hands out shared descriptors, work on a copy
        job = dataclasses.replace(project, metadata=dict(project.metadata), tags=dict(project.tags))
        job.id = await self.registry.next_build_id(job)
        self.logger.info(f"Starting build #{job.id} of {job.project_key}")

        workspace = await self.workspace_manager.create_workspace(job)
        try:
            await self.checkout(job, workspace)
            job.success = await self.execute(job, workspace)
            await self.publish(job)
        finally:
            await self.workspace_manager.clear_workspace(job)

        self.logger.info(f"Build #{job.id} of {job.project_key} finished: {'SUCCESS' if job.success else 'FAILURE'}")
        return job

    async def run_all(self, jobs: Iterable[JobLike]) -> Dict[str, Any]:
        """Builds every project concurrently.

        Returns a mapping of project key to the finished JobDescriptor, or to
        the exception that stopped it. One project failing never affects the
        others.
        """
        jobs = [coerce_job(job) for job in jobs]
        results = await asyncio.gather(*(self.run_project(job) for job in jobs), return_exceptions=True)

        outcome: Dict[str, Any] = {}
        for job, result in zip(jobs, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                self.logger.error(f"Build of {job.project_key} failed: {result}", exc_info=result)
            outcome[job.project_key] = result
        return outcome
