import asyncio
import stat
from pathlib import Path
from typing import List, Optional, Union

import aiofiles.os

from .config import RECLAIM_TIMEOUT
from .errors import FilesystemError
from .job import JobDescriptor, JobLike, coerce_job
from .logger_setup import logger

WORKSPACE_DIR_NAME = "files"


class WorkspaceManager:
    """Owns the 'files' working directory of every author/repo/branch.

    Only ``<branch dir>/files`` is ever reclaimed. The ledger and rendered
    artifacts next to it are left alone.
    """

    def __init__(self, data_root: Path, timeout: Optional[float] = RECLAIM_TIMEOUT):
        self.data_root = Path(data_root)
        self.timeout = timeout
        self.logger = logger

    def workspace_path(self, job: JobDescriptor) -> Path:
        return job.branch_dir(self.data_root) / WORKSPACE_DIR_NAME

    async def create_workspace(self, job: JobLike) -> Path:
        job = coerce_job(job)
        ws_path = self.workspace_path(job)
        if await aiofiles.os.path.exists(ws_path):
            self.logger.warning(f"Workspace {ws_path} already exists. Cleaning up.")
            await self.clear_folder(ws_path)
        await aiofiles.os.makedirs(ws_path, exist_ok=True)
        self.logger.info(f"Created workspace: {ws_path}")
        return ws_path

    async def clear_workspace(self, job: JobLike):
        """Deletes the working files of ``job``'s branch. A missing workspace is a no-op."""
        job = coerce_job(job)
        ws_path = self.workspace_path(job)
        if not await aiofiles.os.path.exists(ws_path):
            self.logger.debug(f"No workspace at {ws_path}, nothing to clear.")
            return

        self.logger.info(f"Clearing workspace {ws_path}")
        if self.timeout is None:
            await self.clear_folder(ws_path)
            return
        try:
            await asyncio.wait_for(self.clear_folder(ws_path), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self.logger.error(f"Clearing workspace {ws_path} timed out after {self.timeout}s")
            raise FilesystemError(ws_path, e) from e

    async def clear_folder(self, path: Union[str, Path]):
        """Deletes ``path`` and, for a directory, everything below it.

        The children of a directory are deleted concurrently. The directory
        itself is removed only after every child has finished and none has
        failed; otherwise the first child error to occur is raised once all
        siblings are done. Nothing that was already deleted is restored.
        """
        path = Path(path)
        self.logger.debug(f"Deleting '{path}'")
        try:
            # lstat: a symlink is removed, never followed
            st = await aiofiles.os.stat(path, follow_symlinks=False)
        except OSError as e:
            raise FilesystemError(path, e) from e

        if not stat.S_ISDIR(st.st_mode):
            try:
                await aiofiles.os.unlink(path)
            except OSError as e:
                raise FilesystemError(path, e) from e
            return

        try:
            children = await aiofiles.os.listdir(path)
        except OSError as e:
            raise FilesystemError(path, e) from e

        if children:
            failures = await self._clear_children(path, children)
            if failures:
                if len(failures) > 1:
                    self.logger.warning(f"{len(failures)} entries below {path} could not be deleted, reporting the first.")
                raise failures[0]

        try:
            await aiofiles.os.rmdir(path)
        except OSError as e:
            raise FilesystemError(path, e) from e

    async def _clear_children(self, path: Path, children: List[str]) -> List[FilesystemError]:
        failures: List[FilesystemError] = []

        async def clear_child(name: str):
            try:
                await self.clear_folder(path / name)
            except FilesystemError as e:
                # Appended as they happen, so failures[0] is the first observed
                failures.append(e)

        await asyncio.gather(*(clear_child(name) for name in children))
        return failures
