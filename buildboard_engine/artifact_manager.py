from pathlib import Path
from string import Template

import aiofiles
import aiofiles.os

from .config import TEMPLATES_DIR
from .job import JobLike, coerce_job
from .logger_setup import logger
from .models import BuildStatus, BADGE_COLORS

STATUS_PAGE_TEMPLATE = "template.html"
BADGE_TEMPLATE = "badge.svg"
STATUS_PAGE_FILE_NAME = "index.html"
BADGE_FILE_NAME = "badge.svg"


class ArtifactManager:
    """Renders the status page and badge of a branch into its output directory."""

    def __init__(self, data_root: Path, templates_dir: Path = TEMPLATES_DIR):
        self.data_root = Path(data_root)
        self.templates_dir = Path(templates_dir)

    async def _render(self, template_name: str, destination: Path, **values) -> Path:
        async with aiofiles.open(self.templates_dir / template_name, "r", encoding="utf-8") as f:
            template = Template(await f.read())

        # Unknown ${...} placeholders are left as they are
        rendered = template.safe_substitute(**values)

        await aiofiles.os.makedirs(destination.parent, exist_ok=True)
        logger.debug(f"Saving '{destination}'...")
        async with aiofiles.open(destination, "w", encoding="utf-8") as f:
            await f.write(rendered)
        return destination

    async def render_status_page(self, job: JobLike) -> Path:
        job = coerce_job(job)
        logger.info(f"Generating '{STATUS_PAGE_FILE_NAME}' for {job.key}...")
        return await self._render(
            STATUS_PAGE_TEMPLATE,
            job.branch_dir(self.data_root) / STATUS_PAGE_FILE_NAME,
            owner=job.author,
            repository=job.repo,
            branch=job.branch,
        )

    async def render_badge(self, job: JobLike) -> Path:
        job = coerce_job(job)
        status = BuildStatus.from_success(bool(job.success))
        logger.info(f"Generating '{BADGE_FILE_NAME}' for {job.key} ({status.value})...")
        return await self._render(
            BADGE_TEMPLATE,
            job.branch_dir(self.data_root) / BADGE_FILE_NAME,
            status=status.value,
            color=BADGE_COLORS[status],
        )
