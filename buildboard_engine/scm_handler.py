import hashlib
import git
from pathlib import Path
from typing import Dict

from .config import REPO_URL_TEMPLATE
from .job import CommitInfo, JobDescriptor
from .logger_setup import logger

GRAVATAR_URL = "https://www.gravatar.com/avatar/{digest}?d=identicon"


def avatar_url(email: str) -> str:
    digest = hashlib.md5((email or "").strip().lower().encode("utf-8")).hexdigest()
    return GRAVATAR_URL.format(digest=digest)


class SCMHandler:
    def __init__(self, repo_url: str, branch: str = 'main'):
        self.repo_url = repo_url
        self.branch = branch

    @classmethod
    def for_job(cls, job: JobDescriptor, url_template: str = REPO_URL_TEMPLATE) -> 'SCMHandler':
        # A 'url' entry in the project's metadata overrides the template
        url = job.metadata.get("url") or url_template.format(author=job.author, repo=job.repo, branch=job.branch)
        return cls(url, job.branch)

    def clone_or_update(self, target_dir: Path) -> git.Repo:
        """Clones the branch into target_dir if it is empty, otherwise resets it to the remote head."""
        if not target_dir.exists() or not any(target_dir.iterdir()):
            logger.info(f"Cloning {self.repo_url} (branch: {self.branch}) into {target_dir}...")
            repo = git.Repo.clone_from(self.repo_url, target_dir, branch=self.branch)
            logger.info("Clone complete.")
        else:
            logger.info(f"Updating existing repo in {target_dir}...")
            repo = git.Repo(target_dir)
            origin = repo.remotes.origin
            origin.fetch(tags=True)
            repo.git.checkout(self.branch)
            repo.git.reset('--hard', f'origin/{self.branch}')
            logger.info("Update complete.")
        return repo

    @staticmethod
    def read_commit(repo: git.Repo) -> CommitInfo:
        commit = repo.head.commit
        return CommitInfo(
            sha=commit.hexsha,
            date=commit.committed_datetime.isoformat(),
            timestamp=commit.committed_date,
            message=commit.message.strip(),
            author=commit.author.name,
            avatar=avatar_url(commit.author.email),
        )

    @staticmethod
    def read_tags(repo: git.Repo) -> Dict[str, str]:
        """Maps every tag name to the sha of the commit it points at."""
        tags = {}
        for tag in repo.tags:
            try:
                tags[tag.name] = tag.commit.hexsha
            except ValueError as e:
                # Tags pointing at trees or blobs have no commit
                logger.warning(f"Skipping tag '{tag.name}' in {repo.working_dir}: {e}")
        return tags

    def checkout(self, job: JobDescriptor, target_dir: Path) -> JobDescriptor:
        """Checks out the job's branch and fills in its commit metadata and tags."""
        try:
            repo = self.clone_or_update(target_dir)
        except git.exc.GitCommandError as e:
            logger.error(f"Git command error for {self.repo_url} in {target_dir}: {e}")
            raise
        job.commit = self.read_commit(repo)
        job.tags = self.read_tags(repo)
        logger.debug(f"{job.key} is at {job.commit.sha} with {len(job.tags)} tag(s)")
        return job
