import yaml
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Any

from .config import PROJECTS_FILE
from .job import JobDescriptor
from .logger_setup import logger


def parse_project_key(key: str) -> Tuple[str, str, str]:
    """Splits 'author/repo:branch' into its three parts.

    Splits on the first '/' and then the first ':', so a branch name may
    itself contain slashes.
    """
    author, rest = key.split("/", 1)
    repo, branch = rest.split(":", 1)
    return author, repo, branch


class ProjectManager:
    def __init__(self, projects_file: Optional[Path] = None):
        self.projects_file = Path(projects_file) if projects_file else PROJECTS_FILE
        self.projects: Dict[str, JobDescriptor] = {}
        self.load_projects()

    def load_projects(self) -> List[JobDescriptor]:
        self.projects = {}
        logger.info(f"Loading projects from {self.projects_file}...")
        if not self.projects_file.is_file():
            logger.warning(f"Projects file not found: {self.projects_file}")
            return []

        try:
            with open(self.projects_file, 'r', encoding='utf-8') as f:
                # safe_load reads the JSON form of the document as well
                data = yaml.safe_load(f)
        except yaml.YAMLError as ye:
            logger.error(f"Syntax error in projects file {self.projects_file}: {ye}")
            return []

        if data is None:
            data = {}
        if not isinstance(data, dict):
            logger.error(f"Projects file {self.projects_file} must map 'author/repo:branch' keys to metadata.")
            return []

        for key, metadata in data.items():
            logger.info(f"-> Found Project \"{key}\"")
            author, repo, branch = parse_project_key(key)
            self.projects[key] = JobDescriptor(
                author=author,
                repo=repo,
                branch=branch,
                metadata=metadata if isinstance(metadata, dict) else {},
            )
        logger.info(f"Loaded {len(self.projects)} projects.")
        return self.list_projects()

    def get_project(self, key: str) -> Optional[JobDescriptor]:
        return self.projects.get(key)

    def list_projects(self) -> List[JobDescriptor]:
        return list(self.projects.values())
