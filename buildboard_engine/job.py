from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, Union

from .errors import InvalidJob

LEDGER_KEY_FIELDS = ("author", "repo", "branch")


@dataclass
class CommitInfo:
    sha: Optional[str] = None
    date: Optional[str] = None # ISO 8601
    timestamp: Optional[int] = None # Seconds since epoch
    message: Optional[str] = None
    author: Optional[str] = None
    avatar: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "sha": self.sha,
            "date": self.date,
            "timestamp": self.timestamp,
            "message": self.message,
            "author": self.author,
            "avatar": self.avatar,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CommitInfo':
        data = data or {}
        return cls(
            sha=data.get('sha'),
            date=data.get('date'),
            timestamp=data.get('timestamp'),
            message=data.get('message'),
            author=data.get('author'),
            avatar=data.get('avatar'),
        )


@dataclass
class JobDescriptor:
    """One build attempt for one author/repo/branch.

    ``id`` and ``success`` stay None until the build has run; only the ledger
    needs them. ``metadata`` carries whatever the project source attached to
    the project (e.g. a build ``script``).
    """
    author: str
    repo: str
    branch: str
    id: Optional[int] = None
    success: Optional[bool] = None
    commit: CommitInfo = field(default_factory=CommitInfo)
    license: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict) # tag name -> commit sha
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.author}/{self.repo}/{self.branch}"

    @property
    def project_key(self) -> str:
        """The 'author/repo:branch' form used by the project source."""
        return f"{self.author}/{self.repo}:{self.branch}"

    def branch_dir(self, data_root: Path) -> Path:
        return data_root / self.author / self.repo / self.branch

    def to_dict(self) -> dict:
        return {
            "author": self.author,
            "repo": self.repo,
            "branch": self.branch,
            "id": self.id,
            "success": self.success,
            "commit": self.commit.to_dict(),
            "license": self.license,
            "tags": dict(self.tags),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JobDescriptor':
        return cls(
            author=data['author'],
            repo=data['repo'],
            branch=data['branch'],
            id=data.get('id'),
            success=data.get('success'),
            commit=CommitInfo.from_dict(data.get('commit')),
            license=data.get('license'),
            tags=dict(data.get('tags') or {}),
            metadata=dict(data.get('metadata') or {}),
        )


JobLike = Union[JobDescriptor, Dict[str, Any]]


def _get(job: JobLike, name: str) -> Any:
    if type(job) is dict:
        return job.get(name)
    return getattr(job, name, None)


def _is_safe_path_part(value: str, allow_slash: bool = False) -> bool:
    # Each part becomes one or more directories below the data root
    if "\\" in value or "\0" in value:
        return False
    if not allow_slash and "/" in value:
        return False
    return all(segment not in ("", ".", "..") for segment in value.split("/"))


def is_valid(job: Any, compiled: bool = False) -> bool:
    """Checks whether ``job`` is a usable job descriptor.

    Only a plain ``dict`` or a ``JobDescriptor`` itself qualifies; subclasses
    of either and arbitrary objects that merely carry the right attributes are
    rejected. ``author``, ``repo`` and ``branch`` must be non-empty strings
    that stay below the data root: no '.' or '..' segments, and only
    ``branch`` may contain '/'.
    With ``compiled`` the job must also carry an integer ``id`` and a boolean
    ``success``, which every ledger mutation needs.
    """
    if job is None:
        return False
    if type(job) is not dict and type(job) is not JobDescriptor:
        return False

    for name in LEDGER_KEY_FIELDS:
        value = _get(job, name)
        if not isinstance(value, str) or not _is_safe_path_part(value, allow_slash=name == "branch"):
            return False

    if compiled:
        job_id = _get(job, 'id')
        # bool is an int subclass
        if not isinstance(job_id, int) or isinstance(job_id, bool):
            return False
        if not isinstance(_get(job, 'success'), bool):
            return False

    return True


def coerce_job(job: Any, compiled: bool = False) -> JobDescriptor:
    """Validates ``job`` and returns it as a JobDescriptor, raising InvalidJob otherwise."""
    if not is_valid(job, compiled):
        mode = "compiled" if compiled else "uncompiled"
        raise InvalidJob(f"Invalid job ({mode} mode): {job!r}")
    if type(job) is dict:
        try:
            return JobDescriptor.from_dict(job)
        except (AttributeError, TypeError, ValueError) as e:
            raise InvalidJob(f"Malformed job fields ({e}): {job!r}") from e
    return job
