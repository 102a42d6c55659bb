import asyncio
import json
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Any, Iterator

import aiofiles
import aiofiles.os

from .errors import CorruptLedger, PersistError
from .job import JobDescriptor, JobLike, coerce_job
from .logger_setup import logger
from .models import BuildStatus, Candidate

LEDGER_FILE_NAME = "builds.json"
POINTER_KEYS = ("latest", "last_successful")


@dataclass
class BuildRecord:
    id: int
    sha: Optional[str]
    date: Optional[str]
    timestamp: Optional[int]
    message: Optional[str]
    author: Optional[str]
    avatar: Optional[str]
    license: Optional[str]
    status: BuildStatus
    candidate: Candidate = Candidate.DEVELOPMENT
    tag: Optional[str] = None # Set once the record becomes a release candidate

    @classmethod
    def from_job(cls, job: JobDescriptor) -> 'BuildRecord':
        return cls(
            id=job.id,
            sha=job.commit.sha,
            date=job.commit.date,
            timestamp=job.commit.timestamp,
            message=job.commit.message,
            author=job.commit.author,
            avatar=job.commit.avatar,
            license=job.license,
            status=BuildStatus.from_success(job.success),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "sha": self.sha,
            "date": self.date,
            "timestamp": self.timestamp,
            "message": self.message,
            "author": self.author,
            "avatar": self.avatar,
            "license": self.license,
            "candidate": self.candidate.value,
            "status": self.status.value,
        }
        if self.tag is not None:
            data["tag"] = self.tag
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'BuildRecord':
        return cls(
            id=data['id'],
            sha=data.get('sha'),
            date=data.get('date'),
            timestamp=data.get('timestamp'),
            message=data.get('message'),
            author=data.get('author'),
            avatar=data.get('avatar'),
            license=data.get('license'),
            status=BuildStatus(data['status']),
            candidate=Candidate(data.get('candidate', Candidate.DEVELOPMENT.value)),
            tag=data.get('tag'),
        )


class Ledger:
    """All builds recorded for one author/repo/branch.

    Records are keyed by the build id as a string, the way they appear in
    builds.json, and keep their insertion order.
    """

    def __init__(self):
        self.records: Dict[str, BuildRecord] = {}
        self.latest: Optional[int] = None
        self.last_successful: Optional[int] = None

    def __iter__(self) -> Iterator[BuildRecord]:
        return iter(self.records.values())

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, build_id) -> bool:
        return str(build_id) in self.records

    def get(self, build_id) -> Optional[BuildRecord]:
        return self.records.get(str(build_id))

    def append(self, record: BuildRecord):
        # Re-adding an id overwrites the old record in place
        self.records[str(record.id)] = record
        self.latest = record.id
        if record.status is BuildStatus.SUCCESS:
            self.last_successful = record.id

    def apply_tags(self, tags: Dict[str, str]):
        """Marks every record whose sha one of ``tags`` points at as a release.

        The first matching tag in mapping order wins. Records that match no tag
        keep whatever classification they already had. Tags without a string
        sha and records without a sha never match.
        """
        if not tags:
            return
        tags = {tag_name: sha for tag_name, sha in tags.items() if isinstance(sha, str)}
        for record in self.records.values():
            if record.sha is None:
                continue
            for tag_name, sha in tags.items():
                if sha == record.sha:
                    record.candidate = Candidate.RELEASE
                    record.tag = tag_name
                    break

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {build_id: record.to_dict() for build_id, record in self.records.items()}
        if self.latest is not None:
            data["latest"] = self.latest
        if self.last_successful is not None:
            data["last_successful"] = self.last_successful
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Ledger':
        ledger = cls()
        for key, value in data.items():
            if key in POINTER_KEYS:
                continue
            ledger.records[key] = BuildRecord.from_dict(value)
        ledger.latest = data.get("latest")
        ledger.last_successful = data.get("last_successful")
        return ledger


class BuildRegistry:
    """Loads, updates, tags and persists the builds.json ledger of each branch.

    ``add_build`` holds a per-branch lock across load, mutate and persist, so
    two calls for the same branch inside this process never interleave. Other
    processes writing the same ledger are not guarded against.
    """

    def __init__(self, data_root: Path):
        self.data_root = Path(data_root)
        self.logger = logger
        # A lock lives only while some add_build holds or awaits it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def ledger_path(self, job: JobDescriptor) -> Path:
        return job.branch_dir(self.data_root) / LEDGER_FILE_NAME

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def load_ledger(self, job: JobLike) -> Ledger:
        """Reads the ledger of ``job``'s branch, or an empty one if none exists yet."""
        job = coerce_job(job)
        path = self.ledger_path(job)
        if not await aiofiles.os.path.exists(path):
            self.logger.debug(f"No ledger at {path} yet, starting empty.")
            return Ledger()

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            raise CorruptLedger(path, f"unreadable ({e})") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptLedger(path, f"invalid JSON ({e})") from e
        if not isinstance(data, dict):
            raise CorruptLedger(path, f"expected a JSON object, found {type(data).__name__}")

        try:
            return Ledger.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptLedger(path, f"malformed build record ({e!r})") from e

    async def add_build(self, job: JobLike) -> Ledger:
        """Appends a finished build to its branch ledger and re-applies tags to all records."""
        job = coerce_job(job, compiled=True)
        async with self._lock_for(job.key):
            ledger = await self.load_ledger(job)

            self.logger.info(f"Adding build #{job.id} ({'SUCCESS' if job.success else 'FAILURE'}) to {job.key}")
            ledger.append(BuildRecord.from_job(job))
            ledger.apply_tags(job.tags)

            await self._persist(self.ledger_path(job), ledger)
            return ledger

    async def _persist(self, path: Path, ledger: Ledger):
        tmp_path = path.with_name(f".{path.name}.tmp")
        self.logger.debug(f"Saving {path}...")
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(ledger.to_dict()))
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            self.logger.error(f"Failed to save ledger {path}: {e}")
            try:
                await aiofiles.os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            except OSError as cleanup_error:
                self.logger.warning(f"Could not remove {tmp_path}: {cleanup_error}")
            raise PersistError(path, e) from e

    async def list_builds(self, job: JobLike, limit: Optional[int] = None) -> list:
        """Records of a branch, newest id first."""
        ledger = await self.load_ledger(job)
        records = sorted(ledger, key=lambda r: r.id, reverse=True)
        if limit is not None:
            records = records[:limit]
        return records

    async def next_build_id(self, job: JobLike) -> int:
        ledger = await self.load_ledger(job)
        return max((record.id for record in ledger), default=0) + 1
