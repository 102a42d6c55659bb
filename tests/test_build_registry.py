"""Tests for the BuildRegistry: append-only ledger, pointers and tag resolution."""

from __future__ import annotations

import asyncio
import gc
import json
from pathlib import Path

import pytest

from buildboard_engine.build_registry import BuildRecord, BuildRegistry, Ledger
from buildboard_engine.errors import CorruptLedger, InvalidJob, PersistError
from buildboard_engine.models import BuildStatus, Candidate


def ledger_file(data_root: Path) -> Path:
    return data_root / "octo" / "widget" / "main" / "builds.json"


def test_first_build_creates_ledger(registry, data_root, job_factory):
    ledger = asyncio.run(registry.add_build(job_factory(build_id=1, success=True)))

    assert ledger.latest == 1
    assert ledger.last_successful == 1
    stored = json.loads(ledger_file(data_root).read_text(encoding="utf-8"))
    assert stored["latest"] == 1
    assert stored["last_successful"] == 1
    assert stored["1"] == {
        "id": 1,
        "sha": "abc",
        "date": "2024-05-01T12:00:00+00:00",
        "timestamp": 1714564800,
        "message": "commit abc",
        "author": "Octo Cat",
        "avatar": "https://example.invalid/avatar.png",
        "license": "MIT",
        "candidate": "DEVELOPMENT",
        "status": "SUCCESS",
    }


def test_latest_and_last_successful(registry, job_factory):
    asyncio.run(registry.add_build(job_factory(build_id=2, success=True, sha="s2")))
    ledger = asyncio.run(registry.add_build(job_factory(build_id=3, success=False, sha="s3")))

    assert ledger.latest == 3
    assert ledger.last_successful == 2
    assert ledger.get(3).status is BuildStatus.FAILURE


def test_failure_first_leaves_last_successful_unset(registry, data_root, job_factory):
    ledger = asyncio.run(registry.add_build(job_factory(build_id=1, success=False)))

    assert ledger.last_successful is None
    stored = json.loads(ledger_file(data_root).read_text(encoding="utf-8"))
    assert "last_successful" not in stored


def test_ledger_is_append_only(registry, job_factory):
    for build_id in range(1, 6):
        asyncio.run(registry.add_build(job_factory(build_id=build_id, success=build_id % 2 == 0, sha=f"sha{build_id}")))
        ledger = asyncio.run(registry.load_ledger(job_factory()))
        assert sorted(record.id for record in ledger) == list(range(1, build_id + 1))

    ledger = asyncio.run(registry.load_ledger(job_factory()))
    for record in ledger:
        assert record.sha == f"sha{record.id}"
        assert record.candidate is Candidate.DEVELOPMENT


def test_retroactive_tagging(registry, job_factory):
    asyncio.run(registry.add_build(job_factory(build_id=1, success=True, sha="abc")))
    ledger = asyncio.run(registry.add_build(
        job_factory(build_id=2, success=True, sha="def", tags={"v1.0": "abc"})
    ))

    first = ledger.get(1)
    assert first.candidate is Candidate.RELEASE
    assert first.tag == "v1.0"
    second = ledger.get(2)
    assert second.candidate is Candidate.DEVELOPMENT
    assert second.tag is None


def test_first_matching_tag_wins(registry, job_factory):
    tags = {"release-candidate": "abc", "v1.0": "abc"}
    ledger = asyncio.run(registry.add_build(job_factory(build_id=1, success=True, sha="abc", tags=tags)))

    assert ledger.get(1).tag == "release-candidate"


def test_release_classification_survives_later_builds(registry, job_factory):
    asyncio.run(registry.add_build(job_factory(build_id=1, success=True, sha="abc", tags={"v1": "abc"})))
    ledger = asyncio.run(registry.add_build(job_factory(build_id=2, success=True, sha="def")))

    assert ledger.get(1).candidate is Candidate.RELEASE
    assert ledger.get(1).tag == "v1"


def test_duplicate_id_overwrites(registry, job_factory):
    asyncio.run(registry.add_build(job_factory(build_id=1, success=False, sha="old")))
    ledger = asyncio.run(registry.add_build(job_factory(build_id=1, success=True, sha="new")))

    assert len(ledger) == 1
    assert ledger.get(1).sha == "new"
    assert ledger.last_successful == 1


def test_branches_are_independent(registry, data_root, job_factory):
    asyncio.run(registry.add_build(job_factory(build_id=1, success=True)))
    asyncio.run(registry.add_build(job_factory(build_id=7, success=False, branch="dev")))

    main = asyncio.run(registry.load_ledger(job_factory()))
    dev = asyncio.run(registry.load_ledger(job_factory(branch="dev")))
    assert main.latest == 1
    assert dev.latest == 7
    assert (data_root / "octo" / "widget" / "dev" / "builds.json").is_file()


def test_invalid_job_has_no_side_effect(registry, data_root, job_factory):
    with pytest.raises(InvalidJob):
        asyncio.run(registry.add_build(job_factory(success=True)))
    with pytest.raises(InvalidJob):
        asyncio.run(registry.add_build(job_factory(build_id=1, success="true")))

    assert list(data_root.iterdir()) == []


def test_corrupt_ledger_is_reported(registry, data_root, job_factory):
    path = ledger_file(data_root)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(CorruptLedger) as exc_info:
        asyncio.run(registry.add_build(job_factory(build_id=1, success=True)))

    assert exc_info.value.path == path
    assert path.read_text(encoding="utf-8") == "{not json"


@pytest.mark.parametrize("content", ["[1, 2]", '{"1": {"id": 1}}', '{"1": 5}'])
def test_ledger_with_wrong_shape_is_corrupt(registry, data_root, job_factory, content):
    path = ledger_file(data_root)
    path.parent.mkdir(parents=True)
    path.write_text(content, encoding="utf-8")

    with pytest.raises(CorruptLedger):
        asyncio.run(registry.load_ledger(job_factory()))


def test_persist_error_when_branch_dir_cannot_be_created(registry, data_root, job_factory):
    # A plain file where the author directory should be
    (data_root / "octo").write_text("in the way", encoding="utf-8")

    with pytest.raises(PersistError) as exc_info:
        asyncio.run(registry.add_build(job_factory(build_id=1, success=True)))

    assert isinstance(exc_info.value.cause, OSError)


def test_concurrent_adds_on_one_branch_are_serialized(registry, job_factory):
    async def add_all():
        await asyncio.gather(*(
            registry.add_build(job_factory(build_id=build_id, success=True, sha=f"s{build_id}"))
            for build_id in range(1, 11)
        ))
        return await registry.load_ledger(job_factory())

    ledger = asyncio.run(add_all())
    assert sorted(record.id for record in ledger) == list(range(1, 11))


def test_list_builds_and_next_build_id(registry, job_factory):
    assert asyncio.run(registry.next_build_id(job_factory())) == 1
    for build_id in (1, 2, 5):
        asyncio.run(registry.add_build(job_factory(build_id=build_id, success=True)))

    records = asyncio.run(registry.list_builds(job_factory(), limit=2))
    assert [record.id for record in records] == [5, 2]
    assert asyncio.run(registry.next_build_id(job_factory())) == 6


def test_ledger_round_trip_keeps_every_field():
    ledger = Ledger()
    record = BuildRecord(
        id=4, sha="abc", date="2024-01-01", timestamp=1, message="m", author="a",
        avatar="av", license="MIT", status=BuildStatus.SUCCESS,
        candidate=Candidate.RELEASE, tag="v4",
    )
    ledger.append(record)

    restored = Ledger.from_dict(json.loads(json.dumps(ledger.to_dict())))
    assert restored.get(4) == record
    assert restored.latest == 4
    assert restored.last_successful == 4


def test_null_tag_does_not_release_records_without_sha(registry, job_factory):
    job = job_factory(build_id=1, success=True)
    del job["commit"]
    asyncio.run(registry.add_build(job))
    ledger = asyncio.run(registry.add_build(
        job_factory(build_id=2, success=True, sha="def", tags={"broken": None, "v2": "def"})
    ))

    assert ledger.get(1).sha is None
    assert ledger.get(1).candidate is Candidate.DEVELOPMENT
    assert ledger.get(1).tag is None
    assert ledger.get(2).tag == "v2"


def test_failed_persist_leaves_no_temp_file(registry, data_root, job_factory, monkeypatch):
    from buildboard_engine import build_registry as registry_module

    async def failing_replace(src, dst, *args, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(registry_module.aiofiles.os, "replace", failing_replace)

    with pytest.raises(PersistError):
        asyncio.run(registry.add_build(job_factory(build_id=1, success=True)))

    branch = ledger_file(data_root).parent
    assert list(branch.iterdir()) == []


def test_branch_locks_are_released_after_use(registry, job_factory):
    asyncio.run(registry.add_build(job_factory(build_id=1, success=True)))
    asyncio.run(registry.add_build(job_factory(build_id=1, success=True, branch="dev")))
    gc.collect()

    assert len(registry._locks) == 0
