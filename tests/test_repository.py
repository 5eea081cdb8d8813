"""Tests for the SQLite job repository."""

import asyncio

import pytest

from rd_downloader.exceptions import PersistenceError
from rd_downloader.models.job import Job, Phase, TorrentFile


def _create(repository, **fields) -> Job:
    fields.setdefault("external_id", "RD1")
    return asyncio.run(repository.create(Job(**fields)))


class TestJobRepository:
    def test_create_assigns_sequential_ids(self, repository):
        first = _create(repository, external_id="RD1")
        second = _create(repository, external_id="RD2")

        assert first.id is not None
        assert second.id == first.id + 1

    def test_round_trip_keeps_every_field(self, repository):
        job = _create(
            repository,
            name="Show S01",
            phase=Phase.DOWNLOADING,
            progress=42.5,
            total_bytes=2048,
            downloaded_bytes=1024,
            available_files=[TorrentFile(id=1, path="/Show/E01.mkv", bytes=1024)],
            selected_file_ids=[1],
            resource_links=["https://real-debrid.com/d/ABC"],
            local_paths=["/library/E01.mkv"],
            fetch_subtitles=False,
            subtitle_outcome="Disabled",
        )

        stored = asyncio.run(repository.get(job.id))

        assert stored.model_dump(exclude={"created_at", "updated_at"}) == job.model_dump(
            exclude={"created_at", "updated_at"}
        )
        assert stored.created_at == job.created_at

    def test_missing_job_is_none(self, repository):
        assert asyncio.run(repository.get(999)) is None
        assert asyncio.run(repository.get_by_external_id("nope")) is None

    def test_get_by_external_id(self, repository):
        job = _create(repository, external_id="ABCDEF")

        assert asyncio.run(repository.get_by_external_id("ABCDEF")).id == job.id

    def test_duplicate_external_id_is_rejected(self, repository):
        _create(repository, external_id="RD1")

        with pytest.raises(PersistenceError):
            _create(repository, external_id="RD1")

    def test_update_writes_full_record(self, repository):
        job = _create(repository)
        job.phase = Phase.AWAITING_SELECTION
        job.available_files = [TorrentFile(id=3, path="a.mkv")]

        asyncio.run(repository.update(job))

        stored = asyncio.run(repository.get(job.id))
        assert stored.phase == Phase.AWAITING_SELECTION
        assert stored.available_files[0].id == 3

    def test_partial_updates(self, repository):
        job = _create(repository)

        asyncio.run(repository.update_phase(job.id, Phase.DOWNLOADING))
        asyncio.run(repository.update_progress(job.id, 12.5, 300))
        stored = asyncio.run(repository.get(job.id))
        assert (stored.phase, stored.progress, stored.downloaded_bytes) == (
            Phase.DOWNLOADING,
            12.5,
            300,
        )

        asyncio.run(repository.update_error(job.id, "Torrent error: dead"))
        stored = asyncio.run(repository.get(job.id))
        assert stored.phase == Phase.ERROR
        assert stored.error_detail == "Torrent error: dead"

    def test_list_queries_filter_by_phase(self, repository):
        for phase in Phase:
            _create(repository, external_id=f"RD-{phase.value}", phase=phase)

        active = {j.phase for j in asyncio.run(repository.list_active())}
        resumable = {j.phase for j in asyncio.run(repository.list_resumable())}
        everything = asyncio.run(repository.list_all())

        assert Phase.COMPLETE not in active and Phase.ERROR not in active
        assert len(active) == 5
        assert resumable == {Phase.PENDING, Phase.PROCESSING, Phase.DOWNLOADING}
        assert len(everything) == len(Phase)

    def test_delete(self, repository):
        job = _create(repository)

        assert asyncio.run(repository.delete(job.id)) is True
        assert asyncio.run(repository.delete(job.id)) is False
        assert asyncio.run(repository.get(job.id)) is None
