"""Unit tests for filesystem job persistence."""

import json
import time

import pytest

from transcritor.errors import JobNotFoundError
from transcritor.models import ChunkProgress, ChunkStatus, JobStatus, Quality, Segment


def create(job_manager, user_id="user-1", title="Entrevista 1", **kwargs):
    return job_manager.create_job(
        user_id=user_id, title=title, original_filename="entrevista.mp3", file_size=2048, **kwargs
    )


class TestJobManager:
    def test_create_job_starts_preparing(self, job_manager):
        job = create(job_manager, quality=Quality.PREMIUM)

        assert job.status == JobStatus.PREPARING
        assert job_manager.job_exists(job.id)

        loaded = job_manager.get_job(job.id)
        assert loaded.status == JobStatus.PREPARING
        assert loaded.quality == Quality.PREMIUM
        assert loaded.user_id == "user-1"

    def test_save_and_reload_chunk_progress(self, job_manager):
        job = create(job_manager)
        job.total_chunks = 2
        job.chunk_progress = [
            ChunkProgress(chunk_index=0, total_chunks=2, start_offset=0.0),
            ChunkProgress(chunk_index=1, total_chunks=2, start_offset=600.0),
        ]
        job.chunk_progress[0].transition(ChunkStatus.PROCESSING)
        job_manager.save_job(job)

        loaded = job_manager.get_job(job.id)
        assert [c.status.value for c in loaded.chunk_progress] == ["processing", "pending"]
        assert loaded.chunk_progress[1].start_offset == 600.0

    def test_metadata_is_snake_case_json(self, job_manager):
        job = create(job_manager)
        with open(job_manager.get_job_dir(job.id) / "metadata.json", encoding="utf-8") as f:
            data = json.load(f)

        assert data["status"] == "preparing"
        assert data["total_chunks"] == 0
        assert data["completed_chunks"] == 0
        assert "chunk_progress" in data

    def test_save_upload(self, job_manager, make_upload):
        job = create(job_manager)
        upload = make_upload("Entrevista.WAV")

        stored = job_manager.save_upload(job.id, upload)

        assert stored.name == "upload.wav"
        assert job_manager.get_upload_path(job.id) == stored

    def test_upload_path_ignores_intermediate_files(self, job_manager, make_upload):
        job = create(job_manager)
        stored = job_manager.save_upload(job.id, make_upload("entrevista.wma"))
        (job_manager.get_job_dir(job.id) / "upload.normalized.mp3").write_bytes(b"normalized")

        assert job_manager.get_upload_path(job.id) == stored

    def test_save_upload_unknown_job(self, job_manager, make_upload):
        with pytest.raises(JobNotFoundError):
            job_manager.save_upload("missing", make_upload())

    def test_get_missing_job(self, job_manager):
        assert job_manager.get_job("missing") is None
        with pytest.raises(JobNotFoundError):
            job_manager.require_job("missing")

    def test_save_deleted_job_raises(self, job_manager):
        job = create(job_manager)
        assert job_manager.delete_job(job.id)

        with pytest.raises(JobNotFoundError):
            job_manager.save_job(job)
        assert not job_manager.delete_job(job.id)

    def test_save_leaves_no_temp_files(self, job_manager):
        job = create(job_manager)
        for _ in range(3):
            job_manager.save_job(job)

        names = [p.name for p in job_manager.get_job_dir(job.id).iterdir()]
        assert names == ["metadata.json"]

    def test_list_jobs_filters_by_user_and_status(self, job_manager):
        first = create(job_manager, title="primeira")
        time.sleep(0.01)
        second = create(job_manager, title="segunda")
        create(job_manager, user_id="user-2")

        second.transition(JobStatus.ERROR)
        job_manager.save_job(second)

        assert [j.id for j in job_manager.list_jobs(user_id="user-1")] == [second.id, first.id]
        assert [j.id for j in job_manager.list_jobs(user_id="user-1", status_filter="error")] == [second.id]
        assert len(job_manager.list_jobs()) == 3
        assert len(job_manager.list_jobs(user_id="user-1", limit=1)) == 1

    def test_search_jobs(self, job_manager):
        job = create(job_manager, title="Entrevista com professora")
        other = create(job_manager, title="Outra")
        other.transition(JobStatus.PROCESSING)
        other.transition(JobStatus.COMPLETED)
        other.transcription_text = "Falamos sobre a ESCOLA pública"
        job_manager.save_job(other)

        assert [j.id for j in job_manager.search_jobs("user-1", "professora")] == [job.id]
        assert [j.id for j in job_manager.search_jobs("user-1", "escola")] == [other.id]
        assert job_manager.search_jobs("user-2", "escola") == []


class TestUpdateTranscript:
    def test_title_can_change_any_time(self, job_manager):
        job = create(job_manager)
        updated = job_manager.update_transcript(job.id, title="Novo título")
        assert updated.title == "Novo título"

    def test_text_edits_require_completed_job(self, job_manager):
        job = create(job_manager)
        with pytest.raises(ValueError):
            job_manager.update_transcript(job.id, transcription_text="texto")

    def test_text_edit_recomputes_word_count(self, job_manager):
        job = create(job_manager)
        job.transition(JobStatus.PROCESSING)
        job.transition(JobStatus.COMPLETED)
        job.transcription_text = "um dois"
        job.word_count = 2
        job_manager.save_job(job)

        updated = job_manager.update_transcript(
            job.id,
            transcription_text=" ".join(["palavra"] * 260),
            segments=[Segment(0.0, 1.0, "palavra", speaker="Entrevistador")],
        )

        assert updated.word_count == 260
        assert updated.page_count == 2
        assert job_manager.get_job(job.id).segments[0].speaker == "Entrevistador"
