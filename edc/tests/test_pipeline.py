"""
Tests for the document ingestion pipeline.

Tests cover:
- New study created from extracted data
- Upload attached to an existing study
- Each stage's failure is reported with its stage name
- Blobs uploaded before a later failure stay in storage
"""

import pytest

from edc.core.records import Study
from edc.core.store import RecordStore
from edc.ingestion.pipeline import IngestionPipeline, PipelineStage, PipelineStageError
from edc.ingestion.storage import InMemoryBlobStorage, StorageError


EXTRACTED = {
    "studyName": "ASTHMA-2",
    "protocolNumber": "P-002",
    "studyPhase": "2",
    "plannedEnrollment": 80,
    "inclusionCriteria": ["Age 18-65"],
}


class FailingStorage(InMemoryBlobStorage):
    def upload(self, data, file_name, content_type):
        raise StorageError("bucket unavailable")


@pytest.fixture
def study_store() -> RecordStore[Study]:
    return RecordStore(Study, "study_id", "Study")


@pytest.fixture
def storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage(bucket="test")


class TestIngestionPipeline:
    @pytest.mark.asyncio
    async def test_creates_study(self, storage, study_store, mock_llm_class):
        pipeline = IngestionPipeline(storage, study_store, mock_llm_class([EXTRACTED]))
        result = await pipeline.run(b"Protocol text", "protocol.txt", "text/plain", "alice")

        study = result.study
        assert study.study_id.startswith("STUDY-")
        assert study.study_name == "ASTHMA-2"
        assert study.study_phase == "II"
        assert study.planned_enrollment == 80
        assert study.inclusion_criteria[0]["id"] == "IC001"
        assert study.created_by == "alice"
        assert study.study_status == "DRAFT"

        uploaded = study.uploaded_files[0]
        assert uploaded.original_name == "protocol.txt"
        assert uploaded.s3_uri == result.blob.uri
        assert uploaded.extracted_data["studyPhase"] == "II"
        assert storage.get(result.blob.uri) == b"Protocol text"
        assert study_store.get(study.study_id) == study
        assert result.validation["isValid"] is True

    @pytest.mark.asyncio
    async def test_attaches_to_existing_study(self, storage, study_store, mock_llm_class):
        study_store.create(Study.model_validate({"studyId": "S1", "studyName": "Existing"}), "alice")
        pipeline = IngestionPipeline(storage, study_store, mock_llm_class([EXTRACTED]))

        result = await pipeline.run(b"Amendment", "amendment.md", "text/markdown", "bob", study_id="S1")

        assert result.study.study_id == "S1"
        assert result.study.study_name == "Existing"
        assert len(result.study.uploaded_files) == 1
        assert result.study.updated_by == "bob"
        assert study_store.count() == 1

    @pytest.mark.asyncio
    async def test_pdf_sent_as_document(self, storage, study_store, mock_llm_class):
        llm = mock_llm_class([EXTRACTED])
        pipeline = IngestionPipeline(storage, study_store, llm)
        await pipeline.run(b"%PDF-1.7", "protocol.pdf", "application/pdf", "alice")
        assert isinstance(llm.calls[0][1].content, list)

    @pytest.mark.asyncio
    async def test_upload_failure(self, study_store, mock_llm_class):
        pipeline = IngestionPipeline(FailingStorage(), study_store, mock_llm_class([EXTRACTED]))
        with pytest.raises(PipelineStageError) as exc_info:
            await pipeline.run(b"x", "p.txt", "text/plain", "alice")
        assert exc_info.value.stage == PipelineStage.UPLOAD
        assert str(exc_info.value) == "Failed to upload file to storage: bucket unavailable"

    @pytest.mark.asyncio
    async def test_process_failure_keeps_blob(self, storage, study_store, mock_llm_class):
        pipeline = IngestionPipeline(storage, study_store, mock_llm_class([EXTRACTED]))
        with pytest.raises(PipelineStageError) as exc_info:
            await pipeline.run(b"\xff\xfe", "p.txt", "text/plain", "alice")
        assert exc_info.value.stage == PipelineStage.PROCESS
        assert len(storage._blobs) == 1
        assert study_store.count() == 0

    @pytest.mark.asyncio
    async def test_no_llm(self, storage, study_store):
        pipeline = IngestionPipeline(storage, study_store, None)
        with pytest.raises(PipelineStageError) as exc_info:
            await pipeline.run(b"x", "p.txt", "text/plain", "alice")
        assert exc_info.value.stage == PipelineStage.EXTRACT

    @pytest.mark.asyncio
    async def test_extraction_failure(self, storage, study_store, mock_llm_class):
        pipeline = IngestionPipeline(storage, study_store, mock_llm_class(["no json here"]))
        with pytest.raises(PipelineStageError) as exc_info:
            await pipeline.run(b"x", "p.txt", "text/plain", "alice")
        assert exc_info.value.stage == PipelineStage.EXTRACT
        assert str(exc_info.value).startswith("Failed to extract data:")

    @pytest.mark.asyncio
    async def test_missing_study_is_persist_failure(self, storage, study_store, mock_llm_class):
        pipeline = IngestionPipeline(storage, study_store, mock_llm_class([EXTRACTED]))
        with pytest.raises(PipelineStageError) as exc_info:
            await pipeline.run(b"x", "p.txt", "text/plain", "alice", study_id="GHOST")
        assert exc_info.value.stage == PipelineStage.PERSIST
