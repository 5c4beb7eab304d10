"""
Document ingestion pipeline.

Runs the stages for one uploaded protocol document, strictly in order:

    upload -> extract text -> LLM extraction -> normalize -> validate -> persist

A failing stage raises PipelineStageError naming the stage. Earlier
stages are not undone: a blob uploaded before a later failure stays in
storage.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from edc.core.records import Study, UploadedFile
from edc.core.schema import EDCModel
from edc.core.store import RecordNotFoundError, RecordStore
from edc.core.utils import to_number
from edc.ingestion.extraction import (
    ExtractionError,
    ExtractionResult,
    extract_study_data_from_document,
    extract_study_data_from_text,
)
from edc.ingestion.files import FileProcessingError, file_extension, process_file_content
from edc.ingestion.normalize import normalize_extracted_data, validate_extracted_data
from edc.ingestion.storage import BlobStorage, StorageError, StoredBlob

logger = logging.getLogger(__name__)


class PipelineStage:
    UPLOAD = "upload"
    PROCESS = "process"
    EXTRACT = "extract"
    PERSIST = "persist"


_STAGE_MESSAGES = {
    PipelineStage.UPLOAD: "Failed to upload file to storage",
    PipelineStage.PROCESS: "Failed to process file",
    PipelineStage.EXTRACT: "Failed to extract data",
    PipelineStage.PERSIST: "Failed to save study",
}


class PipelineStageError(Exception):
    """A pipeline stage failed; ``str()`` is the user-facing message."""

    def __init__(self, stage: str, detail: str):
        self.stage = stage
        self.detail = detail
        super().__init__(f"{_STAGE_MESSAGES[stage]}: {detail}")


class IngestionResult(EDCModel):
    study: Study
    blob: StoredBlob
    extraction: ExtractionResult
    validation: dict[str, Any]


# Study attributes populated from extracted data, with the fallback used
# when the extracted value is missing, empty or of the wrong shape.
_STUDY_DEFAULTS: dict[str, Any] = {
    "studyName": "New Study",
    "studyDescription": "",
    "protocolNumber": "",
    "protocolVersion": "1.0",
    "protocolTitle": "",
    "protocolShortTitle": "",
    "studyType": "INTERVENTIONAL",
    "studyPhase": "I",
    "therapeuticArea": "",
    "indication": "",
    "keywords": [],
    "sponsor": {},
    "principalInvestigator": {},
    "studyDesign": {},
    "population": {},
    "inclusionCriteria": [],
    "exclusionCriteria": [],
    "visits": [],
    "epochs": [],
    "treatmentArms": [],
    "objectives": [],
    "assessments": {},
    "milestones": {},
}


def build_study_fields(normalized: dict[str, Any]) -> dict[str, Any]:
    """Select study attributes from normalized data, falling back to defaults."""
    fields = {}
    for key, default in _STUDY_DEFAULTS.items():
        value = normalized.get(key)
        fields[key] = value if value and isinstance(value, type(default)) else default

    enrollment = to_number(normalized.get("plannedEnrollment"))
    fields["plannedEnrollment"] = int(enrollment) if math.isfinite(enrollment) and enrollment > 0 else 0
    return fields


class IngestionPipeline:
    """Turns an uploaded document into a new or updated study.

    Args:
        storage: Blob storage for the raw upload.
        study_store: Study records.
        llm: A LangChain chat model (anything with ``async ainvoke``).
    """

    def __init__(self, storage: BlobStorage, study_store: RecordStore[Study], llm: Any):
        self.storage = storage
        self.study_store = study_store
        self.llm = llm

    async def run(
        self,
        data: bytes,
        file_name: str,
        content_type: str,
        actor: str,
        study_id: str | None = None,
    ) -> IngestionResult:
        """Run every stage for one document.

        Args:
            data: Raw file bytes.
            file_name: Original file name (its extension selects handling).
            content_type: MIME type reported by the client.
            actor: Identity recorded on the created or updated study.
            study_id: Attach to this existing study instead of creating one.

        Raises:
            PipelineStageError: If any stage fails.
        """
        try:
            blob = self.storage.upload(data, file_name, content_type)
        except StorageError as e:
            raise PipelineStageError(PipelineStage.UPLOAD, str(e)) from e
        logger.info("Uploaded %s to %s", file_name, blob.uri)

        try:
            processed = process_file_content(data, file_name)
        except FileProcessingError as e:
            raise PipelineStageError(PipelineStage.PROCESS, str(e)) from e

        if self.llm is None:
            raise PipelineStageError(PipelineStage.EXTRACT, "No extraction model is configured")
        try:
            if file_extension(file_name) == "pdf":
                extraction = await extract_study_data_from_document(
                    self.llm, data, file_name, processed.file_type,
                )
            else:
                extraction = await extract_study_data_from_text(
                    self.llm, processed.content, file_name, processed.file_type,
                )
        except ExtractionError as e:
            raise PipelineStageError(PipelineStage.EXTRACT, str(e)) from e
        logger.info(
            "Extracted %d fields from %s (confidence %.2f)",
            len(extraction.extracted_data), file_name, extraction.confidence,
        )

        normalized = normalize_extracted_data(extraction.extracted_data)
        validation = validate_extracted_data(normalized)

        uploaded = UploadedFile(
            file_name=blob.file_name,
            original_name=file_name,
            s3_uri=blob.uri,
            file_size=blob.file_size,
            content_type=blob.content_type,
            upload_date=datetime.now(timezone.utc),
            extracted_data=normalized,
            extraction_confidence=extraction.confidence,
            processing_time=extraction.processing_time,
            error_message=", ".join(validation["errors"]) or None,
        )

        try:
            study = self._persist(uploaded, normalized, actor, study_id)
        except (RecordNotFoundError, ValidationError) as e:
            raise PipelineStageError(PipelineStage.PERSIST, str(e)) from e

        return IngestionResult(
            study=study,
            blob=blob,
            extraction=extraction,
            validation=validation,
        )

    def _persist(
        self,
        uploaded: UploadedFile,
        normalized: dict[str, Any],
        actor: str,
        study_id: str | None,
    ) -> Study:
        if study_id:
            existing = self.study_store.get(study_id)
            if existing is None:
                raise RecordNotFoundError(self.study_store.kind, study_id)
            files = [f.model_dump(by_alias=True) for f in existing.uploaded_files]
            files.append(uploaded.model_dump(by_alias=True))
            return self.study_store.update(study_id, {"uploadedFiles": files}, actor)

        study = Study.model_validate({
            "studyId": f"STUDY-{int(time.time() * 1000)}",
            **build_study_fields(normalized),
            "uploadedFiles": [uploaded.model_dump(by_alias=True)],
            "studyStatus": "DRAFT",
            "processingStatus": "COMPLETED",
        })
        return self.study_store.create(study, actor)
