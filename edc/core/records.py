"""
Study and code-list records.

Most nested study structures (design, population, arms, visits) are
produced by document extraction and edited through loosely typed
forms, so they are kept as plain dicts and lists rather than modelled
field by field. Unknown top-level keys are preserved.
"""

from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field

from edc.core.schema import AuditedModel, EDCModel


class UploadedFile(EDCModel):
    """A source document attached to a study."""

    file_name: str
    original_name: str
    s3_uri: str
    file_size: int = 0
    content_type: str = "application/octet-stream"
    upload_date: datetime | None = None
    processing_status: str = "COMPLETED"
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    extraction_confidence: float | None = None
    processing_time: float | None = None
    error_message: str | None = None


class Study(AuditedModel):
    """Clinical study metadata."""

    model_config = ConfigDict(extra="allow")

    study_id: str = Field(..., min_length=1)
    study_name: str = ""
    study_description: str = ""
    protocol_number: str = ""
    protocol_version: str = "1.0"
    protocol_title: str = ""
    protocol_short_title: str = ""
    study_type: str = "INTERVENTIONAL"
    study_phase: str = "I"
    therapeutic_area: str = ""
    indication: str = ""
    keywords: list[str] = Field(default_factory=list)
    sponsor: dict[str, Any] = Field(default_factory=dict)
    principal_investigator: dict[str, Any] = Field(default_factory=dict)
    planned_enrollment: int = 0
    current_enrollment: int = 0
    study_design: dict[str, Any] = Field(default_factory=dict)
    population: dict[str, Any] = Field(default_factory=dict)
    inclusion_criteria: list[dict[str, Any]] = Field(default_factory=list)
    exclusion_criteria: list[dict[str, Any]] = Field(default_factory=list)
    visits: list[dict[str, Any]] = Field(default_factory=list)
    epochs: list[dict[str, Any]] = Field(default_factory=list)
    treatment_arms: list[dict[str, Any]] = Field(default_factory=list)
    objectives: list[dict[str, Any]] = Field(default_factory=list)
    assessments: dict[str, Any] = Field(default_factory=dict)
    milestones: dict[str, Any] = Field(default_factory=dict)
    uploaded_files: list[UploadedFile] = Field(default_factory=list)
    study_status: str = "DRAFT"
    processing_status: str = "COMPLETED"


class Code(EDCModel):
    model_config = ConfigDict(extra="allow")

    code: str
    label: str
    description: str | None = None
    order: int = 0
    active: bool = True
    deprecated: bool = False


class CodeList(AuditedModel):
    """A controlled terminology list (CDISC or sponsor-defined)."""

    model_config = ConfigDict(extra="allow")

    code_list_id: str = Field(..., min_length=1)
    code_list_name: str = ""
    code_list_code: str = ""
    code_list_version: str = "1.0"
    cdisc_domain: str = ""
    cdisc_variable: str = ""
    cdash_question: str = ""
    code_list_type: str = "CONTROLLED"
    status: str = "ACTIVE"
    approval_status: str = "DRAFT"
    codes: list[Code] = Field(default_factory=list)
