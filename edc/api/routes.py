"""
FastAPI routes for the clinical EDC backend.

Endpoints (all under /api):
- /studies: study CRUD, clone, export, document upload
- /forms: form specification CRUD
- /forms/{formId}/evaluate: field states for a set of values
- /forms/{formId}/submit: submit-time validation
- /forms/{formId}/sessions: open a form-entry session
- /sessions/{sessionId}: read, update, submit, close a session
- /codelists: code list CRUD
- /schemas: bundled example form specifications
- /health: health check

Every JSON response is an envelope: {"success": bool, "data" | "error", "message"?}.
"""

import logging
import time
from datetime import date
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from edc.core.records import CodeList, Study
from edc.core.schema import EDCModel, FormSpecification, load_form_file
from edc.core.session import FormSessionStore, Session
from edc.core.store import DuplicateRecordError, RecordNotFoundError, RecordStore
from edc.core.validation import SubmissionMode, evaluate_form, submit_form
from edc.ingestion.files import ALLOWED_EXTENSIONS, is_valid_file_type
from edc.ingestion.pipeline import IngestionPipeline, PipelineStageError
from edc.ingestion.storage import BlobStorage, StorageError

logger = logging.getLogger(__name__)

router = APIRouter()

# These will be injected by the app factory
_form_store: RecordStore[FormSpecification] | None = None
_study_store: RecordStore[Study] | None = None
_codelist_store: RecordStore[CodeList] | None = None
_session_store: FormSessionStore | None = None
_storage: BlobStorage | None = None
_pipeline: IngestionPipeline | None = None
_default_actor = "system"

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"

FORM_REQUIRED_KEYS = ("formId", "studyId", "formName", "formCode", "cdiscDomain", "cdashCategory")
CODELIST_REQUIRED_KEYS = (
    "codeListId", "codeListName", "codeListCode", "cdiscDomain", "cdiscVariable", "cdashQuestion",
)
STUDY_REQUIRED_KEYS = (
    "studyId", "studyName", "studyDescription", "protocolNumber",
    "studyType", "studyPhase", "therapeuticArea", "indication",
)


def configure_routes(
    form_store: RecordStore[FormSpecification],
    study_store: RecordStore[Study],
    codelist_store: RecordStore[CodeList],
    session_store: FormSessionStore,
    storage: BlobStorage | None = None,
    llm: Any = None,
    default_actor: str = "system",
):
    """Inject stores, blob storage and the extraction model into the routes module.

    Called by the app factory during startup.
    """
    global _form_store, _study_store, _codelist_store, _session_store
    global _storage, _pipeline, _default_actor
    _form_store = form_store
    _study_store = study_store
    _codelist_store = codelist_store
    _session_store = session_store
    _storage = storage
    _pipeline = IngestionPipeline(storage, study_store, llm) if storage is not None else None
    _default_actor = default_actor


def install_error_handlers(app: FastAPI) -> None:
    """Render errors in the response envelope instead of FastAPI's default shape."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid request",
                "details": [err.get("msg", "") for err in exc.errors()],
            },
        )


# --- Helpers ---


def get_actor(x_user_id: str | None = Header(default=None)) -> str:
    """Identity of the caller, from the X-User-Id header."""
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return _default_actor


def _require_configured() -> None:
    if _form_store is None or _study_store is None or _codelist_store is None or _session_store is None:
        raise HTTPException(status_code=500, detail="Server not properly configured")


def _envelope(data: Any = None, message: str | None = None, **extra) -> dict:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return body


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def _validation_message(e: ValidationError) -> str:
    return "; ".join(err.get("msg", "") for err in e.errors())


def _check_required_keys(body: dict[str, Any], keys: tuple[str, ...]) -> None:
    for key in keys:
        if not body.get(key):
            raise HTTPException(status_code=400, detail=f"Missing required field: {key}")


def _parse(model: type[BaseModel], body: dict[str, Any], label: str):
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {label}: {_validation_message(e)}")


def _create(store: RecordStore, record: BaseModel, actor: str, label: str) -> dict:
    try:
        created = store.create(record, actor)
    except DuplicateRecordError:
        raise HTTPException(status_code=409, detail=f"{label} with this ID already exists")
    return _dump(created)


def _update(store: RecordStore, key: str, changes: dict[str, Any], actor: str, label: str) -> dict:
    try:
        updated = store.update(key, changes, actor)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {label.lower()}: {_validation_message(e)}")
    return _dump(updated)


def _delete(store: RecordStore, key: str, label: str) -> None:
    try:
        store.delete(key)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail=f"{label} not found")


def _get_or_404(store: RecordStore, key: str, label: str):
    record = store.get(key)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return record


def _get_session_or_404(session_id: str, actor: str) -> Session:
    # Another user's session is reported as missing
    session = _session_store.get_session(session_id)
    if session is None or session.actor != actor:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return session


def _session_snapshot(session_id: str, session: Session) -> dict:
    form_session = session.form_session
    return {
        "sessionId": session_id,
        "formId": session.form_id,
        "values": form_session.get_values(),
        "fieldStates": {
            field_id: _dump(state) for field_id, state in form_session.get_field_states().items()
        },
    }


# --- Request Models ---


class EvaluateRequest(EDCModel):
    values: dict[str, Any] = Field(default_factory=dict)
    read_only: bool = False


class SubmitRequest(EDCModel):
    values: dict[str, Any] = Field(default_factory=dict)
    mode: SubmissionMode = SubmissionMode.VISIBLE_REQUIRED


class CreateSessionRequest(EDCModel):
    initial_values: dict[str, Any] = Field(default_factory=dict)
    read_only: bool = False


class SetValuesRequest(EDCModel):
    values: dict[str, Any]


class SessionSubmitRequest(EDCModel):
    mode: SubmissionMode = SubmissionMode.VISIBLE_REQUIRED


# =============================================================
# Studies
# =============================================================


@router.get("/studies")
async def list_studies(
    status: str | None = None,
    therapeutic_area: str | None = Query(default=None, alias="therapeuticArea"),
    sponsor: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    """List studies, newest first, with optional filters and pagination."""
    _require_configured()
    filters = {
        "study_status": status.upper() if status else None,
        "therapeutic_area": therapeutic_area,
        "sponsor.name": sponsor,
    }
    studies = _study_store.find(filters)
    total = len(studies)
    page_items = studies[(page - 1) * limit : page * limit]
    return _envelope(
        [_dump(s) for s in page_items],
        count=len(page_items),
        pagination={
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    )


@router.post("/studies", status_code=201)
async def create_study(body: dict[str, Any] = Body(...), actor: str = Depends(get_actor)):
    _require_configured()
    _check_required_keys(body, STUDY_REQUIRED_KEYS)
    study = _parse(Study, body, "study")
    return _envelope(_create(_study_store, study, actor, "Study"), message="Study created successfully")


@router.post("/studies/upload")
async def upload_study_document(
    file: UploadFile | None = File(default=None),
    study_id: str | None = Form(default=None, alias="studyId"),
    actor: str = Depends(get_actor),
):
    """Upload a protocol document and populate a study from it.

    Creates a new study unless studyId names an existing one, in which
    case the document is attached to it.
    """
    _require_configured()
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    if not is_valid_file_type(file.filename):
        supported = ", ".join(ext.upper() for ext in ALLOWED_EXTENSIONS)
        raise HTTPException(status_code=400, detail=f"Invalid file type. Supported types: {supported}")

    if _pipeline is None:
        raise HTTPException(status_code=500, detail="Document ingestion is not configured")

    if study_id and _study_store.get(study_id) is None:
        raise HTTPException(status_code=404, detail="Study not found")

    data = await file.read()
    try:
        result = await _pipeline.run(
            data,
            file.filename,
            file.content_type or "application/octet-stream",
            actor,
            study_id=study_id or None,
        )
    except PipelineStageError as e:
        logger.error("Upload of %s failed at %s: %s", file.filename, e.stage, e.detail)
        raise HTTPException(status_code=500, detail=str(e))

    return _envelope({
        "study": _dump(result.study),
        "extractionResult": {
            "confidence": result.extraction.confidence,
            "processingTime": result.extraction.processing_time,
            "validation": result.validation,
        },
        "fileInfo": {
            "fileName": result.blob.file_name,
            "s3Uri": result.blob.uri,
            "fileSize": result.blob.file_size,
        },
    })


@router.get("/studies/files/download")
async def download_study_file(s3_uri: str = Query(..., alias="s3Uri")):
    """Return a temporary download URL for an uploaded document."""
    if _storage is None:
        raise HTTPException(status_code=500, detail="File storage is not configured")
    try:
        url = _storage.download_url(s3_uri)
    except StorageError as e:
        raise HTTPException(status_code=404, detail=f"File not available: {e}")
    return _envelope({"url": url})


@router.get("/studies/{study_id}")
async def get_study(study_id: str):
    _require_configured()
    return _envelope(_dump(_get_or_404(_study_store, study_id, "Study")))


@router.put("/studies/{study_id}")
async def update_study(study_id: str, body: dict[str, Any] = Body(...), actor: str = Depends(get_actor)):
    _require_configured()
    return _envelope(
        _update(_study_store, study_id, body, actor, "Study"),
        message="Study updated successfully",
    )


@router.delete("/studies/{study_id}")
async def delete_study(study_id: str):
    _require_configured()
    _delete(_study_store, study_id, "Study")
    return _envelope(message="Study deleted successfully")


@router.post("/studies/{study_id}/clone", status_code=201)
async def clone_study(study_id: str, actor: str = Depends(get_actor)):
    """Copy a study under a new ID, reset to DRAFT."""
    _require_configured()
    original = _get_or_404(_study_store, study_id, "Study")
    new_id = f"{study_id}-COPY-{int(time.time() * 1000)}"
    clone = original.model_copy(deep=True, update={
        "study_id": new_id,
        "study_name": f"{original.study_name} (Copy)",
        "study_status": "DRAFT",
    })
    return _envelope(
        _create(_study_store, clone, actor, "Study"),
        message="Study cloned successfully",
        newStudyId=new_id,
    )


@router.get("/studies/{study_id}/export")
async def export_study(study_id: str):
    """Download a study as a JSON file."""
    _require_configured()
    study = _get_or_404(_study_store, study_id, "Study")
    filename = f"study-{study.study_id}-{date.today().isoformat()}.json"
    return JSONResponse(
        content=_dump(study),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# =============================================================
# Form specifications
# =============================================================


@router.get("/forms")
async def list_forms(
    study_id: str | None = Query(default=None, alias="studyId"),
    cdisc_domain: str | None = Query(default=None, alias="cdiscDomain"),
    assessment_category: str | None = Query(default=None, alias="assessmentCategory"),
    status: str | None = None,
):
    _require_configured()
    forms = _form_store.find({
        "study_id": study_id,
        "cdisc_domain": cdisc_domain,
        "assessment_category": assessment_category,
        "status": status,
    })
    return _envelope([_dump(f) for f in forms], count=len(forms))


@router.post("/forms", status_code=201)
async def create_form(body: dict[str, Any] = Body(...), actor: str = Depends(get_actor)):
    _require_configured()
    _check_required_keys(body, FORM_REQUIRED_KEYS)
    form = _parse(FormSpecification, body, "form specification")
    return _envelope(
        _create(_form_store, form, actor, "Form specification"),
        message="Form specification created successfully",
    )


@router.get("/forms/{form_id}")
async def get_form(form_id: str):
    _require_configured()
    return _envelope(_dump(_get_or_404(_form_store, form_id, "Form specification")))


@router.put("/forms/{form_id}")
async def update_form(form_id: str, body: dict[str, Any] = Body(...), actor: str = Depends(get_actor)):
    _require_configured()
    return _envelope(
        _update(_form_store, form_id, body, actor, "Form specification"),
        message="Form specification updated successfully",
    )


@router.delete("/forms/{form_id}")
async def delete_form(form_id: str):
    _require_configured()
    _delete(_form_store, form_id, "Form specification")
    return _envelope(message="Form specification deleted successfully")


@router.post("/forms/{form_id}/evaluate")
async def evaluate_form_values(form_id: str, request: EvaluateRequest):
    """Compute visible/enabled/required state and errors for every field."""
    _require_configured()
    form = _get_or_404(_form_store, form_id, "Form specification")
    states = evaluate_form(form, request.values, read_only=request.read_only)
    return _envelope({field_id: _dump(state) for field_id, state in states.items()})


@router.post("/forms/{form_id}/submit")
async def submit_form_values(form_id: str, request: SubmitRequest):
    """Validate a submission. Any failing field blocks the whole submission."""
    _require_configured()
    form = _get_or_404(_form_store, form_id, "Form specification")
    result = submit_form(form, request.values, mode=request.mode)
    if not result.success:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Form validation failed", "errors": result.errors},
        )
    return _envelope(result.data, message="Form submitted successfully")


@router.post("/forms/{form_id}/sessions", status_code=201)
async def create_form_session(
    form_id: str,
    request: CreateSessionRequest | None = None,
    actor: str = Depends(get_actor),
):
    """Open a form-entry session for a stored form."""
    _require_configured()
    form = _get_or_404(_form_store, form_id, "Form specification")
    request = request or CreateSessionRequest()
    session_id, session = _session_store.create_session(
        form,
        actor,
        initial_values=request.initial_values,
        read_only=request.read_only,
    )
    return _envelope(_session_snapshot(session_id, session))


# =============================================================
# Form-entry sessions
# =============================================================


@router.get("/sessions")
async def list_my_sessions(actor: str = Depends(get_actor)):
    """List the caller's open form-entry sessions."""
    _require_configured()
    sessions = _session_store.sessions_for(actor)
    return _envelope(
        [{"sessionId": sid, "formId": s.form_id} for sid, s in sessions.items()],
        count=len(sessions),
    )


@router.get("/sessions/{session_id}")
async def get_form_session(session_id: str, actor: str = Depends(get_actor)):
    _require_configured()
    return _envelope(_session_snapshot(session_id, _get_session_or_404(session_id, actor)))


@router.put("/sessions/{session_id}/values")
async def set_session_values(
    session_id: str, request: SetValuesRequest, actor: str = Depends(get_actor),
):
    """Store values; unknown field IDs are reported, not stored."""
    _require_configured()
    session = _get_session_or_404(session_id, actor)
    accepted, rejected = session.form_session.set_values(request.values)
    snapshot = _session_snapshot(session_id, session)
    snapshot["accepted"] = accepted
    snapshot["rejected"] = rejected
    return _envelope(snapshot)


@router.post("/sessions/{session_id}/submit")
async def submit_session(
    session_id: str,
    request: SessionSubmitRequest | None = None,
    actor: str = Depends(get_actor),
):
    _require_configured()
    session = _get_session_or_404(session_id, actor)
    mode = request.mode if request else SubmissionMode.VISIBLE_REQUIRED
    result = session.form_session.submit(mode)
    if not result.success:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Form validation failed", "errors": result.errors},
        )
    return _envelope(result.data, message="Form submitted successfully")


@router.delete("/sessions/{session_id}")
async def delete_form_session(session_id: str, actor: str = Depends(get_actor)):
    _require_configured()
    _get_session_or_404(session_id, actor)
    _session_store.delete_session(session_id)
    return _envelope(message="Session closed")


# =============================================================
# Code lists
# =============================================================


@router.get("/codelists")
async def list_codelists(
    cdisc_domain: str | None = Query(default=None, alias="cdiscDomain"),
    cdisc_variable: str | None = Query(default=None, alias="cdiscVariable"),
    status: str | None = None,
    approval_status: str | None = Query(default=None, alias="approvalStatus"),
):
    _require_configured()
    code_lists = _codelist_store.find({
        "cdisc_domain": cdisc_domain,
        "cdisc_variable": cdisc_variable,
        "status": status,
        "approval_status": approval_status,
    })
    return _envelope([_dump(c) for c in code_lists], count=len(code_lists))


@router.post("/codelists", status_code=201)
async def create_codelist(body: dict[str, Any] = Body(...), actor: str = Depends(get_actor)):
    _require_configured()
    _check_required_keys(body, CODELIST_REQUIRED_KEYS)
    code_list = _parse(CodeList, body, "code list")
    return _envelope(
        _create(_codelist_store, code_list, actor, "Code list"),
        message="Code list created successfully",
    )


@router.get("/codelists/{code_list_id}")
async def get_codelist(code_list_id: str):
    _require_configured()
    return _envelope(_dump(_get_or_404(_codelist_store, code_list_id, "Code list")))


@router.put("/codelists/{code_list_id}")
async def update_codelist(code_list_id: str, body: dict[str, Any] = Body(...), actor: str = Depends(get_actor)):
    _require_configured()
    return _envelope(
        _update(_codelist_store, code_list_id, body, actor, "Code list"),
        message="Code list updated successfully",
    )


@router.delete("/codelists/{code_list_id}")
async def delete_codelist(code_list_id: str):
    _require_configured()
    _delete(_codelist_store, code_list_id, "Code list")
    return _envelope(message="Code list deleted successfully")


# =============================================================
# Example schemas and health
# =============================================================


@router.get("/schemas")
async def list_schemas():
    """List bundled example form specifications."""
    schemas = []
    if SCHEMAS_DIR.exists():
        for path in sorted(SCHEMAS_DIR.glob("*.yaml")):
            try:
                form = load_form_file(path)
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable schema %s: %s", path.name, e)
                continue
            schemas.append({
                "filename": path.name,
                "formId": form.form_id,
                "formName": form.form_name,
                "fieldCount": len(form.fields),
            })
    return _envelope(schemas, count=len(schemas))


@router.get("/schemas/{filename}")
async def get_schema(filename: str):
    """Get a bundled example form specification by filename."""
    path = SCHEMAS_DIR / filename
    if path.parent != SCHEMAS_DIR or not path.is_file():
        raise HTTPException(status_code=404, detail=f"Schema '{filename}' not found")

    try:
        form = load_form_file(path)
    except (OSError, ValueError) as e:
        raise HTTPException(status_code=500, detail=f"Error reading schema file '{filename}': {e}")
    return _envelope(_dump(form))


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return _envelope({
        "status": "healthy",
        "activeSessions": _session_store.count() if _session_store else 0,
        "ingestionConfigured": _pipeline is not None and _pipeline.llm is not None,
    })
