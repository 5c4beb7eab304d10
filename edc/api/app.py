"""
FastAPI application factory for the clinical EDC backend.

Creates and configures the FastAPI app, the record stores, the form
session store, blob storage, the extraction LLM, and routes.

Run with:
    uvicorn edc.api.app:app --reload
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from edc.api.routes import configure_routes, install_error_handlers, router
from edc.core.records import CodeList, Study
from edc.core.schema import FormSpecification
from edc.core.session import DEFAULT_SESSION_TIMEOUT_SECONDS, FormSessionStore
from edc.core.store import RecordStore
from edc.ingestion.llm_provider import get_llm
from edc.ingestion.storage import DEFAULT_UPLOAD_PREFIX, BlobStorage, InMemoryBlobStorage, S3BlobStorage

# Load environment variables from .env
load_dotenv()

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_storage() -> BlobStorage:
    """S3 when a bucket is configured, otherwise an in-memory store."""
    prefix = os.getenv("EDC_UPLOAD_PREFIX", DEFAULT_UPLOAD_PREFIX)
    bucket = os.getenv("AWS_S3_BUCKET_NAME")
    if bucket:
        region = os.getenv("AWS_REGION", "us-east-1")
        logger.info("Uploads stored in s3://%s/%s (%s)", bucket, prefix, region)
        return S3BlobStorage(bucket, region=region, prefix=prefix)

    logger.warning("AWS_S3_BUCKET_NAME not set; uploads are kept in memory only")
    return InMemoryBlobStorage(prefix=prefix)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    application = FastAPI(
        title="Clinical EDC",
        description="Form specifications, conditional field logic and study ingestion",
        version="0.1.0",
    )

    # CORS: allow all origins in development
    allowed_origins = os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",")
    application.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Initialize LLM (OpenAI-compatible endpoint)
    try:
        llm = get_llm()
        logger.info("LLM initialized: %s", os.getenv("EDC_LLM_API_ENDPOINT", "not set"))
    except Exception as e:
        logger.warning(
            "Failed to initialize LLM: %s. "
            "The /studies/upload endpoint will fail until a valid LLM is configured.",
            e,
        )
        llm = None

    session_timeout = int(os.getenv("FORM_SESSION_TIMEOUT_SECONDS", str(DEFAULT_SESSION_TIMEOUT_SECONDS)))
    default_actor = os.getenv("EDC_DEFAULT_ACTOR", "system")

    configure_routes(
        form_store=RecordStore(FormSpecification, "form_id", "Form specification"),
        study_store=RecordStore(Study, "study_id", "Study"),
        codelist_store=RecordStore(CodeList, "code_list_id", "Code list"),
        session_store=FormSessionStore(timeout_seconds=session_timeout),
        storage=create_storage(),
        llm=llm,
        default_actor=default_actor,
    )
    install_error_handlers(application)
    application.include_router(router, prefix="/api")

    @application.on_event("startup")
    async def on_startup():
        logger.info("Clinical EDC backend starting up")
        logger.info("LLM endpoint: %s", os.getenv("EDC_LLM_API_ENDPOINT", "not set"))
        logger.info("Form session timeout: %d seconds", session_timeout)

    return application


# Create the app instance (used by uvicorn)
app = create_app()
