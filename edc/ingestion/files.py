"""
Uploaded file type checks and text extraction.

Only plain-text formats are decoded here. PDF bytes go to the LLM as a
document, and DOCX/XLSX produce a placeholder until a real extractor
is wired in.
"""

import csv
import io
import json
import logging
import time
from pathlib import PurePath

from edc.core.schema import EDCModel

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("pdf", "docx", "xlsx", "csv", "md", "txt", "json")

_CATEGORY_BY_EXTENSION = {
    "pdf": "document",
    "docx": "document",
    "md": "document",
    "txt": "document",
    "xlsx": "spreadsheet",
    "csv": "spreadsheet",
    "json": "data",
}


class FileProcessingError(Exception):
    """Raised when an uploaded file's content cannot be read."""


class ProcessedFile(EDCModel):
    content: str
    file_type: str
    word_count: int
    processing_time: float


def file_extension(file_name: str) -> str:
    """Return the lower-case extension without the dot ("" if none)."""
    return PurePath(file_name).suffix.lstrip(".").lower()


def is_valid_file_type(file_name: str) -> bool:
    return file_extension(file_name) in ALLOWED_EXTENSIONS


def file_type_category(file_name: str) -> str:
    """Classify a file as document, spreadsheet, data or text."""
    return _CATEGORY_BY_EXTENSION.get(file_extension(file_name), "text")


def process_file_content(data: bytes, file_name: str) -> ProcessedFile:
    """Extract text content from an uploaded file.

    Raises:
        FileProcessingError: If the file type is unsupported or the
            content cannot be decoded.
    """
    start = time.monotonic()
    extension = file_extension(file_name)

    try:
        match extension:
            case "txt" | "md":
                content = data.decode("utf-8")
            case "json":
                content = json.dumps(json.loads(data.decode("utf-8")), indent=2)
            case "csv":
                content = _render_csv(data.decode("utf-8"))
            case "pdf":
                content = f"[PDF Document - {round(len(data) / 1024)} KB - sent to the extraction model as a document]"
            case "docx" | "xlsx":
                content = (
                    f"{extension.upper()} content extraction is not available. "
                    "Please ensure the document contains extractable text."
                )
            case _:
                raise FileProcessingError(f"Unsupported file type: {extension}")
    except (UnicodeDecodeError, json.JSONDecodeError, csv.Error) as e:
        raise FileProcessingError(str(e)) from e

    logger.info("Processed %s (%d bytes)", file_name, len(data))
    return ProcessedFile(
        content=content,
        file_type=file_type_category(file_name),
        word_count=len(content.split()),
        processing_time=time.monotonic() - start,
    )


def _render_csv(text: str) -> str:
    """Render CSV rows as header-keyed records for the extraction model."""
    reader = csv.reader(io.StringIO(text))
    rows = list(reader)
    if not rows:
        return "CSV Headers: \n\nData:\n[]"

    headers = [h.strip() for h in rows[0]]
    records = [
        {header: (row[i].strip() if i < len(row) else "") for i, header in enumerate(headers)}
        for row in rows[1:]
        if row
    ]
    return f"CSV Headers: {', '.join(headers)}\n\nData:\n{json.dumps(records, indent=2)}"
