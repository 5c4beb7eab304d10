"""
Study-data extraction through the LLM.

Text documents are sent inline; PDFs are attached as base64 file
content so the model reads the original layout. The reply must be a
JSON object of study fields; replies that are not are retried with a
corrective prompt.
"""

import base64
import json
import logging
import time
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import Field

from edc.core.schema import EDCModel
from edc.ingestion.prompts import (
    EXTRACTION_SYSTEM_PROMPT,
    JSON_RETRY_PROMPT,
    STUDY_FIELD_MAPPINGS,
    build_document_extraction_prompt,
    build_text_extraction_prompt,
)

logger = logging.getLogger(__name__)

# Retries after the first attempt when the reply is not a JSON object
MAX_JSON_RETRIES = 2


class ExtractionError(Exception):
    """Raised when the LLM cannot produce study data for a document."""


class ExtractionResult(EDCModel):
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0
    processing_time: float = 0.0


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------


def extract_json(content: str) -> dict | None:
    """Extract a JSON object from LLM output.

    Handles replies that wrap the JSON in markdown code fences or
    surround it with prose.

    Returns:
        Parsed dict, or None if no JSON object can be found.
    """
    try:
        parsed = json.loads(content)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    if "```" in content:
        for part in content.split("```"):
            stripped = part.strip()
            if stripped.startswith("json"):
                stripped = stripped[4:].strip()
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed

    start = content.find("{")
    end = content.rfind("}")
    if start != -1 and end > start:
        try:
            parsed = json.loads(content[start : end + 1])
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass

    return None


def _message_text(response: Any) -> str:
    """Flatten a chat response's content into text."""
    content = getattr(response, "content", "")
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content or "")


def compute_confidence(extracted: dict[str, Any]) -> float:
    """Share of mapped fields present at the top level, capped at 1.0."""
    return min(len(extracted) / len(STUDY_FIELD_MAPPINGS), 1.0)


# ---------------------------------------------------------------------------
# LLM calls
# ---------------------------------------------------------------------------


async def call_llm_for_json(llm: Any, messages: list) -> dict:
    """Call the LLM until it returns a JSON object.

    Raises:
        ExtractionError: If the LLM errors or every attempt returns
            something other than a JSON object.
    """
    messages = list(messages)

    for attempt in range(MAX_JSON_RETRIES + 1):
        try:
            response = await llm.ainvoke(messages)
        except Exception as e:
            logger.error("LLM call failed (attempt %d): %s", attempt + 1, e)
            raise ExtractionError(str(e)) from e

        content = _message_text(response)
        parsed = extract_json(content)
        if parsed is not None:
            return parsed

        logger.warning(
            "LLM returned invalid JSON (attempt %d/%d): %s",
            attempt + 1,
            MAX_JSON_RETRIES + 1,
            content[:300],
        )
        messages.append(HumanMessage(content=JSON_RETRY_PROMPT))

    raise ExtractionError("No valid JSON found in the model response")


async def extract_study_data_from_text(
    llm: Any,
    content: str,
    file_name: str,
    file_type: str,
) -> ExtractionResult:
    """Extract study fields from a document's text content."""
    start = time.monotonic()
    messages = [
        SystemMessage(content=EXTRACTION_SYSTEM_PROMPT),
        HumanMessage(content=build_text_extraction_prompt(content, file_name, file_type)),
    ]
    extracted = await call_llm_for_json(llm, messages)
    return ExtractionResult(
        extracted_data=extracted,
        confidence=compute_confidence(extracted),
        processing_time=time.monotonic() - start,
    )


async def extract_study_data_from_document(
    llm: Any,
    data: bytes,
    file_name: str,
    file_type: str,
    mime_type: str = "application/pdf",
) -> ExtractionResult:
    """Extract study fields from raw document bytes attached to the prompt."""
    start = time.monotonic()
    encoded = base64.b64encode(data).decode("ascii")
    messages = [
        SystemMessage(content=EXTRACTION_SYSTEM_PROMPT),
        HumanMessage(content=[
            {"type": "text", "text": build_document_extraction_prompt(file_name, file_type)},
            {
                "type": "file",
                "file": {
                    "filename": file_name,
                    "file_data": f"data:{mime_type};base64,{encoded}",
                },
            },
        ]),
    ]
    extracted = await call_llm_for_json(llm, messages)
    return ExtractionResult(
        extracted_data=extracted,
        confidence=compute_confidence(extracted),
        processing_time=time.monotonic() - start,
    )
