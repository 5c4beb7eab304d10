"""
Prompts for extracting study metadata from protocol documents.
"""

from typing import NamedTuple


class StudyFieldMapping(NamedTuple):
    field: str
    description: str
    data_type: str
    required: bool = False


STUDY_FIELD_MAPPINGS: list[StudyFieldMapping] = [
    # Overview
    StudyFieldMapping("studyName", "Study name/title", "string"),
    StudyFieldMapping("studyDescription", "Study description", "string"),
    StudyFieldMapping("protocolNumber", "Protocol number", "string"),
    StudyFieldMapping("protocolVersion", "Protocol version", "string"),
    StudyFieldMapping("protocolTitle", "Protocol title", "string"),
    StudyFieldMapping("protocolShortTitle", "Protocol short title", "string"),
    StudyFieldMapping("studyType", "Study type (INTERVENTIONAL, OBSERVATIONAL, EXPANDED_ACCESS)", "string"),
    StudyFieldMapping("studyPhase", "Study phase (I, II, III, IV, PILOT, FEASIBILITY)", "string"),
    StudyFieldMapping("therapeuticArea", "Therapeutic area", "string"),
    StudyFieldMapping("indication", "Study indication", "string"),
    StudyFieldMapping("keywords", "Study keywords", "array"),
    # Sponsor & PI
    StudyFieldMapping("sponsor", "Study sponsor information", "object"),
    StudyFieldMapping("principalInvestigator", "Principal investigator information", "object"),
    # Design
    StudyFieldMapping("plannedEnrollment", "Planned enrollment number", "number"),
    StudyFieldMapping("studyDesign", "Study design details", "object"),
    StudyFieldMapping("population", "Study population details", "object"),
    # Eligibility
    StudyFieldMapping("inclusionCriteria", "Inclusion criteria list", "array"),
    StudyFieldMapping("exclusionCriteria", "Exclusion criteria list", "array"),
    # Timeline
    StudyFieldMapping("visits", "Study visits schedule", "array"),
    StudyFieldMapping("epochs", "Study epochs", "array"),
    # Arms and objectives
    StudyFieldMapping("treatmentArms", "Treatment arms", "array"),
    StudyFieldMapping("objectives", "Study objectives", "array"),
    # Assessments
    StudyFieldMapping("assessments.safetyAssessments", "Safety assessments", "array"),
    StudyFieldMapping("assessments.efficacyAssessments", "Efficacy assessments", "array"),
    StudyFieldMapping("assessments.pkAssessments", "PK assessments", "array"),
    StudyFieldMapping("assessments.biomarkerAssessments", "Biomarker assessments", "array"),
]


EXTRACTION_SYSTEM_PROMPT = """\
You extract structured clinical trial metadata from study documents.

Rules:
1. Extract ONLY fields that are explicitly stated in the document.
2. If a field is not found, use an empty string "".
3. Never invent data.
4. Dates use ISO format (YYYY-MM-DD).
5. Enumerations:
   - studyPhase: I, II, III, IV, PILOT, FEASIBILITY
   - studyType: INTERVENTIONAL, OBSERVATIONAL, EXPANDED_ACCESS
   - studyDesign.type: PARALLEL_GROUP, CROSSOVER, FACTORIAL, SINGLE_GROUP
   - studyDesign.allocation: RANDOMIZED, NON_RANDOMIZED
   - studyDesign.blinding: OPEN, SINGLE_BLIND, DOUBLE_BLIND, TRIPLE_BLIND
   - treatment arm type: EXPERIMENTAL, PLACEBO_COMPARATOR, ACTIVE_COMPARATOR
   - objective type: PRIMARY, SECONDARY, EXPLORATORY

Respond with ONLY a JSON object. No explanations, no markdown."""


JSON_RETRY_PROMPT = (
    "Your response was NOT valid JSON. "
    "Respond with ONLY the JSON object of extracted fields. "
    "No explanations, no markdown."
)


def _field_list() -> str:
    return "\n".join(
        f"- {m.field}: {m.description} ({m.data_type})" for m in STUDY_FIELD_MAPPINGS
    )


def build_text_extraction_prompt(content: str, file_name: str, file_type: str) -> str:
    """Build the user prompt for a document sent as text."""
    return (
        f"Analyze the following {file_type} file and extract clinical trial study data.\n\n"
        f"File name: {file_name}\n"
        f"Document length: {len(content)} characters\n\n"
        f"Document content:\n{content}\n\n"
        f"Extract these fields when the document mentions them:\n{_field_list()}"
    )


def build_document_extraction_prompt(file_name: str, file_type: str) -> str:
    """Build the user prompt that accompanies an attached document."""
    return (
        f"The attached {file_type} file '{file_name}' is a clinical trial document. "
        "Read all pages, including tables, and extract clinical trial study data.\n\n"
        f"Extract these fields when the document mentions them:\n{_field_list()}"
    )
