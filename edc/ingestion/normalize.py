"""
Normalization and sanity checks for LLM-extracted study data.

The model returns loosely shaped JSON: criteria as bare strings,
blinding as free text, phases as "2" instead of "II". These helpers
reshape it into the structures the study record expects, without
inventing values the document did not contain.
"""

import copy
import logging
from typing import Any

from edc.core.utils import parse_date
from edc.ingestion.prompts import STUDY_FIELD_MAPPINGS

logger = logging.getLogger(__name__)

DEFAULT_CRITERION_CONFIDENCE = 0.8

_PHASES = {
    "1": "I", "2": "II", "3": "III", "4": "IV",
    "I": "I", "II": "II", "III": "III", "IV": "IV",
    "PILOT": "PILOT", "FEASIBILITY": "FEASIBILITY",
}

_ARM_TYPES = {
    "EXPERIMENTAL": "EXPERIMENTAL",
    "PLACEBO COMPARATOR": "PLACEBO_COMPARATOR",
    "PLACEBO_COMPARATOR": "PLACEBO_COMPARATOR",
    "ACTIVE COMPARATOR": "ACTIVE_COMPARATOR",
    "ACTIVE_COMPARATOR": "ACTIVE_COMPARATOR",
}

_OBJECTIVE_TYPES = {
    "PRIMARY": "PRIMARY",
    "SECONDARY": "SECONDARY",
    "KEY SECONDARY": "SECONDARY",
    "EXPLORATORY": "EXPLORATORY",
}

# assessment key -> (id prefix, default frequency)
_ASSESSMENT_KINDS = {
    "safetyAssessments": ("SA", "As needed"),
    "efficacyAssessments": ("EA", "Regular intervals"),
    "pkAssessments": ("PKA", "As scheduled"),
    "biomarkerAssessments": ("BA", "As scheduled"),
}


def _as_list(value: Any) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        return [value]
    return []


def _numbered(prefix: str, index: int) -> str:
    return f"{prefix}{index + 1:03d}"


def _normalize_criteria(value: Any, prefix: str) -> list[dict[str, Any]]:
    criteria = []
    for index, item in enumerate(_as_list(value)):
        if isinstance(item, str):
            criteria.append({
                "id": _numbered(prefix, index),
                "text": item,
                "category": "General",
                "aiConfidence": DEFAULT_CRITERION_CONFIDENCE,
            })
        elif isinstance(item, dict):
            criteria.append(item)
    return criteria


def _normalize_assessments(value: Any) -> dict[str, list]:
    source = value if isinstance(value, dict) else {}
    assessments = {}
    for key, (prefix, frequency) in _ASSESSMENT_KINDS.items():
        items = []
        for index, item in enumerate(_as_list(source.get(key))):
            if isinstance(item, str):
                items.append({
                    "id": _numbered(prefix, index),
                    "name": item,
                    "description": item,
                    "frequency": frequency,
                    "required": True,
                })
            elif isinstance(item, dict):
                items.append(item)
        assessments[key] = items
    return assessments


def _normalize_blinding(value: str) -> dict[str, Any]:
    text = value.lower()
    if "single" in text:
        blinding = "SINGLE_BLIND"
    elif "triple" in text:
        blinding = "TRIPLE_BLIND"
    elif "open" in text:
        blinding = "OPEN"
    else:
        blinding = "DOUBLE_BLIND"
    return {
        "type": blinding,
        "blindedRoles": [],
        "unblindingProcedure": "Standard unblinding procedures apply",
    }


def _normalize_design(design: dict[str, Any]) -> dict[str, Any]:
    if isinstance(design.get("blinding"), str):
        design["blinding"] = _normalize_blinding(design["blinding"])
    design.setdefault("type", "PARALLEL_GROUP")
    design.setdefault("allocation", "RANDOMIZED")
    return design


def _normalize_population(population: dict[str, Any], planned_enrollment: Any) -> dict[str, Any]:
    if not population.get("plannedSize"):
        population["plannedSize"] = planned_enrollment or 0
    if not population.get("ageRange"):
        population["ageRange"] = {
            "minimum": population.get("minimumAge") or 18,
            "unit": "YEARS",
        }
    if not population.get("genderEligibility"):
        gender = str(population.get("gender", "")).upper()
        population["genderEligibility"] = gender if gender in {"ALL", "MALE", "FEMALE"} else "ALL"
    population.setdefault("healthyVolunteers", False)
    return population


def _normalize_milestones(milestones: dict[str, Any]) -> dict[str, Any]:
    """Reduce milestone dates to ISO strings, dropping unparseable ones."""
    normalized = {}
    for name, value in milestones.items():
        parsed = parse_date(value) if isinstance(value, str) else None
        if parsed is None:
            logger.debug("Dropping unparseable milestone %s = %r", name, value)
            continue
        normalized[name] = parsed.isoformat()
    return normalized


def normalize_extracted_data(data: dict[str, Any]) -> dict[str, Any]:
    """Reshape extracted study data to the study record's structure.

    The input is not modified.
    """
    normalized = copy.deepcopy(data)

    normalized["inclusionCriteria"] = _normalize_criteria(normalized.get("inclusionCriteria"), "IC")
    normalized["exclusionCriteria"] = _normalize_criteria(normalized.get("exclusionCriteria"), "EC")
    normalized["assessments"] = _normalize_assessments(normalized.get("assessments"))

    if isinstance(normalized.get("studyDesign"), dict):
        normalized["studyDesign"] = _normalize_design(normalized["studyDesign"])

    phase = str(normalized.get("studyPhase", "")).strip().upper()
    if phase in _PHASES:
        normalized["studyPhase"] = _PHASES[phase]

    if isinstance(normalized.get("treatmentArms"), list):
        normalized["treatmentArms"] = [
            {**arm, "type": _ARM_TYPES.get(str(arm.get("type", "")).strip().upper(), "EXPERIMENTAL")}
            for arm in normalized["treatmentArms"]
            if isinstance(arm, dict)
        ]

    if isinstance(normalized.get("objectives"), list):
        normalized["objectives"] = [
            {
                **objective,
                "type": _OBJECTIVE_TYPES.get(str(objective.get("type", "")).strip().upper(), "SECONDARY"),
                "number": objective.get("number") or index + 1,
            }
            for index, objective in enumerate(normalized["objectives"])
            if isinstance(objective, dict)
        ]

    if isinstance(normalized.get("population"), dict):
        normalized["population"] = _normalize_population(
            normalized["population"], normalized.get("plannedEnrollment"),
        )

    if isinstance(normalized.get("milestones"), dict):
        normalized["milestones"] = _normalize_milestones(normalized["milestones"])

    if not isinstance(normalized.get("keywords"), list):
        normalized["keywords"] = _as_list(normalized.get("keywords"))
    normalized.setdefault("studyStatus", "DRAFT")
    normalized.setdefault("processingStatus", "COMPLETED")

    return normalized


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _get_nested(data: dict[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _matches_type(value: Any, expected: str) -> bool:
    match expected:
        case "string":
            return isinstance(value, str)
        case "number":
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        case "boolean":
            return isinstance(value, bool)
        case "array":
            return isinstance(value, list)
        case "object":
            return isinstance(value, dict)
        case "date":
            return isinstance(value, str) and parse_date(value) is not None
    return True


def validate_extracted_data(data: Any) -> dict[str, Any]:
    """Check extracted data against the study field mappings.

    Missing required fields are errors; type mismatches are warnings.

    Returns:
        {"isValid": bool, "errors": [...], "warnings": [...]}
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not isinstance(data, dict):
        return {"isValid": False, "errors": ["Extracted data is not a valid object"], "warnings": []}

    for mapping in STUDY_FIELD_MAPPINGS:
        value = _get_nested(data, mapping.field)
        if mapping.required and not value:
            errors.append(f"Required field '{mapping.field}' is missing")
        if value is not None and not _matches_type(value, mapping.data_type):
            warnings.append(
                f"Field '{mapping.field}' has unexpected data type. Expected: {mapping.data_type}"
            )

    return {"isValid": not errors, "errors": errors, "warnings": warnings}
