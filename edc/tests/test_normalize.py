"""
Unit tests for normalization and validation of extracted study data.
"""

from edc.ingestion.normalize import normalize_extracted_data, validate_extracted_data
from edc.ingestion.pipeline import build_study_fields


class TestNormalize:
    def test_criteria_strings(self):
        normalized = normalize_extracted_data({
            "inclusionCriteria": ["Age >= 18", "Signed consent"],
            "exclusionCriteria": "Pregnancy",
        })
        assert normalized["inclusionCriteria"][1] == {
            "id": "IC002",
            "text": "Signed consent",
            "category": "General",
            "aiConfidence": 0.8,
        }
        assert normalized["exclusionCriteria"][0]["id"] == "EC001"

    def test_criteria_objects_kept(self):
        criterion = {"id": "X1", "text": "Custom"}
        normalized = normalize_extracted_data({"inclusionCriteria": [criterion]})
        assert normalized["inclusionCriteria"] == [criterion]

    def test_assessments(self):
        normalized = normalize_extracted_data({
            "assessments": {"safetyAssessments": ["ECG"], "pkAssessments": ["Cmax"]},
        })
        assessments = normalized["assessments"]
        assert assessments["safetyAssessments"][0]["id"] == "SA001"
        assert assessments["safetyAssessments"][0]["frequency"] == "As needed"
        assert assessments["pkAssessments"][0]["id"] == "PKA001"
        assert assessments["efficacyAssessments"] == []

    def test_blinding_and_design_defaults(self):
        normalized = normalize_extracted_data({"studyDesign": {"blinding": "Single-blind"}})
        design = normalized["studyDesign"]
        assert design["blinding"]["type"] == "SINGLE_BLIND"
        assert design["type"] == "PARALLEL_GROUP"
        assert design["allocation"] == "RANDOMIZED"

    def test_phase_mapping(self):
        assert normalize_extracted_data({"studyPhase": "3"})["studyPhase"] == "III"
        assert normalize_extracted_data({"studyPhase": "Phase 2b"})["studyPhase"] == "Phase 2b"

    def test_arms_and_objectives(self):
        normalized = normalize_extracted_data({
            "treatmentArms": [{"name": "Placebo", "type": "Placebo Comparator"}, {"name": "Drug"}],
            "objectives": [{"description": "Safety", "type": "primary"}, {"description": "PK"}],
        })
        assert [a["type"] for a in normalized["treatmentArms"]] == ["PLACEBO_COMPARATOR", "EXPERIMENTAL"]
        assert [o["type"] for o in normalized["objectives"]] == ["PRIMARY", "SECONDARY"]
        assert [o["number"] for o in normalized["objectives"]] == [1, 2]

    def test_population_defaults(self):
        normalized = normalize_extracted_data({"population": {}, "plannedEnrollment": 120})
        population = normalized["population"]
        assert population["plannedSize"] == 120
        assert population["ageRange"] == {"minimum": 18, "unit": "YEARS"}
        assert population["genderEligibility"] == "ALL"
        assert population["healthyVolunteers"] is False

    def test_milestones(self):
        normalized = normalize_extracted_data({
            "milestones": {"firstPatientIn": "March 3, 2025", "lastPatientOut": "TBD"},
        })
        assert normalized["milestones"] == {"firstPatientIn": "2025-03-03"}

    def test_status_defaults_and_keywords(self):
        normalized = normalize_extracted_data({"keywords": "asthma"})
        assert normalized["keywords"] == ["asthma"]
        assert normalized["studyStatus"] == "DRAFT"
        assert normalized["processingStatus"] == "COMPLETED"

    def test_input_not_modified(self):
        data = {"inclusionCriteria": ["x"], "studyDesign": {"blinding": "open"}}
        normalize_extracted_data(data)
        assert data == {"inclusionCriteria": ["x"], "studyDesign": {"blinding": "open"}}


class TestValidateExtractedData:
    def test_valid(self):
        result = validate_extracted_data({"studyName": "ABC", "plannedEnrollment": 10})
        assert result == {"isValid": True, "errors": [], "warnings": []}

    def test_type_mismatch_is_warning(self):
        result = validate_extracted_data({"plannedEnrollment": "ten", "keywords": "x"})
        assert result["isValid"] is True
        assert result["warnings"] == [
            "Field 'keywords' has unexpected data type. Expected: array",
            "Field 'plannedEnrollment' has unexpected data type. Expected: number",
        ]

    def test_nested_assessment_types(self):
        result = validate_extracted_data({"assessments": {"safetyAssessments": "ECG"}})
        assert result["warnings"] == [
            "Field 'assessments.safetyAssessments' has unexpected data type. Expected: array",
        ]

    def test_not_an_object(self):
        result = validate_extracted_data(["a"])
        assert result["isValid"] is False


class TestBuildStudyFields:
    def test_defaults_for_missing_and_wrong_types(self):
        fields = build_study_fields({"studyName": "", "keywords": "x", "indication": "Asthma"})
        assert fields["studyName"] == "New Study"
        assert fields["keywords"] == []
        assert fields["indication"] == "Asthma"

    def test_enrollment(self):
        assert build_study_fields({"plannedEnrollment": "250"})["plannedEnrollment"] == 250
        assert build_study_fields({"plannedEnrollment": "many"})["plannedEnrollment"] == 0
        assert build_study_fields({"plannedEnrollment": -5})["plannedEnrollment"] == 0
        assert build_study_fields({"plannedEnrollment": "Infinity"})["plannedEnrollment"] == 0
