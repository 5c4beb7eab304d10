"""
Unit tests for the in-memory record stores.

Tests cover:
- Audit stamping on create and update
- Duplicate keys and missing records
- Filtering by attribute paths, newest-first ordering
- Updates cannot change the key or creation audit fields
"""

import pytest
from pydantic import ValidationError

from edc.core.records import CodeList, Study
from edc.core.schema import FormSpecification
from edc.core.store import DuplicateRecordError, RecordNotFoundError, RecordStore


@pytest.fixture
def studies() -> RecordStore[Study]:
    return RecordStore(Study, "study_id", "Study")


def make_study(study_id: str, **kwargs) -> Study:
    return Study.model_validate({"studyId": study_id, **kwargs})


# =============================================================
# Test: Create / get / delete
# =============================================================


class TestCreate:
    def test_audit_fields(self, studies):
        created = studies.create(make_study("S1"), "alice")
        assert created.created_by == "alice"
        assert created.updated_by == "alice"
        assert created.created_at is not None
        assert created.created_at == created.updated_at
        assert studies.get("S1") == created

    def test_duplicate(self, studies):
        studies.create(make_study("S1"), "alice")
        with pytest.raises(DuplicateRecordError, match="already exists"):
            studies.create(make_study("S1"), "bob")

    def test_get_missing(self, studies):
        assert studies.get("S1") is None

    def test_delete(self, studies):
        studies.create(make_study("S1"), "alice")
        assert studies.delete("S1").study_id == "S1"
        assert studies.get("S1") is None
        with pytest.raises(RecordNotFoundError, match="Study 'S1' not found"):
            studies.delete("S1")


# =============================================================
# Test: Find
# =============================================================


class TestFind:
    def test_filters(self, studies):
        studies.create(make_study("S1", therapeuticArea="Oncology", sponsor={"name": "Acme"}), "a")
        studies.create(make_study("S2", therapeuticArea="Cardiology", sponsor={"name": "Acme"}), "a")
        studies.create(make_study("S3", therapeuticArea="Oncology", sponsor={"name": "Other"}), "a")

        assert {s.study_id for s in studies.find({"therapeutic_area": "Oncology"})} == {"S1", "S3"}
        assert {s.study_id for s in studies.find({"sponsor.name": "Acme"})} == {"S1", "S2"}
        assert [s.study_id for s in studies.find({
            "therapeutic_area": "Oncology",
            "sponsor.name": "Acme",
        })] == ["S1"]

    def test_none_filters_ignored(self, studies):
        studies.create(make_study("S1"), "a")
        assert len(studies.find({"study_status": None})) == 1
        assert studies.count() == 1

    def test_newest_first(self, studies):
        for study_id in ("S1", "S2", "S3"):
            studies.create(make_study(study_id), "a")
        assert [s.study_id for s in studies.find()] == ["S3", "S2", "S1"]


# =============================================================
# Test: Update
# =============================================================


class TestUpdate:
    def test_merge_and_audit(self, studies):
        studies.create(make_study("S1", studyName="Old", indication="Asthma"), "alice")
        updated = studies.update("S1", {"studyName": "New"}, "bob")
        assert updated.study_name == "New"
        assert updated.indication == "Asthma"
        assert updated.created_by == "alice"
        assert updated.updated_by == "bob"
        assert updated.updated_at >= updated.created_at

    def test_snake_case_changes(self, studies):
        studies.create(make_study("S1"), "alice")
        assert studies.update("S1", {"study_phase": "III"}, "bob").study_phase == "III"

    def test_key_and_creator_protected(self, studies):
        studies.create(make_study("S1"), "alice")
        updated = studies.update("S1", {"studyId": "S9", "createdBy": "mallory"}, "bob")
        assert updated.study_id == "S1"
        assert updated.created_by == "alice"
        assert studies.get("S9") is None

    def test_missing(self, studies):
        with pytest.raises(RecordNotFoundError):
            studies.update("S1", {}, "bob")

    def test_invalid_change(self, studies):
        studies.create(make_study("S1"), "alice")
        with pytest.raises(ValidationError):
            studies.update("S1", {"plannedEnrollment": "lots"}, "bob")
        assert studies.get("S1").planned_enrollment == 0

    def test_extra_keys_preserved(self, studies):
        studies.create(make_study("S1", customNote="keep me"), "alice")
        updated = studies.update("S1", {"studyName": "New"}, "bob")
        assert updated.model_dump(by_alias=True)["customNote"] == "keep me"

    def test_form_update_revalidates_structure(self):
        forms = RecordStore(FormSpecification, "form_id", "Form specification")
        forms.create(FormSpecification.model_validate({
            "formId": "F1",
            "fields": [{"fieldId": "a", "fieldType": "TEXT"}],
        }), "alice")
        with pytest.raises(ValidationError):
            forms.update("F1", {"fields": [
                {"fieldId": "a", "fieldType": "TEXT"},
                {"fieldId": "a", "fieldType": "TEXT"},
            ]}, "bob")


class TestCodeLists:
    def test_codes_parsed(self):
        store = RecordStore(CodeList, "code_list_id", "Code list")
        created = store.create(CodeList.model_validate({
            "codeListId": "NY",
            "codeListName": "No Yes Response",
            "codes": [{"code": "Y", "label": "Yes"}, {"code": "N", "label": "No"}],
        }), "alice")
        assert [c.code for c in created.codes] == ["Y", "N"]
        assert created.approval_status == "DRAFT"
