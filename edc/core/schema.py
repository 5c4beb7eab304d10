"""
Form specification models for CDISC/CDASH data-entry forms.

These Pydantic models define the contract between the form store, the
conditional field engine and the presentation layer. A form
specification is the single source of truth for field definitions,
validation rules and inter-field dependencies.

Wire format is camelCase (``fieldId``, ``dependentFieldId``); Python
attributes are snake_case and both spellings are accepted on input.
"""

import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class EDCModel(BaseModel):
    """Base model with camelCase aliases for the JSON wire format."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuditedModel(EDCModel):
    """Records that carry who created or last changed them, and when."""

    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None
    updated_by: str | None = None


# --- Enums ---


class FieldType(str, Enum):
    """Supported form field input types."""

    TEXT = "TEXT"
    NUMBER = "NUMBER"
    DATE = "DATE"
    TIME = "TIME"
    DATETIME = "DATETIME"
    SELECT = "SELECT"
    MULTISELECT = "MULTISELECT"
    RADIO = "RADIO"
    CHECKBOX = "CHECKBOX"
    TEXTAREA = "TEXTAREA"
    FILE = "FILE"


class RuleType(str, Enum):
    """Validation rule kinds.

    DEPENDENCY and CROSS_FIELD are stored with the form but are not
    evaluated per field.
    """

    REQUIRED = "REQUIRED"
    RANGE = "RANGE"
    PATTERN = "PATTERN"
    LENGTH = "LENGTH"
    DEPENDENCY = "DEPENDENCY"
    CROSS_FIELD = "CROSS_FIELD"


class Severity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


class Condition(str, Enum):
    """Conditions a dependency can test against another field's value."""

    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    CONTAINS = "CONTAINS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    IS_EMPTY = "IS_EMPTY"
    IS_NOT_EMPTY = "IS_NOT_EMPTY"


class DependencyAction(str, Enum):
    """What a met (or unmet) dependency condition does to a field."""

    SHOW = "SHOW"
    HIDE = "HIDE"
    REQUIRE = "REQUIRE"
    OPTIONAL = "OPTIONAL"
    ENABLE = "ENABLE"
    DISABLE = "DISABLE"


def _lenient_enum(enum_cls: type[Enum], value: Any, label: str) -> Any:
    """Map unrecognized enum strings to None instead of failing validation."""
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        logger.debug("Ignoring unknown %s '%s'", label, value)
        return None


# --- Field building blocks ---


class ValidationRule(EDCModel):
    """A single validation rule attached to a field.

    ``rule`` holds the string-encoded parameters: ``"min,max"`` for
    RANGE and LENGTH, a regular expression for PATTERN.
    """

    rule_type: RuleType | None = Field(
        ...,
        description="Rule kind (unknown kinds parse to None and always pass)",
    )
    rule: str = Field(default="", description="String-encoded rule parameters")
    message: str = Field(..., description="Message reported when the rule fails")
    severity: Severity = Field(default=Severity.ERROR)

    @field_validator("rule_type", mode="before")
    @classmethod
    def _parse_rule_type(cls, value: Any) -> Any:
        return _lenient_enum(RuleType, value, "ruleType")


class FieldDependency(EDCModel):
    """A conditional rule that alters a field based on another field's value."""

    dependent_field_id: str = Field(
        ...,
        min_length=1,
        description="The field whose value is tested",
    )
    condition: Condition | None = Field(
        ...,
        description="Condition to evaluate (unknown conditions parse to None and never match)",
    )
    action: DependencyAction | None = Field(
        ...,
        description="Action applied with the condition result (unknown actions are no-ops)",
    )
    value: Any = Field(default=None, description="Comparison operand")

    @field_validator("condition", mode="before")
    @classmethod
    def _parse_condition(cls, value: Any) -> Any:
        return _lenient_enum(Condition, value, "condition")

    @field_validator("action", mode="before")
    @classmethod
    def _parse_action(cls, value: Any) -> Any:
        return _lenient_enum(DependencyAction, value, "action")


class CodeListValue(EDCModel):
    """One selectable value of an enumerated field."""

    code: str
    label: str
    description: str | None = None
    order: int = 0
    active: bool = True


class DisplayProperties(EDCModel):
    width: str | None = None
    height: str | None = None
    css_class: str | None = None
    tooltip: str | None = None
    help_text: str | None = None
    placeholder: str | None = None


# --- Form Field ---


class FormField(EDCModel):
    """Definition of a single form field.

    Carries the base ``required`` flag, validation rules evaluated in
    declaration order, and dependency rules folded left to right by the
    dependency evaluator.
    """

    field_id: str = Field(
        ...,
        min_length=1,
        description="Unique field identifier within the form",
    )
    field_name: str = ""
    field_label: str = ""
    field_type: FieldType = Field(..., description="The input widget type")
    data_type: str | None = None
    cdisc_variable: str | None = None
    cdash_question: str | None = None
    cdash_question_number: str | None = None
    required: bool = Field(
        default=False,
        description="Base requiredness, before dependency overrides",
    )
    validation_rules: list[ValidationRule] = Field(default_factory=list)
    dependencies: list[FieldDependency] = Field(default_factory=list)
    code_list_id: str | None = None
    code_list_values: list[CodeListValue] = Field(default_factory=list)
    group_id: str | None = None
    default_value: Any = None
    display_properties: DisplayProperties = Field(default_factory=DisplayProperties)


# --- Layout and form-level metadata ---


class FormSection(EDCModel):
    section_id: str
    section_name: str = ""
    section_order: int = 0
    fields: list[str] = Field(default_factory=list)
    collapsible: bool = False
    collapsed: bool = False


class GridLayout(EDCModel):
    columns: int = 1
    responsive: bool = True


class FormLayout(EDCModel):
    sections: list[FormSection] = Field(default_factory=list)
    grid_layout: GridLayout = Field(default_factory=GridLayout)


class CrossFieldRule(EDCModel):
    """Form-level rule expression, stored for reviewers but not evaluated."""

    rule_id: str
    rule_name: str = ""
    rule_expression: str = ""
    error_message: str = ""
    severity: Severity = Severity.ERROR
    fields: list[str] = Field(default_factory=list)


class FormValidation(EDCModel):
    cross_field_validation: list[CrossFieldRule] = Field(default_factory=list)


# --- Top-Level Form Specification ---


class FormSpecification(AuditedModel):
    """Top-level form specification.

    Validates field uniqueness and that every dependency and layout
    section references a field that exists in the form.
    """

    form_id: str = Field(
        ...,
        min_length=1,
        description="Unique form identifier",
    )
    study_id: str = ""
    form_name: str = ""
    form_code: str = ""
    form_version: str = "1.0"
    cdisc_domain: str = ""
    cdash_category: str = ""
    description: str = ""
    instructions: str = ""
    form_type: str = "eCRF"
    assessment_category: str | None = None
    status: str = "DRAFT"
    fields: list[FormField] = Field(default_factory=list)
    layout: FormLayout = Field(default_factory=FormLayout)
    form_validation: FormValidation = Field(default_factory=FormValidation)

    @model_validator(mode="after")
    def validate_cross_field_references(self) -> "FormSpecification":
        """Validate field ID uniqueness and dependency/section references."""
        field_ids = set()

        for f in self.fields:
            if f.field_id in field_ids:
                raise ValueError(f"Duplicate field ID: '{f.field_id}'")
            field_ids.add(f.field_id)

        for f in self.fields:
            for dependency in f.dependencies:
                if dependency.dependent_field_id not in field_ids:
                    raise ValueError(
                        f"Field '{f.field_id}' has a dependency on "
                        f"non-existent field '{dependency.dependent_field_id}'"
                    )
                # A field's state must never be derived from its own value
                if dependency.dependent_field_id == f.field_id:
                    raise ValueError(
                        f"Field '{f.field_id}' has a dependency on itself"
                    )

        for section in self.layout.sections:
            for field_id in section.fields:
                if field_id not in field_ids:
                    raise ValueError(
                        f"Section '{section.section_id}' references "
                        f"non-existent field '{field_id}'"
                    )

        return self

    def get_field(self, field_id: str) -> FormField | None:
        """Look up a field by its ID."""
        for field in self.fields:
            if field.field_id == field_id:
                return field
        return None


# --- Derived state ---


class FieldState(EDCModel):
    """Per-field UI state computed from a form and its current values.

    Never persisted; recomputed on every value change.
    """

    visible: bool = True
    enabled: bool = True
    required: bool = False
    errors: list[str] = Field(default_factory=list)


# --- Loading ---


def load_form_file(path: str | Path) -> FormSpecification:
    """Load a form specification from a YAML or JSON file.

    Raises:
        ValueError: If the file extension is not supported.
        pydantic.ValidationError: If the content is not a valid form.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")

    if path.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    elif path.suffix.lower() == ".json":
        raw = json.loads(text)
    else:
        raise ValueError(f"Unsupported form file type: '{path.suffix}'")

    return FormSpecification.model_validate(raw)
