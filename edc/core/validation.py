"""
Field and submission validation for form values.

Per-field validation runs every rule of a field in declaration order
and collects the message of each failing rule. Validation failures are
returned as data, never raised: unknown rule types, malformed rule
parameters and invalid patterns are treated as satisfied.

Submission validation aggregates per-field errors across a form,
restricted to the fields selected by a SubmissionMode.
"""

import logging
import math
import re
from enum import Enum
from typing import Any

from pydantic import Field

from edc.core.dependencies import evaluate_dependencies
from edc.core.schema import (
    EDCModel,
    FieldState,
    FormField,
    FormSpecification,
    RuleType,
    Severity,
    ValidationRule,
)
from edc.core.utils import parse_bounds, to_number, to_text

logger = logging.getLogger(__name__)


class SubmissionMode(str, Enum):
    """Which fields are checked when a form is submitted."""

    VISIBLE_REQUIRED = "VISIBLE_REQUIRED"
    REQUIRED_ONLY = "REQUIRED_ONLY"
    ALL_RULES = "ALL_RULES"


class ValidationIssue(EDCModel):
    """A failed rule with its severity, for consumers that render by severity."""

    field_id: str
    rule_type: RuleType
    message: str
    severity: Severity


class SubmissionResult(EDCModel):
    """Outcome of a submit attempt.

    ``data`` holds the submitted values only when ``success`` is True.
    """

    success: bool
    errors: dict[str, list[str]] = Field(default_factory=dict)
    data: dict[str, Any] | None = None


# -----------------------------------------------------------------
# Per-field validation
# -----------------------------------------------------------------


def validate_field(field: FormField, value: Any) -> list[str]:
    """Validate a value against a field's rules.

    Args:
        field: The field definition holding the rules.
        value: The candidate value.

    Returns:
        Messages of the failing rules in declaration order (empty if valid).
    """
    return [issue.message for issue in validate_field_issues(field, value)]


def validate_field_issues(field: FormField, value: Any) -> list[ValidationIssue]:
    """Like validate_field, but keeps the rule type and severity of each failure."""
    issues = []
    for rule in field.validation_rules:
        if not _rule_passes(rule, value):
            issues.append(ValidationIssue(
                field_id=field.field_id,
                rule_type=rule.rule_type,
                message=rule.message,
                severity=rule.severity,
            ))
    return issues


def _rule_passes(rule: ValidationRule, value: Any) -> bool:
    """Check a single rule. Rules that cannot be applied pass."""
    match rule.rule_type:
        case RuleType.REQUIRED:
            return value is not None and value != ""

        case RuleType.RANGE:
            number = to_number(value)
            # Non-numeric values are not range-checked
            if math.isnan(number):
                return True
            bounds = parse_bounds(rule.rule)
            if bounds is None:
                return True
            low, high = bounds
            return low <= number <= high

        case RuleType.PATTERN:
            try:
                return re.search(rule.rule, to_text(value)) is not None
            except re.error as e:
                logger.warning("Skipping invalid PATTERN rule '%s': %s", rule.rule, e)
                return True

        case RuleType.LENGTH:
            bounds = parse_bounds(rule.rule)
            if bounds is None:
                return True
            low, high = bounds
            return low <= len(to_text(value)) <= high

    return True


# -----------------------------------------------------------------
# Whole-form evaluation and submission
# -----------------------------------------------------------------


def evaluate_form(
    form: FormSpecification,
    values: dict[str, Any],
    read_only: bool = False,
) -> dict[str, FieldState]:
    """Compute the full FieldState of every field, in form order."""
    states = {}
    for field in form.fields:
        state = evaluate_dependencies(field, values, read_only=read_only)
        state.errors = validate_field(field, values.get(field.field_id))
        states[field.field_id] = state
    return states


def validate_submission(
    form: FormSpecification,
    values: dict[str, Any],
    mode: SubmissionMode = SubmissionMode.VISIBLE_REQUIRED,
    read_only: bool = False,
) -> dict[str, list[str]]:
    """Validate a whole form at submit time.

    Args:
        form: The form specification.
        values: The values being submitted.
        mode: Which fields are checked (see SubmissionMode).
        read_only: Passed through to dependency evaluation.

    Returns:
        {field_id: messages} for failing fields only. Empty means the
        submission may proceed.
    """
    errors: dict[str, list[str]] = {}

    for field in form.fields:
        state = evaluate_dependencies(field, values, read_only=read_only)
        if not _is_checked(field, state, mode):
            continue

        messages = validate_field(field, values.get(field.field_id))
        if messages:
            errors[field.field_id] = messages

    return errors


def _is_checked(field: FormField, state: FieldState, mode: SubmissionMode) -> bool:
    match mode:
        case SubmissionMode.VISIBLE_REQUIRED:
            return state.visible and state.required
        case SubmissionMode.REQUIRED_ONLY:
            return state.required
        case SubmissionMode.ALL_RULES:
            return state.visible and bool(field.validation_rules)
    return False


def submit_form(
    form: FormSpecification,
    values: dict[str, Any],
    mode: SubmissionMode = SubmissionMode.VISIBLE_REQUIRED,
    read_only: bool = False,
) -> SubmissionResult:
    """Validate a submission and package the outcome.

    Submission is all-or-nothing: any failing field blocks it.
    """
    errors = validate_submission(form, values, mode=mode, read_only=read_only)
    if errors:
        return SubmissionResult(success=False, errors=errors)
    return SubmissionResult(success=True, data=dict(values))
