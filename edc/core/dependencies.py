"""
Deterministic dependency evaluator for form fields.

Computes whether a field is visible, enabled and required from its
`dependencies` and the current form values. Every dependency is
applied in declaration order as a left fold: SHOW/HIDE/ENABLE/DISABLE
can only narrow, REQUIRE widens and OPTIONAL narrows requiredness.
There is no priority between rules; all of them apply.
"""

import math
from typing import Any

from edc.core.schema import Condition, DependencyAction, FieldDependency, FieldState, FormField
from edc.core.utils import is_empty, strict_equals, to_number, to_text


def evaluate_dependencies(
    field: FormField,
    values: dict[str, Any],
    read_only: bool = False,
) -> FieldState:
    """Compute the visible/enabled/required state of a field.

    Args:
        field: The form field to evaluate.
        values: Current form values keyed by field ID.
        read_only: Whether the whole form is rendered read-only.

    Returns:
        A FieldState with no errors attached.
    """
    visible = True
    enabled = not read_only
    required = field.required

    for dependency in field.dependencies:
        met = is_dependency_met(dependency, values)

        match dependency.action:
            case DependencyAction.SHOW:
                visible = visible and met
            case DependencyAction.HIDE:
                visible = visible and not met
            case DependencyAction.REQUIRE:
                required = required or met
            case DependencyAction.OPTIONAL:
                required = required and not met
            case DependencyAction.ENABLE:
                enabled = enabled and met
            case DependencyAction.DISABLE:
                enabled = enabled and not met

    return FieldState(visible=visible, enabled=enabled, required=required)


def is_dependency_met(dependency: FieldDependency, values: dict[str, Any]) -> bool:
    """Evaluate a dependency's condition against the referenced field's value."""
    actual = values.get(dependency.dependent_field_id)
    return evaluate_condition(dependency.condition, actual, dependency.value)


def evaluate_condition(condition: Condition | None, actual: Any, expected: Any) -> bool:
    """Evaluate a single condition.

    Args:
        condition: The condition to apply (None for an unrecognized one).
        actual: The current value of the referenced field.
        expected: The dependency's comparison operand.

    Returns:
        True if the condition holds. Never raises on mismatched types.
    """
    match condition:
        case Condition.EQUALS:
            return strict_equals(actual, expected)

        case Condition.NOT_EQUALS:
            return not strict_equals(actual, expected)

        case Condition.CONTAINS:
            return to_text(expected) in to_text(actual)

        case Condition.GREATER_THAN:
            return _compare_numbers(actual, expected, lambda a, b: a > b)

        case Condition.LESS_THAN:
            return _compare_numbers(actual, expected, lambda a, b: a < b)

        case Condition.IS_EMPTY:
            return is_empty(actual)

        case Condition.IS_NOT_EMPTY:
            return not is_empty(actual)

    # Unknown condition never matches
    return False


def _compare_numbers(actual: Any, expected: Any, comparator) -> bool:
    """Coerce both sides to numbers and compare; NaN on either side is False."""
    left = to_number(actual)
    right = to_number(expected)
    if math.isnan(left) or math.isnan(right):
        return False
    return comparator(left, right)
