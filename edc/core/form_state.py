"""
Form-entry session state.

Holds the values a user has entered for one form specification and
derives per-field state from them:
- Which fields are visible, enabled and required right now
- Which validation messages each field currently shows
- What gets submitted, and whether submission is blocked
"""

from typing import Any

from edc.core.dependencies import evaluate_dependencies
from edc.core.schema import CodeListValue, FieldState, FormField, FormSpecification
from edc.core.validation import (
    SubmissionMode,
    SubmissionResult,
    submit_form,
    validate_field,
)


class FormSession:
    """Manages the values of a single form-entry session.

    Field state is never cached: visibility, requiredness and enabled
    state are recomputed from the current values on every read. Only
    the values and the most recent error messages per field are kept.

    Args:
        form: A validated FormSpecification instance.
        initial_values: Values to start from (e.g. a saved draft).
        read_only: Render every field disabled.
    """

    def __init__(
        self,
        form: FormSpecification,
        initial_values: dict[str, Any] | None = None,
        read_only: bool = False,
    ):
        self.form = form
        self.read_only = read_only
        self.values: dict[str, Any] = {}
        self.errors: dict[str, list[str]] = {}

        initial_values = initial_values or {}
        for field in form.fields:
            if field.field_id in initial_values:
                self.values[field.field_id] = initial_values[field.field_id]
            elif field.default_value is not None:
                self.values[field.field_id] = field.default_value

    # -----------------------------------------------------------------
    # Field state
    # -----------------------------------------------------------------

    def get_field_state(self, field_id: str) -> FieldState:
        """Return the current state of one field.

        Raises:
            ValueError: If the field_id does not exist in the form.
        """
        field = self._require_field(field_id)
        state = evaluate_dependencies(field, self.values, read_only=self.read_only)
        state.errors = list(self.errors.get(field_id, []))
        return state

    def get_field_states(self) -> dict[str, FieldState]:
        """Return the state of every field, in form order."""
        return {
            field.field_id: self.get_field_state(field.field_id)
            for field in self.form.fields
        }

    def get_visible_fields(self) -> list[FormField]:
        return [
            field for field in self.form.fields
            if evaluate_dependencies(field, self.values, read_only=self.read_only).visible
        ]

    def get_active_options(self, field_id: str) -> list[CodeListValue]:
        """Return the active code-list values of a field in display order."""
        field = self._require_field(field_id)
        return sorted(
            (v for v in field.code_list_values if v.active),
            key=lambda v: v.order,
        )

    # -----------------------------------------------------------------
    # Value management
    # -----------------------------------------------------------------

    def set_value(self, field_id: str, value: Any) -> list[str]:
        """Store a value and re-validate that field.

        Invalid values are still stored; their messages are returned and
        kept on the field's state until the value changes.

        Raises:
            ValueError: If the field_id does not exist in the form.
        """
        field = self._require_field(field_id)
        messages = validate_field(field, value)
        self.values[field_id] = value
        self.errors[field_id] = messages
        return messages

    def set_values(self, values: dict[str, Any]) -> tuple[dict[str, Any], dict[str, str]]:
        """Set multiple values at once, skipping unknown fields.

        Returns:
            A tuple of (accepted, rejected) where:
            - accepted: {field_id: value} for stored values
            - rejected: {field_id: error_message} for unknown field IDs
        """
        accepted: dict[str, Any] = {}
        rejected: dict[str, str] = {}

        for field_id, value in values.items():
            try:
                self.set_value(field_id, value)
                accepted[field_id] = value
            except ValueError as e:
                rejected[field_id] = str(e)

        return accepted, rejected

    def get_value(self, field_id: str) -> Any:
        """Retrieve the current value of a field, or None if not set."""
        return self.values.get(field_id)

    def clear_value(self, field_id: str) -> None:
        """Remove a value and its messages."""
        self.values.pop(field_id, None)
        self.errors.pop(field_id, None)

    def get_values(self) -> dict[str, Any]:
        """Return a copy of all current values."""
        return dict(self.values)

    def get_visible_values(self) -> dict[str, Any]:
        """Return only values of currently visible fields."""
        visible_ids = {f.field_id for f in self.get_visible_fields()}
        return {k: v for k, v in self.values.items() if k in visible_ids}

    # -----------------------------------------------------------------
    # Submission
    # -----------------------------------------------------------------

    def submit(self, mode: SubmissionMode = SubmissionMode.VISIBLE_REQUIRED) -> SubmissionResult:
        """Validate the whole form for submission.

        On failure, the failing fields' messages replace their current
        errors so the presentation layer can surface them.
        """
        result = submit_form(self.form, self.values, mode=mode, read_only=self.read_only)
        if not result.success:
            self.errors.update(result.errors)
        return result

    # -----------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------

    def _require_field(self, field_id: str) -> FormField:
        field = self.form.get_field(field_id)
        if field is None:
            raise ValueError(f"Field '{field_id}' does not exist in the form")
        return field
