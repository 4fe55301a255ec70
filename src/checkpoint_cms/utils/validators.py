"""
Input validation for tracked edits.
"""

from typing import Any, Dict, List, Optional, Callable, Type
from dataclasses import dataclass

from .errors import ValidationError


@dataclass
class ValidationRule:
    """Represents a validation rule."""
    name: str
    validator: Callable[[Any], bool]
    message: str
    code: str


class Validator:
    """Chainable validator for a single field."""

    def __init__(self, field_name: str):
        self.field_name = field_name
        self.rules: List[ValidationRule] = []

    def add_rule(self, rule: ValidationRule) -> 'Validator':
        """Add a validation rule."""
        self.rules.append(rule)
        return self

    def required(self, message: Optional[str] = None) -> 'Validator':
        """Require field to be present and not None."""
        rule = ValidationRule(
            name="required",
            validator=lambda x: x is not None,
            message=message or f"{self.field_name} is required",
            code="REQUIRED"
        )
        return self.add_rule(rule)

    def not_empty(self, message: Optional[str] = None) -> 'Validator':
        """Require field to not be empty."""
        def is_not_empty(value: Any) -> bool:
            if value is None:
                return False
            if isinstance(value, (str, list, dict)):
                return len(value) > 0
            return True

        rule = ValidationRule(
            name="not_empty",
            validator=is_not_empty,
            message=message or f"{self.field_name} cannot be empty",
            code="NOT_EMPTY"
        )
        return self.add_rule(rule)

    def max_length(self, length: int, message: Optional[str] = None) -> 'Validator':
        """Require string values to be at most ``length`` characters. Other types pass."""
        rule = ValidationRule(
            name="max_length",
            validator=lambda x: not isinstance(x, str) or len(x) <= length,
            message=message or f"{self.field_name} must be at most {length} characters",
            code="MAX_LENGTH"
        )
        return self.add_rule(rule)

    def type_check(self, expected_type: Type, message: Optional[str] = None) -> 'Validator':
        """Require field to be of specific type."""
        rule = ValidationRule(
            name="type_check",
            validator=lambda x: x is None or isinstance(x, expected_type),
            message=message or f"{self.field_name} must be of type {expected_type.__name__}",
            code="TYPE_CHECK"
        )
        return self.add_rule(rule)

    def validate(self, value: Any) -> None:
        """Validate value against all rules."""
        for rule in self.rules:
            if not rule.validator(value):
                raise ValidationError(
                    field=self.field_name,
                    value=value,
                    constraint=rule.message
                )


class ContentValidator:
    """
    Checks entity values against per-kind field-length limits.

    Scalar kinds are checked under the pseudo-field ``value``; record kinds
    are checked field by field, falling back to ``default_limit`` for fields
    without an explicit limit.
    """

    def __init__(
        self,
        field_limits: Dict[str, Dict[str, int]],
        default_limit: int = 1000,
        record_kinds: Optional[List[str]] = None
    ):
        self.field_limits = field_limits
        self.default_limit = default_limit
        self.record_kinds = set(record_kinds or [])
        self._cache: Dict[str, Validator] = {}

    def _field_validator(self, kind: str, field_name: str) -> Validator:
        key = f"{kind}.{field_name}"
        validator = self._cache.get(key)
        if validator is None:
            limit = self.field_limits.get(kind, {}).get(field_name, self.default_limit)
            validator = Validator(field_name).max_length(limit)
            self._cache[key] = validator
        return validator

    def validate(self, kind: str, value: Any) -> None:
        """
        Validate an entity value (full record, partial update, or scalar).

        Raises:
            ValidationError: If any field exceeds its limit or has the wrong shape
        """
        if kind in self.record_kinds:
            Validator(kind).type_check(dict, f"{kind} values must be objects").validate(value)
            for field_name, field_value in (value or {}).items():
                self._field_validator(kind, field_name).validate(field_value)
        else:
            Validator("value").type_check(str, f"{kind} values must be strings").validate(value)
            self._field_validator(kind, "value").validate(value)


def context_name_validator(field_name: str = "context") -> Validator:
    """Context name validator."""
    return (Validator(field_name)
            .required()
            .type_check(str)
            .not_empty()
            .max_length(200))


def entity_id_validator(field_name: str = "id") -> Validator:
    """Entity id validator."""
    return (Validator(field_name)
            .required()
            .type_check(str)
            .not_empty()
            .max_length(500))


__all__ = [
    'ValidationRule',
    'Validator',
    'ContentValidator',
    'context_name_validator',
    'entity_id_validator',
]
