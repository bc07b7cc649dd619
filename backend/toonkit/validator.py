"""
Validation of tool arguments against an endpoint's parameter list.
"""

import math
from typing import Any

from pydantic import BaseModel, Field

from .exceptions import ErrorCode, ParameterValidationError
from .models import Parameter


class ValidationErrorDetail(BaseModel):
    field: str
    message: str
    code: ErrorCode
    value: Any = None
    constraint: dict[str, Any] | None = None


class ValidationResult(BaseModel):
    valid: bool
    errors: list[ValidationErrorDetail] = Field(default_factory=list)


class ParameterValidator:
    """Checks required, type and enum constraints of endpoint parameters."""

    @staticmethod
    def _matches_type(value: Any, expected: str) -> bool:
        if expected == "number":
            if isinstance(value, bool):
                return False
            if isinstance(value, (int, float)):
                return True
            # Numeric strings are accepted, e.g. "2023"
            if isinstance(value, str):
                try:
                    return math.isfinite(float(value))
                except ValueError:
                    return False
            return False
        if expected == "boolean":
            return isinstance(value, bool)
        return isinstance(value, str)

    @classmethod
    def validate(cls, parameters: list[Parameter], params: dict[str, Any]) -> ValidationResult:
        """
        Validate call arguments.

        Args:
            parameters: Parameter definitions of the endpoint
            params: Arguments supplied by the caller

        Returns:
            ValidationResult listing every violation
        """
        errors: list[ValidationErrorDetail] = []

        for param in parameters:
            value = params.get(param.name)

            if value is None:
                if param.required:
                    errors.append(ValidationErrorDetail(
                        field=param.name,
                        message=f"Required parameter '{param.name}' is missing",
                        code=ErrorCode.REQUIRED_PARAMETER_MISSING,
                        constraint={"required": True},
                    ))
                continue

            if not cls._matches_type(value, param.type):
                errors.append(ValidationErrorDetail(
                    field=param.name,
                    message=f"'{param.name}' must be of type {param.type}",
                    code=ErrorCode.INVALID_PARAMETER_TYPE,
                    value=value,
                    constraint={"expectedType": param.type},
                ))
                continue

            if param.enum and str(value) not in param.enum:
                errors.append(ValidationErrorDetail(
                    field=param.name,
                    message=f"'{param.name}' must be one of [{', '.join(param.enum)}]",
                    code=ErrorCode.INVALID_PARAMETER_VALUE,
                    value=value,
                    constraint={"allowedValues": param.enum},
                ))

        return ValidationResult(valid=not errors, errors=errors)

    @classmethod
    def validate_or_raise(
        cls,
        parameters: list[Parameter],
        params: dict[str, Any],
        context: dict[str, Any] | None = None,
    ) -> None:
        """Validate and raise ParameterValidationError on the first failing call."""
        result = cls.validate(parameters, params)
        if not result.valid:
            raise ParameterValidationError(
                ", ".join(e.message for e in result.errors),
                ErrorCode.INVALID_PARAMETERS,
                {"errors": [e.model_dump(mode="json") for e in result.errors], **(context or {})},
            )
