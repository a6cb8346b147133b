"""
Error taxonomy for the civic issues service.

Route handlers in ``main`` translate these into HTTP responses; the
services below them only raise.
"""
from typing import Any, Dict, List, Optional


class CivicIssuesError(Exception):
    """Base class for every error raised by the service layer."""


class FieldValidationError(CivicIssuesError):
    """Explicit user input was malformed. Carries field-level detail."""

    def __init__(self, errors: List[Dict[str, Any]]):
        self.errors = errors
        fields = ", ".join(".".join(str(p) for p in e.get("loc", ())) for e in errors)
        super().__init__(f"Invalid fields: {fields}")

    @classmethod
    def for_field(cls, field: str, message: str, error_type: str = "value_error") -> "FieldValidationError":
        return cls([{"loc": ["body", field], "msg": message, "type": error_type}])

    @classmethod
    def from_pydantic(cls, exc) -> "FieldValidationError":
        """Re-home a pydantic ValidationError's errors under the request body."""
        errors = []
        for err in exc.errors():
            errors.append({
                "loc": ["body", *err.get("loc", ())],
                "msg": err.get("msg", ""),
                "type": err.get("type", "value_error"),
            })
        return cls(errors)


class NotFoundError(CivicIssuesError):
    def __init__(self, entity: str, identifier: Optional[Any] = None):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found")


class ExternalServiceError(CivicIssuesError):
    """An AI collaborator call failed. Never surfaced from issue submission."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class PersistenceError(CivicIssuesError):
    """A database write could not be committed; the transaction was rolled back."""
