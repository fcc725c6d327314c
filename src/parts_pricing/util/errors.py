from __future__ import annotations

from typing import Any, Mapping, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class PricingError(Exception):
    """Base class for failures reported to pricing callers."""

    code = "pricing_error"


class ValidationError(PricingError):
    """Input rejected before any state change."""

    code = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(PricingError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(PricingError):
    """The requested transition is not legal for the current persisted state."""

    code = "conflict"


class NoPriceAvailableError(PricingError):
    code = "no_price_available"

    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(f"no price available for item {item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason


def validated(model: Type[ModelT], data: Mapping[str, Any]) -> ModelT:
    """Build ``model`` from ``data``, reporting the first offending field."""
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or model.__name__
        raise ValidationError(field, first.get("msg", "invalid value")) from exc
