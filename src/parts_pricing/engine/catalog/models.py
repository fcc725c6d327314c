from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Category(str, Enum):
    MOTOR = "MOTOR"
    FRENOS = "FRENOS"
    SUSPENSION = "SUSPENSION"
    ELECTRICA = "ELECTRICA"
    TRANSMISION = "TRANSMISION"
    CARROCERIA = "CARROCERIA"
    NEUMATICOS = "NEUMATICOS"
    LUBRICANTES = "LUBRICANTES"
    FILTROS = "FILTROS"
    TORNILLERIA = "TORNILLERIA"
    ACCESORIOS = "ACCESORIOS"
    OTRO = "OTRO"


class PriceListType(str, Enum):
    RETAIL = "RETAIL"
    WHOLESALE = "WHOLESALE"
    WORKSHOP = "WORKSHOP"
    PROMO = "PROMO"


class Item(BaseModel):
    """A catalog entry. Only ``explicit_sale_price`` is written by pricing."""

    model_config = ConfigDict(frozen=True)

    id: str
    code: str = ""
    name: str = ""
    category: Category
    purchase_cost: Decimal
    explicit_sale_price: Optional[Decimal] = None
    active: bool = True
    supplier_id: Optional[str] = None

    @field_validator("id")
    @classmethod
    def required_stripped(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value is required")
        return value.strip()

    @field_validator("purchase_cost")
    @classmethod
    def non_negative_cost(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("purchase_cost must be >= 0")
        return value

    @field_validator("explicit_sale_price")
    @classmethod
    def non_negative_price(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is not None and value < 0:
            raise ValueError("explicit_sale_price must be >= 0")
        return value


class MarkupRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Category
    percentage: Decimal
    active: bool = True
    description: Optional[str] = None

    @field_validator("percentage")
    @classmethod
    def percentage_in_range(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 500:
            raise ValueError("percentage must be between 0 and 500")
        return value


class PriceList(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: PriceListType
    priority: int = 0
    valid_from: datetime = Field(default_factory=utc_now)
    valid_to: Optional[datetime] = None
    active: bool = True
    description: Optional[str] = None

    @field_validator("id", "name")
    @classmethod
    def required_stripped(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value is required")
        return value.strip()

    @field_validator("priority")
    @classmethod
    def non_negative_priority(cls, value: int) -> int:
        if value < 0:
            raise ValueError("priority must be >= 0")
        return value

    @field_validator("valid_from", "valid_to")
    @classmethod
    def normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_utc(value)

    @field_validator("valid_to")
    @classmethod
    def window_is_ordered(cls, value: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        valid_from = info.data.get("valid_from")
        if value is not None and valid_from is not None and ensure_utc(value) < valid_from:
            raise ValueError("valid_to must not precede valid_from")
        return value

    def is_effective(self, as_of: datetime) -> bool:
        """Active and ``as_of`` inside the inclusive validity window."""
        if not self.active:
            return False
        as_of = ensure_utc(as_of)
        if as_of < self.valid_from:
            return False
        return self.valid_to is None or as_of <= self.valid_to


class PriceListItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    list_id: str
    item_id: str
    override_price: Decimal

    @field_validator("override_price")
    @classmethod
    def positive_price(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("override_price must be > 0")
        return value


class CustomerGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    discount_percent: Decimal
    active: bool = True
    description: Optional[str] = None
    members: FrozenSet[str] = frozenset()

    @field_validator("name")
    @classmethod
    def required_stripped(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value is required")
        return value.strip()

    @field_validator("discount_percent")
    @classmethod
    def discount_in_range(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 100:
            raise ValueError("discount_percent must be between 0 and 100")
        return value


class PriceChange(BaseModel):
    """History entry for one explicit-price write made by a lot."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    previous_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None
    reason: str
    lot_id: str
    changed_at: datetime = Field(default_factory=utc_now)
