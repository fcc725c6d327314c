from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from parts_pricing.engine.catalog.models import Category, Item, utc_now
from parts_pricing.engine.pricing.pricing import AdjustmentType


class LotState(str, Enum):
    DRAFT = "DRAFT"
    SIMULATED = "SIMULATED"
    APPLIED = "APPLIED"
    REVERTED = "REVERTED"


PENDING_STATES = frozenset({LotState.DRAFT, LotState.SIMULATED})
SETTLED_STATES = frozenset({LotState.APPLIED, LotState.REVERTED})


class LotParams(BaseModel):
    """What a lot changes: the adjustment and which items it targets."""

    model_config = ConfigDict(frozen=True)

    adjustment_type: AdjustmentType
    value: Decimal
    category_filter: FrozenSet[Category] = frozenset()
    supplier_filter: Optional[str] = None

    @field_validator("value")
    @classmethod
    def non_zero(cls, value: Decimal) -> Decimal:
        if value == 0:
            raise ValueError("value must not be 0")
        return value

    def matches(self, item: Item) -> bool:
        if not item.active:
            return False
        if self.category_filter and item.category not in self.category_filter:
            return False
        if self.supplier_filter and item.supplier_id != self.supplier_filter:
            return False
        return True


class SnapshotEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    previous_explicit_price: Optional[Decimal] = None
    previous_price: Decimal
    new_price: Decimal


class RepricingLot(LotParams):
    id: str
    label: str
    state: LotState = LotState.DRAFT
    snapshot: Dict[str, SnapshotEntry] = Field(default_factory=dict)
    affected_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    simulated_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    reverted_at: Optional[datetime] = None

    @field_validator("label")
    @classmethod
    def required_label(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("label is required")
        return value.strip()

    @model_validator(mode="after")
    def snapshot_matches_state(self) -> "RepricingLot":
        if self.state in SETTLED_STATES and not self.snapshot:
            raise ValueError(f"{self.state.value} lot requires a snapshot")
        if self.state in PENDING_STATES and self.snapshot:
            raise ValueError(f"{self.state.value} lot must not carry a snapshot")
        return self

    @property
    def params(self) -> LotParams:
        return LotParams(
            adjustment_type=self.adjustment_type,
            value=self.value,
            category_filter=self.category_filter,
            supplier_filter=self.supplier_filter,
        )


@dataclass
class SimulatedPrice:
    item_id: str
    code: str
    name: str
    category: Category
    current_price: Decimal
    new_price: Decimal
    delta: Decimal


@dataclass
class SimulationResult:
    items: List[SimulatedPrice]
    total_current: Decimal
    total_new: Decimal
    affected_count: int
    average_current: Decimal
    average_new: Decimal
    total_impact: Decimal
    skipped_item_ids: List[str] = field(default_factory=list)
    masked_item_ids: List[str] = field(default_factory=list)
    lot_id: Optional[str] = None


@dataclass
class AppliedResult:
    lot: RepricingLot
    affected_count: int
    skipped_item_ids: List[str] = field(default_factory=list)
    masked_item_ids: List[str] = field(default_factory=list)


@dataclass
class RevertedResult:
    lot: RepricingLot
    restored_count: int
