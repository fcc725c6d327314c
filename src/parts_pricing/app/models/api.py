from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from parts_pricing.engine.catalog.models import Category, PriceListType
from parts_pricing.engine.pricing.pricing import AdjustmentType


class ItemRequest(BaseModel):
    id: str
    code: str = ""
    name: str = ""
    category: Category
    purchase_cost: Decimal
    explicit_sale_price: Optional[Decimal] = None
    active: bool = True
    supplier_id: Optional[str] = None


class MarkupRuleRequest(BaseModel):
    category: Category
    percentage: Decimal
    active: bool = True
    description: Optional[str] = None


class PriceListRequest(BaseModel):
    name: str
    type: PriceListType
    priority: int = 0
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    active: bool = True
    description: Optional[str] = None


class PriceListUpdateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[PriceListType] = None
    priority: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    active: Optional[bool] = None
    description: Optional[str] = None


class PriceListItemRequest(BaseModel):
    item_id: str
    override_price: Decimal


class CustomerGroupRequest(BaseModel):
    name: str
    discount_percent: Decimal
    active: bool = True
    description: Optional[str] = None


class CustomerGroupUpdateRequest(BaseModel):
    name: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    active: Optional[bool] = None
    description: Optional[str] = None


class MemberRequest(BaseModel):
    customer_id: str


class SimulationRequest(BaseModel):
    adjustment_type: AdjustmentType
    value: Decimal
    category_filter: List[Category] = Field(default_factory=list)
    supplier_filter: Optional[str] = None


class LotRequest(SimulationRequest):
    label: str


class ApplyRequest(BaseModel):
    expected_prices: Optional[Dict[str, Decimal]] = None
