from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from parts_pricing.engine.catalog.models import Category


class RoundingConfig(BaseModel):
    mode: str = "nearest"
    increment: Decimal = Decimal("0.01")


class LockingConfig(BaseModel):
    strategy: str = "global"
    timeout_seconds: float = 30.0


class MarkupRuleConfig(BaseModel):
    category: Category
    percentage: Decimal
    active: bool = True
    description: Optional[str] = None


class PricingConfig(BaseModel):
    schema_version: int = 1
    rounding: RoundingConfig = Field(default_factory=RoundingConfig)
    locking: LockingConfig = Field(default_factory=LockingConfig)
    markup_rules: List[MarkupRuleConfig] = Field(default_factory=list)
