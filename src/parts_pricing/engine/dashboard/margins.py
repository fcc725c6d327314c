from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from parts_pricing.engine.catalog.models import Item
from parts_pricing.engine.pricing.resolver import MARGIN_QUANTUM, PricingContext, resolve_price
from parts_pricing.util.errors import NoPriceAvailableError

RANKING_SIZE = 5

# (label, lower bound inclusive, upper bound exclusive) in margin percent
MARGIN_BUCKETS: Tuple[Tuple[str, Decimal, Optional[Decimal]], ...] = (
    ("0-20%", Decimal("0"), Decimal("20")),
    ("20-40%", Decimal("20"), Decimal("40")),
    ("40-60%", Decimal("40"), Decimal("60")),
    ("60-80%", Decimal("60"), Decimal("80")),
    (">80%", Decimal("80"), None),
)


@dataclass
class MarginBucket:
    label: str
    count: int = 0


@dataclass
class MarginEntry:
    item_id: str
    code: str
    name: str
    margin: Decimal


@dataclass
class MarginDashboard:
    average_margin: Optional[Decimal]
    items_missing_markup: int
    items_missing_sale_price: int
    unpriced_count: int
    priced_count: int
    margin_distribution: List[MarginBucket] = field(default_factory=list)
    top_by_margin: List[MarginEntry] = field(default_factory=list)
    bottom_by_margin: List[MarginEntry] = field(default_factory=list)


def _bucket_index(margin: Decimal) -> int:
    percent = margin * 100
    # buckets are ordered; negative margins land in the lowest one
    for index, (_, _, upper) in enumerate(MARGIN_BUCKETS):
        if upper is None or percent < upper:
            return index
    return len(MARGIN_BUCKETS) - 1


def compute_dashboard(
    items: Iterable[Item],
    context: PricingContext,
    *,
    as_of: datetime,
) -> MarginDashboard:
    missing_markup = 0
    missing_sale_price = 0
    unpriced = 0
    entries: List[MarginEntry] = []
    buckets = [MarginBucket(label=label) for label, _, _ in MARGIN_BUCKETS]

    for item in items:
        if not item.active:
            continue
        rule = context.markup_rules.get(item.category)
        if rule is None or not rule.active:
            missing_markup += 1
        if item.explicit_sale_price is None:
            missing_sale_price += 1
        try:
            resolved = resolve_price(item, context, as_of=as_of)
        except NoPriceAvailableError:
            unpriced += 1
            continue
        if resolved.margin is None:
            continue
        entries.append(
            MarginEntry(item_id=item.id, code=item.code, name=item.name, margin=resolved.margin)
        )
        buckets[_bucket_index(resolved.margin)].count += 1

    average: Optional[Decimal] = None
    if entries:
        total = sum((entry.margin for entry in entries), Decimal("0"))
        average = (total / len(entries)).quantize(MARGIN_QUANTUM)

    top = sorted(entries, key=lambda entry: (-entry.margin, entry.item_id))[:RANKING_SIZE]
    bottom = sorted(entries, key=lambda entry: (entry.margin, entry.item_id))[:RANKING_SIZE]
    return MarginDashboard(
        average_margin=average,
        items_missing_markup=missing_markup,
        items_missing_sale_price=missing_sale_price,
        unpriced_count=unpriced,
        priced_count=len(entries),
        margin_distribution=buckets,
        top_by_margin=top,
        bottom_by_margin=bottom,
    )
