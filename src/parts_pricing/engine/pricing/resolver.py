"""Price resolution.

Chain: explicit sale price or category markup over cost, replaced by the first
effective price-list override, then reduced by the customer's group discount.
Resolution is a pure function of the item, the injected ``PricingContext`` and
the ``as_of`` instant.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import cached_property
from typing import List, Mapping, Optional, Tuple

from parts_pricing.engine.catalog.models import (
    Category,
    CustomerGroup,
    Item,
    MarkupRule,
    PriceList,
    PriceListItem,
    ensure_utc,
)
from parts_pricing.engine.catalog.snapshot import CatalogSnapshot
from parts_pricing.engine.pricing.pricing import (
    RoundingRule,
    ZERO,
    discounted_price,
    markup_price,
)
from parts_pricing.util.errors import NoPriceAvailableError, NotFoundError

MARGIN_QUANTUM = Decimal("0.0001")


class BaseSource(str, Enum):
    EXPLICIT = "EXPLICIT"
    PRICE_LIST = "PRICE_LIST"
    MARKUP = "MARKUP"


@dataclass(frozen=True)
class PricingContext:
    markup_rules: Mapping[Category, MarkupRule]
    price_lists: Mapping[str, PriceList]
    list_items: Mapping[Tuple[str, str], PriceListItem]
    customer_groups: Mapping[str, CustomerGroup]
    rounding: RoundingRule = RoundingRule()

    @classmethod
    def from_snapshot(cls, snapshot: CatalogSnapshot, rounding: RoundingRule) -> "PricingContext":
        return cls(
            markup_rules=snapshot.markup_rules,
            price_lists=snapshot.price_lists,
            list_items=snapshot.list_items,
            customer_groups=snapshot.customer_groups,
            rounding=rounding,
        )

    @cached_property
    def lists_by_precedence(self) -> List[PriceList]:
        return sorted(self.price_lists.values(), key=lambda price_list: (price_list.priority, price_list.id))

    @cached_property
    def groups_by_id(self) -> List[CustomerGroup]:
        return sorted(self.customer_groups.values(), key=lambda group: group.id)

    def group_for(self, customer_id: str) -> Optional[CustomerGroup]:
        # first active match wins when a customer sits in several groups
        for group in self.groups_by_id:
            if group.active and customer_id in group.members:
                return group
        return None


@dataclass
class ResolvedPrice:
    item_id: str
    purchase_cost: Decimal
    base_price: Decimal
    base_source: BaseSource
    final_price: Decimal
    margin: Optional[Decimal]
    markup_percentage: Optional[Decimal] = None
    markup_price: Optional[Decimal] = None
    price_list_id: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    customer_group_id: Optional[str] = None
    trace: List[str] = field(default_factory=list)

    @property
    def price(self) -> Decimal:
        return self.final_price


def compute_margin(final_price: Decimal, purchase_cost: Decimal) -> Optional[Decimal]:
    if final_price == ZERO:
        return None
    return ((final_price - purchase_cost) / final_price).quantize(MARGIN_QUANTUM)


def _list_override(
    item: Item,
    context: PricingContext,
    as_of: datetime,
    price_list_id: Optional[str],
) -> Optional[PriceListItem]:
    if price_list_id is not None:
        pinned = context.price_lists.get(price_list_id)
        if pinned is None:
            raise NotFoundError("price_list", price_list_id)
        candidates = [pinned]
    else:
        candidates = context.lists_by_precedence
    for price_list in candidates:
        if not price_list.is_effective(as_of):
            continue
        override = context.list_items.get((price_list.id, item.id))
        if override is not None:
            return override
    return None


def resolve_price(
    item: Item,
    context: PricingContext,
    *,
    as_of: datetime,
    customer_id: Optional[str] = None,
    price_list_id: Optional[str] = None,
) -> ResolvedPrice:
    as_of = ensure_utc(as_of)
    trace: List[str] = [f"purchase cost: {item.purchase_cost}"]

    rule = context.markup_rules.get(item.category)
    markup_pct: Optional[Decimal] = None
    from_markup: Optional[Decimal] = None
    if rule is not None and rule.active:
        markup_pct = rule.percentage
        from_markup = markup_price(item.purchase_cost, rule.percentage, context.rounding)
        trace.append(f"markup {item.category.value} ({rule.percentage}%): {from_markup}")
    else:
        trace.append(f"no active markup for {item.category.value}")

    base: Optional[Decimal] = None
    source: Optional[BaseSource] = None
    if item.explicit_sale_price is not None:
        base = item.explicit_sale_price
        source = BaseSource.EXPLICIT
        trace.append(f"explicit sale price: {base}")

    override = _list_override(item, context, as_of, price_list_id)
    applied_list: Optional[str] = None
    if override is not None:
        base = override.override_price
        source = BaseSource.PRICE_LIST
        applied_list = override.list_id
        trace.append(f"price list {override.list_id}: {base}")

    if base is None:
        if from_markup is None:
            raise NoPriceAvailableError(item.id, f"no active markup rule for {item.category.value}")
        base = from_markup
        source = BaseSource.MARKUP

    final = base
    discount: Optional[Decimal] = None
    group_id: Optional[str] = None
    if customer_id:
        group = context.group_for(customer_id)
        if group is not None:
            discount = group.discount_percent
            group_id = group.id
            final = discounted_price(base, group.discount_percent, context.rounding)
            trace.append(f"group {group.id} discount ({group.discount_percent}%): {final}")

    margin = compute_margin(final, item.purchase_cost)
    trace.append(f"final price: {final}")
    return ResolvedPrice(
        item_id=item.id,
        purchase_cost=item.purchase_cost,
        base_price=base,
        base_source=source,
        final_price=final,
        margin=margin,
        markup_percentage=markup_pct,
        markup_price=from_markup,
        price_list_id=applied_list,
        discount_percent=discount,
        customer_group_id=group_id,
        trace=trace,
    )
