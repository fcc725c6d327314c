from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping, Tuple

from parts_pricing.engine.catalog.models import (
    Category,
    CustomerGroup,
    Item,
    MarkupRule,
    PriceList,
    PriceListItem,
)


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(mapping)


@dataclass(frozen=True)
class CatalogSnapshot:
    """Read-only view of the catalog as of one committed state.

    Stores hand out snapshots that are never mutated by later writes, so long
    reads (dashboard, simulation) see a single consistent catalog.
    """

    items: Mapping[str, Item] = field(default_factory=lambda: _frozen({}))
    markup_rules: Mapping[Category, MarkupRule] = field(default_factory=lambda: _frozen({}))
    price_lists: Mapping[str, PriceList] = field(default_factory=lambda: _frozen({}))
    list_items: Mapping[Tuple[str, str], PriceListItem] = field(default_factory=lambda: _frozen({}))
    customer_groups: Mapping[str, CustomerGroup] = field(default_factory=lambda: _frozen({}))

    @classmethod
    def build(
        cls,
        *,
        items: Iterable[Item] = (),
        markup_rules: Iterable[MarkupRule] = (),
        price_lists: Iterable[PriceList] = (),
        list_items: Iterable[PriceListItem] = (),
        customer_groups: Iterable[CustomerGroup] = (),
    ) -> "CatalogSnapshot":
        return cls(
            items=_frozen({item.id: item for item in items}),
            markup_rules=_frozen({rule.category: rule for rule in markup_rules}),
            price_lists=_frozen({price_list.id: price_list for price_list in price_lists}),
            list_items=_frozen({(entry.list_id, entry.item_id): entry for entry in list_items}),
            customer_groups=_frozen({group.id: group for group in customer_groups}),
        )

    def active_items(self) -> List[Item]:
        return sorted((item for item in self.items.values() if item.active), key=lambda item: item.id)
