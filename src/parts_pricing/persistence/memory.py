from __future__ import annotations

import threading
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from parts_pricing.engine.catalog.models import (
    Category,
    CustomerGroup,
    Item,
    MarkupRule,
    PriceChange,
    PriceList,
    PriceListItem,
)
from parts_pricing.engine.catalog.snapshot import CatalogSnapshot
from parts_pricing.engine.lots.models import LotState, RepricingLot
from parts_pricing.util.errors import ConflictError, NotFoundError


class InMemoryCatalog:
    """Process-local catalog store.

    Every write builds new dictionaries and swaps them in under the lock, so a
    snapshot handed out earlier keeps pointing at the dictionaries it was
    built from and never observes a partial write.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._items: Dict[str, Item] = {}
        self._rules: Dict[Category, MarkupRule] = {}
        self._lists: Dict[str, PriceList] = {}
        self._list_items: Dict[Tuple[str, str], PriceListItem] = {}
        self._groups: Dict[str, CustomerGroup] = {}
        self._lots: Dict[str, RepricingLot] = {}
        self._history: Dict[str, Tuple[PriceChange, ...]] = {}

    def snapshot(self) -> CatalogSnapshot:
        with self._lock:
            return CatalogSnapshot(
                items=MappingProxyType(self._items),
                markup_rules=MappingProxyType(self._rules),
                price_lists=MappingProxyType(self._lists),
                list_items=MappingProxyType(self._list_items),
                customer_groups=MappingProxyType(self._groups),
            )

    def put_items(self, items: Iterable[Item]) -> None:
        with self._lock:
            updated = dict(self._items)
            for item in items:
                updated[item.id] = item
            self._items = updated

    def get_item(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def put_markup_rules(self, rules: Iterable[MarkupRule]) -> None:
        with self._lock:
            updated = dict(self._rules)
            for rule in rules:
                updated[rule.category] = rule
            self._rules = updated

    def put_price_list(self, price_list: PriceList) -> None:
        with self._lock:
            updated = dict(self._lists)
            updated[price_list.id] = price_list
            self._lists = updated

    def get_price_list(self, list_id: str) -> Optional[PriceList]:
        return self._lists.get(list_id)

    def put_price_list_items(self, entries: Iterable[PriceListItem]) -> None:
        with self._lock:
            updated = dict(self._list_items)
            for entry in entries:
                updated[(entry.list_id, entry.item_id)] = entry
            self._list_items = updated

    def put_customer_group(self, group: CustomerGroup) -> None:
        with self._lock:
            updated = dict(self._groups)
            updated[group.id] = group
            self._groups = updated

    def get_customer_group(self, group_id: str) -> Optional[CustomerGroup]:
        return self._groups.get(group_id)

    def create_lot(self, lot: RepricingLot) -> None:
        with self._lock:
            if lot.id in self._lots:
                raise ConflictError(f"lot {lot.id} already exists")
            updated = dict(self._lots)
            updated[lot.id] = lot
            self._lots = updated

    def update_lot(self, lot: RepricingLot, *, expected_states: FrozenSet[LotState]) -> None:
        with self._lock:
            self._check_lot_state(lot.id, expected_states)
            updated = dict(self._lots)
            updated[lot.id] = lot
            self._lots = updated

    def get_lot(self, lot_id: str) -> Optional[RepricingLot]:
        return self._lots.get(lot_id)

    def list_lots(self) -> List[RepricingLot]:
        return sorted(self._lots.values(), key=lambda lot: (lot.created_at, lot.id))

    def commit_lot(
        self,
        lot: RepricingLot,
        *,
        expected_states: FrozenSet[LotState],
        price_updates: Mapping[str, Optional[Decimal]],
        expected_explicit_prices: Mapping[str, Optional[Decimal]],
        history: Iterable[PriceChange] = (),
    ) -> None:
        """Write the lot and its prices together.

        Every updated item must still carry its entry in ``expected_explicit_prices``
        as explicit sale price, otherwise nothing is written.
        """
        with self._lock:
            self._check_lot_state(lot.id, expected_states)
            items = dict(self._items)
            for item_id, price in price_updates.items():
                current = items.get(item_id)
                if current is None:
                    raise NotFoundError("item", item_id)
                if current.explicit_sale_price != expected_explicit_prices.get(item_id):
                    raise ConflictError(f"item {item_id} changed since lot {lot.id} was planned")
                items[item_id] = current.model_copy(update={"explicit_sale_price": price})
            changes = dict(self._history)
            for change in history:
                changes[change.item_id] = changes.get(change.item_id, ()) + (change,)
            lots = dict(self._lots)
            lots[lot.id] = lot
            self._items = items
            self._history = changes
            self._lots = lots

    def price_history(self, item_id: str) -> List[PriceChange]:
        return list(self._history.get(item_id, ()))

    def _check_lot_state(self, lot_id: str, expected_states: FrozenSet[LotState]) -> None:
        stored = self._lots.get(lot_id)
        if stored is None:
            raise NotFoundError("lot", lot_id)
        if stored.state not in expected_states:
            raise ConflictError(f"lot {lot_id} is {stored.state.value}")
