from __future__ import annotations

import os
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional

from parts_pricing.app.config.loader import load_config_from_env
from parts_pricing.app.models.config import PricingConfig
from parts_pricing.engine.catalog.models import (
    CustomerGroup,
    Item,
    MarkupRule,
    PriceChange,
    PriceList,
    PriceListItem,
    utc_now,
)
from parts_pricing.engine.dashboard.margins import MarginDashboard, compute_dashboard
from parts_pricing.engine.lots.engine import RepricingLotEngine
from parts_pricing.engine.lots.locks import LotLocks
from parts_pricing.engine.pricing.pricing import RoundingRule
from parts_pricing.engine.pricing.resolver import PricingContext, ResolvedPrice, resolve_price
from parts_pricing.persistence.dynamo_catalog import DynamoCatalog
from parts_pricing.persistence.memory import InMemoryCatalog
from parts_pricing.util.errors import NotFoundError, validated
from parts_pricing.util.logging import get_logger, log_event
from parts_pricing.util.metrics import CloudWatchMetrics


class PricingService:
    """Entry point used by the HTTP layer and scripts.

    Owns the catalog store, the rounding rule and the lot engine; every
    operation validates its whole input before touching the store.
    """

    def __init__(
        self,
        store: Any,
        config: PricingConfig,
        *,
        metrics: Optional[CloudWatchMetrics] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.config = config
        self.metrics = metrics
        self.clock = clock
        self.rounding = RoundingRule(mode=config.rounding.mode, increment=config.rounding.increment)
        self.lots = RepricingLotEngine(
            store,
            rounding=self.rounding,
            locks=LotLocks(
                strategy=config.locking.strategy,
                timeout_seconds=config.locking.timeout_seconds,
            ),
            metrics=metrics,
            clock=clock,
        )
        self.logger = get_logger(self.__class__.__name__)
        self._admin_lock = threading.Lock()

    def seed_markup_rules(self) -> None:
        if not self.config.markup_rules or self.store.snapshot().markup_rules:
            return
        self.update_markup_rules(rule.model_dump() for rule in self.config.markup_rules)

    def put_items(self, rows: Iterable[Mapping[str, Any]]) -> List[Item]:
        items = [validated(Item, row) for row in rows]
        self.store.put_items(items)
        return items

    def get_item(self, item_id: str) -> Item:
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFoundError("item", item_id)
        return item

    def list_items(self) -> List[Item]:
        return sorted(self.store.snapshot().items.values(), key=lambda item: item.id)

    def resolve(
        self,
        item_id: str,
        *,
        customer_id: Optional[str] = None,
        price_list_id: Optional[str] = None,
        as_of: Optional[datetime] = None,
    ) -> ResolvedPrice:
        snapshot = self.store.snapshot()
        item = snapshot.items.get(item_id)
        if item is None:
            raise NotFoundError("item", item_id)
        return resolve_price(
            item,
            PricingContext.from_snapshot(snapshot, self.rounding),
            as_of=as_of or self.clock(),
            customer_id=customer_id,
            price_list_id=price_list_id,
        )

    def price_history(self, item_id: str) -> List[PriceChange]:
        self.get_item(item_id)
        return self.store.price_history(item_id)

    def list_markup_rules(self) -> List[MarkupRule]:
        rules = self.store.snapshot().markup_rules.values()
        return sorted(rules, key=lambda rule: rule.category.value)

    def update_markup_rules(self, rows: Iterable[Mapping[str, Any]]) -> List[MarkupRule]:
        rules = [validated(MarkupRule, row) for row in rows]
        self.store.put_markup_rules(rules)
        log_event(
            self.logger,
            "markup_rules_updated",
            categories=[rule.category.value for rule in rules],
        )
        return self.list_markup_rules()

    def create_price_list(self, data: Mapping[str, Any]) -> PriceList:
        payload = {key: value for key, value in data.items() if value is not None}
        payload["id"] = str(uuid.uuid4())
        payload.setdefault("valid_from", self.clock())
        price_list = validated(PriceList, payload)
        self.store.put_price_list(price_list)
        log_event(
            self.logger,
            "price_list_created",
            price_list_id=price_list.id,
            type=price_list.type.value,
            priority=price_list.priority,
        )
        return price_list

    def get_price_list(self, list_id: str) -> PriceList:
        price_list = self.store.get_price_list(list_id)
        if price_list is None:
            raise NotFoundError("price_list", list_id)
        return price_list

    def update_price_list(self, list_id: str, data: Mapping[str, Any]) -> PriceList:
        """Merge ``data`` into the stored list; keys left out keep their value."""
        with self._admin_lock:
            current = self.get_price_list(list_id)
            price_list = validated(PriceList, {**current.model_dump(), **data, "id": list_id})
            self.store.put_price_list(price_list)
        log_event(
            self.logger,
            "price_list_updated",
            price_list_id=list_id,
            fields=sorted(data),
            active=price_list.active,
        )
        return price_list

    def deactivate_price_list(self, list_id: str) -> PriceList:
        return self.update_price_list(list_id, {"active": False})

    def list_price_lists(self) -> List[PriceList]:
        lists = self.store.snapshot().price_lists.values()
        return sorted(lists, key=lambda price_list: (price_list.priority, price_list.id))

    def upsert_price_list_items(self, list_id: str, rows: Iterable[Mapping[str, Any]]) -> List[PriceListItem]:
        self.get_price_list(list_id)
        snapshot = self.store.snapshot()
        entries = [validated(PriceListItem, {**row, "list_id": list_id}) for row in rows]
        for entry in entries:
            if entry.item_id not in snapshot.items:
                raise NotFoundError("item", entry.item_id)
        self.store.put_price_list_items(entries)
        return entries

    def list_price_list_items(self, list_id: str) -> List[PriceListItem]:
        self.get_price_list(list_id)
        entries = self.store.snapshot().list_items.values()
        return sorted(
            (entry for entry in entries if entry.list_id == list_id),
            key=lambda entry: entry.item_id,
        )

    def create_customer_group(self, data: Mapping[str, Any]) -> CustomerGroup:
        payload = {key: value for key, value in data.items() if value is not None}
        payload["id"] = str(uuid.uuid4())
        group = validated(CustomerGroup, payload)
        self.store.put_customer_group(group)
        log_event(
            self.logger,
            "customer_group_created",
            group_id=group.id,
            discount_percent=group.discount_percent,
        )
        return group

    def get_customer_group(self, group_id: str) -> CustomerGroup:
        group = self.store.get_customer_group(group_id)
        if group is None:
            raise NotFoundError("customer_group", group_id)
        return group

    def update_customer_group(self, group_id: str, data: Mapping[str, Any]) -> CustomerGroup:
        # membership changes go through add_group_member/remove_group_member
        changes = {key: value for key, value in data.items() if key not in ("id", "members")}
        with self._admin_lock:
            current = self.get_customer_group(group_id)
            group = validated(CustomerGroup, {**current.model_dump(), **changes})
            self.store.put_customer_group(group)
        log_event(
            self.logger,
            "customer_group_updated",
            group_id=group_id,
            fields=sorted(changes),
            active=group.active,
        )
        return group

    def deactivate_customer_group(self, group_id: str) -> CustomerGroup:
        return self.update_customer_group(group_id, {"active": False})

    def list_customer_groups(self) -> List[CustomerGroup]:
        groups = self.store.snapshot().customer_groups.values()
        return sorted(groups, key=lambda group: group.id)

    def add_group_member(self, group_id: str, customer_id: str) -> CustomerGroup:
        with self._admin_lock:
            group = self.get_customer_group(group_id)
            updated = group.model_copy(update={"members": group.members | {customer_id}})
            self.store.put_customer_group(updated)
        return updated

    def remove_group_member(self, group_id: str, customer_id: str) -> CustomerGroup:
        with self._admin_lock:
            group = self.get_customer_group(group_id)
            updated = group.model_copy(update={"members": group.members - {customer_id}})
            self.store.put_customer_group(updated)
        return updated

    def dashboard(self, *, as_of: Optional[datetime] = None) -> MarginDashboard:
        snapshot = self.store.snapshot()
        result = compute_dashboard(
            snapshot.items.values(),
            PricingContext.from_snapshot(snapshot, self.rounding),
            as_of=as_of or self.clock(),
        )
        log_event(
            self.logger,
            "dashboard_computed",
            priced=result.priced_count,
            unpriced=result.unpriced_count,
            average_margin=result.average_margin,
        )
        if self.metrics:
            self.metrics.record_unpriced_items(count=result.unpriced_count)
        return result


def build_service_from_env() -> PricingService:
    config = load_config_from_env()
    table = os.getenv("CATALOG_TABLE")
    store = DynamoCatalog(table) if table else InMemoryCatalog()
    service = PricingService(store, config, metrics=CloudWatchMetrics.from_env())
    service.seed_markup_rules()
    return service
