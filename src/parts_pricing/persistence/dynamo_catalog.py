from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Type, TypeVar

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from parts_pricing.engine.catalog.models import (
    CustomerGroup,
    Item,
    MarkupRule,
    PriceChange,
    PriceList,
    PriceListItem,
)
from parts_pricing.engine.catalog.snapshot import CatalogSnapshot
from parts_pricing.engine.lots.models import LotState, RepricingLot
from parts_pricing.util.errors import ConflictError, NotFoundError, ValidationError
from parts_pricing.util.logging import get_logger, log_event

ModelT = TypeVar("ModelT", bound=BaseModel)

ITEM_PK = "ITEM"
RULE_PK = "RULE"
LIST_PK = "LIST"
LIST_ITEM_PK = "LISTITEM"
GROUP_PK = "GROUP"
LOT_PK = "LOT"
META_PK = "META"
VERSION_SK = "CATALOG"
VERSION_FIELD = "catalog_version"
HISTORY_PREFIX = "HISTORY#"
KEY_FIELDS = ("pk", "sk")
SNAPSHOT_ATTEMPTS = 3

# DynamoDB caps a single TransactWriteItems call at 100 actions.
MAX_TRANSACT_ACTIONS = 100
# commit_lot puts the lot and bumps the catalog version before the item updates
ITEM_ACTION_OFFSET = 2


def _from_dynamo(value: Any) -> Any:
    # money is stored as strings; the only numbers are integer counters
    if isinstance(value, Decimal):
        return int(value)
    if isinstance(value, dict):
        return {key: _from_dynamo(inner) for key, inner in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(inner) for inner in value]
    return value


def _record(pk: str, sk: str, model: BaseModel) -> Dict[str, Any]:
    record = model.model_dump(mode="json")
    record["pk"] = pk
    record["sk"] = sk
    return record


def _load(model: Type[ModelT], record: Mapping[str, Any]) -> ModelT:
    data = {key: value for key, value in record.items() if key not in KEY_FIELDS and key != VERSION_FIELD}
    return model.model_validate(_from_dynamo(data))


def _state_condition(expected_states: FrozenSet[LotState]) -> Dict[str, Any]:
    placeholders = {f":state{index}": state.value for index, state in enumerate(sorted(expected_states))}
    return {
        "ConditionExpression": f"#state IN ({', '.join(placeholders)})",
        "ExpressionAttributeNames": {"#state": "state"},
        "ExpressionAttributeValues": placeholders,
    }


def _explicit_price_condition(expected: Optional[Decimal], values: Dict[str, Any]) -> Dict[str, Any]:
    if expected is None:
        return {
            "ConditionExpression": (
                "attribute_exists(pk) AND (attribute_not_exists(explicit_sale_price) "
                "OR attribute_type(explicit_sale_price, :null_type))"
            ),
            "ExpressionAttributeValues": {**values, ":null_type": "NULL"},
        }
    return {
        "ConditionExpression": "attribute_exists(pk) AND explicit_sale_price = :expected",
        "ExpressionAttributeValues": {**values, ":expected": str(expected)},
    }


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class DynamoCatalog:
    """Catalog store on one DynamoDB table keyed by ``pk``/``sk`` strings.

    Each entity type lives in its own partition (``ITEM``, ``RULE``, ``LIST``,
    ``LISTITEM``, ``GROUP``, ``LOT``); price history is partitioned per item.
    ``META``/``CATALOG`` holds the catalog version bumped by every lot commit.
    """

    def __init__(self, table_name: str) -> None:
        self.table_name = table_name
        self.table = boto3.resource("dynamodb").Table(table_name)
        self.logger = get_logger(self.__class__.__name__)

    def _query_all(self, pk: str) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": Key("pk").eq(pk),
            "ConsistentRead": True,
        }
        while True:
            response = self.table.query(**kwargs)
            records.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return records
            kwargs["ExclusiveStartKey"] = last_key

    def _get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        response = self.table.get_item(Key={"pk": pk, "sk": sk}, ConsistentRead=True)
        return response.get("Item")

    def _put_all(self, records: Iterable[Dict[str, Any]]) -> None:
        with self.table.batch_writer(overwrite_by_pkeys=list(KEY_FIELDS)) as batch:
            for record in records:
                batch.put_item(Item=record)

    def _catalog_version(self) -> int:
        record = self._get(META_PK, VERSION_SK)
        return int(record[VERSION_FIELD]) if record else 0

    def snapshot(self) -> CatalogSnapshot:
        """Read the whole catalog as one consistent view.

        Queries are only read-committed per item. An item stamped with a newer
        catalog version than the one read up front belongs to a lot commit that
        landed mid-read, so the read starts over.
        """
        for attempt in range(1, SNAPSHOT_ATTEMPTS + 1):
            version = self._catalog_version()
            item_records = self._query_all(ITEM_PK)
            if all(int(record.get(VERSION_FIELD, 0)) <= version for record in item_records):
                return CatalogSnapshot.build(
                    items=[_load(Item, record) for record in item_records],
                    markup_rules=[_load(MarkupRule, record) for record in self._query_all(RULE_PK)],
                    price_lists=[_load(PriceList, record) for record in self._query_all(LIST_PK)],
                    list_items=[_load(PriceListItem, record) for record in self._query_all(LIST_ITEM_PK)],
                    customer_groups=[_load(CustomerGroup, record) for record in self._query_all(GROUP_PK)],
                )
            log_event(
                self.logger,
                "snapshot_retry",
                level=logging.WARNING,
                attempt=attempt,
                catalog_version=version,
            )
        raise ConflictError(f"catalog kept changing over {SNAPSHOT_ATTEMPTS} snapshot attempts; retry")

    def put_items(self, items: Iterable[Item]) -> None:
        self._put_all(_record(ITEM_PK, item.id, item) for item in items)

    def get_item(self, item_id: str) -> Optional[Item]:
        record = self._get(ITEM_PK, item_id)
        return _load(Item, record) if record else None

    def put_markup_rules(self, rules: Iterable[MarkupRule]) -> None:
        self._put_all(_record(RULE_PK, rule.category.value, rule) for rule in rules)

    def put_price_list(self, price_list: PriceList) -> None:
        self.table.put_item(Item=_record(LIST_PK, price_list.id, price_list))

    def get_price_list(self, list_id: str) -> Optional[PriceList]:
        record = self._get(LIST_PK, list_id)
        return _load(PriceList, record) if record else None

    def put_price_list_items(self, entries: Iterable[PriceListItem]) -> None:
        self._put_all(
            _record(LIST_ITEM_PK, f"{entry.list_id}#{entry.item_id}", entry) for entry in entries
        )

    def put_customer_group(self, group: CustomerGroup) -> None:
        self.table.put_item(Item=_record(GROUP_PK, group.id, group))

    def get_customer_group(self, group_id: str) -> Optional[CustomerGroup]:
        record = self._get(GROUP_PK, group_id)
        return _load(CustomerGroup, record) if record else None

    def create_lot(self, lot: RepricingLot) -> None:
        try:
            self.table.put_item(
                Item=_record(LOT_PK, lot.id, lot),
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise ConflictError(f"lot {lot.id} already exists") from exc
            raise

    def update_lot(self, lot: RepricingLot, *, expected_states: FrozenSet[LotState]) -> None:
        try:
            self.table.put_item(Item=_record(LOT_PK, lot.id, lot), **_state_condition(expected_states))
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise ConflictError(f"lot {lot.id} changed state concurrently") from exc
            raise

    def get_lot(self, lot_id: str) -> Optional[RepricingLot]:
        record = self._get(LOT_PK, lot_id)
        return _load(RepricingLot, record) if record else None

    def list_lots(self) -> List[RepricingLot]:
        lots = [_load(RepricingLot, record) for record in self._query_all(LOT_PK)]
        return sorted(lots, key=lambda lot: (lot.created_at, lot.id))

    def commit_lot(
        self,
        lot: RepricingLot,
        *,
        expected_states: FrozenSet[LotState],
        price_updates: Mapping[str, Optional[Decimal]],
        expected_explicit_prices: Mapping[str, Optional[Decimal]],
        history: Iterable[PriceChange] = (),
    ) -> None:
        """Write the lot, its prices and a new catalog version in one transaction.

        Each item update is conditioned on the explicit sale price the lot was
        planned against, and every written item is stamped with the new catalog
        version so ``snapshot`` can tell a transaction it only partly observed.
        """
        if len(price_updates) + 2 > MAX_TRANSACT_ACTIONS:
            raise ValidationError(
                "category_filter",
                f"lot touches {len(price_updates)} items; at most {MAX_TRANSACT_ACTIONS - 2} "
                "fit one DynamoDB transaction",
            )
        version = self._catalog_version()
        item_ids = sorted(price_updates)
        actions: List[Dict[str, Any]] = [
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": _record(LOT_PK, lot.id, lot),
                    **_state_condition(expected_states),
                }
            },
            {
                "Update": {
                    "TableName": self.table_name,
                    "Key": {"pk": META_PK, "sk": VERSION_SK},
                    "UpdateExpression": "SET catalog_version = :next",
                    "ConditionExpression": "attribute_not_exists(pk) OR catalog_version = :current",
                    "ExpressionAttributeValues": {":next": version + 1, ":current": version},
                }
            },
        ]
        for item_id in item_ids:
            price = price_updates[item_id]
            actions.append(
                {
                    "Update": {
                        "TableName": self.table_name,
                        "Key": {"pk": ITEM_PK, "sk": item_id},
                        "UpdateExpression": "SET explicit_sale_price = :price, catalog_version = :next",
                        **_explicit_price_condition(
                            expected_explicit_prices.get(item_id),
                            {":price": None if price is None else str(price), ":next": version + 1},
                        ),
                    }
                }
            )
        try:
            self.table.meta.client.transact_write_items(TransactItems=actions)
        except ClientError as exc:
            if _error_code(exc) != "TransactionCanceledException":
                raise
            reasons = exc.response.get("CancellationReasons", [])
            for index, reason in enumerate(reasons):
                if index < ITEM_ACTION_OFFSET or reason.get("Code") != "ConditionalCheckFailed":
                    continue
                item_id = item_ids[index - ITEM_ACTION_OFFSET]
                if self._get(ITEM_PK, item_id) is None:
                    raise NotFoundError("item", item_id) from exc
                raise ConflictError(f"item {item_id} changed since lot {lot.id} was planned") from exc
            raise ConflictError(f"lot {lot.id} was modified concurrently") from exc
        self._write_history(lot, history)

    def _write_history(self, lot: RepricingLot, history: Iterable[PriceChange]) -> None:
        # the lot snapshot is authoritative; history is an audit trail written after commit
        try:
            self._put_all(
                _record(
                    f"{HISTORY_PREFIX}{change.item_id}",
                    f"{change.changed_at.isoformat()}#{lot.state.value}#{change.lot_id}",
                    change,
                )
                for change in history
            )
        except (BotoCoreError, ClientError) as exc:
            log_event(
                self.logger,
                "price_history_write_failed",
                level=logging.ERROR,
                lot_id=lot.id,
                error=str(exc),
            )

    def price_history(self, item_id: str) -> List[PriceChange]:
        return [_load(PriceChange, record) for record in self._query_all(f"{HISTORY_PREFIX}{item_id}")]
