from datetime import datetime, timezone
from decimal import Decimal

import boto3
import pytest
from moto import mock_aws

from parts_pricing.engine.catalog.models import (
    Category,
    CustomerGroup,
    Item,
    MarkupRule,
    PriceList,
    PriceListItem,
    PriceListType,
)
from parts_pricing.engine.lots.engine import RepricingLotEngine
from parts_pricing.engine.lots.models import PENDING_STATES, LotState, RepricingLot, SnapshotEntry
from parts_pricing.engine.lots.state import transition
from parts_pricing.engine.pricing.pricing import AdjustmentType, RoundingRule
from parts_pricing.persistence.dynamo_catalog import MAX_TRANSACT_ACTIONS, SNAPSHOT_ATTEMPTS, DynamoCatalog
from parts_pricing.util.errors import ConflictError, PricingError, ValidationError

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.fixture()
def dynamo_table_name() -> str:
    return "parts-pricing"


@pytest.fixture()
def dynamodb_table(dynamo_table_name: str, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name="us-east-1")
        table = resource.create_table(
            TableName=dynamo_table_name,
            KeySchema=[
                {"AttributeName": "pk", "KeyType": "HASH"},
                {"AttributeName": "sk", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "pk", "AttributeType": "S"},
                {"AttributeName": "sk", "AttributeType": "S"},
            ],
            ProvisionedThroughput={"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
        )
        table.meta.client.get_waiter("table_exists").wait(TableName=dynamo_table_name)
        yield table


@pytest.fixture()
def catalog(dynamo_table_name: str, dynamodb_table) -> DynamoCatalog:
    store = DynamoCatalog(dynamo_table_name)
    store.put_markup_rules([MarkupRule(category=Category.FRENOS, percentage=Decimal("35"))])
    store.put_items(
        [
            Item(
                id="f1",
                name="Pastillas",
                category=Category.FRENOS,
                purchase_cost=Decimal("3800"),
                explicit_sale_price=Decimal("5130"),
            ),
            Item(id="f2", name="Disco", category=Category.FRENOS, purchase_cost=Decimal("1000.50")),
        ]
    )
    return store


def _lot() -> RepricingLot:
    return RepricingLot(
        id="lot-1",
        label="Aumento",
        adjustment_type=AdjustmentType.PERCENTAGE,
        value=Decimal("10"),
        category_filter=frozenset({Category.FRENOS}),
        created_at=NOW,
    )


def test_snapshot_round_trip(catalog: DynamoCatalog) -> None:
    catalog.put_price_list(
        PriceList(id="L1", name="Mayorista", type=PriceListType.WHOLESALE, priority=2, valid_from=NOW)
    )
    catalog.put_price_list_items([PriceListItem(list_id="L1", item_id="f1", override_price=Decimal("4999.99"))])
    catalog.put_customer_group(
        CustomerGroup(id="g1", name="Talleres", discount_percent=Decimal("12.5"), members=frozenset({"c1", "c2"}))
    )

    snapshot = catalog.snapshot()

    assert snapshot.items["f2"].purchase_cost == Decimal("1000.50")
    assert snapshot.items["f2"].explicit_sale_price is None
    assert snapshot.markup_rules[Category.FRENOS].percentage == Decimal("35")
    assert snapshot.price_lists["L1"].priority == 2
    assert snapshot.price_lists["L1"].valid_from == NOW
    assert snapshot.list_items[("L1", "f1")].override_price == Decimal("4999.99")
    assert snapshot.customer_groups["g1"].members == frozenset({"c1", "c2"})
    assert catalog.get_item("missing") is None


def test_lot_round_trip(catalog: DynamoCatalog) -> None:
    lot = _lot()
    catalog.create_lot(lot)
    assert catalog.get_lot(lot.id).model_dump() == lot.model_dump()
    with pytest.raises(ConflictError):
        catalog.create_lot(lot)


def test_update_lot_checks_state(catalog: DynamoCatalog) -> None:
    lot = _lot()
    catalog.create_lot(lot)
    simulated = transition(lot, LotState.SIMULATED, simulated_at=NOW)
    catalog.update_lot(simulated, expected_states=PENDING_STATES)
    assert catalog.get_lot(lot.id).state == LotState.SIMULATED
    with pytest.raises(ConflictError):
        catalog.update_lot(simulated, expected_states=frozenset({LotState.APPLIED}))


def test_commit_lot_writes_prices_and_lot(catalog: DynamoCatalog) -> None:
    lot = _lot()
    catalog.create_lot(lot)
    applied = transition(
        lot,
        LotState.APPLIED,
        snapshot={
            "f2": SnapshotEntry(previous_price=Decimal("1350.68"), new_price=Decimal("1485.75")),
        },
        affected_count=1,
    )
    catalog.commit_lot(
        applied,
        expected_states=PENDING_STATES,
        price_updates={"f2": Decimal("1485.75")},
        expected_explicit_prices={"f2": None},
    )

    assert catalog.get_item("f2").explicit_sale_price == Decimal("1485.75")
    assert catalog._catalog_version() == 1
    stored = catalog.get_lot(lot.id)
    assert stored.state == LotState.APPLIED
    assert stored.snapshot["f2"].previous_explicit_price is None

    with pytest.raises(ConflictError):
        catalog.commit_lot(
            applied,
            expected_states=PENDING_STATES,
            price_updates={"f2": Decimal("1")},
            expected_explicit_prices={"f2": Decimal("1485.75")},
        )
    assert catalog.get_item("f2").explicit_sale_price == Decimal("1485.75")


def test_commit_lot_missing_item_writes_nothing(catalog: DynamoCatalog) -> None:
    lot = _lot()
    catalog.create_lot(lot)
    entry = SnapshotEntry(previous_price=Decimal("1"), new_price=Decimal("2"))
    applied = transition(lot, LotState.APPLIED, snapshot={"f1": entry, "ghost": entry}, affected_count=2)

    with pytest.raises(PricingError):
        catalog.commit_lot(
            applied,
            expected_states=PENDING_STATES,
            price_updates={"f1": Decimal("2"), "ghost": Decimal("2")},
            expected_explicit_prices={"f1": Decimal("5130"), "ghost": None},
        )

    assert catalog.get_item("f1").explicit_sale_price == Decimal("5130")
    assert catalog.get_lot(lot.id).state == LotState.DRAFT


def test_commit_lot_rejects_oversized_lot(catalog: DynamoCatalog) -> None:
    # the lot put and the version bump share the transaction with the items
    updates = {f"i{index}": Decimal("1") for index in range(MAX_TRANSACT_ACTIONS - 1)}
    with pytest.raises(ValidationError, match="at most 98"):
        catalog.commit_lot(
            _lot(),
            expected_states=PENDING_STATES,
            price_updates=updates,
            expected_explicit_prices={},
        )


def test_engine_apply_and_revert_on_dynamo(catalog: DynamoCatalog) -> None:
    engine = RepricingLotEngine(catalog, rounding=RoundingRule(), clock=lambda: NOW)
    lot = engine.create_lot(
        label="Aumento frenos",
        adjustment_type=AdjustmentType.PERCENTAGE,
        value=Decimal("10"),
        category_filter=[Category.FRENOS],
    )

    engine.apply_lot(lot.id)
    assert catalog.get_item("f1").explicit_sale_price == Decimal("5643")
    assert [change.reason for change in catalog.price_history("f1")] == ["lot:Aumento frenos"]

    engine.revert_lot(lot.id)
    assert catalog.get_item("f1").explicit_sale_price == Decimal("5130")
    assert catalog.get_item("f2").explicit_sale_price is None
    assert catalog.get_lot(lot.id).state == LotState.REVERTED
    assert [stored.id for stored in catalog.list_lots()] == [lot.id]


def test_commit_lot_rejects_item_edited_since_planning(catalog: DynamoCatalog) -> None:
    lot = _lot()
    catalog.create_lot(lot)
    entry = SnapshotEntry(
        previous_explicit_price=Decimal("5130"),
        previous_price=Decimal("5130"),
        new_price=Decimal("5643"),
    )
    applied = transition(lot, LotState.APPLIED, snapshot={"f1": entry}, affected_count=1)
    catalog.put_items(
        [
            Item(
                id="f1",
                name="Pastillas",
                category=Category.FRENOS,
                purchase_cost=Decimal("3800"),
                explicit_sale_price=Decimal("6000"),
            )
        ]
    )

    with pytest.raises(ConflictError, match="item f1 changed"):
        catalog.commit_lot(
            applied,
            expected_states=PENDING_STATES,
            price_updates={"f1": Decimal("5643")},
            expected_explicit_prices={"f1": Decimal("5130")},
        )

    assert catalog.get_item("f1").explicit_sale_price == Decimal("6000")
    assert catalog.get_lot(lot.id).state == LotState.DRAFT
    assert catalog._catalog_version() == 0


def test_stacked_lots_revert_in_reverse_order_on_dynamo(catalog: DynamoCatalog) -> None:
    engine = RepricingLotEngine(catalog, rounding=RoundingRule(), clock=lambda: NOW)
    first = engine.create_lot(
        label="Aumento",
        adjustment_type=AdjustmentType.PERCENTAGE,
        value=Decimal("10"),
        category_filter=[Category.FRENOS],
    )
    second = engine.create_lot(
        label="Flete",
        adjustment_type=AdjustmentType.FIXED_AMOUNT,
        value=Decimal("100"),
        category_filter=[Category.FRENOS],
    )
    engine.apply_lot(first.id)
    engine.apply_lot(second.id)

    with pytest.raises(ConflictError):
        engine.revert_lot(first.id)
    assert catalog.get_lot(first.id).state == LotState.APPLIED

    engine.revert_lot(second.id)
    engine.revert_lot(first.id)
    assert catalog.get_item("f1").explicit_sale_price == Decimal("5130")
    assert catalog.get_item("f2").explicit_sale_price is None
    assert catalog._catalog_version() == 4


def test_snapshot_retries_when_commit_lands_mid_read(catalog: DynamoCatalog, dynamodb_table, monkeypatch) -> None:
    # f2 already carries the stamp of commit 1 while the first version read still says 0
    dynamodb_table.update_item(
        Key={"pk": "ITEM", "sk": "f2"},
        UpdateExpression="SET explicit_sale_price = :price, catalog_version = :version",
        ExpressionAttributeValues={":price": "1485.75", ":version": 1},
    )
    versions = iter([0, 1])
    monkeypatch.setattr(catalog, "_catalog_version", lambda: next(versions))

    snapshot = catalog.snapshot()

    assert snapshot.items["f2"].explicit_sale_price == Decimal("1485.75")
    assert next(versions, None) is None


def test_snapshot_gives_up_when_catalog_keeps_changing(catalog: DynamoCatalog, dynamodb_table, monkeypatch) -> None:
    dynamodb_table.update_item(
        Key={"pk": "ITEM", "sk": "f1"},
        UpdateExpression="SET catalog_version = :version",
        ExpressionAttributeValues={":version": 7},
    )
    reads = []
    original = catalog._query_all

    def counting_query(pk: str):
        reads.append(pk)
        return original(pk)

    monkeypatch.setattr(catalog, "_query_all", counting_query)

    with pytest.raises(ConflictError):
        catalog.snapshot()
    assert reads == ["ITEM"] * SNAPSHOT_ATTEMPTS
