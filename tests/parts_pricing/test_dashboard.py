from datetime import datetime, timezone
from decimal import Decimal

from parts_pricing.engine.catalog.models import Category, Item, MarkupRule
from parts_pricing.engine.catalog.snapshot import CatalogSnapshot
from parts_pricing.engine.dashboard.margins import MARGIN_BUCKETS, compute_dashboard
from parts_pricing.engine.pricing.pricing import RoundingRule
from parts_pricing.engine.pricing.resolver import PricingContext

AS_OF = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _dashboard(items, rules):
    snapshot = CatalogSnapshot.build(items=items, markup_rules=rules)
    context = PricingContext.from_snapshot(snapshot, RoundingRule())
    return compute_dashboard(snapshot.items.values(), context, as_of=AS_OF)


def _sample_items():
    return [
        Item(id="i1", name="Bujia", category=Category.MOTOR, purchase_cost=Decimal("100")),
        Item(
            id="i2",
            name="Pastillas",
            category=Category.FRENOS,
            purchase_cost=Decimal("100"),
            explicit_sale_price=Decimal("500"),
        ),
        Item(id="i3", name="Llavero", category=Category.OTRO, purchase_cost=Decimal("5")),
        Item(id="i4", name="Viejo", category=Category.MOTOR, purchase_cost=Decimal("1"), active=False),
        Item(
            id="i5",
            name="Liquidacion",
            category=Category.MOTOR,
            purchase_cost=Decimal("100"),
            explicit_sale_price=Decimal("90"),
        ),
    ]


def test_dashboard_counters_and_average() -> None:
    dashboard = _dashboard(_sample_items(), [MarkupRule(category=Category.MOTOR, percentage=Decimal("40"))])
    assert dashboard.priced_count == 3
    assert dashboard.unpriced_count == 1
    assert dashboard.items_missing_markup == 2
    assert dashboard.items_missing_sale_price == 2
    assert dashboard.average_margin == Decimal("0.3249")


def test_dashboard_buckets() -> None:
    dashboard = _dashboard(_sample_items(), [MarkupRule(category=Category.MOTOR, percentage=Decimal("40"))])
    counts = {bucket.label: bucket.count for bucket in dashboard.margin_distribution}
    assert [bucket.label for bucket in dashboard.margin_distribution] == [label for label, _, _ in MARGIN_BUCKETS]
    assert counts == {"0-20%": 1, "20-40%": 1, "40-60%": 0, "60-80%": 0, ">80%": 1}


def test_dashboard_rankings() -> None:
    dashboard = _dashboard(_sample_items(), [MarkupRule(category=Category.MOTOR, percentage=Decimal("40"))])
    assert [entry.item_id for entry in dashboard.top_by_margin] == ["i2", "i1", "i5"]
    assert [entry.item_id for entry in dashboard.bottom_by_margin] == ["i5", "i1", "i2"]


def test_rankings_are_capped_and_tie_broken_by_id() -> None:
    items = [
        Item(id=f"i{index}", category=Category.MOTOR, purchase_cost=Decimal("100"))
        for index in range(8)
    ]
    dashboard = _dashboard(items, [MarkupRule(category=Category.MOTOR, percentage=Decimal("25"))])
    assert [entry.item_id for entry in dashboard.top_by_margin] == ["i0", "i1", "i2", "i3", "i4"]
    assert [entry.item_id for entry in dashboard.bottom_by_margin] == ["i0", "i1", "i2", "i3", "i4"]


def test_empty_catalog_has_no_average() -> None:
    dashboard = _dashboard([], [])
    assert dashboard.average_margin is None
    assert dashboard.priced_count == 0
    assert all(bucket.count == 0 for bucket in dashboard.margin_distribution)
