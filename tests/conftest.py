import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from freezegun import freeze_time

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from parts_pricing.engine.catalog.models import Category, Item, MarkupRule  # noqa: E402
from parts_pricing.persistence.memory import InMemoryCatalog  # noqa: E402

DEFAULT_ENV = {
    "AWS_ACCESS_KEY_ID": "test-access-key",
    "AWS_SECRET_ACCESS_KEY": "test-secret-key",
    "AWS_SESSION_TOKEN": "test-session",
    "AWS_DEFAULT_REGION": "us-east-1",
    "CLOUDWATCH_METRICS_ENABLED": "false",
}
CLEARED_ENV = ("PRICING_CONFIG", "CATALOG_TABLE")

FROZEN_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    for key, value in DEFAULT_ENV.items():
        monkeypatch.setenv(key, value)
    for key in CLEARED_ENV:
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def freezer():
    with freeze_time("2025-06-01T12:00:00Z") as frozen_datetime:
        yield frozen_datetime


@pytest.fixture
def clock():
    return lambda: FROZEN_NOW


@pytest.fixture
def seeded_catalog() -> InMemoryCatalog:
    catalog = InMemoryCatalog()
    catalog.put_markup_rules(
        [
            MarkupRule(category=Category.MOTOR, percentage=Decimal("40")),
            MarkupRule(category=Category.FRENOS, percentage=Decimal("35")),
        ]
    )
    catalog.put_items(
        [
            Item(
                id="f1",
                code="FR-001",
                name="Pastillas de freno",
                category=Category.FRENOS,
                purchase_cost=Decimal("3800"),
                explicit_sale_price=Decimal("5130"),
                supplier_id="sup-a",
            ),
            Item(
                id="f2",
                code="FR-002",
                name="Disco de freno",
                category=Category.FRENOS,
                purchase_cost=Decimal("1000"),
                supplier_id="sup-b",
            ),
            Item(
                id="f3",
                code="FR-003",
                name="Liquido de frenos",
                category=Category.FRENOS,
                purchase_cost=Decimal("500"),
                active=False,
            ),
            Item(
                id="m1",
                code="MO-001",
                name="Bujia",
                category=Category.MOTOR,
                purchase_cost=Decimal("2500"),
                supplier_id="sup-a",
            ),
            Item(
                id="x1",
                code="OT-001",
                name="Llavero",
                category=Category.OTRO,
                purchase_cost=Decimal("10"),
            ),
        ]
    )
    return catalog
