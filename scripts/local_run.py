#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from decimal import Decimal
from pathlib import Path

from fastapi.encoders import jsonable_encoder

from parts_pricing.app.config.loader import load_pricing_config
from parts_pricing.app.models.config import PricingConfig
from parts_pricing.app.services.pricing import PricingService
from parts_pricing.engine.catalog.models import Category
from parts_pricing.engine.lots.models import LotParams
from parts_pricing.engine.parsing.csv_parser import load_items_csv
from parts_pricing.engine.pricing.pricing import AdjustmentType
from parts_pricing.persistence.memory import InMemoryCatalog


def _dump(value: object) -> str:
    return json.dumps(jsonable_encoder(value, custom_encoder={Decimal: str}), indent=2)


def main() -> None:
    parser = argparse.ArgumentParser(description="Price a catalog CSV and preview a repricing lot")
    parser.add_argument("--config", help="Path to pricing config YAML")
    parser.add_argument("--items", required=True, help="Items CSV path")
    parser.add_argument("--adjustment-type", choices=[kind.value for kind in AdjustmentType])
    parser.add_argument("--value", help="Adjustment value (percent or amount)")
    parser.add_argument(
        "--category",
        action="append",
        default=[],
        choices=[category.value for category in Category],
        help="Restrict the what-if to a category (repeatable)",
    )
    args = parser.parse_args()

    config = load_pricing_config(Path(args.config)) if args.config else PricingConfig()
    service = PricingService(InMemoryCatalog(), config)
    service.seed_markup_rules()

    items, errors = load_items_csv(args.items)
    for error in errors:
        print(f"row {error.row_number}: {error.reason}")
    service.store.put_items(items)

    print(_dump(service.dashboard()))

    if args.adjustment_type:
        if args.value is None:
            raise ValueError("--value is required with --adjustment-type")
        params = LotParams(
            adjustment_type=AdjustmentType(args.adjustment_type),
            value=Decimal(args.value),
            category_filter=frozenset(Category(value) for value in args.category),
        )
        print(_dump(service.lots.simulate(params)))


if __name__ == "__main__":
    main()
