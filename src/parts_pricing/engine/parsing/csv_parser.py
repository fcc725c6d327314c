from __future__ import annotations

import csv
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import IO, Any, Dict, List, Optional, Tuple

from parts_pricing.engine.catalog.models import Item

REQUIRED_COLUMNS = ("id", "category", "purchase_cost")
TRUE_VALUES = {"1", "true", "yes", "y", "si"}
FALSE_VALUES = {"0", "false", "no", "n"}


@dataclass
class ParseError:
    row_number: int
    reason: str
    row_data: Dict[str, Any]


def _parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    try:
        return Decimal(stripped)
    except InvalidOperation as exc:
        raise ValueError(f"invalid decimal: {value}") from exc


def _parse_bool(value: Optional[str], default: bool = True) -> bool:
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {value}")


def parse_items_csv(handle: IO[str]) -> Tuple[List[Item], List[ParseError]]:
    reader = csv.DictReader(handle)
    missing = [column for column in REQUIRED_COLUMNS if not reader.fieldnames or column not in reader.fieldnames]
    if missing:
        raise ValueError(f"missing columns: {', '.join(missing)}")
    items: List[Item] = []
    errors: List[ParseError] = []

    for row_number, row in enumerate(reader, start=2):
        try:
            item = Item(
                id=row.get("id") or "",
                code=(row.get("code") or "").strip(),
                name=(row.get("name") or "").strip(),
                category=(row.get("category") or "").strip().upper(),
                purchase_cost=_parse_decimal(row.get("purchase_cost")),
                explicit_sale_price=_parse_decimal(row.get("explicit_sale_price")),
                active=_parse_bool(row.get("active")),
                supplier_id=(row.get("supplier_id") or "").strip() or None,
            )
            items.append(item)
        except Exception as exc:  # noqa: BLE001 - capture parse errors for reporting
            errors.append(ParseError(row_number=row_number, reason=str(exc), row_data=row))

    return items, errors


def load_items_csv(path: str) -> Tuple[List[Item], List[ParseError]]:
    with open(path, "r", newline="", encoding="utf-8") as handle:
        return parse_items_csv(handle)
