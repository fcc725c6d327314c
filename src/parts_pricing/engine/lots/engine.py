"""Repricing lots: create, simulate, apply and revert bulk price changes.

Simulation is read-only and runs against a catalog snapshot. Apply and revert
hold the write locks for the lot's categories, recompute against a fresh
snapshot and hand the whole change to the store's ``commit_lot`` in one call,
which either writes every item plus the lot or nothing.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from parts_pricing.engine.catalog.models import Category, PriceChange, utc_now
from parts_pricing.engine.catalog.snapshot import CatalogSnapshot
from parts_pricing.engine.lots.locks import LotLocks
from parts_pricing.engine.lots.models import (
    PENDING_STATES,
    AppliedResult,
    LotParams,
    LotState,
    RepricingLot,
    RevertedResult,
    SimulatedPrice,
    SimulationResult,
    SnapshotEntry,
)
from parts_pricing.engine.lots.state import ensure_state, predecessors, transition
from parts_pricing.engine.pricing.pricing import AdjustmentType, RoundingRule, apply_adjustment
from parts_pricing.engine.pricing.resolver import BaseSource, PricingContext, resolve_price
from parts_pricing.util.errors import (
    ConflictError,
    NoPriceAvailableError,
    NotFoundError,
    PricingError,
    ValidationError,
    validated,
)
from parts_pricing.util.logging import get_logger, log_event
from parts_pricing.util.metrics import CloudWatchMetrics

ZERO = Decimal("0")


def _average(total: Decimal, count: int, rounding: RoundingRule) -> Decimal:
    if count == 0:
        return ZERO
    average = total / count
    if rounding.increment > 0:
        return average.quantize(rounding.increment)
    return average


class RepricingLotEngine:
    def __init__(
        self,
        store: Any,
        *,
        rounding: RoundingRule,
        locks: Optional[LotLocks] = None,
        metrics: Optional[CloudWatchMetrics] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.rounding = rounding
        self.locks = locks or LotLocks()
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger(self.__class__.__name__)

    def create_lot(
        self,
        *,
        label: str,
        adjustment_type: AdjustmentType,
        value: Decimal,
        category_filter: Iterable[Category] = (),
        supplier_filter: Optional[str] = None,
    ) -> RepricingLot:
        lot = validated(
            RepricingLot,
            {
                "id": str(uuid.uuid4()),
                "label": label,
                "adjustment_type": adjustment_type,
                "value": value,
                "category_filter": frozenset(category_filter),
                "supplier_filter": supplier_filter,
                "created_at": self.clock(),
            },
        )
        self.store.create_lot(lot)
        log_event(
            self.logger,
            "lot_created",
            lot_id=lot.id,
            label=lot.label,
            adjustment_type=lot.adjustment_type.value,
            value=lot.value,
            categories=sorted(category.value for category in lot.category_filter),
        )
        return lot

    def get_lot(self, lot_id: str) -> RepricingLot:
        lot = self.store.get_lot(lot_id)
        if lot is None:
            raise NotFoundError("lot", lot_id)
        return lot

    def list_lots(self) -> List[RepricingLot]:
        return self.store.list_lots()

    def _plan(
        self,
        params: LotParams,
        snapshot: CatalogSnapshot,
        as_of: datetime,
    ) -> Tuple[List[SimulatedPrice], List[str], List[str]]:
        """Price every matching item, set aside unpriced ones and ones a price list overrides."""
        context = PricingContext.from_snapshot(snapshot, self.rounding)
        planned: List[SimulatedPrice] = []
        skipped: List[str] = []
        masked: List[str] = []
        for item in snapshot.active_items():
            if not params.matches(item):
                continue
            try:
                resolved = resolve_price(item, context, as_of=as_of)
            except NoPriceAvailableError:
                skipped.append(item.id)
                continue
            if resolved.base_source == BaseSource.PRICE_LIST:
                # a new explicit price would stay hidden behind the override
                masked.append(item.id)
                continue
            current = resolved.final_price
            new_price = apply_adjustment(current, params.adjustment_type, params.value, self.rounding)
            planned.append(
                SimulatedPrice(
                    item_id=item.id,
                    code=item.code,
                    name=item.name,
                    category=item.category,
                    current_price=current,
                    new_price=new_price,
                    delta=new_price - current,
                )
            )
        planned.sort(key=lambda entry: (entry.name, entry.item_id))
        return planned, skipped, masked

    def _summarize(
        self,
        planned: List[SimulatedPrice],
        skipped: List[str],
        masked: List[str],
        lot_id: Optional[str] = None,
    ) -> SimulationResult:
        total_current = sum((entry.current_price for entry in planned), ZERO)
        total_new = sum((entry.new_price for entry in planned), ZERO)
        return SimulationResult(
            items=planned,
            total_current=total_current,
            total_new=total_new,
            affected_count=len(planned),
            average_current=_average(total_current, len(planned), self.rounding),
            average_new=_average(total_new, len(planned), self.rounding),
            total_impact=total_new - total_current,
            skipped_item_ids=skipped,
            masked_item_ids=masked,
            lot_id=lot_id,
        )

    def simulate(self, params: LotParams) -> SimulationResult:
        """What-if preview; never writes to the store."""
        planned, skipped, masked = self._plan(params, self.store.snapshot(), self.clock())
        return self._summarize(planned, skipped, masked)

    def simulate_lot(self, lot_id: str) -> SimulationResult:
        lot = self.get_lot(lot_id)
        now = self.clock()
        planned, skipped, masked = self._plan(lot.params, self.store.snapshot(), now)
        result = self._summarize(planned, skipped, masked, lot_id=lot.id)
        if lot.state in PENDING_STATES:
            marked = transition(lot, LotState.SIMULATED, simulated_at=now)
            try:
                self.store.update_lot(marked, expected_states=PENDING_STATES)
            except ConflictError:
                # applied concurrently; the preview is still a valid read
                log_event(self.logger, "lot_simulation_mark_skipped", lot_id=lot.id)
        log_event(self.logger, "lot_simulated", lot_id=lot.id, affected_count=result.affected_count)
        return result

    def apply_lot(
        self,
        lot_id: str,
        *,
        expected_prices: Optional[Mapping[str, Decimal]] = None,
    ) -> AppliedResult:
        try:
            lot = self.get_lot(lot_id)
            ensure_state(lot, PENDING_STATES, "apply")
            with self.locks.hold(lot.category_filter):
                result = self._apply_locked(lot_id, expected_prices)
        except PricingError as exc:
            log_event(
                self.logger,
                "lot_apply_failed",
                level=logging.WARNING,
                lot_id=lot_id,
                error=str(exc),
                error_code=exc.code,
            )
            if self.metrics:
                self.metrics.record_lot_failure(operation="apply", error_type=exc.code)
            raise
        log_event(
            self.logger,
            "lot_applied",
            lot_id=lot_id,
            affected_count=result.affected_count,
            skipped=len(result.skipped_item_ids),
            masked=len(result.masked_item_ids),
        )
        if self.metrics:
            self.metrics.record_lot_applied(affected_count=result.affected_count)
        return result

    def _apply_locked(
        self,
        lot_id: str,
        expected_prices: Optional[Mapping[str, Decimal]],
    ) -> AppliedResult:
        lot = self.get_lot(lot_id)
        ensure_state(lot, PENDING_STATES, "apply")
        now = self.clock()
        snapshot = self.store.snapshot()
        planned, skipped, masked = self._plan(lot.params, snapshot, now)
        if expected_prices is not None:
            self._check_drift(planned, expected_prices)
        if not planned:
            raise ValidationError("category_filter", "lot does not affect any priced item")

        entries: Dict[str, SnapshotEntry] = {}
        updates: Dict[str, Optional[Decimal]] = {}
        expected: Dict[str, Optional[Decimal]] = {}
        history: List[PriceChange] = []
        for entry in planned:
            previous_explicit = snapshot.items[entry.item_id].explicit_sale_price
            entries[entry.item_id] = SnapshotEntry(
                previous_explicit_price=previous_explicit,
                previous_price=entry.current_price,
                new_price=entry.new_price,
            )
            updates[entry.item_id] = entry.new_price
            expected[entry.item_id] = previous_explicit
            history.append(
                PriceChange(
                    item_id=entry.item_id,
                    previous_price=previous_explicit,
                    new_price=entry.new_price,
                    reason=f"lot:{lot.label}",
                    lot_id=lot.id,
                    changed_at=now,
                )
            )

        applied = transition(
            lot,
            LotState.APPLIED,
            snapshot=entries,
            affected_count=len(entries),
            applied_at=now,
        )
        self.store.commit_lot(
            applied,
            expected_states=predecessors(LotState.APPLIED),
            price_updates=updates,
            expected_explicit_prices=expected,
            history=history,
        )
        return AppliedResult(
            lot=applied,
            affected_count=len(entries),
            skipped_item_ids=skipped,
            masked_item_ids=masked,
        )

    def _check_drift(self, planned: List[SimulatedPrice], expected_prices: Mapping[str, Decimal]) -> None:
        current = {entry.item_id: entry.current_price for entry in planned}
        drifted = sorted(
            item_id
            for item_id in set(current) | set(expected_prices)
            if current.get(item_id) != expected_prices.get(item_id)
        )
        if drifted:
            preview = ", ".join(drifted[:10])
            raise ConflictError(
                f"prices changed since simulation for {len(drifted)} item(s): {preview}; simulate again"
            )

    def revert_lot(self, lot_id: str) -> RevertedResult:
        try:
            lot = self.get_lot(lot_id)
            ensure_state(lot, {LotState.APPLIED}, "revert")
            with self.locks.hold(lot.category_filter):
                result = self._revert_locked(lot_id)
        except PricingError as exc:
            log_event(
                self.logger,
                "lot_revert_failed",
                level=logging.WARNING,
                lot_id=lot_id,
                error=str(exc),
                error_code=exc.code,
            )
            if self.metrics:
                self.metrics.record_lot_failure(operation="revert", error_type=exc.code)
            raise
        log_event(self.logger, "lot_reverted", lot_id=lot_id, restored_count=result.restored_count)
        if self.metrics:
            self.metrics.record_lot_reverted(restored_count=result.restored_count)
        return result

    def _revert_locked(self, lot_id: str) -> RevertedResult:
        lot = self.get_lot(lot_id)
        ensure_state(lot, {LotState.APPLIED}, "revert")
        now = self.clock()
        updates = {item_id: entry.previous_explicit_price for item_id, entry in lot.snapshot.items()}
        # a later lot or a manual edit since apply makes the snapshot stale
        expected = {item_id: entry.new_price for item_id, entry in lot.snapshot.items()}
        history = [
            PriceChange(
                item_id=item_id,
                previous_price=entry.new_price,
                new_price=entry.previous_explicit_price,
                reason=f"revert:{lot.label}",
                lot_id=lot.id,
                changed_at=now,
            )
            for item_id, entry in sorted(lot.snapshot.items())
        ]
        reverted = transition(lot, LotState.REVERTED, reverted_at=now)
        self.store.commit_lot(
            reverted,
            expected_states=predecessors(LotState.REVERTED),
            price_updates=updates,
            expected_explicit_prices=expected,
            history=history,
        )
        return RevertedResult(lot=reverted, restored_count=len(updates))
