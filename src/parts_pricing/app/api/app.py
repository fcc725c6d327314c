from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from parts_pricing.app.models.api import (
    ApplyRequest,
    CustomerGroupRequest,
    CustomerGroupUpdateRequest,
    ItemRequest,
    LotRequest,
    MarkupRuleRequest,
    MemberRequest,
    PriceListItemRequest,
    PriceListRequest,
    PriceListUpdateRequest,
    SimulationRequest,
)
from parts_pricing.app.services.pricing import PricingService, build_service_from_env
from parts_pricing.engine.lots.models import LotParams
from parts_pricing.util.errors import (
    ConflictError,
    NoPriceAvailableError,
    NotFoundError,
    ValidationError,
    validated,
)


def encode(value: Any) -> Any:
    # money stays exact on the wire
    return jsonable_encoder(value, custom_encoder={Decimal: str})


def create_app(service: PricingService) -> FastAPI:
    app = FastAPI(title="Parts Pricing API")
    router = APIRouter(prefix="/v1")

    @app.exception_handler(ValidationError)
    async def validation_error(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": exc.message, "field": exc.field})

    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(NoPriceAvailableError)
    async def no_price(_: Request, exc: NoPriceAvailableError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc), "item_id": exc.item_id})

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/dashboard")
    def get_dashboard() -> Any:
        return encode(service.dashboard())

    @router.get("/markup-rules")
    def list_markup_rules() -> Any:
        return encode(service.list_markup_rules())

    @router.put("/markup-rules")
    def update_markup_rules(rules: List[MarkupRuleRequest]) -> Any:
        return encode(service.update_markup_rules(rule.model_dump() for rule in rules))

    @router.post("/price-lists", status_code=201)
    def create_price_list(request: PriceListRequest) -> Any:
        return encode(service.create_price_list(request.model_dump()))

    @router.get("/price-lists")
    def list_price_lists() -> Any:
        return encode(service.list_price_lists())

    @router.get("/price-lists/{list_id}")
    def get_price_list(list_id: str) -> Any:
        return encode(service.get_price_list(list_id))

    @router.put("/price-lists/{list_id}")
    def update_price_list(list_id: str, request: PriceListUpdateRequest) -> Any:
        # only the fields sent are changed; an explicit null clears valid_to
        return encode(service.update_price_list(list_id, request.model_dump(exclude_unset=True)))

    @router.delete("/price-lists/{list_id}")
    def deactivate_price_list(list_id: str) -> Any:
        return encode(service.deactivate_price_list(list_id))

    @router.post("/price-lists/{list_id}/items", status_code=201)
    def upsert_price_list_items(list_id: str, entries: List[PriceListItemRequest]) -> Any:
        return encode(service.upsert_price_list_items(list_id, (entry.model_dump() for entry in entries)))

    @router.get("/price-lists/{list_id}/items")
    def list_price_list_items(list_id: str) -> Any:
        return encode(service.list_price_list_items(list_id))

    @router.post("/customer-groups", status_code=201)
    def create_customer_group(request: CustomerGroupRequest) -> Any:
        return encode(service.create_customer_group(request.model_dump()))

    @router.get("/customer-groups")
    def list_customer_groups() -> Any:
        return encode(service.list_customer_groups())

    @router.get("/customer-groups/{group_id}")
    def get_customer_group(group_id: str) -> Any:
        return encode(service.get_customer_group(group_id))

    @router.put("/customer-groups/{group_id}")
    def update_customer_group(group_id: str, request: CustomerGroupUpdateRequest) -> Any:
        return encode(service.update_customer_group(group_id, request.model_dump(exclude_unset=True)))

    @router.delete("/customer-groups/{group_id}")
    def deactivate_customer_group(group_id: str) -> Any:
        return encode(service.deactivate_customer_group(group_id))

    @router.post("/customer-groups/{group_id}/members", status_code=201)
    def add_member(group_id: str, request: MemberRequest) -> Any:
        return encode(service.add_group_member(group_id, request.customer_id))

    @router.delete("/customer-groups/{group_id}/members/{customer_id}")
    def remove_member(group_id: str, customer_id: str) -> Any:
        return encode(service.remove_group_member(group_id, customer_id))

    @router.post("/items", status_code=201)
    def put_items(items: List[ItemRequest]) -> Any:
        return encode(service.put_items(item.model_dump() for item in items))

    @router.get("/items")
    def list_items() -> Any:
        return encode(service.list_items())

    @router.get("/items/{item_id}/price")
    def resolve_item_price(
        item_id: str,
        customer_id: Optional[str] = None,
        price_list_id: Optional[str] = None,
        as_of: Optional[datetime] = None,
    ) -> Any:
        resolved = service.resolve(
            item_id,
            customer_id=customer_id,
            price_list_id=price_list_id,
            as_of=as_of,
        )
        return encode(resolved)

    @router.get("/items/{item_id}/history")
    def item_history(item_id: str) -> Any:
        return encode(service.price_history(item_id))

    @router.post("/lots/simulate")
    def simulate(request: SimulationRequest) -> Any:
        params = validated(LotParams, request.model_dump())
        return encode(service.lots.simulate(params))

    @router.post("/lots", status_code=201)
    def create_lot(request: LotRequest) -> Any:
        lot = service.lots.create_lot(
            label=request.label,
            adjustment_type=request.adjustment_type,
            value=request.value,
            category_filter=request.category_filter,
            supplier_filter=request.supplier_filter,
        )
        return encode(lot)

    @router.get("/lots")
    def list_lots() -> Any:
        return encode(service.lots.list_lots())

    @router.get("/lots/{lot_id}")
    def get_lot(lot_id: str) -> Any:
        return encode(service.lots.get_lot(lot_id))

    @router.post("/lots/{lot_id}/simulate")
    def simulate_lot(lot_id: str) -> Any:
        return encode(service.lots.simulate_lot(lot_id))

    @router.post("/lots/{lot_id}/apply")
    def apply_lot(lot_id: str, request: Optional[ApplyRequest] = None) -> Any:
        expected = request.expected_prices if request else None
        result = service.lots.apply_lot(lot_id, expected_prices=expected)
        return encode(
            {
                "lot": result.lot,
                "affected_count": result.affected_count,
                "skipped_item_ids": result.skipped_item_ids,
                "masked_item_ids": result.masked_item_ids,
            }
        )

    @router.post("/lots/{lot_id}/revert")
    def revert_lot(lot_id: str) -> Any:
        result = service.lots.revert_lot(lot_id)
        return encode({"lot": result.lot, "restored_count": result.restored_count})

    app.include_router(router)
    return app


app = create_app(build_service_from_env())
