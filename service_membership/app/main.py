"""
Membership service for the retail POS backend.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import Query
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .adapters.datasheet_client import DatasheetClient
from .caching.ttl_cache import TTLCache
from .domain.analytics import BusinessAnalytics
from .domain.envelope import ResultEnvelope
from .domain.inventory import InventoryRecordsFacade
from .domain.ledger import LedgerFacade
from .domain.members import MembersFacade
from .domain.products import ProductsFacade
from .domain.profile import ProfileFacade
from .models import (
    BalanceChangeRequest,
    InventoryAdjustmentRequest,
    InventoryRecordRequest,
    LedgerEntryRequest,
    MemberPayload,
    ProductPayload,
    ProductStatusRequest,
    ProfileUpdateRequest,
    RecordIdsRequest,
    StockUpdateRequest,
)
from .ratelimit.call_governor import CallGovernor

SERVICE_NAME = "membership"
SERVICE_PORT = 3000


def respond(envelope: ResultEnvelope, success_status: int = 200) -> JSONResponse:
    """Serialize an envelope with the HTTP status matching its outcome."""
    return JSONResponse(status_code=envelope.http_status(success_status), content=envelope.to_dict())


class MembershipService(BaseService):
    """Membership, ledger and product service implementation.

    Acts as the composition root: one call governor and one read cache are
    created here and shared by every façade.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        self.governor = CallGovernor(self.config.max_calls_per_second, metrics=self.metrics)
        self.cache = TTLCache(self.config.cache_ttl_seconds, metrics=self.metrics)

        self.datasheet_client = DatasheetClient(
            self.config.datasheet_api_url,
            self.config.datasheet_token,
            timeout=self.config.datasheet_timeout_seconds,
            transport=transport,
        )
        if self.config.inventory_token != self.config.datasheet_token:
            self.inventory_client = DatasheetClient(
                self.config.datasheet_api_url,
                self.config.inventory_token,
                timeout=self.config.datasheet_timeout_seconds,
                transport=transport,
            )
        else:
            self.inventory_client = self.datasheet_client

        shared_deps = (self.governor, self.cache)
        self.ledger = LedgerFacade(
            self.datasheet_client, self.config.ledger_datasheet_id, *shared_deps,
            view_id=self.config.ledger_view_id,
        )
        self.members = MembersFacade(
            self.datasheet_client, self.config.members_datasheet_id, *shared_deps,
            ledger=self.ledger,
        )
        self.inventory = InventoryRecordsFacade(
            self.inventory_client, self.config.inventory_datasheet_id, *shared_deps,
            view_id=self.config.inventory_view_id,
        )
        self.products = ProductsFacade(
            self.datasheet_client, self.config.products_datasheet_id, *shared_deps,
            view_id=self.config.products_view_id,
            inventory=self.inventory,
            low_stock_threshold=self.config.low_stock_threshold,
        )
        self.profile = ProfileFacade(
            self.datasheet_client, self.config.profile_datasheet_id, *shared_deps,
            view_id=self.config.profile_view_id,
        )
        self.analytics = BusinessAnalytics(self.members, self.ledger)

        self.add_shutdown_hook(self.datasheet_client.close)
        if self.inventory_client is not self.datasheet_client:
            self.add_shutdown_hook(self.inventory_client.close)

        self._setup_member_routes()
        self._setup_ledger_routes()
        self._setup_product_routes()
        self._setup_inventory_routes()
        self._setup_admin_routes()

        self.app.state.membership_service = self

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {
            "datasheet": "configured" if self.config.datasheet_token else "missing token",
            "governor": self.governor.stats(),
            "cache_entries": len(self.cache),
        }

    def _setup_member_routes(self):
        """Member CRUD, balance changes and member statistics."""

        @self.app.get("/")
        async def root():
            return {
                "service": SERVICE_NAME,
                "message": "Retail POS backend - Membership Service",
                "version": "1.0.0",
            }

        @self.app.get("/api/members")
        async def query_members(
            view_id: Optional[str] = Query(None, alias="viewId"),
            filter_by_formula: Optional[str] = Query(None, alias="filterByFormula"),
            max_records: Optional[int] = Query(None, alias="maxRecords", ge=1),
        ):
            return respond(await self.members.query_members(
                view_id=view_id, filter_by_formula=filter_by_formula, max_records=max_records,
            ))

        @self.app.get("/api/members/all")
        async def query_all_members(
            view_id: Optional[str] = Query(None, alias="viewId"),
            filter_by_formula: Optional[str] = Query(None, alias="filterByFormula"),
        ):
            return respond(await self.members.query_all_members(view_id=view_id, filter_by_formula=filter_by_formula))

        @self.app.get("/api/members/phone-check")
        async def check_phone(phone: str = "", exclude: Optional[str] = None):
            return respond(await self.members.check_phone_exists(phone, exclude_record_id=exclude))

        @self.app.get("/api/members/{record_id}")
        async def get_member(record_id: str):
            return respond(await self.members.get_member(record_id))

        @self.app.post("/api/members")
        async def create_member(payload: MemberPayload):
            envelope = await self.members.create_member(payload.fields())
            if envelope.success:
                self.metrics.record_business_event("member_created")
            return respond(envelope, success_status=201)

        @self.app.put("/api/members/{record_id}")
        async def update_member(record_id: str, payload: MemberPayload):
            return respond(await self.members.update_member(record_id, payload.fields()))

        @self.app.delete("/api/members/{record_id}")
        async def delete_member(record_id: str):
            return respond(await self.members.delete_member(record_id))

        @self.app.post("/api/members/{record_id}/recharge")
        async def recharge_member(record_id: str, body: BalanceChangeRequest):
            envelope = await self.members.recharge_member(record_id, body.amount)
            if envelope.success:
                self.metrics.record_business_event("recharge")
            return respond(envelope)

        @self.app.post("/api/members/{record_id}/consume")
        async def consume_member(record_id: str, body: BalanceChangeRequest):
            envelope = await self.members.consume_member(record_id, body.amount, body.product_details)
            if envelope.success:
                self.metrics.record_business_event("consume")
            return respond(envelope)

        @self.app.get("/api/stats")
        async def member_statistics():
            return respond(await self.members.get_statistics())

        @self.app.get("/api/analytics/business")
        async def business_report(days: int = 7):
            return respond(await self.analytics.business_report(days))

    def _setup_ledger_routes(self):
        """Recharge/consumption ledger."""

        @self.app.get("/api/records")
        async def list_records(kind: str = "all", phone: Optional[str] = None):
            if phone:
                return respond(await self.ledger.search_records(phone))
            if kind == "recharge":
                return respond(await self.ledger.list_recharge_records())
            if kind == "consume":
                return respond(await self.ledger.list_consume_records())
            if kind != "all":
                return respond(ResultEnvelope.invalid("kind must be all, recharge or consume"))
            return respond(await self.ledger.list_records())

        @self.app.get("/api/activities")
        async def recent_activities(limit: int = 10):
            return respond(await self.ledger.recent_activities(limit))

        @self.app.post("/api/records")
        async def create_record(body: LedgerEntryRequest):
            return respond(await self.ledger.create_record(body.model_dump(exclude_none=True)), success_status=201)

        @self.app.delete("/api/records/{record_id}")
        async def delete_record(record_id: str):
            return respond(await self.ledger.delete_record(record_id))

        @self.app.post("/api/records/delete")
        async def delete_records(body: RecordIdsRequest):
            return respond(await self.ledger.delete_records(body.record_ids))

    def _setup_product_routes(self):
        """Product catalogue and stock levels."""

        @self.app.get("/api/products")
        async def list_products(
            filter_by_formula: Optional[str] = Query(None, alias="filterByFormula"),
            max_records: Optional[int] = Query(None, alias="maxRecords", ge=1),
        ):
            return respond(await self.products.list_products(filter_by_formula=filter_by_formula, max_records=max_records))

        @self.app.get("/api/products/search")
        async def search_products(q: str = ""):
            return respond(await self.products.search_products(q))

        @self.app.get("/api/products/stats")
        async def product_stats():
            return respond(await self.products.product_stats())

        @self.app.post("/api/products/stock")
        async def batch_update_stock(body: StockUpdateRequest):
            updates = [update.model_dump() for update in body.updates]
            return respond(await self.products.batch_update_stock(updates))

        @self.app.get("/api/products/{record_id}")
        async def get_product(record_id: str):
            return respond(await self.products.get_product(record_id))

        @self.app.post("/api/products")
        async def create_product(payload: ProductPayload):
            return respond(await self.products.create_product(payload.fields()), success_status=201)

        @self.app.put("/api/products/{record_id}")
        async def update_product(record_id: str, payload: ProductPayload):
            return respond(await self.products.update_product(record_id, payload.fields()))

        @self.app.delete("/api/products/{record_id}")
        async def delete_product(record_id: str):
            return respond(await self.products.delete_product(record_id))

        @self.app.patch("/api/products/{record_id}/status")
        async def update_product_status(record_id: str, body: ProductStatusRequest):
            return respond(await self.products.update_product_status(record_id, body.status or ""))

        @self.app.post("/api/products/{record_id}/inventory")
        async def adjust_inventory(record_id: str, body: InventoryAdjustmentRequest):
            envelope = await self.products.adjust_inventory(
                record_id, body.quantity, reason=body.reason, operator=body.operator, note=body.note,
            )
            if envelope.success:
                self.metrics.record_business_event("inventory_adjusted")
            return respond(envelope)

    def _setup_inventory_routes(self):
        """Inventory adjustment ledger."""

        @self.app.get("/api/inventory-records")
        async def list_inventory_records(q: Optional[str] = None):
            if q:
                return respond(await self.inventory.search_inventory_records(q))
            return respond(await self.inventory.list_inventory_records())

        @self.app.post("/api/inventory-records")
        async def create_inventory_record(body: InventoryRecordRequest):
            return respond(
                await self.inventory.create_inventory_record(body.model_dump(exclude_none=True)),
                success_status=201,
            )

        @self.app.delete("/api/inventory-records/{record_id}")
        async def delete_inventory_record(record_id: str):
            return respond(await self.inventory.delete_inventory_record(record_id))

        @self.app.post("/api/inventory-records/delete")
        async def delete_inventory_records(body: RecordIdsRequest):
            return respond(await self.inventory.delete_inventory_records(body.record_ids))

    def _setup_admin_routes(self):
        """Profile and operational endpoints."""

        @self.app.get("/api/profile")
        async def get_profile(username: str = "admin"):
            return respond(await self.profile.get_profile(username))

        @self.app.put("/api/profile/{record_id}")
        async def update_profile(record_id: str, body: ProfileUpdateRequest):
            return respond(await self.profile.update_profile(record_id, body.fields()))

        @self.app.post("/api/cache/clear")
        async def clear_cache():
            removed = self.cache.invalidate()
            self.logger.info("Read cache cleared", keys_count=removed)
            return respond(ResultEnvelope.ok({"cleared": removed}, "Cache cleared"))

        @self.app.get("/api/governor")
        async def governor_status():
            return respond(ResultEnvelope.ok(self.governor.stats(), "Governor status"))


def create_app():
    """Create FastAPI application."""
    service = MembershipService()
    return service.app


if __name__ == "__main__":
    service = MembershipService()
    service.run()
