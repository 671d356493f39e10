"""
Product catalogue façade: product CRUD, stock levels and stock adjustments.
"""

import random
import time
from typing import Any, Dict, Mapping, Optional, Sequence

from .envelope import ResultEnvelope
from .facade import DatasheetFacade, quote_formula
from .inventory import InventoryRecordsFacade

STATUS_ON_SALE = "上架"
STATUS_OFF_SALE = "下架"
KIND_SERVICE = "服务项目"
KIND_GOODS = "普通商品"


def generate_product_id() -> str:
    """12-digit numeric product code: millisecond clock plus three random digits."""
    timestamp = str(int(time.time() * 1000))
    suffix = f"{random.randint(0, 999):03d}"
    return (timestamp + suffix)[-12:]


def _quantity(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _non_negative_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number < 0 or not number.is_integer():
        return None
    return int(number)


class ProductsFacade(DatasheetFacade):
    """Products sheet. Stock adjustments also append an inventory record."""

    namespace = "products"
    list_methods = ("list", "search")

    def __init__(self, *args, inventory: Optional[InventoryRecordsFacade] = None,
                 low_stock_threshold: int = 10, **kwargs):
        super().__init__(*args, **kwargs)
        self.inventory = inventory
        self.low_stock_threshold = low_stock_threshold

    async def list_products(
        self,
        *,
        filter_by_formula: Optional[str] = None,
        max_records: Optional[int] = None,
        sort: Optional[Sequence[Mapping[str, str]]] = None,
    ) -> ResultEnvelope:
        options = {
            "view_id": self.view_id,
            "filter_by_formula": filter_by_formula,
            "max_records": max_records,
            "sort": list(sort) if sort else None,
        }
        return await self._read(
            "list",
            options,
            lambda: self.client.query(self.datasheet_id, **options),
            message="Products loaded",
        )

    async def get_product(self, record_id: str, *, fresh: bool = False) -> ResultEnvelope:
        if not record_id:
            return self._invalid("get", "Product id is required")
        return await self._get_record(record_id, "Product does not exist", use_cache=not fresh)

    async def search_products(self, term: str) -> ResultEnvelope:
        if not term or not str(term).strip():
            return self._invalid("search", "Search term is required")
        term = str(term).strip()
        quoted = quote_formula(term)
        formula = f"OR({{name}} = {quoted}, {{id}} = {quoted}, FIND({quoted}, {{name}}) > 0)"
        return await self._read(
            "search",
            {"term": term},
            lambda: self.client.query(self.datasheet_id, view_id=self.view_id, filter_by_formula=formula),
            message="Products loaded",
        )

    async def create_product(self, product: Mapping[str, Any]) -> ResultEnvelope:
        if not str(product.get("name") or "").strip():
            return self._invalid("create", "Product name is required")
        if product.get("price") is not None and _non_negative_price(product["price"]) is None:
            return self._invalid("create", "Price must be a non-negative number")

        fields: Dict[str, Any] = {
            "name": str(product["name"]).strip(),
            "id": generate_product_id(),
            "kind": product.get("kind"),
            "remaining_quantity": product.get("remaining_quantity") or 0,
            "unit": product.get("unit") or "",
            "specifications": product.get("specifications"),
            "price": product.get("price"),
            "status": product.get("status"),
            "note": product.get("note") or "",
        }
        fields = {key: value for key, value in fields.items() if value is not None}

        return await self._write(
            "create",
            lambda: self.client.create(self.datasheet_id, [fields]),
            transform=lambda data: data["records"][0] if data["records"] else {"fields": fields},
            message="Product created",
        )

    async def update_product(self, record_id: str, fields: Mapping[str, Any]) -> ResultEnvelope:
        if not record_id:
            return self._invalid("update", "Product id is required")
        if not fields:
            return self._invalid("update", "No fields to update")
        if "name" in fields and not str(fields["name"] or "").strip():
            return self._invalid("update", "Product name is required")
        return await self._update_records("update", [{"recordId": record_id, "fields": dict(fields)}], "Product updated")

    async def delete_product(self, record_id: str) -> ResultEnvelope:
        if not record_id:
            return self._invalid("delete", "Product id is required")
        return await self._delete_records("delete", [record_id], "Product deleted")

    async def update_product_status(self, record_id: str, status: str) -> ResultEnvelope:
        if not record_id:
            return self._invalid("status", "Product id is required")
        if status not in (STATUS_ON_SALE, STATUS_OFF_SALE):
            return self._invalid("status", f"Status must be {STATUS_ON_SALE} or {STATUS_OFF_SALE}")
        return await self._update_records("status", [{"recordId": record_id, "fields": {"status": status}}], "Product status updated")

    async def batch_update_stock(self, updates: Sequence[Mapping[str, Any]]) -> ResultEnvelope:
        if not updates:
            return self._invalid("stock", "No stock updates given")

        records = []
        for update in updates:
            quantity = _non_negative_int(update.get("quantity"))
            if not update.get("record_id") or quantity is None:
                return self._invalid("stock", "Each stock update needs a record id and a non-negative whole quantity")
            records.append({"recordId": update["record_id"], "fields": {"remaining_quantity": quantity}})

        return await self._update_records("stock", records, "Stock updated")

    async def adjust_inventory(
        self,
        record_id: str,
        new_quantity: Any,
        *,
        reason: str = "",
        operator: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ResultEnvelope:
        """Set a product's stock level and log the adjustment.

        The stock update and the inventory record are two separate writes;
        when the second fails the stock change stands and
        ``inventoryRecorded`` is False.
        """
        if not record_id:
            return self._invalid("adjust", "Product id is required")
        quantity = _non_negative_int(new_quantity)
        if quantity is None:
            return self._invalid("adjust", "Quantity must be a non-negative whole number")

        product_envelope = await self.get_product(record_id, fresh=True)
        if not product_envelope.success:
            return product_envelope

        fields = product_envelope.data["fields"]
        expected = _quantity(fields.get("remaining_quantity"))

        update = await self._update_records(
            "adjust",
            [{"recordId": record_id, "fields": {"remaining_quantity": quantity}}],
            "Stock updated",
        )
        if not update.success:
            return update

        inventory_recorded = False
        if self.inventory is not None:
            entry = await self.inventory.create_inventory_record({
                "product_name": fields.get("name"),
                "product_id": fields.get("id"),
                "expected_quantity": expected,
                "actual_quantity": quantity,
                "difference": quantity - expected,
                "reason": reason,
                "operator": operator,
                "note": note,
            })
            inventory_recorded = entry.success
            if not entry.success:
                self.logger.error(
                    "Stock changed but inventory record was not written",
                    record_id=record_id,
                    error_code=entry.error_code.value,
                    error=entry.message,
                )

        return ResultEnvelope.ok(
            {
                "productId": record_id,
                "productName": fields.get("name"),
                "previousQuantity": expected,
                "newQuantity": quantity,
                "difference": quantity - expected,
                "inventoryRecorded": inventory_recorded,
            },
            "Inventory adjusted",
        )

    async def product_stats(self) -> ResultEnvelope:
        products_envelope = await self.list_products()
        if not products_envelope.success:
            return products_envelope

        products = [record["fields"] for record in products_envelope.data["records"]]
        return ResultEnvelope.ok(
            {
                "total": len(products),
                "active": sum(1 for p in products if p.get("status") == STATUS_ON_SALE),
                "inactive": sum(1 for p in products if p.get("status") == STATUS_OFF_SALE),
                "lowStock": sum(1 for p in products if _quantity(p.get("remaining_quantity")) < self.low_stock_threshold),
                "services": sum(1 for p in products if p.get("kind") == KIND_SERVICE),
                "goods": sum(1 for p in products if p.get("kind") == KIND_GOODS),
            },
            "Product statistics loaded",
        )


def _non_negative_price(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None
