"""
Inventory adjustment ledger façade.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Sequence

from .envelope import ResultEnvelope
from .facade import DatasheetFacade, quote_formula

OPERATION_INCREASE = "增加"
OPERATION_DECREASE = "减少"
OPERATION_UNCHANGED = "无变化"


def _as_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_text(value: Any) -> str:
    number = _as_number(value)
    return str(int(number)) if number.is_integer() else str(number)


def operation_for(difference: float) -> str:
    if difference > 0:
        return OPERATION_INCREASE
    if difference < 0:
        return OPERATION_DECREASE
    return OPERATION_UNCHANGED


class InventoryRecordsFacade(DatasheetFacade):
    """One row per stock count or manual stock adjustment."""

    namespace = "inventory"
    list_methods = ("list", "search")

    def __init__(self, *args, now: Callable[[], datetime] = datetime.now, **kwargs):
        super().__init__(*args, **kwargs)
        self._now = now

    async def list_inventory_records(self, max_records: int = 1000) -> ResultEnvelope:
        return await self._read(
            "list",
            {"max_records": max_records},
            lambda: self.client.query(self.datasheet_id, view_id=self.view_id, max_records=max_records),
            message="Inventory records loaded",
        )

    async def search_inventory_records(self, term: str) -> ResultEnvelope:
        if not term or not str(term).strip():
            return self._invalid("search", "Search term is required")
        term = str(term).strip()
        quoted = quote_formula(term)
        formula = f"OR({{product_id}} = {quoted}, FIND({quoted}, {{product_name}}) > 0)"
        return await self._read(
            "search",
            {"term": term},
            lambda: self.client.query(self.datasheet_id, filter_by_formula=formula, max_records=1000),
            message="Inventory records loaded",
        )

    async def create_inventory_record(self, entry: Mapping[str, Any]) -> ResultEnvelope:
        """Append an adjustment row.

        ``operation`` and ``operation_quantity`` are derived from
        ``difference`` (or actual minus expected) when not given.
        """
        if not entry.get("product_id") and not entry.get("product_name"):
            return self._invalid("create", "Product id or name is required")

        expected = _as_number(entry.get("expected_quantity"))
        actual = _as_number(entry.get("actual_quantity"))
        difference = _as_number(entry["difference"]) if entry.get("difference") is not None else actual - expected
        now = self._now()

        fields: Dict[str, Any] = {
            "product_name": entry.get("product_name") or "",
            "product_id": entry.get("product_id") or "",
            "expected_quantity": _as_text(expected),
            "actual_quantity": _as_text(actual),
            "operation": entry.get("operation") or operation_for(difference),
            "operation_quantity": _as_text(
                entry["operation_quantity"] if entry.get("operation_quantity") is not None else abs(difference)
            ),
            "reason": entry.get("reason") or entry.get("inventory_reason") or "",
            "date": now.strftime("%Y-%m-%d"),
            "time": now.strftime("%H:%M:%S"),
        }
        if entry.get("operator"):
            fields["operator"] = entry["operator"]
        if entry.get("note"):
            fields["note"] = entry["note"]

        return await self._write(
            "create",
            lambda: self.client.create(self.datasheet_id, [fields]),
            transform=lambda data: data["records"][0] if data["records"] else {"fields": fields},
            message="Inventory record created",
        )

    async def delete_inventory_record(self, record_id: str) -> ResultEnvelope:
        if not record_id:
            return self._invalid("delete", "Record id is required")
        return await self._delete_records("delete", [record_id], "Inventory record deleted")

    async def delete_inventory_records(self, record_ids: Sequence[str]) -> ResultEnvelope:
        return await self._delete_records("delete_many", list(record_ids or []), "Inventory records deleted")
