"""
Recharge/consumption ledger façade.
"""

import json
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .envelope import ResultEnvelope
from .facade import DatasheetFacade, quote_formula

RECHARGE_KEYWORD = "充值"
CONSUME_KEYWORD = "消费"
MAX_LEDGER_RECORDS = 1000
NEWEST_FIRST = [{"field": "date", "order": "desc"}]

_AMOUNT_PATTERN = re.compile(r"\d+(?:\.\d+)?")


def format_amount(amount: Any) -> str:
    """Render an amount without a trailing ``.0`` (``100`` rather than ``100.0``)."""
    value = Decimal(str(amount)).normalize()
    return format(value, "f")


def recharge_text(amount: Any) -> str:
    return f"{RECHARGE_KEYWORD}{format_amount(amount)}元"


def consume_text(amount: Any) -> str:
    return f"{CONSUME_KEYWORD}{format_amount(amount)}元"


def parse_amount(text: Optional[str], keyword: Optional[str] = None) -> float:
    """Extract the amount from ledger text such as ``充值100元``."""
    if not text:
        return 0.0
    if keyword:
        match = re.search(rf"{keyword}(\d+(?:\.\d+)?)元", text)
        return float(match.group(1)) if match else 0.0
    match = _AMOUNT_PATTERN.search(text)
    return float(match.group(0)) if match else 0.0


def entry_kind(text: Optional[str]) -> str:
    return "recharge" if text and RECHARGE_KEYWORD in text else "consume"


class LedgerFacade(DatasheetFacade):
    """Consumption records sheet: one row per recharge or purchase."""

    namespace = "ledger"
    list_methods = ("list", "recharge", "consume", "search", "recent")

    def __init__(self, *args, now: Callable[[], datetime] = datetime.now, **kwargs):
        super().__init__(*args, **kwargs)
        self._now = now

    async def list_records(self, max_records: int = MAX_LEDGER_RECORDS) -> ResultEnvelope:
        return await self._query("list", max_records=max_records)

    async def list_recharge_records(self) -> ResultEnvelope:
        return await self._query("recharge", filter_by_formula=f"FIND('{RECHARGE_KEYWORD}', {{record}}) > 0")

    async def list_consume_records(self) -> ResultEnvelope:
        return await self._query("consume", filter_by_formula=f"FIND('{CONSUME_KEYWORD}', {{record}}) > 0")

    async def search_records(self, phone: str) -> ResultEnvelope:
        if not phone or not str(phone).strip():
            return self._invalid("search", "Phone number is required")
        phone = str(phone).strip()
        return await self._query("search", filter_by_formula=f"{{phonenumber}} = {quote_formula(phone)}", phone=phone)

    async def recent_activities(self, limit: int = 10) -> ResultEnvelope:
        if limit <= 0:
            return self._invalid("recent", "limit must be greater than zero")

        def to_activities(page):
            activities = []
            for record in page["records"]:
                fields = record["fields"]
                text = fields.get("record") or ""
                activities.append({
                    "id": record["recordId"],
                    "memberName": fields.get("member_name"),
                    "memberPhone": fields.get("phonenumber"),
                    "date": fields.get("date"),
                    "action": text,
                    "type": entry_kind(text),
                    "amount": parse_amount(text),
                })
            return activities

        return await self._read(
            "recent",
            {"limit": limit},
            lambda: self.client.query(self.datasheet_id, max_records=limit, sort=NEWEST_FIRST),
            transform=to_activities,
            message="Recent activities loaded",
        )

    async def create_record(self, entry: Mapping[str, Any]) -> ResultEnvelope:
        if not entry.get("record"):
            return self._invalid("create", "Ledger text is required")
        if not entry.get("member_name") and not entry.get("phonenumber"):
            return self._invalid("create", "Member name or phone number is required")

        now = self._now()
        fields: Dict[str, Any] = {
            "member_name": entry.get("member_name") or "",
            "phonenumber": entry.get("phonenumber") or "",
            "date": entry.get("date") or now.strftime("%Y-%m-%d"),
            "time": entry.get("time") or now.strftime("%H:%M:%S"),
            "record": entry["record"],
        }
        product_details = entry.get("product_details")
        if product_details:
            if not isinstance(product_details, str):
                product_details = json.dumps(product_details, ensure_ascii=False)
            fields["product_details"] = product_details

        return await self._write(
            "create",
            lambda: self.client.create(self.datasheet_id, [fields]),
            transform=lambda data: data["records"][0] if data["records"] else {"fields": fields},
            message="Ledger record created",
        )

    async def delete_record(self, record_id: str) -> ResultEnvelope:
        if not record_id:
            return self._invalid("delete", "Record id is required")
        return await self._delete_records("delete", [record_id], "Ledger record deleted")

    async def delete_records(self, record_ids: Sequence[str]) -> ResultEnvelope:
        return await self._delete_records("delete_many", list(record_ids or []), "Ledger records deleted")

    async def _query(self, method: str, *, max_records: int = MAX_LEDGER_RECORDS,
                     filter_by_formula: Optional[str] = None, **extra: Any) -> ResultEnvelope:
        params: Dict[str, Any] = {"max_records": max_records, **extra}
        return await self._read(
            method,
            params,
            lambda: self.client.query(
                self.datasheet_id,
                view_id=self.view_id,
                filter_by_formula=filter_by_formula,
                max_records=max_records,
                sort=NEWEST_FIRST,
            ),
            message="Ledger records loaded",
        )


def records_of(envelope: ResultEnvelope) -> List[Dict[str, Any]]:
    """Records carried by a successful list envelope."""
    if not envelope.success:
        return []
    return list(envelope.data.get("records", []))
