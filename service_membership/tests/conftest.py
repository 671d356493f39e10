"""
Shared fixtures for the Membership Service tests.
"""

import copy
import re
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pytest

from service_membership.app.adapters.datasheet_client import DatasheetAPIError
from service_membership.app.caching.ttl_cache import TTLCache
from service_membership.app.ratelimit.call_governor import CallGovernor

_EQUALS_FORMULA = re.compile(r'^\{(\w+)\} = "((?:[^"\\]|\\.)*)"$')
_FIND_FORMULA = re.compile(r"^FIND\('([^']*)', \{(\w+)\}\) > 0$")


class FakeDatasheetClient:
    """In-memory stand-in for ``DatasheetClient``.

    Understands the two formula shapes the façades build for exact matches
    (``{field} = "value"``) and keyword filters (``FIND('kw', {field}) > 0``);
    any other formula is ignored. Every call is appended to ``calls``.
    """

    def __init__(self):
        self.sheets: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self._failures: Dict[str, List[Exception]] = {}
        self._counter = 0

    def seed(self, datasheet_id: str, fields: Mapping[str, Any], record_id: Optional[str] = None,
             created_at: Optional[int] = None) -> Dict[str, Any]:
        self._counter += 1
        record = {
            "recordId": record_id or f"rec{self._counter:04d}",
            "fields": dict(fields),
            "createdAt": created_at if created_at is not None else int(time.time() * 1000),
            "updatedAt": None,
        }
        self.sheets.setdefault(datasheet_id, {})[record["recordId"]] = record
        return copy.deepcopy(record)

    def fail_next(self, method: str, exc: Exception) -> None:
        """Make the next call of ``method`` raise ``exc``."""
        self._failures.setdefault(method, []).append(exc)

    def calls_for(self, method: str) -> List[Tuple[str, str, Dict[str, Any]]]:
        return [call for call in self.calls if call[0] == method]

    def record(self, datasheet_id: str, record_id: str) -> Dict[str, Any]:
        return self.sheets[datasheet_id][record_id]

    async def close(self) -> None:
        return None

    async def query(self, datasheet_id: str, *, record_ids: Optional[Sequence[str]] = None,
                    filter_by_formula: Optional[str] = None, max_records: Optional[int] = None,
                    page_size: Optional[int] = None, page_num: Optional[int] = None,
                    **options: Any) -> Dict[str, Any]:
        self._track("query", datasheet_id, record_ids=record_ids, filter_by_formula=filter_by_formula,
                    max_records=max_records, page_size=page_size, page_num=page_num, **options)
        records = self._select(datasheet_id, record_ids, filter_by_formula)
        if max_records is not None:
            records = records[:max_records]
        total = len(records)
        if page_size:
            start = ((page_num or 1) - 1) * page_size
            records = records[start:start + page_size]
        return {"total": total, "pageNum": page_num or 1, "pageSize": len(records), "records": records}

    async def create(self, datasheet_id: str, records: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        self._track("create", datasheet_id, records=[dict(fields) for fields in records])
        return {"records": [self.seed(datasheet_id, fields) for fields in records]}

    async def update(self, datasheet_id: str, records: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        self._track("update", datasheet_id, records=copy.deepcopy(list(records)))
        sheet = self.sheets.setdefault(datasheet_id, {})
        for record in records:
            if record["recordId"] not in sheet:
                raise DatasheetAPIError(404, "record not found")
        updated = []
        for record in records:
            stored = sheet[record["recordId"]]
            stored["fields"].update(record["fields"])
            updated.append(copy.deepcopy(stored))
        return {"records": updated}

    async def delete(self, datasheet_id: str, record_ids: Sequence[str]) -> Dict[str, Any]:
        self._track("delete", datasheet_id, record_ids=list(record_ids))
        sheet = self.sheets.setdefault(datasheet_id, {})
        for record_id in record_ids:
            if record_id not in sheet:
                raise DatasheetAPIError(404, "record not found")
        for record_id in record_ids:
            del sheet[record_id]
        return {"deleted": list(record_ids)}

    def _track(self, method: str, datasheet_id: str, **kwargs: Any) -> None:
        self.calls.append((method, datasheet_id, kwargs))
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    def _select(self, datasheet_id: str, record_ids: Optional[Sequence[str]],
                formula: Optional[str]) -> List[Dict[str, Any]]:
        records = list(self.sheets.get(datasheet_id, {}).values())
        if record_ids:
            records = [record for record in records if record["recordId"] in record_ids]
        if formula:
            equals = _EQUALS_FORMULA.match(formula)
            find = _FIND_FORMULA.match(formula)
            if equals:
                field, value = equals.group(1), equals.group(2).replace('\\"', '"')
                records = [r for r in records if str(r["fields"].get(field, "")) == value]
            elif find:
                keyword, field = find.group(1), find.group(2)
                records = [r for r in records if keyword in str(r["fields"].get(field, ""))]
        return copy.deepcopy(records)


class TestDataFactory:
    """Factory for creating test records."""

    __test__ = False

    @staticmethod
    def member_fields(name: str = "Zhang San", phone: str = "13800000001", balance: float = 100.0,
                      level: str = "金卡会员") -> Dict[str, Any]:
        return {"member_name": name, "phonenumber": phone, "Remaining sum": balance, "member_level": level}

    @staticmethod
    def product_fields(name: str = "Shampoo", product_id: str = "100000000001", quantity: int = 20,
                       price: float = 39.9, status: str = "上架", kind: str = "普通商品") -> Dict[str, Any]:
        return {
            "name": name,
            "id": product_id,
            "kind": kind,
            "remaining_quantity": quantity,
            "unit": "bottle",
            "price": price,
            "status": status,
        }

    @staticmethod
    def ledger_fields(name: str, phone: str, text: str, date: str, time_of_day: str = "10:00:00") -> Dict[str, Any]:
        return {"member_name": name, "phonenumber": phone, "record": text, "date": date, "time": time_of_day}


@pytest.fixture
def fake_client():
    """In-memory datasheet client."""
    return FakeDatasheetClient()


@pytest.fixture
def factory():
    return TestDataFactory


@pytest.fixture
def governor():
    """Fast governor so tests do not wait on the production quota."""
    return CallGovernor(max_calls_per_second=200)


@pytest.fixture
def cache():
    return TTLCache(ttl_seconds=30)
