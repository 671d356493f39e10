"""
Governed, cached access to a single datasheet.

Reads consult the TTL cache first and otherwise go through the call
governor; writes always go through the governor and, when they succeed,
drop the cached reads they could have changed. Every method returns a
``ResultEnvelope`` and never raises.
"""

import functools
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from shared.errors import NotFoundError
from shared.logging import get_logger

from ..adapters.datasheet_client import MAX_PAGE_SIZE, DatasheetClient
from ..caching.ttl_cache import TTLCache, make_signature
from ..ratelimit.call_governor import CallGovernor
from .envelope import ResultEnvelope, classify_exception

Transform = Callable[[Any], Any]


class DatasheetFacade:
    """Base class for entity façades backed by one datasheet."""

    namespace = "records"
    # Read methods whose results can change after any write to this datasheet.
    list_methods: Sequence[str] = ("list", "query", "query_all", "search")

    def __init__(
        self,
        client: DatasheetClient,
        datasheet_id: str,
        governor: CallGovernor,
        cache: TTLCache,
        *,
        view_id: Optional[str] = None,
    ):
        self.client = client
        self.datasheet_id = datasheet_id
        self.governor = governor
        self.cache = cache
        self.view_id = view_id
        self.logger = get_logger(f"membership.{self.namespace}")

    def signature(self, method: str, params: Optional[Mapping[str, Any]] = None) -> str:
        return make_signature(f"{self.namespace}.{method}", params)

    async def _read(
        self,
        method: str,
        params: Mapping[str, Any],
        fetch: Callable[[], Awaitable[Any]],
        *,
        transform: Optional[Transform] = None,
        message: str = "Request successful",
        use_cache: bool = True,
    ) -> ResultEnvelope:
        signature = self.signature(method, params)
        if use_cache:
            cached = self.cache.get(signature)
            if cached is not None:
                return cached

        try:
            raw = await self.governor.enqueue(fetch, name=f"{self.namespace}.{method}")
            data = transform(raw) if transform else raw
        except Exception as exc:
            return self._failure(method, exc)

        envelope = ResultEnvelope.ok(data, message)
        self.cache.put(signature, envelope)
        return envelope

    async def _read_all(
        self,
        method: str,
        params: Mapping[str, Any],
        *,
        page_size: int = MAX_PAGE_SIZE,
        message: str = "Request successful",
    ) -> ResultEnvelope:
        """Fetch every page of a query as one cached result.

        Each page is its own governed call, so a long sheet is spaced out like
        any other sequence of requests. A failure on any page fails the whole
        read and nothing is cached.
        """
        signature = self.signature(method, params)
        cached = self.cache.get(signature)
        if cached is not None:
            return cached

        records: List[Dict[str, Any]] = []
        page_num = 1
        try:
            while True:
                fetch = functools.partial(
                    self.client.query, self.datasheet_id, page_size=page_size, page_num=page_num, **params
                )
                page = await self.governor.enqueue(fetch, name=f"{self.namespace}.{method}")
                records.extend(page["records"])
                if not page["records"] or len(records) >= page["total"]:
                    break
                page_num += 1
        except Exception as exc:
            return self._failure(method, exc)

        self.logger.debug(
            "Fetched all records", operation=f"{self.namespace}.{method}", total=len(records), pages=page_num
        )
        envelope = ResultEnvelope.ok({"total": len(records), "records": records}, message)
        self.cache.put(signature, envelope)
        return envelope

    async def _write(
        self,
        method: str,
        call: Callable[[], Awaitable[Any]],
        *,
        record_ids: Iterable[str] = (),
        transform: Optional[Transform] = None,
        message: str = "Request successful",
    ) -> ResultEnvelope:
        try:
            raw = await self.governor.enqueue(call, name=f"{self.namespace}.{method}")
            data = transform(raw) if transform else raw
        except Exception as exc:
            return self._failure(method, exc)

        self.invalidate(record_ids)
        return ResultEnvelope.ok(data, message)

    def invalidate(self, record_ids: Iterable[str] = ()) -> None:
        """Drop every cached list view and the detail views of ``record_ids``."""
        for method in self.list_methods:
            self.cache.invalidate(f"{self.namespace}.{method}:")
        for record_id in record_ids:
            self.cache.invalidate(self.signature("get", {"record_id": record_id}))

    def _failure(self, method: str, exc: Exception) -> ResultEnvelope:
        envelope = classify_exception(exc)
        self.logger.warning(
            "Datasheet operation failed",
            operation=f"{self.namespace}.{method}",
            error_code=envelope.error_code.value,
            error=str(exc),
        )
        return envelope

    def _invalid(self, method: str, message: str) -> ResultEnvelope:
        self.logger.info("Rejected invalid request", operation=f"{self.namespace}.{method}", reason=message)
        return ResultEnvelope.invalid(message)

    # Shared datasheet primitives

    async def _get_record(self, record_id: str, not_found_message: str, *, use_cache: bool = True) -> ResultEnvelope:
        def first_record(page):
            if not page["records"]:
                raise NotFoundError(not_found_message, details={"record_id": record_id})
            return page["records"][0]

        return await self._read(
            "get",
            {"record_id": record_id},
            lambda: self.client.query(self.datasheet_id, record_ids=[record_id]),
            transform=first_record,
            use_cache=use_cache,
        )

    async def _update_records(self, method: str, updates: Sequence[Mapping[str, Any]], message: str) -> ResultEnvelope:
        return await self._write(
            method,
            lambda: self.client.update(self.datasheet_id, updates),
            record_ids=[update["recordId"] for update in updates],
            message=message,
        )

    async def _delete_records(self, method: str, record_ids: Sequence[str], message: str) -> ResultEnvelope:
        ids = [record_id for record_id in record_ids if record_id]
        if not ids:
            return self._invalid(method, "At least one record id is required")
        return await self._write(
            method,
            lambda: self.client.delete(self.datasheet_id, ids),
            record_ids=ids,
            message=message,
        )


def quote_formula(value: Any) -> str:
    """Quote a literal for use inside a datasheet formula."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'
