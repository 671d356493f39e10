"""
Async client for the hosted datasheet (Vika fusion) REST API.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx

from shared.errors import ExternalServiceError
from shared.logging import get_logger

SERVICE_NAME = "datasheet"
MAX_PAGE_SIZE = 1000


class DatasheetAPIError(ExternalServiceError):
    """The datasheet service answered but reported a failure."""

    def __init__(self, status_code: int, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(SERVICE_NAME, message, details)
        self.status_code = status_code
        self.upstream_message = message


class DatasheetTransportError(ExternalServiceError):
    """The request never reached the datasheet service or no response came back."""

    error_code = "network-error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(SERVICE_NAME, message, details)
        self.upstream_message = message


def normalize_record(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Reduce an upstream record to id, fields and timestamps."""
    return {
        "recordId": raw.get("recordId") or raw.get("id"),
        "fields": dict(raw.get("fields") or {}),
        "createdAt": raw.get("createdAt") or raw.get("createdTime"),
        "updatedAt": raw.get("updatedAt"),
    }


class DatasheetClient:
    """Thin wrapper over the record endpoints of one datasheet API token.

    Methods return the ``data`` section of a successful response and raise
    ``DatasheetAPIError`` / ``DatasheetTransportError`` otherwise. They do no
    caching or throttling of their own.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        field_key: str = "name",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.field_key = field_key
        self.logger = get_logger("membership.datasheet")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def query(
        self,
        datasheet_id: str,
        *,
        record_ids: Optional[Sequence[str]] = None,
        view_id: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        filter_by_formula: Optional[str] = None,
        max_records: Optional[int] = None,
        sort: Optional[Sequence[Mapping[str, str]]] = None,
        page_size: Optional[int] = None,
        page_num: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Fetch one page of records.

        Returns ``{"total", "pageNum", "pageSize", "records"}``.
        """
        params: List[tuple] = [("fieldKey", self.field_key)]
        if record_ids:
            params.extend(("recordIds", record_id) for record_id in record_ids)
        if view_id:
            params.append(("viewId", view_id))
        if fields:
            params.extend(("fields", name) for name in fields)
        if filter_by_formula:
            params.append(("filterByFormula", filter_by_formula))
        if max_records is not None:
            params.append(("maxRecords", int(max_records)))
        if page_size is not None:
            params.append(("pageSize", int(page_size)))
        if page_num is not None:
            params.append(("pageNum", int(page_num)))
        for index, rule in enumerate(sort or []):
            params.append((f"sort[{index}][field]", rule["field"]))
            params.append((f"sort[{index}][order]", rule.get("order", "asc")))

        data = await self._request("GET", self._records_path(datasheet_id), params=params)
        records = [normalize_record(record) for record in (data or {}).get("records", [])]
        return {
            "total": (data or {}).get("total", len(records)),
            "pageNum": (data or {}).get("pageNum", page_num or 1),
            "pageSize": (data or {}).get("pageSize", len(records)),
            "records": records,
        }

    async def create(self, datasheet_id: str, records: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
        """Create records from a list of field mappings."""
        body = {
            "records": [{"fields": dict(fields)} for fields in records],
            "fieldKey": self.field_key,
        }
        data = await self._request("POST", self._records_path(datasheet_id), json=body)
        return {"records": [normalize_record(record) for record in (data or {}).get("records", [])]}

    async def update(self, datasheet_id: str, records: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
        """Update records given as ``{"recordId": ..., "fields": {...}}``."""
        body = {
            "records": [
                {"recordId": record["recordId"], "fields": dict(record["fields"])}
                for record in records
            ],
            "fieldKey": self.field_key,
        }
        data = await self._request("PATCH", self._records_path(datasheet_id), json=body)
        return {"records": [normalize_record(record) for record in (data or {}).get("records", [])]}

    async def delete(self, datasheet_id: str, record_ids: Sequence[str]) -> Dict[str, Any]:
        """Delete records by id."""
        params = [("recordIds", record_id) for record_id in record_ids]
        await self._request("DELETE", self._records_path(datasheet_id), params=params)
        return {"deleted": list(record_ids)}

    def _records_path(self, datasheet_id: str) -> str:
        return f"/datasheets/{datasheet_id}/records"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            self.logger.error("Datasheet request timed out", method=method, path=path, error=str(exc))
            raise DatasheetTransportError("request timed out", details={"path": path}) from exc
        except httpx.HTTPError as exc:
            self.logger.error("Datasheet request failed", method=method, path=path, error=str(exc))
            raise DatasheetTransportError(str(exc) or exc.__class__.__name__, details={"path": path}) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            if response.is_success:
                raise DatasheetAPIError(
                    response.status_code,
                    "malformed response body",
                    details={"path": path, "body": response.text[:500]},
                )
            raise DatasheetAPIError(
                response.status_code,
                f"Unexpected status {response.status_code}",
                details={"path": path, "body": response.text[:500]},
            )

        # The service reports most failures as HTTP 200 with success=false and its own code.
        if response.is_success and payload.get("success", True):
            return payload.get("data")

        status_code = payload.get("code") if isinstance(payload.get("code"), int) else None
        if status_code is None or status_code < 400:
            status_code = response.status_code if response.status_code >= 400 else 500
        message = payload.get("message") or f"Unexpected status {response.status_code}"
        self.logger.error(
            "Datasheet request rejected",
            method=method,
            path=path,
            status_code=status_code,
            message=message,
        )
        raise DatasheetAPIError(status_code, message, details={"path": path, "http_status": response.status_code})
