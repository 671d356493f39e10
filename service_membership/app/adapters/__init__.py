"""
Adapters package for the Membership Service.

Contains the HTTP client wrapper for the hosted datasheet service. The
adapter encapsulates:

- Base URL, token and request shapes
- Pagination of record queries
- Error handling that maps to shared errors

Throttling and caching are not done here; see ratelimit/ and caching/.
"""

from .datasheet_client import DatasheetClient, DatasheetAPIError, DatasheetTransportError

__all__ = [
    "DatasheetClient",
    "DatasheetAPIError",
    "DatasheetTransportError",
]
