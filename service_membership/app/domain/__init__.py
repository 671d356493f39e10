"""
Domain façades for the membership service.

Each façade owns one datasheet and is the only code that talks to the call
governor and the read cache:

- envelope: ResultEnvelope and error classification
- facade: governed/cached read and write primitives
- members, ledger, products, inventory, profile: entity façades
- analytics: reports derived from member and ledger reads
"""

from .envelope import ErrorCode, ResultEnvelope, classify_exception, classify_status
from .facade import DatasheetFacade
from .members import MembersFacade
from .ledger import LedgerFacade
from .products import ProductsFacade
from .inventory import InventoryRecordsFacade
from .profile import ProfileFacade
from .analytics import BusinessAnalytics

__all__ = [
    "ErrorCode",
    "ResultEnvelope",
    "classify_exception",
    "classify_status",
    "DatasheetFacade",
    "MembersFacade",
    "LedgerFacade",
    "ProductsFacade",
    "InventoryRecordsFacade",
    "ProfileFacade",
    "BusinessAnalytics",
]
