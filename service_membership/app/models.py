"""
Request models for the Membership Service.

Fields are deliberately loose; value rules are enforced by the façades so
that every rejection comes back as a result envelope.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MemberPayload(BaseModel):
    """Member fields as stored in the members datasheet."""
    model_config = ConfigDict(extra="allow")

    member_name: Optional[str] = Field(None, description="Member name")
    phonenumber: Optional[str] = Field(None, description="Phone number")

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class BalanceChangeRequest(BaseModel):
    """Recharge or consumption amount."""
    amount: Any = Field(None, description="Amount in yuan")
    product_details: Optional[Any] = Field(None, description="Purchased items for a consumption")


class LedgerEntryRequest(BaseModel):
    """Manual ledger entry."""
    member_name: Optional[str] = None
    phonenumber: Optional[str] = None
    record: Optional[str] = Field(None, description="Ledger text, e.g. 充值100元")
    date: Optional[str] = None
    time: Optional[str] = None
    product_details: Optional[Any] = None


class RecordIdsRequest(BaseModel):
    """Batch delete body."""
    record_ids: List[str] = Field(default_factory=list)


class ProductPayload(BaseModel):
    """Product fields as stored in the products datasheet."""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    kind: Optional[str] = None
    remaining_quantity: Optional[Any] = None
    unit: Optional[str] = None
    specifications: Optional[str] = None
    price: Optional[Any] = None
    status: Optional[str] = None
    note: Optional[str] = None

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ProductStatusRequest(BaseModel):
    status: Optional[str] = None


class StockUpdate(BaseModel):
    record_id: Optional[str] = None
    quantity: Any = None


class StockUpdateRequest(BaseModel):
    updates: List[StockUpdate] = Field(default_factory=list)


class InventoryAdjustmentRequest(BaseModel):
    """Stock count result for one product."""
    quantity: Any = Field(None, description="Counted quantity")
    reason: str = ""
    operator: Optional[str] = None
    note: Optional[str] = None


class InventoryRecordRequest(BaseModel):
    """Manual inventory record."""
    model_config = ConfigDict(extra="allow")

    product_name: Optional[str] = None
    product_id: Optional[str] = None
    expected_quantity: Optional[Any] = None
    actual_quantity: Optional[Any] = None
    difference: Optional[Any] = None
    operation: Optional[str] = None
    operation_quantity: Optional[Any] = None
    reason: Optional[str] = None
    operator: Optional[str] = None
    note: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)
