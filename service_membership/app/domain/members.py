"""
Member façade: member CRUD, balance changes and member statistics.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Sequence

from .envelope import ErrorCode, ResultEnvelope
from .facade import DatasheetFacade, quote_formula
from .ledger import LedgerFacade, consume_text, recharge_text

BALANCE_FIELD = "Remaining sum"
LEGACY_BALANCE_FIELD = "Remaining_sum"
DEFAULT_LEVEL = "普通会员"
REQUIRED_FIELDS = ("member_name", "phonenumber")


def member_balance(fields: Mapping[str, Any]) -> Decimal:
    """Current balance of a member record, zero when unset or unparsable."""
    raw = fields.get(BALANCE_FIELD)
    if raw in (None, ""):
        raw = fields.get(LEGACY_BALANCE_FIELD)
    try:
        return Decimal(str(raw)) if raw not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def member_level(fields: Mapping[str, Any]) -> str:
    return fields.get("member_level") or fields.get("level") or DEFAULT_LEVEL


def parse_positive_amount(amount: Any) -> Optional[Decimal]:
    """Return the amount as a Decimal when it is a positive number, else None."""
    if isinstance(amount, bool):
        return None
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


class MembersFacade(DatasheetFacade):
    """Members sheet. Balance changes also append a row to the ledger."""

    namespace = "members"
    list_methods = ("query", "query_all", "phone_check")

    def __init__(self, *args, ledger: Optional[LedgerFacade] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.ledger = ledger

    async def query_members(
        self,
        *,
        view_id: Optional[str] = None,
        filter_by_formula: Optional[str] = None,
        max_records: Optional[int] = None,
        sort: Optional[Sequence[Mapping[str, str]]] = None,
    ) -> ResultEnvelope:
        options = {
            "view_id": view_id or self.view_id,
            "filter_by_formula": filter_by_formula,
            "max_records": max_records,
            "sort": list(sort) if sort else None,
        }
        return await self._read(
            "query",
            options,
            lambda: self.client.query(self.datasheet_id, **options),
        )

    async def query_all_members(
        self,
        *,
        view_id: Optional[str] = None,
        filter_by_formula: Optional[str] = None,
    ) -> ResultEnvelope:
        options = {"view_id": view_id or self.view_id, "filter_by_formula": filter_by_formula}
        return await self._read_all("query_all", options)

    async def get_member(self, record_id: str, *, fresh: bool = False) -> ResultEnvelope:
        if not record_id:
            return self._invalid("get", "Member id is required")
        return await self._get_record(record_id, "Member does not exist", use_cache=not fresh)

    async def check_phone_exists(self, phone: str, exclude_record_id: Optional[str] = None) -> ResultEnvelope:
        if not phone or not str(phone).strip():
            return self._invalid("phone_check", "Phone number is required")
        phone = str(phone).strip()

        def to_result(page):
            matches = [record for record in page["records"] if record["recordId"] != exclude_record_id]
            return {"exists": bool(matches), "records": matches}

        return await self._read(
            "phone_check",
            {"phone": phone, "exclude_record_id": exclude_record_id},
            lambda: self.client.query(
                self.datasheet_id,
                filter_by_formula=f"{{phonenumber}} = {quote_formula(phone)}",
                max_records=1000,
            ),
            transform=to_result,
            message="Phone number checked",
        )

    async def create_member(self, fields: Mapping[str, Any]) -> ResultEnvelope:
        missing = [name for name in REQUIRED_FIELDS if not str(fields.get(name) or "").strip()]
        if missing:
            return self._invalid("create", "Member name and phone number are required")

        conflict = await self._phone_conflict(str(fields["phonenumber"]).strip())
        if conflict is not None:
            return conflict

        payload = dict(fields)
        payload["phonenumber"] = str(payload["phonenumber"]).strip()
        return await self._write(
            "create",
            lambda: self.client.create(self.datasheet_id, [payload]),
            transform=lambda data: data["records"][0] if data["records"] else {"fields": payload},
            message="Member created",
        )

    async def update_member(self, record_id: str, fields: Mapping[str, Any]) -> ResultEnvelope:
        if not record_id:
            return self._invalid("update", "Member id is required")
        if not fields:
            return self._invalid("update", "No fields to update")
        for name in REQUIRED_FIELDS:
            if name in fields and not str(fields[name] or "").strip():
                return self._invalid("update", "Member name and phone number are required")

        if "phonenumber" in fields:
            conflict = await self._phone_conflict(str(fields["phonenumber"]).strip(), exclude_record_id=record_id)
            if conflict is not None:
                return conflict

        return await self._update_records("update", [{"recordId": record_id, "fields": dict(fields)}], "Member updated")

    async def delete_member(self, record_id: str) -> ResultEnvelope:
        if not record_id:
            return self._invalid("delete", "Member id is required")
        return await self._delete_records("delete", [record_id], "Member deleted")

    async def recharge_member(self, record_id: str, amount: Any) -> ResultEnvelope:
        if not record_id:
            return self._invalid("recharge", "Member id is required")
        value = parse_positive_amount(amount)
        if value is None:
            return self._invalid("recharge", "Recharge amount must be greater than 0")

        return await self._change_balance(record_id, value, ledger_text=recharge_text(value), operation="recharge")

    async def consume_member(self, record_id: str, amount: Any, product_details: Any = None) -> ResultEnvelope:
        if not record_id:
            return self._invalid("consume", "Member id is required")
        value = parse_positive_amount(amount)
        if value is None:
            return self._invalid("consume", "Consumption amount must be greater than 0")

        return await self._change_balance(
            record_id,
            -value,
            ledger_text=consume_text(value),
            operation="consume",
            product_details=product_details,
        )

    async def get_statistics(self) -> ResultEnvelope:
        members_envelope = await self.query_all_members()
        if not members_envelope.success:
            return members_envelope

        members = members_envelope.data["records"]
        level_stats: Dict[str, int] = {}
        total_balance = Decimal("0")
        for member in members:
            total_balance += member_balance(member["fields"])
            level = member_level(member["fields"])
            level_stats[level] = level_stats.get(level, 0) + 1

        return ResultEnvelope.ok(
            {
                "totalMembers": len(members),
                "totalBalance": float(total_balance),
                "levelStats": level_stats,
            },
            "Statistics loaded",
        )

    async def _phone_conflict(self, phone: str, exclude_record_id: Optional[str] = None) -> Optional[ResultEnvelope]:
        check = await self.check_phone_exists(phone, exclude_record_id=exclude_record_id)
        if not check.success:
            return check
        if check.data["exists"]:
            owner = check.data["records"][0]["fields"].get("member_name", "")
            self.logger.info("Phone number already registered", phone=phone, owner=owner)
            return ResultEnvelope.fail(
                ErrorCode.CONFLICT,
                f'Phone number {phone} is already used by member "{owner}"',
            )
        return None

    async def _change_balance(
        self,
        record_id: str,
        delta: Decimal,
        *,
        ledger_text: str,
        operation: str,
        product_details: Any = None,
    ) -> ResultEnvelope:
        member_envelope = await self.get_member(record_id, fresh=True)
        if not member_envelope.success:
            return member_envelope

        member = member_envelope.data
        fields = member["fields"]
        previous = member_balance(fields)
        new_balance = previous + delta
        if new_balance < 0:
            self.logger.info("Insufficient balance", record_id=record_id, balance=str(previous), amount=str(-delta))
            return ResultEnvelope.fail(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"Insufficient balance: {previous} available, {-delta} required",
            )

        update = await self._update_records(
            operation,
            [{"recordId": record_id, "fields": {BALANCE_FIELD: float(new_balance)}}],
            "Balance updated",
        )
        if not update.success:
            return update

        # Balance and ledger live in separate sheets with no transaction between them.
        ledger_recorded = await self._append_ledger(record_id, fields, ledger_text, product_details)

        amount_key = "rechargeAmount" if operation == "recharge" else "consumeAmount"
        return ResultEnvelope.ok(
            {
                "memberId": record_id,
                "memberName": fields.get("member_name"),
                amount_key: float(abs(delta)),
                "previousBalance": float(previous),
                "newBalance": float(new_balance),
                "ledgerRecorded": ledger_recorded,
            },
            "Recharge successful" if operation == "recharge" else "Consumption successful",
        )

    async def _append_ledger(self, record_id: str, fields: Mapping[str, Any], text: str, product_details: Any) -> bool:
        if self.ledger is None:
            return False

        entry = await self.ledger.create_record({
            "member_name": fields.get("member_name"),
            "phonenumber": fields.get("phonenumber"),
            "record": text,
            "product_details": product_details,
        })
        if not entry.success:
            self.logger.error(
                "Balance changed but ledger entry was not written",
                record_id=record_id,
                record=text,
                error_code=entry.error_code.value,
                error=entry.message,
            )
            return False
        return True
