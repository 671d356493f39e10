"""
Tests for the member façade: governed reads, write invalidation and balance changes.
"""

import time
from datetime import datetime

import httpx
import pytest

from service_membership.app.adapters.datasheet_client import (
    DatasheetAPIError,
    DatasheetClient,
    DatasheetTransportError,
)
from service_membership.app.caching.ttl_cache import TTLCache
from service_membership.app.domain.envelope import ErrorCode
from service_membership.app.domain.ledger import LedgerFacade
from service_membership.app.domain.members import (
    BALANCE_FIELD,
    MembersFacade,
    member_balance,
    member_level,
    parse_positive_amount,
)
from service_membership.app.ratelimit.call_governor import CallGovernor

MEMBERS = "dstMembers"
LEDGER = "dstLedger"


class FakeClock:
    def __init__(self):
        self.now = 500.0

    def __call__(self):
        return self.now


@pytest.fixture
def ledger(fake_client, governor, cache):
    return LedgerFacade(fake_client, LEDGER, governor, cache, now=lambda: datetime(2024, 5, 20, 9, 30, 0))


@pytest.fixture
def members(fake_client, governor, cache, ledger):
    return MembersFacade(fake_client, MEMBERS, governor, cache, ledger=ledger)


class TestMemberHelpers:
    """Test cases for member field helpers."""

    def test_member_balance_reads_current_field(self):
        assert member_balance({BALANCE_FIELD: "12.5"}) == pytest.approx(12.5)

    def test_member_balance_falls_back_to_legacy_field(self):
        assert member_balance({"Remaining_sum": 30}) == 30

    def test_member_balance_defaults_to_zero(self):
        assert member_balance({}) == 0
        assert member_balance({BALANCE_FIELD: "n/a"}) == 0

    def test_member_level_default(self):
        assert member_level({}) == "普通会员"
        assert member_level({"level": "银卡会员"}) == "银卡会员"

    @pytest.mark.parametrize("amount", [0, -5, "abc", None, True, float("nan")])
    def test_parse_positive_amount_rejects(self, amount):
        assert parse_positive_amount(amount) is None

    def test_parse_positive_amount_accepts_strings(self):
        assert parse_positive_amount("50.5") == pytest.approx(50.5)


class TestMemberReads:
    """Test cases for cached member reads."""

    @pytest.mark.asyncio
    async def test_second_read_within_ttl_served_from_cache(self, fake_client, governor, factory):
        """Two reads one second apart with a 5s TTL hit the datasheet once."""
        clock = FakeClock()
        members = MembersFacade(fake_client, MEMBERS, governor, TTLCache(ttl_seconds=5, clock=clock))
        fake_client.seed(MEMBERS, factory.member_fields())

        first = await members.query_all_members()
        clock.now += 1
        second = await members.query_all_members()

        assert first.success and second.success
        assert second.data == first.data
        assert len(fake_client.calls_for("query")) == 1

    @pytest.mark.asyncio
    async def test_read_after_ttl_fetches_again(self, fake_client, governor, factory):
        clock = FakeClock()
        members = MembersFacade(fake_client, MEMBERS, governor, TTLCache(ttl_seconds=5, clock=clock))
        fake_client.seed(MEMBERS, factory.member_fields())

        await members.query_all_members()
        clock.now += 5
        await members.query_all_members()

        assert len(fake_client.calls_for("query")) == 2

    @pytest.mark.asyncio
    async def test_query_members_passes_options(self, members, fake_client, factory):
        fake_client.seed(MEMBERS, factory.member_fields())

        envelope = await members.query_members(view_id="viwAll", max_records=5)

        assert envelope.success
        assert envelope.data["total"] == 1
        _, datasheet_id, kwargs = fake_client.calls_for("query")[0]
        assert datasheet_id == MEMBERS
        assert kwargs["view_id"] == "viwAll"
        assert kwargs["max_records"] == 5

    @pytest.mark.asyncio
    async def test_get_member(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(name="Li Si"))

        envelope = await members.get_member(seeded["recordId"])

        assert envelope.success
        assert envelope.data["fields"]["member_name"] == "Li Si"

    @pytest.mark.asyncio
    async def test_get_missing_member_is_not_found(self, members):
        envelope = await members.get_member("recMissing")

        assert not envelope.success
        assert envelope.error_code == ErrorCode.NOT_FOUND
        assert envelope.data is None
        assert envelope.message == "Member does not exist"

    @pytest.mark.asyncio
    async def test_rate_limited_read_returns_envelope(self, members, fake_client):
        """A 429 from the datasheet becomes a rate-limited failure envelope."""
        fake_client.fail_next("query", DatasheetAPIError(429, "too many requests"))

        envelope = await members.query_all_members()

        assert envelope.success is False
        assert envelope.error_code == ErrorCode.RATE_LIMITED
        assert envelope.data is None
        assert envelope.to_dict()["errorCode"] == "rate-limited"

    @pytest.mark.asyncio
    async def test_network_error_returns_envelope(self, members, fake_client):
        fake_client.fail_next("query", DatasheetTransportError("connection refused"))

        envelope = await members.query_members()

        assert envelope.error_code == ErrorCode.NETWORK_ERROR
        assert "connection refused" in envelope.message

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, members, fake_client, factory):
        fake_client.seed(MEMBERS, factory.member_fields())
        fake_client.fail_next("query", DatasheetAPIError(500, "boom"))

        failed = await members.query_all_members()
        recovered = await members.query_all_members()

        assert failed.error_code == ErrorCode.UPSTREAM_SERVER_ERROR
        assert recovered.success
        assert recovered.data["total"] == 1

    @pytest.mark.asyncio
    async def test_check_phone_exists(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(phone="13900000000"))

        found = await members.check_phone_exists("13900000000")
        excluded = await members.check_phone_exists("13900000000", exclude_record_id=seeded["recordId"])
        missing = await members.check_phone_exists("13700000000")

        assert found.data["exists"] is True
        assert excluded.data["exists"] is False
        assert missing.data["exists"] is False

    @pytest.mark.asyncio
    async def test_check_phone_requires_phone(self, members, fake_client):
        envelope = await members.check_phone_exists("  ")

        assert envelope.error_code == ErrorCode.VALIDATION
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_statistics(self, members, fake_client, factory):
        fake_client.seed(MEMBERS, factory.member_fields(phone="1", balance=100, level="金卡会员"))
        fake_client.seed(MEMBERS, factory.member_fields(phone="2", balance=50.5, level="金卡会员"))
        fake_client.seed(MEMBERS, {"member_name": "No level", "phonenumber": "3"})

        envelope = await members.get_statistics()

        assert envelope.success
        assert envelope.data["totalMembers"] == 3
        assert envelope.data["totalBalance"] == pytest.approx(150.5)
        assert envelope.data["levelStats"] == {"金卡会员": 2, "普通会员": 1}


class PagedMembersStub:
    """Serves the members sheet two records per page and records when each request arrived."""

    def __init__(self, total=6, page_size=2, fail_page=None):
        self.total = total
        self.page_size = page_size
        self.fail_page = fail_page
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        page_num = int(request.url.params.get("pageNum", 1))
        self.requests.append((page_num, time.monotonic()))
        if page_num == self.fail_page:
            return httpx.Response(200, json={"success": False, "code": 429, "message": "too many requests"})
        start = (page_num - 1) * self.page_size
        records = [
            {"recordId": f"rec{index}", "fields": {"phonenumber": str(index)}, "createdAt": 1716181200000}
            for index in range(start, min(start + self.page_size, self.total))
        ]
        data = {"total": self.total, "pageNum": page_num, "pageSize": self.page_size, "records": records}
        return httpx.Response(200, json={"success": True, "code": 200, "message": "SUCCESS", "data": data})


class TestPagedReads:
    """Reading a whole sheet page by page through the governor."""

    @pytest.mark.asyncio
    async def test_each_page_is_spaced_by_the_governor(self):
        stub = PagedMembersStub()
        governor = CallGovernor(max_calls_per_second=20)
        client = DatasheetClient("https://api.vika.cn/fusion/v1", "token", transport=httpx.MockTransport(stub))
        members = MembersFacade(client, MEMBERS, governor, TTLCache(ttl_seconds=30))

        envelope = await members.query_all_members()
        await client.close()

        assert envelope.success
        assert envelope.data["total"] == 6
        assert [r["recordId"] for r in envelope.data["records"]] == [f"rec{index}" for index in range(6)]
        assert [page for page, _ in stub.requests] == [1, 2, 3]
        starts = [started for _, started in stub.requests]
        gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
        assert all(gap >= governor.min_interval - 0.005 for gap in gaps), gaps

    @pytest.mark.asyncio
    async def test_combined_pages_are_cached(self):
        stub = PagedMembersStub()
        client = DatasheetClient("https://api.vika.cn/fusion/v1", "token", transport=httpx.MockTransport(stub))
        members = MembersFacade(client, MEMBERS, CallGovernor(max_calls_per_second=200), TTLCache(ttl_seconds=30))

        first = await members.query_all_members()
        second = await members.query_all_members()
        await client.close()

        assert second.data == first.data
        assert len(stub.requests) == 3

    @pytest.mark.asyncio
    async def test_failed_page_fails_the_whole_read(self):
        stub = PagedMembersStub(fail_page=2)
        client = DatasheetClient("https://api.vika.cn/fusion/v1", "token", transport=httpx.MockTransport(stub))
        members = MembersFacade(client, MEMBERS, CallGovernor(max_calls_per_second=200), TTLCache(ttl_seconds=30))

        failed = await members.query_all_members()
        stub.fail_page = None
        recovered = await members.query_all_members()
        await client.close()

        assert failed.error_code == ErrorCode.RATE_LIMITED
        assert failed.data is None
        assert recovered.data["total"] == 6
        assert [page for page, _ in stub.requests] == [1, 2, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_reads_pages_until_total(self, fake_client, governor, cache, factory):
        for index in range(5):
            fake_client.seed(MEMBERS, factory.member_fields(phone=str(index)))
        members = MembersFacade(fake_client, MEMBERS, governor, cache)
        envelope = await members._read_all("query_all", {"view_id": None, "filter_by_formula": None}, page_size=2)

        assert envelope.data["total"] == 5
        assert [call[2]["page_num"] for call in fake_client.calls_for("query")] == [1, 2, 3]


class TestMemberWrites:
    """Test cases for member writes and cache invalidation."""

    @pytest.mark.asyncio
    async def test_create_member_without_phone_makes_no_call(self, members, fake_client, governor):
        """Validation failures are returned before anything is enqueued."""
        envelope = await members.create_member({"member_name": "Wang Wu"})

        assert envelope.success is False
        assert envelope.error_code == ErrorCode.VALIDATION
        assert fake_client.calls == []
        assert governor.stats()["dispatched"] == 0

    @pytest.mark.asyncio
    async def test_create_member(self, members, fake_client, factory):
        envelope = await members.create_member(factory.member_fields(phone=" 13600000000 "))

        assert envelope.success
        record_id = envelope.data["recordId"]
        assert fake_client.record(MEMBERS, record_id)["fields"]["phonenumber"] == "13600000000"

    @pytest.mark.asyncio
    async def test_create_member_with_taken_phone_conflicts(self, members, fake_client, factory):
        fake_client.seed(MEMBERS, factory.member_fields(name="Owner", phone="13600000000"))

        envelope = await members.create_member(factory.member_fields(name="Other", phone="13600000000"))

        assert envelope.error_code == ErrorCode.CONFLICT
        assert "Owner" in envelope.message
        assert fake_client.calls_for("create") == []

    @pytest.mark.asyncio
    async def test_create_invalidates_list_cache(self, members, fake_client, factory):
        fake_client.seed(MEMBERS, factory.member_fields(phone="1"))
        before = await members.query_all_members()

        await members.create_member(factory.member_fields(phone="2"))
        after = await members.query_all_members()

        assert before.data["total"] == 1
        assert after.data["total"] == 2

    @pytest.mark.asyncio
    async def test_update_then_get_is_fresh(self, members, fake_client, factory):
        """A successful update drops the cached detail view of that member."""
        seeded = fake_client.seed(MEMBERS, factory.member_fields(balance=100))
        record_id = seeded["recordId"]
        cached = await members.get_member(record_id)
        assert cached.data["fields"][BALANCE_FIELD] == 100

        update = await members.update_member(record_id, {BALANCE_FIELD: 80})
        fresh = await members.get_member(record_id)

        assert update.success
        assert fresh.data["fields"][BALANCE_FIELD] == 80

    @pytest.mark.asyncio
    async def test_failed_update_keeps_cache(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(balance=100))
        record_id = seeded["recordId"]
        await members.get_member(record_id)
        reads_before = len(fake_client.calls_for("query"))
        fake_client.fail_next("update", DatasheetAPIError(500, "boom"))

        update = await members.update_member(record_id, {BALANCE_FIELD: 80})
        again = await members.get_member(record_id)

        assert update.error_code == ErrorCode.UPSTREAM_SERVER_ERROR
        assert again.data["fields"][BALANCE_FIELD] == 100
        assert len(fake_client.calls_for("query")) == reads_before

    @pytest.mark.asyncio
    async def test_update_member_phone_conflict(self, members, fake_client, factory):
        fake_client.seed(MEMBERS, factory.member_fields(name="Owner", phone="111"))
        other = fake_client.seed(MEMBERS, factory.member_fields(name="Other", phone="222"))

        envelope = await members.update_member(other["recordId"], {"phonenumber": "111"})

        assert envelope.error_code == ErrorCode.CONFLICT

    @pytest.mark.asyncio
    async def test_update_member_keeping_own_phone(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(phone="111"))

        envelope = await members.update_member(seeded["recordId"], {"phonenumber": "111", "member_name": "New"})

        assert envelope.success

    @pytest.mark.asyncio
    async def test_update_member_requires_fields(self, members):
        assert (await members.update_member("rec1", {})).error_code == ErrorCode.VALIDATION
        assert (await members.update_member("rec1", {"member_name": ""})).error_code == ErrorCode.VALIDATION

    @pytest.mark.asyncio
    async def test_delete_member(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields())
        await members.get_member(seeded["recordId"])

        envelope = await members.delete_member(seeded["recordId"])
        after = await members.get_member(seeded["recordId"])

        assert envelope.success
        assert after.error_code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_missing_member(self, members):
        envelope = await members.delete_member("recMissing")

        assert envelope.error_code == ErrorCode.NOT_FOUND


class TestBalanceChanges:
    """Test cases for recharge and consumption."""

    @pytest.mark.asyncio
    async def test_recharge(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(balance=100))

        envelope = await members.recharge_member(seeded["recordId"], "50")

        assert envelope.success
        assert envelope.data["previousBalance"] == 100
        assert envelope.data["newBalance"] == 150
        assert envelope.data["rechargeAmount"] == 50
        assert envelope.data["ledgerRecorded"] is True
        assert fake_client.record(MEMBERS, seeded["recordId"])["fields"][BALANCE_FIELD] == 150

        ledger_rows = list(fake_client.sheets[LEDGER].values())
        assert ledger_rows[0]["fields"]["record"] == "充值50元"
        assert ledger_rows[0]["fields"]["date"] == "2024-05-20"
        assert ledger_rows[0]["fields"]["phonenumber"] == "13800000001"

    @pytest.mark.asyncio
    async def test_consume_with_product_details(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(balance=100))
        items = [{"name": "Shampoo", "quantity": 1}]

        envelope = await members.consume_member(seeded["recordId"], 39.9, items)

        assert envelope.success
        assert envelope.data["consumeAmount"] == pytest.approx(39.9)
        assert envelope.data["newBalance"] == pytest.approx(60.1)
        row = list(fake_client.sheets[LEDGER].values())[0]["fields"]
        assert row["record"] == "消费39.9元"
        assert '"Shampoo"' in row["product_details"]

    @pytest.mark.asyncio
    async def test_consume_more_than_balance(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(balance=20))

        envelope = await members.consume_member(seeded["recordId"], 50)

        assert envelope.error_code == ErrorCode.INSUFFICIENT_BALANCE
        assert fake_client.calls_for("update") == []
        assert LEDGER not in fake_client.sheets

    @pytest.mark.asyncio
    async def test_consume_entire_balance(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(balance=20))

        envelope = await members.consume_member(seeded["recordId"], 20)

        assert envelope.success
        assert envelope.data["newBalance"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -10, "ten"])
    async def test_invalid_amount(self, members, fake_client, amount):
        envelope = await members.recharge_member("rec1", amount)

        assert envelope.error_code == ErrorCode.VALIDATION
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_balance_read_bypasses_cache(self, members, fake_client, factory):
        seeded = fake_client.seed(MEMBERS, factory.member_fields(balance=100))
        await members.get_member(seeded["recordId"])
        fake_client.record(MEMBERS, seeded["recordId"])["fields"][BALANCE_FIELD] = 10

        envelope = await members.consume_member(seeded["recordId"], 50)

        assert envelope.error_code == ErrorCode.INSUFFICIENT_BALANCE

    @pytest.mark.asyncio
    async def test_ledger_failure_is_flagged(self, members, fake_client, factory):
        """The balance change stands when the ledger write fails, and the result says so."""
        seeded = fake_client.seed(MEMBERS, factory.member_fields(balance=100))
        fake_client.fail_next("create", DatasheetAPIError(500, "ledger down"))

        envelope = await members.recharge_member(seeded["recordId"], 10)

        assert envelope.success
        assert envelope.data["ledgerRecorded"] is False
        assert fake_client.record(MEMBERS, seeded["recordId"])["fields"][BALANCE_FIELD] == 110

    @pytest.mark.asyncio
    async def test_recharge_missing_member(self, members, fake_client):
        envelope = await members.recharge_member("recMissing", 10)

        assert envelope.error_code == ErrorCode.NOT_FOUND
        assert fake_client.calls_for("update") == []
