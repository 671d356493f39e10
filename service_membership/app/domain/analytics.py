"""
Business analytics computed from member and ledger reads.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger

from .envelope import ResultEnvelope
from .ledger import CONSUME_KEYWORD, RECHARGE_KEYWORD, LedgerFacade, parse_amount
from .members import MembersFacade, member_level

SUPPORTED_WINDOWS = (7, 30)

_DATE_PATTERN = re.compile(r"(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})")


def parse_day(value: Any) -> Optional[date]:
    """Best-effort day of a ledger ``date`` field or a record ``createdAt`` value."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone().date()
    match = _DATE_PATTERN.search(str(value))
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


class BusinessAnalytics:
    """Revenue, recharge and member growth over a trailing window of days."""

    def __init__(self, members: MembersFacade, ledger: LedgerFacade, *, now: Callable[[], datetime] = datetime.now):
        self.members = members
        self.ledger = ledger
        self._now = now
        self.logger = get_logger("membership.analytics")

    async def business_report(self, days: int = 7) -> ResultEnvelope:
        if days not in SUPPORTED_WINDOWS:
            return ResultEnvelope.invalid(f"days must be one of {', '.join(map(str, SUPPORTED_WINDOWS))}")

        members_envelope = await self.members.query_all_members()
        if not members_envelope.success:
            return members_envelope
        recharge_envelope = await self.ledger.list_recharge_records()
        if not recharge_envelope.success:
            return recharge_envelope
        consume_envelope = await self.ledger.list_consume_records()
        if not consume_envelope.success:
            return consume_envelope

        end = self._now().date()
        start = end - timedelta(days=days - 1)
        window = [start + timedelta(days=offset) for offset in range(days)]

        recharge_by_day = self._sum_by_day(recharge_envelope.data["records"], RECHARGE_KEYWORD, start, end)
        consume_by_day = self._sum_by_day(consume_envelope.data["records"], CONSUME_KEYWORD, start, end)

        members = members_envelope.data["records"]
        new_by_day: Dict[date, int] = {}
        level_counts: Dict[str, int] = {}
        for member in members:
            joined = parse_day(member.get("createdAt"))
            if joined is not None and start <= joined <= end:
                new_by_day[joined] = new_by_day.get(joined, 0) + 1
            level = member_level(member["fields"])
            level_counts[level] = level_counts.get(level, 0) + 1

        daily: List[Dict[str, Any]] = [
            {
                "date": day.isoformat(),
                "recharge": round(recharge_by_day.get(day, 0.0), 2),
                "consume": round(consume_by_day.get(day, 0.0), 2),
                "newMembers": new_by_day.get(day, 0),
            }
            for day in window
        ]

        report = {
            "days": days,
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "totalMembers": len(members),
            "newMembers": sum(new_by_day.values()),
            "rechargeAmount": round(sum(recharge_by_day.values()), 2),
            "consumeAmount": round(sum(consume_by_day.values()), 2),
            "daily": daily,
            "memberLevels": [{"level": level, "count": count} for level, count in level_counts.items()],
        }
        self.logger.debug("Business report computed", days=days, members=len(members))
        return ResultEnvelope.ok(report, "Business report computed")

    @staticmethod
    def _sum_by_day(records: List[Dict[str, Any]], keyword: str, start: date, end: date) -> Dict[date, float]:
        totals: Dict[date, float] = {}
        for record in records:
            day = parse_day(record["fields"].get("date"))
            if day is None or not start <= day <= end:
                continue
            totals[day] = totals.get(day, 0.0) + parse_amount(record["fields"].get("record"), keyword)
        return totals
