"""
Back-office user profile façade.
"""

from typing import Any, Dict, Mapping

from shared.errors import NotFoundError

from .envelope import ResultEnvelope
from .facade import DatasheetFacade, quote_formula

PASSWORD_FIELD = "login_password"
EDITABLE_FIELDS = ("username", "postbox", "phonenumber", "department", "photo", PASSWORD_FIELD)


def public_profile(record: Mapping[str, Any]) -> Dict[str, Any]:
    fields = record["fields"]
    profile = {name: fields.get(name) for name in EDITABLE_FIELDS if name != PASSWORD_FIELD}
    profile["recordId"] = record["recordId"]
    return profile


class ProfileFacade(DatasheetFacade):
    """Single-row profile sheet for the admin account."""

    namespace = "profile"
    list_methods = ("by_username",)

    async def get_profile(self, username: str = "admin") -> ResultEnvelope:
        if not username:
            return self._invalid("by_username", "Username is required")

        def first_profile(page):
            if not page["records"]:
                raise NotFoundError("User profile does not exist", details={"username": username})
            return public_profile(page["records"][0])

        return await self._read(
            "by_username",
            {"username": username},
            lambda: self.client.query(
                self.datasheet_id,
                view_id=self.view_id,
                filter_by_formula=f"{{username}} = {quote_formula(username)}",
            ),
            transform=first_profile,
            message="Profile loaded",
        )

    async def update_profile(self, record_id: str, fields: Mapping[str, Any]) -> ResultEnvelope:
        if not record_id:
            return self._invalid("update", "Profile id is required")
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            return self._invalid("update", f"Unknown profile fields: {', '.join(unknown)}")
        if not fields:
            return self._invalid("update", "No fields to update")

        return await self._write(
            "update",
            lambda: self.client.update(self.datasheet_id, [{"recordId": record_id, "fields": dict(fields)}]),
            record_ids=[record_id],
            transform=lambda data: public_profile(data["records"][0]) if data["records"] else {"recordId": record_id},
            message="Profile updated",
        )
