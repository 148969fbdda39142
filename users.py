"""User accounts as seen by admins, plus self-service profile edits."""
import logging
import re
from typing import Optional

from db import AsyncClient
from errors import NotFoundError, ValidationError
from models import Role, TechnicianSummary, UserPage, UserProfile, UserSummary

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200
SEARCH_COLUMNS = ("name", "email", "mob_no")

# PostgREST uses these to delimit or_() filters
_FILTER_RESERVED = re.compile(r"[,()]")


def _parse_role(role: Optional[str]) -> Optional[Role]:
    role = (role or "").strip()
    if not role or role.lower() == "all":
        return None
    for candidate in Role:
        if candidate.lower() == role.lower():
            return candidate
    raise ValidationError(f"Unknown role '{role}'", field="role")


async def _technician_summaries(sbase: AsyncClient, user_ids: list[str]) -> dict[str, TechnicianSummary]:
    if not user_ids:
        return {}
    res = await (
        sbase.table("technician")
        .select("id, verification_status, experience_years, verified_at")
        .in_("id", user_ids)
        .execute()
    )
    return {str(row["id"]): TechnicianSummary(**row) for row in res.data}


async def list_users(
    sbase: AsyncClient,
    role: Optional[str] = "All",
    search: Optional[str] = None,
    page: int = 1,
    size: int = DEFAULT_PAGE_SIZE,
) -> UserPage:
    """Newest users first, optionally narrowed by role and a name/email/phone search."""
    page = max(page, 1)
    if size < 1 or size > MAX_PAGE_SIZE:
        size = DEFAULT_PAGE_SIZE

    query = sbase.table("userprofile").select("*", count="exact")
    wanted_role = _parse_role(role)
    if wanted_role:
        query = query.eq("role", wanted_role)

    term = _FILTER_RESERVED.sub(" ", search or "").strip()
    if term:
        query = query.or_(",".join(f"{column}.ilike.%{term}%" for column in SEARCH_COLUMNS))

    start = (page - 1) * size
    res = await query.order("created_at", desc=True).range(start, start + size - 1).execute()

    technicians = await _technician_summaries(
        sbase, [str(row["id"]) for row in res.data if row.get("role") == Role.TECHNICIAN]
    )
    items = [UserSummary(**row, technician=technicians.get(str(row["id"]))) for row in res.data]
    return UserPage(total=res.count or 0, page=page, size=size, items=items)


async def get_user(sbase: AsyncClient, user_id: str) -> UserSummary:
    res = await sbase.table("userprofile").select("*").eq("id", user_id).execute()
    if not res.data:
        raise NotFoundError("User not found")

    row = res.data[0]
    technicians = await _technician_summaries(sbase, [user_id]) if row.get("role") == Role.TECHNICIAN else {}
    return UserSummary(**row, technician=technicians.get(user_id))


async def update_profile(sbase: AsyncClient, user_id: str, changes: dict) -> UserProfile:
    """Apply a partial profile edit. ``changes`` holds only the fields the caller sent."""
    changes = {key: value.strip() if isinstance(value, str) else value for key, value in changes.items()}
    if "name" in changes and not changes["name"]:
        raise ValidationError("Name cannot be empty", field="name")
    if not changes:
        raise ValidationError("Nothing to update")

    res = await sbase.table("userprofile").update(changes).eq("id", user_id).execute()
    if not res.data:
        raise NotFoundError("User not found")
    logger.info("User %s updated %s", user_id, ", ".join(sorted(changes)))
    return UserProfile(**res.data[0])
