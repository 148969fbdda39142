"""In-app notifications.

A notification is written once and fanned out into one ``notification_recipient``
row per resolved user. Read state lives on the recipient row only.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from db import AsyncClient
from errors import NotFoundError, ValidationError
from models import (
    Notification,
    NotificationItem,
    NotificationPage,
    NotificationRecipient,
    TargetType,
    UserStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
FETCH_BATCH = 1000  # PostgREST default max-rows


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _active_user_ids(sbase: AsyncClient, role: Optional[str] = None) -> set[str]:
    ids: set[str] = set()
    start = 0
    while True:
        query = sbase.table("userprofile").select("id").eq("status", UserStatus.ACTIVE)
        if role:
            query = query.eq("role", role)
        res = await query.order("id").range(start, start + FETCH_BATCH - 1).execute()
        ids.update(str(row["id"]) for row in res.data)
        if len(res.data) < FETCH_BATCH:
            return ids
        start += FETCH_BATCH


async def resolve_recipients(
    sbase: AsyncClient,
    target_type: str,
    target_role: Optional[str],
    target_user_id: Optional[UUID],
) -> set[str]:
    if target_type == TargetType.ALL:
        return await _active_user_ids(sbase)
    if target_type == TargetType.ROLE and target_role:
        return await _active_user_ids(sbase, role=target_role)
    if target_type == TargetType.USER and target_user_id:
        # Direct targeting ignores account status
        return {str(target_user_id)}
    # Unknown type or missing target: the notification is kept but reaches nobody
    return set()


async def create_notification(
    sbase: AsyncClient,
    title: str,
    message: str,
    category: Optional[str] = None,
    target_type: Optional[str] = None,
    target_role: Optional[str] = None,
    target_user_id: Optional[UUID] = None,
    created_by_admin_id: Optional[str] = None,
) -> Notification:
    title = (title or "").strip()
    message = (message or "").strip()
    if not title:
        raise ValidationError("Title is required", field="title")
    if not message:
        raise ValidationError("Message is required", field="message")

    target_type = (target_type or "").strip() or TargetType.ALL
    target_role = (target_role or "").strip() or None

    if target_type == TargetType.USER and target_user_id:
        res = await sbase.table("userprofile").select("id").eq("id", str(target_user_id)).execute()
        if not res.data:
            raise NotFoundError("Target user not found", field="target_user_id")

    row = {
        "title": title,
        "message": message,
        "category": (category or "").strip() or None,
        "target_type": target_type,
        "target_role": target_role if target_type == TargetType.ROLE else None,
        "target_user_id": str(target_user_id) if target_type == TargetType.USER and target_user_id else None,
        "created_by_admin_id": str(created_by_admin_id) if created_by_admin_id else None,
        "created_at": _now(),
    }
    res = await sbase.table("notifications").insert(row).execute()
    notification = Notification(**res.data[0])

    try:
        recipient_ids = await resolve_recipients(sbase, target_type, target_role, target_user_id)
        if recipient_ids:
            rows = [
                {"notification_id": notification.id, "user_id": user_id, "is_read": False}
                for user_id in sorted(recipient_ids)
            ]
            await sbase.table("notification_recipient").upsert(
                rows, on_conflict="notification_id,user_id", ignore_duplicates=True
            ).execute()
    except Exception:
        # A notification never outlives a failed fan-out
        logger.exception("Fan-out failed for notification %s, removing it", notification.id)
        await sbase.table("notification_recipient").delete().eq("notification_id", notification.id).execute()
        await sbase.table("notifications").delete().eq("id", notification.id).execute()
        raise

    logger.info(
        "Notification %s (%s) fanned out to %d recipient(s)",
        notification.id, target_type, len(recipient_ids),
    )
    return notification


async def list_notifications(
    sbase: AsyncClient,
    category: Optional[str] = None,
    page: int = 1,
    size: int = DEFAULT_PAGE_SIZE,
) -> NotificationPage:
    page = max(page, 1)
    if size < 1:
        size = DEFAULT_PAGE_SIZE
    size = min(size, MAX_PAGE_SIZE)

    query = sbase.table("notifications").select("*", count="exact")
    if category and category.strip():
        query = query.eq("category", category.strip())

    start = (page - 1) * size
    res = await query.order("created_at", desc=True).range(start, start + size - 1).execute()
    return NotificationPage(
        total=res.count or 0,
        page=page,
        size=size,
        items=[Notification(**row) for row in res.data],
    )


async def list_for_user(sbase: AsyncClient, user_id: str, unread_only: bool = False) -> list[NotificationItem]:
    query = (
        sbase.table("notification_recipient")
        .select("id, notification_id, is_read, read_at, notification:notification_id(title, message, category, created_at)")
        .eq("user_id", user_id)
    )
    if unread_only:
        query = query.eq("is_read", False)

    # notification ids grow with creation time
    res = await query.order("notification_id", desc=True).execute()
    return [
        NotificationItem(
            recipient_id=row["id"],
            notification_id=row["notification_id"],
            title=row["notification"]["title"],
            message=row["notification"]["message"],
            category=row["notification"].get("category"),
            is_read=row["is_read"],
            created_at=row["notification"]["created_at"],
            read_at=row.get("read_at"),
        )
        for row in res.data
        if row.get("notification")
    ]


async def unread_count(sbase: AsyncClient, user_id: str) -> int:
    res = await (
        sbase.table("notification_recipient")
        .select("id", count="exact")
        .eq("user_id", user_id)
        .eq("is_read", False)
        .execute()
    )
    return res.count or 0


async def mark_read(sbase: AsyncClient, user_id: str, recipient_id: int) -> NotificationRecipient:
    """Mark one of the user's recipient rows read. Marking twice is a no-op."""
    res = await sbase.table("notification_recipient").select("*").eq("id", recipient_id).eq("user_id", user_id).execute()
    if not res.data:
        raise NotFoundError("Notification not found")

    row = NotificationRecipient(**res.data[0])
    if row.is_read:
        return row

    upd = await (
        sbase.table("notification_recipient")
        .update({"is_read": True, "read_at": _now()})
        .eq("id", recipient_id)
        .eq("is_read", False)
        .execute()
    )
    if upd.data:
        return NotificationRecipient(**upd.data[0])

    # Another request marked it first; return what it wrote
    res = await sbase.table("notification_recipient").select("*").eq("id", recipient_id).execute()
    return NotificationRecipient(**res.data[0])


async def mark_all_read(sbase: AsyncClient, user_id: str) -> int:
    res = await (
        sbase.table("notification_recipient")
        .update({"is_read": True, "read_at": _now()})
        .eq("user_id", user_id)
        .eq("is_read", False)
        .execute()
    )
    return len(res.data)


# --- System notifications ---

async def notify_user(sbase: AsyncClient, user_id: str, title: str, message: str, category: str = "System") -> Notification:
    return await create_notification(
        sbase,
        title=title,
        message=message,
        category=category,
        target_type=TargetType.USER,
        target_user_id=user_id,
    )


async def notify_booking_received(sbase: AsyncClient, customer_id: str, booking_id: int) -> Notification:
    return await notify_user(
        sbase,
        customer_id,
        "Booking Received",
        f"Thank you for choosing our service! Your booking #{booking_id} has been received.",
        category="Booking",
    )


async def notify_technician_verified(sbase: AsyncClient, technician_id: str) -> Notification:
    return await notify_user(
        sbase,
        technician_id,
        "Verification Approved",
        "Congratulations! Your technician verification has been approved.",
    )


async def notify_technician_rejected(sbase: AsyncClient, technician_id: str, reason: str) -> Notification:
    return await notify_user(
        sbase,
        technician_id,
        "Verification Rejected",
        f"Your technician application was rejected. Reason: {reason}",
    )
