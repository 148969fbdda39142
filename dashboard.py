import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from db import AsyncClient
from models import BookingStatus, BookingTrends, DashboardStats, RecentActivity, Role, UserStatus, VerificationStatus

logger = logging.getLogger(__name__)

NEW_REGISTRATION_WINDOW = timedelta(days=7)
RECENT_ACTIVITY_LIMIT = 10

STATUS_COLORS = {
    BookingStatus.PENDING: "teal",
    BookingStatus.ACCEPTED: "blue",
    BookingStatus.IN_PROGRESS: "yellow",
    BookingStatus.COMPLETED: "green",
    BookingStatus.CANCELLED: "red",
}


def _utc(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _utc_date(value: str) -> date:
    return _utc(value).date()


def time_ago(created_at: datetime, now: datetime) -> str:
    span = now - created_at
    minutes = span.total_seconds() // 60
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{int(minutes)} mins ago"
    if span < timedelta(days=1):
        return f"{int(minutes // 60)} hours ago"
    if span < timedelta(days=7):
        return f"{span.days} days ago"
    weeks = span.days // 7
    return f"{weeks} week{'s' if weeks > 1 else ''} ago"


async def _count(query) -> int:
    res = await query.execute()
    return res.count or 0


async def get_stats(sbase: AsyncClient) -> DashboardStats:
    completed = await sbase.table("bookings").select("total_amount").eq("status", BookingStatus.COMPLETED).execute()
    revenue = sum((Decimal(str(row["total_amount"])) for row in completed.data), Decimal("0"))

    since = (datetime.now(timezone.utc) - NEW_REGISTRATION_WINDOW).isoformat()

    return DashboardStats(
        total_revenue=revenue,
        verified_technicians=await _count(
            sbase.table("technician").select("id", count="exact").eq("verification_status", VerificationStatus.VERIFIED)
        ),
        active_customers=await _count(
            sbase.table("userprofile").select("id", count="exact").eq("role", Role.CUSTOMER).eq("status", UserStatus.ACTIVE)
        ),
        jobs_in_progress=await _count(
            sbase.table("bookings").select("id", count="exact").eq("status", BookingStatus.IN_PROGRESS)
        ),
        new_registrations=await _count(
            sbase.table("userprofile").select("id", count="exact").gte("created_at", since)
        ),
    )


async def get_booking_trends(sbase: AsyncClient, days: int = 30) -> BookingTrends:
    """Bookings created per day over the last ``days`` days (today included), zero-filled."""
    days = min(max(days, 1), 365)
    today = datetime.now(timezone.utc).date()
    first_day = today - timedelta(days=days - 1)

    res = await sbase.table("bookings").select("created_at").gte("created_at", first_day.isoformat()).execute()
    per_day = Counter(_utc_date(row["created_at"]) for row in res.data)

    labels = []
    data = []
    for offset in range(days):
        day: date = first_day + timedelta(days=offset)
        labels.append(day.strftime("%m-%d"))
        data.append(per_day.get(day, 0))
    return BookingTrends(labels=labels, data=data)


async def get_recent_activity(sbase: AsyncClient) -> list[RecentActivity]:
    """The newest bookings as feed entries, e.g. ``Booking #12 - Accepted``."""
    res = await (
        sbase.table("bookings")
        .select("id, status, created_at")
        .order("created_at", desc=True)
        .limit(RECENT_ACTIVITY_LIMIT)
        .execute()
    )
    now = datetime.now(timezone.utc)
    return [
        RecentActivity(
            booking_id=row["id"],
            message=f"Booking #{row['id']} - {row['status']}",
            time_ago=time_ago(_utc(row["created_at"]), now),
            color=STATUS_COLORS.get(row["status"], "purple"),
        )
        for row in res.data
    ]
