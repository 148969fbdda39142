"""Booking lifecycle.

    Pending --accept--> Accepted --> InProgress --> Completed
                           \\
                            --> Cancelled

Completed and Cancelled are final. Every status write is a conditional update
filtered on the status the request observed, so two concurrent requests can
never both move the same booking out of the same state.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from db import AsyncClient
from errors import InvalidOperationError, NotFoundError, UnauthorizedError, ValidationError
from models import Booking, BookingRead, BookingStatus, VerificationStatus
from notifications import notify_booking_received
from storage import upload_file
from utils import log_send_result, send_push_notification

logger = logging.getLogger(__name__)

TRANSITIONS = {
    BookingStatus.ACCEPTED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
}
FINAL_STATUSES = {BookingStatus.COMPLETED, BookingStatus.CANCELLED}

BOOKING_SELECT = "*, service:service_id(id, name)"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def get_booking(sbase: AsyncClient, booking_id: int) -> BookingRead:
    res = await sbase.table("bookings").select(BOOKING_SELECT).eq("id", booking_id).execute()
    if not res.data:
        raise NotFoundError("Booking not found")
    return BookingRead(**res.data[0])


async def _require_verified(sbase: AsyncClient, technician_id: str) -> None:
    res = await sbase.table("technician").select("verification_status").eq("id", technician_id).execute()
    if not res.data:
        raise UnauthorizedError("Technician profile not found")
    if res.data[0].get("verification_status") != VerificationStatus.VERIFIED:
        raise UnauthorizedError("Admin verification required to accept or update jobs")


async def _push_customer(sbase: AsyncClient, booking: Booking, title: str, message: str, kind: str) -> None:
    res = await sbase.table("userprofile").select("push_token").eq("id", str(booking.customer_id)).execute()
    token = res.data[0].get("push_token") if res.data else None
    result = await run_in_threadpool(
        send_push_notification, token, title, message, {"booking_id": booking.id, "type": kind}
    )
    log_send_result(result, f"Push '{title}' for booking {booking.id}")


async def create_booking(
    sbase: AsyncClient,
    customer_id: str,
    service_id: int,
    address_id: int,
    preferred_start: datetime,
    preferred_end: datetime,
    description: Optional[str] = None,
) -> Booking:
    if preferred_end <= preferred_start:
        raise ValidationError("Preferred end must be after preferred start", field="preferred_end")

    service_res = await sbase.table("service").select("id, fixed_rate, is_active").eq("id", service_id).execute()
    if not service_res.data or not service_res.data[0].get("is_active", True):
        raise NotFoundError("Service not found")

    booking_data = {
        "customer_id": customer_id,
        "service_id": service_id,
        "address_id": address_id,
        "description": description,
        # Price is locked in now; later rate changes do not touch this booking
        "total_amount": service_res.data[0]["fixed_rate"],
        "status": BookingStatus.PENDING,
        "technician_id": None,
        "preferred_start": preferred_start.isoformat(),
        "preferred_end": preferred_end.isoformat(),
        "created_at": _now(),
    }
    res = await sbase.table("bookings").insert(booking_data).execute()
    booking = Booking(**res.data[0])
    logger.info("Booking %s created by customer %s for service %s", booking.id, customer_id, service_id)

    try:
        await notify_booking_received(sbase, customer_id, booking.id)
    except Exception:
        logger.exception("Could not create the 'booking received' notification for booking %s", booking.id)

    return booking


async def attach_reference_image(sbase: AsyncClient, customer_id: str, booking_id: int, upload: UploadFile) -> Booking:
    booking = await get_booking(sbase, booking_id)
    if str(booking.customer_id) != customer_id:
        raise UnauthorizedError("Not authorized")

    path = await upload_file(sbase, f"bookings/{booking_id}", upload, field="file")
    res = await sbase.table("bookings").update({"reference_image": path}).eq("id", booking_id).execute()
    return Booking(**res.data[0])


async def accept_booking(sbase: AsyncClient, technician_id: str, booking_id: int) -> Booking:
    booking = await get_booking(sbase, booking_id)
    if booking.status in FINAL_STATUSES:
        raise InvalidOperationError("Booking is already finalized")

    await _require_verified(sbase, technician_id)

    if booking.status != BookingStatus.PENDING:
        raise InvalidOperationError("Booking is no longer available")

    # Compare-and-swap: only matches while still Pending and unassigned
    res = await (
        sbase.table("bookings")
        .update({"technician_id": technician_id, "status": BookingStatus.ACCEPTED})
        .eq("id", booking_id)
        .eq("status", BookingStatus.PENDING)
        .is_("technician_id", "null")
        .execute()
    )
    if not res.data:
        logger.info("Technician %s lost the race for booking %s", technician_id, booking_id)
        raise InvalidOperationError("Booking is no longer available")

    accepted = Booking(**res.data[0])
    logger.info("Booking %s accepted by technician %s", booking_id, technician_id)

    await _push_customer(
        sbase, accepted, "Technician Assigned",
        "A technician has been assigned to your booking.", "technician_assigned",
    )
    return accepted


async def update_status(sbase: AsyncClient, technician_id: str, booking_id: int, new_status: str) -> Booking:
    booking = await get_booking(sbase, booking_id)
    if booking.status in FINAL_STATUSES:
        raise InvalidOperationError("Booking is already finalized")

    await _require_verified(sbase, technician_id)

    if booking.status != BookingStatus.PENDING and str(booking.technician_id) != technician_id:
        raise UnauthorizedError("Not authorized")

    if new_status not in TRANSITIONS.get(booking.status, set()):
        raise InvalidOperationError(f"Cannot change status from {booking.status} to {new_status}")

    changes = {"status": new_status}
    if new_status == BookingStatus.COMPLETED:
        changes["completed_at"] = _now()

    res = await (
        sbase.table("bookings")
        .update(changes)
        .eq("id", booking_id)
        .eq("status", booking.status)
        .eq("technician_id", technician_id)
        .execute()
    )
    if not res.data:
        raise InvalidOperationError(f"Booking is no longer {booking.status}; cannot change it to {new_status}")

    updated = Booking(**res.data[0])
    logger.info("Booking %s: %s -> %s", booking_id, booking.status, new_status)

    if new_status == BookingStatus.COMPLETED:
        await _push_customer(
            sbase, updated, "Booking Completed",
            "Your booking has been marked as completed.", "booking_completed",
        )
    return updated


# --- Queries ---

async def list_customer_bookings(sbase: AsyncClient, customer_id: str) -> list[BookingRead]:
    res = await sbase.table("bookings").select(BOOKING_SELECT).eq("customer_id", customer_id).order("created_at", desc=True).execute()
    return [BookingRead(**row) for row in res.data]


async def list_technician_bookings(sbase: AsyncClient, technician_id: str) -> list[BookingRead]:
    res = await sbase.table("bookings").select(BOOKING_SELECT).eq("technician_id", technician_id).order("created_at", desc=True).execute()
    return [BookingRead(**row) for row in res.data]


async def list_available_jobs(sbase: AsyncClient) -> list[BookingRead]:
    res = await (
        sbase.table("bookings")
        .select(BOOKING_SELECT)
        .eq("status", BookingStatus.PENDING)
        .is_("technician_id", "null")
        .order("created_at", desc=True)
        .execute()
    )
    return [BookingRead(**row) for row in res.data]


async def list_all_bookings(sbase: AsyncClient) -> list[BookingRead]:
    res = await sbase.table("bookings").select(BOOKING_SELECT).order("created_at", desc=True).execute()
    return [BookingRead(**row) for row in res.data]
