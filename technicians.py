"""Technician document verification.

Technicians upload an ID proof and/or a certificate; an admin approves or
rejects the request. Only Verified technicians may take jobs (see bookings.py).
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from db import AsyncClient
from errors import NotFoundError, ValidationError
from models import Technician, TechnicianPage, TechnicianRequest, UserStatus, VerificationStatus
from notifications import notify_technician_rejected, notify_technician_verified
from storage import DOCUMENT_EXTENSIONS, upload_file
from utils import log_send_result, send_email

logger = logging.getLogger(__name__)


async def _get_technician(sbase: AsyncClient, technician_id: str) -> Technician:
    res = await sbase.table("technician").select("*").eq("id", technician_id).execute()
    if not res.data:
        raise NotFoundError("Technician not found")
    return Technician(**res.data[0])


async def upload_documents(
    sbase: AsyncClient,
    technician_id: str,
    id_proof: Optional[UploadFile] = None,
    certificate: Optional[UploadFile] = None,
) -> Technician:
    if id_proof is None and certificate is None:
        raise ValidationError("Upload an ID proof or a certificate", field="id_proof")

    await _get_technician(sbase, technician_id)

    changes = {"verification_status": VerificationStatus.PENDING, "verified_at": None}
    folder = f"technicians/{technician_id}"
    if id_proof is not None:
        changes["id_proof"] = await upload_file(sbase, folder, id_proof, field="id_proof", allowed_extensions=DOCUMENT_EXTENSIONS)
    if certificate is not None:
        changes["certificate"] = await upload_file(sbase, folder, certificate, field="certificate", allowed_extensions=DOCUMENT_EXTENSIONS)

    res = await sbase.table("technician").update(changes).eq("id", technician_id).execute()
    logger.info("Technician %s submitted documents for verification", technician_id)
    return Technician(**res.data[0])


async def list_pending(sbase: AsyncClient, page: int = 1, size: int = 20) -> TechnicianPage:
    page = max(page, 1)
    if size < 1:
        size = 20
    size = min(size, 100)
    start = (page - 1) * size
    res = await (
        sbase.table("technician")
        .select("*", count="exact")
        .eq("verification_status", VerificationStatus.PENDING)
        .order("created_at")
        .range(start, start + size - 1)
        .execute()
    )
    return TechnicianPage(total=res.count or 0, page=page, size=size, items=[Technician(**row) for row in res.data])


async def get_request(sbase: AsyncClient, technician_id: str) -> TechnicianRequest:
    """One verification request with its document paths and the applicant's contact details."""
    technician = await _get_technician(sbase, technician_id)
    res = await sbase.table("userprofile").select("email, mob_no").eq("id", technician_id).execute()
    contact = res.data[0] if res.data else {}
    return TechnicianRequest(**technician.model_dump(), email=contact.get("email"), mob_no=contact.get("mob_no"))


async def update_profile(sbase: AsyncClient, technician_id: str, changes: dict) -> Technician:
    changes = {key: value.strip() if isinstance(value, str) else value for key, value in changes.items()}
    if "name" in changes and not changes["name"]:
        raise ValidationError("Name cannot be empty", field="name")
    if changes.get("experience_years") is not None and changes["experience_years"] < 0:
        raise ValidationError("Experience cannot be negative", field="experience_years")
    if not changes:
        raise ValidationError("Nothing to update")

    await _get_technician(sbase, technician_id)
    res = await sbase.table("technician").update(changes).eq("id", technician_id).execute()

    # Name and phone are shown from the profile row too
    mirrored = {"name": changes.get("name"), "mob_no": changes.get("phone")}
    mirrored = {key: value for key, value in mirrored.items() if value is not None}
    if mirrored:
        await sbase.table("userprofile").update(mirrored).eq("id", technician_id).execute()

    logger.info("Technician %s updated %s", technician_id, ", ".join(sorted(changes)))
    return Technician(**res.data[0])


async def _profile_email(sbase: AsyncClient, user_id: str) -> tuple[Optional[str], Optional[str]]:
    res = await sbase.table("userprofile").select("name, email").eq("id", user_id).execute()
    if not res.data:
        return None, None
    return res.data[0].get("name"), res.data[0].get("email")


async def approve(sbase: AsyncClient, technician_id: str, comment: Optional[str] = None) -> Technician:
    await _get_technician(sbase, technician_id)

    res = await (
        sbase.table("technician")
        .update({"verification_status": VerificationStatus.VERIFIED, "verified_at": datetime.now(timezone.utc).isoformat()})
        .eq("id", technician_id)
        .execute()
    )
    await sbase.table("userprofile").update({"status": UserStatus.ACTIVE}).eq("id", technician_id).execute()
    logger.info("Technician %s approved", technician_id)

    await notify_technician_verified(sbase, technician_id)

    name, email = await _profile_email(sbase, technician_id)
    result = await run_in_threadpool(
        send_email,
        email,
        "Application approved",
        f"Hello {name or 'there'}, your application has been approved. {comment or ''}".strip(),
    )
    log_send_result(result, f"Approval email to technician {technician_id}")
    return Technician(**res.data[0])


async def reject(sbase: AsyncClient, technician_id: str, reason: Optional[str] = None) -> Technician:
    await _get_technician(sbase, technician_id)
    reason = (reason or "").strip() or "No reason provided."

    res = await (
        sbase.table("technician")
        .update({"verification_status": VerificationStatus.REJECTED, "verified_at": None})
        .eq("id", technician_id)
        .execute()
    )
    await sbase.table("userprofile").update({"status": UserStatus.INACTIVE}).eq("id", technician_id).execute()
    logger.info("Technician %s rejected: %s", technician_id, reason)

    await notify_technician_rejected(sbase, technician_id, reason)

    name, email = await _profile_email(sbase, technician_id)
    result = await run_in_threadpool(
        send_email,
        email,
        "Application rejected",
        f"Hello {name or 'there'}, your application was rejected. Reason: {reason}",
    )
    log_send_result(result, f"Rejection email to technician {technician_id}")
    return Technician(**res.data[0])
