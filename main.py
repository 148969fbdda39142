import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import bookings
import dashboard
import notifications
import technicians
import users
from config import get_settings
from db import AsyncClient, get_supabase
from errors import AppError, NotFoundError
from models import (
    Booking,
    BookingRead,
    BookingTrends,
    DashboardStats,
    MarkAllReadResponse,
    Notification,
    NotificationItem,
    NotificationPage,
    NotificationRecipient,
    RecentActivity,
    Role,
    Service,
    Technician,
    TechnicianPage,
    TechnicianRequest,
    UnreadCount,
    UserPage,
    UserProfile,
    UserSummary,
    UserStatus,
    VerificationStatus,
)
from schema import (
    BookingActionRequest,
    CreateBookingRequest,
    CreateNotificationRequest,
    CreateServiceRequest,
    ListNotificationsRequest,
    LoginRequest,
    MarkReadRequest,
    RegisterPushTokenRequest,
    RegisterRequest,
    TechDecisionRequest,
    TechRequestsListRequest,
    TechnicianIdRequest,
    TechnicianRegisterRequest,
    TrendsRequest,
    UpdateBookingStatusRequest,
    UpdateProfileRequest,
    UpdateServiceRequest,
    UpdateTechnicianProfileRequest,
    UserIdRequest,
    UsersListRequest,
    ViewMyNotificationsRequest,
)
from utils import CurrentUser, get_current_user, require_admin, require_customer, require_technician

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="HomeService Backend", docs_url="/api/docs", redoc_url="/api/redoc", openapi_url="/api/openapi.json")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "field": exc.field})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

# --- Account Functions ---

async def _sign_up(sbase: AsyncClient, email: str, password: str):
    try:
        auth_res = await sbase.auth.sign_up({"email": email, "password": password})
    except Exception as e:
        logger.warning("Sign up failed for %s: %s", email, e)
        raise HTTPException(status_code=400, detail="Registration failed")

    if not auth_res.user:
        # sign_up may hold back the user until the email is confirmed
        raise HTTPException(status_code=400, detail="Registration failed")
    return auth_res


async def _sign_in(sbase: AsyncClient, email: str, password: str):
    try:
        return await sbase.auth.sign_in_with_password({"email": email, "password": password})
    except Exception as e:
        logger.info("Login failed for %s: %s", email, e)
        if "email not confirmed" in str(e).lower():
            raise HTTPException(status_code=403, detail="Email not confirmed. Please check your inbox to verify your email address.")
        raise HTTPException(status_code=401, detail="Invalid credentials")


@app.post("/api/funcs/user.register")
async def register_user(data: RegisterRequest, sbase: AsyncClient = Depends(get_supabase)):
    auth_res = await _sign_up(sbase, data.email, data.password)

    profile_data = {
        "id": auth_res.user.id,
        "name": data.name,
        "email": data.email,
        "mob_no": data.mob_no,
        "address": data.address,
        "role": Role.CUSTOMER,
        "status": UserStatus.ACTIVE,
        "created_at": _now(),
    }
    profile_res = await sbase.table("userprofile").upsert(profile_data).execute()

    return {
        "user": auth_res.user,
        "session": auth_res.session,
        "profile": profile_res.data[0] if profile_res.data else None,
    }


@app.post("/api/funcs/technician.register")
async def register_technician(data: TechnicianRegisterRequest, sbase: AsyncClient = Depends(get_supabase)):
    auth_res = await _sign_up(sbase, data.email, data.password)
    user_id = auth_res.user.id

    await sbase.table("userprofile").upsert({
        "id": user_id,
        "name": data.name,
        "email": data.email,
        "mob_no": data.phone,
        "role": Role.TECHNICIAN,
        "status": UserStatus.ACTIVE,
        "created_at": _now(),
    }).execute()

    tech_res = await sbase.table("technician").upsert({
        "id": user_id,
        "name": data.name,
        "phone": data.phone,
        "experience_years": data.experience_years,
        "verification_status": VerificationStatus.PENDING,
        "created_at": _now(),
    }).execute()

    return {
        "user": auth_res.user,
        "session": auth_res.session,
        "technician": tech_res.data[0] if tech_res.data else None,
    }


@app.post("/api/funcs/user.login")
async def login_user(data: LoginRequest, sbase: AsyncClient = Depends(get_supabase)):
    auth_res = await _sign_in(sbase, data.email, data.password)
    profile_res = await sbase.table("userprofile").select("*").eq("id", auth_res.user.id).execute()

    return {
        "user": auth_res.user,
        "session": auth_res.session,
        "profile": profile_res.data[0] if profile_res.data else None,
    }


@app.post("/api/funcs/technician.login")
async def login_technician(data: LoginRequest, sbase: AsyncClient = Depends(get_supabase)):
    auth_res = await _sign_in(sbase, data.email, data.password)

    tech_res = await sbase.table("technician").select("id, verification_status").eq("id", auth_res.user.id).execute()
    if not tech_res.data:
        raise HTTPException(status_code=403, detail="User is not a technician")

    # Login is allowed while verification is still pending
    return {
        "user": auth_res.user,
        "session": auth_res.session,
        "verification_status": tech_res.data[0]["verification_status"],
    }


@app.post("/api/funcs/user.viewUser", response_model=UserProfile)
async def view_user(user: CurrentUser = Depends(get_current_user), sbase: AsyncClient = Depends(get_supabase)):
    response = await sbase.table("userprofile").select("*").eq("id", user.id).execute()
    if not response.data:
        raise NotFoundError("User not found")
    return response.data[0]


@app.post("/api/funcs/utils.registerPushToken")
async def register_push_token(data: RegisterPushTokenRequest, user: CurrentUser = Depends(get_current_user), sbase: AsyncClient = Depends(get_supabase)):
    # One token per account; the latest device wins
    await sbase.table("userprofile").update({"push_token": data.token.strip() or None}).eq("id", user.id).execute()
    return {"message": "Push token updated"}


@app.post("/api/funcs/technician.viewProfile", response_model=Technician)
async def view_technician_profile(user: CurrentUser = Depends(require_technician), sbase: AsyncClient = Depends(get_supabase)):
    response = await sbase.table("technician").select("*").eq("id", user.id).execute()
    if not response.data:
        raise NotFoundError("Technician not found")
    return response.data[0]


@app.post("/api/funcs/user.updateProfile", response_model=UserProfile)
async def update_user_profile(data: UpdateProfileRequest, user: CurrentUser = Depends(get_current_user), sbase: AsyncClient = Depends(get_supabase)):
    return await users.update_profile(sbase, user.id, data.model_dump(exclude_none=True))


@app.post("/api/funcs/technician.updateProfile", response_model=Technician)
async def update_technician_profile(data: UpdateTechnicianProfileRequest, user: CurrentUser = Depends(require_technician), sbase: AsyncClient = Depends(get_supabase)):
    return await technicians.update_profile(sbase, user.id, data.model_dump(exclude_none=True))

# --- Services Catalogue ---

@app.post("/api/funcs/service.viewServices", response_model=list[Service])
async def view_services(sbase: AsyncClient = Depends(get_supabase)):
    response = await sbase.table("service").select("*").eq("is_active", True).order("id").execute()
    return response.data


@app.post("/api/funcs/admin.service.create", response_model=Service)
async def admin_create_service(data: CreateServiceRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    row = data.model_dump(mode="json")
    row.update({"is_active": True, "created_at": _now()})
    response = await sbase.table("service").insert(row).execute()
    return response.data[0]


@app.post("/api/funcs/admin.service.update", response_model=Service)
async def admin_update_service(data: UpdateServiceRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    updates = data.model_dump(mode="json", exclude={"id"}, exclude_none=True)
    updates["updated_at"] = _now()
    # Existing bookings keep the total they were created with
    response = await sbase.table("service").update(updates).eq("id", data.id).execute()
    if not response.data:
        raise NotFoundError("Service not found")
    return response.data[0]

# --- Customer Booking Functions ---

@app.post("/api/funcs/booking.create", response_model=Booking)
async def create_booking(data: CreateBookingRequest, user: CurrentUser = Depends(require_customer), sbase: AsyncClient = Depends(get_supabase)):
    return await bookings.create_booking(
        sbase,
        customer_id=user.id,
        service_id=data.service_id,
        address_id=data.address_id,
        preferred_start=data.preferred_start,
        preferred_end=data.preferred_end,
        description=data.description,
    )


@app.post("/api/funcs/booking.uploadReferenceImage", response_model=Booking)
async def upload_reference_image(
    booking_id: int = Form(...),
    file: UploadFile = File(...),
    user: CurrentUser = Depends(require_customer),
    sbase: AsyncClient = Depends(get_supabase),
):
    return await bookings.attach_reference_image(sbase, user.id, booking_id, file)


@app.post("/api/funcs/booking.viewMine", response_model=list[BookingRead])
async def view_my_bookings(user: CurrentUser = Depends(require_customer), sbase: AsyncClient = Depends(get_supabase)):
    return await bookings.list_customer_bookings(sbase, user.id)

# --- Technician Functions ---

@app.post("/api/funcs/technician.viewAvailableJobs", response_model=list[BookingRead])
async def view_available_jobs(user: CurrentUser = Depends(require_technician), sbase: AsyncClient = Depends(get_supabase)):
    return await bookings.list_available_jobs(sbase)


@app.post("/api/funcs/technician.viewAssignedBookings", response_model=list[BookingRead])
async def view_assigned_bookings(user: CurrentUser = Depends(require_technician), sbase: AsyncClient = Depends(get_supabase)):
    return await bookings.list_technician_bookings(sbase, user.id)


@app.post("/api/funcs/technician.acceptBooking", response_model=Booking)
async def accept_booking(data: BookingActionRequest, user: CurrentUser = Depends(require_technician), sbase: AsyncClient = Depends(get_supabase)):
    return await bookings.accept_booking(sbase, user.id, data.booking_id)


@app.post("/api/funcs/technician.updateBookingStatus", response_model=Booking)
async def update_booking_status(data: UpdateBookingStatusRequest, user: CurrentUser = Depends(require_technician), sbase: AsyncClient = Depends(get_supabase)):
    return await bookings.update_status(sbase, user.id, data.booking_id, data.status)


@app.post("/api/funcs/technician.uploadDocuments", response_model=Technician)
async def upload_documents(
    id_proof: Optional[UploadFile] = File(None),
    certificate: Optional[UploadFile] = File(None),
    user: CurrentUser = Depends(require_technician),
    sbase: AsyncClient = Depends(get_supabase),
):
    return await technicians.upload_documents(sbase, user.id, id_proof=id_proof, certificate=certificate)

# --- Notification Functions ---

@app.post("/api/funcs/notification.viewMine", response_model=list[NotificationItem])
async def view_my_notifications(data: ViewMyNotificationsRequest, user: CurrentUser = Depends(get_current_user), sbase: AsyncClient = Depends(get_supabase)):
    return await notifications.list_for_user(sbase, user.id, unread_only=data.unread_only)


@app.post("/api/funcs/notification.unreadCount", response_model=UnreadCount)
async def view_unread_count(user: CurrentUser = Depends(get_current_user), sbase: AsyncClient = Depends(get_supabase)):
    return UnreadCount(count=await notifications.unread_count(sbase, user.id))


@app.post("/api/funcs/notification.markRead", response_model=NotificationRecipient)
async def mark_notification_read(data: MarkReadRequest, user: CurrentUser = Depends(get_current_user), sbase: AsyncClient = Depends(get_supabase)):
    return await notifications.mark_read(sbase, user.id, data.recipient_id)


@app.post("/api/funcs/notification.markAllRead", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(user: CurrentUser = Depends(get_current_user), sbase: AsyncClient = Depends(get_supabase)):
    return MarkAllReadResponse(updated=await notifications.mark_all_read(sbase, user.id))

# --- Admin Functions ---

@app.post("/api/funcs/admin.notification.create", response_model=Notification)
async def admin_create_notification(data: CreateNotificationRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await notifications.create_notification(
        sbase,
        title=data.title,
        message=data.message,
        category=data.category,
        target_type=data.target_type,
        target_role=data.target_role,
        target_user_id=data.target_user_id,
        created_by_admin_id=user.id,
    )


@app.post("/api/funcs/admin.notification.list", response_model=NotificationPage)
async def admin_list_notifications(data: ListNotificationsRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await notifications.list_notifications(sbase, category=data.category, page=data.page, size=data.size)


@app.post("/api/funcs/admin.techRequests.list", response_model=TechnicianPage)
async def admin_list_tech_requests(data: TechRequestsListRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await technicians.list_pending(sbase, page=data.page, size=data.size)


@app.post("/api/funcs/admin.techRequests.get", response_model=TechnicianRequest)
async def admin_get_tech_request(data: TechnicianIdRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await technicians.get_request(sbase, str(data.technician_id))


@app.post("/api/funcs/admin.techRequests.approve", response_model=Technician)
async def admin_approve_technician(data: TechDecisionRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await technicians.approve(sbase, str(data.technician_id), comment=data.comment)


@app.post("/api/funcs/admin.techRequests.reject", response_model=Technician)
async def admin_reject_technician(data: TechDecisionRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await technicians.reject(sbase, str(data.technician_id), reason=data.comment)


@app.post("/api/funcs/admin.users.list", response_model=UserPage)
async def admin_list_users(data: UsersListRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await users.list_users(sbase, role=data.role, search=data.search, page=data.page, size=data.size)


@app.post("/api/funcs/admin.users.get", response_model=UserSummary)
async def admin_get_user(data: UserIdRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await users.get_user(sbase, str(data.user_id))


@app.post("/api/funcs/admin.bookings.list", response_model=list[BookingRead])
async def admin_list_bookings(user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await bookings.list_all_bookings(sbase)


@app.post("/api/funcs/admin.dashboard.stats", response_model=DashboardStats)
async def admin_dashboard_stats(user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await dashboard.get_stats(sbase)


@app.post("/api/funcs/admin.dashboard.trends", response_model=BookingTrends)
async def admin_dashboard_trends(data: TrendsRequest, user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await dashboard.get_booking_trends(sbase, days=data.days)


@app.post("/api/funcs/admin.dashboard.recentActivity", response_model=list[RecentActivity])
async def admin_dashboard_recent_activity(user: CurrentUser = Depends(require_admin), sbase: AsyncClient = Depends(get_supabase)):
    return await dashboard.get_recent_activity(sbase)


def main():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

if __name__ == "__main__":
    main()
