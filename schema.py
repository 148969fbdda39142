from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel
from uuid import UUID

class CreateBookingRequest(BaseModel):
    service_id: int
    address_id: int
    preferred_start: datetime
    preferred_end: datetime
    description: str | None = None

class BookingActionRequest(BaseModel):
    booking_id: int

class UpdateBookingStatusRequest(BaseModel):
    booking_id: int
    status: str

class CreateNotificationRequest(BaseModel):
    title: str = ""
    message: str = ""
    category: str | None = None
    target_type: str | None = "All"  # "All" | "Role" | "User"
    target_role: str | None = None
    target_user_id: UUID | None = None

class ListNotificationsRequest(BaseModel):
    category: str | None = None
    page: int = 1
    size: int = 20

class ViewMyNotificationsRequest(BaseModel):
    unread_only: bool = False

class MarkReadRequest(BaseModel):
    recipient_id: int

class TechRequestsListRequest(BaseModel):
    page: int = 1
    size: int = 20

class TechDecisionRequest(BaseModel):
    technician_id: UUID
    comment: str | None = None

class CreateServiceRequest(BaseModel):
    name: str
    fixed_rate: Decimal
    description: str | None = None
    category: str | None = None

class UpdateServiceRequest(BaseModel):
    id: int
    name: str | None = None
    fixed_rate: Decimal | None = None
    description: str | None = None
    category: str | None = None
    is_active: bool | None = None

class TrendsRequest(BaseModel):
    days: int = 30

class LoginRequest(BaseModel):
    email: str
    password: str

class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str
    mob_no: str | None = None
    address: str | None = None

class TechnicianRegisterRequest(BaseModel):
    email: str
    password: str
    name: str
    phone: str | None = None
    experience_years: int = 0

class RegisterPushTokenRequest(BaseModel):
    token: str

class UsersListRequest(BaseModel):
    role: str = "All"  # "All" | "Customer" | "Technician" | "Admin"
    search: str | None = None
    page: int = 1
    size: int = 20

class UserIdRequest(BaseModel):
    user_id: UUID

class TechnicianIdRequest(BaseModel):
    technician_id: UUID

class UpdateProfileRequest(BaseModel):
    name: str | None = None
    mob_no: str | None = None
    address: str | None = None

class UpdateTechnicianProfileRequest(BaseModel):
    name: str | None = None
    phone: str | None = None
    experience_years: int | None = None
