from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel


class Role(StrEnum):
    CUSTOMER = "Customer"
    TECHNICIAN = "Technician"
    ADMIN = "Admin"


class UserStatus(StrEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class VerificationStatus(StrEnum):
    PENDING = "Pending"
    VERIFIED = "Verified"
    REJECTED = "Rejected"


class BookingStatus(StrEnum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TargetType(StrEnum):
    ALL = "All"
    ROLE = "Role"
    USER = "User"


class UserProfile(BaseModel):
    id: UUID
    name: str
    email: Optional[str] = None
    mob_no: Optional[str] = None
    address: Optional[str] = None
    push_token: Optional[str] = None  # Expo push token of the signed-in device
    role: str = Role.CUSTOMER
    status: str = UserStatus.ACTIVE
    created_at: Optional[datetime] = None

class Technician(BaseModel):
    id: UUID  # same id as the technician's userprofile row
    created_at: datetime
    name: str
    phone: Optional[str] = None
    experience_years: int = 0
    verification_status: str = VerificationStatus.PENDING
    verified_at: Optional[datetime] = None
    id_proof: Optional[str] = None  # storage path
    certificate: Optional[str] = None  # storage path

class Service(BaseModel):
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    fixed_rate: Decimal
    is_active: bool = True

class Booking(BaseModel):
    id: int
    created_at: datetime
    customer_id: UUID
    service_id: int
    technician_id: Optional[UUID] = None  # null only while Pending
    address_id: int
    description: Optional[str] = None
    total_amount: Decimal  # copied from service.fixed_rate at creation
    status: str = BookingStatus.PENDING
    preferred_start: datetime
    preferred_end: datetime
    completed_at: Optional[datetime] = None
    reference_image: Optional[str] = None

class Notification(BaseModel):
    id: int
    created_at: datetime
    title: str
    message: str
    category: Optional[str] = None
    target_type: str = TargetType.ALL
    target_role: Optional[str] = None
    target_user_id: Optional[UUID] = None
    created_by_admin_id: Optional[UUID] = None

class NotificationRecipient(BaseModel):
    id: int
    notification_id: int
    user_id: UUID
    is_read: bool = False
    read_at: Optional[datetime] = None

# --- Read/Response Models ---

class ServiceSummary(BaseModel):
    id: int
    name: str

class BookingRead(Booking):
    service: Optional[ServiceSummary] = None

class NotificationItem(BaseModel):
    recipient_id: int
    notification_id: int
    title: str
    message: str
    category: Optional[str] = None
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None

class NotificationPage(BaseModel):
    total: int
    page: int
    size: int
    items: list[Notification] = []

class TechnicianPage(BaseModel):
    total: int
    page: int
    size: int
    items: list[Technician] = []

class UnreadCount(BaseModel):
    count: int

class MarkAllReadResponse(BaseModel):
    updated: int

class DashboardStats(BaseModel):
    total_revenue: Decimal
    verified_technicians: int
    active_customers: int
    jobs_in_progress: int
    new_registrations: int

class BookingTrends(BaseModel):
    labels: list[str]
    data: list[int]

class TechnicianSummary(BaseModel):
    verification_status: str
    experience_years: int = 0
    verified_at: Optional[datetime] = None

class UserSummary(UserProfile):
    technician: Optional[TechnicianSummary] = None  # only for technicians

class UserPage(BaseModel):
    total: int
    page: int
    size: int
    items: list[UserSummary] = []

class TechnicianRequest(Technician):
    email: Optional[str] = None
    mob_no: Optional[str] = None

class RecentActivity(BaseModel):
    booking_id: int
    message: str
    time_ago: str
    color: str
