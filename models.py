import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC. Naive values are taken to be UTC already."""
    if value is None:
        return None
    # SQLite hands timestamps back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Every timestamp column stores aware UTC
Timestamp = DateTime(timezone=True)


class UserRole(str, enum.Enum):
    DONOR = "donor"
    NGO = "ngo"
    LOGISTICS = "logistics"
    ADMIN = "admin"


class DonorType(str, enum.Enum):
    INDIVIDUAL = "individual"
    RESTAURANT = "restaurant"
    GROCERY = "grocery"
    HOTEL = "hotel"


class VehicleType(str, enum.Enum):
    BIKE = "bike"
    CAR = "car"
    VAN = "van"
    TRUCK = "truck"


class Category(str, enum.Enum):
    FOOD = "food"
    CLOTHING = "clothing"
    MEDICAL = "medical"
    EDUCATIONAL = "educational"
    HYGIENE = "hygiene"
    OTHER = "other"


class SurplusStatus(str, enum.Enum):
    AVAILABLE = "available"
    CLAIMED = "claimed"
    ACCEPTED = "accepted"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"
    EXPIRED = "expired"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked-up"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RequestStatus(str, enum.Enum):
    OPEN = "open"
    FULFILLED = "fulfilled"
    CLOSED = "closed"


class NotificationType(str, enum.Enum):
    SURPLUS_CLAIMED = "surplus_claimed"
    CLAIM_ACCEPTED = "claim_accepted"
    CLAIM_REJECTED = "claim_rejected"
    PICKUP_CONFIRMED = "pickup_confirmed"
    DELIVERY_CONFIRMED = "delivery_confirmed"


class ResourceType(str, enum.Enum):
    SURPLUS = "surplus"
    REQUEST = "request"
    TASK = "task"
    USER = "user"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    role: UserRole = Field(index=True)
    location: str
    phone: Optional[str] = None
    is_verified: bool = False

    donor_type: Optional[DonorType] = None
    ngo_registration_id: Optional[str] = None
    vehicle_type: Optional[VehicleType] = None

    aadhaar_masked: Optional[str] = None
    aadhaar_hash: Optional[str] = None
    is_aadhaar_verified: bool = False
    aadhaar_verified_at: Optional[datetime] = Field(default=None, sa_type=Timestamp)

    created_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)


class Surplus(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", index=True)

    title: str
    description: str = ""
    category: Category = Field(index=True)
    quantity: int
    unit: str = "units"
    location: str
    expiry_date: Optional[datetime] = Field(default=None, sa_type=Timestamp)

    status: SurplusStatus = Field(default=SurplusStatus.AVAILABLE, index=True)
    claimed_by: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    logistics_partner_id: Optional[int] = Field(default=None, foreign_key="user.id")
    claimed_at: Optional[datetime] = Field(default=None, sa_type=Timestamp)

    created_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    surplus_id: int = Field(foreign_key="surplus.id", index=True, unique=True)
    donor_id: int = Field(foreign_key="user.id")
    ngo_id: int = Field(foreign_key="user.id")
    logistics_partner_id: Optional[int] = Field(
        default=None, foreign_key="user.id", index=True
    )

    pickup_location: str
    delivery_location: Optional[str] = None
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)

    scheduled_pickup: Optional[datetime] = Field(default=None, sa_type=Timestamp)
    scheduled_delivery: Optional[datetime] = Field(default=None, sa_type=Timestamp)
    actual_pickup: Optional[datetime] = Field(default=None, sa_type=Timestamp)
    actual_delivery: Optional[datetime] = Field(default=None, sa_type=Timestamp)

    created_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)


class Request(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    ngo_id: int = Field(foreign_key="user.id", index=True)

    title: str
    description: str = ""
    category: Category
    quantity: int
    unit: str = "units"
    urgency: Urgency = Urgency.MEDIUM
    status: RequestStatus = Field(default=RequestStatus.OPEN, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    type: NotificationType
    title: str
    message: str
    data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)


class ActivityLog(SQLModel, table=True):
    __tablename__ = "activity_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    action: str
    resource_type: ResourceType
    resource_id: Optional[int] = None
    # "metadata" is reserved on declarative classes
    details: Optional[dict] = Field(default=None, sa_column=Column("metadata", JSON))
    ip_address: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=Timestamp)


class MockAadhaar(SQLModel, table=True):
    __tablename__ = "mock_aadhaar"

    id: Optional[int] = Field(default=None, primary_key=True)
    aadhaar: str = Field(index=True, unique=True)
    name: str
    linked_phone: str
