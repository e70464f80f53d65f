import enum
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, model_validator

from models import (
    Category,
    DonorType,
    RequestStatus,
    Urgency,
    UserRole,
    VehicleType,
    as_utc,
)

# Input timestamps without an offset are read as UTC
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


# ---------- auth ----------

class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(min_length=6)
    role: UserRole
    location: str = Field(min_length=1)
    phone: Optional[str] = None
    donor_type: Optional[DonorType] = None
    ngo_registration_id: Optional[str] = None
    vehicle_type: Optional[VehicleType] = None


class LoginData(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    location: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = None
    donor_type: Optional[DonorType] = None
    ngo_registration_id: Optional[str] = None
    vehicle_type: Optional[VehicleType] = None


class UserRead(BaseModel):
    id: int
    name: str
    email: EmailStr
    role: UserRole
    location: str
    phone: Optional[str] = None
    is_verified: bool
    donor_type: Optional[DonorType] = None
    ngo_registration_id: Optional[str] = None
    vehicle_type: Optional[VehicleType] = None
    is_aadhaar_verified: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    """The slice of a user embedded in other resources."""

    id: int
    name: str
    email: EmailStr
    location: str
    phone: Optional[str] = None
    vehicle_type: Optional[VehicleType] = None

    model_config = ConfigDict(from_attributes=True)


# ---------- donor ----------

class SurplusCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    category: Category
    quantity: int = Field(gt=0)
    unit: str = "units"
    location: str = Field(min_length=1)
    expiry_date: Optional[UtcDatetime] = None


class SurplusUpdate(BaseModel):
    # status is deliberately absent: it only moves through the workflow
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[Category] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    unit: Optional[str] = None
    location: Optional[str] = Field(default=None, min_length=1)
    expiry_date: Optional[UtcDatetime] = None


class RejectClaim(BaseModel):
    reason: Optional[str] = None


# ---------- ngo ----------

class ClaimSurplus(BaseModel):
    delivery_location: Optional[str] = None


class RequestCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    category: Category
    quantity: int = Field(gt=0)
    unit: str = "units"
    urgency: Urgency = Urgency.MEDIUM


class RequestUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[Category] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    unit: Optional[str] = None
    urgency: Optional[Urgency] = None
    status: Optional[RequestStatus] = None


# ---------- logistics ----------

class TaskStatusChange(str, enum.Enum):
    """The statuses a logistics partner may report; anything else is a 400."""

    PICKED_UP = "picked-up"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"


class AcceptTask(BaseModel):
    scheduled_pickup: Optional[UtcDatetime] = None
    scheduled_delivery: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def check_window(self) -> "AcceptTask":
        if (
            self.scheduled_pickup is not None
            and self.scheduled_delivery is not None
            and self.scheduled_delivery < self.scheduled_pickup
        ):
            raise ValueError("scheduled_delivery must not be before scheduled_pickup")
        return self


class TaskStatusUpdate(BaseModel):
    status: TaskStatusChange


# ---------- admin ----------

class VerifyUser(BaseModel):
    is_verified: bool


# ---------- aadhaar ----------

class AadhaarStart(BaseModel):
    aadhaar: str


class AadhaarConfirm(BaseModel):
    aadhaar: str = Field(min_length=1)
    otp: str = Field(min_length=1)


# ---------- notifications ----------

class NotificationRead(BaseModel):
    is_read: bool = True


class SurplusClaimedData(BaseModel):
    type: Literal["surplus_claimed"] = "surplus_claimed"
    surplus_id: int
    surplus_title: str
    task_id: int
    ngo_id: int
    ngo_name: str


class ClaimAcceptedData(BaseModel):
    type: Literal["claim_accepted"] = "claim_accepted"
    surplus_id: int
    surplus_title: str
    task_id: int
    donor_id: int


class ClaimRejectedData(BaseModel):
    type: Literal["claim_rejected"] = "claim_rejected"
    surplus_id: int
    surplus_title: str
    donor_id: int
    reason: Optional[str] = None


class PickupConfirmedData(BaseModel):
    type: Literal["pickup_confirmed"] = "pickup_confirmed"
    surplus_id: int
    surplus_title: str
    task_id: int
    logistics_partner_id: int
    picked_up_at: datetime


class DeliveryConfirmedData(BaseModel):
    type: Literal["delivery_confirmed"] = "delivery_confirmed"
    surplus_id: int
    surplus_title: str
    task_id: int
    ngo_id: int
    delivered_at: datetime


NotificationData = Annotated[
    Union[
        SurplusClaimedData,
        ClaimAcceptedData,
        ClaimRejectedData,
        PickupConfirmedData,
        DeliveryConfirmedData,
    ],
    Field(discriminator="type"),
]
