"""
Side records written alongside workflow transitions: user-facing
notifications and the admin audit trail.

Neither helper commits. They add rows to the caller's session so the
records land in the same transaction as the transition that caused them.
"""
import logging
from typing import Optional

from sqlmodel import Session

from models import ActivityLog, Notification, NotificationType, ResourceType
from schemas import (
    ClaimAcceptedData,
    ClaimRejectedData,
    DeliveryConfirmedData,
    NotificationData,
    PickupConfirmedData,
    SurplusClaimedData,
)

logger = logging.getLogger(__name__)


def _render(payload: NotificationData) -> tuple[str, str]:
    """Title and message shown to the recipient for each notification type."""
    if isinstance(payload, SurplusClaimedData):
        return (
            "Surplus Item Claimed",
            f"{payload.ngo_name} has requested your surplus item: {payload.surplus_title}",
        )
    if isinstance(payload, ClaimAcceptedData):
        return (
            "Claim Accepted",
            f"The donor accepted your claim for {payload.surplus_title}. "
            "A logistics partner will pick it up soon.",
        )
    if isinstance(payload, ClaimRejectedData):
        message = f"The donor declined your claim for {payload.surplus_title}."
        if payload.reason:
            message += f" Reason: {payload.reason}"
        return "Claim Rejected", message
    if isinstance(payload, PickupConfirmedData):
        return (
            "Donation Picked Up",
            f"{payload.surplus_title} has been picked up and is on its way to you.",
        )
    if isinstance(payload, DeliveryConfirmedData):
        return (
            "Donation Delivered",
            f"{payload.surplus_title} has been delivered. Thank you for donating!",
        )
    raise TypeError(f"Unknown notification payload: {type(payload).__name__}")


def notify(session: Session, user_id: int, payload: NotificationData) -> Notification:
    title, message = _render(payload)
    notification = Notification(
        user_id=user_id,
        type=NotificationType(payload.type),
        title=title,
        message=message,
        data=payload.model_dump(mode="json"),
    )
    session.add(notification)
    logger.info("Notification %s queued for user %s", payload.type, user_id)
    return notification


def record_activity(
    session: Session,
    user_id: int,
    action: str,
    resource_type: ResourceType,
    resource_id: Optional[int] = None,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> ActivityLog:
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
    )
    session.add(entry)
    return entry
