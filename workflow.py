"""
Donation workflow: the status transitions a Surplus and its delivery Task
go through from listing to delivery.

    available --claim--> claimed --accept--> accepted --pickup--> in-transit --deliver--> delivered
        |                   |
        |                   +--reject--> available
        |                   |
        +-------------------+--expiry passes--> expired (pending task -> cancelled)

Every operation stages all of its writes (Surplus, Task, Notification,
ActivityLog) on the given session and commits once. If anything fails
before the commit the session is rolled back, so a transition is applied
completely or not at all.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, Optional, Set, Tuple

from sqlalchemy import update
from sqlmodel import Session, select

from events import notify, record_activity
from models import (
    ResourceType,
    Surplus,
    SurplusStatus,
    Task,
    TaskStatus,
    User,
    as_utc,
    utcnow,
)
from schemas import (
    ClaimAcceptedData,
    ClaimRejectedData,
    DeliveryConfirmedData,
    PickupConfirmedData,
    SurplusClaimedData,
    TaskStatusChange,
)

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for rule violations raised by workflow operations."""


class NotFoundError(WorkflowError):
    pass


class TransitionError(WorkflowError):
    pass


SURPLUS_TRANSITIONS: Dict[SurplusStatus, Set[SurplusStatus]] = {
    SurplusStatus.AVAILABLE: {SurplusStatus.CLAIMED, SurplusStatus.EXPIRED},
    SurplusStatus.CLAIMED: {
        SurplusStatus.ACCEPTED,
        SurplusStatus.AVAILABLE,
        SurplusStatus.EXPIRED,
    },
    SurplusStatus.ACCEPTED: {SurplusStatus.IN_TRANSIT},
    SurplusStatus.IN_TRANSIT: {SurplusStatus.DELIVERED},
    SurplusStatus.DELIVERED: set(),
    SurplusStatus.EXPIRED: set(),
}

TASK_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.ASSIGNED, TaskStatus.CANCELLED},
    TaskStatus.ASSIGNED: {TaskStatus.PICKED_UP, TaskStatus.CANCELLED},
    TaskStatus.PICKED_UP: {TaskStatus.IN_TRANSIT, TaskStatus.DELIVERED},
    TaskStatus.IN_TRANSIT: {TaskStatus.DELIVERED},
    TaskStatus.DELIVERED: set(),
    TaskStatus.CANCELLED: set(),
}

# Tasks a logistics partner can still pick up
OPEN_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.ASSIGNED)

# Listings that lapse once their expiry date passes
EXPIRABLE_SURPLUS_STATUSES = (SurplusStatus.AVAILABLE, SurplusStatus.CLAIMED)


def check_transition(table: dict, current, new, what: str) -> None:
    if new not in table.get(current, set()):
        raise TransitionError(
            f"Cannot move {what} from '{current.value}' to '{new.value}'"
        )


@contextmanager
def _atomic(session: Session) -> Iterator[None]:
    try:
        yield
        session.commit()
    except Exception:
        session.rollback()
        raise


def _get_surplus(session: Session, surplus_id: int) -> Surplus:
    surplus = session.get(Surplus, surplus_id)
    if surplus is None:
        raise NotFoundError("Surplus not found")
    return surplus


def _get_claimed_surplus_of(session: Session, surplus_id: int, donor: User) -> Surplus:
    surplus = session.get(Surplus, surplus_id)
    if (
        surplus is None
        or surplus.donor_id != donor.id
        or surplus.status != SurplusStatus.CLAIMED
    ):
        raise NotFoundError("Claimed surplus not found")
    return surplus


def _get_task_for(session: Session, surplus_id: int) -> Optional[Task]:
    return session.exec(select(Task).where(Task.surplus_id == surplus_id)).first()


def is_overdue(surplus: Surplus, now: Optional[datetime] = None) -> bool:
    if surplus.expiry_date is None:
        return False
    return as_utc(surplus.expiry_date) <= (now or utcnow())


def _expire(session: Session, surplus: Surplus, now: datetime) -> None:
    check_transition(SURPLUS_TRANSITIONS, surplus.status, SurplusStatus.EXPIRED, "surplus")
    surplus.status = SurplusStatus.EXPIRED
    surplus.updated_at = now
    session.add(surplus)

    task = _get_task_for(session, surplus.id)
    if task is not None:
        check_transition(TASK_TRANSITIONS, task.status, TaskStatus.CANCELLED, "task")
        task.status = TaskStatus.CANCELLED
        task.updated_at = now
        session.add(task)

    logger.info("Surplus %s expired", surplus.id)


def expire_overdue_surplus(session: Session) -> int:
    """
    Move every available or claimed listing whose expiry date has passed to
    expired, cancelling its delivery task. Returns how many were expired.
    """
    now = utcnow()
    overdue = session.exec(
        select(Surplus).where(
            Surplus.status.in_(EXPIRABLE_SURPLUS_STATUSES),
            Surplus.expiry_date.is_not(None),
            Surplus.expiry_date <= now,
        )
    ).all()
    if not overdue:
        return 0

    with _atomic(session):
        for surplus in overdue:
            _expire(session, surplus, now)
    return len(overdue)


def _reject_if_overdue(session: Session, surplus: Surplus) -> None:
    now = utcnow()
    if not is_overdue(surplus, now):
        return
    with _atomic(session):
        _expire(session, surplus, now)
    raise TransitionError("Surplus has expired")


def claim_surplus(
    session: Session,
    surplus_id: int,
    ngo: User,
    delivery_location: Optional[str] = None,
) -> Tuple[Surplus, Task]:
    """NGO reserves an available surplus item; a pending delivery task is created."""
    surplus = _get_surplus(session, surplus_id)
    if surplus.status == SurplusStatus.EXPIRED:
        raise TransitionError("Surplus has expired")
    if surplus.status != SurplusStatus.AVAILABLE:
        raise TransitionError("Surplus already claimed")
    _reject_if_overdue(session, surplus)

    with _atomic(session):
        now = utcnow()
        surplus.status = SurplusStatus.CLAIMED
        surplus.claimed_by = ngo.id
        surplus.claimed_at = now
        surplus.updated_at = now
        session.add(surplus)

        task = Task(
            surplus_id=surplus.id,
            donor_id=surplus.donor_id,
            ngo_id=ngo.id,
            pickup_location=surplus.location,
            delivery_location=delivery_location or ngo.location,
            status=TaskStatus.PENDING,
        )
        session.add(task)
        # task.id is needed for the notification payload
        session.flush()

        notify(
            session,
            surplus.donor_id,
            SurplusClaimedData(
                surplus_id=surplus.id,
                surplus_title=surplus.title,
                task_id=task.id,
                ngo_id=ngo.id,
                ngo_name=ngo.name,
            ),
        )
        record_activity(
            session, ngo.id, "CLAIM_SURPLUS", ResourceType.SURPLUS, surplus.id,
            {"task_id": task.id},
        )
    session.refresh(surplus)
    session.refresh(task)

    logger.info("Surplus %s claimed by NGO %s (task %s)", surplus.id, ngo.id, task.id)
    return surplus, task


def accept_claim(session: Session, surplus_id: int, donor: User) -> Tuple[Surplus, Task]:
    """Donor approves the NGO's claim; the task becomes ready for pickup."""
    surplus = _get_claimed_surplus_of(session, surplus_id, donor)
    task = _get_task_for(session, surplus.id)
    if task is None:
        raise NotFoundError("Delivery task not found")
    _reject_if_overdue(session, surplus)

    with _atomic(session):
        now = utcnow()
        surplus.status = SurplusStatus.ACCEPTED
        surplus.updated_at = now
        session.add(surplus)

        if task.status == TaskStatus.PENDING:
            task.status = TaskStatus.ASSIGNED
            task.updated_at = now
            session.add(task)

        notify(
            session,
            surplus.claimed_by,
            ClaimAcceptedData(
                surplus_id=surplus.id,
                surplus_title=surplus.title,
                task_id=task.id,
                donor_id=donor.id,
            ),
        )
        record_activity(session, donor.id, "ACCEPT_CLAIM", ResourceType.SURPLUS, surplus.id)
    session.refresh(surplus)
    session.refresh(task)

    logger.info("Donor %s accepted claim on surplus %s", donor.id, surplus.id)
    return surplus, task


def reject_claim(
    session: Session,
    surplus_id: int,
    donor: User,
    reason: Optional[str] = None,
) -> Surplus:
    """Donor declines the claim: the item is listed again and its task is dropped."""
    surplus = _get_claimed_surplus_of(session, surplus_id, donor)
    ngo_id = surplus.claimed_by

    with _atomic(session):
        surplus.status = SurplusStatus.AVAILABLE
        surplus.claimed_by = None
        surplus.claimed_at = None
        surplus.logistics_partner_id = None
        surplus.updated_at = utcnow()
        session.add(surplus)

        task = _get_task_for(session, surplus.id)
        if task is not None:
            session.delete(task)

        notify(
            session,
            ngo_id,
            ClaimRejectedData(
                surplus_id=surplus.id,
                surplus_title=surplus.title,
                donor_id=donor.id,
                reason=reason,
            ),
        )
        record_activity(
            session, donor.id, "REJECT_CLAIM", ResourceType.SURPLUS, surplus.id,
            {"ngo_id": ngo_id, "reason": reason},
        )
    session.refresh(surplus)

    logger.info("Donor %s rejected NGO %s on surplus %s", donor.id, ngo_id, surplus.id)
    return surplus


def accept_task(
    session: Session,
    task_id: int,
    partner: User,
    scheduled_pickup: Optional[datetime] = None,
    scheduled_delivery: Optional[datetime] = None,
) -> Task:
    """
    Logistics partner takes an unassigned delivery task, optionally with the
    pickup and delivery times they commit to.

    The assignment is a conditional UPDATE on an unassigned, open row, so of
    two partners accepting at once exactly one wins.
    """
    task = session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    if task.logistics_partner_id is not None:
        raise TransitionError("Task already claimed by another partner")
    if task.status not in OPEN_TASK_STATUSES:
        raise TransitionError("Task is not available")

    now = utcnow()
    values = {
        "logistics_partner_id": partner.id,
        "status": TaskStatus.ASSIGNED,
        "updated_at": now,
    }
    if scheduled_pickup is not None:
        values["scheduled_pickup"] = scheduled_pickup
    if scheduled_delivery is not None:
        values["scheduled_delivery"] = scheduled_delivery

    with _atomic(session):
        result = session.exec(
            update(Task)
            .where(
                Task.id == task.id,
                Task.logistics_partner_id.is_(None),
                Task.status.in_(OPEN_TASK_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TransitionError("Task already claimed by another partner")

        surplus = session.get(Surplus, task.surplus_id)
        if surplus is not None:
            surplus.logistics_partner_id = partner.id
            surplus.updated_at = now
            session.add(surplus)

        record_activity(session, partner.id, "ACCEPT_TASK", ResourceType.TASK, task.id)
    session.refresh(task)

    logger.info("Logistics partner %s accepted task %s", partner.id, task.id)
    return task


def update_task_status(
    session: Session,
    task_id: int,
    partner: User,
    change: TaskStatusChange,
) -> Task:
    """
    Apply a status reported by the assigned logistics partner.

    picked-up moves the surplus to in-transit; delivered moves it to
    delivered. in-transit only touches the task.
    """
    task = session.exec(
        select(Task).where(
            Task.id == task_id,
            Task.logistics_partner_id == partner.id,
        )
    ).first()
    if task is None:
        raise NotFoundError("Task not found")

    new_status = TaskStatus(change.value)
    check_transition(TASK_TRANSITIONS, task.status, new_status, "task")
    surplus = _get_surplus(session, task.surplus_id)
    previous = task.status

    with _atomic(session):
        now = utcnow()
        if new_status == TaskStatus.PICKED_UP:
            if surplus.status != SurplusStatus.ACCEPTED:
                raise TransitionError("Donor has not accepted this claim yet")
            check_transition(SURPLUS_TRANSITIONS, surplus.status, SurplusStatus.IN_TRANSIT, "surplus")
            task.actual_pickup = now
            surplus.status = SurplusStatus.IN_TRANSIT
            notify(
                session,
                task.ngo_id,
                PickupConfirmedData(
                    surplus_id=surplus.id,
                    surplus_title=surplus.title,
                    task_id=task.id,
                    logistics_partner_id=partner.id,
                    picked_up_at=now,
                ),
            )
        elif new_status == TaskStatus.DELIVERED:
            check_transition(SURPLUS_TRANSITIONS, surplus.status, SurplusStatus.DELIVERED, "surplus")
            task.actual_delivery = now
            surplus.status = SurplusStatus.DELIVERED
            notify(
                session,
                task.donor_id,
                DeliveryConfirmedData(
                    surplus_id=surplus.id,
                    surplus_title=surplus.title,
                    task_id=task.id,
                    ngo_id=task.ngo_id,
                    delivered_at=now,
                ),
            )

        task.status = new_status
        task.updated_at = now
        surplus.updated_at = now
        session.add(task)
        session.add(surplus)

        record_activity(
            session, partner.id, "UPDATE_TASK_STATUS", ResourceType.TASK, task.id,
            {"from": previous.value, "to": new_status.value},
        )
    session.refresh(task)

    logger.info("Task %s moved %s -> %s", task.id, previous.value, new_status.value)
    return task
