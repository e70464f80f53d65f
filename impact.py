"""
Read-time aggregates for dashboards. Nothing is cached; every call queries
the current tables.
"""
from typing import List, Sequence, Tuple

from sqlalchemy import extract, func
from sqlmodel import Session, select

from models import (
    Request,
    RequestStatus,
    Surplus,
    SurplusStatus,
    Task,
    TaskStatus,
    User,
    UserRole,
)

# A donation counts toward impact once it has physically left the donor
COMPLETED_SURPLUS_STATUSES = (SurplusStatus.IN_TRANSIT, SurplusStatus.DELIVERED)


def _count(session: Session, model, *conditions) -> int:
    stmt = select(func.count()).select_from(model)
    for condition in conditions:
        stmt = stmt.where(condition)
    return session.exec(stmt).one()


def _value(member) -> str:
    return member.value if hasattr(member, "value") else str(member)


def earned_badges(count: int, tiers: Sequence[Tuple[int, str]]) -> List[dict]:
    return [
        {"name": name, "threshold": threshold}
        for threshold, name in tiers
        if count >= threshold
    ]


def donor_impact(session: Session, donor_id: int, tiers: Sequence[Tuple[int, str]]) -> dict:
    completed = Surplus.status.in_(COMPLETED_SURPLUS_STATUSES)

    total_donations = _count(session, Surplus, Surplus.donor_id == donor_id)
    completed_donations = _count(session, Surplus, Surplus.donor_id == donor_id, completed)
    delivered_donations = _count(
        session, Surplus,
        Surplus.donor_id == donor_id,
        Surplus.status == SurplusStatus.DELIVERED,
    )
    total_quantity = session.exec(
        select(func.coalesce(func.sum(Surplus.quantity), 0)).where(
            Surplus.donor_id == donor_id, completed
        )
    ).one()

    rows = session.exec(
        select(Surplus.category, func.count(), func.coalesce(func.sum(Surplus.quantity), 0))
        .where(Surplus.donor_id == donor_id, completed)
        .group_by(Surplus.category)
    ).all()
    by_category = [
        {"category": _value(category), "count": count, "total_quantity": quantity}
        for category, count, quantity in rows
    ]

    return {
        "total_donations": total_donations,
        "completed_donations": completed_donations,
        "delivered_donations": delivered_donations,
        "total_quantity": total_quantity,
        "badges": earned_badges(completed_donations, tiers),
        "category_breakdown": by_category,
    }


def ngo_impact(session: Session, ngo_id: int, people_per_unit: int) -> dict:
    delivered_to_ngo = (
        Surplus.claimed_by == ngo_id,
        Surplus.status == SurplusStatus.DELIVERED,
    )
    total_quantity = session.exec(
        select(func.coalesce(func.sum(Surplus.quantity), 0)).where(*delivered_to_ngo)
    ).one()

    return {
        "total_requests": _count(session, Request, Request.ngo_id == ngo_id),
        "fulfilled_requests": _count(
            session, Request,
            Request.ngo_id == ngo_id,
            Request.status == RequestStatus.FULFILLED,
        ),
        "received_items": _count(session, Surplus, *delivered_to_ngo),
        "total_quantity": total_quantity,
        "estimated_people_served": total_quantity * people_per_unit,
    }


def donor_leaderboard(session: Session, limit: int = 10) -> List[dict]:
    completed_count = func.count(Surplus.id).label("completed")
    quantity = func.coalesce(func.sum(Surplus.quantity), 0).label("quantity")
    rows = session.exec(
        select(User.id, User.name, User.donor_type, completed_count, quantity)
        .join(Surplus, Surplus.donor_id == User.id)
        .where(
            User.role == UserRole.DONOR,
            Surplus.status.in_(COMPLETED_SURPLUS_STATUSES),
        )
        .group_by(User.id, User.name, User.donor_type)
        .order_by(completed_count.desc(), quantity.desc(), User.id)
        .limit(limit)
    ).all()

    return [
        {
            "rank": rank,
            "donor_id": donor_id,
            "name": name,
            "donor_type": _value(donor_type) if donor_type is not None else None,
            "completed_donations": completed,
            "total_quantity": total,
        }
        for rank, (donor_id, name, donor_type, completed, total) in enumerate(rows, start=1)
    ]


def logistics_performance(session: Session, partner_id: int) -> dict:
    mine = Task.logistics_partner_id == partner_id
    delivered = Task.status == TaskStatus.DELIVERED

    total_tasks = _count(session, Task, mine)
    completed_tasks = _count(session, Task, mine, delivered)
    on_time_tasks = _count(
        session, Task, mine, delivered,
        Task.scheduled_delivery.is_not(None),
        Task.actual_delivery <= Task.scheduled_delivery,
    )

    if total_tasks:
        rating = round(completed_tasks / total_tasks * 5, 1)
        completion_rate = round(completed_tasks / total_tasks * 100, 1)
    else:
        rating = 0.0
        completion_rate = 0.0

    return {
        "total_tasks": total_tasks,
        "completed_tasks": completed_tasks,
        "on_time_tasks": on_time_tasks,
        "rating": rating,
        "completion_rate": completion_rate,
    }


def platform_overview(session: Session) -> dict:
    return {
        "users": {
            "total": _count(session, User),
            "donors": _count(session, User, User.role == UserRole.DONOR),
            "ngos": _count(session, User, User.role == UserRole.NGO),
            "logistics": _count(session, User, User.role == UserRole.LOGISTICS),
        },
        "surplus": {
            "total": _count(session, Surplus),
            "available": _count(session, Surplus, Surplus.status == SurplusStatus.AVAILABLE),
            "delivered": _count(session, Surplus, Surplus.status == SurplusStatus.DELIVERED),
        },
        "requests": {"total": _count(session, Request)},
        "tasks": {
            "total": _count(session, Task),
            "completed": _count(session, Task, Task.status == TaskStatus.DELIVERED),
        },
    }


def platform_analytics(session: Session) -> dict:
    surplus_by_category = session.exec(
        select(Surplus.category, func.count(), func.coalesce(func.sum(Surplus.quantity), 0))
        .group_by(Surplus.category)
    ).all()
    requests_by_urgency = session.exec(
        select(Request.urgency, func.count()).group_by(Request.urgency)
    ).all()
    tasks_by_status = session.exec(
        select(Task.status, func.count()).group_by(Task.status)
    ).all()

    month = extract("month", Surplus.created_at).label("month")
    monthly = session.exec(
        select(month, func.count()).group_by(month).order_by(month)
    ).all()

    return {
        "surplus_by_category": [
            {"category": _value(category), "count": count, "total_quantity": quantity}
            for category, count, quantity in surplus_by_category
        ],
        "requests_by_urgency": [
            {"urgency": _value(urgency), "count": count}
            for urgency, count in requests_by_urgency
        ],
        "tasks_by_status": [
            {"status": _value(status), "count": count}
            for status, count in tasks_by_status
        ],
        "monthly_trends": [
            {"month": int(m), "count": count} for m, count in monthly
        ],
    }
