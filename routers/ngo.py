from typing import Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy import case, or_
from sqlmodel import select

import impact
import workflow
from config import settings
from db import SessionDep
from models import (
    Category,
    Request as RequestModel,
    RequestStatus,
    Surplus,
    SurplusStatus,
    Task,
    Urgency,
    utcnow,
)
from responses import ok
from schemas import ClaimSurplus, RequestCreate, RequestUpdate
from .auth import NGODep, user_summary

router = APIRouter(prefix="/api/ngo", tags=["ngo"])

URGENT_LEVELS = (Urgency.CRITICAL, Urgency.HIGH)


@router.get("/surplus")
def list_available_surplus(
    session: SessionDep,
    current: NGODep,
    category: Optional[Category] = None,
    search: Optional[str] = None,
):
    """
    Surplus open for claiming, optionally filtered by category and a
    case-insensitive search over title and description.
    """
    workflow.expire_overdue_surplus(session)

    query = select(Surplus).where(Surplus.status == SurplusStatus.AVAILABLE)

    if category is not None:
        query = query.where(Surplus.category == category)

    if search:
        pattern = f"%{search.lower()}%"
        query = query.where(
            or_(
                Surplus.title.ilike(pattern),
                Surplus.description.ilike(pattern),
            )
        )

    items = session.exec(query.order_by(Surplus.created_at.desc(), Surplus.id.desc())).all()
    results = []
    for item in items:
        payload = jsonable_encoder(item)
        payload["donor"] = user_summary(session, item.donor_id)
        results.append(payload)
    return ok(results)


@router.post("/claim/{surplus_id}")
def claim_surplus(
    surplus_id: int,
    session: SessionDep,
    current: NGODep,
    body: Optional[ClaimSurplus] = None,
):
    delivery_location = body.delivery_location if body is not None else None
    surplus, task = workflow.claim_surplus(session, surplus_id, current.user, delivery_location)
    return ok(
        {"surplus": jsonable_encoder(surplus), "task": jsonable_encoder(task)},
        message="Surplus claimed successfully. Donor has been notified.",
    )


@router.get("/claims")
def list_claims(session: SessionDep, current: NGODep):
    """
    Everything this NGO has claimed, with the delivery task for each item.
    """
    rows = session.exec(
        select(Surplus, Task)
        .join(Task, Task.surplus_id == Surplus.id)
        .where(Surplus.claimed_by == current.user_id)
        .order_by(Surplus.claimed_at.desc(), Surplus.id.desc())
    ).all()
    return ok(
        [
            {"surplus": jsonable_encoder(surplus), "task": jsonable_encoder(task)}
            for surplus, task in rows
        ]
    )


@router.post("/request", status_code=status.HTTP_201_CREATED)
def create_request(request_in: RequestCreate, session: SessionDep, current: NGODep):
    new_request = RequestModel(**request_in.model_dump(), ngo_id=current.user_id)
    session.add(new_request)
    session.commit()
    session.refresh(new_request)
    return ok(jsonable_encoder(new_request), message="Request created successfully")


@router.get("/request")
def list_requests(
    session: SessionDep,
    current: NGODep,
    status: Optional[RequestStatus] = None,
):
    query = select(RequestModel).where(RequestModel.ngo_id == current.user_id)
    if status is not None:
        query = query.where(RequestModel.status == status)
    requests = session.exec(
        query.order_by(RequestModel.created_at.desc(), RequestModel.id.desc())
    ).all()
    return ok(jsonable_encoder(requests))


@router.patch("/request/{request_id}")
def update_request(
    request_id: int,
    update: RequestUpdate,
    session: SessionDep,
    current: NGODep,
):
    db_request = session.get(RequestModel, request_id)
    if db_request is None or db_request.ngo_id != current.user_id:
        raise HTTPException(status_code=404, detail="Request not found")

    for field, value in update.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(db_request, field, value)
    db_request.updated_at = utcnow()

    session.add(db_request)
    session.commit()
    session.refresh(db_request)
    return ok(jsonable_encoder(db_request), message="Request updated")


@router.get("/impact")
def get_impact(session: SessionDep, current: NGODep):
    return ok(impact.ngo_impact(session, current.user_id, settings.people_served_per_unit))


@router.get("/urgent-needs")
def urgent_needs(session: SessionDep, current: NGODep):
    """
    Open high and critical requests across all NGOs, critical first.
    """
    critical_first = case((RequestModel.urgency == Urgency.CRITICAL, 0), else_=1)
    requests = session.exec(
        select(RequestModel)
        .where(
            RequestModel.urgency.in_(URGENT_LEVELS),
            RequestModel.status == RequestStatus.OPEN,
        )
        .order_by(critical_first, RequestModel.created_at.desc(), RequestModel.id.desc())
        .limit(10)
    ).all()

    results = []
    for req in requests:
        payload = jsonable_encoder(req)
        payload["ngo"] = user_summary(session, req.ngo_id)
        results.append(payload)
    return ok(results)
