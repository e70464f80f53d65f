from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from sqlmodel import select

import impact
import workflow
from config import settings
from db import SessionDep
from models import Category, Surplus, SurplusStatus, Task, utcnow
from responses import ok
from schemas import RejectClaim, SurplusCreate, SurplusUpdate
from .auth import DonorDep, user_summary

router = APIRouter(prefix="/api/donor", tags=["donor"])


def _surplus_payload(session: SessionDep, surplus: Surplus) -> dict:
    payload = jsonable_encoder(surplus)
    payload["claimed_by_user"] = user_summary(session, surplus.claimed_by)
    payload["logistics_partner"] = user_summary(session, surplus.logistics_partner_id)
    return payload


def _get_own_surplus(session: SessionDep, surplus_id: int, donor_id: int) -> Surplus:
    surplus = session.get(Surplus, surplus_id)
    if surplus is None or surplus.donor_id != donor_id:
        raise HTTPException(status_code=404, detail="Surplus not found")
    return surplus


@router.post("/surplus", status_code=status.HTTP_201_CREATED)
def create_surplus(surplus_in: SurplusCreate, session: SessionDep, current: DonorDep):
    """
    List a new surplus item. It starts out available for NGOs to claim.
    """
    surplus = Surplus(**surplus_in.model_dump(), donor_id=current.user_id)
    session.add(surplus)
    session.commit()
    session.refresh(surplus)
    return ok(jsonable_encoder(surplus), message="Surplus item created successfully")


@router.get("/surplus")
def list_surplus(
    session: SessionDep,
    current: DonorDep,
    status: Optional[SurplusStatus] = None,
    category: Optional[Category] = None,
):
    """
    List the donor's own items, newest first, optionally filtered by status and category.
    """
    workflow.expire_overdue_surplus(session)

    query = select(Surplus).where(Surplus.donor_id == current.user_id)

    if status is not None:
        query = query.where(Surplus.status == status)

    if category is not None:
        query = query.where(Surplus.category == category)

    items = session.exec(query.order_by(Surplus.created_at.desc(), Surplus.id.desc())).all()
    return ok([_surplus_payload(session, item) for item in items])


@router.get("/surplus/{surplus_id}")
def get_surplus(surplus_id: int, session: SessionDep, current: DonorDep):
    surplus = _get_own_surplus(session, surplus_id, current.user_id)
    return ok(_surplus_payload(session, surplus))


@router.patch("/surplus/{surplus_id}")
def update_surplus(
    surplus_id: int,
    update: SurplusUpdate,
    session: SessionDep,
    current: DonorDep,
):
    """
    Edit the descriptive fields of a listing. Only items nobody has claimed yet can change.
    """
    surplus = _get_own_surplus(session, surplus_id, current.user_id)
    if surplus.status != SurplusStatus.AVAILABLE:
        raise HTTPException(
            status_code=400,
            detail="Only available surplus can be edited",
        )

    for field, value in update.model_dump(exclude_unset=True).items():
        if value is None and field != "expiry_date":
            continue
        setattr(surplus, field, value)
    surplus.updated_at = utcnow()

    session.add(surplus)
    session.commit()
    session.refresh(surplus)
    return ok(jsonable_encoder(surplus), message="Surplus updated")


@router.post("/surplus/{surplus_id}/accept")
def accept_claim(surplus_id: int, session: SessionDep, current: DonorDep):
    surplus, task = workflow.accept_claim(session, surplus_id, current.user)
    return ok(
        {"surplus": jsonable_encoder(surplus), "task": jsonable_encoder(task)},
        message="Claim accepted. The NGO has been notified.",
    )


@router.post("/surplus/{surplus_id}/reject")
def reject_claim(
    surplus_id: int,
    session: SessionDep,
    current: DonorDep,
    body: Optional[RejectClaim] = None,
):
    reason = body.reason if body is not None else None
    surplus = workflow.reject_claim(session, surplus_id, current.user, reason)
    return ok(
        jsonable_encoder(surplus),
        message="Claim rejected. The item is available again.",
    )


@router.get("/impact")
def get_impact(session: SessionDep, current: DonorDep):
    return ok(impact.donor_impact(session, current.user_id, settings.donor_badge_tiers))


@router.get("/leaderboard")
def get_leaderboard(session: SessionDep, current: DonorDep, limit: int = Query(10, ge=1, le=100)):
    return ok(impact.donor_leaderboard(session, limit))


@router.get("/tracking/{surplus_id}")
def track_donation(surplus_id: int, session: SessionDep, current: DonorDep):
    """
    Where a donation is right now: the item, its delivery task and a timeline.
    """
    surplus = _get_own_surplus(session, surplus_id, current.user_id)
    task = session.exec(select(Task).where(Task.surplus_id == surplus.id)).first()

    task_payload = None
    if task is not None:
        task_payload = jsonable_encoder(task)
        task_payload["ngo"] = user_summary(session, task.ngo_id)
        task_payload["logistics_partner"] = user_summary(session, task.logistics_partner_id)

    return ok(
        {
            "surplus": jsonable_encoder(surplus),
            "task": task_payload,
            "timeline": {
                "created": surplus.created_at,
                "claimed": surplus.claimed_at,
                "picked_up": task.actual_pickup if task else None,
                "delivered": task.actual_delivery if task else None,
            },
        }
    )
