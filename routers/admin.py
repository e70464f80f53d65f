from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlmodel import select

import impact
from db import SessionDep
from events import record_activity
from models import ActivityLog, ResourceType, User, UserRole, utcnow
from responses import ok
from schemas import VerifyUser
from .auth import AdminDep, user_payload, user_summary

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/overview")
def overview(session: SessionDep, current: AdminDep):
    return ok(impact.platform_overview(session))


@router.get("/users")
def list_users(
    session: SessionDep,
    current: AdminDep,
    role: Optional[UserRole] = None,
    is_verified: Optional[bool] = None,
    search: Optional[str] = None,
):
    """
    List all users, optionally filtered by role, verification and a name/email search.
    """
    query = select(User)

    if role is not None:
        query = query.where(User.role == role)

    if is_verified is not None:
        query = query.where(User.is_verified == is_verified)

    if search:
        pattern = f"%{search.lower()}%"
        query = query.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    users = session.exec(query.order_by(User.created_at.desc(), User.id.desc())).all()
    return ok([user_payload(user) for user in users])


@router.patch("/verify-user/{user_id}")
def verify_user(
    user_id: int,
    body: VerifyUser,
    request: Request,
    session: SessionDep,
    current: AdminDep,
):
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    user.is_verified = body.is_verified
    user.updated_at = utcnow()
    session.add(user)

    record_activity(
        session,
        current.user_id,
        "VERIFY_USER" if body.is_verified else "UNVERIFY_USER",
        ResourceType.USER,
        user.id,
        ip_address=request.client.host if request.client else None,
    )
    session.commit()
    session.refresh(user)
    return ok(user_payload(user), message="User verification updated")


@router.get("/analytics")
def analytics(session: SessionDep, current: AdminDep):
    return ok(impact.platform_analytics(session))


@router.get("/logs")
def activity_logs(
    session: SessionDep,
    current: AdminDep,
    limit: int = Query(50, ge=1, le=500),
    resource_type: Optional[ResourceType] = None,
):
    query = select(ActivityLog)
    if resource_type is not None:
        query = query.where(ActivityLog.resource_type == resource_type)
    logs = session.exec(
        query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit)
    ).all()

    results = []
    for log in logs:
        payload = jsonable_encoder(log)
        payload["user"] = user_summary(session, log.user_id)
        results.append(payload)
    return ok(results)
