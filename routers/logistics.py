from typing import List, Optional

from fastapi import APIRouter
from fastapi.encoders import jsonable_encoder
from sqlmodel import select

import impact
import workflow
from db import SessionDep
from models import Surplus, Task, TaskStatus
from responses import ok
from schemas import AcceptTask, TaskStatusUpdate
from .auth import LogisticsDep, user_summary

router = APIRouter(prefix="/api/logistics", tags=["logistics"])


def _task_rows(session: SessionDep, tasks: List[Task]) -> List[dict]:
    rows = []
    for task in tasks:
        payload = jsonable_encoder(task)
        surplus = session.get(Surplus, task.surplus_id)
        payload["surplus"] = (
            {
                "id": surplus.id,
                "title": surplus.title,
                "description": surplus.description,
                "quantity": surplus.quantity,
                "unit": surplus.unit,
            }
            if surplus is not None
            else None
        )
        payload["donor"] = user_summary(session, task.donor_id)
        payload["ngo"] = user_summary(session, task.ngo_id)
        rows.append(payload)
    return rows


@router.get("/tasks")
def available_tasks(session: SessionDep, current: LogisticsDep):
    """
    Tasks no logistics partner has taken yet, whether or not the donor
    has accepted the claim.
    """
    workflow.expire_overdue_surplus(session)

    tasks = session.exec(
        select(Task)
        .where(
            Task.status.in_(workflow.OPEN_TASK_STATUSES),
            Task.logistics_partner_id.is_(None),
        )
        .order_by(Task.created_at.desc(), Task.id.desc())
    ).all()
    return ok(_task_rows(session, tasks))


@router.get("/my-tasks")
def my_tasks(
    session: SessionDep,
    current: LogisticsDep,
    status: Optional[TaskStatus] = None,
):
    query = select(Task).where(Task.logistics_partner_id == current.user_id)
    if status is not None:
        query = query.where(Task.status == status)
    tasks = session.exec(query.order_by(Task.created_at.desc(), Task.id.desc())).all()
    return ok(_task_rows(session, tasks))


@router.post("/tasks/accept/{task_id}")
def accept_task(
    task_id: int,
    session: SessionDep,
    current: LogisticsDep,
    body: Optional[AcceptTask] = None,
):
    schedule = body if body is not None else AcceptTask()
    task = workflow.accept_task(
        session,
        task_id,
        current.user,
        scheduled_pickup=schedule.scheduled_pickup,
        scheduled_delivery=schedule.scheduled_delivery,
    )
    return ok(
        jsonable_encoder(task),
        message="Task accepted. Please proceed to pickup location.",
    )


@router.patch("/tasks/status/{task_id}")
def update_task_status(
    task_id: int,
    update: TaskStatusUpdate,
    session: SessionDep,
    current: LogisticsDep,
):
    task = workflow.update_task_status(session, task_id, current.user, update.status)
    return ok(jsonable_encoder(task), message="Status updated")


@router.get("/performance")
def performance(session: SessionDep, current: LogisticsDep):
    return ok(impact.logistics_performance(session, current.user_id))
