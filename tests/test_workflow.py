from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlmodel import select

import workflow
from conftest import create_surplus, register
from models import (
    ActivityLog,
    Notification,
    NotificationType,
    Surplus,
    SurplusStatus,
    Task,
    TaskStatus,
    User,
    utcnow,
)


def _claim(client, ngo, surplus_id, **body):
    return client.post(f"/api/ngo/claim/{surplus_id}", json=body or None, headers=ngo.headers)


def _accept(client, donor, surplus_id):
    return client.post(f"/api/donor/surplus/{surplus_id}/accept", headers=donor.headers)


def _take_task(client, courier, task_id):
    return client.post(f"/api/logistics/tasks/accept/{task_id}", headers=courier.headers)


def _set_status(client, courier, task_id, status):
    return client.patch(
        f"/api/logistics/tasks/status/{task_id}",
        json={"status": status},
        headers=courier.headers,
    )


def _tasks_for(session, surplus_id):
    return session.exec(select(Task).where(Task.surplus_id == surplus_id)).all()


def test_claim_available_surplus_creates_one_task(client, session, donor, ngo):
    surplus = create_surplus(client, donor)

    response = _claim(client, ngo, surplus["id"], delivery_location="Dharavi shelter")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["surplus"]["status"] == "claimed"
    assert body["data"]["surplus"]["claimed_by"] == ngo.id
    assert body["data"]["task"]["status"] == "pending"
    assert body["data"]["task"]["delivery_location"] == "Dharavi shelter"

    tasks = _tasks_for(session, surplus["id"])
    assert len(tasks) == 1
    assert tasks[0].ngo_id == ngo.id
    assert tasks[0].donor_id == donor.id
    assert tasks[0].pickup_location == "Koregaon Park"


def test_claim_twice_is_rejected(client, session, donor, ngo):
    surplus = create_surplus(client, donor)
    other_ngo = register(client, "ngo")

    assert _claim(client, ngo, surplus["id"]).status_code == 200
    second = _claim(client, other_ngo, surplus["id"])

    assert second.status_code == 400
    assert second.json() == {"success": False, "message": "Surplus already claimed"}
    assert len(_tasks_for(session, surplus["id"])) == 1


def test_claim_unknown_surplus_is_404(client, ngo):
    response = _claim(client, ngo, 9999)
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_claim_without_body_uses_ngo_location(client, donor, ngo):
    surplus = create_surplus(client, donor)
    response = _claim(client, ngo, surplus["id"])
    assert response.json()["data"]["task"]["delivery_location"] == "Mumbai"


def test_claim_notifies_donor(client, session, donor, ngo):
    surplus = create_surplus(client, donor)
    _claim(client, ngo, surplus["id"])

    notes = session.exec(select(Notification).where(Notification.user_id == donor.id)).all()
    assert len(notes) == 1
    assert notes[0].type == NotificationType.SURPLUS_CLAIMED
    assert notes[0].data["surplus_id"] == surplus["id"]
    assert notes[0].data["ngo_name"] == ngo.user["name"]
    assert notes[0].is_read is False


def test_donor_reject_returns_item_to_available(client, session, donor, ngo):
    surplus = create_surplus(client, donor)
    _claim(client, ngo, surplus["id"])

    response = client.post(
        f"/api/donor/surplus/{surplus['id']}/reject",
        json={"reason": "Already given away"},
        headers=donor.headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "available"
    assert data["claimed_by"] is None

    assert _tasks_for(session, surplus["id"]) == []
    note = session.exec(select(Notification).where(Notification.user_id == ngo.id)).one()
    assert note.type == NotificationType.CLAIM_REJECTED
    assert "Already given away" in note.message


def test_rejected_item_can_be_claimed_again(client, session, donor, ngo):
    surplus = create_surplus(client, donor)
    _claim(client, ngo, surplus["id"])
    client.post(f"/api/donor/surplus/{surplus['id']}/reject", headers=donor.headers)

    other_ngo = register(client, "ngo")
    assert _claim(client, other_ngo, surplus["id"]).status_code == 200
    tasks = _tasks_for(session, surplus["id"])
    assert len(tasks) == 1
    assert tasks[0].ngo_id == other_ngo.id


def test_donor_accept_moves_surplus_and_task(client, session, donor, ngo):
    surplus = create_surplus(client, donor)
    _claim(client, ngo, surplus["id"])

    response = _accept(client, donor, surplus["id"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["surplus"]["status"] == "accepted"
    assert data["task"]["status"] == "assigned"

    note = session.exec(select(Notification).where(Notification.user_id == ngo.id)).one()
    assert note.type == NotificationType.CLAIM_ACCEPTED


def test_accept_and_reject_require_claimed_status(client, donor):
    surplus = create_surplus(client, donor)

    assert _accept(client, donor, surplus["id"]).status_code == 404
    response = client.post(f"/api/donor/surplus/{surplus['id']}/reject", headers=donor.headers)
    assert response.status_code == 404


def test_accept_by_another_donor_is_404(client, donor, ngo):
    surplus = create_surplus(client, donor)
    _claim(client, ngo, surplus["id"])
    stranger = register(client, "donor")

    assert _accept(client, stranger, surplus["id"]).status_code == 404


def test_double_accept_does_not_duplicate_notifications(client, session, donor, ngo):
    surplus = create_surplus(client, donor)
    _claim(client, ngo, surplus["id"])

    assert _accept(client, donor, surplus["id"]).status_code == 200
    assert _accept(client, donor, surplus["id"]).status_code == 404

    notes = session.exec(select(Notification).where(Notification.user_id == ngo.id)).all()
    assert len(notes) == 1


def test_logistics_accept_assigns_partner(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]

    response = _take_task(client, courier, task_id)
    assert response.status_code == 200
    assert response.json()["data"]["logistics_partner_id"] == courier.id
    assert response.json()["data"]["status"] == "assigned"

    stored = session.get(Surplus, surplus["id"])
    assert stored.logistics_partner_id == courier.id


def test_logistics_accept_on_taken_task_is_400_for_anyone(client, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    other_courier = register(client, "logistics")

    assert _take_task(client, courier, task_id).status_code == 200
    again = _take_task(client, courier, task_id)
    by_other = _take_task(client, other_courier, task_id)

    assert again.status_code == 400
    assert by_other.status_code == 400
    assert by_other.json()["message"] == "Task already claimed by another partner"


def test_available_tasks_hide_taken_ones(client, donor, ngo, courier):
    first = create_surplus(client, donor, title="Bread")
    second = create_surplus(client, donor, title="Milk")
    task_id = _claim(client, ngo, first["id"]).json()["data"]["task"]["id"]
    _claim(client, ngo, second["id"])
    _take_task(client, courier, task_id)

    response = client.get("/api/logistics/tasks", headers=courier.headers)
    titles = [row["surplus"]["title"] for row in response.json()["data"]]
    assert titles == ["Milk"]

    mine = client.get("/api/logistics/my-tasks", headers=courier.headers).json()["data"]
    assert [row["id"] for row in mine] == [task_id]


def test_pickup_flips_surplus_to_in_transit_only(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _accept(client, donor, surplus["id"])
    _take_task(client, courier, task_id)

    response = _set_status(client, courier, task_id, "picked-up")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "picked-up"
    assert response.json()["data"]["actual_pickup"] is not None
    assert response.json()["data"]["actual_delivery"] is None

    session.expire_all()
    assert session.get(Surplus, surplus["id"]).status == SurplusStatus.IN_TRANSIT


def test_delivered_sets_actual_delivery_and_surplus_status(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _accept(client, donor, surplus["id"])
    _take_task(client, courier, task_id)
    _set_status(client, courier, task_id, "picked-up")

    response = _set_status(client, courier, task_id, "delivered")
    assert response.status_code == 200

    session.expire_all()
    task = session.get(Task, task_id)
    assert task.status == TaskStatus.DELIVERED
    assert task.actual_delivery is not None
    assert task.actual_delivery >= task.actual_pickup
    assert session.get(Surplus, surplus["id"]).status == SurplusStatus.DELIVERED


def test_in_transit_update_only_touches_task(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _accept(client, donor, surplus["id"])
    _take_task(client, courier, task_id)
    _set_status(client, courier, task_id, "picked-up")

    response = _set_status(client, courier, task_id, "in-transit")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "in-transit"

    session.expire_all()
    assert session.get(Surplus, surplus["id"]).status == SurplusStatus.IN_TRANSIT
    assert _set_status(client, courier, task_id, "delivered").status_code == 200


def test_unknown_status_string_is_rejected(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _take_task(client, courier, task_id)

    response = _set_status(client, courier, task_id, "teleported")
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["errors"][0]["field"] == "status"

    session.expire_all()
    assert session.get(Task, task_id).status == TaskStatus.ASSIGNED


def test_cannot_skip_pickup(client, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _accept(client, donor, surplus["id"])
    _take_task(client, courier, task_id)

    response = _set_status(client, courier, task_id, "delivered")
    assert response.status_code == 400
    assert "assigned" in response.json()["message"]


def test_pickup_waits_for_donor_acceptance(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _take_task(client, courier, task_id)

    response = _set_status(client, courier, task_id, "picked-up")
    assert response.status_code == 400
    assert response.json()["message"] == "Donor has not accepted this claim yet"

    session.expire_all()
    assert session.get(Surplus, surplus["id"]).status == SurplusStatus.CLAIMED


def test_status_update_by_other_partner_is_404(client, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _accept(client, donor, surplus["id"])
    _take_task(client, courier, task_id)
    other_courier = register(client, "logistics")

    assert _set_status(client, other_courier, task_id, "picked-up").status_code == 404


def test_end_to_end_donation(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor, quantity=10)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    assert _accept(client, donor, surplus["id"]).status_code == 200
    assert _take_task(client, courier, task_id).status_code == 200
    assert _set_status(client, courier, task_id, "picked-up").status_code == 200
    assert _set_status(client, courier, task_id, "delivered").status_code == 200

    session.expire_all()
    assert session.get(Surplus, surplus["id"]).status == SurplusStatus.DELIVERED
    assert session.get(Task, task_id).status == TaskStatus.DELIVERED

    notes = session.exec(select(Notification).order_by(Notification.id)).all()
    assert [(n.user_id, n.type) for n in notes] == [
        (donor.id, NotificationType.SURPLUS_CLAIMED),
        (ngo.id, NotificationType.CLAIM_ACCEPTED),
        (ngo.id, NotificationType.PICKUP_CONFIRMED),
        (donor.id, NotificationType.DELIVERY_CONFIRMED),
    ]

    tracking = client.get(f"/api/donor/tracking/{surplus['id']}", headers=donor.headers)
    timeline = tracking.json()["data"]["timeline"]
    assert all(timeline[key] is not None for key in ("created", "claimed", "picked_up", "delivered"))
    assert tracking.json()["data"]["task"]["logistics_partner"]["id"] == courier.id

    actions = [log.action for log in session.exec(select(ActivityLog).order_by(ActivityLog.id)).all()]
    assert actions == [
        "CLAIM_SURPLUS",
        "ACCEPT_CLAIM",
        "ACCEPT_TASK",
        "UPDATE_TASK_STATUS",
        "UPDATE_TASK_STATUS",
    ]


def _days_from_now(days):
    return (utcnow() + timedelta(days=days)).isoformat()


def test_listing_past_its_expiry_cannot_be_claimed(client, session, donor, ngo):
    stale = create_surplus(client, donor, title="Yesterday's bread", expiry_date=_days_from_now(-2))
    fresh = create_surplus(client, donor, title="Today's bread", expiry_date=_days_from_now(2))

    browse = client.get("/api/ngo/surplus", headers=ngo.headers).json()["data"]
    assert [item["title"] for item in browse] == ["Today's bread"]

    response = _claim(client, ngo, stale["id"])
    assert response.status_code == 400
    assert response.json()["message"] == "Surplus has expired"
    assert _tasks_for(session, stale["id"]) == []

    session.expire_all()
    assert session.get(Surplus, stale["id"]).status == SurplusStatus.EXPIRED
    assert session.get(Surplus, fresh["id"]).status == SurplusStatus.AVAILABLE


def test_claim_checks_expiry_without_a_prior_listing(client, session, donor, ngo):
    stale = create_surplus(client, donor, expiry_date=_days_from_now(-1))

    response = _claim(client, ngo, stale["id"])
    assert response.status_code == 400

    session.expire_all()
    assert session.get(Surplus, stale["id"]).status == SurplusStatus.EXPIRED


def _backdate_expiry(session, surplus_id):
    stored = session.get(Surplus, surplus_id)
    stored.expiry_date = utcnow() - timedelta(hours=1)
    session.add(stored)
    session.commit()


def test_claimed_listing_that_expires_cancels_its_task(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor, expiry_date=_days_from_now(1))
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _backdate_expiry(session, surplus["id"])

    assert client.get("/api/logistics/tasks", headers=courier.headers).json()["data"] == []

    session.expire_all()
    assert session.get(Surplus, surplus["id"]).status == SurplusStatus.EXPIRED
    assert session.get(Task, task_id).status == TaskStatus.CANCELLED
    assert _take_task(client, courier, task_id).status_code == 400


def test_donor_cannot_accept_an_expired_claim(client, session, donor, ngo):
    surplus = create_surplus(client, donor, expiry_date=_days_from_now(1))
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    _backdate_expiry(session, surplus["id"])

    response = _accept(client, donor, surplus["id"])
    assert response.status_code == 400
    assert response.json()["message"] == "Surplus has expired"

    session.expire_all()
    assert session.get(Task, task_id).status == TaskStatus.CANCELLED
    accepted = session.exec(
        select(Notification).where(Notification.type == NotificationType.CLAIM_ACCEPTED)
    ).all()
    assert accepted == []


def test_accepted_listing_does_not_expire(client, session, donor, ngo):
    surplus = create_surplus(client, donor, expiry_date=_days_from_now(1))
    _claim(client, ngo, surplus["id"])
    _accept(client, donor, surplus["id"])
    _backdate_expiry(session, surplus["id"])

    assert workflow.expire_overdue_surplus(session) == 0
    assert session.get(Surplus, surplus["id"]).status == SurplusStatus.ACCEPTED


def test_stale_read_loses_the_task_race(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]
    rival = register(client, "logistics")

    # Load the row, then let a rival take it behind this session's back
    task = session.get(Task, task_id)
    assert task.logistics_partner_id is None
    session.exec(
        update(Task)
        .where(Task.id == task_id)
        .values(logistics_partner_id=rival.id)
        .execution_options(synchronize_session=False)
    )

    partner = session.get(User, courier.id)
    with pytest.raises(workflow.TransitionError):
        workflow.accept_task(session, task_id, partner)

    activity = session.exec(select(ActivityLog).where(ActivityLog.action == "ACCEPT_TASK")).all()
    assert activity == []


def test_accept_task_records_schedule(client, session, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]

    response = client.post(
        f"/api/logistics/tasks/accept/{task_id}",
        json={
            "scheduled_pickup": _days_from_now(1),
            "scheduled_delivery": _days_from_now(2),
        },
        headers=courier.headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["scheduled_pickup"] is not None
    assert data["scheduled_delivery"] is not None

    _accept(client, donor, surplus["id"])
    _set_status(client, courier, task_id, "picked-up")
    _set_status(client, courier, task_id, "delivered")

    performance = client.get("/api/logistics/performance", headers=courier.headers).json()["data"]
    assert performance["completed_tasks"] == 1
    assert performance["on_time_tasks"] == 1


def test_schedule_must_be_ordered(client, donor, ngo, courier):
    surplus = create_surplus(client, donor)
    task_id = _claim(client, ngo, surplus["id"]).json()["data"]["task"]["id"]

    response = client.post(
        f"/api/logistics/tasks/accept/{task_id}",
        json={
            "scheduled_pickup": _days_from_now(2),
            "scheduled_delivery": _days_from_now(1),
        },
        headers=courier.headers,
    )
    assert response.status_code == 400
