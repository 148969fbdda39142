import asyncio
from unittest.mock import patch

import pytest

import notifications
from errors import ValidationError


def _create(client, payload):
    return client.post("/api/funcs/admin.notification.create", json=payload)


@pytest.fixture
def admin(login_as, make_user):
    admin_id = make_user(role="Admin")
    login_as(admin_id, "Admin")
    return admin_id


def test_broadcast_reaches_every_active_user_once(client, fake_db, make_user, admin):
    active = {make_user(role="Customer"), make_user(role="Technician"), make_user(role="Customer")}
    make_user(role="Customer", status="Inactive")

    response = _create(client, {"title": "Maintenance", "message": "Down at 2am"})

    assert response.status_code == 200
    body = response.json()
    assert body["target_type"] == "All"
    assert body["created_by_admin_id"] == admin
    rows = fake_db.rows("notification_recipient", notification_id=body["id"])
    assert sorted(r["user_id"] for r in rows) == sorted(active | {admin})
    assert all(r["is_read"] is False for r in rows)


def test_role_targets_only_active_users_with_that_role(client, fake_db, make_user, admin):
    active_techs = {make_user(role="Technician") for _ in range(3)}
    for _ in range(2):
        make_user(role="Technician", status="Inactive")
    make_user(role="Customer")

    response = _create(client, {
        "title": "Low Balance",
        "message": "Please top up your wallet",
        "target_type": "Role",
        "target_role": "Technician",
    })

    body = response.json()
    assert body["target_role"] == "Technician"
    assert body["target_user_id"] is None
    rows = fake_db.rows("notification_recipient", notification_id=body["id"])
    assert len(rows) == 3
    assert {r["user_id"] for r in rows} == active_techs


def test_user_target_ignores_account_status(client, fake_db, make_user, admin):
    inactive = make_user(role="Customer", status="Inactive")

    response = _create(client, {
        "title": "Account review",
        "message": "Please contact support",
        "target_type": "User",
        "target_user_id": inactive,
        "target_role": "Customer",
    })

    body = response.json()
    assert body["target_user_id"] == inactive
    assert body["target_role"] is None
    rows = fake_db.rows("notification_recipient", notification_id=body["id"])
    assert [r["user_id"] for r in rows] == [inactive]


@pytest.mark.parametrize("payload", [
    {"target_type": "Role"},
    {"target_type": "Role", "target_role": "   "},
    {"target_type": "User"},
    {"target_type": "Everyone"},
])
def test_incomplete_target_is_stored_but_reaches_nobody(client, fake_db, make_user, admin, payload):
    make_user(role="Customer")

    response = _create(client, {"title": "Hello", "message": "World", **payload})

    assert response.status_code == 200
    notification_id = response.json()["id"]
    assert fake_db.rows("notifications", id=notification_id)
    assert fake_db.rows("notification_recipient", notification_id=notification_id) == []


def test_blank_target_type_defaults_to_all(client, fake_db, make_user, admin):
    response = _create(client, {"title": "Hi", "message": "There", "target_type": "  "})
    assert response.json()["target_type"] == "All"


@pytest.mark.parametrize("field,payload", [
    ("title", {"title": "   ", "message": "Body"}),
    ("message", {"title": "Title", "message": ""}),
])
def test_blank_title_or_message_is_rejected(client, fake_db, admin, field, payload):
    response = _create(client, payload)

    assert response.status_code == 422
    assert response.json()["field"] == field
    assert fake_db.rows("notifications") == []


def test_title_and_message_are_trimmed(client, admin):
    body = _create(client, {"title": "  Promo ", "message": " 10% off\n"}).json()
    assert (body["title"], body["message"]) == ("Promo", "10% off")


def test_only_admin_can_create(client, login_as, make_user):
    login_as(make_user(role="Customer"), "Customer")
    assert _create(client, {"title": "x", "message": "y"}).status_code == 403


def test_overlapping_pages_still_give_one_row_per_user(fake_db, make_user):
    users = {make_user(role="Customer") for _ in range(3)}
    late = "00000000-0000-0000-0000-000000000001"

    def user_signs_up(table):
        # The new id sorts first, so the next page repeats a row already seen
        if table == "userprofile" and not fake_db.rows("userprofile", id=late):
            fake_db.insert("userprofile", {"id": late, "name": "Late", "role": "Customer", "status": "Active"})

    fake_db.after_select = user_signs_up
    with patch("notifications.FETCH_BATCH", 2):
        notification = asyncio.run(notifications.create_notification(fake_db, "Hi", "There"))

    user_ids = [r["user_id"] for r in fake_db.rows("notification_recipient", notification_id=notification.id)]
    assert sorted(user_ids) == sorted(users)


def test_failed_fan_out_leaves_no_notification_behind(fake_db, make_user):
    make_user(role="Customer")
    table = fake_db.table

    def recipient_writes_fail(name):
        query = table(name)
        if name == "notification_recipient":
            execute = query.execute

            async def fail_on_upsert():
                if query.op == "upsert":
                    raise RuntimeError("violates foreign key constraint notification_recipient_user_id_fkey")
                return await execute()

            query.execute = fail_on_upsert
        return query

    fake_db.table = recipient_writes_fail
    with pytest.raises(RuntimeError):
        asyncio.run(notifications.create_notification(fake_db, "Hi", "There"))

    assert fake_db.rows("notifications") == []
    assert fake_db.rows("notification_recipient") == []


def test_unknown_target_user_is_not_found(client, fake_db, admin):
    response = _create(client, {
        "title": "Hello",
        "message": "World",
        "target_type": "User",
        "target_user_id": "00000000-0000-0000-0000-00000000beef",
    })

    assert response.status_code == 404
    assert response.json()["field"] == "target_user_id"
    assert fake_db.rows("notifications") == []



def test_service_raises_validation_error_with_field(fake_db):
    with pytest.raises(ValidationError) as exc:
        asyncio.run(notifications.create_notification(fake_db, "ok", "  "))
    assert exc.value.field == "message"

# --- Listing ---

def test_admin_list_filters_and_paginates(client, admin):
    for i in range(5):
        _create(client, {"title": f"Promo {i}", "message": "m", "category": "Promo", "target_type": "Nobody"})
    _create(client, {"title": "Ops", "message": "m", "category": "System", "target_type": "Nobody"})

    response = client.post("/api/funcs/admin.notification.list", json={"category": "Promo", "page": 2, "size": 2})

    body = response.json()
    assert body["total"] == 5
    assert (body["page"], body["size"]) == (2, 2)
    assert len(body["items"]) == 2
    assert all(item["category"] == "Promo" for item in body["items"])


def test_admin_list_normalises_bad_paging(client, admin):
    _create(client, {"title": "t", "message": "m"})

    body = client.post("/api/funcs/admin.notification.list", json={"page": 0, "size": 0}).json()

    assert (body["page"], body["size"], body["total"]) == (1, 20, 1)

# --- Recipient side ---

@pytest.fixture
def inbox(client, login_as, make_user, admin):
    user = make_user(role="Customer")
    for title in ("First", "Second"):
        _create(client, {"title": title, "message": "m", "target_type": "User", "target_user_id": user})
    login_as(user, "Customer")
    return user


def test_user_sees_own_notifications_newest_first(client, inbox):
    items = client.post("/api/funcs/notification.viewMine", json={}).json()

    assert [i["title"] for i in items] == ["Second", "First"]
    assert all(i["is_read"] is False and i["read_at"] is None for i in items)


def test_mark_read_is_idempotent(client, fake_db, inbox):
    items = client.post("/api/funcs/notification.viewMine", json={}).json()
    recipient_id = items[0]["recipient_id"]

    first = client.post("/api/funcs/notification.markRead", json={"recipient_id": recipient_id})
    assert first.status_code == 200
    assert first.json()["is_read"] is True
    read_at = first.json()["read_at"]
    assert read_at is not None

    second = client.post("/api/funcs/notification.markRead", json={"recipient_id": recipient_id})
    assert second.status_code == 200
    assert second.json()["is_read"] is True
    assert second.json()["read_at"] == read_at

    unread = client.post("/api/funcs/notification.viewMine", json={"unread_only": True}).json()
    assert [i["title"] for i in unread] == ["First"]
    assert client.post("/api/funcs/notification.unreadCount").json() == {"count": 1}


def test_cannot_mark_someone_elses_notification(client, login_as, make_user, inbox):
    items = client.post("/api/funcs/notification.viewMine", json={}).json()

    login_as(make_user(role="Customer"), "Customer")
    response = client.post("/api/funcs/notification.markRead", json={"recipient_id": items[0]["recipient_id"]})

    assert response.status_code == 404


def test_mark_all_read(client, inbox):
    assert client.post("/api/funcs/notification.markAllRead").json() == {"updated": 2}
    assert client.post("/api/funcs/notification.markAllRead").json() == {"updated": 0}
    assert client.post("/api/funcs/notification.unreadCount").json() == {"count": 0}
