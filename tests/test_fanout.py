import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from dealership.chat import retention
from dealership.chat.guard import Identity
from dealership.chat.retention import seconds_until_next_run, sweep_once
from dealership.database import SessionLocal
from dealership.events.bus import EventBus
from dealership.models.models import Message, Role, utcnow
from dealership.utils.encryption import encrypt_message
from dealership.websocket import (
    on_admin_cleared_notifications,
    on_send_message,
    on_user_cleared_notifications,
    rooms,
    store,
)

ISTANBUL = ZoneInfo("Europe/Istanbul")


def rooms_identity(user):
    return Identity(user.id, user.role, user.name)


def insert(key, created_at):
    db = SessionLocal()
    try:
        db.add(Message(
            conversation_key=key,
            sender_id=7,
            receiver_id=1,
            sender_role=Role.USER,
            body=encrypt_message("old"),
            created_at=created_at,
            read_by_user=True,
        ))
        db.commit()
    finally:
        db.close()


@pytest.mark.asyncio
async def test_admin_message_reaches_every_tab_of_the_buyer(connect, make_user):
    admin, buyer, stranger = make_user(1, Role.ADMIN), make_user(9), make_user(10)
    key = "user_9_vehicle_3_admin_1"

    admin_conn = connect()
    await rooms.join(admin_conn, key, rooms_identity(admin))
    tab_one, tab_two = connect(buyer), connect(buyer)
    other = connect(stranger)

    await on_send_message(admin_conn, {
        "conversationKey": key, "senderId": 1, "receiverId": 9, "body": "Your car is ready",
    })

    for tab in (tab_one, tab_two):
        assert tab.websocket.events("update_notification_count") == [
            {"type": "update_notification_count", "data": None}
        ]
    assert other.websocket.frames == []

    [echo] = admin_conn.websocket.events("receive_message")
    assert echo["data"]["body"] == "Your car is ready"
    assert echo["data"]["senderRole"] == "admin"


@pytest.mark.asyncio
async def test_buyer_message_notifies_admin_outside_the_room(connect, make_user):
    admin, buyer = make_user(1, Role.ADMIN), make_user(7)
    other_admin = make_user(2, Role.ADMIN)
    key = "user_7_vehicle_3_admin_1"

    buyer_conn = connect()
    await rooms.join(buyer_conn, key, rooms_identity(buyer))
    admin_dashboard = connect(admin)
    other_dashboard = connect(other_admin)

    await on_send_message(buyer_conn, {
        "conversationKey": key, "senderId": 7, "receiverId": 1, "body": "Merhaba",
    })

    [unread] = admin_dashboard.websocket.events("admin_new_unread_message")
    assert unread["data"]["conversationKey"] == key
    assert unread["data"]["message"]["body"] == "Merhaba"
    assert other_dashboard.websocket.events("admin_new_unread_message") == []

    # Every admin connection refreshes its list
    assert len(admin_dashboard.websocket.events("admin_refresh_conversations")) == 1
    assert len(other_dashboard.websocket.events("admin_refresh_conversations")) == 1
    assert buyer_conn.websocket.events("admin_refresh_conversations") == []


@pytest.mark.asyncio
async def test_denied_send_persists_and_pushes_nothing(connect, make_user):
    buyer = make_user(7)
    key = "user_7_vehicle_3_admin_1"
    buyer_conn = connect()
    await rooms.join(buyer_conn, key, rooms_identity(buyer))
    admin_dashboard = connect(make_user(1, Role.ADMIN))
    buyer_conn.websocket.frames.clear()

    # Claims to be the admin
    await on_send_message(buyer_conn, {
        "conversationKey": key, "senderId": 1, "receiverId": 7, "body": "forged",
    })

    assert store.history(key) == []
    assert buyer_conn.websocket.frames == []
    assert admin_dashboard.websocket.frames == []


@pytest.mark.asyncio
async def test_reset_is_acknowledged_to_requesting_connection_only(connect, make_user):
    admin, buyer = make_user(1, Role.ADMIN), make_user(7)
    key = "user_7_vehicle_3_admin_1"
    buyer_conn = connect()
    await rooms.join(buyer_conn, key, rooms_identity(buyer))
    await on_send_message(buyer_conn, {
        "conversationKey": key, "senderId": 7, "receiverId": 1, "body": "Merhaba",
    })
    requester, second_tab = connect(admin), connect(admin)

    await on_admin_cleared_notifications(requester, {"adminId": 1, "conversationKey": key})

    assert requester.websocket.events("notifications_were_reset")
    assert second_tab.websocket.events("notifications_were_reset") == []
    assert store.unread_conversation_count(1, Role.ADMIN) == 0


@pytest.mark.asyncio
async def test_reset_for_someone_else_is_dropped(connect, make_user):
    make_user(7)
    mallory = connect(make_user(8))
    await on_user_cleared_notifications(mallory, {"userId": 7})
    assert mallory.websocket.frames == []

    await on_user_cleared_notifications(mallory, {"userId": 8})
    assert mallory.websocket.events("user_notifications_were_reset")


@pytest.mark.asyncio
async def test_sweep_deletes_only_expired_rows_and_refreshes_once(connect, make_user):
    now = utcnow()
    insert("user_7_vehicle_3_admin_1", now - timedelta(days=4))
    insert("user_7_vehicle_3_admin_1", now - timedelta(hours=1))
    dashboards = [connect(make_user(1, Role.ADMIN)), connect(make_user(2, Role.ADMIN))]
    buyer_conn = connect(make_user(7))

    assert await sweep_once(store, timedelta(hours=72), now=now) == 1

    [survivor] = store.history("user_7_vehicle_3_admin_1")
    assert survivor.created_at == now - timedelta(hours=1)
    for dashboard in dashboards:
        assert len(dashboard.websocket.events("admin_refresh_conversations")) == 1
    assert buyer_conn.websocket.frames == []


@pytest.mark.asyncio
async def test_sweep_with_nothing_expired_is_silent(connect, make_user):
    insert("user_7_vehicle_3_admin_1", utcnow() - timedelta(hours=1))
    dashboard = connect(make_user(1, Role.ADMIN))

    assert await sweep_once(store, timedelta(hours=72)) == 0
    assert dashboard.websocket.frames == []


@pytest.mark.asyncio
async def test_failed_sweep_does_not_stop_the_schedule(monkeypatch):
    attempts = []
    sleeps = []

    class BrokenStore:
        def purge_older_than(self, horizon):
            attempts.append(horizon)
            raise RuntimeError("database is down")

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 2:
            raise asyncio.CancelledError

    monkeypatch.setattr(retention.asyncio, "sleep", fake_sleep)
    with pytest.raises(asyncio.CancelledError):
        await retention.retention_loop(BrokenStore(), timedelta(hours=72), 0, "Europe/Istanbul")

    assert len(attempts) == 2
    assert all(0 < s <= 86400 + retention.MIN_GAP.total_seconds() for s in sleeps)


@pytest.mark.parametrize("now,hour,expected", [
    # 23:00 local
    (datetime(2026, 1, 1, 20, 0, tzinfo=timezone.utc), 0, 3600),
    # Exactly on the tick waits a full day
    (datetime(2026, 1, 1, 21, 0, tzinfo=timezone.utc), 0, 86400),
    # 05:30 local, sweep at 06:00
    (datetime(2026, 1, 2, 2, 30, tzinfo=timezone.utc), 6, 1800),
    # Woke a few milliseconds early after the midnight sweep
    (datetime(2026, 1, 1, 20, 59, 59, 990000, tzinfo=timezone.utc), 0, 86400.01),
])
def test_seconds_until_next_run(now, hour, expected):
    assert seconds_until_next_run(hour, ISTANBUL, now=now) == pytest.approx(expected)


@pytest.mark.asyncio
async def test_event_bus_isolates_failing_handlers():
    bus = EventBus()
    seen = []

    @bus.on("thing.happened")
    async def broken(data):
        raise ValueError("boom")

    @bus.on("thing.happened")
    def recorder(data):
        seen.append(data)

    assert await bus.emit("thing.happened", 42) == 1
    assert seen == [42]
    assert await bus.emit("nobody.listens") == 0

    bus.remove_handler("thing.happened", broken)
    assert bus.get_handler_count("thing.happened") == 1