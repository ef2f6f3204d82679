"""Tests for ReceiptCorrelator."""
import pytest

from duochat.chat.errors import NotAMember, UnknownMessage
from duochat.chat.membership import RoomMembershipRegistry
from duochat.chat.presence import PresenceTracker
from duochat.chat.receipts import ReceiptCorrelator
from helpers import settle


@pytest.fixture
def registry():
    return RoomMembershipRegistry()


@pytest.fixture
def presence(registry):
    return PresenceTracker(registry)


@pytest.fixture
def correlator(registry, presence):
    return ReceiptCorrelator(registry, presence)


def receipts(session):
    return session.connection.of_type("read_receipt")


@pytest.mark.asyncio
async def test_receipt_delivered_to_active_sender(
    correlator, registry, presence, make_session, store, alice, bob, room
):
    sender, reader = make_session(alice.id), make_session(bob.id)
    await presence.connect(sender)
    await registry.join(sender, room.id)
    message = store.insert_message(room.id, alice.id, "hi")

    assert await correlator.mark_read(reader, message.id) is True
    assert await correlator.mark_read(reader, message.id) is False
    await settle()

    assert receipts(sender) == [{
        "type": "read_receipt",
        "message_id": message.id,
        "chat_room_id": room.id,
        "read_by": bob.id,
    }]


@pytest.mark.asyncio
async def test_own_message_is_ignored(correlator, make_session, store, alice, room):
    message = store.insert_message(room.id, alice.id, "mine")
    assert await correlator.mark_read(make_session(alice.id), message.id) is False
    assert store.get_message(message.id).is_read is False


@pytest.mark.asyncio
async def test_unknown_message(correlator, make_session, alice):
    with pytest.raises(UnknownMessage):
        await correlator.mark_read(make_session(alice.id), 4040)


@pytest.mark.asyncio
async def test_outsider_cannot_mark_read(correlator, make_session, store, alice, carol, room):
    message = store.insert_message(room.id, alice.id, "private")
    with pytest.raises(NotAMember):
        await correlator.mark_read(make_session(carol.id), message.id)
    assert store.get_message(message.id).is_read is False


@pytest.mark.asyncio
async def test_receipt_held_until_sender_joins(
    correlator, registry, presence, make_session, store, alice, bob, room
):
    sender = make_session(alice.id)
    await presence.connect(sender)  # online but not viewing the room
    message = store.insert_message(room.id, alice.id, "hi")

    await correlator.mark_read(make_session(bob.id), message.id)
    await settle()
    assert receipts(sender) == []

    await registry.join(sender, room.id)
    assert await correlator.flush_pending(sender, room.id) == 1
    assert await correlator.flush_pending(sender, room.id) == 0
    await settle()

    assert [r["message_id"] for r in receipts(sender)] == [message.id]
    assert receipts(sender)[0]["read_by"] == bob.id
