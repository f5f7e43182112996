"""Shared fixtures: an in-memory Chatwork stand-in and a temp-file store."""

from datetime import datetime, timedelta, timezone

import pytest

from chatwork_client import MessageNotFoundError
from models import Message
from thread_store import ThreadStore

ROOM_ID = "368838329"


class FakeClock:
    """Advances one second per call so timestamp ordering is deterministic."""

    def __init__(self, start: datetime = datetime(2025, 2, 12, 9, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeSource:
    """Message source backed by a dict of room_id -> messages."""

    def __init__(self, messages=None):
        self.rooms = {}
        self.calls = []
        self.fail_with = None
        for message in messages or []:
            self.add(message)

    def add(self, message: Message) -> None:
        self.rooms.setdefault(message.room_id, []).append(message)

    def get_message(self, room_id, message_id):
        self.calls.append(("get_message", room_id, message_id))
        if self.fail_with is not None:
            raise self.fail_with
        for message in self.rooms.get(room_id, []):
            if message.id == message_id:
                return message
        raise MessageNotFoundError(f"Message {message_id} not found in room {room_id}")

    def get_messages(self, room_id, force_refresh=False):
        self.calls.append(("get_messages", room_id, force_refresh))
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.rooms.get(room_id, []))


def make_message(msg_id, content, send_time=None, room_id=ROOM_ID, sender="Alice"):
    return Message(
        id=str(msg_id),
        content=content,
        send_time=send_time if send_time is not None else int(msg_id) * 100,
        room_id=room_id,
        sender_id=f"acc-{sender.lower()}",
        sender_name=sender,
    )


@pytest.fixture
def msg():
    return make_message


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    return ThreadStore.from_path(str(tmp_path / "data" / "threads.db"), clock=clock)


@pytest.fixture
def room_messages():
    """A small room: 1 <- 2 <- 4 via tags, 3 unrelated, 5 quotes 1."""
    return [
        make_message("1", "Can someone review the API change?", sender="Alice"),
        make_message("2", f"[rp aid=222 to={ROOM_ID}-1]Bob\nLooks good to me", sender="Bob"),
        make_message("3", "Lunch anyone?", sender="Carol"),
        make_message("4", "返信: 2 ありがとうございます", sender="Alice"),
        make_message(
            "5",
            f"[qt][qtmeta aid=111 time=100 to={ROOM_ID}-1]Can someone review...[/qt]"
            "One more question",
            sender="Dave",
        ),
    ]


@pytest.fixture
def source(room_messages):
    return FakeSource(room_messages)
