"""Tests for the Chatwork HTTP client using a stub requests session."""

import json

import pytest
import requests

import chatwork_client
from chatwork_client import (
    ChatworkAPIError,
    ChatworkClient,
    MessageNotFoundError,
    parse_message_ref,
)
from config import Config
from errors import ConfigError

ROOM = "368838329"


class StubResponse:
    def __init__(self, status_code=200, payload=None, headers=None):
        self.status_code = status_code
        self.headers = headers or {}
        self.text = json.dumps(payload) if payload is not None else ""
        self.content = self.text.encode("utf-8")

    def json(self):
        return json.loads(self.text)


class StubSession:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(chatwork_client.time, "sleep", sleeps.append)
    return sleeps


def _client(*responses):
    session = StubSession(responses)
    client = ChatworkClient(Config(api_token="secret", retry_delay=1.0), session=session)
    return client, session


def _api_message(message_id, body="hello", send_time=1700000000):
    return {
        "message_id": message_id,
        "account": {"account_id": 42, "name": "Alice"},
        "body": body,
        "send_time": send_time,
        "update_time": 0,
    }


def test_token_header_is_set():
    _, session = _client()
    assert session.headers["X-ChatWorkToken"] == "secret"


def test_missing_token_is_a_config_error():
    with pytest.raises(ConfigError):
        ChatworkClient(Config(api_token=""), session=StubSession([]))


def test_get_message():
    client, session = _client(StubResponse(payload=_api_message("99", "reply: 1")))
    message = client.get_message(ROOM, "99")

    assert session.requests[0][0] == f"https://api.chatwork.com/v2/rooms/{ROOM}/messages/99"
    assert message.id == "99"
    assert message.content == "reply: 1"
    assert message.room_id == ROOM
    assert message.sender_id == "42"
    assert message.sender_name == "Alice"


def test_get_message_not_found():
    client, _ = _client(StubResponse(status_code=404, payload={"errors": ["not found"]}))
    with pytest.raises(MessageNotFoundError, match="99"):
        client.get_message(ROOM, "99")


def test_get_messages_forces_refresh():
    payload = [_api_message("1"), _api_message("2", "reply: 1")]
    client, session = _client(StubResponse(payload=payload))

    messages = client.get_messages(ROOM, force_refresh=True)

    assert [m.id for m in messages] == ["1", "2"]
    assert session.requests[0][1] == {"force": 1}


def test_get_messages_no_content():
    client, session = _client(StubResponse(status_code=204))
    assert client.get_messages(ROOM) == []
    assert session.requests[0][1] == {"force": 0}


def test_rate_limited_then_success(no_sleep):
    client, session = _client(
        StubResponse(status_code=429, headers={"Retry-After": "5"}),
        StubResponse(payload=_api_message("1")),
    )
    assert client.get_message(ROOM, "1").id == "1"
    assert len(session.requests) == 2
    assert 5.0 in no_sleep


def test_rate_limited_until_retries_run_out():
    client, _ = _client(*[StubResponse(status_code=429)] * 3)
    with pytest.raises(ChatworkAPIError) as excinfo:
        client.get_messages(ROOM)
    assert excinfo.value.status == 429


def test_transport_error_is_retried():
    client, session = _client(
        requests.exceptions.ConnectionError("reset"),
        StubResponse(payload=[_api_message("1")]),
    )
    assert len(client.get_messages(ROOM, force_refresh=True)) == 1
    assert len(session.requests) == 2


def test_transport_error_gives_up():
    client, _ = _client(*[requests.exceptions.Timeout("slow")] * 3)
    with pytest.raises(ChatworkAPIError):
        client.get_messages(ROOM)


def test_server_error_is_not_retried():
    client, session = _client(StubResponse(status_code=500, payload={"errors": ["oops"]}))
    with pytest.raises(ChatworkAPIError) as excinfo:
        client.get_messages(ROOM)
    assert excinfo.value.status == 500
    assert len(session.requests) == 1


@pytest.mark.parametrize(
    "ref, room, expected",
    [
        ("https://www.chatwork.com/#!rid368838329-2015782344493105152", None,
         ("2015782344493105152", "368838329")),
        ("#!rid1-2", "999", ("2", "1")),
        ("  12345 ", "777", ("12345", "777")),
        ("12345", None, ("12345", None)),
    ],
)
def test_parse_message_ref(ref, room, expected):
    parsed = parse_message_ref(ref, room)
    assert (parsed.message_id, parsed.room_id) == expected


@pytest.mark.parametrize("ref", ["", "abc", "12a", "https://www.chatwork.com/#!rid-1"])
def test_parse_message_ref_rejects_garbage(ref):
    with pytest.raises(ValueError):
        parse_message_ref(ref)


def test_message_ref_url_round_trip():
    ref = parse_message_ref("55", "11")
    assert ref.url == "https://www.chatwork.com/#!rid11-55"
    assert parse_message_ref(ref.url) == ref
