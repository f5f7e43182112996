"""Tests for thread rendering."""

import json
from datetime import datetime

import pytest

from models import RelationshipType, Thread, ThreadMembership
from thread_formatter import format_thread, render_markup

from conftest import ROOM_ID, make_message


@pytest.fixture
def thread():
    return Thread(
        id=7,
        name="API review",
        description="Notes",
        created_at=datetime(2025, 2, 12, 9, 0, 0),
        updated_at=datetime(2025, 2, 12, 10, 0, 0),
    )


@pytest.fixture
def messages():
    return [make_message("1", "Can we ship?"), make_message("2", "返信: 1 はい", sender="Bob")]


@pytest.fixture
def memberships():
    return [
        ThreadMembership(7, "1", RelationshipType.ROOT),
        ThreadMembership(7, "2", RelationshipType.REPLY),
    ]


def test_text(thread, messages, memberships):
    output = format_thread(thread, messages, memberships)

    assert output.startswith("Thread: API review\nID: 7\nDescription: Notes")
    assert "Messages: 2" in output
    assert "Message 1 [root]" in output
    assert "Message 2 [reply]" in output
    assert "返信: 1 はい" in output
    assert "Message ID:" not in output


def test_text_with_metadata(thread, messages, memberships):
    output = format_thread(thread, messages, memberships, include_metadata=True)
    assert "Created: 2025-02-12T09:00:00" in output
    assert "Message ID: 2" in output


def test_markdown(thread, messages, memberships):
    output = format_thread(thread, messages, memberships, fmt="markdown")
    assert output.startswith("# Thread: API review")
    assert "## Message 1 (root)" in output
    assert "## Message 2 (reply)" in output
    assert "**Sender:** Bob" in output


def test_json(thread, messages, memberships):
    data = json.loads(format_thread(thread, messages, memberships, fmt="json"))

    assert data["thread"] == {"id": 7, "name": "API review", "description": "Notes"}
    assert [m["relationship_type"] for m in data["messages"]] == ["root", "reply"]
    assert data["messages"][1]["content"] == "返信: 1 はい"
    assert "room_id" not in data["messages"][0]


def test_json_with_metadata(thread, messages, memberships):
    data = json.loads(
        format_thread(thread, messages, memberships, fmt="json", include_metadata=True)
    )
    assert data["thread"]["updated_at"] == "2025-02-12T10:00:00"
    assert data["messages"][0]["sender_id"] == "acc-alice"


def test_unknown_format(thread, messages, memberships):
    with pytest.raises(ValueError):
        format_thread(thread, messages, memberships, fmt="pdf")


def test_html_page(thread, messages, memberships):
    output = format_thread(thread, messages, memberships, fmt="html")

    assert output.startswith("<!DOCTYPE html>")
    assert "<title>Thread: API review</title>" in output
    assert "Total Messages: 2" in output
    assert '<span class="relationship">reply</span>' in output
    assert "返信: 1 はい" in output


def test_html_metadata_links_to_message(thread, messages, memberships):
    output = format_thread(thread, messages, memberships, fmt="html", include_metadata=True)
    assert f'href="https://www.chatwork.com/#!rid{ROOM_ID}-2"' in output
    assert "Created: 2025-02-12T09:00:00" in output


def test_html_escapes_names(messages, memberships):
    thread = Thread(id=1, name="<script>alert(1)</script>")
    output = format_thread(thread, messages, memberships, fmt="html")
    assert "<script>" not in output
    assert "&lt;script&gt;" in output


def test_markup_escapes_body_and_breaks_lines():
    assert render_markup('a < b & "c"\nnext') == "a &lt; b &amp; &quot;c&quot;<br>next"


def test_markup_quote_time():
    expected = datetime.fromtimestamp(1700000000).strftime("%Y/%m/%d (%a)")
    output = render_markup("[qtmeta aid=1 time=1700000000 to=9-10]")
    assert output == f'<span class="quote-time">{expected}</span>'


def test_markup_quote_block():
    output = render_markup("[qt]quoted text[/qt]after")
    assert output == '<blockquote class="quote-block">quoted text</blockquote>after'


def test_markup_reply_tag_links_to_message():
    output = render_markup("[rp aid=123 to=368838329-456]Bob")
    assert 'href="https://www.chatwork.com/#!rid368838329-456"' in output
    assert '<span class="reply-icon">[RE]</span></a>Bob' in output


def test_markup_mention():
    assert render_markup("[To:42]Alice[/To] hi") == '<span class="mention">@Alice</span> hi'


def test_markup_code_block():
    output = render_markup("[code]x = 1 < 2[/code]")
    assert output == '<pre class="code-block"><code>x = 1 &lt; 2</code></pre>'


def test_markup_auto_link():
    output = render_markup("see https://example.com/a?b=1&c=2 now")
    assert (
        '<a href="https://example.com/a?b=1&amp;c=2" target="_blank" rel="noopener" '
        'class="auto-link">https://example.com/a?b=1&amp;c=2</a> now'
    ) in output


def test_markup_file_download():
    output = render_markup("[info][download:555]report.pdf [/download][/info]")
    assert "file_id=555" in output
    assert ">report.pdf</a>" in output
    assert "[info]" not in output


def test_markup_file_with_preview():
    body = "[info][title]File[/title][preview id=77 ht=120][download:88]photo.png[/download][/info]"
    output = render_markup(body)
    assert "file_id=88" in output
    assert ">photo.png</a>" in output
    assert "[preview" not in output


def test_json_metadata_includes_message_url(thread, messages, memberships):
    data = json.loads(
        format_thread(thread, messages, memberships, fmt="json", include_metadata=True)
    )
    assert data["messages"][1]["url"] == f"https://www.chatwork.com/#!rid{ROOM_ID}-2"
