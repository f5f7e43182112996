"""Tests for message-id reference extraction."""

import pytest

from reference_extractor import extract_references


@pytest.mark.parametrize("body", ["", "hello", "see you at 10:30", "[info]notice[/info]"])
def test_markup_free_body_has_no_references(body):
    assert extract_references(body) == set()


@pytest.mark.parametrize(
    "body, expected",
    [
        ("reply: 1", {"1"}),
        ("Reply:42 thanks", {"42"}),
        ("QUOTE: 7", {"7"}),
        ("返信: 123", {"123"}),
        ("返信：123", {"123"}),
        ("引用:456 そうですね", {"456"}),
        ("[rp aid=1234 to=368838329-2015782344493105152]Bob\nok", {"2015782344493105152"}),
        ("[qtmeta aid=1 time=1700000000 to=368838329-99]", {"99"}),
        ("https://www.chatwork.com/#!rid368838329-2015782344493105152", {"2015782344493105152"}),
        ("see to=1-55 for context", {"55"}),
    ],
)
def test_each_marker_captures_message_id(body, expected):
    assert extract_references(body) == expected


def test_room_component_is_discarded():
    refs = extract_references("[rp aid=1 to=111-222]")
    assert refs == {"222"}
    assert "111" not in refs


def test_distinct_markers_are_unioned():
    body = (
        "[rp aid=1 to=9-10]\n"
        "[qt][qtmeta aid=2 time=3 to=9-20]quoted[/qt]\n"
        "reply: 30\n"
        "引用: 40\n"
        "https://www.chatwork.com/#!rid9-50"
    )
    assert extract_references(body) == {"10", "20", "30", "40", "50"}


def test_duplicate_references_collapse():
    body = "reply: 5\n返信: 5\n[rp aid=1 to=9-5]"
    assert extract_references(body) == {"5"}


def test_partial_markup_contributes_nothing():
    assert extract_references("[rp aid=1 to=]") == set()
    assert extract_references("reply: soon") == set()
    assert extract_references("rid-12") == set()


def test_english_label_requires_word_boundary():
    assert extract_references("autoreply: 9") == set()
