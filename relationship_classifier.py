"""Coarse reply/quote/manual classification of a message body."""

import logging
import re

from models import RelationshipType

logger = logging.getLogger(__name__)

# Structural tags are matched case-sensitively, as Chatwork emits them.
# English labels are case-insensitive; Japanese labels have no case.
_REPLY_MARKERS = [
    re.compile(r"\[rp\s+aid="),
    re.compile(r"\[返信\]"),
    re.compile(r"返信\s*[:：]"),
    re.compile(r"\breply\s*[:：]", re.IGNORECASE),
]

_QUOTE_MARKERS = [
    re.compile(r"\[qt\]"),
    re.compile(r"\[qtmeta\s"),
    re.compile(r"\[引用\]"),
    re.compile(r"引用\s*[:：]"),
    re.compile(r"\bquote\s*[:：]", re.IGNORECASE),
]


def _has_marker(body: str, markers) -> bool:
    return any(marker.search(body) for marker in markers)


def classify(body: str) -> RelationshipType:
    """Classify what kind of markup a message uses.

    Reply markers win over quote markers; anything else is MANUAL.
    ROOT is never returned here, it belongs to the thread's origin only.
    """
    if not body:
        return RelationshipType.MANUAL
    if _has_marker(body, _REPLY_MARKERS):
        return RelationshipType.REPLY
    if _has_marker(body, _QUOTE_MARKERS):
        return RelationshipType.QUOTE
    return RelationshipType.MANUAL
