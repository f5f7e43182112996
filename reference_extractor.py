"""Extract message-id references from Chatwork message bodies."""

import logging
import re
from typing import Set

logger = logging.getLogger(__name__)

# Every pattern captures the referenced message id in group 1.  The room id
# part of "<room>-<message>" pairs is dropped: threads never span rooms.
_REFERENCE_PATTERNS = [
    (re.compile(r"返信\s*[:：]\s*(\d+)"), "labeled reply (ja)"),
    (re.compile(r"引用\s*[:：]\s*(\d+)"), "labeled quote (ja)"),
    (re.compile(r"\breply\s*[:：]\s*(\d+)", re.IGNORECASE), "labeled reply (en)"),
    (re.compile(r"\bquote\s*[:：]\s*(\d+)", re.IGNORECASE), "labeled quote (en)"),
    (re.compile(r"\[rp\s+aid=\d+\s+to=\d+-(\d+)\]"), "reply tag"),
    (re.compile(r"\[qtmeta\s+aid=\d+\s+time=\d+\s+to=\d+-(\d+)\]"), "quote metadata tag"),
    (re.compile(r"rid\d+-(\d+)"), "room-message id"),
    (re.compile(r"to=\d+-(\d+)"), "to= fragment"),
]


def extract_references(body: str) -> Set[str]:
    """Return the set of message ids that *body* refers to.

    Matches from all marker patterns are unioned, so a reply tag that also
    contains a ``to=`` fragment yields its id once.  Bodies without markup
    (including the empty string) give an empty set.
    """
    if not body:
        return set()

    references: Set[str] = set()
    for pattern, label in _REFERENCE_PATTERNS:
        for match in pattern.finditer(body):
            logger.debug("Matched %s -> %s", label, match.group(1))
            references.add(match.group(1))
    return references

