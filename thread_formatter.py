"""Render a thread and its messages as text, markdown, JSON or HTML."""

import html
import json
import re
from datetime import datetime
from typing import Dict, List, Optional

from models import Message, MessageRef, RelationshipType, Thread, ThreadMembership

FORMATS = ("text", "markdown", "json", "html")

_RELATIONSHIP_BADGES = {
    RelationshipType.ROOT: "[root]",
    RelationshipType.REPLY: "[reply]",
    RelationshipType.QUOTE: "[quote]",
    RelationshipType.MANUAL: "[manual]",
}


def _timestamp(send_time: int) -> str:
    return datetime.fromtimestamp(send_time).strftime("%Y-%m-%d %H:%M:%S")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _message_url(message: Message) -> str:
    return MessageRef(message_id=message.id, room_id=message.room_id).url


def _relationships(memberships: List[ThreadMembership]) -> Dict[str, RelationshipType]:
    return {m.message_id: m.relationship_type for m in memberships}


def format_text(
    thread: Thread,
    messages: List[Message],
    memberships: List[ThreadMembership],
    include_metadata: bool = False,
) -> str:
    relationships = _relationships(memberships)
    bar = "\u2550" * 80  # ═
    rule = "\u2500" * 50  # ─

    lines = [f"Thread: {thread.name}", f"ID: {thread.id}"]
    if thread.description:
        lines.append(f"Description: {thread.description}")
    if include_metadata:
        lines.append(f"Created: {_iso(thread.created_at)}")
        lines.append(f"Updated: {_iso(thread.updated_at)}")
    lines.append(f"Messages: {len(messages)}")
    lines.append(bar)
    lines.append("")

    for index, message in enumerate(messages, 1):
        badge = _RELATIONSHIP_BADGES.get(relationships.get(message.id), "")
        lines.append(f"Message {index} {badge}".rstrip())
        lines.append(f"{message.sender_name} | {_timestamp(message.send_time)}")
        if include_metadata:
            lines.append(f"Message ID: {message.id}")
            lines.append(f"Room ID: {message.room_id}")
            lines.append(f"URL: {_message_url(message)}")
        lines.append(rule)
        lines.append(message.content)
        lines.append(rule)
        lines.append("")

    return "\n".join(lines)


def format_markdown(
    thread: Thread,
    messages: List[Message],
    memberships: List[ThreadMembership],
    include_metadata: bool = False,
) -> str:
    relationships = _relationships(memberships)

    parts = [f"# Thread: {thread.name}", "", f"**Thread ID:** {thread.id}", ""]
    if thread.description:
        parts += [f"**Description:** {thread.description}", ""]
    if include_metadata:
        parts += [f"**Created:** {_iso(thread.created_at)}", ""]
        parts += [f"**Updated:** {_iso(thread.updated_at)}", ""]
    parts += [f"**Messages:** {len(messages)}", "", "---", ""]

    for index, message in enumerate(messages, 1):
        relationship = relationships.get(message.id)
        kind = f" ({relationship.value})" if relationship else ""
        parts += [f"## Message {index}{kind}", ""]
        parts += [
            f"**Sender:** {message.sender_name} | **Time:** {_timestamp(message.send_time)}",
            "",
        ]
        if include_metadata:
            parts += [f"**Message ID:** [{message.id}]({_message_url(message)})", ""]
            parts += [f"**Room ID:** {message.room_id}", ""]
        parts += ["```", message.content, "```", ""]

    return "\n".join(parts)


def format_json(
    thread: Thread,
    messages: List[Message],
    memberships: List[ThreadMembership],
    include_metadata: bool = False,
) -> str:
    relationships = _relationships(memberships)

    thread_data = {
        "id": thread.id,
        "name": thread.name,
        "description": thread.description,
    }
    if include_metadata:
        thread_data["created_at"] = _iso(thread.created_at)
        thread_data["updated_at"] = _iso(thread.updated_at)

    message_data = []
    for message in messages:
        relationship = relationships.get(message.id)
        item = {
            "id": message.id,
            "content": message.content,
            "sender_name": message.sender_name,
            "send_time": message.send_time,
            "relationship_type": relationship.value if relationship else None,
        }
        if include_metadata:
            item["room_id"] = message.room_id
            item["sender_id"] = message.sender_id
            item["url"] = _message_url(message)
        message_data.append(item)

    return json.dumps(
        {"thread": thread_data, "messages": message_data},
        indent=2,
        ensure_ascii=False,
    )


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

_DOWNLOAD_URL = (
    "https://www.chatwork.com/gateway/download_file.php"
    "?bin=1&amp;file_id={file_id}&amp;preview=0"
)

# Applied in order to already-escaped content.  Quote metadata goes before
# [qt] blocks, bare URLs before the markup that inserts links of its own.
_QTMETA_RE = re.compile(r"\[qtmeta\s+aid=\d+\s+time=(\d+)(?:\s+to=\d+-\d+)?\]")
_URL_RE = re.compile(r"https?://[^\s<>\"'&]+(?:&amp;[^\s<>\"'&]+)*")
_REPLY_TAG_RE = re.compile(r"\[rp\s+aid=\d+\s+to=(\d+)-(\d+)\]")
_QUOTE_BLOCK_RE = re.compile(r"\[qt\](.+?)\[/qt\]", re.DOTALL)
_MENTION_RE = re.compile(r"\[To:(\d+)\](.+?)\[/To\]")
_CODE_RE = re.compile(r"\[code\](.+?)\[/code\]", re.DOTALL)
_INFO_PREVIEW_RE = re.compile(
    r"\[info\].*?\[preview\s+id=(\d+)\s+ht=\d+\].*?"
    r"\[download:(\d+)\](.+?)\[/download\].*?\[/info\]",
    re.DOTALL,
)
_INFO_DOWNLOAD_RE = re.compile(r"\[info\]\[download:(\d+)\](.+?)\[/download\]\[/info\]")

_PAGE_STYLE = """
        body {
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
            line-height: 1.6;
            color: #333;
            max-width: 800px;
            margin: 0 auto;
            padding: 20px;
            background: #f5f5f5;
        }
        .thread-header, .message {
            background: white;
            padding: 16px 20px;
            border-radius: 8px;
            box-shadow: 0 2px 4px rgba(0,0,0,0.1);
            margin-bottom: 16px;
        }
        .thread-title { font-size: 24px; font-weight: bold; color: #2c3e50; }
        .thread-meta, .message-metadata { font-size: 13px; color: #6c757d; }
        .stats { text-align: center; color: #6c757d; margin-bottom: 16px; }
        .message-header {
            display: flex;
            justify-content: space-between;
            border-bottom: 1px solid #eee;
            margin-bottom: 8px;
        }
        .message-sender { font-weight: bold; }
        .message-time { font-size: 13px; color: #6c757d; }
        .relationship { font-size: 11px; background: #e9ecef; border-radius: 3px; padding: 1px 6px; }
        .message-content { word-wrap: break-word; }
        .auto-link { word-break: break-all; }
        .mention { color: #0366d6; font-weight: bold; }
        .code-block { background: #f6f8fa; padding: 8px; border-radius: 4px; overflow-x: auto; }
        .file-attachment a { color: #0366d6; }
        .reply-icon { font-size: 11px; background: #0366d6; color: white; border-radius: 3px; padding: 1px 4px; }
        .quote-block { border-left: 3px solid #ccc; margin: 8px 0; padding-left: 12px; color: #555; }
        .quote-time { font-size: 11px; color: #6c757d; background: #e9ecef; padding: 2px 6px; border-radius: 3px; }
"""


def _esc(text: str) -> str:
    return html.escape(text, quote=True)


def _quote_time(match: re.Match) -> str:
    stamp = datetime.fromtimestamp(int(match.group(1))).strftime("%Y/%m/%d (%a)")
    return f'<span class="quote-time">{stamp}</span>'


def _file_link(file_id: str, filename: str) -> str:
    url = _DOWNLOAD_URL.format(file_id=file_id)
    return (
        f'<div class="file-attachment">'
        f'<a href="{url}" target="_blank" rel="noopener">{filename.strip()}</a>'
        f'</div>'
    )


def render_markup(content: str) -> str:
    """Escape a message body and turn Chatwork markup into HTML."""
    text = _esc(content).replace("\n", "<br>")
    text = _QTMETA_RE.sub(_quote_time, text)
    text = _URL_RE.sub(
        lambda m: f'<a href="{m.group(0)}" target="_blank" rel="noopener" '
                  f'class="auto-link">{m.group(0)}</a>',
        text,
    )
    text = _REPLY_TAG_RE.sub(
        lambda m: f'<a href="{MessageRef(message_id=m.group(2), room_id=m.group(1)).url}" '
                  f'target="_blank" rel="noopener" class="reply-link">'
                  f'<span class="reply-icon">[RE]</span></a>',
        text,
    )
    text = _QUOTE_BLOCK_RE.sub(r'<blockquote class="quote-block">\1</blockquote>', text)
    text = _MENTION_RE.sub(r'<span class="mention">@\2</span>', text)
    text = _CODE_RE.sub(r'<pre class="code-block"><code>\1</code></pre>', text)
    text = _INFO_PREVIEW_RE.sub(lambda m: _file_link(m.group(2), m.group(3)), text)
    text = _INFO_DOWNLOAD_RE.sub(lambda m: _file_link(m.group(1), m.group(2)), text)
    return text


def format_html(
    thread: Thread,
    messages: List[Message],
    memberships: List[ThreadMembership],
    include_metadata: bool = False,
) -> str:
    relationships = _relationships(memberships)

    header = [
        '<div class="thread-header">',
        f'<div class="thread-title">{_esc(thread.name)}</div>',
        f'<div class="thread-meta">Thread ID: {thread.id}</div>',
    ]
    if thread.description:
        header.append(
            f'<div class="thread-description"><strong>Description:</strong><br>'
            f'{_esc(thread.description)}</div>'
        )
    if include_metadata:
        header.append(f'<div class="thread-meta">Created: {_iso(thread.created_at)}</div>')
        header.append(f'<div class="thread-meta">Updated: {_iso(thread.updated_at)}</div>')
    header.append("</div>")

    body = []
    for message in messages:
        relationship = relationships.get(message.id)
        badge = (
            f' <span class="relationship">{relationship.value}</span>' if relationship else ""
        )
        body.append('<div class="message">')
        body.append('<div class="message-header">')
        body.append(f'<div class="message-sender">{_esc(message.sender_name)}{badge}</div>')
        body.append(f'<div class="message-time">{_timestamp(message.send_time)}</div>')
        body.append("</div>")
        body.append(f'<div class="message-content">{render_markup(message.content)}</div>')
        if include_metadata:
            body.append(
                f'<div class="message-metadata">Message ID: '
                f'<a href="{_message_url(message)}" target="_blank" rel="noopener">{message.id}</a>'
                f' | Room ID: {_esc(message.room_id)}</div>'
            )
        body.append("</div>")

    header_html = "\n".join(header)
    body_html = "\n".join(body)
    return f"""<!DOCTYPE html>
<html lang="ja">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Thread: {_esc(thread.name)}</title>
    <style>{_PAGE_STYLE}    </style>
</head>
<body>
{header_html}
<div class="stats">Total Messages: {len(messages)}</div>
{body_html}
</body>
</html>
"""


def format_thread(
    thread: Thread,
    messages: List[Message],
    memberships: List[ThreadMembership],
    fmt: str = "text",
    include_metadata: bool = False,
) -> str:
    formatters = {
        "text": format_text,
        "markdown": format_markdown,
        "json": format_json,
        "html": format_html,
    }
    if fmt not in formatters:
        raise ValueError(f"Unknown format {fmt!r}; expected one of {', '.join(FORMATS)}")
    return formatters[fmt](thread, messages, memberships, include_metadata)
