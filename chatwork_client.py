"""HTTP client for the Chatwork REST API (v2)."""

import logging
import re
import time
from typing import Any, Dict, List, Optional

import requests

from config import Config
from errors import ChatworkThreadError, NotFoundError
from models import Message, MessageRef

logger = logging.getLogger(__name__)

_URL_REF_RE = re.compile(r"rid(\d+)-(\d+)")
_BARE_ID_RE = re.compile(r"^\d+$")


class ChatworkAPIError(ChatworkThreadError):
    def __init__(self, message: str, status: int = 0):
        self.status = status
        super().__init__(message)


class MessageNotFoundError(NotFoundError):
    pass


def parse_message_ref(ref: str, room_id: Optional[str] = None) -> MessageRef:
    """Parse a bare message id or a Chatwork URL.

    'https://www.chatwork.com/#!rid368838329-2015782344493105152' carries
    both ids; a bare '2015782344493105152' takes *room_id* (which may be None).

    Raises:
        ValueError: *ref* is neither form.
    """
    ref = (ref or "").strip()
    match = _URL_REF_RE.search(ref)
    if match:
        return MessageRef(message_id=match.group(2), room_id=match.group(1))
    if _BARE_ID_RE.match(ref):
        return MessageRef(message_id=ref, room_id=str(room_id) if room_id else None)
    raise ValueError(f"Not a Chatwork message id or URL: {ref!r}")


def _to_message(data: Dict[str, Any], room_id: str) -> Message:
    account = data.get("account") or {}
    return Message(
        id=str(data.get("message_id", "")),
        content=data.get("body", "") or "",
        send_time=int(data.get("send_time", 0) or 0),
        room_id=str(room_id),
        sender_id=str(account.get("account_id", "")),
        sender_name=account.get("name", "") or "",
    )


class ChatworkClient:
    def __init__(
        self,
        config: Config,
        rate_limit_delay: float = 0.2,
        session: Optional[requests.Session] = None,
    ):
        self.BASE_URL = config.base_url.rstrip("/")
        self.timeout = config.timeout
        self.max_retries = max(1, config.retry_attempts)
        self.retry_delay = config.retry_delay
        self.rate_limit_delay = rate_limit_delay
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-ChatWorkToken": config.require_token(),
            "User-Agent": "chatwork-thread/0.1.0",
        })
        self._last_request_time = 0.0

    def _rate_limit(self):
        elapsed = time.time() - self._last_request_time
        if elapsed < self.rate_limit_delay:
            time.sleep(self.rate_limit_delay - elapsed)
        self._last_request_time = time.time()

    def _get_with_retry(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self.BASE_URL}{path}"
        logger.debug("GET %s %s", url, params or "")
        for attempt in range(self.max_retries):
            self._rate_limit()
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                if attempt == self.max_retries - 1:
                    raise ChatworkAPIError(f"Request to {path} failed: {e}") from e
                wait = self.retry_delay * (2 ** attempt)
                logger.warning("Request failed, retrying in %.1fs", wait)
                time.sleep(wait)
                continue

            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After", "")
                if retry_after.isdigit():
                    wait = float(retry_after)
                else:
                    wait = self.retry_delay * (2 ** (attempt + 1))
                logger.warning("Rate limited (429), waiting %.1fs before retry", wait)
                time.sleep(wait)
                continue
            if response.status_code == 404:
                raise MessageNotFoundError(f"Not found: {path}")
            if response.status_code >= 400:
                raise ChatworkAPIError(
                    f"Chatwork API returned {response.status_code} for {path}: "
                    f"{response.text[:200]}",
                    status=response.status_code,
                )
            return response
        raise ChatworkAPIError(f"Failed after {self.max_retries} retries: {path}", status=429)

    def get_message(self, room_id: str, message_id: str) -> Message:
        """Fetch one message.

        Raises:
            MessageNotFoundError: the room has no such message.
            ChatworkAPIError: any other HTTP or transport failure.
        """
        try:
            response = self._get_with_retry(f"/rooms/{room_id}/messages/{message_id}")
        except MessageNotFoundError:
            raise MessageNotFoundError(
                f"Message {message_id} not found in room {room_id}"
            ) from None
        try:
            return _to_message(response.json(), room_id)
        except ValueError as e:
            raise ChatworkAPIError(f"Invalid JSON for message {message_id}: {e}") from e

    def get_messages(self, room_id: str, force_refresh: bool = False) -> List[Message]:
        """Fetch the room's message history.

        With force_refresh the API returns the latest messages regardless of
        what was read before; without it only unread messages come back and
        the API answers 204 when there are none.
        """
        response = self._get_with_retry(
            f"/rooms/{room_id}/messages",
            params={"force": 1 if force_refresh else 0},
        )
        if response.status_code == 204 or not response.content:
            logger.debug("No messages returned for room %s", room_id)
            return []
        try:
            payload = response.json()
        except ValueError as e:
            raise ChatworkAPIError(f"Invalid JSON for room {room_id} messages: {e}") from e

        messages = [_to_message(item, room_id) for item in payload or []]
        logger.debug("Room %s returned %d messages", room_id, len(messages))
        return messages
