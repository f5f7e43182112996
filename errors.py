"""Exceptions raised by the thread assembly engine."""

from typing import List, Optional


class ChatworkThreadError(Exception):
    pass


class ConfigError(ChatworkThreadError):
    pass


class NotFoundError(ChatworkThreadError):
    """A message, thread or membership that the operation needs does not exist."""


class MessageAlreadyExistsError(ChatworkThreadError):
    """The root message is already a member of one or more threads."""

    def __init__(self, message_id: str, thread_ids: List[int]):
        self.message_id = message_id
        self.thread_ids = list(thread_ids)
        ids = ", ".join(str(t) for t in self.thread_ids)
        super().__init__(f"Message {message_id} already exists in thread(s): {ids}")


class AnalysisError(ChatworkThreadError):
    """Wraps a failure during fetch, expansion or persistence of a thread."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        self.message_id = message_id
        if message_id:
            message = f"{message} (message {message_id})"
        super().__init__(message)
