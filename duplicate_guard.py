"""At-most-one-thread-per-root-message check."""

import logging

from errors import MessageAlreadyExistsError
from models import DuplicateCheck

logger = logging.getLogger(__name__)


class DuplicateGuard:
    def __init__(self, store):
        self.store = store

    def check(self, message_id: str) -> DuplicateCheck:
        return self.store.check_message_in_threads(message_id)

    def ensure_unthreaded(self, message_id: str) -> None:
        """Raise MessageAlreadyExistsError if *message_id* already belongs to a thread."""
        result = self.check(message_id)
        if result.exists:
            logger.info(
                "Message %s already in thread(s) %s", message_id, result.thread_ids,
            )
            raise MessageAlreadyExistsError(message_id, result.thread_ids)
