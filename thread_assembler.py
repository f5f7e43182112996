"""Thread assembly: fetch -> expand -> classify -> persist.

The assembler talks to two collaborators:

    source  get_message(room_id, message_id) -> Message
            get_messages(room_id, force_refresh) -> list[Message]
            (ChatworkClient in production)

    store   save_message / save_messages, create_thread, get_thread,
            add_membership, remove_membership, get_memberships,
            get_thread_memberships, check_message_in_threads,
            run_atomically(fn)
            (ThreadStore in production)

Nothing is written for a thread until every network fetch it needs has
completed, and all membership rows of one creation or refresh are written in
a single transaction.
"""

import logging
from typing import Callable, List, Optional

from chatwork_client import parse_message_ref
from duplicate_guard import DuplicateGuard
from errors import AnalysisError, NotFoundError
from models import Message, MessageRef, RelationshipType, Thread, ThreadMembership
from relationship_classifier import classify
from thread_graph import ThreadGraphBuilder

logger = logging.getLogger(__name__)

_NAME_PREVIEW_CHARS = 50


def _default_thread_name(root: Message) -> str:
    """'Thread: <first line of the root message>', truncated to 50 chars."""
    lines = root.content.strip().splitlines()
    first_line = lines[0].strip() if lines else ""
    if not first_line:
        return f"Thread: {root.id}"
    if len(first_line) > _NAME_PREVIEW_CHARS:
        return f"Thread: {first_line[:_NAME_PREVIEW_CHARS]}..."
    return f"Thread: {first_line}"


class ThreadAssembler:
    def __init__(
        self,
        source,
        store,
        graph_builder: Optional[ThreadGraphBuilder] = None,
        classifier: Callable[[str], RelationshipType] = classify,
    ):
        self.source = source
        self.store = store
        self.graph_builder = graph_builder or ThreadGraphBuilder()
        self.classifier = classifier
        self.duplicate_guard = DuplicateGuard(store)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fetch_room(self, room_id: str, message_id: str) -> List[Message]:
        try:
            return self.source.get_messages(room_id, force_refresh=True)
        except NotFoundError:
            raise
        except Exception as e:
            raise AnalysisError(f"Failed to fetch messages of room {room_id}: {e}", message_id) from e

    def _fetch_message(self, ref: MessageRef) -> Message:
        try:
            return self.source.get_message(ref.room_id, ref.message_id)
        except NotFoundError:
            raise
        except Exception as e:
            raise AnalysisError(f"Failed to fetch message: {e}", ref.message_id) from e

    def _cache_messages(self, messages: List[Message], message_id: str) -> None:
        try:
            saved = self.store.save_messages(messages)
        except Exception as e:
            raise AnalysisError(f"Failed to cache fetched messages: {e}", message_id) from e
        logger.debug("Cached %d messages", saved)

    def _add_classified(self, thread_id: int, messages: List[Message], skip_id: str = "") -> None:
        """Add each message with its classified type.  Must run inside run_atomically."""
        for message in messages:
            if message.id == skip_id:
                continue
            relationship = self.classifier(message.content)
            self.store.add_membership(thread_id, message.id, relationship)
            logger.debug("  + %s as %s", message.id, relationship.value)

    def _root_message(self, thread_id: int) -> Optional[Message]:
        """The thread's ROOT message, or its oldest member if it has no root."""
        for membership in self.store.get_memberships(thread_id):
            if membership.relationship_type == RelationshipType.ROOT:
                return self.store.get_message(membership.message_id)
        members = self.store.get_thread_memberships(thread_id)
        return members[0] if members else None

    def _thread_room(self, thread_id: int) -> Optional[str]:
        root = self._root_message(thread_id)
        return root.room_id if root else None

    def _require_thread(self, thread_id: int) -> Thread:
        thread = self.store.get_thread(thread_id)
        if thread is None:
            raise NotFoundError(f"Thread {thread_id} not found")
        return thread

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_thread(
        self,
        root_message_ref: str,
        room_id: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        force_double: bool = False,
    ) -> Thread:
        """Build and persist the thread anchored at *root_message_ref*.

        Args:
            root_message_ref: Bare message id or Chatwork URL
                ('https://www.chatwork.com/#!rid<room>-<message>').
            room_id: Room of a bare message id.  Ignored for URLs.
            name: Thread name.  Defaults to a preview of the root message.
            description: Optional free text.
            force_double: Skip the duplicate check, allowing the root to
                belong to several threads.

        Raises:
            ValueError: the reference cannot be parsed or has no room.
            MessageAlreadyExistsError: root already threaded, no force_double.
            NotFoundError: root message does not exist.
            AnalysisError: any other failure; nothing is persisted for the
                thread in that case.
        """
        ref = parse_message_ref(root_message_ref, room_id)
        if not ref.room_id:
            raise ValueError(
                f"Room id is required for bare message id {ref.message_id}; "
                "pass room_id or a Chatwork URL"
            )
        root_id = ref.message_id

        if not force_double:
            self.duplicate_guard.ensure_unthreaded(root_id)

        logger.info("Analyzing thread from root message %s (room %s)", root_id, ref.room_id)

        root = self._fetch_message(ref)
        pool = self._fetch_room(ref.room_id, root_id)
        logger.info("Retrieved %d messages from room %s", len(pool), ref.room_id)
        # The room history window may not reach back to an old root
        if not any(m.id == root_id for m in pool):
            pool = [root] + pool

        self._cache_messages(pool, root_id)

        try:
            related = self.graph_builder.expand(root_id, pool)
        except NotFoundError:
            raise
        except Exception as e:
            raise AnalysisError(f"Failed to expand thread: {e}", root_id) from e
        logger.info("Found %d related messages", len(related))

        thread_name = name or _default_thread_name(root)

        def persist() -> Thread:
            thread = self.store.create_thread(thread_name, description)
            self.store.add_membership(thread.id, root_id, RelationshipType.ROOT)
            self._add_classified(thread.id, related, skip_id=root_id)
            return self.store.get_thread(thread.id)

        try:
            thread = self.store.run_atomically(persist)
        except Exception as e:
            raise AnalysisError(f"Failed to persist thread: {e}", root_id) from e

        logger.info("Thread created: %s (ID: %d, %d messages)", thread.name, thread.id, len(related))
        return thread

    def add_message_to_thread(
        self,
        thread_id: int,
        message_ref: str,
        relationship_type: RelationshipType = RelationshipType.MANUAL,
        room_id: Optional[str] = None,
    ) -> ThreadMembership:
        """Fetch one message and insert or replace its membership in a thread.

        The room comes from a URL reference, then *room_id*, then the room
        of the thread's existing messages.
        """
        if relationship_type == RelationshipType.ROOT:
            raise ValueError("A thread has exactly one root; use reply, quote or manual")

        self._require_thread(thread_id)
        ref = parse_message_ref(message_ref, room_id)
        room = ref.room_id or self._thread_room(thread_id)
        if not room:
            raise ValueError(f"Cannot determine room for message {ref.message_id}; pass room_id")

        for membership in self.store.get_memberships(thread_id):
            if (membership.message_id == ref.message_id
                    and membership.relationship_type == RelationshipType.ROOT):
                raise ValueError(f"Message {ref.message_id} is the root of thread {thread_id}")

        message = self._fetch_message(MessageRef(message_id=ref.message_id, room_id=room))

        def persist() -> ThreadMembership:
            self.store.save_message(message)
            return self.store.add_membership(thread_id, message.id, relationship_type)

        try:
            membership = self.store.run_atomically(persist)
        except Exception as e:
            raise AnalysisError(f"Failed to add message to thread {thread_id}: {e}", message.id) from e

        logger.info(
            "Message %s added to thread %d as %s",
            message.id, thread_id, relationship_type.value,
        )
        return membership

    def remove_message_from_thread(self, thread_id: int, message_id: str) -> None:
        """Delete a membership.  The store is left untouched on failure.

        Raises:
            NotFoundError: the message is not in the thread.
            ValueError: the message is the thread's root.
        """
        membership = next(
            (m for m in self.store.get_memberships(thread_id) if m.message_id == message_id),
            None,
        )
        if membership is None:
            raise NotFoundError(f"Message {message_id} not found in thread {thread_id}")
        if membership.relationship_type == RelationshipType.ROOT:
            raise ValueError(f"Cannot remove root message {message_id} from thread {thread_id}")

        self.store.remove_membership(thread_id, message_id)
        logger.info("Message %s removed from thread %d", message_id, thread_id)

    def refresh_thread(self, thread_id: int, room_id: Optional[str] = None) -> List[Message]:
        """Pull the latest room history and add newly related messages.

        Existing memberships keep their relationship types.

        Returns:
            The newly added messages, oldest first.
        """
        self._require_thread(thread_id)
        members = self.store.get_thread_memberships(thread_id)
        root = self._root_message(thread_id)
        room = room_id or (root.room_id if root else None)
        if not room:
            raise ValueError(f"Thread {thread_id} has no messages; pass room_id")

        anchor = root.id if root else ""
        pool = self._fetch_room(room, anchor)
        self._cache_messages(pool, anchor)

        member_ids = {m.id for m in members}
        try:
            # Pool copies come last so fresher content wins on duplicate ids
            related = self.graph_builder.expand_from(member_ids, members + pool)
        except Exception as e:
            raise AnalysisError(f"Failed to expand thread {thread_id}: {e}", anchor) from e

        new_messages = [m for m in related if m.id not in member_ids]
        if not new_messages:
            logger.info("No new related messages for thread %d", thread_id)
            return []

        try:
            self.store.run_atomically(
                lambda: self._add_classified(thread_id, new_messages)
            )
        except Exception as e:
            raise AnalysisError(f"Failed to refresh thread {thread_id}: {e}", anchor) from e

        logger.info("Added %d new related messages to thread %d", len(new_messages), thread_id)
        return new_messages
