"""SQLite-backed storage for cached messages, threads and memberships.

Tables:
    messages         one row per Chatwork message (id is the natural key)
    threads          user-defined threads
    thread_messages  (thread_id, message_id) membership with relationship type

Messages are upserted, so re-fetching a room overwrites cached content
(last write wins).  Memberships are upserted too: re-adding a message to a
thread changes its relationship type instead of duplicating the row.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, List, Optional, TypeVar

from sqlalchemy import event, func
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine, select

from errors import NotFoundError
from models import DuplicateCheck, Message, RelationshipType, Thread, ThreadMembership

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite keeps no offset, so stored values come back naive
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MessageRecord(SQLModel, table=True):
    __tablename__ = "messages"

    id: str = Field(primary_key=True)             # Chatwork message_id
    room_id: str = Field(index=True)
    sender_id: str = ""
    sender_name: str = ""
    content: str = ""
    send_time: int = Field(default=0, index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ThreadRecord(SQLModel, table=True):
    __tablename__ = "threads"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ThreadMessageRecord(SQLModel, table=True):
    __tablename__ = "thread_messages"

    thread_id: int = Field(foreign_key="threads.id", primary_key=True, ondelete="CASCADE")
    message_id: str = Field(
        foreign_key="messages.id", primary_key=True, index=True, ondelete="CASCADE"
    )
    relationship_type: str = RelationshipType.MANUAL.value
    added_at: datetime = Field(default_factory=_utcnow)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _to_message(record: MessageRecord) -> Message:
    return Message(
        id=record.id,
        content=record.content,
        send_time=record.send_time,
        room_id=record.room_id,
        sender_id=record.sender_id,
        sender_name=record.sender_name,
    )


def _to_thread(record: ThreadRecord) -> Thread:
    return Thread(
        id=record.id,
        name=record.name,
        description=record.description,
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


def _to_membership(record: ThreadMessageRecord) -> ThreadMembership:
    return ThreadMembership(
        thread_id=record.thread_id,
        message_id=record.message_id,
        relationship_type=RelationshipType(record.relationship_type),
        added_at=_as_utc(record.added_at),
    )


class ThreadStore:
    """Message/thread store over SQLModel.

    Usage
    -----
    store = ThreadStore.from_path("./data/threads.db")
    store.save_message(message)

    def persist():
        thread = store.create_thread("API discussion")
        store.add_membership(thread.id, message.id, RelationshipType.ROOT)
        return thread

    thread = store.run_atomically(persist)

    Every public method opens its own session and commits on return, unless
    it runs inside run_atomically(), in which case it joins the enclosing
    transaction and nothing is committed until the whole unit succeeds.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = _utcnow):
        self.engine = engine
        self.clock = clock
        self._atomic_session: Optional[Session] = None
        SQLModel.metadata.create_all(self.engine)

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "ThreadStore":
        engine = create_engine(database_url, echo=False)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return cls(engine, **kwargs)

    @classmethod
    def from_path(cls, db_path: str, **kwargs) -> "ThreadStore":
        """Open (creating if needed) a SQLite database file."""
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return cls.from_url(f"sqlite:///{db_path}", **kwargs)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Yield the atomic session if one is open, otherwise a fresh one."""
        if self._atomic_session is not None:
            yield self._atomic_session
            return
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def _require_thread(self, session: Session, thread_id: int) -> ThreadRecord:
        record = session.get(ThreadRecord, thread_id)
        if record is None:
            raise NotFoundError(f"Thread {thread_id} not found")
        return record

    def _touch(self, record: ThreadRecord) -> None:
        record.updated_at = self.clock()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def run_atomically(self, fn: Callable[[], T]) -> T:
        """Run *fn* in one transaction: commit if it returns, roll back if it raises.

        Nested calls join the outermost transaction.
        """
        if self._atomic_session is not None:
            return fn()

        with Session(self.engine, expire_on_commit=False) as session:
            self._atomic_session = session
            try:
                result = fn()
                session.commit()
                return result
            except Exception:
                session.rollback()
                logger.debug("Atomic unit rolled back")
                raise
            finally:
                self._atomic_session = None

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def save_message(self, message: Message) -> None:
        now = self.clock()
        with self._session() as session:
            record = session.get(MessageRecord, message.id)
            if record is None:
                record = MessageRecord(id=message.id, created_at=now)
            record.room_id = message.room_id
            record.sender_id = message.sender_id
            record.sender_name = message.sender_name
            record.content = message.content
            record.send_time = message.send_time
            record.updated_at = now
            session.add(record)

    def save_messages(self, messages: List[Message]) -> int:
        def save_all():
            for message in messages:
                self.save_message(message)
            return len(messages)

        return self.run_atomically(save_all)

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._session() as session:
            record = session.get(MessageRecord, message_id)
            return _to_message(record) if record else None

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def create_thread(self, name: str, description: Optional[str] = None) -> Thread:
        now = self.clock()
        with self._session() as session:
            record = ThreadRecord(
                name=name, description=description, created_at=now, updated_at=now,
            )
            session.add(record)
            session.flush()
            return _to_thread(record)

    def get_thread(self, thread_id: int) -> Optional[Thread]:
        with self._session() as session:
            record = session.get(ThreadRecord, thread_id)
            return _to_thread(record) if record else None

    def list_threads(self, limit: Optional[int] = None) -> List[Thread]:
        """Threads, most recently updated first."""
        with self._session() as session:
            query = select(ThreadRecord).order_by(
                ThreadRecord.updated_at.desc(), ThreadRecord.id.desc()
            )
            if limit:
                query = query.limit(limit)
            return [_to_thread(r) for r in session.exec(query).all()]

    def delete_thread(self, thread_id: int) -> bool:
        with self._session() as session:
            record = session.get(ThreadRecord, thread_id)
            if record is None:
                return False
            for membership in session.exec(
                select(ThreadMessageRecord).where(ThreadMessageRecord.thread_id == thread_id)
            ).all():
                session.delete(membership)
            session.delete(record)
            return True

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def add_membership(
        self,
        thread_id: int,
        message_id: str,
        relationship_type: RelationshipType = RelationshipType.MANUAL,
    ) -> ThreadMembership:
        """Insert or replace the (thread, message) membership and touch the thread."""
        now = self.clock()
        with self._session() as session:
            thread = self._require_thread(session, thread_id)
            record = session.get(
                ThreadMessageRecord, {"thread_id": thread_id, "message_id": message_id}
            )
            if record is None:
                record = ThreadMessageRecord(
                    thread_id=thread_id, message_id=message_id, added_at=now,
                )
            record.relationship_type = relationship_type.value
            session.add(record)
            self._touch(thread)
            session.add(thread)
            session.flush()
            return _to_membership(record)

    def remove_membership(self, thread_id: int, message_id: str) -> None:
        with self._session() as session:
            record = session.get(
                ThreadMessageRecord, {"thread_id": thread_id, "message_id": message_id}
            )
            if record is None:
                raise NotFoundError(f"Message {message_id} is not in thread {thread_id}")
            session.delete(record)
            thread = session.get(ThreadRecord, thread_id)
            if thread is not None:
                self._touch(thread)
                session.add(thread)

    def get_memberships(self, thread_id: int) -> List[ThreadMembership]:
        with self._session() as session:
            query = (
                select(ThreadMessageRecord)
                .where(ThreadMessageRecord.thread_id == thread_id)
                .order_by(ThreadMessageRecord.added_at, ThreadMessageRecord.message_id)
            )
            return [_to_membership(r) for r in session.exec(query).all()]

    def get_thread_memberships(self, thread_id: int) -> List[Message]:
        """Messages in a thread, oldest first."""
        with self._session() as session:
            query = (
                select(MessageRecord)
                .join(ThreadMessageRecord, ThreadMessageRecord.message_id == MessageRecord.id)
                .where(ThreadMessageRecord.thread_id == thread_id)
                .order_by(MessageRecord.send_time, MessageRecord.id)
            )
            return [_to_message(r) for r in session.exec(query).all()]

    def check_message_in_threads(self, message_id: str) -> DuplicateCheck:
        with self._session() as session:
            query = (
                select(ThreadMessageRecord.thread_id)
                .where(ThreadMessageRecord.message_id == message_id)
                .order_by(ThreadMessageRecord.thread_id)
            )
            thread_ids = list(session.exec(query).all())
        return DuplicateCheck(exists=bool(thread_ids), thread_ids=thread_ids)

    def stats(self) -> dict:
        with self._session() as session:
            return {
                "threads": session.exec(select(func.count()).select_from(ThreadRecord)).one(),
                "messages": session.exec(select(func.count()).select_from(MessageRecord)).one(),
                "memberships": session.exec(
                    select(func.count()).select_from(ThreadMessageRecord)
                ).one(),
            }
