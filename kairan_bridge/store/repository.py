"""
SQLAlchemy models and repository operations for the bridge.

Stores registered members, the quiet-hours queue, the activity log,
auto-reply keywords and the Discord sync cursor.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    String,
    Text,
    create_engine,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from kairan_bridge.dispatch.config import DEFAULT_ROLES
from kairan_bridge.dispatch.roles import RoleRegistry
from kairan_bridge.observability import get_logger

logger = get_logger(__name__)

DISCORD_CURSOR = "discord_last_message_id"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class User(Base):
    """A LINE member and the role they registered for."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identity_key = Column(String(64), unique=True, nullable=False, index=True)
    display_name = Column(String(256), nullable=False)
    role = Column(String(64), nullable=False, index=True)
    registered_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.display_name}', role='{self.role}')>"


class QueuedBroadcast(Base):
    """A broadcast held back during quiet hours."""

    __tablename__ = "queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    enqueued_at = Column(DateTime, default=_utcnow, nullable=False)
    sender = Column(String(256), nullable=False)
    target_role = Column(String(64), nullable=False)
    body = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<QueuedBroadcast(id={self.id}, sender='{self.sender}', "
            f"target_role='{self.target_role}')>"
        )


class LogEntry(Base):
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    category = Column(String(64), nullable=False, index=True)
    subject = Column(String(512), nullable=False)
    detail = Column(Text, nullable=True)


class AutoReply(Base):
    __tablename__ = "auto_replies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String(256), unique=True, nullable=False)
    response = Column(Text, nullable=False)


class SyncState(Base):
    __tablename__ = "sync_state"

    name = Column(String(64), primary_key=True)
    value = Column(String(128), nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)


class BridgeDB:
    """
    Repository interface over the bridge database.

    Usage:
        db = BridgeDB("sqlite:///kairan_bridge.db", registry=registry)
        db.upsert_user("U123", "Tanaka", "Yakuin")
        db.enqueue(QueuedBroadcast(sender="Sato", target_role="Member", body="..."))
        items = db.drain_queue()
    """

    def __init__(
        self,
        db_url: str = "sqlite:///kairan_bridge.db",
        registry: Optional[RoleRegistry] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.engine = create_engine(db_url, echo=False)
        Base.metadata.create_all(self.engine)
        self.SessionFactory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.registry = registry or RoleRegistry(DEFAULT_ROLES)
        self.clock = clock

    def _session(self) -> Session:
        return self.SessionFactory()

    # ---- Users ----

    def list_users(self) -> list[User]:
        """All members in registration order."""
        with self._session() as session:
            return session.query(User).order_by(User.id).all()

    def get_user(self, identity_key: str) -> Optional[User]:
        with self._session() as session:
            return (
                session.query(User)
                .filter(User.identity_key == identity_key)
                .first()
            )

    def get_users_by_role(self, target_role: str) -> list[User]:
        """Members whose rank is at or above ``target_role``, blocked excluded."""
        target_rank = self.registry.rank(target_role)
        return [
            u for u in self.list_users()
            if self.registry.is_known(u.role)
            and self.registry.rank(u.role) >= max(target_rank, 1)
        ]

    def get_user_role(self, identity_key: str) -> str:
        """Return the member's role, or the lowest active role if unregistered."""
        user = self.get_user(identity_key)
        if user is None:
            return self.registry.default_role.key
        return user.role

    def upsert_user(
        self,
        identity_key: str,
        display_name: str,
        role: str,
        now: Optional[datetime] = None,
    ) -> User:
        """Create the member or update name and role in place."""
        now = now or self.clock()
        with self._session() as session:
            user = (
                session.query(User)
                .filter(User.identity_key == identity_key)
                .first()
            )
            if user is None:
                user = User(
                    identity_key=identity_key,
                    display_name=display_name,
                    role=role,
                    registered_at=now,
                    updated_at=now,
                )
                session.add(user)
            else:
                user.display_name = display_name
                user.role = role
                user.updated_at = now
            session.commit()
            return user

    def user_stats(self) -> dict[str, int]:
        """Member count per role key."""
        with self._session() as session:
            rows = (
                session.query(User.role, func.count(User.id))
                .group_by(User.role)
                .all()
            )
            return {role: count for role, count in rows}

    # ---- Queue ----

    def enqueue(self, item: QueuedBroadcast) -> QueuedBroadcast:
        with self._session() as session:
            if item.enqueued_at is None:
                item.enqueued_at = self.clock()
            session.add(item)
            session.commit()
            return item

    def pending_queue(self) -> list[QueuedBroadcast]:
        with self._session() as session:
            return session.query(QueuedBroadcast).order_by(QueuedBroadcast.id).all()

    def drain_queue(self) -> list[QueuedBroadcast]:
        """Read every queued item and delete exactly those rows.

        Items enqueued after the read stay in the table for the next drain.
        """
        with self._session() as session:
            items = session.query(QueuedBroadcast).order_by(QueuedBroadcast.id).all()
            if not items:
                return []
            ids = [item.id for item in items]
            (
                session.query(QueuedBroadcast)
                .filter(QueuedBroadcast.id.in_(ids))
                .delete(synchronize_session=False)
            )
            session.commit()
            return items

    # ---- Activity log ----

    def log(self, category: str, subject: str, detail: str = "") -> None:
        with self._session() as session:
            session.add(
                LogEntry(
                    created_at=self.clock(),
                    category=category,
                    subject=subject,
                    detail=detail,
                )
            )
            session.commit()

    def recent_logs(self, limit: int = 50, category: Optional[str] = None) -> list[LogEntry]:
        with self._session() as session:
            q = session.query(LogEntry)
            if category:
                q = q.filter(LogEntry.category == category)
            return q.order_by(LogEntry.id.desc()).limit(limit).all()

    # ---- Auto replies ----

    def set_auto_reply(self, keyword: str, response: str) -> None:
        with self._session() as session:
            row = session.query(AutoReply).filter(AutoReply.keyword == keyword).first()
            if row is None:
                session.add(AutoReply(keyword=keyword, response=response))
            else:
                row.response = response
            session.commit()

    def find_auto_reply(self, text: str) -> Optional[str]:
        """Return the response of the first keyword contained in ``text``."""
        with self._session() as session:
            for row in session.query(AutoReply).order_by(AutoReply.id):
                keyword = row.keyword.strip()
                if keyword and keyword in text:
                    return row.response
        return None

    # ---- Sync cursor ----

    def get_cursor(self, name: str = DISCORD_CURSOR) -> Optional[str]:
        with self._session() as session:
            row = session.get(SyncState, name)
            return row.value if row else None

    def set_cursor(self, value: str, name: str = DISCORD_CURSOR) -> None:
        with self._session() as session:
            row = session.get(SyncState, name)
            if row is None:
                session.add(SyncState(name=name, value=value, updated_at=self.clock()))
            else:
                row.value = value
                row.updated_at = self.clock()
            session.commit()

    def clear_cursor(self, name: str = DISCORD_CURSOR) -> bool:
        with self._session() as session:
            row = session.get(SyncState, name)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True
