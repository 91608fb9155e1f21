"""Session store and message log."""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, Optional
from sqlalchemy import delete, func, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from smart_email.db import engine as default_engine
from smart_email.errors import BadRequestError, InternalError, NotFoundError
from smart_email.models import (
    MessageCreate,
    SessionCreate,
    SessionStatus,
    SessionStep,
    SessionUpdate,
    SmartEmailMessage,
    SmartEmailSession,
    utcnow,
)

logger = logging.getLogger(__name__)


class SessionRepository(ABC):
    """Persistence interface for sessions and their append-only message logs."""

    @abstractmethod
    def create(self, data: SessionCreate, ttl_hours: int) -> SmartEmailSession:
        ...

    @abstractmethod
    def get(self, session_id: str) -> Optional[SmartEmailSession]:
        ...

    @abstractmethod
    def list_messages(self, session_id: str) -> list[SmartEmailMessage]:
        ...

    @abstractmethod
    def update(self, session_id: str, data: SessionUpdate) -> Optional[SmartEmailSession]:
        ...

    @abstractmethod
    def commit_turn(
        self,
        session_id: str,
        messages: list[MessageCreate],
        data: SessionUpdate,
        lease_holder: Optional[str] = None,
    ) -> SmartEmailSession:
        """Append messages and apply the session update in one transaction."""

    @abstractmethod
    def list_active_for_user(self, organization_id: str, user_id: str) -> list[SmartEmailSession]:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def acquire_lease(self, session_id: str, holder: str, seconds: int) -> bool:
        ...

    @abstractmethod
    def renew_lease(self, session_id: str, holder: str, seconds: int) -> bool:
        ...

    @abstractmethod
    def release_lease(self, session_id: str, holder: str) -> None:
        ...

    @abstractmethod
    def sweep_expired(self, now: datetime) -> int:
        ...

    @abstractmethod
    def count_by_status(self, now: datetime) -> dict[str, int]:
        ...


class SqlSessionRepository(SessionRepository):
    """SQLModel implementation of the session store."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _db(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as db:
            try:
                yield db
            except SQLAlchemyError as e:
                db.rollback()
                logger.exception("Session store operation failed")
                raise InternalError("Session store operation failed") from e

    @staticmethod
    def _lease_free(now: datetime):
        return or_(
            SmartEmailSession.locked_until.is_(None),
            SmartEmailSession.locked_until < now,
        )

    def create(self, data: SessionCreate, ttl_hours: int) -> SmartEmailSession:
        """Create a new active session expiring ttl_hours from now."""
        now = utcnow()
        session = SmartEmailSession(
            organization_id=data.organization_id,
            user_id=data.user_id,
            donor_ids=list(data.donor_ids),
            initial_instruction=data.initial_instruction,
            status=SessionStatus.ACTIVE.value,
            current_step=SessionStep.ANALYZING.value,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
        )
        with self._db() as db:
            db.add(session)
            db.commit()
            db.refresh(session)
            return session

    def get(self, session_id: str) -> Optional[SmartEmailSession]:
        """Get a session by its external id."""
        with self._db() as db:
            statement = select(SmartEmailSession).where(SmartEmailSession.session_id == session_id)
            return db.exec(statement).first()

    def list_messages(self, session_id: str) -> list[SmartEmailMessage]:
        """Messages of a session ordered by index."""
        with self._db() as db:
            statement = (
                select(SmartEmailMessage)
                .join(SmartEmailSession, SmartEmailSession.id == SmartEmailMessage.session_pk)
                .where(SmartEmailSession.session_id == session_id)
                .order_by(SmartEmailMessage.message_index)
            )
            return list(db.exec(statement).all())

    def update(self, session_id: str, data: SessionUpdate) -> Optional[SmartEmailSession]:
        """Update a session."""
        with self._db() as db:
            statement = select(SmartEmailSession).where(SmartEmailSession.session_id == session_id)
            session = db.exec(statement).first()
            if not session:
                return None

            update_data = data.model_dump(exclude_unset=True)
            for key, value in update_data.items():
                setattr(session, key, value)

            session.updated_at = utcnow()
            db.add(session)
            db.commit()
            db.refresh(session)
            return session

    def commit_turn(
        self,
        session_id: str,
        messages: list[MessageCreate],
        data: SessionUpdate,
        lease_holder: Optional[str] = None,
    ) -> SmartEmailSession:
        """
        Append the turn's messages and apply the session update atomically.

        Indices continue from the highest stored index; the unique
        (session, index) constraint rejects a concurrent writer. With a
        lease_holder, nothing is written unless that holder still owns the lease.
        """
        with self._db() as db:
            statement = (
                select(SmartEmailSession)
                .where(SmartEmailSession.session_id == session_id)
                .with_for_update()
            )
            session = db.exec(statement).first()
            if not session:
                raise NotFoundError(f"Session not found: {session_id}")
            if lease_holder is not None and session.lease_holder != lease_holder:
                raise BadRequestError("Session was taken over by another request, please try again")

            last_index = db.exec(
                select(func.max(SmartEmailMessage.message_index)).where(
                    SmartEmailMessage.session_pk == session.id
                )
            ).one()
            next_index = 0 if last_index is None else last_index + 1

            now = utcnow()
            for offset, message in enumerate(messages):
                db.add(
                    SmartEmailMessage(
                        session_pk=session.id,
                        message_index=next_index + offset,
                        created_at=now,
                        **message.model_dump(),
                    )
                )

            for key, value in data.model_dump(exclude_unset=True).items():
                setattr(session, key, value)
            session.updated_at = now
            db.add(session)
            db.commit()
            db.refresh(session)

            logger.info(
                "Committed turn",
                extra={"session_id": session_id, "first_index": next_index, "count": len(messages)},
            )
            return session

    def list_active_for_user(self, organization_id: str, user_id: str) -> list[SmartEmailSession]:
        """Active sessions of a user, most recently updated first."""
        with self._db() as db:
            statement = (
                select(SmartEmailSession)
                .where(
                    SmartEmailSession.organization_id == organization_id,
                    SmartEmailSession.user_id == user_id,
                    SmartEmailSession.status == SessionStatus.ACTIVE.value,
                )
                .order_by(SmartEmailSession.updated_at.desc())
            )
            return list(db.exec(statement).all())

    def delete(self, session_id: str) -> bool:
        """Delete a session and its messages."""
        with self._db() as db:
            statement = select(SmartEmailSession).where(SmartEmailSession.session_id == session_id)
            session = db.exec(statement).first()
            if not session:
                return False
            db.exec(delete(SmartEmailMessage).where(SmartEmailMessage.session_pk == session.id))
            db.delete(session)
            db.commit()
            return True

    def acquire_lease(self, session_id: str, holder: str, seconds: int) -> bool:
        """Take the session lease for holder unless a live one is held."""
        now = utcnow()
        with self._db() as db:
            statement = (
                update(SmartEmailSession)
                .where(SmartEmailSession.session_id == session_id, self._lease_free(now))
                .values(locked_until=now + timedelta(seconds=seconds), lease_holder=holder)
                .execution_options(synchronize_session=False)
            )
            result = db.exec(statement)
            db.commit()
            return result.rowcount == 1

    def renew_lease(self, session_id: str, holder: str, seconds: int) -> bool:
        """Push the lease out by seconds; False once another holder has taken it."""
        now = utcnow()
        with self._db() as db:
            statement = (
                update(SmartEmailSession)
                .where(SmartEmailSession.session_id == session_id, SmartEmailSession.lease_holder == holder)
                .values(locked_until=now + timedelta(seconds=seconds))
                .execution_options(synchronize_session=False)
            )
            result = db.exec(statement)
            db.commit()
            return result.rowcount == 1

    def release_lease(self, session_id: str, holder: str) -> None:
        """Clear the lease if holder still owns it."""
        with self._db() as db:
            statement = (
                update(SmartEmailSession)
                .where(SmartEmailSession.session_id == session_id, SmartEmailSession.lease_holder == holder)
                .values(locked_until=None, lease_holder=None)
                .execution_options(synchronize_session=False)
            )
            db.exec(statement)
            db.commit()

    def sweep_expired(self, now: datetime) -> int:
        """
        Abandon and purge sessions past their expiry.

        Expiry is judged against now. Lease liveness is always judged against
        the current clock, so a session with a live lease is skipped even
        when now runs ahead of it.
        """
        lease_free = self._lease_free(utcnow())
        with self._db() as db:
            candidates = (
                select(SmartEmailSession.id)
                .where(SmartEmailSession.expires_at < now, lease_free)
                .with_for_update(skip_locked=True)
            )
            ids = list(db.exec(candidates).all())
            if not ids:
                return 0

            db.exec(
                update(SmartEmailSession)
                .where(SmartEmailSession.id.in_(ids), lease_free)
                .values(status=SessionStatus.ABANDONED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            swept = list(
                db.exec(
                    select(SmartEmailSession.id).where(
                        SmartEmailSession.id.in_(ids),
                        SmartEmailSession.status == SessionStatus.ABANDONED.value,
                        lease_free,
                    )
                ).all()
            )
            if swept:
                db.exec(delete(SmartEmailMessage).where(SmartEmailMessage.session_pk.in_(swept)))
                db.exec(
                    delete(SmartEmailSession)
                    .where(SmartEmailSession.id.in_(swept))
                    .execution_options(synchronize_session=False)
                )
            db.commit()
            return len(swept)

    def count_by_status(self, now: datetime) -> dict[str, int]:
        """Session counts per status plus the number already past expiry."""
        with self._db() as db:
            rows = db.exec(
                select(SmartEmailSession.status, func.count()).group_by(SmartEmailSession.status)
            ).all()
            counts = {status.value: 0 for status in SessionStatus}
            for status, total in rows:
                counts[status] = total
            counts["expired"] = db.exec(
                select(func.count()).select_from(SmartEmailSession).where(SmartEmailSession.expires_at < now)
            ).one()
            counts["total"] = sum(counts[status.value] for status in SessionStatus)
            return counts


session_store = SqlSessionRepository(default_engine)
