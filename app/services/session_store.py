"""Keyed storage of in-flight payment sessions.

The store is the single owner of a session's canonical status. Transitions
only ever move a session out of ``pending``; once a session is ``completed``
or ``failed`` every further transition is a no-op. Both backends serialize
transitions per session id:

* :class:`InMemorySessionStore` keeps one lock per session id.
* :class:`SqlSessionStore` issues a conditional ``UPDATE ... WHERE status =
  'pending'`` so the database performs the compare-and-swap.
"""
from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.config import ALLOWED_CREATE_ENV, Settings
from app.core.logging import get_logger
from app.db import create_all, get_sessionmaker, init_engine, session_scope
from app.models.payment_session import (
    PaymentSessionRecord,
    PaymentSessionReference,
    Provider,
    SessionStatus,
)
from app.utils.currency import quantize_amount
from app.utils.errors import DuplicateSessionError
from app.utils.time import to_base36, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentSession:
    """Snapshot of one checkout attempt against a provider."""

    id: str
    provider: Provider
    order_id: str
    amount: Decimal
    currency: str
    checkout_url: str
    status: SessionStatus = SessionStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    provider_metadata: dict[str, str] = field(default_factory=dict)
    degraded: bool = False

    def with_status(self, status: SessionStatus) -> "PaymentSession":
        return replace(self, status=status)

    def references(self) -> set[str]:
        """Provider identifiers that correlate webhooks back to this session."""

        return {value for value in self.provider_metadata.values() if isinstance(value, str) and value}


def _detached(session: PaymentSession) -> PaymentSession:
    # Callers get their own metadata dict so they cannot edit stored state.
    return replace(session, provider_metadata=dict(session.provider_metadata))


def generate_session_id(provider: Provider) -> str:
    """Return ``{prefix}_{ms_timestamp_base36}_{8 hex chars}``."""

    timestamp = to_base36(int(time.time() * 1000))
    return f"{provider.session_prefix}_{timestamp}_{secrets.token_hex(4)}"


class SessionStore(Protocol):
    def put(self, session: PaymentSession) -> None:
        ...

    def get(self, session_id: str) -> PaymentSession | None:
        ...

    def update_status(self, session_id: str, status: SessionStatus) -> PaymentSession | None:
        ...

    def transition(
        self, session_id: str, status: SessionStatus
    ) -> tuple[PaymentSession | None, bool]:
        """Move a pending session to ``status``.

        Returns the current snapshot and whether this call performed the move.
        """
        ...

    def find_by_reference(self, provider: Provider, reference: str) -> PaymentSession | None:
        ...


class InMemorySessionStore:
    """Process-local store guarded by per-session locks."""

    backend = "memory"

    def __init__(self) -> None:
        self._sessions: dict[str, PaymentSession] = {}
        self._references: dict[tuple[str, str], str] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def put(self, session: PaymentSession) -> None:
        with self._registry_lock:
            if session.id in self._sessions:
                raise DuplicateSessionError(
                    f"Session {session.id} already exists.", provider=session.provider.value
                )
            self._sessions[session.id] = _detached(session)
            self._locks[session.id] = threading.Lock()
            for reference in session.references():
                self._references.setdefault((session.provider.value, reference), session.id)

    def get(self, session_id: str) -> PaymentSession | None:
        with self._registry_lock:
            session = self._sessions.get(session_id)
        return _detached(session) if session is not None else None

    def transition(
        self, session_id: str, status: SessionStatus
    ) -> tuple[PaymentSession | None, bool]:
        with self._registry_lock:
            lock = self._locks.get(session_id)
        if lock is None:
            return None, False

        with lock:
            current = self.get(session_id)
            if current is None or current.status.is_terminal or status is SessionStatus.PENDING:
                return current, False
            updated = current.with_status(status)
            with self._registry_lock:
                self._sessions[session_id] = updated
        return _detached(updated), True

    def update_status(self, session_id: str, status: SessionStatus) -> PaymentSession | None:
        session, _ = self.transition(session_id, status)
        return session

    def find_by_reference(self, provider: Provider, reference: str) -> PaymentSession | None:
        with self._registry_lock:
            session_id = self._references.get((provider.value, reference))
            session = self._sessions.get(session_id) if session_id is not None else None
        return _detached(session) if session is not None else None

    def ping(self) -> bool:
        return True


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_session(record: PaymentSessionRecord) -> PaymentSession:
    return PaymentSession(
        id=record.id,
        provider=Provider(record.provider),
        order_id=record.order_id,
        amount=quantize_amount(Decimal(record.amount), record.currency),
        currency=record.currency,
        checkout_url=record.checkout_url,
        status=record.status,
        created_at=_as_utc(record.created_at),
        provider_metadata=dict(record.provider_metadata or {}),
        degraded=bool(record.degraded),
    )


class SqlSessionStore:
    """SQLAlchemy-backed store using a compare-and-swap on ``status``."""

    backend = "sql"

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def put(self, session: PaymentSession) -> None:
        try:
            with session_scope(self._session_factory) as db:
                if db.get(PaymentSessionRecord, session.id) is not None:
                    raise DuplicateSessionError(
                        f"Session {session.id} already exists.", provider=session.provider.value
                    )
                db.add(
                    PaymentSessionRecord(
                        id=session.id,
                        provider=session.provider.value,
                        order_id=session.order_id,
                        amount=session.amount,
                        currency=session.currency,
                        status=session.status,
                        checkout_url=session.checkout_url,
                        provider_metadata=dict(session.provider_metadata),
                        degraded=session.degraded,
                        created_at=session.created_at,
                    )
                )
                db.flush()
                references = session.references()
                if references:
                    taken = set(
                        db.scalars(
                            select(PaymentSessionReference.reference).where(
                                PaymentSessionReference.provider == session.provider.value,
                                PaymentSessionReference.reference.in_(references),
                            )
                        )
                    )
                    for reference in sorted(references - taken):
                        db.add(
                            PaymentSessionReference(
                                provider=session.provider.value,
                                reference=reference,
                                session_id=session.id,
                            )
                        )
        except IntegrityError as exc:
            logger.warning(
                "Concurrent insert for payment session",
                extra={"session_id": session.id, "provider": session.provider.value},
            )
            raise DuplicateSessionError(
                f"Session {session.id} already exists.", provider=session.provider.value
            ) from exc

    def get(self, session_id: str) -> PaymentSession | None:
        with session_scope(self._session_factory) as db:
            record = db.get(PaymentSessionRecord, session_id)
            return _to_session(record) if record is not None else None

    def transition(
        self, session_id: str, status: SessionStatus
    ) -> tuple[PaymentSession | None, bool]:
        with session_scope(self._session_factory) as db:
            changed = False
            if status is not SessionStatus.PENDING:
                result = db.execute(
                    update(PaymentSessionRecord)
                    .where(
                        PaymentSessionRecord.id == session_id,
                        PaymentSessionRecord.status == SessionStatus.PENDING,
                    )
                    .values(status=status, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                changed = result.rowcount == 1
            record = db.get(PaymentSessionRecord, session_id, populate_existing=True)
            return (_to_session(record) if record is not None else None), changed

    def update_status(self, session_id: str, status: SessionStatus) -> PaymentSession | None:
        session, _ = self.transition(session_id, status)
        return session

    def find_by_reference(self, provider: Provider, reference: str) -> PaymentSession | None:
        with session_scope(self._session_factory) as db:
            record = db.scalars(
                select(PaymentSessionRecord)
                .join(
                    PaymentSessionReference,
                    PaymentSessionReference.session_id == PaymentSessionRecord.id,
                )
                .where(
                    PaymentSessionReference.provider == provider.value,
                    PaymentSessionReference.reference == reference,
                )
            ).one_or_none()
            return _to_session(record) if record is not None else None

    def ping(self) -> bool:
        with session_scope(self._session_factory) as db:
            db.execute(text("SELECT 1"))
        return True


def build_session_store(settings: Settings) -> InMemorySessionStore | SqlSessionStore:
    """Create the store selected by ``SESSION_STORE_BACKEND``."""

    backend = settings.SESSION_STORE_BACKEND.lower()
    if backend == "memory":
        return InMemorySessionStore()
    if backend != "sql":
        raise ValueError(f"Unknown SESSION_STORE_BACKEND: {settings.SESSION_STORE_BACKEND}")

    engine = init_engine(settings.database_url)
    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        create_all(engine)
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )
    return SqlSessionStore(get_sessionmaker())


__all__ = [
    "PaymentSession",
    "SessionStore",
    "InMemorySessionStore",
    "SqlSessionStore",
    "generate_session_id",
    "build_session_store",
]
