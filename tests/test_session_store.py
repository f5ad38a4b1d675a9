"""Tests for the in-memory and SQL session stores."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timezone
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.db import create_all, use_immediate_transactions
from app.models import PaymentSessionReference, Provider, SessionStatus
from app.services.session_store import (
    InMemorySessionStore,
    PaymentSession,
    SqlSessionStore,
    build_session_store,
)
from app.utils.errors import DuplicateSessionError


def _session(session_id: str = "cs_test_1", provider: Provider = Provider.CARD, **overrides) -> PaymentSession:
    values = dict(
        id=session_id,
        provider=provider,
        order_id="ORD-1",
        amount=Decimal("100.00"),
        currency="GBP",
        checkout_url=f"https://checkout.stripe.com/c/pay/{session_id}",
        provider_metadata={"stripe_session_id": session_id, "local_session_id": f"stripe_local_{session_id}"},
    )
    values.update(overrides)
    return PaymentSession(**values)


@pytest.fixture
def sql_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def file_sql_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'sessions.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    use_immediate_transactions(engine)
    create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def any_store(request, sql_factory):
    if request.param == "memory":
        return InMemorySessionStore()
    return SqlSessionStore(sql_factory)


def test_put_then_get_round_trips_snapshot(any_store):
    session = _session()
    any_store.put(session)

    stored = any_store.get("cs_test_1")
    assert stored is not None
    assert stored.order_id == "ORD-1"
    assert stored.amount == Decimal("100.00")
    assert stored.status is SessionStatus.PENDING
    assert stored.provider is Provider.CARD
    assert stored.created_at.tzinfo is not None
    assert stored.provider_metadata["local_session_id"] == "stripe_local_cs_test_1"
    assert any_store.get("missing") is None


def test_put_rejects_duplicate_id(any_store):
    any_store.put(_session())

    with pytest.raises(DuplicateSessionError):
        any_store.put(_session())


def test_status_only_leaves_pending_once(any_store):
    any_store.put(_session())

    updated, changed = any_store.transition("cs_test_1", SessionStatus.COMPLETED)
    assert changed is True
    assert updated.status is SessionStatus.COMPLETED

    again, changed = any_store.transition("cs_test_1", SessionStatus.COMPLETED)
    assert changed is False
    assert again.status is SessionStatus.COMPLETED

    after_failure, changed = any_store.transition("cs_test_1", SessionStatus.FAILED)
    assert changed is False
    assert after_failure.status is SessionStatus.COMPLETED


def test_failed_session_cannot_be_completed(any_store):
    any_store.put(_session())
    any_store.update_status("cs_test_1", SessionStatus.FAILED)

    result = any_store.update_status("cs_test_1", SessionStatus.COMPLETED)
    assert result.status is SessionStatus.FAILED


def test_transition_back_to_pending_is_a_no_op(any_store):
    any_store.put(_session())

    session, changed = any_store.transition("cs_test_1", SessionStatus.PENDING)
    assert changed is False
    assert session.status is SessionStatus.PENDING


def test_transition_of_unknown_session(any_store):
    session, changed = any_store.transition("nope", SessionStatus.COMPLETED)
    assert session is None
    assert changed is False


def test_find_by_reference_is_scoped_to_provider(any_store):
    any_store.put(_session())

    found = any_store.find_by_reference(Provider.CARD, "stripe_local_cs_test_1")
    assert found is not None and found.id == "cs_test_1"
    assert any_store.find_by_reference(Provider.CARD, "cs_test_1").id == "cs_test_1"
    assert any_store.find_by_reference(Provider.WALLET, "stripe_local_cs_test_1") is None
    assert any_store.find_by_reference(Provider.CARD, "unknown") is None


def test_degraded_flag_is_persisted(any_store):
    any_store.put(_session("stripe_lz1_deadbeef", provider_metadata={}, degraded=True))

    assert any_store.get("stripe_lz1_deadbeef").degraded is True


def test_ping(any_store):
    assert any_store.ping() is True


def test_concurrent_completion_changes_status_once():
    store = InMemorySessionStore()
    store.put(_session())
    barrier = Barrier(8)

    def _complete(_: int) -> bool:
        barrier.wait()
        _, changed = store.transition("cs_test_1", SessionStatus.COMPLETED)
        return changed

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(_complete, range(8)))

    assert results.count(True) == 1
    assert store.get("cs_test_1").status is SessionStatus.COMPLETED


def test_concurrent_completion_and_failure_pick_one_winner():
    store = InMemorySessionStore()
    store.put(_session())
    barrier = Barrier(2)

    def _move(target: SessionStatus) -> bool:
        barrier.wait()
        return store.transition("cs_test_1", target)[1]

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(_move, [SessionStatus.COMPLETED, SessionStatus.FAILED]))

    assert outcomes.count(True) == 1
    assert store.get("cs_test_1").status.is_terminal


def test_sql_store_keeps_first_owner_of_a_reference(sql_factory):
    store = SqlSessionStore(sql_factory)
    store.put(_session("cs_a", provider_metadata={"shared": "ref-1"}))
    store.put(_session("cs_b", provider_metadata={"shared": "ref-1", "own": "ref-2"}))

    assert store.find_by_reference(Provider.CARD, "ref-1").id == "cs_a"
    assert store.find_by_reference(Provider.CARD, "ref-2").id == "cs_b"
    with sql_factory() as db:
        count = db.scalar(select(func.count()).select_from(PaymentSessionReference))
    assert count == 2


def test_sql_store_created_at_is_utc(sql_factory):
    store = SqlSessionStore(sql_factory)
    store.put(_session())

    assert store.get("cs_test_1").created_at.tzinfo == timezone.utc


def test_build_session_store_defaults_to_memory():
    store = build_session_store(Settings(SESSION_STORE_BACKEND="memory"))

    assert isinstance(store, InMemorySessionStore)
    assert store.backend == "memory"


def test_build_session_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        build_session_store(Settings(SESSION_STORE_BACKEND="redis"))


def test_memory_store_hands_out_copies_of_metadata():
    store = InMemorySessionStore()
    session = _session()
    store.put(session)

    session.provider_metadata["local_session_id"] = "edited-before"
    store.get("cs_test_1").provider_metadata["local_session_id"] = "edited-after"
    store.find_by_reference(Provider.CARD, "cs_test_1").provider_metadata.clear()

    stored = store.get("cs_test_1")
    assert stored.provider_metadata["local_session_id"] == "stripe_local_cs_test_1"
    assert store.find_by_reference(Provider.CARD, "stripe_local_cs_test_1").id == "cs_test_1"
    assert store.find_by_reference(Provider.CARD, "edited-before") is None


def test_sql_concurrent_completion_changes_status_once(file_sql_factory):
    store = SqlSessionStore(file_sql_factory)
    store.put(_session())
    barrier = Barrier(8)

    def _complete(_: int) -> bool:
        barrier.wait()
        _, changed = store.transition("cs_test_1", SessionStatus.COMPLETED)
        return changed

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(_complete, range(8)))

    assert results.count(True) == 1
    assert store.get("cs_test_1").status is SessionStatus.COMPLETED


def test_sql_concurrent_completion_and_failure_pick_one_winner(file_sql_factory):
    store = SqlSessionStore(file_sql_factory)
    store.put(_session())
    barrier = Barrier(2)

    def _move(target: SessionStatus) -> tuple[bool, SessionStatus]:
        barrier.wait()
        session, changed = store.transition("cs_test_1", target)
        return changed, session.status

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(_move, [SessionStatus.COMPLETED, SessionStatus.FAILED]))

    winners = [status for changed, status in outcomes if changed]
    assert len(winners) == 1
    # The loser observes the winner's status.
    assert {status for _, status in outcomes} == set(winners)
    assert store.get("cs_test_1").status is winners[0]


def test_sql_store_keeps_three_decimal_amounts(sql_factory):
    store = SqlSessionStore(sql_factory)
    store.put(_session(amount=Decimal("12.345"), currency="KWD"))
    store.put(_session("cs_jpy", amount=Decimal("1000"), currency="JPY", provider_metadata={}))

    assert str(store.get("cs_jpy").amount) == "1000"
    assert str(store.get("cs_test_1").amount) == "12.345"
