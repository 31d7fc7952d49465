from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import EnvelopeNotFound
from reporting import (
    EnvelopeReportService,
    calculate_progress,
    format_envelope_report,
    format_progress_bar,
    format_transaction_amount,
    pacing,
)
from services import EnvelopeService
from store import LedgerStore


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _txn(store, envelope_id, amount, kind, created_at, description="x"):
    store.insert_transaction(
        envelope_id=envelope_id,
        amount=amount,
        description=description,
        user_id="alice",
        transaction_type=kind,
        created_at=created_at,
    )
    store.adjust_envelope_balance(envelope_id, amount)


def test_progress_and_formatting_helpers() -> None:
    assert calculate_progress(50.0, 200.0) == 25.0
    assert calculate_progress(-20.0, 100.0) == -20.0
    assert calculate_progress(10.0, 0.0) == 0.0
    assert format_progress_bar(50.0) == "[█████░░░░░] 50.0%"
    assert format_progress_bar(-20.0) == "[░░░░░░░░░░] -20.0%"
    assert format_progress_bar(150.0, bar_length=4) == "[████] 150.0%"
    assert format_transaction_amount(12.5) == "+$12.50"
    assert format_transaction_amount(-3.0) == "-$3.00"


def test_pacing_statuses() -> None:
    session = make_session()
    envelope = EnvelopeService(session).create("Groceries", allocation=300.0)
    today = date(2024, 4, 15)

    envelope.balance = 200.0
    on_track = pacing(envelope, today)
    assert on_track.status == "on_track"
    assert on_track.expected_percent == pytest.approx(50.0)
    assert on_track.expected_spent == pytest.approx(150.0)
    assert on_track.spent == pytest.approx(100.0)

    envelope.balance = 120.0
    assert pacing(envelope, today).status == "slightly_over"

    envelope.balance = 0.0
    assert pacing(envelope, today).status == "over"

    session.rollback()


def test_pacing_without_allocation() -> None:
    session = make_session()
    envelope = EnvelopeService(session).create("Misc", allocation=0.0)

    assert pacing(envelope, date(2024, 4, 15)).status == "no_allocation"


def test_report_counts_only_this_months_spending() -> None:
    session = make_session()
    envelope = EnvelopeService(session).create("Groceries", allocation=300.0)
    store = LedgerStore(session)
    _txn(store, envelope.id, -40.0, "spend", datetime(2024, 3, 28, 10, 0), "march")
    _txn(store, envelope.id, -60.0, "spend", datetime(2024, 4, 3, 10, 0), "shop")
    _txn(store, envelope.id, -15.0, "use_product", datetime(2024, 4, 9, 10, 0), "2x Milk")
    _txn(store, envelope.id, 25.0, "addfunds", datetime(2024, 4, 10, 10, 0), "top up")
    session.commit()

    report = EnvelopeReportService(session).report(
        envelope.id, limit=2, today=date(2024, 4, 15)
    )

    assert report.amount_spent == pytest.approx(75.0)
    assert report.balance == pytest.approx(210.0)
    assert report.amount_remaining == pytest.approx(210.0)
    assert report.progress_percent == pytest.approx(70.0)
    assert [t.description for t in report.recent_transactions] == ["top up", "2x Milk"]


def test_report_missing_envelope() -> None:
    session = make_session()

    with pytest.raises(EnvelopeNotFound):
        EnvelopeReportService(session).report(1, today=date(2024, 4, 15))


def test_full_report_covers_active_envelopes() -> None:
    session = make_session()
    service = EnvelopeService(session)
    groceries = service.create("Groceries", allocation=300.0)
    service.create("Rent", allocation=1000.0)
    service.create("Old", allocation=10.0)
    service.soft_delete("Old", None)
    store = LedgerStore(session)
    _txn(store, groceries.id, -90.0, "spend", datetime(2024, 4, 3, 10, 0))
    session.commit()

    reports = EnvelopeReportService(session).full_report(today=date(2024, 4, 15))

    by_name = {r.envelope.name: r for r in reports}
    assert sorted(by_name) == ["Groceries", "Rent"]
    assert by_name["Groceries"].amount_spent == pytest.approx(90.0)
    assert by_name["Rent"].amount_spent == 0.0
    assert by_name["Rent"].pacing.status == "on_track"


def test_format_envelope_report() -> None:
    session = make_session()
    envelope = EnvelopeService(session).create("Pocket", user_id="alice", allocation=100.0)
    store = LedgerStore(session)
    _txn(store, envelope.id, -25.0, "spend", datetime(2024, 4, 2, 10, 0), "snacks")
    session.commit()

    report = EnvelopeReportService(session).report(envelope.id, today=date(2024, 4, 15))
    text = format_envelope_report(report)

    assert text.splitlines()[0] == "Pocket (alice)"
    assert "Balance: $75.00 / $100.00" in text
    assert "Spent this month: $25.00" in text
    assert "Status: On track" in text
    assert "  -$25.00 | spend | snacks" in text
