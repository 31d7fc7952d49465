from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from errors import EnvelopeNotFound
from models import Envelope, Transaction
from periods import local_today, month_period
from store import LedgerStore


def calculate_progress(balance: float, allocation: float) -> float:
    """Share of the allocation still available, in percent.

    100 means nothing spent, 0 fully spent, negative values mean overspent.
    """
    if allocation == 0:
        return 0.0
    return balance / allocation * 100.0


def format_progress_bar(progress_percent: float, bar_length: int = 10) -> str:
    clamped = min(max(progress_percent, 0.0), 100.0)
    filled = int(round(clamped / 100.0 * bar_length))
    empty = max(bar_length - filled, 0)
    return f"[{'█' * filled}{'░' * empty}] {progress_percent:.1f}%"


def format_amount(amount: float) -> str:
    if amount < 0:
        return f"-${abs(amount):.2f}"
    return f"${amount:.2f}"


def format_transaction_amount(amount: float) -> str:
    if amount >= 0:
        return f"+${amount:.2f}"
    return f"-${abs(amount):.2f}"


def format_transaction_summary(txn: Transaction) -> str:
    return (
        f"{format_transaction_amount(txn.amount)} | "
        f"{txn.transaction_type} | {txn.description}"
    )


@dataclass(frozen=True)
class Pacing:
    expected_spent: float
    expected_percent: float
    spent: float
    spent_percent: float
    status: str  # "on_track" | "slightly_over" | "over" | "no_allocation"


def pacing(envelope: Envelope, today: Optional[date] = None) -> Pacing:
    today = today or local_today()
    period = month_period(today)
    day = today.day
    expected_percent = day / period.days * 100.0
    expected_spent = envelope.allocation * day / period.days
    spent = envelope.allocation - envelope.balance
    if envelope.allocation <= 0:
        return Pacing(expected_spent, expected_percent, spent, 0.0, "no_allocation")

    spent_percent = spent / envelope.allocation * 100.0
    if spent_percent <= expected_percent:
        status = "on_track"
    elif spent_percent <= expected_percent + 20.0:
        status = "slightly_over"
    else:
        status = "over"
    return Pacing(expected_spent, expected_percent, spent, spent_percent, status)


@dataclass
class EnvelopeReport:
    envelope: Envelope
    balance: float
    allocation: float
    progress_percent: float
    recent_transactions: list[Transaction]
    amount_spent: float
    amount_remaining: float
    pacing: Pacing


class EnvelopeReportService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = LedgerStore(session)

    def _build(
        self,
        envelope: Envelope,
        spent: float,
        recent: list[Transaction],
        today: date,
    ) -> EnvelopeReport:
        return EnvelopeReport(
            envelope=envelope,
            balance=envelope.balance,
            allocation=envelope.allocation,
            progress_percent=calculate_progress(envelope.balance, envelope.allocation),
            recent_transactions=recent,
            amount_spent=spent,
            amount_remaining=envelope.balance,
            pacing=pacing(envelope, today),
        )

    def report(
        self, envelope_id: int, limit: int = 10, today: Optional[date] = None
    ) -> EnvelopeReport:
        envelope = self.store.get_envelope(envelope_id)
        if envelope is None:
            raise EnvelopeNotFound(envelope_id)
        today = today or local_today()
        period = month_period(today)
        spent = self.store.spent_in_month(envelope.id, period)
        recent = self.store.transactions_for_envelope(envelope.id, limit)
        return self._build(envelope, spent, recent, today)

    def full_report(self, today: Optional[date] = None) -> list[EnvelopeReport]:
        today = today or local_today()
        spent_by_envelope = self.store.spent_by_envelope(month_period(today))
        return [
            self._build(envelope, spent_by_envelope.get(envelope.id, 0.0), [], today)
            for envelope in self.store.find_active_envelopes()
        ]


STATUS_LABELS = {
    "on_track": "On track",
    "slightly_over": "Slightly over pace",
    "over": "Over pace",
    "no_allocation": "No allocation",
}


def format_envelope_report(report: EnvelopeReport) -> str:
    envelope = report.envelope
    owner = envelope.user_id if envelope.is_individual else "Shared"
    lines = [
        f"{envelope.name} ({owner})",
        f"Balance: {format_amount(report.balance)} / {format_amount(report.allocation)}",
        f"Spent this month: {format_amount(report.amount_spent)}",
        f"Expected pace: {format_amount(report.pacing.expected_spent)} "
        f"({report.pacing.expected_percent:.1f}%)",
        f"Progress: {format_progress_bar(report.progress_percent)}",
        f"Status: {STATUS_LABELS[report.pacing.status]}",
    ]
    for txn in report.recent_transactions:
        lines.append(f"  {format_transaction_summary(txn)}")
    return "\n".join(lines)
