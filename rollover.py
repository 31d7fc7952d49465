"""Monthly envelope rollover.

Once per calendar month every active envelope is either rolled over (its
allocation is added to whatever is left, deficits included) or reset to its
allocation. The date of the last run is stored in ``system_state`` and is
written in the same database transaction as the balances, so a run is either
fully applied and recorded or not applied at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Union

from sqlalchemy.orm import Session

from database import atomic
from errors import ConfigError
from periods import local_today, same_month
from store import LedgerStore


logger = logging.getLogger(__name__)

LAST_MONTHLY_UPDATE_KEY = "last_monthly_update"


@dataclass(frozen=True)
class EnvelopeRolloverResult:
    envelope_name: str
    user_id: Optional[str]
    old_balance: float
    new_balance: float
    allocation: float
    rollover: bool


@dataclass
class RolloverResult:
    update_date: date
    updated_envelopes: list[EnvelopeRolloverResult] = field(default_factory=list)
    rollover_count: int = 0
    reset_count: int = 0

    @property
    def total_envelopes_processed(self) -> int:
        return len(self.updated_envelopes)


class _NoOp:
    """Returned when this month's rollover has already been applied."""

    _instance: Optional["_NoOp"] = None

    def __new__(cls) -> "_NoOp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_OP"


NO_OP = _NoOp()


class _AlreadyApplied(Exception):
    pass


def _parse_marker(raw: Optional[str]) -> Optional[date]:
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ConfigError(f"Failed to parse last update date {raw!r}: {exc}") from exc


class RolloverEngine:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = LedgerStore(session)

    def last_rollover_date(self) -> Optional[date]:
        return _parse_marker(self.store.get_system_state(LAST_MONTHLY_UPDATE_KEY))

    def is_rollover_needed(self, today: Optional[date] = None) -> bool:
        today = today or local_today()
        last = self.last_rollover_date()
        return last is None or not same_month(last, today)

    def run(self, today: Optional[date] = None) -> Union[RolloverResult, _NoOp]:
        today = today or local_today()
        if not self.is_rollover_needed(today):
            logger.info(f"rollover_skipped: today={today.isoformat()} reason=already_ran")
            return NO_OP

        try:
            with atomic(self.session, "monthly rollover"):
                # Re-check inside the unit of work; another run may have won.
                marker_raw = self.store.get_system_state(LAST_MONTHLY_UPDATE_KEY)
                marker = _parse_marker(marker_raw)
                if marker is not None and same_month(marker, today):
                    raise _AlreadyApplied()

                # Claim the marker before reading balances.
                claimed = self.store.compare_and_set_system_state(
                    LAST_MONTHLY_UPDATE_KEY, marker_raw, today.isoformat()
                )
                if not claimed:
                    raise _AlreadyApplied()

                result = self._apply(today)
        except _AlreadyApplied:
            logger.warning(
                f"rollover_skipped: today={today.isoformat()} reason=concurrent_run"
            )
            return NO_OP

        logger.info(
            f"rollover_committed: date={today.isoformat()} "
            f"processed={result.total_envelopes_processed} "
            f"rollover={result.rollover_count} reset={result.reset_count}"
        )
        return result

    def _apply(self, today: date) -> RolloverResult:
        result = RolloverResult(update_date=today)
        for envelope in self.store.find_active_envelopes(for_update=True):
            old_balance = envelope.balance
            if envelope.rollover:
                new_balance = old_balance + envelope.allocation
                result.rollover_count += 1
            else:
                new_balance = envelope.allocation
                result.reset_count += 1
            self.store.update_envelope_balance(envelope.id, new_balance)
            result.updated_envelopes.append(
                EnvelopeRolloverResult(
                    envelope_name=envelope.name,
                    user_id=envelope.user_id,
                    old_balance=old_balance,
                    new_balance=new_balance,
                    allocation=envelope.allocation,
                    rollover=envelope.rollover,
                )
            )
        return result


def is_rollover_needed(session: Session, today: Optional[date] = None) -> bool:
    return RolloverEngine(session).is_rollover_needed(today)


def run_monthly_rollover(
    session: Session, today: Optional[date] = None
) -> Union[RolloverResult, _NoOp]:
    return RolloverEngine(session).run(today)


def format_rollover_summary(result: RolloverResult) -> str:
    lines = [
        f"Monthly Update - {result.update_date.strftime('%B %Y')} - "
        f"Processed {result.total_envelopes_processed} envelopes",
        f"  Rollover: {result.rollover_count} envelopes | "
        f"Reset: {result.reset_count} envelopes",
        "",
    ]
    for item in result.updated_envelopes:
        change = "Rollover" if item.rollover else "Reset"
        lines.append(
            f"  {item.envelope_name} - {change} | "
            f"${item.old_balance:.2f} → ${item.new_balance:.2f} "
            f"(Allocation: ${item.allocation:.2f})"
        )
    return "\n".join(lines) + "\n"
