"""Data access for envelopes, transactions, products and system state.

``LedgerStore`` wraps a SQLAlchemy session. It only adds, flushes and
queries; committing or rolling back is left to the service that owns the
unit of work, so several store calls can share one database transaction.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import case, delete, distinct, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from errors import EnvelopeNotFound, InsufficientFunds
from models import SPENDING_KINDS, Envelope, Product, SystemState, Transaction
from periods import MonthPeriod, utc_bounds


def _visible_to(user_id: Optional[str]):
    if user_id is None:
        return Envelope.user_id.is_(None)
    return or_(Envelope.user_id == user_id, Envelope.user_id.is_(None))


class LedgerStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    # envelopes

    def find_active_envelopes(self, *, for_update: bool = False) -> list[Envelope]:
        stmt = (
            select(Envelope)
            .where(Envelope.is_deleted.is_(False))
            .order_by(Envelope.name, Envelope.user_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.session.scalars(stmt).all())

    def accessible_envelopes(self, user_id: Optional[str]) -> list[Envelope]:
        stmt = (
            select(Envelope)
            .where(Envelope.is_deleted.is_(False), _visible_to(user_id))
            .order_by(Envelope.name, Envelope.user_id)
        )
        return list(self.session.scalars(stmt).all())

    def find_envelope(
        self, name: str, user_id: Optional[str] = None
    ) -> Optional[Envelope]:
        # NULL user ids sort after the caller's own envelope.
        stmt = (
            select(Envelope)
            .where(
                Envelope.name == name,
                Envelope.is_deleted.is_(False),
                _visible_to(user_id),
            )
            .order_by(Envelope.user_id.is_(None), Envelope.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def find_envelope_any_owner(
        self, name: str, user_id: Optional[str]
    ) -> Optional[Envelope]:
        """Active envelope by name across all owners: own, then shared, then others."""
        rank = case(
            (Envelope.user_id == user_id, 0),
            (Envelope.user_id.is_(None), 1),
            else_=2,
        )
        stmt = (
            select(Envelope)
            .where(Envelope.name == name, Envelope.is_deleted.is_(False))
            .order_by(rank, Envelope.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def find_scoped_envelope(
        self, name: str, user_id: Optional[str], *, deleted: bool
    ) -> Optional[Envelope]:
        owner = (
            Envelope.user_id.is_(None) if user_id is None else Envelope.user_id == user_id
        )
        stmt = (
            select(Envelope)
            .where(Envelope.name == name, owner, Envelope.is_deleted.is_(deleted))
            .order_by(Envelope.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def get_envelope(
        self, envelope_id: int, *, include_deleted: bool = False
    ) -> Optional[Envelope]:
        envelope = self.session.get(Envelope, envelope_id, populate_existing=True)
        if envelope is None:
            return None
        if envelope.is_deleted and not include_deleted:
            return None
        return envelope

    def insert_envelope(self, **fields: object) -> Envelope:
        envelope = Envelope(**fields)
        self.session.add(envelope)
        self.session.flush()
        return envelope

    def update_envelope_balance(self, envelope_id: int, new_balance: float) -> Envelope:
        envelope = self.session.get(Envelope, envelope_id, populate_existing=True)
        if envelope is None:
            raise EnvelopeNotFound(envelope_id)
        envelope.balance = new_balance
        self.session.flush()
        return envelope

    def adjust_envelope_balance(
        self, envelope_id: int, delta: float, *, allow_overdraft: bool = True
    ) -> Envelope:
        """Add ``delta`` to the stored balance in one UPDATE.

        With ``allow_overdraft=False`` a withdrawal only applies while the
        balance it sees at write time stays non-negative; otherwise
        ``InsufficientFunds`` is raised and nothing changes.
        """
        stmt = update(Envelope).where(Envelope.id == envelope_id)
        if not allow_overdraft and delta < 0:
            stmt = stmt.where(Envelope.balance + delta >= 0)
        result = self.session.execute(
            stmt.values(balance=Envelope.balance + delta).execution_options(
                synchronize_session=False
            )
        )
        envelope = self.session.get(Envelope, envelope_id, populate_existing=True)
        if envelope is None:
            raise EnvelopeNotFound(envelope_id)
        if result.rowcount == 0:
            raise InsufficientFunds(current=envelope.balance, required=-delta)
        return envelope

    def soft_delete_envelope(self, envelope_id: int) -> bool:
        result = self.session.execute(
            update(Envelope)
            .where(Envelope.id == envelope_id, Envelope.is_deleted.is_(False))
            .values(is_deleted=True)
        )
        return result.rowcount > 0

    def categories(self) -> list[str]:
        stmt = (
            select(distinct(Envelope.category))
            .where(Envelope.is_deleted.is_(False))
            .order_by(Envelope.category)
        )
        return list(self.session.scalars(stmt).all())

    def suggest_envelope_names(
        self, user_id: Optional[str], partial: str, limit: int = 25
    ) -> list[str]:
        pattern = f"{partial.strip().lower()}%"
        stmt = (
            select(distinct(Envelope.name))
            .where(
                func.lower(Envelope.name).like(pattern),
                Envelope.is_deleted.is_(False),
                _visible_to(user_id),
            )
            .order_by(Envelope.name)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    # transactions

    def insert_transaction(self, **fields: object) -> Transaction:
        txn = Transaction(**fields)
        self.session.add(txn)
        self.session.flush()
        return txn

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return self.session.get(Transaction, transaction_id)

    def delete_transaction_row(self, txn: Transaction) -> None:
        self.session.delete(txn)
        self.session.flush()

    def transactions_for_envelope(
        self, envelope_id: int, limit: Optional[int] = None
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.envelope_id == envelope_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def spent_by_envelope(
        self, period: MonthPeriod, timezone: Optional[str] = None
    ) -> dict[int, float]:
        # created_at is naive UTC; the month is a local calendar month.
        start, end = utc_bounds(period, timezone)
        rows = self.session.execute(
            select(
                Transaction.envelope_id,
                func.coalesce(func.sum(Transaction.amount), 0.0),
            )
            .where(
                Transaction.transaction_type.in_(SPENDING_KINDS),
                Transaction.created_at >= start,
                Transaction.created_at < end,
            )
            .group_by(Transaction.envelope_id)
        ).all()
        return {envelope_id: -float(total) for envelope_id, total in rows}

    def spent_in_month(
        self, envelope_id: int, period: MonthPeriod, timezone: Optional[str] = None
    ) -> float:
        return self.spent_by_envelope(period, timezone).get(envelope_id, 0.0)

    def prune_transactions_before(self, cutoff: date) -> int:
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.created_at < datetime.combine(cutoff, time.min)
            )
        )
        return result.rowcount

    # products

    def find_product(self, name: str) -> Optional[Product]:
        stmt = (
            select(Product)
            .options(joinedload(Product.envelope))
            .where(Product.name == name, Product.is_deleted.is_(False))
        )
        return self.session.scalar(stmt)

    def get_product(self, product_id: int) -> Optional[Product]:
        product = self.session.get(Product, product_id)
        if product is None or product.is_deleted:
            return None
        return product

    def insert_product(self, **fields: object) -> Product:
        product = Product(**fields)
        self.session.add(product)
        self.session.flush()
        return product

    def list_active_products(self) -> list[Product]:
        stmt = (
            select(Product)
            .options(joinedload(Product.envelope))
            .where(Product.is_deleted.is_(False))
            .order_by(Product.name)
        )
        return list(self.session.scalars(stmt).all())

    # system state

    def get_system_state(self, key: str) -> Optional[str]:
        return self.session.execute(
            select(SystemState.value).where(SystemState.key == key)
        ).scalar_one_or_none()

    def set_system_state(self, key: str, value: str) -> None:
        state = self.session.get(SystemState, key)
        if state is None:
            self.session.add(SystemState(key=key, value=value))
        else:
            state.value = value
        self.session.flush()

    def compare_and_set_system_state(
        self, key: str, expected: Optional[str], value: str
    ) -> bool:
        """Write ``value`` only if the stored value still equals ``expected``.

        ``expected=None`` means the key must not exist yet. A ``False`` result
        leaves the session needing a rollback.
        """
        if expected is None:
            try:
                self.session.execute(
                    insert(SystemState).values(
                        key=key, value=value, updated_at=datetime.utcnow()
                    )
                )
            except IntegrityError:
                return False
            return True
        result = self.session.execute(
            update(SystemState)
            .where(SystemState.key == key, SystemState.value == expected)
            .values(value=value, updated_at=datetime.utcnow())
        )
        return result.rowcount == 1
