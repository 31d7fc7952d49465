from __future__ import annotations

import logging
import math
from datetime import date
from typing import Optional, Union

from rapidfuzz.distance import Levenshtein
from sqlalchemy.orm import Session

from config import get_settings
from database import atomic
from errors import (
    ConfigError,
    EnvelopeExists,
    EnvelopeNotFound,
    InsufficientFunds,
    InvalidAmount,
    ProductExists,
    ProductNotFound,
    TransactionNotFound,
)
from models import Envelope, Product, Transaction, TransactionKind
from schemas import EnvelopeUpdateIn
from store import LedgerStore


logger = logging.getLogger(__name__)

EnvelopeRef = Union[int, str]


def _clean_name(name: str, kind: str) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ConfigError(f"{kind} name cannot be empty")
    return clean


def _require_allocation(amount: float) -> None:
    if not math.isfinite(amount) or amount < 0:
        raise InvalidAmount(amount, "must be a non-negative number")


def _require_transaction_amount(amount: float) -> None:
    if amount == 0 or not math.isfinite(amount):
        raise InvalidAmount(amount, "must be non-zero and finite")


def _require_positive(amount: float) -> None:
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidAmount(amount, "must be positive")


def _kind_value(kind: Union[TransactionKind, str]) -> str:
    if isinstance(kind, TransactionKind):
        return kind.value
    return str(kind)


class EnvelopeService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = LedgerStore(session)

    def list_active(self) -> list[Envelope]:
        return self.store.find_active_envelopes()

    def categories(self) -> list[str]:
        return self.store.categories()

    def get(self, name: str, user_id: Optional[str] = None) -> Envelope:
        envelope = self.store.find_envelope(name.strip(), user_id)
        if envelope is None:
            raise EnvelopeNotFound(name)
        return envelope

    def create(
        self,
        name: str,
        user_id: Optional[str] = None,
        category: str = "uncategorized",
        allocation: float = 0.0,
        is_individual: Optional[bool] = None,
        rollover: bool = False,
    ) -> Envelope:
        clean_name = _clean_name(name, "Envelope")
        _require_allocation(allocation)
        if is_individual is None:
            is_individual = user_id is not None
        if is_individual and user_id is None:
            raise ConfigError(f"Individual envelope '{clean_name}' needs an owning user")
        if not is_individual and user_id is not None:
            raise ConfigError(f"Shared envelope '{clean_name}' cannot have an owning user")

        with atomic(self.session, "create envelope"):
            envelope, outcome = self._create_or_reenable(
                clean_name, user_id, category, allocation, rollover
            )
            if outcome == "skipped":
                raise EnvelopeExists(
                    f"Envelope '{clean_name}' already exists for {envelope.owner_label}"
                )
        return envelope

    def _create_or_reenable(
        self,
        name: str,
        user_id: Optional[str],
        category: str,
        allocation: float,
        rollover: bool,
    ) -> tuple[Envelope, str]:
        """Create, re-enable or find the envelope in the current unit of work.

        Returns the envelope and one of ``created``, ``reenabled`` or
        ``skipped`` (an active envelope with the same scope already exists).
        New and re-enabled envelopes start funded with their allocation.
        """
        clean_category = (category or "").strip() or "uncategorized"
        active = self.store.find_scoped_envelope(name, user_id, deleted=False)
        if active is not None:
            return active, "skipped"

        deleted = self.store.find_scoped_envelope(name, user_id, deleted=True)
        if deleted is not None:
            deleted.category = clean_category
            deleted.allocation = allocation
            deleted.rollover = rollover
            deleted.balance = allocation
            deleted.is_deleted = False
            self.session.flush()
            logger.info(
                f"envelope_reenabled: id={deleted.id} name={name!r} owner={deleted.owner_label}"
            )
            return deleted, "reenabled"

        envelope = self.store.insert_envelope(
            name=name,
            user_id=user_id,
            is_individual=user_id is not None,
            category=clean_category,
            allocation=allocation,
            balance=allocation,
            rollover=rollover,
            is_deleted=False,
        )
        logger.info(
            f"envelope_created: id={envelope.id} name={name!r} owner={envelope.owner_label}"
        )
        return envelope, "created"

    def update(
        self,
        name: str,
        user_id: Optional[str],
        data: EnvelopeUpdateIn,
    ) -> Envelope:
        if data.is_empty():
            raise ConfigError(
                "Provide at least one attribute to edit: category, allocation or rollover"
            )
        if data.allocation is not None:
            _require_allocation(data.allocation)

        with atomic(self.session, "update envelope"):
            envelope = self.store.find_envelope(name.strip(), user_id)
            if envelope is None:
                raise EnvelopeNotFound(name)
            if data.category is not None:
                envelope.category = data.category.strip()
            if data.allocation is not None:
                envelope.allocation = data.allocation
            if data.rollover is not None:
                envelope.rollover = data.rollover
            self.session.flush()
        return envelope

    def soft_delete(self, name: str, user_id: Optional[str]) -> bool:
        with atomic(self.session, "delete envelope"):
            envelope = self.store.find_envelope_any_owner(name.strip(), user_id)
            if envelope is None:
                logger.info(f"envelope_delete_missing: name={name!r} user={user_id}")
                return False
            if envelope.is_individual and envelope.user_id != user_id:
                logger.warning(
                    f"envelope_delete_denied: name={name!r} user={user_id} "
                    f"owner={envelope.user_id}"
                )
                return False
            changed = self.store.soft_delete_envelope(envelope.id)
        if changed:
            logger.info(f"envelope_deleted: id={envelope.id} name={name!r} user={user_id}")
        return changed

    def suggest_names(
        self, user_id: Optional[str], partial: str, limit: int = 25
    ) -> list[str]:
        names = self.store.suggest_envelope_names(user_id, partial, limit)
        needle = partial.strip().lower()
        if names or not needle:
            return names

        # No prefix hit: allow one typo in the typed prefix.
        fuzzy: set[str] = set()
        for envelope in self.store.accessible_envelopes(user_id):
            head = envelope.name.lower()[: len(needle)]
            if Levenshtein.distance(needle, head) <= 1:
                fuzzy.add(envelope.name)
        return sorted(fuzzy)[:limit]


class TransactionService:
    def __init__(
        self, session: Session, overdraft_policy: Optional[str] = None
    ) -> None:
        self.session = session
        self.store = LedgerStore(session)
        self.overdraft_policy = overdraft_policy or get_settings().overdraft_policy
        if self.overdraft_policy not in ("reject", "warn"):
            raise ConfigError(f"Unknown overdraft policy: {self.overdraft_policy}")

    def get(self, transaction_id: int) -> Transaction:
        txn = self.store.get_transaction(transaction_id)
        if txn is None:
            raise TransactionNotFound(transaction_id)
        return txn

    def list_for_envelope(
        self, envelope_id: int, limit: Optional[int] = None
    ) -> list[Transaction]:
        return self.store.transactions_for_envelope(envelope_id, limit)

    def create(
        self,
        envelope_id: int,
        amount: float,
        description: str,
        user_id: str,
        reference_id: Optional[str] = None,
        transaction_type: Union[TransactionKind, str] = TransactionKind.spend,
        product_id: Optional[int] = None,
    ) -> Transaction:
        _require_transaction_amount(amount)

        with atomic(self.session, "create transaction"):
            envelope = self.store.get_envelope(envelope_id)
            if envelope is None:
                raise EnvelopeNotFound(envelope_id)
            if product_id is not None and self.store.get_product(product_id) is None:
                raise ProductNotFound(product_id)

            new_balance = envelope.balance + amount
            if amount < 0 and new_balance < 0:
                self._apply_overdraft_policy(envelope, amount, new_balance)

            txn = self.store.insert_transaction(
                envelope_id=envelope.id,
                amount=amount,
                description=(description or "").strip(),
                user_id=user_id,
                reference_id=reference_id,
                transaction_type=_kind_value(transaction_type),
                product_id=product_id,
            )
            self.store.adjust_envelope_balance(
                envelope.id, amount, allow_overdraft=self.overdraft_policy == "warn"
            )

        logger.info(
            f"transaction_created: id={txn.id} envelope_id={envelope_id} "
            f"type={txn.transaction_type} amount={amount} user={user_id}"
        )
        return txn

    def _apply_overdraft_policy(
        self, envelope: Envelope, amount: float, new_balance: float
    ) -> None:
        if self.overdraft_policy == "reject":
            raise InsufficientFunds(current=envelope.balance, required=-amount)
        logger.warning(
            f"envelope_overdraft: id={envelope.id} name={envelope.name!r} "
            f"balance={envelope.balance} amount={amount} new_balance={new_balance}"
        )

    def delete(self, transaction_id: int) -> Envelope:
        with atomic(self.session, "delete transaction"):
            txn = self.store.get_transaction(transaction_id)
            if txn is None:
                raise TransactionNotFound(transaction_id)
            envelope_id = txn.envelope_id
            amount = txn.amount
            self.store.delete_transaction_row(txn)
            envelope = self.store.adjust_envelope_balance(envelope_id, -amount)

        if envelope.balance < 0:
            logger.warning(
                f"transaction_reversal_negative: envelope_id={envelope_id} "
                f"balance={envelope.balance}"
            )
        logger.info(f"transaction_deleted: id={transaction_id} reversed={-amount}")
        return envelope

    def _resolve_envelope(self, envelope_ref: EnvelopeRef, user_id: str) -> Envelope:
        if isinstance(envelope_ref, int):
            envelope = self.store.get_envelope(envelope_ref)
        else:
            envelope = self.store.find_envelope(envelope_ref.strip(), user_id)
        if envelope is None:
            raise EnvelopeNotFound(envelope_ref)
        return envelope

    def spend(
        self,
        envelope_ref: EnvelopeRef,
        amount: float,
        description: str,
        user_id: str,
        reference_id: Optional[str] = None,
    ) -> Transaction:
        _require_positive(amount)
        envelope = self._resolve_envelope(envelope_ref, user_id)
        return self.create(
            envelope.id,
            -amount,
            description,
            user_id,
            reference_id,
            TransactionKind.spend,
        )

    def add_funds(
        self,
        envelope_ref: EnvelopeRef,
        amount: float,
        description: str,
        user_id: str,
        reference_id: Optional[str] = None,
    ) -> Transaction:
        _require_positive(amount)
        envelope = self._resolve_envelope(envelope_ref, user_id)
        return self.create(
            envelope.id,
            amount,
            description,
            user_id,
            reference_id,
            TransactionKind.addfunds,
        )

    def use_product(
        self,
        product_name: str,
        quantity: int,
        user_id: str,
        reference_id: Optional[str] = None,
    ) -> Transaction:
        if quantity < 1:
            raise InvalidAmount(quantity, "quantity must be at least 1")
        product = self.store.find_product(product_name.strip())
        if product is None:
            raise ProductNotFound(product_name)
        total_cost = product.price * quantity
        return self.create(
            product.envelope_id,
            -total_cost,
            f"{quantity}x {product.name}",
            user_id,
            reference_id,
            TransactionKind.use_product,
            product_id=product.id,
        )

    def prune_before(self, cutoff: date) -> int:
        with atomic(self.session, "prune transactions"):
            count = self.store.prune_transactions_before(cutoff)
        logger.info(f"transactions_pruned: cutoff={cutoff.isoformat()} count={count}")
        return count


class ProductService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = LedgerStore(session)

    def list_active(self) -> list[Product]:
        return self.store.list_active_products()

    def get(self, name: str) -> Product:
        product = self.store.find_product(name.strip())
        if product is None:
            raise ProductNotFound(name)
        return product

    @staticmethod
    def _unit_price(total_price: float, quantity: float) -> float:
        _require_allocation(total_price)
        if not math.isfinite(quantity) or quantity <= 0:
            raise InvalidAmount(quantity, "quantity must be positive")
        return total_price / quantity

    def create(
        self,
        name: str,
        total_price: float,
        envelope_name: str,
        quantity: float = 1,
        description: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Product:
        clean_name = _clean_name(name, "Product")
        unit_price = self._unit_price(total_price, quantity)

        with atomic(self.session, "create product"):
            envelope = self.store.find_envelope(envelope_name.strip(), user_id)
            if envelope is None:
                raise EnvelopeNotFound(envelope_name)
            if self.store.find_product(clean_name) is not None:
                raise ProductExists(f"Product '{clean_name}' already exists")
            product = self.store.insert_product(
                name=clean_name,
                price=unit_price,
                envelope_id=envelope.id,
                description=description,
                is_deleted=False,
            )
        logger.info(
            f"product_created: id={product.id} name={clean_name!r} "
            f"price={unit_price} envelope_id={envelope.id}"
        )
        return product

    def update_price(
        self, name: str, total_price: float, quantity: float = 1
    ) -> Product:
        unit_price = self._unit_price(total_price, quantity)
        with atomic(self.session, "update product"):
            product = self.get(name)
            product.price = unit_price
            self.session.flush()
        return product

    def delete(self, name: str) -> None:
        with atomic(self.session, "delete product"):
            product = self.get(name)
            product.is_deleted = True
            self.session.flush()
        logger.info(f"product_deleted: id={product.id} name={product.name!r}")
